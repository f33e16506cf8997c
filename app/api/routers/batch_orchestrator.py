"""
Batch import control and status endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.dependencies import get_batch_task_executor
from app.domain.import_queue import BatchRunStatusView
from app.schemas.import_pipeline import BatchRunResponse, BatchStartRequest, BatchStatusResponse
from app.services.batch_orchestrator import (
    BatchAlreadyRunningError,
    BatchOrchestrator,
    get_batch_orchestrator,
)
from app.services.task_executor import TaskExecutor
from db.models.batch_run import BatchRun
from db.session import get_db

router = APIRouter(prefix="/import-batch", tags=["import-batch"])


@router.post(
    "/start",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=BatchRunResponse,
)
def start_batch(
    payload: BatchStartRequest | None = None,
    db: Session = Depends(get_db),
    executor: TaskExecutor = Depends(get_batch_task_executor),
    orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator),
) -> BatchRunResponse:
    request = payload or BatchStartRequest()
    try:
        run = orchestrator.start(
            db,
            executor,
            batch_size=request.batch_size,
            cooldown_seconds=request.cooldown_seconds,
        )
    except BatchAlreadyRunningError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _to_run_response(run)


@router.post("/stop", response_model=BatchRunResponse)
def stop_batch(
    db: Session = Depends(get_db),
    orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator),
) -> BatchRunResponse:
    run = orchestrator.stop(db)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No batch run is running.")
    return _to_run_response(run)


@router.get("/status", response_model=BatchStatusResponse)
def get_batch_status(
    db: Session = Depends(get_db),
    orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator),
) -> BatchStatusResponse:
    return _to_status_response(orchestrator.status(db))


def _to_run_response(run: BatchRun) -> BatchRunResponse:
    return BatchRunResponse(
        run_id=run.id,
        pipeline_name=run.pipeline_name,
        status=run.status.value,
        batch_size=run.batch_size,
        cooldown_seconds=run.cooldown_seconds,
        total_items=run.total_items,
        stop_requested=run.stop_requested,
        created_at=run.created_at,
    )


def _to_status_response(view: BatchRunStatusView) -> BatchStatusResponse:
    return BatchStatusResponse(
        status=view.status.value,
        run_id=view.run_id,
        pipeline_name=view.pipeline_name,
        batch_size=view.batch_size,
        cooldown_seconds=view.cooldown_seconds,
        total_items=view.total_items,
        processed_items=view.processed_items,
        successful_items=view.successful_items,
        failed_items=view.failed_items,
        skipped_items=view.skipped_items,
        retried_items=view.retried_items,
        current_batch=view.current_batch,
        stop_requested=view.stop_requested,
        started_at=view.started_at,
        completed_at=view.completed_at,
        last_heartbeat_at=view.last_heartbeat_at,
        error_message=view.error_message,
        recent_failures=view.recent_failures,
        queue_counts=view.queue_counts,
    )
