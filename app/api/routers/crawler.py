"""
Crawl cycle trigger and history endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.schemas.import_pipeline import CrawlRunListResponse, CrawlRunResponse
from app.services.crawl_job_service import CrawlJobService, get_crawl_job_service
from app.services.crawler_service import CrawlAlreadyRunningError
from app.services.task_executor import FastAPIBackgroundTaskExecutor
from db.models.crawl_run import CrawlRun, CrawlRunTrigger
from db.session import get_db

router = APIRouter(prefix="/crawler", tags=["crawler"])


@router.post(
    "/run",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=CrawlRunResponse,
)
def trigger_crawl(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    jobs: CrawlJobService = Depends(get_crawl_job_service),
) -> CrawlRunResponse:
    try:
        run = jobs.trigger_crawl(
            db=db,
            executor=FastAPIBackgroundTaskExecutor(background_tasks),
            trigger=CrawlRunTrigger.API,
        )
    except CrawlAlreadyRunningError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _to_run_response(run)


@router.get("/runs", response_model=CrawlRunListResponse)
def list_crawl_runs(
    status_filter: str | None = Query(default=None, alias="status", description="Optional status filter"),
    limit: int = Query(default=50, ge=1, le=500, description="Max runs returned"),
    db: Session = Depends(get_db),
    jobs: CrawlJobService = Depends(get_crawl_job_service),
) -> CrawlRunListResponse:
    runs = jobs.list_runs(db=db, limit=limit, status=status_filter)
    return CrawlRunListResponse(runs=[_to_run_response(run) for run in runs])


def _to_run_response(run: CrawlRun) -> CrawlRunResponse:
    return CrawlRunResponse(
        run_id=run.id,
        trigger=run.trigger,
        status=run.status,
        created_at=run.created_at,
        started_at=run.started_at,
        completed_at=run.completed_at,
        result_payload=run.result_payload,
        error_message=run.error_message,
    )
