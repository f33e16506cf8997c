"""
Read-only queue monitoring endpoints plus the manual recovery sweep.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.schemas.import_pipeline import (
    QueueItemListResponse,
    QueueItemResponse,
    QueueStatsResponse,
    RecoveryResponse,
)
from app.services.recovery_service import RecoveryService, get_recovery_service
from app.services.run_monitor_service import RunMonitorService, get_run_monitor_service
from db.models.import_queue_item import ImportQueueItem, QueueItemStatus
from db.session import get_db

router = APIRouter(prefix="/import-queue", tags=["import-queue"])


@router.get("/stats", response_model=QueueStatsResponse)
def get_queue_stats(
    db: Session = Depends(get_db),
    monitor: RunMonitorService = Depends(get_run_monitor_service),
) -> QueueStatsResponse:
    return QueueStatsResponse(**monitor.queue_stats(db))


@router.get("/items", response_model=QueueItemListResponse)
def list_queue_items(
    status_filter: QueueItemStatus | None = Query(default=None, alias="status", description="Optional status filter"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    monitor: RunMonitorService = Depends(get_run_monitor_service),
) -> QueueItemListResponse:
    items = monitor.list_items(db, status=status_filter, limit=limit, offset=offset)
    return QueueItemListResponse(items=[_to_item_response(item) for item in items])


@router.get("/errors", response_model=QueueItemListResponse)
def list_queue_errors(
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
    monitor: RunMonitorService = Depends(get_run_monitor_service),
) -> QueueItemListResponse:
    items = monitor.recent_errors(db, limit=limit)
    return QueueItemListResponse(items=[_to_item_response(item) for item in items])


@router.post("/recover", response_model=RecoveryResponse)
def recover_stale_work(
    db: Session = Depends(get_db),
    recovery: RecoveryService = Depends(get_recovery_service),
) -> RecoveryResponse:
    result = recovery.sweep(db)
    return RecoveryResponse(
        items_requeued=result.items_requeued,
        items_failed=result.items_failed,
        runs_failed=result.runs_failed,
    )


def _to_item_response(item: ImportQueueItem) -> QueueItemResponse:
    return QueueItemResponse(
        id=item.id,
        external_id=item.external_id,
        aggregate_id=item.aggregate_id,
        artist=item.artist,
        title=item.title,
        year=item.year,
        format=item.format,
        label=item.label,
        country=item.country,
        catalog_number=item.catalog_number,
        status=item.status.value,
        retry_count=item.retry_count,
        max_retries=item.max_retries,
        error_message=item.error_message,
        claimed_at=item.claimed_at,
        processed_at=item.processed_at,
        artifact_refs=item.artifact_refs,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )
