"""
app/services/run_monitor_service.py

Read-only projection of queue and batch run state for dashboards.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from sqlalchemy.orm import Session

from app.config import get_batch_settings
from app.domain.import_queue import BatchRunStatusView
from app.repositories.batch_run_repository import BatchRunRepository
from app.repositories.import_queue_repository import ImportQueueRepository
from db.models.batch_run import BatchRunStatus
from db.models.import_queue_item import ImportQueueItem, QueueItemStatus


class RunMonitorService:
    """
    Builds views from persisted state only; never mutates anything.
    """

    def __init__(self, *, pipeline_name: str, recent_failures_limit: int = 20) -> None:
        self._pipeline_name = pipeline_name
        self._recent_failures_limit = max(1, recent_failures_limit)

    def queue_stats(self, db: Session) -> dict[str, Any]:
        counts = ImportQueueRepository(db).count_by_status()
        return {"counts": counts, "total": sum(counts.values())}

    def list_items(
        self,
        db: Session,
        *,
        status: QueueItemStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ImportQueueItem]:
        return ImportQueueRepository(db).list_items(status=status, limit=limit, offset=offset)

    def recent_errors(self, db: Session, *, limit: int | None = None) -> list[ImportQueueItem]:
        return ImportQueueRepository(db).list_recent_errors(limit or self._recent_failures_limit)

    def batch_status(self, db: Session) -> BatchRunStatusView:
        """
        Latest run for the pipeline plus live queue counts; `idle` when no run exists.
        """

        queue_counts = ImportQueueRepository(db).count_by_status()
        run = BatchRunRepository(db).get_latest(self._pipeline_name)
        if run is None:
            return BatchRunStatusView(status=BatchRunStatus.IDLE, queue_counts=queue_counts)

        return BatchRunStatusView(
            status=run.status,
            run_id=run.id,
            pipeline_name=run.pipeline_name,
            batch_size=run.batch_size,
            cooldown_seconds=run.cooldown_seconds,
            total_items=run.total_items,
            processed_items=run.processed_items,
            successful_items=run.successful_items,
            failed_items=run.failed_items,
            skipped_items=run.skipped_items,
            retried_items=run.retried_items,
            current_batch=run.current_batch,
            stop_requested=run.stop_requested,
            started_at=run.started_at,
            completed_at=run.completed_at,
            last_heartbeat_at=run.last_heartbeat_at,
            error_message=run.error_message,
            recent_failures=list(run.recent_failures or [])[: self._recent_failures_limit],
            queue_counts=queue_counts,
        )


@lru_cache(maxsize=1)
def get_run_monitor_service() -> RunMonitorService:
    settings = get_batch_settings()
    return RunMonitorService(
        pipeline_name=settings.pipeline_name,
        recent_failures_limit=settings.recent_failures_limit,
    )
