"""
app/repositories/batch_run_repository.py

Persistence layer for batch orchestrator run state.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.domain.import_queue import ItemOutcome, OutcomeKind
from db.base import utcnow
from db.models.batch_run import BatchRun, BatchRunStatus

_STALE_RUN_MESSAGE = "StaleRunError: no heartbeat within the stale threshold."


class BatchRunRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, run_id: uuid.UUID) -> BatchRun | None:
        return self._session.get(BatchRun, run_id, populate_existing=True)

    def get_active(self, pipeline_name: str) -> BatchRun | None:
        stmt = (
            select(BatchRun)
            .where(BatchRun.pipeline_name == pipeline_name, BatchRun.status == BatchRunStatus.RUNNING)
            .order_by(BatchRun.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return self._session.scalars(stmt).first()

    def get_latest(self, pipeline_name: str) -> BatchRun | None:
        stmt = (
            select(BatchRun)
            .where(BatchRun.pipeline_name == pipeline_name)
            .order_by(BatchRun.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return self._session.scalars(stmt).first()

    def create_running(
        self,
        *,
        pipeline_name: str,
        batch_size: int,
        cooldown_seconds: float,
        total_items: int,
    ) -> BatchRun:
        """
        Insert a running run. The partial unique index raises IntegrityError
        on flush if another run of the same pipeline is already running.
        """

        now = utcnow()
        run = BatchRun(
            pipeline_name=pipeline_name,
            status=BatchRunStatus.RUNNING,
            batch_size=batch_size,
            cooldown_seconds=cooldown_seconds,
            total_items=total_items,
            started_at=now,
            last_heartbeat_at=now,
            recent_failures=[],
        )
        self._session.add(run)
        self._session.flush()
        return run

    def record_batch(
        self,
        run_id: uuid.UUID,
        outcomes: Sequence[ItemOutcome],
        *,
        recent_failures_limit: int,
    ) -> BatchRun | None:
        """
        Fold one batch worth of outcomes into the run counters and heartbeat.
        """

        run = self.get(run_id)
        if run is None:
            return None

        now = utcnow()
        new_failures: list[dict[str, Any]] = []
        for outcome in outcomes:
            run.processed_items += 1
            if outcome.kind == OutcomeKind.COMPLETED:
                run.successful_items += 1
            elif outcome.kind == OutcomeKind.SKIPPED:
                run.skipped_items += 1
            elif outcome.kind == OutcomeKind.FAILED:
                run.failed_items += 1
            elif outcome.kind == OutcomeKind.RETRY_SCHEDULED:
                run.retried_items += 1
            if outcome.is_error:
                new_failures.append(
                    {
                        "item_id": str(outcome.item_id),
                        "external_id": outcome.external_id,
                        "error": outcome.error_message,
                        "outcome": outcome.kind.value,
                        "at": now.isoformat(),
                    }
                )

        new_failures.reverse()
        run.recent_failures = (new_failures + list(run.recent_failures or []))[: max(0, recent_failures_limit)]
        run.current_batch += 1
        run.last_heartbeat_at = now
        self._session.flush()
        return run

    def touch(self, run_id: uuid.UUID) -> None:
        run = self.get(run_id)
        if run is not None and run.status == BatchRunStatus.RUNNING:
            run.last_heartbeat_at = utcnow()
            self._session.flush()

    def request_stop(self, pipeline_name: str) -> BatchRun | None:
        run = self.get_active(pipeline_name)
        if run is None:
            return None
        run.stop_requested = True
        self._session.flush()
        return run

    def is_stop_requested(self, run_id: uuid.UUID) -> bool:
        run = self.get(run_id)
        return run is None or run.stop_requested or run.status != BatchRunStatus.RUNNING

    def finish(
        self,
        run_id: uuid.UUID,
        status: BatchRunStatus,
        *,
        error_message: str | None = None,
    ) -> BatchRun | None:
        """
        Close a running run. A run already closed (e.g. by the recovery sweep)
        keeps its final state.
        """

        run = self.get(run_id)
        if run is None or run.status != BatchRunStatus.RUNNING:
            return run
        now = utcnow()
        run.status = status
        run.completed_at = now
        run.last_heartbeat_at = now
        if error_message is not None:
            run.error_message = error_message
        self._session.flush()
        return run

    def fail_stale_runs(self, older_than: datetime) -> int:
        stmt = (
            select(BatchRun)
            .where(BatchRun.status == BatchRunStatus.RUNNING, BatchRun.last_heartbeat_at < older_than)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        runs = list(self._session.scalars(stmt).all())
        now = utcnow()
        for run in runs:
            run.status = BatchRunStatus.FAILED
            run.completed_at = now
            run.error_message = _STALE_RUN_MESSAGE
        self._session.flush()
        return len(runs)
