"""
Repository for crawl run lifecycle persistence and status lookup.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from db.base import utcnow
from db.models.crawl_run import CrawlRun, CrawlRunStatus


class CrawlRunRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_run(self, *, trigger: str) -> CrawlRun:
        run = CrawlRun(trigger=trigger, status=CrawlRunStatus.PENDING)
        self._session.add(run)
        self._session.flush()
        self._session.refresh(run)
        return run

    def get_run(self, run_id: uuid.UUID) -> CrawlRun | None:
        return self._session.get(CrawlRun, run_id)

    def list_runs(
        self,
        *,
        limit: int = 50,
        status: str | None = None,
    ) -> list[CrawlRun]:
        stmt: Select[tuple[CrawlRun]] = select(CrawlRun)
        if status:
            stmt = stmt.where(CrawlRun.status == status)
        stmt = stmt.order_by(CrawlRun.created_at.desc()).limit(max(1, limit))
        return list(self._session.scalars(stmt).all())

    def mark_running(self, *, run_id: uuid.UUID) -> CrawlRun | None:
        run = self.get_run(run_id)
        if run is None:
            return None
        run.status = CrawlRunStatus.RUNNING
        run.started_at = utcnow()
        run.completed_at = None
        run.error_message = None
        return run

    def mark_completed(
        self,
        *,
        run_id: uuid.UUID,
        result_payload: dict[str, Any] | None = None,
    ) -> CrawlRun | None:
        run = self.get_run(run_id)
        if run is None:
            return None
        run.status = CrawlRunStatus.COMPLETED
        run.completed_at = utcnow()
        run.result_payload = result_payload
        run.error_message = None
        return run

    def mark_failed(self, *, run_id: uuid.UUID, error_message: str) -> CrawlRun | None:
        run = self.get_run(run_id)
        if run is None:
            return None
        run.status = CrawlRunStatus.FAILED
        run.completed_at = utcnow()
        run.error_message = error_message
        return run
