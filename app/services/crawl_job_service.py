"""
Job service that runs crawl cycles in the background and records each one as a CrawlRun.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from functools import lru_cache

from sqlalchemy.orm import Session

from app.domain.import_queue import format_error_message
from app.services.crawler_service import CrawlAlreadyRunningError, CrawlerService, get_crawler_service
from app.services.task_executor import TaskExecutor
from db.models.crawl_run import CrawlRun, CrawlRunTrigger
from db.repositories.crawl_run_repository import CrawlRunRepository

logger = logging.getLogger(__name__)


class CrawlJobService:
    """
    Creates CrawlRun rows, dispatches crawl cycles and persists their outcome.
    """

    def __init__(
        self,
        *,
        crawler: CrawlerService | None = None,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory
        self._crawler = crawler or get_crawler_service()

    def trigger_crawl(
        self,
        *,
        db: Session,
        executor: TaskExecutor,
        trigger: str = CrawlRunTrigger.API,
    ) -> CrawlRun:
        if self._crawler.is_running:
            raise CrawlAlreadyRunningError("A crawl cycle is already running.")

        repository = CrawlRunRepository(db)
        run = repository.create_run(trigger=trigger)
        db.commit()

        try:
            executor.submit(self.execute, run.id)
        except Exception:
            repository.mark_failed(run_id=run.id, error_message="Failed to schedule crawl run.")
            db.commit()
            raise

        return run

    def run_now(self, *, trigger: str) -> CrawlRun | None:
        """
        Create and execute a crawl run synchronously (scheduler and CLI path).
        """

        with self._session_factory() as db:
            run = CrawlRunRepository(db).create_run(trigger=trigger)
            db.commit()
            run_id = run.id

        self.execute(run_id)

        with self._session_factory() as db:
            return CrawlRunRepository(db).get_run(run_id)

    def execute(self, run_id: uuid.UUID) -> None:
        with self._session_factory() as db:
            repository = CrawlRunRepository(db)
            try:
                running = repository.mark_running(run_id=run_id)
                if running is None:
                    raise RuntimeError(f"Crawl run not found: {run_id}")
                db.commit()

                summary = self._crawler.crawl(db)

                completed = repository.mark_completed(run_id=run_id, result_payload=summary.as_dict())
                if completed is None:
                    raise RuntimeError(f"Crawl run not found: {run_id}")
                db.commit()
            except Exception as exc:
                self._mark_run_failed(db=db, run_id=run_id, exc=exc)

    def list_runs(self, *, db: Session, limit: int = 50, status: str | None = None) -> list[CrawlRun]:
        return CrawlRunRepository(db).list_runs(limit=limit, status=status)

    def get_run(self, *, db: Session, run_id: uuid.UUID) -> CrawlRun | None:
        return CrawlRunRepository(db).get_run(run_id)

    def _mark_run_failed(self, *, db: Session, run_id: uuid.UUID, exc: Exception) -> None:
        repository = CrawlRunRepository(db)
        error_message = format_error_message(exc)
        logger.exception("Crawl run failed id=%s error=%s", run_id, error_message)
        try:
            db.rollback()
            failed = repository.mark_failed(run_id=run_id, error_message=error_message)
            if failed is None:
                logger.error("Unable to mark crawl run as failed because it was not found id=%s", run_id)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to persist failed crawl run state id=%s", run_id)


@lru_cache(maxsize=1)
def get_crawl_job_service() -> CrawlJobService:
    return CrawlJobService()
