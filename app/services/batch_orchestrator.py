"""
app/services/batch_orchestrator.py

Cooldown-paced batch loop that drains the import queue through the
per-item pipeline, with cooperative stop and persisted run state.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import BatchSettings, get_batch_settings
from app.domain.import_queue import (
    BatchRunStatusView,
    ClaimedItem,
    ItemOutcome,
    OutcomeKind,
    format_error_message,
)
from app.logging_utils import log_duration, log_event
from app.repositories.batch_run_repository import BatchRunRepository
from app.repositories.import_queue_repository import ImportQueueRepository
from app.services.item_pipeline import ItemPipeline, get_item_pipeline
from app.services.run_monitor_service import RunMonitorService
from app.services.task_executor import TaskExecutor
from db.models.batch_run import BatchRun, BatchRunStatus

logger = logging.getLogger(__name__)

# Upper bound on one uninterrupted cooldown slice; the persisted stop flag is
# re-read between slices so a stop issued from another process is noticed.
_STOP_POLL_SECONDS = 5.0
_SHUTDOWN_GRACE_SECONDS = 20.0


class BatchAlreadyRunningError(RuntimeError):
    """
    Raised when a run is started while another one is still running.
    """


class CancellationToken:
    """
    Cooperative cancellation signal shared by the controller and the run loop.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """
        Sleep up to `timeout` seconds; returns True as soon as cancellation is requested.
        """

        return self._event.wait(max(0.0, timeout))


class BatchOrchestrator:
    """
    Starts, stops and runs batch imports for one pipeline.
    """

    def __init__(
        self,
        *,
        pipeline: ItemPipeline,
        settings: BatchSettings,
        session_factory: Callable[[], Session] | None = None,
        stop_poll_seconds: float = _STOP_POLL_SECONDS,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory
        self._pipeline = pipeline
        self._settings = settings
        self._stop_poll_seconds = max(0.05, stop_poll_seconds)
        self._monitor = RunMonitorService(
            pipeline_name=settings.pipeline_name,
            recent_failures_limit=settings.recent_failures_limit,
        )
        self._tokens: dict[uuid.UUID, CancellationToken] = {}
        self._tokens_lock = threading.Condition()

    @property
    def pipeline_name(self) -> str:
        return self._settings.pipeline_name

    def start(
        self,
        db: Session,
        executor: TaskExecutor,
        *,
        batch_size: int | None = None,
        cooldown_seconds: float | None = None,
    ) -> BatchRun:
        repository = BatchRunRepository(db)
        if repository.get_active(self.pipeline_name) is not None:
            raise BatchAlreadyRunningError(f"A batch run for {self.pipeline_name} is already running.")

        total_items = ImportQueueRepository(db).count_pending()
        try:
            run = repository.create_running(
                pipeline_name=self.pipeline_name,
                batch_size=self._settings.clamp_batch_size(batch_size),
                cooldown_seconds=self._settings.clamp_cooldown(cooldown_seconds),
                total_items=total_items,
            )
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise BatchAlreadyRunningError(
                f"A batch run for {self.pipeline_name} is already running."
            ) from exc

        token = CancellationToken()
        with self._tokens_lock:
            self._tokens[run.id] = token

        try:
            executor.submit(self.run, run.id, token)
        except Exception:
            with self._tokens_lock:
                self._tokens.pop(run.id, None)
            repository.finish(run.id, BatchRunStatus.FAILED, error_message="Failed to schedule batch run.")
            db.commit()
            raise

        log_event(
            logger,
            logging.INFO,
            "batch_run_started",
            run_id=run.id,
            batch_size=run.batch_size,
            cooldown_seconds=run.cooldown_seconds,
            total_items=total_items,
        )
        return run

    def stop(self, db: Session) -> BatchRun | None:
        """
        Request a cooperative stop. The run finishes its current batch first.
        """

        run = BatchRunRepository(db).request_stop(self.pipeline_name)
        db.commit()
        if run is None:
            return None

        with self._tokens_lock:
            token = self._tokens.get(run.id)
        if token is not None:
            token.cancel()
        log_event(logger, logging.INFO, "batch_run_stop_requested", run_id=run.id)
        return run

    def shutdown(self, timeout_seconds: float = _SHUTDOWN_GRACE_SECONDS) -> list[uuid.UUID]:
        """
        Stop every run this process is executing, for application shutdown.

        Runs get `timeout_seconds` to finish their current batch and close as
        stopped. Runs still busy after that are closed as failed so the next
        process can start a new run immediately; their claimed items are
        released later by the recovery sweep. Returns the ids of those runs.
        """

        with self._tokens_lock:
            for token in self._tokens.values():
                token.cancel()
            self._tokens_lock.wait_for(lambda: not self._tokens, timeout=max(0.0, timeout_seconds))
            abandoned = list(self._tokens)

        for run_id in abandoned:
            with self._session_factory() as db:
                BatchRunRepository(db).finish(
                    run_id,
                    BatchRunStatus.FAILED,
                    error_message="ShutdownError: process stopped before the current batch finished.",
                )
                db.commit()
            log_event(logger, logging.WARNING, "batch_run_abandoned_on_shutdown", run_id=run_id)
        return abandoned

    def status(self, db: Session) -> BatchRunStatusView:
        return self._monitor.batch_status(db)

    def run(self, run_id: uuid.UUID, token: CancellationToken) -> None:
        """
        Blocking run loop. Returns when the queue is drained, a stop is
        requested or an infrastructure error aborts the run.
        """

        try:
            final_status = self._loop(run_id, token)
            self._finish(run_id, final_status)
        except Exception as exc:
            self._mark_run_failed(run_id, exc)
        finally:
            with self._tokens_lock:
                self._tokens.pop(run_id, None)
                self._tokens_lock.notify_all()

    def _loop(self, run_id: uuid.UUID, token: CancellationToken) -> BatchRunStatus:
        with self._session_factory() as db:
            run = BatchRunRepository(db).get(run_id)
            if run is None:
                raise RuntimeError(f"Batch run not found: {run_id}")
            batch_size = run.batch_size
            cooldown_seconds = run.cooldown_seconds

        while True:
            if token.cancelled or self._stop_requested(run_id):
                return BatchRunStatus.STOPPED

            with self._session_factory() as db:
                claimed = ImportQueueRepository(
                    db,
                    default_max_retries=self._settings.max_retries,
                    claim_attempts=self._settings.claim_attempts,
                ).claim_batch(batch_size)
                db.commit()

            if not claimed:
                return BatchRunStatus.COMPLETED

            outcomes = self._process_batch(claimed)
            stop_requested = self._record_batch(run_id, outcomes)
            if stop_requested or token.cancelled:
                return BatchRunStatus.STOPPED

            produced = sum(1 for outcome in outcomes if outcome.kind == OutcomeKind.COMPLETED)
            errors = sum(1 for outcome in outcomes if outcome.is_error)
            if produced == 0 and errors == 0 and self._pending_depth() == 0:
                return BatchRunStatus.COMPLETED

            if self._cooldown(run_id, token, cooldown_seconds):
                return BatchRunStatus.STOPPED

    def _process_batch(self, claimed: Sequence[ClaimedItem]) -> list[ItemOutcome]:
        with log_duration(logger, "batch_items_processed", size=len(claimed)):
            with ThreadPoolExecutor(max_workers=len(claimed), thread_name_prefix="import-item") as pool:
                futures = [pool.submit(self._pipeline.process, item) for item in claimed]
        # Leaving the pool joins every worker, so no item is abandoned mid-flight.
        return [future.result() for future in futures]

    def _record_batch(self, run_id: uuid.UUID, outcomes: Sequence[ItemOutcome]) -> bool:
        with self._session_factory() as db:
            repository = BatchRunRepository(db)
            run = repository.record_batch(
                run_id,
                outcomes,
                recent_failures_limit=self._settings.recent_failures_limit,
            )
            db.commit()
            if run is None:
                raise RuntimeError(f"Batch run not found: {run_id}")
            log_event(
                logger,
                logging.INFO,
                "batch_completed",
                run_id=run_id,
                batch=run.current_batch,
                size=len(outcomes),
                processed=run.processed_items,
                successful=run.successful_items,
                failed=run.failed_items,
                skipped=run.skipped_items,
                retried=run.retried_items,
            )
            return run.stop_requested or run.status != BatchRunStatus.RUNNING

    def _cooldown(self, run_id: uuid.UUID, token: CancellationToken, cooldown_seconds: float) -> bool:
        """
        Wait out the cooldown; True when a stop arrived during the wait.
        """

        remaining = cooldown_seconds
        while remaining > 0:
            slice_seconds = min(remaining, self._stop_poll_seconds)
            if token.wait(slice_seconds):
                return True
            remaining -= slice_seconds
            if remaining > 0 and self._stop_requested(run_id):
                return True
        return token.cancelled

    def _stop_requested(self, run_id: uuid.UUID) -> bool:
        # Doubles as the heartbeat while the loop is idle between batches.
        with self._session_factory() as db:
            repository = BatchRunRepository(db)
            repository.touch(run_id)
            db.commit()
            return repository.is_stop_requested(run_id)

    def _pending_depth(self) -> int:
        with self._session_factory() as db:
            return ImportQueueRepository(db).count_pending()

    def _finish(self, run_id: uuid.UUID, status: BatchRunStatus) -> None:
        with self._session_factory() as db:
            run = BatchRunRepository(db).finish(run_id, status)
            db.commit()
        log_event(
            logger,
            logging.INFO,
            "batch_run_finished",
            run_id=run_id,
            status=run.status.value if run is not None else None,
        )

    def _mark_run_failed(self, run_id: uuid.UUID, exc: Exception) -> None:
        error_message = format_error_message(exc)
        logger.exception("Batch run failed id=%s error=%s", run_id, error_message)
        try:
            with self._session_factory() as db:
                BatchRunRepository(db).finish(run_id, BatchRunStatus.FAILED, error_message=error_message)
                db.commit()
        except Exception:
            logger.exception("Failed to persist failed batch run state id=%s", run_id)


@lru_cache(maxsize=1)
def get_batch_orchestrator() -> BatchOrchestrator:
    return BatchOrchestrator(pipeline=get_item_pipeline(), settings=get_batch_settings())
