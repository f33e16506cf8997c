"""
tests/test_batch_orchestrator.py

End-to-end tests for the batch loop against a real (SQLite) queue.

Coverage
--------
- Draining a queue with transient failures and bounded retries
- Empty queue completes immediately
- Cooperative stop during cooldown, in-process and via the persisted flag
- Application shutdown stops local runs or closes them as failed
- Single running run per pipeline
- Infrastructure errors fail the run
- Batch size and cooldown clamping
"""

from __future__ import annotations

import time

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.config import BatchSettings
from app.domain.import_queue import ClaimedItem, ItemOutcome
from app.repositories.batch_run_repository import BatchRunRepository
from app.repositories.import_queue_repository import ImportQueueRepository
from app.services.batch_orchestrator import BatchAlreadyRunningError, BatchOrchestrator, CancellationToken
from app.services.item_pipeline import ItemPipeline
from app.services.task_executor import InlineTaskExecutor, ThreadTaskExecutor
from db.models.batch_run import BatchRunStatus
from fakes import FakeCatalog, FakeGenerator, RecordingExecutor, found


def _settings(**overrides) -> BatchSettings:
    values = {"batch_size": 10, "max_batch_size": 50, "cooldown_seconds": 0.0, "max_retries": 3}
    values.update(overrides)
    return BatchSettings(**values)


def _orchestrator(session_factory, generator: FakeGenerator | None = None, **settings_overrides) -> BatchOrchestrator:
    pipeline = ItemPipeline(
        catalog=FakeCatalog(),
        generator=generator or FakeGenerator(),
        session_factory=session_factory,
    )
    return BatchOrchestrator(
        pipeline=pipeline,
        settings=_settings(**settings_overrides),
        session_factory=session_factory,
        stop_poll_seconds=0.05,
    )


def _enqueue(db, count: int, *, start: int = 1001, max_retries: int = 3) -> list[str]:
    external_ids = [str(start + offset) for offset in range(count)]
    ImportQueueRepository(db, default_max_retries=max_retries).enqueue([found(value) for value in external_ids])
    db.commit()
    return external_ids


def _wait_for(predicate, timeout: float = 15.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.02)
    raise AssertionError("condition not reached in time")


def _status(orchestrator: BatchOrchestrator, session_factory):
    with session_factory() as session:
        return orchestrator.status(session)


class _BrokenPipeline:
    def process(self, item: ClaimedItem) -> ItemOutcome:
        raise OperationalError("UPDATE import_queue_items", {}, Exception("database is gone"))


# ---------------------------------------------------------------------------
# Draining
# ---------------------------------------------------------------------------


class TestDrain:
    def test_queue_with_transient_failures_drains_with_bounded_retries(self, db, session_factory) -> None:
        external_ids = _enqueue(db, 25)
        always_failing = {external_ids[2], external_ids[6]}
        failing_once = {external_ids[9]}
        generator = FakeGenerator(transient=always_failing, fail_once=failing_once)
        orchestrator = _orchestrator(session_factory, generator)

        run = orchestrator.start(db, InlineTaskExecutor(), batch_size=10, cooldown_seconds=0)
        view = _status(orchestrator, session_factory)

        assert view.run_id == run.id
        assert view.status == BatchRunStatus.COMPLETED
        assert view.total_items == 25
        assert view.processed_items == 30
        assert view.successful_items == 23
        assert view.failed_items == 2
        assert view.retried_items == 5
        assert view.skipped_items == 0
        assert view.completed_at is not None
        assert view.queue_counts == {"pending": 0, "processing": 0, "completed": 23, "failed": 2, "skipped": 0}

        for external_id in always_failing:
            assert generator.call_count(external_id) == 3
        assert generator.call_count(external_ids[9]) == 2
        assert generator.call_count(external_ids[0]) == 1

        assert view.recent_failures
        assert {failure["external_id"] for failure in view.recent_failures} == always_failing | failing_once
        assert view.recent_failures[0]["outcome"] in {"failed", "retry_scheduled"}

    def test_empty_queue_completes_immediately(self, db, session_factory) -> None:
        orchestrator = _orchestrator(session_factory)
        orchestrator.start(db, InlineTaskExecutor())
        view = _status(orchestrator, session_factory)

        assert view.status == BatchRunStatus.COMPLETED
        assert view.processed_items == 0
        assert view.current_batch == 0

    def test_all_skipped_batch_ends_the_run(self, db, session_factory) -> None:
        external_ids = _enqueue(db, 3)
        orchestrator = _orchestrator(session_factory, FakeGenerator(existing=set(external_ids)))
        orchestrator.start(db, InlineTaskExecutor(), cooldown_seconds=60)
        view = _status(orchestrator, session_factory)

        assert view.status == BatchRunStatus.COMPLETED
        assert view.skipped_items == 3
        assert view.current_batch == 1


# ---------------------------------------------------------------------------
# Stop
# ---------------------------------------------------------------------------


class TestStop:
    def test_stop_during_cooldown_is_prompt(self, db, session_factory) -> None:
        _enqueue(db, 30)
        orchestrator = _orchestrator(session_factory)
        run = orchestrator.start(db, ThreadTaskExecutor(name_prefix="test-run"), batch_size=10, cooldown_seconds=120)
        _wait_for(lambda: _status(orchestrator, session_factory).current_batch >= 1)

        requested_at = time.monotonic()
        with session_factory() as session:
            stopped = orchestrator.stop(session)
        assert stopped is not None and stopped.id == run.id

        _wait_for(lambda: _status(orchestrator, session_factory).status != BatchRunStatus.RUNNING)
        assert time.monotonic() - requested_at < 5.0

        view = _status(orchestrator, session_factory)
        assert view.status == BatchRunStatus.STOPPED
        assert view.processed_items == 10
        assert view.stop_requested is True
        assert view.queue_counts["processing"] == 0
        assert view.queue_counts["pending"] == 20

    def test_stop_from_another_orchestrator_is_noticed(self, db, session_factory) -> None:
        _enqueue(db, 20)
        orchestrator = _orchestrator(session_factory)
        other_process = _orchestrator(session_factory)
        orchestrator.start(db, ThreadTaskExecutor(name_prefix="test-run"), batch_size=10, cooldown_seconds=120)
        _wait_for(lambda: _status(orchestrator, session_factory).current_batch >= 1)

        with session_factory() as session:
            assert other_process.stop(session) is not None

        _wait_for(lambda: _status(orchestrator, session_factory).status != BatchRunStatus.RUNNING)
        assert _status(orchestrator, session_factory).status == BatchRunStatus.STOPPED

    def test_stop_without_running_run(self, db, session_factory) -> None:
        assert _orchestrator(session_factory).stop(db) is None

    def test_cancelled_token_stops_before_claiming(self, db, session_factory) -> None:
        _enqueue(db, 5)
        orchestrator = _orchestrator(session_factory)
        executor = RecordingExecutor()
        run = orchestrator.start(db, executor)
        token = CancellationToken()
        token.cancel()

        orchestrator.run(run.id, token)

        view = _status(orchestrator, session_factory)
        assert view.status == BatchRunStatus.STOPPED
        assert view.queue_counts["pending"] == 5


class TestShutdown:
    def test_shutdown_stops_a_run_waiting_in_cooldown(self, db, session_factory) -> None:
        _enqueue(db, 20)
        orchestrator = _orchestrator(session_factory)
        orchestrator.start(db, ThreadTaskExecutor(name_prefix="test-run"), batch_size=10, cooldown_seconds=120)
        _wait_for(lambda: _status(orchestrator, session_factory).current_batch >= 1)

        assert orchestrator.shutdown(timeout_seconds=10.0) == []

        view = _status(orchestrator, session_factory)
        assert view.status == BatchRunStatus.STOPPED
        assert view.queue_counts["pending"] == 10

    def test_run_that_cannot_finish_in_time_is_closed_as_failed(self, db, session_factory) -> None:
        _enqueue(db, 3)
        orchestrator = _orchestrator(session_factory)
        run = orchestrator.start(db, RecordingExecutor())

        assert orchestrator.shutdown(timeout_seconds=0.05) == [run.id]

        view = _status(orchestrator, session_factory)
        assert view.status == BatchRunStatus.FAILED
        assert view.error_message.startswith("ShutdownError")
        with session_factory() as session:
            assert orchestrator.start(session, RecordingExecutor()).id != run.id

    def test_shutdown_without_runs_is_a_no_op(self, session_factory) -> None:
        assert _orchestrator(session_factory).shutdown(timeout_seconds=0.0) == []


# ---------------------------------------------------------------------------
# Exclusivity and failures
# ---------------------------------------------------------------------------


class TestExclusivity:
    def test_second_start_is_rejected(self, db, session_factory) -> None:
        orchestrator = _orchestrator(session_factory)
        executor = RecordingExecutor()
        orchestrator.start(db, executor)

        with pytest.raises(BatchAlreadyRunningError):
            orchestrator.start(db, executor)
        assert len(executor.submitted) == 1

    def test_database_rejects_two_running_runs(self, db) -> None:
        repository = BatchRunRepository(db)
        repository.create_running(pipeline_name="catalog_import", batch_size=10, cooldown_seconds=0, total_items=0)
        db.commit()
        with pytest.raises(IntegrityError):
            repository.create_running(pipeline_name="catalog_import", batch_size=10, cooldown_seconds=0, total_items=0)
        db.rollback()

    def test_new_run_allowed_after_previous_finished(self, db, session_factory) -> None:
        orchestrator = _orchestrator(session_factory)
        first = orchestrator.start(db, InlineTaskExecutor())
        second = orchestrator.start(db, InlineTaskExecutor())
        assert first.id != second.id

    def test_infrastructure_error_fails_the_run(self, db, session_factory) -> None:
        _enqueue(db, 3)
        orchestrator = BatchOrchestrator(
            pipeline=_BrokenPipeline(),
            settings=_settings(),
            session_factory=session_factory,
            stop_poll_seconds=0.05,
        )
        orchestrator.start(db, InlineTaskExecutor())
        view = _status(orchestrator, session_factory)

        assert view.status == BatchRunStatus.FAILED
        assert view.error_message.startswith("OperationalError")


class TestSettings:
    def test_batch_size_is_clamped(self) -> None:
        settings = _settings(max_batch_size=20)
        assert settings.clamp_batch_size(500) == 20
        assert settings.clamp_batch_size(0) == 1
        assert settings.clamp_batch_size(None) == 10

    def test_cooldown_is_never_negative(self) -> None:
        settings = _settings(cooldown_seconds=30.0)
        assert settings.clamp_cooldown(-5) == 0.0
        assert settings.clamp_cooldown(None) == 30.0

    def test_start_persists_clamped_values(self, db, session_factory) -> None:
        orchestrator = _orchestrator(session_factory, max_batch_size=20)
        run = orchestrator.start(db, RecordingExecutor(), batch_size=500, cooldown_seconds=-1)
        assert run.batch_size == 20
        assert run.cooldown_seconds == 0.0
