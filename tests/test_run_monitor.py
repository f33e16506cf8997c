"""
tests/test_run_monitor.py

Tests for the read-only monitoring projection and the recovery sweep.

Coverage
--------
- Idle status when no run exists
- Latest run counters and live queue counts
- Recent failures are newest first and bounded
- Queue stats totals
- Recovery sweep releases stale items and fails silent runs
"""

from __future__ import annotations

import uuid

from app.config import BatchSettings
from app.domain.import_queue import ItemOutcome, OutcomeKind
from app.repositories.batch_run_repository import BatchRunRepository
from app.repositories.import_queue_repository import ImportQueueRepository
from app.services.recovery_service import RecoveryService
from app.services.run_monitor_service import RunMonitorService
from db.models.batch_run import BatchRunStatus
from db.models.import_queue_item import QueueItemStatus
from fakes import found


def _monitor(limit: int = 20) -> RunMonitorService:
    return RunMonitorService(pipeline_name="catalog_import", recent_failures_limit=limit)


def _outcome(kind: str, external_id: str) -> ItemOutcome:
    return ItemOutcome(
        item_id=uuid.uuid4(),
        external_id=external_id,
        kind=kind,
        error_message=None if kind in {OutcomeKind.COMPLETED, OutcomeKind.SKIPPED} else f"CatalogError: {external_id}",
    )


class TestBatchStatus:
    def test_idle_without_runs(self, db) -> None:
        ImportQueueRepository(db).enqueue([found("1")])
        db.commit()
        view = _monitor().batch_status(db)

        assert view.status == BatchRunStatus.IDLE
        assert view.run_id is None
        assert view.queue_counts["pending"] == 1

    def test_reports_latest_run_counters(self, db) -> None:
        repository = BatchRunRepository(db)
        run = repository.create_running(pipeline_name="catalog_import", batch_size=5, cooldown_seconds=1.0, total_items=4)
        repository.record_batch(
            run.id,
            [
                _outcome(OutcomeKind.COMPLETED, "1"),
                _outcome(OutcomeKind.SKIPPED, "2"),
                _outcome(OutcomeKind.RETRY_SCHEDULED, "3"),
                _outcome(OutcomeKind.FAILED, "4"),
            ],
            recent_failures_limit=20,
        )
        db.commit()

        view = _monitor().batch_status(db)
        assert view.status == BatchRunStatus.RUNNING
        assert view.run_id == run.id
        assert (view.processed_items, view.successful_items, view.skipped_items) == (4, 1, 1)
        assert (view.retried_items, view.failed_items, view.current_batch) == (1, 1, 1)
        assert [failure["external_id"] for failure in view.recent_failures] == ["4", "3"]

    def test_recent_failures_are_bounded_newest_first(self, db) -> None:
        repository = BatchRunRepository(db)
        run = repository.create_running(pipeline_name="catalog_import", batch_size=5, cooldown_seconds=0, total_items=0)
        repository.record_batch(
            run.id,
            [_outcome(OutcomeKind.FAILED, "1"), _outcome(OutcomeKind.FAILED, "2")],
            recent_failures_limit=3,
        )
        repository.record_batch(
            run.id,
            [_outcome(OutcomeKind.FAILED, "3"), _outcome(OutcomeKind.FAILED, "4")],
            recent_failures_limit=3,
        )
        db.commit()

        view = _monitor(limit=3).batch_status(db)
        assert [failure["external_id"] for failure in view.recent_failures] == ["4", "3", "2"]

    def test_other_pipelines_are_ignored(self, db) -> None:
        BatchRunRepository(db).create_running(pipeline_name="other", batch_size=1, cooldown_seconds=0, total_items=0)
        db.commit()
        assert _monitor().batch_status(db).status == BatchRunStatus.IDLE


class TestQueueStats:
    def test_counts_and_total(self, db) -> None:
        repository = ImportQueueRepository(db)
        repository.enqueue([found("1"), found("2"), found("3")])
        [claimed] = repository.claim_batch(1)
        repository.mark_terminal(claimed.id, QueueItemStatus.COMPLETED)
        db.commit()

        stats = _monitor().queue_stats(db)
        assert stats["total"] == 3
        assert stats["counts"]["completed"] == 1
        assert stats["counts"]["pending"] == 2
        assert stats["counts"]["failed"] == 0


class TestRecoverySweep:
    def test_releases_stale_items_and_fails_silent_runs(self, db) -> None:
        queue = ImportQueueRepository(db, default_max_retries=3)
        queue.enqueue([found("1"), found("2")])
        queue.claim_batch(2)
        BatchRunRepository(db).create_running(
            pipeline_name="catalog_import", batch_size=2, cooldown_seconds=0, total_items=2
        )
        db.commit()

        # Zero thresholds make every current claim and heartbeat stale.
        service = RecoveryService(settings=BatchSettings(item_stale_after_seconds=0, run_stale_after_seconds=0))
        result = service.sweep(db)

        assert result.items_requeued == 2
        assert result.items_failed == 0
        assert result.runs_failed == 1
        assert queue.count_by_status()["pending"] == 2
        view = _monitor().batch_status(db)
        assert view.status == BatchRunStatus.FAILED
        assert view.error_message.startswith("StaleRunError")

    def test_nothing_to_recover(self, db) -> None:
        service = RecoveryService(settings=BatchSettings())
        result = service.sweep(db)
        assert (result.items_requeued, result.items_failed, result.runs_failed) == (0, 0, 0)
