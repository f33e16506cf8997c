"""
tests/test_api_routers.py

HTTP contract tests for the crawler, import queue and batch endpoints.

The routers are mounted on a bare FastAPI app with dependencies overridden,
so no environment validation, scheduler or PostgreSQL is involved.

Coverage
--------
- POST /import-batch/start (202, 409 while running)
- POST /import-batch/stop (200 with stop flag, 404 when idle)
- GET  /import-batch/status
- GET  /import-queue/stats, /items, /errors; POST /import-queue/recover
- POST /crawler/run executes in the background; GET /crawler/runs
"""

from __future__ import annotations

import random

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.dependencies import get_batch_task_executor
from app.api.routers import batch_orchestrator_router, crawler_router, import_queue_router
from app.config import BatchSettings, CrawlerSettings
from app.repositories.crawl_candidate_repository import CrawlCandidateRepository
from app.repositories.import_queue_repository import ImportQueueRepository
from app.services.batch_orchestrator import BatchOrchestrator, get_batch_orchestrator
from app.services.candidate_selector import CandidateSelector
from app.services.crawl_job_service import CrawlJobService, get_crawl_job_service
from app.services.crawler_service import CrawlerService
from app.services.deduplication_gate import DeduplicationGate
from app.services.item_pipeline import ItemPipeline
from app.services.recovery_service import RecoveryService, get_recovery_service
from app.services.run_monitor_service import RunMonitorService, get_run_monitor_service
from db.models.import_queue_item import QueueItemStatus
from db.session import get_db
from fakes import FakeCanonicalStore, FakeCatalog, FakeGenerator, RecordingExecutor, found, search_hit


@pytest.fixture()
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture()
def catalog() -> FakeCatalog:
    return FakeCatalog(search_results={"Artist A": [search_hit("321", "Vinyl", "LP", "Album")]})


@pytest.fixture()
def client(session_factory, executor, catalog):
    settings = BatchSettings()
    orchestrator = BatchOrchestrator(
        pipeline=ItemPipeline(catalog=catalog, generator=FakeGenerator(), session_factory=session_factory),
        settings=settings,
        session_factory=session_factory,
    )
    crawler = CrawlerService(
        catalog=catalog,
        selector=CandidateSelector(default_limit=5),
        gate=DeduplicationGate(canonical_store=FakeCanonicalStore()),
        settings=CrawlerSettings(backoff_seconds=0),
        rng=random.Random(1),
    )
    jobs = CrawlJobService(crawler=crawler, session_factory=session_factory)

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app = FastAPI()
    app.include_router(batch_orchestrator_router)
    app.include_router(crawler_router)
    app.include_router(import_queue_router)
    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_batch_task_executor] = lambda: executor
    app.dependency_overrides[get_batch_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_crawl_job_service] = lambda: jobs
    app.dependency_overrides[get_run_monitor_service] = lambda: RunMonitorService(pipeline_name=settings.pipeline_name)
    app.dependency_overrides[get_recovery_service] = lambda: RecoveryService(settings=settings)

    with TestClient(app) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Batch control
# ---------------------------------------------------------------------------


class TestBatchEndpoints:
    def test_status_is_idle_initially(self, client) -> None:
        response = client.get("/import-batch/status")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "idle"
        assert body["run_id"] is None

    def test_start_returns_202_and_schedules_run(self, client, executor, db) -> None:
        ImportQueueRepository(db).enqueue([found("1"), found("2")])
        db.commit()

        response = client.post("/import-batch/start", json={"batch_size": 5, "cooldown_seconds": 0})
        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "running"
        assert body["batch_size"] == 5
        assert body["total_items"] == 2
        assert len(executor.submitted) == 1

    def test_start_without_body_uses_defaults(self, client) -> None:
        response = client.post("/import-batch/start")
        assert response.status_code == 202
        assert response.json()["batch_size"] == BatchSettings().batch_size

    def test_second_start_conflicts(self, client) -> None:
        assert client.post("/import-batch/start").status_code == 202
        response = client.post("/import-batch/start")
        assert response.status_code == 409

    def test_invalid_batch_size_is_rejected(self, client) -> None:
        response = client.post("/import-batch/start", json={"batch_size": 0})
        assert response.status_code == 422

    def test_stop_sets_flag(self, client) -> None:
        run_id = client.post("/import-batch/start").json()["run_id"]
        response = client.post("/import-batch/stop")
        assert response.status_code == 200
        assert response.json()["run_id"] == run_id
        assert response.json()["stop_requested"] is True
        assert client.get("/import-batch/status").json()["stop_requested"] is True

    def test_stop_when_idle_is_404(self, client) -> None:
        assert client.post("/import-batch/stop").status_code == 404


# ---------------------------------------------------------------------------
# Queue monitoring
# ---------------------------------------------------------------------------


class TestQueueEndpoints:
    def test_stats_items_and_errors(self, client, db) -> None:
        repository = ImportQueueRepository(db)
        repository.enqueue([found("1"), found("2"), found("3")])
        [claimed] = repository.claim_batch(1)
        repository.mark_terminal(claimed.id, QueueItemStatus.FAILED, error_message="ValueError: broken")
        db.commit()

        stats = client.get("/import-queue/stats").json()
        assert stats["total"] == 3
        assert stats["counts"]["failed"] == 1

        pending = client.get("/import-queue/items", params={"status": "pending"}).json()["items"]
        assert sorted(item["external_id"] for item in pending) == ["2", "3"]

        errors = client.get("/import-queue/errors").json()["items"]
        assert [item["external_id"] for item in errors] == ["1"]
        assert errors[0]["error_message"] == "ValueError: broken"

    def test_unknown_status_filter_is_rejected(self, client) -> None:
        assert client.get("/import-queue/items", params={"status": "unknown"}).status_code == 422

    def test_recover_endpoint(self, client, db) -> None:
        response = client.post("/import-queue/recover")
        assert response.status_code == 200
        assert response.json() == {"items_requeued": 0, "items_failed": 0, "runs_failed": 0}


# ---------------------------------------------------------------------------
# Crawler
# ---------------------------------------------------------------------------


class TestCrawlerEndpoints:
    def test_run_executes_in_background_and_is_listed(self, client, db) -> None:
        CrawlCandidateRepository(db).add_candidates(["Artist A"])
        db.commit()

        response = client.post("/crawler/run")
        assert response.status_code == 202
        assert response.json()["trigger"] == "api"

        runs = client.get("/crawler/runs").json()["runs"]
        assert len(runs) == 1
        assert runs[0]["status"] == "completed"
        assert runs[0]["result_payload"]["queued"] == 1
        assert ImportQueueRepository(db).existing_external_ids(["321"]) == {"321"}

    def test_runs_can_be_filtered_by_status(self, client) -> None:
        client.post("/crawler/run")
        assert client.get("/crawler/runs", params={"status": "failed"}).json()["runs"] == []
