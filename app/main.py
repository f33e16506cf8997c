from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

logger = logging.getLogger(__name__)

_DATABASE_URL_NAMES = ("DATABASE_URL", "CLOUD_DATABASE_URL", "LOCAL_DATABASE_URL")
_REQUIRED_SETTINGS = ("CATALOG_API_TOKEN", "GENERATION_URL")
_POSITIVE_INT_SETTINGS = (
    "IMPORT_BATCH_SIZE",
    "IMPORT_MAX_BATCH_SIZE",
    "IMPORT_MAX_RETRIES",
    "CRAWLER_CANDIDATE_LIMIT",
    "CRAWLER_MAX_ENQUEUE",
)


def _validate_env() -> None:
    """
    Check required environment variables before anything connects anywhere.

    Every problem is collected and raised together so one restart is enough
    to fix a misconfigured deployment:
    - a database URL must be configured under one of the accepted names;
    - CATALOG_API_TOKEN is required, anonymous catalog clients are throttled
      far below the rate the crawler and the batch pipeline need;
    - GENERATION_URL is required for the content-generation collaborator;
    - batch and crawl sizing variables, when set, must be positive integers.
    """

    from db.config import load_env_files

    load_env_files()

    errors: list[str] = []

    if not any(os.getenv(name, "").strip() for name in _DATABASE_URL_NAMES):
        errors.append(f"No database URL configured. Set one of {', '.join(_DATABASE_URL_NAMES)}.")

    for name in _REQUIRED_SETTINGS:
        if not os.getenv(name, "").strip():
            errors.append(f"{name} is not set. Empty strings are not permitted.")

    for name in _POSITIVE_INT_SETTINGS:
        raw = os.getenv(name)
        if raw is not None and not (raw.strip().isdigit() and int(raw.strip()) > 0):
            errors.append(f"{name}='{raw}' is not a positive integer.")

    if errors:
        raise RuntimeError(
            "Startup validation failed, missing or invalid environment variables:\n"
            + "\n".join(f"  - {error}" for error in errors)
        )


def _configure_logging() -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] [%(threadName)s] %(message)s",
    )
    # Connection-pool chatter from the catalog client drowns batch logs at INFO.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _verify_database() -> None:
    """
    Fail startup when the database is unreachable or a mapped table is missing.

    Migrations are never applied here; the operator runs `alembic upgrade head`.
    """

    from sqlalchemy import inspect, text

    import db.models  # noqa: F401  registers all ORM models on Base.metadata
    from db.base import Base
    from db.session import get_engine

    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
            present = set(inspect(connection).get_table_names())
    except Exception as exc:
        raise RuntimeError("Database unavailable.") from exc
    logger.info("Database connectivity confirmed")

    missing = sorted(set(Base.metadata.tables) - present)
    if missing:
        logger.critical(
            "Schema mismatch: table(s) %s are absent from the database. "
            "Run 'alembic upgrade head' and restart.",
            ", ".join(missing),
        )
        raise RuntimeError(f"Schema mismatch: missing table(s) {', '.join(missing)}. Run migrations and restart.")
    logger.info("Database schema validated")


def _recover_stale_work() -> None:
    from app.services.recovery_service import get_recovery_service
    from db.session import SessionLocal

    with SessionLocal() as db:
        get_recovery_service().sweep(db)


def _stop_local_batch_runs() -> None:
    from app.services.batch_orchestrator import get_batch_orchestrator

    # Nothing to stop unless this process built the orchestrator.
    if get_batch_orchestrator.cache_info().currsize:
        get_batch_orchestrator().shutdown()


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    _verify_database()
    # Items and runs a previous process left behind are released before new work starts.
    _recover_stale_work()

    from app.config import get_scheduler_settings

    scheduler = None
    if get_scheduler_settings().enabled:
        from app.scheduler.jobs import build_scheduler

        scheduler = build_scheduler()
        scheduler.start()
        logger.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=True)
            logger.info("Scheduler shut down")
        _stop_local_batch_runs()


def create_app() -> FastAPI:
    _validate_env()
    _configure_logging()

    application = FastAPI(
        title="Catalog Import Pipeline API",
        version="1.0.0",
        lifespan=_lifespan,
    )

    from app.api.routers import (
        batch_orchestrator_router,
        crawler_router,
        import_queue_router,
    )

    for router in (crawler_router, import_queue_router, batch_orchestrator_router):
        application.include_router(router)

    @application.get("/health")
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return application


app = create_app()
