"""
app/services/recovery_service.py

Sweep that releases work abandoned by crashed workers or processes.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache

from sqlalchemy.orm import Session

from app.config import BatchSettings, get_batch_settings
from app.domain.import_queue import StaleRecoveryResult
from app.logging_utils import log_event
from app.repositories.batch_run_repository import BatchRunRepository
from app.repositories.import_queue_repository import ImportQueueRepository
from db.base import utcnow

logger = logging.getLogger(__name__)


class RecoveryService:
    """
    Stale processing items are treated as a transient failure (one retry
    consumed); running batch runs without a recent heartbeat are failed so a
    new run can start.
    """

    def __init__(self, *, settings: BatchSettings) -> None:
        self._settings = settings

    def sweep(self, db: Session) -> StaleRecoveryResult:
        now = utcnow()
        item_cutoff = now - timedelta(seconds=self._settings.item_stale_after_seconds)
        run_cutoff = now - timedelta(seconds=self._settings.run_stale_after_seconds)

        items = ImportQueueRepository(db).recover_stale(item_cutoff)
        runs_failed = BatchRunRepository(db).fail_stale_runs(run_cutoff)
        db.commit()

        result = StaleRecoveryResult(
            items_requeued=items.items_requeued,
            items_failed=items.items_failed,
            runs_failed=runs_failed,
        )
        log_event(
            logger,
            logging.INFO if not (result.items_requeued or result.items_failed or runs_failed) else logging.WARNING,
            "recovery_sweep_finished",
            items_requeued=result.items_requeued,
            items_failed=result.items_failed,
            runs_failed=result.runs_failed,
        )
        return result


@lru_cache(maxsize=1)
def get_recovery_service() -> RecoveryService:
    return RecoveryService(settings=get_batch_settings())
