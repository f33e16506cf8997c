"""
app/services/deduplication_gate.py

Drops found items that are already published or already queued.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy.orm import Session

from app.domain.import_queue import FoundItem
from app.repositories.canonical_store import CanonicalStore
from app.repositories.import_queue_repository import ImportQueueRepository

logger = logging.getLogger(__name__)


class DeduplicationGate:
    def __init__(self, *, canonical_store: CanonicalStore) -> None:
        self._canonical_store = canonical_store

    def filter_new(self, db: Session, items: Sequence[FoundItem]) -> list[FoundItem]:
        """
        Return items whose external id is in neither the canonical store nor
        the import queue (any status), first occurrence only, input order kept.
        """

        if not items:
            return []

        external_ids = {item.external_id for item in items}
        published = self._canonical_store.existing_external_ids(db, external_ids)
        queued = ImportQueueRepository(db).existing_external_ids(external_ids)
        known = published | queued

        survivors: list[FoundItem] = []
        seen: set[str] = set()
        for item in items:
            if item.external_id in known or item.external_id in seen:
                continue
            seen.add(item.external_id)
            survivors.append(item)

        logger.info(
            "Deduplication finished input=%s published=%s queued=%s new=%s",
            len(items),
            len(published),
            len(queued),
            len(survivors),
        )
        return survivors
