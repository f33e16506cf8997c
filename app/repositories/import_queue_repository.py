"""
app/repositories/import_queue_repository.py

Persistence layer for the durable import queue.

Methods flush but never commit; the calling service owns the transaction.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from app.domain.import_queue import (
    TERMINAL_STATUSES,
    ClaimedItem,
    FoundItem,
    InvalidStatusTransitionError,
    StaleRecoveryResult,
    ensure_transition,
)
from db.base import utcnow
from db.models.import_queue_item import ImportQueueItem, QueueItemStatus

logger = logging.getLogger(__name__)

_LOOKUP_CHUNK_SIZE = 500
_STALE_RECOVERY_MESSAGE = "StaleClaimError: processing attempt exceeded the stale threshold."


class ImportQueueRepository:
    """
    Repository for enqueueing, claiming and transitioning queue items.
    """

    def __init__(
        self,
        session: Session,
        *,
        default_max_retries: int = 3,
        claim_attempts: int = 3,
    ) -> None:
        self._session = session
        self._default_max_retries = max(1, default_max_retries)
        self._claim_attempts = max(1, claim_attempts)

    def enqueue(self, items: Sequence[FoundItem]) -> int:
        """
        Insert new pending items; rows whose external_id already exists are ignored.

        Returns the number of rows actually inserted.
        """

        if not items:
            return 0

        seen: set[str] = set()
        now = utcnow()
        payloads: list[dict[str, Any]] = []
        for item in items:
            if item.external_id in seen:
                continue
            seen.add(item.external_id)
            # Distinct created_at values keep claim order equal to enqueue order.
            created_at = now + timedelta(microseconds=len(payloads))
            payloads.append(
                {
                    "id": uuid.uuid4(),
                    "external_id": item.external_id,
                    "aggregate_id": item.aggregate_id,
                    "artist": item.artist,
                    "title": item.title,
                    "year": item.year,
                    "format": item.format,
                    "label": item.label,
                    "country": item.country,
                    "catalog_number": item.catalog_number,
                    "attributes": dict(item.attributes) if item.attributes else None,
                    "status": QueueItemStatus.PENDING,
                    "retry_count": 0,
                    "max_retries": self._default_max_retries,
                    "created_at": created_at,
                    "updated_at": created_at,
                }
            )

        insert = postgresql_insert if self._dialect_name() == "postgresql" else sqlite_insert
        stmt = (
            insert(ImportQueueItem)
            .values(payloads)
            .on_conflict_do_nothing(index_elements=["external_id"])
            .returning(ImportQueueItem.id)
        )
        return len(self._session.execute(stmt).all())

    def claim_batch(self, limit: int) -> list[ClaimedItem]:
        """
        Atomically move up to `limit` of the oldest pending items to processing.

        Each row is claimed with a conditional UPDATE guarded by
        `status = 'pending'`, so two concurrent claimers can never both win the
        same row. Rows lost to another claimer are replaced by re-selecting,
        up to `claim_attempts` rounds.
        """

        limit = max(0, limit)
        if limit == 0:
            return []

        claimed_ids: list[uuid.UUID] = []
        now = utcnow()
        for _ in range(self._claim_attempts):
            wanted = limit - len(claimed_ids)
            if wanted <= 0:
                break

            candidate_ids = list(
                self._session.scalars(
                    select(ImportQueueItem.id)
                    .where(ImportQueueItem.status == QueueItemStatus.PENDING)
                    .order_by(ImportQueueItem.created_at.asc(), ImportQueueItem.id.asc())
                    .limit(wanted)
                    .with_for_update(skip_locked=True)
                ).all()
            )
            if not candidate_ids:
                break

            lost = 0
            for item_id in candidate_ids:
                result = self._session.execute(
                    update(ImportQueueItem)
                    .where(
                        ImportQueueItem.id == item_id,
                        ImportQueueItem.status == QueueItemStatus.PENDING,
                    )
                    .values(status=QueueItemStatus.PROCESSING, claimed_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed_ids.append(item_id)
                else:
                    lost += 1

            if lost == 0:
                break
            logger.debug("Claim race lost rows=%s; re-selecting", lost)

        if not claimed_ids:
            return []

        rows = self._session.scalars(
            select(ImportQueueItem)
            .where(ImportQueueItem.id.in_(claimed_ids))
            .execution_options(populate_existing=True)
        ).all()
        by_id = {row.id: row for row in rows}
        return [_to_claimed_item(by_id[item_id]) for item_id in claimed_ids if item_id in by_id]

    def mark_terminal(
        self,
        item_id: uuid.UUID,
        status: QueueItemStatus,
        *,
        error_message: str | None = None,
        artifact_refs: dict[str, Any] | None = None,
    ) -> bool:
        """
        Move an item to completed, failed or skipped.

        Returns False when the item does not exist. Raises
        InvalidStatusTransitionError when the item's current status does not
        allow the change.
        """

        item = self._lock_item(item_id)
        if item is None:
            return False
        if status not in TERMINAL_STATUSES:
            raise InvalidStatusTransitionError(item.status, status)
        ensure_transition(item.status, status)

        now = utcnow()
        item.status = status
        item.processed_at = now
        item.claimed_at = None
        item.error_message = error_message
        if artifact_refs is not None:
            item.artifact_refs = artifact_refs
        self._session.flush()
        return True

    def increment_retry(self, item_id: uuid.UUID, error_message: str) -> int:
        """
        Record a transient failure on a processing item and return the new retry count.

        Below the item's cap the item returns to pending; at the cap it is
        failed in the same flush, so the item never re-enters the queue with
        an exhausted budget.
        """

        item = self._lock_item(item_id)
        if item is None:
            raise LookupError(f"Queue item {item_id} not found.")
        new_count = item.retry_count + 1
        target = QueueItemStatus.FAILED if new_count >= item.max_retries else QueueItemStatus.PENDING
        ensure_transition(item.status, target)

        item.retry_count = new_count
        item.status = target
        item.error_message = error_message
        item.claimed_at = None
        if target == QueueItemStatus.FAILED:
            item.processed_at = utcnow()
        self._session.flush()
        return new_count

    def recover_stale(self, older_than: datetime) -> StaleRecoveryResult:
        """
        Release processing items whose claim is older than `older_than`.

        Abandoned claims consume one retry, exactly like a transient failure.
        """

        stale = list(
            self._session.scalars(
                select(ImportQueueItem)
                .where(
                    ImportQueueItem.status == QueueItemStatus.PROCESSING,
                    ImportQueueItem.claimed_at < older_than,
                )
                .order_by(ImportQueueItem.claimed_at.asc())
                .with_for_update(skip_locked=True)
                .execution_options(populate_existing=True)
            ).all()
        )

        requeued = 0
        failed = 0
        for item in stale:
            new_count = self.increment_retry(item.id, _STALE_RECOVERY_MESSAGE)
            if new_count >= item.max_retries:
                failed += 1
            else:
                requeued += 1
        return StaleRecoveryResult(items_requeued=requeued, items_failed=failed)

    def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in QueueItemStatus}
        rows = self._session.execute(
            select(ImportQueueItem.status, func.count()).group_by(ImportQueueItem.status)
        ).all()
        for status, total in rows:
            key = status.value if isinstance(status, QueueItemStatus) else str(status)
            counts[key] = int(total)
        return counts

    def count_pending(self) -> int:
        return int(
            self._session.scalar(
                select(func.count())
                .select_from(ImportQueueItem)
                .where(ImportQueueItem.status == QueueItemStatus.PENDING)
            )
            or 0
        )

    def get(self, item_id: uuid.UUID) -> ImportQueueItem | None:
        return self._session.get(ImportQueueItem, item_id, populate_existing=True)

    def list_items(
        self,
        *,
        status: QueueItemStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ImportQueueItem]:
        stmt = select(ImportQueueItem)
        if status is not None:
            stmt = stmt.where(ImportQueueItem.status == status)
        stmt = (
            stmt.order_by(ImportQueueItem.created_at.desc())
            .offset(max(0, offset))
            .limit(max(1, limit))
        )
        return list(self._session.scalars(stmt).all())

    def list_recent_errors(self, limit: int = 20) -> list[ImportQueueItem]:
        stmt = (
            select(ImportQueueItem)
            .where(ImportQueueItem.error_message.is_not(None))
            .order_by(ImportQueueItem.updated_at.desc())
            .limit(max(1, limit))
        )
        return list(self._session.scalars(stmt).all())

    def existing_external_ids(self, external_ids: Iterable[str]) -> set[str]:
        """
        Return the subset of `external_ids` already present in the queue, any status.
        """

        unique_ids = sorted({str(value) for value in external_ids})
        found: set[str] = set()
        for start in range(0, len(unique_ids), _LOOKUP_CHUNK_SIZE):
            chunk = unique_ids[start : start + _LOOKUP_CHUNK_SIZE]
            found.update(
                self._session.scalars(
                    select(ImportQueueItem.external_id).where(ImportQueueItem.external_id.in_(chunk))
                ).all()
            )
        return found

    def _lock_item(self, item_id: uuid.UUID) -> ImportQueueItem | None:
        return self._session.scalars(
            select(ImportQueueItem)
            .where(ImportQueueItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).one_or_none()

    def _dialect_name(self) -> str:
        return self._session.get_bind().dialect.name


def _to_claimed_item(row: ImportQueueItem) -> ClaimedItem:
    return ClaimedItem(
        id=row.id,
        external_id=row.external_id,
        retry_count=row.retry_count,
        max_retries=row.max_retries,
        artist=row.artist,
        title=row.title,
        year=row.year,
        format=row.format,
        label=row.label,
        country=row.country,
        catalog_number=row.catalog_number,
        attributes=dict(row.attributes or {}),
    )
