"""
app/domain/import_queue.py

Domain models and the status state machine for the import queue.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from db.models.batch_run import BatchRunStatus
from db.models.import_queue_item import QueueItemStatus

ERROR_MESSAGE_MAX_LENGTH = 2000

TERMINAL_STATUSES = frozenset(
    {QueueItemStatus.COMPLETED, QueueItemStatus.FAILED, QueueItemStatus.SKIPPED}
)

ALLOWED_TRANSITIONS: dict[QueueItemStatus, frozenset[QueueItemStatus]] = {
    QueueItemStatus.PENDING: frozenset({QueueItemStatus.PROCESSING, QueueItemStatus.SKIPPED}),
    QueueItemStatus.PROCESSING: frozenset(
        {
            QueueItemStatus.COMPLETED,
            QueueItemStatus.FAILED,
            QueueItemStatus.SKIPPED,
            QueueItemStatus.PENDING,
        }
    ),
    QueueItemStatus.COMPLETED: frozenset(),
    QueueItemStatus.FAILED: frozenset(),
    QueueItemStatus.SKIPPED: frozenset(),
}


class InvalidStatusTransitionError(ValueError):
    """
    Raised when a queue item status change is not permitted.
    """

    def __init__(self, current: QueueItemStatus, target: QueueItemStatus) -> None:
        super().__init__(f"Transition {current.value} -> {target.value} is not allowed.")
        self.current = current
        self.target = target


def ensure_transition(current: QueueItemStatus, target: QueueItemStatus) -> None:
    """
    Validate one status change against the transition table.
    """

    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransitionError(current, target)


def format_error_message(exc: BaseException) -> str:
    """
    Render an exception as "Type: message" for persistence, without traces.
    """

    return f"{type(exc).__name__}: {exc}"[:ERROR_MESSAGE_MAX_LENGTH]


@dataclass(frozen=True)
class FoundItem:
    """
    A concrete catalog item discovered by the crawler, not yet enqueued.
    """

    external_id: str
    aggregate_id: str | None = None
    artist: str | None = None
    title: str | None = None
    year: int | None = None
    format: str | None = None
    label: str | None = None
    country: str | None = None
    catalog_number: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ClaimedItem:
    """
    Snapshot of a queue item handed to a worker after a successful claim.
    """

    id: uuid.UUID
    external_id: str
    retry_count: int
    max_retries: int
    artist: str | None = None
    title: str | None = None
    year: int | None = None
    format: str | None = None
    label: str | None = None
    country: str | None = None
    catalog_number: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)


class OutcomeKind(str, enum.Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    RETRY_SCHEDULED = "retry_scheduled"


@dataclass(frozen=True)
class ItemOutcome:
    """
    Result of processing one claimed item.
    """

    item_id: uuid.UUID
    external_id: str
    kind: OutcomeKind
    error_message: str | None = None
    artifact_refs: dict[str, Any] | None = None

    @property
    def is_error(self) -> bool:
        return self.kind in {OutcomeKind.FAILED, OutcomeKind.RETRY_SCHEDULED}


@dataclass(frozen=True)
class CrawlSummary:
    """
    Aggregate counts for one crawl cycle.
    """

    candidates_processed: int = 0
    items_found: int = 0
    new_items: int = 0
    queued: int = 0
    duplicates_skipped: int = 0
    api_errors: int = 0
    unresolved_aggregates: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "candidates_processed": self.candidates_processed,
            "items_found": self.items_found,
            "new_items": self.new_items,
            "queued": self.queued,
            "duplicates_skipped": self.duplicates_skipped,
            "api_errors": self.api_errors,
            "unresolved_aggregates": self.unresolved_aggregates,
        }


@dataclass(frozen=True)
class StaleRecoveryResult:
    """
    Items and runs released by one recovery sweep.
    """

    items_requeued: int = 0
    items_failed: int = 0
    runs_failed: int = 0


@dataclass(frozen=True)
class BatchRunStatusView:
    """
    Read-only projection of the latest batch run plus live queue counts.
    """

    status: BatchRunStatus
    run_id: uuid.UUID | None = None
    pipeline_name: str | None = None
    batch_size: int | None = None
    cooldown_seconds: float | None = None
    total_items: int = 0
    processed_items: int = 0
    successful_items: int = 0
    failed_items: int = 0
    skipped_items: int = 0
    retried_items: int = 0
    current_batch: int = 0
    stop_requested: bool = False
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_heartbeat_at: datetime | None = None
    error_message: str | None = None
    recent_failures: list[dict[str, Any]] = field(default_factory=list)
    queue_counts: dict[str, int] = field(default_factory=dict)
