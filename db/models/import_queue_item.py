"""
db/models/import_queue_item.py

Durable unit of catalog import work tracked through a status state machine.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONDocument, TimestampMixin


class QueueItemStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ImportQueueItem(Base, TimestampMixin):
    __tablename__ = "import_queue_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    external_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Concrete catalog identifier (release id)",
    )
    aggregate_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Grouping (master) identifier the item was resolved from",
    )
    artist: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    format: Mapped[str | None] = mapped_column(String(255), nullable=True)
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    country: Mapped[str | None] = mapped_column(String(120), nullable=True)
    catalog_number: Mapped[str | None] = mapped_column(String(120), nullable=True)
    attributes: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Opaque source-specific descriptive fields",
    )
    status: Mapped[QueueItemStatus] = mapped_column(
        Enum(
            QueueItemStatus,
            name="import_queue_item_status",
            native_enum=False,
            length=32,
            values_callable=lambda members: [member.value for member in members],
            validate_strings=True,
        ),
        nullable=False,
        default=QueueItemStatus.PENDING,
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Start of the current processing attempt",
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    artifact_refs: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="References to artifacts produced by content generation",
    )

    __table_args__ = (
        UniqueConstraint("external_id", name="uq_import_queue_items_external_id"),
        Index("ix_import_queue_items_status_created_at", "status", "created_at"),
        Index("ix_import_queue_items_status_claimed_at", "status", "claimed_at"),
    )
