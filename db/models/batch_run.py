"""
db/models/batch_run.py

Persistent state of one batch orchestrator execution.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Enum, Float, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONDocument, TimestampMixin


class BatchRunStatus(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchRun(Base, TimestampMixin):
    __tablename__ = "batch_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    pipeline_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[BatchRunStatus] = mapped_column(
        Enum(
            BatchRunStatus,
            name="batch_run_status",
            native_enum=False,
            length=32,
            values_callable=lambda members: [member.value for member in members],
            validate_strings=True,
        ),
        nullable=False,
        default=BatchRunStatus.RUNNING,
    )
    batch_size: Mapped[int] = mapped_column(Integer, nullable=False)
    cooldown_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    total_items: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Pending queue depth when the run started",
    )
    processed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retried_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_batch: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stop_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_heartbeat_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    recent_failures: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Most recent per-item failures, newest first",
    )

    __table_args__ = (
        Index("ix_batch_runs_pipeline_created_at", "pipeline_name", "created_at"),
        Index(
            "uq_batch_runs_single_running",
            "pipeline_name",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
    )
