"""
db/models/crawl_run.py

Job-tracking rows for crawl cycles triggered by the API, scheduler or CLI.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONDocument, TimestampMixin


class CrawlRunTrigger:
    API = "api"
    SCHEDULER = "scheduler"
    CLI = "cli"


class CrawlRunStatus:
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CrawlRun(Base, TimestampMixin):
    __tablename__ = "crawl_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    trigger: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="api, scheduler, cli",
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=CrawlRunStatus.PENDING,
    )
    result_payload: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Crawl cycle summary",
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_crawl_runs_status", "status"),
        Index("ix_crawl_runs_created_at", "created_at"),
    )
