"""
Schemas for crawler, import queue and batch orchestration endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class BatchStartRequest(BaseModel):
    batch_size: int | None = Field(default=None, ge=1, description="Items per batch, clamped to the configured maximum")
    cooldown_seconds: float | None = Field(default=None, ge=0, description="Pause between batches")


class BatchRunResponse(BaseModel):
    run_id: UUID
    pipeline_name: str
    status: str
    batch_size: int
    cooldown_seconds: float
    total_items: int
    stop_requested: bool
    created_at: datetime


class RecentFailure(BaseModel):
    item_id: str
    external_id: str
    error: str | None = None
    outcome: str
    at: str


class BatchStatusResponse(BaseModel):
    status: str
    run_id: UUID | None = None
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
    recent_failures: list[RecentFailure] = Field(default_factory=list)
    queue_counts: dict[str, int] = Field(default_factory=dict)


class QueueStatsResponse(BaseModel):
    counts: dict[str, int]
    total: int


class QueueItemResponse(BaseModel):
    id: UUID
    external_id: str
    aggregate_id: str | None = None
    artist: str | None = None
    title: str | None = None
    year: int | None = None
    format: str | None = None
    label: str | None = None
    country: str | None = None
    catalog_number: str | None = None
    status: str
    retry_count: int
    max_retries: int
    error_message: str | None = None
    claimed_at: datetime | None = None
    processed_at: datetime | None = None
    artifact_refs: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class QueueItemListResponse(BaseModel):
    items: list[QueueItemResponse] = Field(default_factory=list)


class RecoveryResponse(BaseModel):
    items_requeued: int
    items_failed: int
    runs_failed: int


class CrawlRunResponse(BaseModel):
    run_id: UUID
    trigger: str
    status: str
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result_payload: dict[str, Any] | None = None
    error_message: str | None = None


class CrawlRunListResponse(BaseModel):
    runs: list[CrawlRunResponse] = Field(default_factory=list)
