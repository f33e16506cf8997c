"""
app/schemas package marker.
"""

from app.schemas.import_pipeline import (
    BatchRunResponse,
    BatchStartRequest,
    BatchStatusResponse,
    CrawlRunListResponse,
    CrawlRunResponse,
    QueueItemListResponse,
    QueueItemResponse,
    QueueStatsResponse,
    RecoveryResponse,
)

__all__ = [
    "BatchRunResponse",
    "BatchStartRequest",
    "BatchStatusResponse",
    "CrawlRunListResponse",
    "CrawlRunResponse",
    "QueueItemListResponse",
    "QueueItemResponse",
    "QueueStatsResponse",
    "RecoveryResponse",
]
