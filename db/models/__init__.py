"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.batch_run import BatchRun, BatchRunStatus
from db.models.crawl_candidate import CrawlCandidate
from db.models.crawl_run import CrawlRun, CrawlRunStatus, CrawlRunTrigger
from db.models.import_queue_item import ImportQueueItem, QueueItemStatus

__all__ = [
    "BatchRun",
    "BatchRunStatus",
    "CrawlCandidate",
    "CrawlRun",
    "CrawlRunStatus",
    "CrawlRunTrigger",
    "ImportQueueItem",
    "QueueItemStatus",
]
