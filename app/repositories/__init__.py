"""
app/repositories package marker.
"""

from app.repositories.batch_run_repository import BatchRunRepository
from app.repositories.canonical_store import CanonicalStore, SQLCanonicalStore
from app.repositories.crawl_candidate_repository import CrawlCandidateRepository
from app.repositories.import_queue_repository import ImportQueueRepository

__all__ = [
    "BatchRunRepository",
    "CanonicalStore",
    "CrawlCandidateRepository",
    "ImportQueueRepository",
    "SQLCanonicalStore",
]
