"""
app/domain package marker.
"""

from app.domain.catalog import CatalogReleaseDetail, CatalogSearchResult
from app.domain.import_queue import (
    BatchRunStatusView,
    ClaimedItem,
    CrawlSummary,
    FoundItem,
    InvalidStatusTransitionError,
    ItemOutcome,
    OutcomeKind,
    StaleRecoveryResult,
)

__all__ = [
    "BatchRunStatusView",
    "CatalogReleaseDetail",
    "CatalogSearchResult",
    "ClaimedItem",
    "CrawlSummary",
    "FoundItem",
    "InvalidStatusTransitionError",
    "ItemOutcome",
    "OutcomeKind",
    "StaleRecoveryResult",
]
