"""
app/services/candidate_selector.py

Chooses which crawl candidates a crawl cycle visits.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from app.repositories.crawl_candidate_repository import CrawlCandidateRepository
from db.models.crawl_candidate import CrawlCandidate


class CandidateSelector:
    """
    Least-recently-crawled-first selection over active candidates.

    Every attempt refreshes `last_crawled_at`, so repeated cycles rotate
    through the whole active set without starving anyone.
    """

    def __init__(self, *, default_limit: int) -> None:
        self._default_limit = max(1, default_limit)

    def select_candidates(self, db: Session, limit: int | None = None) -> list[CrawlCandidate]:
        repository = CrawlCandidateRepository(db)
        return repository.select_candidates(limit if limit is not None else self._default_limit)
