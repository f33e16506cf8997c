"""
app/repositories/crawl_candidate_repository.py

Persistence layer for crawl candidates (the search subjects of crawl cycles).
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.base import utcnow
from db.models.crawl_candidate import CrawlCandidate


class CrawlCandidateRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def select_candidates(self, limit: int) -> list[CrawlCandidate]:
        """
        Active candidates, least recently crawled first; never-crawled ones lead.
        """

        stmt = (
            select(CrawlCandidate)
            .where(CrawlCandidate.is_active.is_(True))
            .order_by(
                CrawlCandidate.last_crawled_at.asc().nulls_first(),
                CrawlCandidate.name.asc(),
            )
            .limit(max(1, limit))
        )
        return list(self._session.scalars(stmt).all())

    def record_attempt(self, candidate_id: uuid.UUID, *, found: bool) -> CrawlCandidate | None:
        candidate = self._session.get(CrawlCandidate, candidate_id)
        if candidate is None:
            return None
        candidate.last_crawled_at = utcnow()
        if found:
            candidate.items_found_count += 1
        self._session.flush()
        return candidate

    def add_candidates(self, names: Iterable[str]) -> int:
        """
        Insert candidates that do not exist yet. Returns the number added.
        """

        cleaned: list[str] = []
        for name in names:
            stripped = name.strip()
            if stripped and stripped not in cleaned:
                cleaned.append(stripped)
        if not cleaned:
            return 0

        existing = set(
            self._session.scalars(select(CrawlCandidate.name).where(CrawlCandidate.name.in_(cleaned))).all()
        )
        added = 0
        for name in cleaned:
            if name in existing:
                continue
            self._session.add(CrawlCandidate(name=name, is_active=True, items_found_count=0))
            added += 1
        self._session.flush()
        return added
