"""
app/services/crawler_service.py

Crawl cycle: search the catalog per candidate, pick one matching item,
deduplicate and enqueue.
"""

from __future__ import annotations

import logging
import random
import re
import threading
import time
from collections.abc import Callable, Iterable
from functools import lru_cache

from sqlalchemy.orm import Session

from app.config import (
    CrawlerSettings,
    get_batch_settings,
    get_canonical_store_settings,
    get_crawler_settings,
)
from app.connectors.catalog_connector import CatalogConnector, CatalogError, get_catalog_connector
from app.domain.catalog import CatalogReleaseDetail, CatalogSearchResult
from app.domain.import_queue import CrawlSummary, FoundItem
from app.logging_utils import log_duration, log_event
from app.repositories.canonical_store import SQLCanonicalStore
from app.repositories.crawl_candidate_repository import CrawlCandidateRepository
from app.repositories.import_queue_repository import ImportQueueRepository
from app.services.candidate_selector import CandidateSelector
from app.services.deduplication_gate import DeduplicationGate
from db.models.crawl_candidate import CrawlCandidate

logger = logging.getLogger(__name__)

_TOKEN_SPLIT = re.compile(r"[\s,]+")


class CrawlAlreadyRunningError(RuntimeError):
    """
    Raised when a crawl cycle is requested while another one is in progress.
    """


class UnresolvedAggregateError(CatalogError):
    """
    An aggregate pick could not be mapped to a concrete item; the pick is dropped.
    """


def format_tokens(formats: Iterable[str]) -> set[str]:
    tokens: set[str] = set()
    for value in formats:
        tokens.update(token for token in _TOKEN_SPLIT.split(value.lower()) if token)
    return tokens


class CrawlerService:
    """
    Runs crawl cycles over the least recently crawled candidates.
    """

    def __init__(
        self,
        *,
        catalog: CatalogConnector,
        selector: CandidateSelector,
        gate: DeduplicationGate,
        settings: CrawlerSettings,
        queue_max_retries: int = 3,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._catalog = catalog
        self._selector = selector
        self._gate = gate
        self._settings = settings
        self._queue_max_retries = queue_max_retries
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._whitelist = frozenset(settings.format_whitelist)
        self._blacklist = frozenset(settings.format_blacklist)
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def accepts_formats(self, formats: Iterable[str]) -> bool:
        """
        A result qualifies with at least one whitelisted and no blacklisted token.
        """

        tokens = format_tokens(formats)
        return bool(tokens & self._whitelist) and not tokens & self._blacklist

    def crawl(self, db: Session) -> CrawlSummary:
        if not self._lock.acquire(blocking=False):
            raise CrawlAlreadyRunningError("A crawl cycle is already running.")
        try:
            with log_duration(logger, "crawl_cycle") as counters:
                summary = self._crawl(db)
                counters.update(summary.as_dict())
            return summary
        finally:
            self._lock.release()

    def _crawl(self, db: Session) -> CrawlSummary:
        candidates = self._selector.select_candidates(db, self._settings.candidate_limit)
        log_event(logger, logging.INFO, "crawl_started", candidates=len(candidates))

        candidate_repository = CrawlCandidateRepository(db)
        found: list[FoundItem] = []
        api_errors = 0
        unresolved = 0

        for candidate in candidates:
            candidate_id = candidate.id
            candidate_name = candidate.name
            item: FoundItem | None = None
            try:
                item = self._crawl_candidate(candidate)
            except UnresolvedAggregateError as exc:
                unresolved += 1
                self._handle_catalog_error(candidate_name, exc)
            except CatalogError as exc:
                api_errors += 1
                self._handle_catalog_error(candidate_name, exc)
            except Exception as exc:  # noqa: BLE001  one candidate never aborts the cycle
                api_errors += 1
                log_event(
                    logger,
                    logging.ERROR,
                    "crawl_candidate_crashed",
                    candidate=candidate_name,
                    error=f"{type(exc).__name__}: {exc}",
                )

            if item is not None:
                found.append(item)
            candidate_repository.record_attempt(candidate_id, found=item is not None)
            db.commit()

        new_items = self._gate.filter_new(db, found)
        to_queue = new_items[: self._settings.max_enqueue]
        queue_repository = ImportQueueRepository(db, default_max_retries=self._queue_max_retries)
        queued = queue_repository.enqueue(to_queue)
        db.commit()

        summary = CrawlSummary(
            candidates_processed=len(candidates),
            items_found=len(found),
            new_items=len(new_items),
            queued=queued,
            duplicates_skipped=len(found) - len(new_items),
            api_errors=api_errors,
            unresolved_aggregates=unresolved,
        )
        return summary

    def _handle_catalog_error(self, candidate_name: str, exc: CatalogError) -> None:
        # No same-cycle retry; a retryable error only slows the cycle down.
        log_event(
            logger,
            logging.WARNING,
            "crawl_candidate_failed",
            candidate=candidate_name,
            error=f"{type(exc).__name__}: {exc}",
            retryable=exc.retryable,
        )
        if exc.retryable and self._settings.backoff_seconds > 0:
            self._sleep(self._settings.backoff_seconds)

    def _crawl_candidate(self, candidate: CrawlCandidate) -> FoundItem | None:
        results = self._catalog.search(
            candidate.name,
            filters={
                "type": self._settings.search_type,
                "format": self._settings.search_format,
                "per_page": self._settings.search_per_page,
            },
        )
        accepted = [result for result in results if self.accepts_formats(result.formats)]
        if not accepted:
            logger.info("No qualifying catalog results candidate=%s results=%s", candidate.name, len(results))
            return None

        pick = self._rng.choice(accepted)
        external_id = pick.id
        aggregate_id: str | None = None
        if pick.is_aggregate:
            try:
                external_id = self._catalog.resolve_aggregate(pick.id)
            except CatalogError as exc:
                raise UnresolvedAggregateError(
                    f"aggregate {pick.id} could not be resolved ({exc})",
                    status=exc.status,
                    retryable=exc.retryable,
                ) from exc
            aggregate_id = pick.id

        detail = self._catalog.fetch_detail(external_id)
        return _to_found_item(candidate.name, pick, detail, aggregate_id)


def _to_found_item(
    candidate_name: str,
    pick: CatalogSearchResult,
    detail: CatalogReleaseDetail,
    aggregate_id: str | None,
) -> FoundItem:
    return FoundItem(
        external_id=detail.id,
        aggregate_id=aggregate_id or _as_aggregate_id(detail.raw.get("master_id")),
        artist=detail.artist or candidate_name,
        title=detail.title or pick.title,
        year=detail.year or pick.year,
        format=", ".join(detail.formats) if detail.formats else ", ".join(pick.formats) or None,
        label=detail.label or pick.label,
        country=detail.country or pick.country,
        catalog_number=detail.catalog_number or pick.catalog_number,
        attributes={
            "genres": list(detail.genres),
            "styles": list(detail.styles),
            "candidate": candidate_name,
        },
    )


def _as_aggregate_id(value: object) -> str | None:
    if value is None or str(value).strip() in {"", "0"}:
        return None
    return str(value).strip()


@lru_cache(maxsize=1)
def get_crawler_service() -> CrawlerService:
    crawler_settings = get_crawler_settings()
    store_settings = get_canonical_store_settings()
    return CrawlerService(
        catalog=get_catalog_connector(),
        selector=CandidateSelector(default_limit=crawler_settings.candidate_limit),
        gate=DeduplicationGate(
            canonical_store=SQLCanonicalStore(
                table_name=store_settings.table_name,
                id_column=store_settings.id_column,
                id_type=store_settings.id_type,
                scope_column=store_settings.scope_column,
                scope_value=store_settings.scope_value,
            )
        ),
        settings=crawler_settings,
        queue_max_retries=get_batch_settings().max_retries,
    )
