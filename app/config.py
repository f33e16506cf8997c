"""
app/config.py

Application settings, read once per process from the environment.

Each settings group is a frozen dataclass behind an `lru_cache` getter so
services and FastAPI dependencies share one instance. Values that fail to
parse fall back to the dataclass default instead of aborting startup;
`app.main._validate_env` is where malformed required values are reported.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import TypeVar

from db.config import load_env_files

T = TypeVar("T")

_TRUTHY = frozenset({"1", "true", "yes", "on"})


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    load_env_files()


def _read_env(name: str, default: T, parse: Callable[[str], T]) -> T:
    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return parse(raw_value.strip())
    except ValueError:
        return default


def _get_bool_env(name: str, default: bool) -> bool:
    return _read_env(name, default, lambda value: value.lower() in _TRUTHY)


def _get_int_env(name: str, default: int) -> int:
    return _read_env(name, default, int)


def _get_float_env(name: str, default: float) -> float:
    return _read_env(name, default, float)


def _get_str_env(name: str, default: str) -> str:
    return _read_env(name, default, str)


def _get_optional_str_env(name: str) -> str | None:
    return _read_env(name, None, str)


def _get_tokens_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """Comma-separated, lowercased tokens; blanks are dropped."""
    return _read_env(
        name,
        default,
        lambda value: tuple(token.strip().lower() for token in value.split(",") if token.strip()),
    )


@dataclass(frozen=True)
class CatalogHTTPSettings:
    """
    HTTP pacing and retry behaviour for the catalog client.
    """

    timeout_seconds: float = 15.0
    max_retries: int = 3
    backoff_initial_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    min_request_interval_seconds: float = 1.0


@dataclass(frozen=True)
class CatalogAPISettings:
    """
    External catalog endpoint and credential settings.
    """

    base_url: str = "https://api.discogs.com"
    token: str | None = None
    user_agent: str = "CatalogImportPipeline/1.0"
    search_path: str = "/database/search"
    search_query_param: str = "artist"
    detail_path: str = "/releases/{id}"
    aggregate_path: str = "/masters/{id}"
    aggregate_primary_key: str = "main_release"


@dataclass(frozen=True)
class CrawlerSettings:
    """
    Candidate selection and result filtering rules for crawl cycles.
    """

    candidate_limit: int = 20
    search_type: str = "release"
    search_format: str = "Vinyl"
    search_per_page: int = 50
    format_whitelist: tuple[str, ...] = ("lp", "album")
    format_blacklist: tuple[str, ...] = ("single", "ep", '7"', '12"')
    backoff_seconds: float = 2.0
    max_enqueue: int = 10


@dataclass(frozen=True)
class BatchSettings:
    """
    Batch orchestrator pacing, retry cap and recovery thresholds.
    """

    pipeline_name: str = "catalog_import"
    batch_size: int = 10
    max_batch_size: int = 50
    cooldown_seconds: float = 30.0
    max_retries: int = 3
    claim_attempts: int = 3
    recent_failures_limit: int = 20
    item_stale_after_seconds: float = 900.0
    run_stale_after_seconds: float = 1800.0

    def clamp_batch_size(self, requested: int | None) -> int:
        value = self.batch_size if requested is None else requested
        return min(max(1, value), self.max_batch_size)

    def clamp_cooldown(self, requested: float | None) -> float:
        value = self.cooldown_seconds if requested is None else requested
        return max(0.0, value)


@dataclass(frozen=True)
class GenerationSettings:
    """
    Content-generation collaborator endpoint settings.
    """

    url: str | None = None
    api_key: str | None = None
    timeout_seconds: float = 120.0
    default_price: float = 49.95


@dataclass(frozen=True)
class CanonicalStoreSettings:
    """
    Location of already-published items used for deduplication.

    Only rows whose `scope_column` equals `scope_value` count as published;
    `scope_column=None` matches every row. `id_type` is the native type of
    `id_column` ("integer" or "text") so lookups can use its index.
    """

    table_name: str = "platform_products"
    id_column: str = "discogs_id"
    id_type: str = "integer"
    scope_column: str | None = "media_type"
    scope_value: str = "art"


@dataclass(frozen=True)
class SchedulerSettings:
    """
    Periodic job toggles and intervals.
    """

    enabled: bool = True
    crawl_cron_minute: str = "0"
    crawl_cron_hour: str = "*"
    recovery_interval_minutes: int = 10
    batch_interval_minutes: int = 0


@lru_cache(maxsize=1)
def get_catalog_http_settings() -> CatalogHTTPSettings:
    """
    Return catalog HTTP settings from environment variables.
    """

    return CatalogHTTPSettings(
        timeout_seconds=max(1.0, _get_float_env("CATALOG_HTTP_TIMEOUT_SECONDS", 15.0)),
        max_retries=max(0, _get_int_env("CATALOG_HTTP_MAX_RETRIES", 3)),
        backoff_initial_seconds=max(0.1, _get_float_env("CATALOG_HTTP_BACKOFF_INITIAL_SECONDS", 1.0)),
        backoff_multiplier=max(1.0, _get_float_env("CATALOG_HTTP_BACKOFF_MULTIPLIER", 2.0)),
        min_request_interval_seconds=max(
            0.0, _get_float_env("CATALOG_MIN_REQUEST_INTERVAL_SECONDS", 1.0)
        ),
    )


@lru_cache(maxsize=1)
def get_catalog_api_settings() -> CatalogAPISettings:
    """
    Return catalog endpoint settings from environment variables.
    """

    return CatalogAPISettings(
        base_url=_get_str_env("CATALOG_API_BASE_URL", "https://api.discogs.com").rstrip("/"),
        token=_get_optional_str_env("CATALOG_API_TOKEN"),
        user_agent=_get_str_env("CATALOG_USER_AGENT", "CatalogImportPipeline/1.0"),
        search_path=_get_str_env("CATALOG_SEARCH_PATH", "/database/search"),
        search_query_param=_get_str_env("CATALOG_SEARCH_QUERY_PARAM", "artist"),
        detail_path=_get_str_env("CATALOG_DETAIL_PATH", "/releases/{id}"),
        aggregate_path=_get_str_env("CATALOG_AGGREGATE_PATH", "/masters/{id}"),
        aggregate_primary_key=_get_str_env("CATALOG_AGGREGATE_PRIMARY_KEY", "main_release"),
    )


@lru_cache(maxsize=1)
def get_crawler_settings() -> CrawlerSettings:
    """
    Return crawler settings from environment variables.
    """

    return CrawlerSettings(
        candidate_limit=max(1, _get_int_env("CRAWLER_CANDIDATE_LIMIT", 20)),
        search_type=_get_str_env("CRAWLER_SEARCH_TYPE", "release"),
        search_format=_get_str_env("CRAWLER_SEARCH_FORMAT", "Vinyl"),
        search_per_page=max(1, _get_int_env("CRAWLER_SEARCH_PER_PAGE", 50)),
        format_whitelist=_get_tokens_env("CRAWLER_FORMAT_WHITELIST", ("lp", "album")),
        format_blacklist=_get_tokens_env("CRAWLER_FORMAT_BLACKLIST", ("single", "ep", '7"', '12"')),
        backoff_seconds=max(0.0, _get_float_env("CRAWLER_BACKOFF_SECONDS", 2.0)),
        max_enqueue=max(1, _get_int_env("CRAWLER_MAX_ENQUEUE", 10)),
    )


@lru_cache(maxsize=1)
def get_batch_settings() -> BatchSettings:
    """
    Return batch orchestrator settings from environment variables.
    """

    max_batch_size = max(1, _get_int_env("IMPORT_MAX_BATCH_SIZE", 50))
    return BatchSettings(
        pipeline_name=_get_str_env("IMPORT_PIPELINE_NAME", "catalog_import"),
        batch_size=min(max(1, _get_int_env("IMPORT_BATCH_SIZE", 10)), max_batch_size),
        max_batch_size=max_batch_size,
        cooldown_seconds=max(0.0, _get_float_env("IMPORT_COOLDOWN_SECONDS", 30.0)),
        max_retries=max(1, _get_int_env("IMPORT_MAX_RETRIES", 3)),
        claim_attempts=max(1, _get_int_env("IMPORT_CLAIM_ATTEMPTS", 3)),
        recent_failures_limit=max(1, _get_int_env("IMPORT_RECENT_FAILURES_LIMIT", 20)),
        item_stale_after_seconds=max(60.0, _get_float_env("ITEM_STALE_AFTER_SECONDS", 900.0)),
        run_stale_after_seconds=max(60.0, _get_float_env("RUN_STALE_AFTER_SECONDS", 1800.0)),
    )


@lru_cache(maxsize=1)
def get_generation_settings() -> GenerationSettings:
    """
    Return content-generation collaborator settings from environment variables.
    """

    return GenerationSettings(
        url=_get_optional_str_env("GENERATION_URL"),
        api_key=_get_optional_str_env("GENERATION_API_KEY"),
        timeout_seconds=max(1.0, _get_float_env("GENERATION_TIMEOUT_SECONDS", 120.0)),
        default_price=max(0.0, _get_float_env("GENERATION_DEFAULT_PRICE", 49.95)),
    )


@lru_cache(maxsize=1)
def get_canonical_store_settings() -> CanonicalStoreSettings:
    """
    Return canonical store lookup settings from environment variables.
    """

    scope_column = _get_str_env("CANONICAL_STORE_SCOPE_COLUMN", "media_type")
    return CanonicalStoreSettings(
        table_name=_get_str_env("CANONICAL_STORE_TABLE", "platform_products"),
        id_column=_get_str_env("CANONICAL_STORE_ID_COLUMN", "discogs_id"),
        id_type="text" if _get_str_env("CANONICAL_STORE_ID_TYPE", "integer").lower() == "text" else "integer",
        scope_column=None if scope_column.lower() == "none" else scope_column,
        scope_value=_get_str_env("CANONICAL_STORE_SCOPE_VALUE", "art"),
    )


@lru_cache(maxsize=1)
def get_scheduler_settings() -> SchedulerSettings:
    """
    Return scheduler settings from environment variables.
    """

    return SchedulerSettings(
        enabled=_get_bool_env("SCHEDULER_ENABLED", True),
        crawl_cron_minute=_get_str_env("SCHEDULER_CRAWL_MINUTE", "0"),
        crawl_cron_hour=_get_str_env("SCHEDULER_CRAWL_HOUR", "*"),
        recovery_interval_minutes=max(1, _get_int_env("SCHEDULER_RECOVERY_INTERVAL_MINUTES", 10)),
        batch_interval_minutes=max(0, _get_int_env("SCHEDULER_BATCH_INTERVAL_MINUTES", 0)),
    )
