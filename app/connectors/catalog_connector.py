"""
app/connectors/catalog_connector.py

Rate-limited client for the external music catalog (Discogs-shaped API).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import lru_cache
from typing import Any

import requests

from app.config import (
    CatalogAPISettings,
    CatalogHTTPSettings,
    get_catalog_api_settings,
    get_catalog_http_settings,
)
from app.connectors.base import BaseConnector, ConnectorRequestError
from app.domain.catalog import CatalogReleaseDetail, CatalogSearchResult

logger = logging.getLogger(__name__)


class CatalogError(ConnectorRequestError):
    """
    Any failure talking to the catalog API.
    """


class CatalogNotFoundError(CatalogError):
    """
    The requested catalog entity does not exist (HTTP 404).
    """


class CatalogResponseError(CatalogError):
    """
    The catalog answered 2xx with a body of the wrong shape.
    """


class CatalogConnector(BaseConnector):
    """
    Search, detail and aggregate-resolution calls against the catalog API.
    """

    def __init__(
        self,
        *,
        settings: CatalogAPISettings,
        http_settings: CatalogHTTPSettings,
        session: requests.Session | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        timing: dict[str, Any] = {}
        if clock is not None:
            timing["clock"] = clock
        if sleep is not None:
            timing["sleep"] = sleep
        super().__init__(
            source="catalog",
            timeout_seconds=http_settings.timeout_seconds,
            max_retries=http_settings.max_retries,
            backoff_initial_seconds=http_settings.backoff_initial_seconds,
            backoff_multiplier=http_settings.backoff_multiplier,
            min_request_interval_seconds=http_settings.min_request_interval_seconds,
            session=session,
            **timing,
        )
        self._settings = settings

    def _request_error(
        self,
        message: str,
        *,
        status: int | None = None,
        retryable: bool = False,
    ) -> CatalogError:
        if status == 404:
            return CatalogNotFoundError(f"{self.source}: not found.", status=status, retryable=False)
        return CatalogError(f"{self.source}: {message}", status=status, retryable=retryable)

    def _malformed_response_error(self, message: str, *, status: int | None = None) -> CatalogError:
        return CatalogResponseError(f"{self.source}: {message}", status=status, retryable=False)

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": self._settings.user_agent, "Accept": "application/json"}
        if self._settings.token:
            headers["Authorization"] = f"Discogs token={self._settings.token}"
        return headers

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        payload = self._request_json(
            method="GET",
            url=f"{self._settings.base_url}{path}",
            params=params,
            headers=self._headers(),
        )
        if not isinstance(payload, dict):
            raise self._malformed_response_error("expected a JSON object.")
        return payload

    def search(self, query: str, filters: dict[str, Any] | None = None) -> list[CatalogSearchResult]:
        """
        Search the catalog and return normalized hits in upstream order.

        Hits without an id are dropped; a body without a `results` list is a
        malformed response.
        """

        params: dict[str, Any] = {self._settings.search_query_param: query}
        if filters:
            params.update(filters)
        payload = self._get(self._settings.search_path, params=params)

        results = payload.get("results")
        if not isinstance(results, list):
            raise self._malformed_response_error("search response has no results list.")

        normalized: list[CatalogSearchResult] = []
        for index, raw in enumerate(results):
            parsed = _normalize_search_result(raw)
            if parsed is None:
                logger.warning("Dropping malformed catalog search hit query=%s index=%s", query, index)
                continue
            normalized.append(parsed)
        return normalized

    def fetch_detail(self, external_id: str) -> CatalogReleaseDetail:
        """
        Fetch the full record of one concrete catalog item.
        """

        payload = self._get(self._settings.detail_path.format(id=external_id))
        raw_id = payload.get("id")
        if raw_id is None:
            raise self._malformed_response_error("detail response has no id.")
        return _normalize_release_detail(payload)

    def resolve_aggregate(self, aggregate_id: str) -> str:
        """
        Map an aggregate (master) id to its primary concrete item id.
        """

        payload = self._get(self._settings.aggregate_path.format(id=aggregate_id))
        primary_id = payload.get(self._settings.aggregate_primary_key)
        if primary_id is None or str(primary_id).strip() in {"", "0"}:
            raise self._malformed_response_error(
                f"aggregate {aggregate_id} has no {self._settings.aggregate_primary_key}."
            )
        return str(primary_id).strip()


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = int(str(value).strip())
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def _as_str_tuple(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list):
        return ()
    return tuple(str(item) for item in value if item is not None and str(item).strip())


def _first_str(value: Any) -> str | None:
    values = _as_str_tuple(value)
    return values[0] if values else None


def _normalize_search_result(raw: Any) -> CatalogSearchResult | None:
    if not isinstance(raw, dict) or raw.get("id") is None:
        return None
    return CatalogSearchResult(
        id=str(raw["id"]),
        result_type=str(raw.get("type") or "release").lower(),
        title=raw.get("title"),
        formats=_as_str_tuple(raw.get("format")),
        year=_as_int(raw.get("year")),
        country=raw.get("country"),
        label=_first_str(raw.get("label")),
        catalog_number=raw.get("catno"),
    )


def _normalize_release_detail(payload: dict[str, Any]) -> CatalogReleaseDetail:
    artists = payload.get("artists") if isinstance(payload.get("artists"), list) else []
    labels = payload.get("labels") if isinstance(payload.get("labels"), list) else []
    formats = payload.get("formats") if isinstance(payload.get("formats"), list) else []
    first_artist = artists[0] if artists and isinstance(artists[0], dict) else {}
    first_label = labels[0] if labels and isinstance(labels[0], dict) else {}

    format_names: list[str] = []
    for entry in formats:
        if not isinstance(entry, dict):
            continue
        if entry.get("name"):
            format_names.append(str(entry["name"]))
        format_names.extend(_as_str_tuple(entry.get("descriptions")))

    tracklist = tuple(
        {"position": track.get("position"), "title": track.get("title"), "duration": track.get("duration")}
        for track in payload.get("tracklist") or []
        if isinstance(track, dict)
    )
    images = tuple(
        str(image["uri"])
        for image in payload.get("images") or []
        if isinstance(image, dict) and image.get("uri")
    )

    return CatalogReleaseDetail(
        id=str(payload["id"]),
        title=payload.get("title"),
        artist=first_artist.get("name"),
        year=_as_int(payload.get("year")),
        formats=tuple(format_names),
        label=first_label.get("name"),
        country=payload.get("country"),
        catalog_number=first_label.get("catno"),
        genres=_as_str_tuple(payload.get("genres")),
        styles=_as_str_tuple(payload.get("styles")),
        tracklist=tracklist,
        images=images,
        raw=payload,
    )


@lru_cache(maxsize=1)
def get_catalog_connector() -> CatalogConnector:
    """
    Process-wide catalog client; sharing it keeps every caller under one pacing lock.
    """

    return CatalogConnector(
        settings=get_catalog_api_settings(),
        http_settings=get_catalog_http_settings(),
    )
