"""
tests/test_catalog_connector.py

Unit tests for CatalogConnector and the shared BaseConnector HTTP mechanics.

No network: every test swaps in a scripted HTTP session and a fake clock,
so pacing and backoff are asserted from recorded sleeps, not wall time.

Coverage
--------
- Request pacing (sequential and across threads)
- Retry on 429/5xx with exponential backoff and Retry-After
- Transport errors retried, malformed requests not
- Error typing: not found, non-retryable, exhausted, malformed bodies
- Search normalization and query parameter mapping
- Aggregate resolution
- Auth and User-Agent headers
"""

from __future__ import annotations

import threading

import pytest
import requests

from app.config import CatalogAPISettings, CatalogHTTPSettings
from app.connectors.catalog_connector import (
    CatalogConnector,
    CatalogError,
    CatalogNotFoundError,
    CatalogResponseError,
)
from fakes import FakeClock, FakeHTTPSession, FakeResponse

RELEASE_PAYLOAD = {
    "id": 249504,
    "title": "Rumours",
    "year": 1977,
    "country": "US",
    "master_id": 41193,
    "artists": [{"name": "Fleetwood Mac"}],
    "labels": [{"name": "Warner Bros. Records", "catno": "BSK 3010"}],
    "formats": [{"name": "Vinyl", "descriptions": ["LP", "Album"]}],
    "genres": ["Rock"],
    "styles": ["Pop Rock"],
    "tracklist": [{"position": "A1", "title": "Second Hand News", "duration": "2:43"}],
    "images": [{"uri": "https://img.test/rumours.jpg"}, {"type": "secondary"}],
}


def _connector(
    responses: list,
    *,
    clock: FakeClock | None = None,
    min_interval: float = 0.0,
    max_retries: int = 2,
    token: str | None = "secret-token",
) -> tuple[CatalogConnector, FakeHTTPSession, FakeClock]:
    clock = clock or FakeClock()
    session = FakeHTTPSession(responses, clock=clock)
    connector = CatalogConnector(
        settings=CatalogAPISettings(base_url="https://catalog.test", token=token),
        http_settings=CatalogHTTPSettings(
            timeout_seconds=5.0,
            max_retries=max_retries,
            backoff_initial_seconds=1.0,
            backoff_multiplier=2.0,
            min_request_interval_seconds=min_interval,
        ),
        session=session,
        clock=clock.monotonic,
        sleep=clock.sleep,
    )
    return connector, session, clock


# ---------------------------------------------------------------------------
# Pacing
# ---------------------------------------------------------------------------


class TestPacing:
    def test_sequential_requests_are_spaced(self) -> None:
        connector, session, clock = _connector(
            [FakeResponse(200, RELEASE_PAYLOAD) for _ in range(3)],
            min_interval=1.0,
        )
        for _ in range(3):
            connector.fetch_detail("249504")

        starts = [call["started_at"] for call in session.calls]
        assert starts == [0.0, 1.0, 2.0]
        assert clock.sleeps == [1.0, 1.0]

    def test_no_wait_when_interval_already_elapsed(self) -> None:
        connector, session, clock = _connector(
            [FakeResponse(200, RELEASE_PAYLOAD) for _ in range(2)],
            min_interval=1.0,
        )
        connector.fetch_detail("249504")
        clock.now += 5.0
        connector.fetch_detail("249504")
        assert clock.sleeps == []

    def test_threads_sharing_one_connector_are_spaced(self) -> None:
        connector, session, _ = _connector(
            [FakeResponse(200, RELEASE_PAYLOAD) for _ in range(6)],
            min_interval=1.0,
        )
        threads = [threading.Thread(target=connector.fetch_detail, args=("249504",)) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        starts = sorted(call["started_at"] for call in session.calls)
        assert len(starts) == 6
        gaps = [later - earlier for earlier, later in zip(starts, starts[1:])]
        assert all(gap >= 1.0 for gap in gaps)

    def test_retries_are_paced_too(self) -> None:
        connector, session, clock = _connector(
            [FakeResponse(503), FakeResponse(200, RELEASE_PAYLOAD)],
            min_interval=2.0,
        )
        connector.fetch_detail("249504")
        starts = [call["started_at"] for call in session.calls]
        # Backoff of 1s is shorter than the 2s interval, so pacing tops it up.
        assert starts[1] - starts[0] >= 2.0


# ---------------------------------------------------------------------------
# Retry and backoff
# ---------------------------------------------------------------------------


class TestRetry:
    def test_retryable_status_then_success(self) -> None:
        connector, session, clock = _connector([FakeResponse(503), FakeResponse(502), FakeResponse(200, RELEASE_PAYLOAD)])
        detail = connector.fetch_detail("249504")
        assert detail.id == "249504"
        assert len(session.calls) == 3
        assert clock.sleeps == [1.0, 2.0]

    def test_retry_after_header_extends_backoff(self) -> None:
        connector, _, clock = _connector(
            [FakeResponse(429, headers={"Retry-After": "7"}), FakeResponse(200, RELEASE_PAYLOAD)]
        )
        connector.fetch_detail("249504")
        assert clock.sleeps == [7.0]

    def test_unparseable_retry_after_falls_back_to_backoff(self) -> None:
        connector, _, clock = _connector(
            [
                FakeResponse(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}),
                FakeResponse(200, RELEASE_PAYLOAD),
            ]
        )
        connector.fetch_detail("249504")
        assert clock.sleeps == [1.0]

    def test_exhausted_retries_raise_retryable_error(self) -> None:
        connector, session, _ = _connector([FakeResponse(503), FakeResponse(503), FakeResponse(503)])
        with pytest.raises(CatalogError) as exc_info:
            connector.fetch_detail("249504")
        assert exc_info.value.retryable is True
        assert exc_info.value.status == 503
        assert len(session.calls) == 3

    def test_transport_errors_are_retried(self) -> None:
        connector, session, _ = _connector(
            [requests.ConnectionError("connection reset"), FakeResponse(200, RELEASE_PAYLOAD)]
        )
        assert connector.fetch_detail("249504").title == "Rumours"
        assert len(session.calls) == 2

    def test_exhausted_timeouts_have_no_status(self) -> None:
        connector, _, _ = _connector([requests.Timeout("read timed out")] * 3)
        with pytest.raises(CatalogError) as exc_info:
            connector.fetch_detail("249504")
        assert exc_info.value.retryable is True
        assert exc_info.value.status is None

    @pytest.mark.parametrize(
        "error",
        [
            requests.exceptions.ChunkedEncodingError("connection broken mid-body"),
            requests.exceptions.ContentDecodingError("bad gzip stream"),
            requests.exceptions.TooManyRedirects("exceeded 30 redirects"),
        ],
    )
    def test_other_transport_errors_are_retried(self, error) -> None:
        connector, session, _ = _connector([error, FakeResponse(200, RELEASE_PAYLOAD)])
        assert connector.fetch_detail("249504").title == "Rumours"
        assert len(session.calls) == 2

    def test_exhausted_transport_errors_stay_typed(self) -> None:
        connector, _, clock = _connector([requests.exceptions.ChunkedEncodingError("broken")] * 3)
        with pytest.raises(CatalogError) as exc_info:
            connector.fetch_detail("249504")
        assert exc_info.value.retryable is True
        assert exc_info.value.status is None
        assert clock.sleeps == [1.0, 2.0]

    def test_malformed_request_is_not_retried(self) -> None:
        connector, session, _ = _connector([requests.exceptions.InvalidURL("bad host")])
        with pytest.raises(CatalogError) as exc_info:
            connector.fetch_detail("249504")
        assert exc_info.value.retryable is False
        assert len(session.calls) == 1


# ---------------------------------------------------------------------------
# Error typing
# ---------------------------------------------------------------------------


class TestErrorTyping:
    def test_404_is_not_found_and_not_retried(self) -> None:
        connector, session, _ = _connector([FakeResponse(404, {"message": "Release not found."})])
        with pytest.raises(CatalogNotFoundError) as exc_info:
            connector.fetch_detail("999999999")
        assert exc_info.value.retryable is False
        assert len(session.calls) == 1

    def test_other_client_errors_are_permanent(self) -> None:
        connector, session, _ = _connector([FakeResponse(401, {"message": "Invalid consumer token"})])
        with pytest.raises(CatalogError) as exc_info:
            connector.fetch_detail("249504")
        assert not isinstance(exc_info.value, CatalogNotFoundError)
        assert exc_info.value.retryable is False
        assert exc_info.value.status == 401
        assert len(session.calls) == 1

    def test_invalid_json_is_response_error(self) -> None:
        connector, _, _ = _connector([FakeResponse(200, invalid_json=True)])
        with pytest.raises(CatalogResponseError):
            connector.fetch_detail("249504")

    def test_detail_without_id_is_response_error(self) -> None:
        connector, _, _ = _connector([FakeResponse(200, {"title": "No id"})])
        with pytest.raises(CatalogResponseError):
            connector.fetch_detail("249504")

    def test_search_without_results_list_is_response_error(self) -> None:
        connector, _, _ = _connector([FakeResponse(200, {"pagination": {}})])
        with pytest.raises(CatalogResponseError):
            connector.search("Fleetwood Mac")

    def test_non_object_body_is_response_error(self) -> None:
        connector, _, _ = _connector([FakeResponse(200, [1, 2, 3])])
        with pytest.raises(CatalogResponseError):
            connector.fetch_detail("249504")


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


class TestOperations:
    def test_search_maps_query_and_filters(self) -> None:
        connector, session, _ = _connector(
            [
                FakeResponse(
                    200,
                    {
                        "results": [
                            {
                                "id": 41193,
                                "type": "master",
                                "title": "Fleetwood Mac - Rumours",
                                "format": ["Vinyl", "LP", "Album"],
                                "year": "1977",
                                "label": ["Warner Bros. Records"],
                                "catno": "BSK 3010",
                            },
                            {"title": "hit without id"},
                            {"id": 1, "type": "release", "format": ["Vinyl", "7\"", "Single"]},
                        ]
                    },
                )
            ]
        )
        results = connector.search("Fleetwood Mac", filters={"type": "release", "format": "Vinyl"})

        call = session.calls[0]
        assert call["method"] == "GET"
        assert call["url"] == "https://catalog.test/database/search"
        assert call["params"] == {"artist": "Fleetwood Mac", "type": "release", "format": "Vinyl"}
        assert [result.id for result in results] == ["41193", "1"]
        assert results[0].is_aggregate is True
        assert results[0].year == 1977
        assert results[0].label == "Warner Bros. Records"
        assert results[1].is_aggregate is False

    def test_detail_is_normalized(self) -> None:
        connector, session, _ = _connector([FakeResponse(200, RELEASE_PAYLOAD)])
        detail = connector.fetch_detail("249504")

        assert session.calls[0]["url"] == "https://catalog.test/releases/249504"
        assert detail.artist == "Fleetwood Mac"
        assert detail.label == "Warner Bros. Records"
        assert detail.catalog_number == "BSK 3010"
        assert detail.formats == ("Vinyl", "LP", "Album")
        assert detail.images == ("https://img.test/rumours.jpg",)
        metadata = detail.as_metadata()
        assert metadata["tracklist"][0]["title"] == "Second Hand News"
        assert metadata["genres"] == ["Rock"]

    def test_resolve_aggregate_returns_primary_item(self) -> None:
        connector, session, _ = _connector([FakeResponse(200, {"id": 41193, "main_release": 249504})])
        assert connector.resolve_aggregate("41193") == "249504"
        assert session.calls[0]["url"] == "https://catalog.test/masters/41193"

    def test_resolve_aggregate_without_primary_item(self) -> None:
        connector, _, _ = _connector([FakeResponse(200, {"id": 41193, "main_release": 0})])
        with pytest.raises(CatalogResponseError):
            connector.resolve_aggregate("41193")

    def test_token_is_sent_as_authorization(self) -> None:
        connector, session, _ = _connector([FakeResponse(200, RELEASE_PAYLOAD)])
        connector.fetch_detail("249504")
        headers = session.calls[0]["headers"]
        assert headers["Authorization"] == "Discogs token=secret-token"
        assert headers["User-Agent"] == "CatalogImportPipeline/1.0"

    def test_no_authorization_without_token(self) -> None:
        connector, session, _ = _connector([FakeResponse(200, RELEASE_PAYLOAD)], token=None)
        connector.fetch_detail("249504")
        assert "Authorization" not in session.calls[0]["headers"]
