"""
app/connectors/base.py

Base connector abstraction and shared HTTP mechanics.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

import requests

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

# Malformed requests fail the same way on every attempt.
NON_RETRYABLE_TRANSPORT_ERRORS = (
    requests.exceptions.InvalidURL,
    requests.exceptions.InvalidSchema,
    requests.exceptions.MissingSchema,
    requests.exceptions.InvalidHeader,
    requests.exceptions.URLRequired,
)


class ConnectorRequestError(RuntimeError):
    """
    Raised when a connector cannot complete a request.

    `retryable` tells callers whether trying the same work again later
    can succeed; `status` is the HTTP status when one was received.
    """

    def __init__(self, message: str, *, status: int | None = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class BaseConnector:
    """
    Shared HTTP client with pacing and exponential backoff.

    Request starts are spaced at least `min_request_interval_seconds` apart and
    at most one request is in flight per connector instance, so several worker
    threads can share one connector without exceeding the upstream quota.
    """

    source: str

    def __init__(
        self,
        *,
        source: str,
        timeout_seconds: float,
        max_retries: int,
        backoff_initial_seconds: float,
        backoff_multiplier: float,
        min_request_interval_seconds: float = 0.0,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.source = source
        self._session = session or requests.Session()
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._backoff_initial_seconds = backoff_initial_seconds
        self._backoff_multiplier = backoff_multiplier
        self._min_request_interval_seconds = max(0.0, min_request_interval_seconds)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_request_started: float | None = None

    def _request_error(
        self,
        message: str,
        *,
        status: int | None = None,
        retryable: bool = False,
    ) -> ConnectorRequestError:
        """
        Build the exception raised for a failed request. Subclasses narrow the type.
        """

        return ConnectorRequestError(f"{self.source}: {message}", status=status, retryable=retryable)

    def _malformed_response_error(self, message: str, *, status: int | None = None) -> ConnectorRequestError:
        """
        Build the exception raised when a 2xx body has the wrong shape.
        """

        return ConnectorRequestError(f"{self.source}: {message}", status=status, retryable=False)

    def _request_json(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
    ) -> Any:
        response = self._request(method=method, url=url, params=params, headers=headers, json_body=json_body)
        try:
            return response.json()
        except ValueError as exc:
            raise self._malformed_response_error(
                "response was not valid JSON.",
                status=response.status_code,
            ) from exc

    def _request(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
    ) -> requests.Response:
        """
        Send a request, retrying throttling, 5xx answers and transport
        failures with exponential backoff.

        A `Retry-After` header longer than the computed backoff wins. Other
        4xx answers fail immediately as non-retryable. So do requests that
        cannot be built (bad URL, schema or header). Exhausted retries
        raise a retryable error carrying the last HTTP status, or None when
        the last attempt never got an answer.
        """

        attempts = self._max_retries + 1
        attempt = 0
        while True:
            try:
                return self._send_once(method, url, params=params, headers=headers, json_body=json_body)
            except _TransientFailure as failure:
                attempt += 1
                if attempt >= attempts:
                    logger.error(
                        "Request gave up after %s attempt(s) source=%s url=%s reason=%s",
                        attempts,
                        self.source,
                        url,
                        failure.reason,
                    )
                    raise self._request_error(
                        f"request failed after retries ({failure.reason}).",
                        status=failure.status,
                        retryable=True,
                    ) from failure.__cause__
                wait_seconds = self._backoff_seconds(attempt - 1, failure.retry_after)
                logger.warning(
                    "Request retry source=%s attempt=%s/%s wait_seconds=%.2f url=%s reason=%s",
                    self.source,
                    attempt,
                    self._max_retries,
                    wait_seconds,
                    url,
                    failure.reason,
                )
                self._sleep(wait_seconds)

    def _send_once(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None,
        headers: dict[str, str] | None,
        json_body: Any,
    ) -> requests.Response:
        try:
            with self._lock:
                self._apply_rate_limit()
                response = self._session.request(
                    method=method,
                    url=url,
                    params=params,
                    headers=headers,
                    json=json_body,
                    timeout=self._timeout_seconds,
                )
        except NON_RETRYABLE_TRANSPORT_ERRORS as exc:
            logger.error("Request could not be sent source=%s url=%s error=%s", self.source, url, exc)
            raise self._request_error(f"request could not be sent ({type(exc).__name__}).", retryable=False) from exc
        except requests.RequestException as exc:
            # Timeouts, refused or dropped connections, truncated bodies, redirect loops.
            raise _TransientFailure(type(exc).__name__) from exc

        status = response.status_code
        if status in RETRYABLE_STATUS_CODES:
            raise _TransientFailure(
                f"HTTP {status}",
                status=status,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if status >= 400:
            logger.error("Request rejected source=%s status=%s url=%s", self.source, status, url)
            raise self._request_error(f"non-retryable HTTP status {status}.", status=status, retryable=False)
        return response

    def _backoff_seconds(self, attempt: int, retry_after: float | None) -> float:
        computed = self._backoff_initial_seconds * (self._backoff_multiplier**attempt)
        return max(computed, retry_after) if retry_after is not None else computed

    def _apply_rate_limit(self) -> None:
        # Caller holds self._lock.
        now = self._clock()
        if self._last_request_started is not None:
            wait = self._last_request_started + self._min_request_interval_seconds - now
            if wait > 0:
                self._sleep(wait)
                now = self._clock()
        self._last_request_started = now


class _TransientFailure(Exception):
    """One attempt failed in a way a later attempt may not."""

    def __init__(self, reason: str, *, status: int | None = None, retry_after: float | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status = status
        self.retry_after = retry_after


def _parse_retry_after(raw: str | None) -> float | None:
    """Seconds form only; HTTP-date values are ignored."""
    try:
        seconds = float(raw.strip()) if raw is not None else None
    except ValueError:
        return None
    if seconds is None or seconds < 0:
        return None
    return seconds
