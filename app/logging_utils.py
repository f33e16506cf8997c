"""
Structured logging helpers for crawl cycles, batch runs and item processing.

Every event is one JSON object per line so run ids, item ids and counters
can be filtered without parsing free text.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """
    Emit `event` with `fields` as one sorted JSON line; non-JSON values are stringified.
    """

    if not logger.isEnabledFor(level):
        return
    logger.log(level, json.dumps({"event": event, **fields}, default=str, sort_keys=True))


@contextmanager
def log_duration(logger: logging.Logger, event: str, **fields: Any) -> Iterator[dict[str, Any]]:
    """
    Log `event` at INFO when the block exits, with its wall time in `duration_ms`.

    The yielded dict is merged into the event, so the block can attach
    counters it only knows at the end. A block that raises is logged at
    WARNING with the exception type and the exception propagates.
    """

    extra: dict[str, Any] = {}
    started = time.perf_counter()
    try:
        yield extra
    except Exception as exc:
        _emit_duration(logger, logging.WARNING, event, started, {**fields, **extra, "error": type(exc).__name__})
        raise
    _emit_duration(logger, logging.INFO, event, started, {**fields, **extra})


def _emit_duration(
    logger: logging.Logger,
    level: int,
    event: str,
    started: float,
    fields: dict[str, Any],
) -> None:
    fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 1)
    log_event(logger, level, event, **fields)
