"""
app/services/item_pipeline.py

Processes one claimed queue item: fetch catalog detail, hand it to content
generation, and persist the resulting queue transition.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.connectors.catalog_connector import (
    CatalogConnector,
    CatalogError,
    CatalogNotFoundError,
    CatalogResponseError,
    get_catalog_connector,
)
from app.connectors.generation_connector import ContentGenerator, GenerationError, get_generation_connector
from app.domain.import_queue import (
    ClaimedItem,
    InvalidStatusTransitionError,
    ItemOutcome,
    OutcomeKind,
    format_error_message,
)
from app.logging_utils import log_event
from app.repositories.import_queue_repository import ImportQueueRepository
from db.models.import_queue_item import QueueItemStatus

logger = logging.getLogger(__name__)


class InvalidExternalIdError(ValueError):
    """
    The queue item carries an identifier the catalog can never resolve.
    """


@dataclass(frozen=True)
class _Attempt:
    kind: OutcomeKind
    error_message: str | None = None
    artifact_refs: dict[str, Any] | None = None


def is_valid_external_id(value: str) -> bool:
    stripped = value.strip()
    return stripped.isdigit() and int(stripped) > 0


class ItemPipeline:
    """
    Per-item processing with failure classification.

    Item-level failures are always turned into an outcome; only database
    errors escape, so the orchestrator can treat them as infrastructure
    failures.
    """

    def __init__(
        self,
        *,
        catalog: CatalogConnector,
        generator: ContentGenerator,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory
        self._catalog = catalog
        self._generator = generator

    def process(self, item: ClaimedItem) -> ItemOutcome:
        attempt = self._attempt(item)
        outcome = self._persist(item, attempt)
        log_event(
            logger,
            logging.INFO if not outcome.is_error else logging.WARNING,
            "import_item_processed",
            item_id=item.id,
            external_id=item.external_id,
            outcome=outcome.kind.value,
            retry_count=item.retry_count,
            error=outcome.error_message,
        )
        return outcome

    def _attempt(self, item: ClaimedItem) -> _Attempt:
        if not is_valid_external_id(item.external_id):
            exc = InvalidExternalIdError(f"external id {item.external_id!r} is not a positive integer.")
            return _Attempt(kind=OutcomeKind.FAILED, error_message=format_error_message(exc))

        try:
            detail = self._catalog.fetch_detail(item.external_id.strip())
        except CatalogNotFoundError as exc:
            return _Attempt(kind=OutcomeKind.SKIPPED, error_message=format_error_message(exc))
        except CatalogResponseError as exc:
            return _Attempt(kind=OutcomeKind.FAILED, error_message=format_error_message(exc))
        except CatalogError as exc:
            kind = OutcomeKind.RETRY_SCHEDULED if exc.retryable else OutcomeKind.FAILED
            return _Attempt(kind=kind, error_message=format_error_message(exc))
        except Exception as exc:
            logger.exception("Unexpected catalog failure external_id=%s", item.external_id)
            return _Attempt(kind=OutcomeKind.FAILED, error_message=format_error_message(exc))

        metadata = detail.as_metadata()
        if item.attributes:
            metadata["queue_attributes"] = dict(item.attributes)

        try:
            result = self._generator.generate(item.external_id.strip(), metadata)
        except GenerationError as exc:
            kind = OutcomeKind.RETRY_SCHEDULED if exc.retryable else OutcomeKind.FAILED
            return _Attempt(kind=kind, error_message=format_error_message(exc))
        except Exception as exc:
            logger.exception("Unexpected generation failure external_id=%s", item.external_id)
            return _Attempt(kind=OutcomeKind.FAILED, error_message=format_error_message(exc))

        if result.already_exists:
            return _Attempt(kind=OutcomeKind.SKIPPED, artifact_refs=result.artifact_refs())
        return _Attempt(kind=OutcomeKind.COMPLETED, artifact_refs=result.artifact_refs())

    def _persist(self, item: ClaimedItem, attempt: _Attempt) -> ItemOutcome:
        with self._session_factory() as db:
            repository = ImportQueueRepository(db)
            try:
                if attempt.kind is OutcomeKind.RETRY_SCHEDULED:
                    new_count = repository.increment_retry(item.id, attempt.error_message or "")
                    kind = OutcomeKind.FAILED if new_count >= item.max_retries else OutcomeKind.RETRY_SCHEDULED
                else:
                    kind = attempt.kind
                    applied = repository.mark_terminal(
                        item.id,
                        QueueItemStatus(kind.value),
                        error_message=attempt.error_message,
                        artifact_refs=attempt.artifact_refs,
                    )
                    if not applied:
                        raise LookupError(f"Queue item {item.id} not found.")
                db.commit()
            except (InvalidStatusTransitionError, LookupError) as exc:
                # The claim was released elsewhere (recovery sweep); nothing was written.
                db.rollback()
                logger.warning("Queue item no longer owned id=%s error=%s", item.id, exc)
                return ItemOutcome(
                    item_id=item.id,
                    external_id=item.external_id,
                    kind=OutcomeKind.FAILED,
                    error_message=format_error_message(exc),
                )
            except SQLAlchemyError:
                db.rollback()
                raise

        return ItemOutcome(
            item_id=item.id,
            external_id=item.external_id,
            kind=kind,
            error_message=attempt.error_message if kind != OutcomeKind.SKIPPED else None,
            artifact_refs=attempt.artifact_refs,
        )


@lru_cache(maxsize=1)
def get_item_pipeline() -> ItemPipeline:
    return ItemPipeline(
        catalog=get_catalog_connector(),
        generator=get_generation_connector(),
    )
