"""
app/connectors/generation_connector.py

HTTP client for the content-generation collaborator that turns catalog
metadata into a published product and article.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Protocol

import requests

from app.config import GenerationSettings, get_generation_settings
from app.connectors.base import BaseConnector, ConnectorRequestError

logger = logging.getLogger(__name__)


class GenerationError(ConnectorRequestError):
    """
    Content generation failed. Retryable for 429, 5xx and transport errors.
    """


@dataclass(frozen=True)
class GenerationResult:
    artifact_id: str | None
    blog_id: str | None = None
    already_exists: bool = False

    def artifact_refs(self) -> dict[str, Any]:
        refs: dict[str, Any] = {}
        if self.artifact_id is not None:
            refs["product_id"] = self.artifact_id
        if self.blog_id is not None:
            refs["blog_id"] = self.blog_id
        return refs


class ContentGenerator(Protocol):
    def generate(self, external_id: str, metadata: dict[str, Any]) -> GenerationResult:
        ...


class GenerationConnector(BaseConnector):
    """
    POSTs item metadata to the generation endpoint and parses its reply.
    """

    def __init__(
        self,
        *,
        settings: GenerationSettings,
        session: requests.Session | None = None,
        max_retries: int = 0,
    ) -> None:
        # Item-level retries are driven by the queue's retry budget.
        super().__init__(
            source="generation",
            timeout_seconds=settings.timeout_seconds,
            max_retries=max_retries,
            backoff_initial_seconds=1.0,
            backoff_multiplier=2.0,
            session=session,
        )
        self._settings = settings

    def _request_error(
        self,
        message: str,
        *,
        status: int | None = None,
        retryable: bool = False,
    ) -> GenerationError:
        return GenerationError(f"{self.source}: {message}", status=status, retryable=retryable)

    def _malformed_response_error(self, message: str, *, status: int | None = None) -> GenerationError:
        return GenerationError(f"{self.source}: {message}", status=status, retryable=False)

    def generate(self, external_id: str, metadata: dict[str, Any]) -> GenerationResult:
        if not self._settings.url:
            raise GenerationError("generation: GENERATION_URL is not configured.", retryable=False)

        headers = {"Content-Type": "application/json"}
        if self._settings.api_key:
            headers["Authorization"] = f"Bearer {self._settings.api_key}"

        payload = self._request_json(
            method="POST",
            url=self._settings.url,
            headers=headers,
            json_body={
                "external_id": external_id,
                "metadata": metadata,
                "price": self._settings.default_price,
            },
        )
        if not isinstance(payload, dict):
            raise self._malformed_response_error("expected a JSON object.")

        artifact_id = payload.get("product_id", payload.get("artifact_id"))
        already_exists = bool(payload.get("already_exists", False))
        if artifact_id is None and not already_exists:
            raise self._malformed_response_error("response has no product_id.")

        blog_id = payload.get("blog_id")
        logger.info(
            "Generation finished external_id=%s artifact_id=%s already_exists=%s",
            external_id,
            artifact_id,
            already_exists,
        )
        return GenerationResult(
            artifact_id=str(artifact_id) if artifact_id is not None else None,
            blog_id=str(blog_id) if blog_id is not None else None,
            already_exists=already_exists,
        )


@lru_cache(maxsize=1)
def get_generation_connector() -> GenerationConnector:
    return GenerationConnector(settings=get_generation_settings())
