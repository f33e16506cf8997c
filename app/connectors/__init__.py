"""
app/connectors package marker.
"""

from app.connectors.base import BaseConnector, ConnectorRequestError
from app.connectors.catalog_connector import (
    CatalogConnector,
    CatalogError,
    CatalogNotFoundError,
    CatalogResponseError,
)
from app.connectors.generation_connector import (
    ContentGenerator,
    GenerationConnector,
    GenerationError,
    GenerationResult,
)

__all__ = [
    "BaseConnector",
    "CatalogConnector",
    "CatalogError",
    "CatalogNotFoundError",
    "CatalogResponseError",
    "ConnectorRequestError",
    "ContentGenerator",
    "GenerationConnector",
    "GenerationError",
    "GenerationResult",
]
