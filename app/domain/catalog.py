"""
app/domain/catalog.py

Normalized shapes returned by the external catalog client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class CatalogSearchResult:
    """
    One search hit. `result_type` is "release" for concrete items and
    "master" for aggregates that group several releases.
    """

    id: str
    result_type: str
    title: str | None = None
    formats: tuple[str, ...] = ()
    year: int | None = None
    country: str | None = None
    label: str | None = None
    catalog_number: str | None = None

    @property
    def is_aggregate(self) -> bool:
        return self.result_type == "master"


@dataclass(frozen=True)
class CatalogReleaseDetail:
    """
    Full descriptive record for one concrete catalog item.
    """

    id: str
    title: str | None = None
    artist: str | None = None
    year: int | None = None
    formats: tuple[str, ...] = ()
    label: str | None = None
    country: str | None = None
    catalog_number: str | None = None
    genres: tuple[str, ...] = ()
    styles: tuple[str, ...] = ()
    tracklist: tuple[dict[str, Any], ...] = ()
    images: tuple[str, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict)

    def as_metadata(self) -> dict[str, Any]:
        """
        Flatten the detail into the payload handed to content generation.
        """

        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "year": self.year,
            "formats": list(self.formats),
            "label": self.label,
            "country": self.country,
            "catalog_number": self.catalog_number,
            "genres": list(self.genres),
            "styles": list(self.styles),
            "tracklist": list(self.tracklist),
            "images": list(self.images),
        }
