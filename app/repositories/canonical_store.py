"""
app/repositories/canonical_store.py

Read-only lookups against the store of already-published items.

The table is owned by the content-generation collaborator, so it is described
with a lightweight table clause instead of a mapped model.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol

from sqlalchemy import BigInteger, String, column, select, table
from sqlalchemy.orm import Session

_LOOKUP_CHUNK_SIZE = 500


class CanonicalStore(Protocol):
    def existing_external_ids(self, session: Session, external_ids: Iterable[str]) -> set[str]:
        ...


class SQLCanonicalStore:
    """
    Canonical store backed by a table in the same database.

    Ids are compared in the column's own type so an index on it is usable.
    With `id_type="integer"` ids that are not digits can never match and are
    not sent to the database. When `scope_column` is set, only rows carrying
    `scope_value` there count as published.
    """

    def __init__(
        self,
        *,
        table_name: str,
        id_column: str,
        id_type: str = "integer",
        scope_column: str | None = None,
        scope_value: str | None = None,
    ) -> None:
        if id_type not in {"integer", "text"}:
            raise ValueError(f"Unsupported canonical id type: {id_type!r}")
        self._numeric_ids = id_type == "integer"
        self._id_column = column(id_column, BigInteger if self._numeric_ids else String)
        columns = [self._id_column]
        self._scope_filter = None
        if scope_column:
            scope = column(scope_column, String)
            columns.append(scope)
            self._scope_filter = scope == scope_value
        self._table = table(table_name, *columns)

    def existing_external_ids(self, session: Session, external_ids: Iterable[str]) -> set[str]:
        lookup_ids = self._lookup_values(external_ids)
        if not lookup_ids:
            return set()

        found: set[str] = set()
        for start in range(0, len(lookup_ids), _LOOKUP_CHUNK_SIZE):
            chunk = lookup_ids[start : start + _LOOKUP_CHUNK_SIZE]
            statement = select(self._id_column).select_from(self._table).where(self._id_column.in_(chunk))
            if self._scope_filter is not None:
                statement = statement.where(self._scope_filter)
            found.update(str(value) for value in session.scalars(statement) if value is not None)
        return found

    def _lookup_values(self, external_ids: Iterable[str]) -> list[Any]:
        cleaned = {str(value).strip() for value in external_ids}
        if self._numeric_ids:
            return sorted({int(value) for value in cleaned if value.isdigit()})
        return sorted(value for value in cleaned if value)
