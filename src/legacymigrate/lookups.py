"""
Legacy-id lookup tables.

A lookup table maps a legacy integer id to the surrogate key of an
already-migrated target row. Each run builds its lookup tables once, up
front, with one query per table; transforms then resolve foreign keys
against the in-memory maps without further round trips.

Lookup tables are immutable values handed to the transform explicitly.
Nothing here is module-global, so several runs can share a process.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from decimal import Decimal
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from legacymigrate._connection import execute_with_connection
from legacymigrate._sql import equality_conditions, quote_identifier
from legacymigrate.exceptions import LookupBuildError, UnresolvedReferenceError
from legacymigrate.models import LookupSpec
from legacymigrate.observability import (
    ATTR_DB_OPERATION,
    ATTR_LOOKUP_NAME,
    ATTR_LOOKUP_SIZE,
    ATTR_LOOKUP_TABLE,
    ATTR_MIGRATION_NAME,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)

_INTEGRAL_TEXT = re.compile(r"^-?\d+$")


def normalize_legacy_id(value: Any) -> Any:
    """
    Normalize a legacy id so integer and text representations compare equal.

    Legacy ids are stored as integers in the source but sometimes as text in
    the target (e.g. ``legacy_id`` columns declared VARCHAR). Integral values
    become ``int``; anything else is returned unchanged.

    Example:
        >>> normalize_legacy_id("42")
        42
        >>> normalize_legacy_id(Decimal("7"))
        7
        >>> normalize_legacy_id("abc")
        'abc'
    """
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if _INTEGRAL_TEXT.match(stripped):
            return int(stripped)
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    if isinstance(value, Decimal):
        return int(value) if value.is_finite() and value == value.to_integral_value() else value
    return value


class LegacyLookupTable(Mapping[Any, Any]):
    """
    Immutable mapping of legacy id -> target surrogate key.

    Keys are normalized with :func:`normalize_legacy_id` on construction and
    on every lookup. A legacy id with no target row is simply absent.

    Example:
        >>> table = LegacyLookupTable("offices", {1: "uuid-a", "2": "uuid-b"})
        >>> table[2]
        'uuid-b'
        >>> 3 in table
        False
    """

    def __init__(self, name: str, entries: Mapping[Any, Any] | None = None) -> None:
        self._name = name
        self._entries: dict[Any, Any] = {
            normalize_legacy_id(legacy_id): key
            for legacy_id, key in (entries or {}).items()
        }

    @property
    def name(self) -> str:
        """Name transforms use to consult this table."""
        return self._name

    def __getitem__(self, legacy_id: Any) -> Any:
        return self._entries[normalize_legacy_id(legacy_id)]

    def __contains__(self, legacy_id: object) -> bool:
        return normalize_legacy_id(legacy_id) in self._entries

    def __iter__(self) -> Iterator[Any]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"LegacyLookupTable(name={self._name!r}, size={len(self._entries)})"


class LookupTables:
    """
    Named collection of lookup tables passed to every transform.

    ``get`` is for optional references (returns None when absent);
    ``require`` is for mandatory ones and raises UnresolvedReferenceError,
    which the engine turns into a skipped row.

    Example:
        >>> def transform(row, lookups):
        ...     plan_id = lookups.require("plans", row["plan_id"])
        ...     author_id = lookups.get("profiles", row["author_id"])
        ...     return TransformedRecord({"treatment_plan_id": plan_id, "author_id": author_id})
    """

    def __init__(self, tables: Iterable[LegacyLookupTable] = ()) -> None:
        self._tables: dict[str, LegacyLookupTable] = {}
        for table in tables:
            if table.name in self._tables:
                raise ValueError(f"Duplicate lookup table name: {table.name}")
            self._tables[table.name] = table

    @classmethod
    def from_mappings(cls, mappings: Mapping[str, Mapping[Any, Any]]) -> LookupTables:
        """
        Build from plain dictionaries, mostly for tests and ad hoc runs.

        Example:
            >>> LookupTables.from_mappings({"offices": {1: "uuid-a"}})
        """
        return cls(LegacyLookupTable(name, entries) for name, entries in mappings.items())

    @property
    def names(self) -> list[str]:
        """Names of the contained lookup tables, in build order."""
        return list(self._tables)

    def table(self, name: str) -> LegacyLookupTable:
        """
        Get a lookup table by name.

        Raises:
            KeyError: If no table with that name was built for this run
        """
        try:
            return self._tables[name]
        except KeyError:
            raise KeyError(
                f"Unknown lookup '{name}'; available: {', '.join(self._tables) or 'none'}"
            ) from None

    def get(self, name: str, legacy_id: Any, default: Any = None) -> Any:
        """
        Resolve an optional reference.

        Args:
            name: Lookup table name
            legacy_id: Legacy id from the source row (None allowed)
            default: Value returned when the id is None or unmapped

        Returns:
            The target key, or ``default``
        """
        table = self.table(name)
        if legacy_id is None:
            return default
        return table.get(legacy_id, default)

    def require(self, name: str, legacy_id: Any) -> Any:
        """
        Resolve a mandatory reference.

        Args:
            name: Lookup table name
            legacy_id: Legacy id from the source row

        Returns:
            The target key

        Raises:
            UnresolvedReferenceError: If the id is None or has no mapping
        """
        table = self.table(name)
        if legacy_id is None or legacy_id not in table:
            raise UnresolvedReferenceError(name, legacy_id)
        return table[legacy_id]

    def sizes(self) -> dict[str, int]:
        """Entry count per lookup table."""
        return {name: len(table) for name, table in self._tables.items()}

    def __contains__(self, name: object) -> bool:
        return name in self._tables

    def __len__(self) -> int:
        return len(self._tables)

    def __repr__(self) -> str:
        return f"LookupTables({self.sizes()!r})"


class LookupTableBuilder:
    """
    Builds lookup tables from the target store.

    Each LookupSpec becomes one query:

        SELECT "legacy_column", "key_column" FROM "table"
        WHERE "legacy_column" IS NOT NULL [AND "col" = :where_0 ...]

    Example:
        >>> builder = LookupTableBuilder(target_engine)
        >>> lookups = await builder.build_all(config.lookups, migration_name=config.name)
    """

    def __init__(
        self,
        target: AsyncEngine | AsyncConnection,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the builder.

        Args:
            target: Target store engine or connection
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._target = target
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def build(
        self,
        spec: LookupSpec,
        *,
        migration_name: str | None = None,
    ) -> LegacyLookupTable:
        """
        Build one lookup table.

        Args:
            spec: Which table and columns to read
            migration_name: Name of the migration, for error context

        Returns:
            The populated lookup table

        Raises:
            LookupBuildError: If the query fails
        """
        with self._tracer.span(
            "legacymigrate.lookups.build",
            {
                ATTR_LOOKUP_NAME: spec.name,
                ATTR_LOOKUP_TABLE: spec.table,
                ATTR_MIGRATION_NAME: migration_name or "",
                ATTR_DB_OPERATION: "SELECT",
            },
        ) as span:
            query, params = self._build_query(spec)
            try:
                async with execute_with_connection(self._target, transactional=False) as conn:
                    result = await conn.execute(query, params)
                    rows = result.all()
            except SQLAlchemyError as e:
                logger.error(
                    "Failed to build lookup %s from %s: %s",
                    spec.name,
                    spec.table,
                    e,
                )
                raise LookupBuildError(
                    spec.name,
                    spec.table,
                    str(e),
                    migration_name=migration_name,
                ) from e

            entries: dict[Any, Any] = {}
            duplicates = 0
            for legacy_id, key in rows:
                normalized = normalize_legacy_id(legacy_id)
                if normalized in entries:
                    duplicates += 1
                    continue
                entries[normalized] = key

            if duplicates:
                logger.warning(
                    "Lookup %s: %d duplicate legacy ids in %s.%s, keeping first occurrence",
                    spec.name,
                    duplicates,
                    spec.table,
                    spec.legacy_column,
                )

            table = LegacyLookupTable(spec.name, entries)
            if span:
                span.set_attribute(ATTR_LOOKUP_SIZE, len(table))

            logger.info("Built lookup %s: %d entries", spec.name, len(table))
            return table

    async def build_all(
        self,
        specs: Iterable[LookupSpec],
        *,
        migration_name: str | None = None,
    ) -> LookupTables:
        """
        Build every lookup table for a run, in order.

        The first failure aborts; nothing is written before all tables exist.

        Raises:
            LookupBuildError: If any query fails
        """
        tables = [await self.build(spec, migration_name=migration_name) for spec in specs]
        return LookupTables(tables)

    @staticmethod
    def _build_query(spec: LookupSpec) -> tuple[Any, dict[str, Any]]:
        legacy_column = quote_identifier(spec.legacy_column)
        filters, params = equality_conditions(spec.where)
        conditions = [f"{legacy_column} IS NOT NULL", *filters]

        sql = (
            f"SELECT {legacy_column}, {quote_identifier(spec.key_column)} "
            f"FROM {quote_identifier(spec.table)} "
            f"WHERE {' AND '.join(conditions)}"
        )
        return text(sql), params


__all__ = [
    "normalize_legacy_id",
    "LegacyLookupTable",
    "LookupTables",
    "LookupTableBuilder",
]
