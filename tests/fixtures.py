"""
Shared test data for legacymigrate tests.

A small legacy schema and its migrated counterpart:

    source: legacy_doctors(id, name)
            legacy_items(id, doctor_id, name)
    target: doctors(id, legacy_doctor_id UNIQUE, name)
            items(id, legacy_item_id UNIQUE, doctor_id, name NOT NULL, metadata)
            notes(id, legacy_table, legacy_id, content, UNIQUE(legacy_table, legacy_id))

``items`` reference ``doctors`` through the legacy doctor id, so migrating
items needs a lookup table built from ``doctors``.
``notes`` is shared by several legacy tables, told apart by ``legacy_table``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from legacymigrate.lookups import LookupTables
from legacymigrate.models import (
    LookupSpec,
    MigrationConfig,
    SourceRow,
    TransformedRecord,
)

SOURCE_SCHEMA = (
    "CREATE TABLE legacy_doctors (id INTEGER PRIMARY KEY, name TEXT)",
    "CREATE TABLE legacy_items (id INTEGER PRIMARY KEY, doctor_id INTEGER, name TEXT)",
)

TARGET_SCHEMA = (
    """
    CREATE TABLE doctors (
        id TEXT PRIMARY KEY,
        legacy_doctor_id INTEGER UNIQUE,
        name TEXT
    )
    """,
    """
    CREATE TABLE items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        legacy_item_id INTEGER NOT NULL UNIQUE,
        doctor_id TEXT,
        name TEXT NOT NULL,
        metadata TEXT
    )
    """,
    """
    CREATE TABLE notes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        legacy_table TEXT NOT NULL,
        legacy_id INTEGER NOT NULL,
        content TEXT,
        UNIQUE (legacy_table, legacy_id)
    )
    """,
)

DOCTOR_LOOKUP = LookupSpec("doctors", "doctors", "legacy_doctor_id")


async def run_sql(engine: AsyncEngine, *statements: str, params: Any = None) -> None:
    """Execute statements in one transaction."""
    async with engine.begin() as conn:
        for statement in statements:
            if params is None:
                await conn.execute(text(statement))
            else:
                await conn.execute(text(statement), params)


async def fetch_all(engine: AsyncEngine, query: str, params: dict[str, Any] | None = None) -> list[tuple]:
    """Run a query and return plain tuples."""
    async with engine.connect() as conn:
        result = await conn.execute(text(query), params or {})
        return [tuple(row) for row in result.all()]


async def scalar(engine: AsyncEngine, query: str) -> Any:
    async with engine.connect() as conn:
        result = await conn.execute(text(query))
        return result.scalar_one()


async def insert_source_items(
    engine: AsyncEngine,
    items: Iterable[tuple[int, int | None, str | None]],
) -> None:
    """Insert ``(id, doctor_id, name)`` rows into legacy_items."""
    rows = [{"id": i, "doctor_id": d, "name": n} for i, d, n in items]
    if rows:
        await run_sql(
            engine,
            "INSERT INTO legacy_items (id, doctor_id, name) VALUES (:id, :doctor_id, :name)",
            params=rows,
        )


async def insert_target_doctors(engine: AsyncEngine, legacy_ids: Sequence[int]) -> dict[int, str]:
    """Insert migrated doctors and return legacy id -> new id."""
    mapping = {legacy_id: f"doc-{uuid4().hex[:8]}" for legacy_id in legacy_ids}
    if mapping:
        await run_sql(
            engine,
            "INSERT INTO doctors (id, legacy_doctor_id, name) VALUES (:id, :legacy_id, :name)",
            params=[
                {"id": new_id, "legacy_id": legacy_id, "name": f"Doctor {legacy_id}"}
                for legacy_id, new_id in mapping.items()
            ],
        )
    return mapping


def transform_item(row: SourceRow, lookups: LookupTables) -> TransformedRecord:
    return TransformedRecord(
        values={
            "legacy_item_id": row["id"],
            "doctor_id": lookups.require("doctors", row["doctor_id"]),
            "name": row["name"],
        },
        metadata={"legacy_doctor_id": row["doctor_id"]},
    )


def transform_doctor(row: SourceRow, lookups: LookupTables) -> TransformedRecord:
    return TransformedRecord(
        values={
            "id": f"doc-{row['id']}",
            "legacy_doctor_id": row["id"],
            "name": row["name"],
        }
    )


def item_config(**overrides: Any) -> MigrationConfig:
    options: dict[str, Any] = {
        "name": "items",
        "source_query": "SELECT id, doctor_id, name FROM legacy_items",
        "target_table": "items",
        "conflict_key": "legacy_item_id",
        "transform": transform_item,
        "lookups": (DOCTOR_LOOKUP,),
        "batch_size": 500,
        "dependency_level": 2,
    }
    options.update(overrides)
    return MigrationConfig(**options)


def doctor_config(**overrides: Any) -> MigrationConfig:
    options: dict[str, Any] = {
        "name": "doctors",
        "source_query": "SELECT id, name FROM legacy_doctors",
        "target_table": "doctors",
        "conflict_key": "legacy_doctor_id",
        "transform": transform_doctor,
        "dependency_level": 1,
    }
    options.update(overrides)
    return MigrationConfig(**options)


def transform_note(row: SourceRow, lookups: LookupTables) -> TransformedRecord:
    return TransformedRecord(values={"content": row["name"]})


def note_config(**overrides: Any) -> MigrationConfig:
    """Items copied into the shared notes table under ``legacy_table = 'legacy_items'``."""
    options: dict[str, Any] = {
        "name": "item_notes",
        "source_query": "SELECT id, name FROM legacy_items",
        "target_table": "notes",
        "conflict_key": "legacy_id",
        "transform": transform_note,
        "migrated_where": {"legacy_table": "legacy_items"},
    }
    options.update(overrides)
    return MigrationConfig(**options)
