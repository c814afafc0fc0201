"""
Integration tests for BatchWriter and SourceReader against SQLite.
"""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from legacymigrate import writer as writer_module
from legacymigrate.exceptions import BatchWriteError, LookupBuildError, SourceReadError
from legacymigrate.lookups import LookupTableBuilder
from legacymigrate.models import LookupSpec, PaginationMode
from legacymigrate.observability import MockTracer
from legacymigrate.reader import SourceReader
from legacymigrate.writer import BatchWriter
from tests.conftest import skip_if_no_aiosqlite
from tests.fixtures import (
    DOCTOR_LOOKUP,
    fetch_all,
    insert_source_items,
    insert_target_doctors,
    item_config,
    run_sql,
)

pytestmark = [pytest.mark.integration, pytest.mark.sqlite, skip_if_no_aiosqlite]


class TestBatchWriter:
    """Tests for BatchWriter."""

    @pytest.mark.asyncio
    async def test_returns_inserted_count(self, target: AsyncEngine) -> None:
        """Test the count covers only rows actually inserted."""
        writer = BatchWriter(target, enable_tracing=False)
        records = [{"legacy_item_id": i, "name": f"item {i}"} for i in (1, 2, 3)]

        assert await writer.write_batch("items", "legacy_item_id", records) == 3
        assert await writer.write_batch("items", "legacy_item_id", records) == 0

        more = [{"legacy_item_id": 3, "name": "dup"}, {"legacy_item_id": 4, "name": "new"}]
        assert await writer.write_batch("items", "legacy_item_id", more) == 1

        rows = await fetch_all(target, "SELECT legacy_item_id, name FROM items ORDER BY legacy_item_id")
        assert rows == [(1, "item 1"), (2, "item 2"), (3, "item 3"), (4, "new")]

    @pytest.mark.asyncio
    async def test_empty_batch(self, target: AsyncEngine) -> None:
        """Test an empty batch is a no-op."""
        writer = BatchWriter(target, enable_tracing=False)
        assert await writer.write_batch("items", "legacy_item_id", []) == 0

    @pytest.mark.asyncio
    async def test_mixed_column_sets(self, target: AsyncEngine) -> None:
        """Test columns a record omits get the column default, NULL here."""
        writer = BatchWriter(target, enable_tracing=False)
        records = [
            {"legacy_item_id": 1, "name": "a", "doctor_id": "doc-1", "metadata": {"k": [1, 2]}},
            {"legacy_item_id": 2, "name": "b"},
        ]

        await writer.write_batch("items", "legacy_item_id", records)

        rows = await fetch_all(target, "SELECT doctor_id, metadata FROM items ORDER BY legacy_item_id")
        assert rows == [("doc-1", '{"k": [1, 2]}'), (None, None)]

    @pytest.mark.asyncio
    async def test_omitted_columns_keep_server_default(self, target: AsyncEngine) -> None:
        """Test a column missing from some records is not bound as NULL for them."""
        await run_sql(target, "ALTER TABLE items ADD COLUMN status TEXT NOT NULL DEFAULT 'new'")
        writer = BatchWriter(target, enable_tracing=False)
        records = [
            {"legacy_item_id": 1, "name": "a", "status": "done"},
            {"legacy_item_id": 2, "name": "b"},
        ]

        assert await writer.write_batch("items", "legacy_item_id", records) == 2

        rows = await fetch_all(target, "SELECT legacy_item_id, status FROM items ORDER BY legacy_item_id")
        assert rows == [(1, "done"), (2, "new")]

    @pytest.mark.asyncio
    async def test_composite_conflict_target(self, target: AsyncEngine) -> None:
        """Test a key taken by another legacy table does not block the insert."""
        await run_sql(target, "INSERT INTO notes (legacy_table, legacy_id, content) VALUES ('dispatch_note', 5, 'x')")
        writer = BatchWriter(target, enable_tracing=False)
        record = {"legacy_table": "dispatch_comment", "legacy_id": 5, "content": "y"}

        assert await writer.write_batch("notes", ("legacy_table", "legacy_id"), [record]) == 1
        assert await writer.write_batch("notes", ("legacy_table", "legacy_id"), [record]) == 0

        rows = await fetch_all(target, "SELECT legacy_table, legacy_id FROM notes ORDER BY legacy_table")
        assert rows == [("dispatch_comment", 5), ("dispatch_note", 5)]

    @pytest.mark.asyncio
    async def test_multi_statement_batch_atomic_on_connection(
        self,
        target: AsyncEngine,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test a batch split over several statements rolls back whole on a caller's connection."""
        monkeypatch.setattr(writer_module, "MAX_PARAMETERS_PER_STATEMENT", 2)
        bad = [
            {"legacy_item_id": 1, "name": "a"},
            {"legacy_item_id": 2, "name": "b"},
            {"legacy_item_id": 3, "name": None},
        ]
        good = [{"legacy_item_id": 4, "name": "d"}]

        async with target.connect() as conn:
            writer = BatchWriter(conn, enable_tracing=False)
            with pytest.raises(BatchWriteError):
                await writer.write_batch("items", "legacy_item_id", bad)
            assert await writer.write_batch("items", "legacy_item_id", good) == 1
            await conn.commit()

        assert await fetch_all(target, "SELECT legacy_item_id FROM items") == [(4,)]

    @pytest.mark.asyncio
    async def test_rejected_batch_is_atomic(self, target: AsyncEngine) -> None:
        """Test a rejected batch writes nothing and reports the record shape."""
        writer = BatchWriter(target, enable_tracing=False)
        records = [{"legacy_item_id": 1, "name": "a"}, {"legacy_item_id": 2, "name": None}]

        with pytest.raises(BatchWriteError) as exc_info:
            await writer.write_batch("items", "legacy_item_id", records, migration_name="items")

        error = exc_info.value
        assert error.table == "items"
        assert error.batch_size == 2
        assert error.first_record_shape == {"legacy_item_id": "int", "name": "str"}
        assert error.migration_name == "items"
        assert await fetch_all(target, "SELECT * FROM items") == []

    @pytest.mark.asyncio
    async def test_invalid_column_rejected(self, target: AsyncEngine) -> None:
        """Test unsafe column names fail the batch instead of reaching SQL."""
        writer = BatchWriter(target, enable_tracing=False)
        with pytest.raises(BatchWriteError, match="Invalid column name"):
            await writer.write_batch("items", "legacy_item_id", [{"legacy_item_id": 1, "name; --": "x"}])

    @pytest.mark.asyncio
    async def test_existing_keys(self, target: AsyncEngine) -> None:
        """Test already migrated keys are loaded."""
        writer = BatchWriter(target, enable_tracing=False)
        await writer.write_batch(
            "items",
            "legacy_item_id",
            [{"legacy_item_id": 5, "name": "a"}, {"legacy_item_id": 9, "name": "b"}],
        )

        assert await writer.existing_keys("items", "legacy_item_id") == {5, 9}

    @pytest.mark.asyncio
    async def test_existing_keys_where(self, target: AsyncEngine) -> None:
        """Test the key scan is limited to rows matching the filter."""
        await run_sql(
            target,
            "INSERT INTO notes (legacy_table, legacy_id) VALUES ('dispatch_note', 5), ('dispatch_comment', 7)",
        )
        writer = BatchWriter(target, enable_tracing=False)

        keys = await writer.existing_keys("notes", "legacy_id", where={"legacy_table": "dispatch_comment"})
        assert keys == {7}

    @pytest.mark.asyncio
    async def test_existing_keys_failure(self, target: AsyncEngine) -> None:
        """Test a failed key scan is fatal."""
        writer = BatchWriter(target, enable_tracing=False)
        with pytest.raises(LookupBuildError) as exc_info:
            await writer.existing_keys("no_such_table", "legacy_id", migration_name="items")
        assert exc_info.value.lookup_name == "already_migrated"

    @pytest.mark.asyncio
    async def test_span(self, target: AsyncEngine, mock_tracer: MockTracer) -> None:
        """Test writes are traced with table and batch attributes."""
        writer = BatchWriter(target, tracer=mock_tracer)
        await writer.write_batch("items", "legacy_item_id", [{"legacy_item_id": 1, "name": "a"}], batch_number=4)

        span = mock_tracer.spans[0]
        assert span.name == "legacymigrate.writer.write_batch"
        assert span.attributes["legacymigrate.target.table"] == "items"
        assert span.attributes["legacymigrate.batch.number"] == 4
        assert span.attributes["db.operation"] == "INSERT"
        assert span.attributes["legacymigrate.rows.inserted"] == 1


class TestLookupTableBuilder:
    """Tests for building lookups from the target."""

    @pytest.mark.asyncio
    async def test_build(self, target: AsyncEngine) -> None:
        """Test legacy ids map to new keys."""
        doctors = await insert_target_doctors(target, [1, 2])
        builder = LookupTableBuilder(target, enable_tracing=False)

        table = await builder.build(DOCTOR_LOOKUP)

        assert dict(table) == doctors

    @pytest.mark.asyncio
    async def test_where_filter_and_text_ids(self, target: AsyncEngine) -> None:
        """Test filters apply and text legacy ids resolve integer lookups."""
        await insert_target_doctors(target, [1])
        await run_sql(
            target,
            "CREATE TABLE comments (id TEXT, legacy_table TEXT, legacy_id TEXT)",
            "INSERT INTO comments VALUES ('c-1', 'dispatch_comment', '7'), ('c-2', 'dispatch_note', '8')",
        )

        builder = LookupTableBuilder(target, enable_tracing=False)
        lookups = await builder.build_all(
            [
                DOCTOR_LOOKUP,
                LookupSpec("comments", "comments", "legacy_id", where={"legacy_table": "dispatch_comment"}),
            ]
        )

        assert lookups.names == ["doctors", "comments"]
        assert lookups.require("comments", 7) == "c-1"
        assert lookups.get("comments", 8) is None

    @pytest.mark.asyncio
    async def test_duplicate_legacy_ids_keep_first(
        self, target: AsyncEngine, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test duplicate legacy ids are reported and the first wins."""
        await run_sql(
            target,
            "CREATE TABLE links (id TEXT, legacy_id INTEGER)",
            "INSERT INTO links VALUES ('first', 1), ('second', 1)",
        )

        builder = LookupTableBuilder(target, enable_tracing=False)
        table = await builder.build(LookupSpec("links", "links", "legacy_id"))

        assert len(table) == 1
        assert table[1] in ("first", "second")
        assert "duplicate legacy ids" in caplog.text


class TestSourceReader:
    """Tests for SourceReader."""

    @pytest.mark.asyncio
    async def test_keyset_batches(self, source: AsyncEngine) -> None:
        """Test batches are ascending, complete and non-overlapping."""
        await insert_source_items(source, [(i, 1, f"item {i}") for i in (5, 1, 3, 2, 4)])
        reader = SourceReader(source, enable_tracing=False)

        batches = [batch async for batch in reader.iter_batches(item_config(batch_size=2))]

        assert [[row["id"] for row in batch] for batch in batches] == [[1, 2], [3, 4], [5]]
        assert batches[0][0] == {"id": 1, "doctor_id": 1, "name": "item 1"}

    @pytest.mark.asyncio
    async def test_start_after(self, source: AsyncEngine) -> None:
        """Test iteration can start after a cursor."""
        await insert_source_items(source, [(i, 1, f"item {i}") for i in range(1, 6)])
        reader = SourceReader(source, enable_tracing=False)

        batches = [batch async for batch in reader.iter_batches(item_config(), start_after=3)]

        assert [row["id"] for row in batches[0]] == [4, 5]

    @pytest.mark.asyncio
    async def test_offset_batches(self, source: AsyncEngine) -> None:
        """Test offset pagination returns the same rows."""
        await insert_source_items(source, [(i, 1, f"item {i}") for i in range(1, 6)])
        reader = SourceReader(source, enable_tracing=False)
        config = item_config(batch_size=2, pagination=PaginationMode.OFFSET)

        ids = [row["id"] async for batch in reader.iter_batches(config) for row in batch]

        assert ids == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_source_params_and_count(self, source: AsyncEngine) -> None:
        """Test bound source parameters apply to reads and counts."""
        await insert_source_items(source, [(1, 1, "a"), (2, 2, "b"), (3, 1, "c")])
        reader = SourceReader(source, enable_tracing=False)
        config = item_config(
            source_query="SELECT id, doctor_id, name FROM legacy_items WHERE doctor_id = :doctor;",
            source_params={"doctor": 1},
        )

        rows = await reader.fetch_batch(config, batch_number=1)

        assert [row["id"] for row in rows] == [1, 3]
        assert await reader.count(config) == 2

    @pytest.mark.asyncio
    async def test_missing_key_column(self, source: AsyncEngine) -> None:
        """Test a query without the key column is rejected."""
        await insert_source_items(source, [(1, 1, "a")])
        reader = SourceReader(source, enable_tracing=False)
        config = item_config(source_query="SELECT id AS legacy_id, name FROM legacy_items", source_key="legacy_id")

        rows = await reader.fetch_batch(config, batch_number=1)
        assert rows == [{"legacy_id": 1, "name": "a"}]

        with pytest.raises(SourceReadError):
            await reader.fetch_batch(item_config(source_query="SELECT name FROM legacy_items"), batch_number=1)

    @pytest.mark.asyncio
    async def test_count_failure(self, source: AsyncEngine) -> None:
        """Test a failing count raises SourceReadError."""
        reader = SourceReader(source, enable_tracing=False)
        with pytest.raises(SourceReadError):
            await reader.count(item_config(source_query="SELECT id FROM no_such_table"))
