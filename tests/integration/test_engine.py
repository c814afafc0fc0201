"""
Integration tests for MigrationEngine against SQLite source and target stores.

Tests for:
- Happy path insert with resolved references
- Idempotent re-runs (prefiltered and via ON CONFLICT), shared target tables
- Running on a connection owned by the caller
- Skips on unresolved references
- Batch failures, row fallback and transform errors
- Batch size and pagination independence
- Fatal source and lookup failures
- Resume checkpoints
- Tracing and progress reporting
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine

from legacymigrate import writer as writer_module
from legacymigrate.checkpoints import InMemoryCheckpointStore
from legacymigrate.engine import MigrationEngine
from legacymigrate.exceptions import ConfigurationError, LookupBuildError, SourceReadError
from legacymigrate.models import BatchProgress, LookupSpec, PaginationMode, TransformedRecord
from legacymigrate.observability import MockTracer
from legacymigrate.serialization import json_loads
from tests.conftest import skip_if_no_aiosqlite
from tests.fixtures import (
    fetch_all,
    insert_source_items,
    insert_target_doctors,
    item_config,
    note_config,
    run_sql,
    scalar,
    transform_item,
)

pytestmark = [pytest.mark.integration, pytest.mark.sqlite, skip_if_no_aiosqlite]


def make_engine(source: AsyncEngine, target: AsyncEngine, **kwargs) -> MigrationEngine:
    return MigrationEngine(source, target, enable_tracing=False, enable_metrics=False, **kwargs)


async def migrated_items(target: AsyncEngine) -> list[tuple]:
    return await fetch_all(target, "SELECT legacy_item_id, doctor_id, name FROM items ORDER BY legacy_item_id")


class TestHappyPath:
    """Tests for straightforward migrations."""

    @pytest.mark.asyncio
    async def test_inserts_rows_with_resolved_references(
        self, source: AsyncEngine, target: AsyncEngine
    ) -> None:
        """Test every source row lands with its foreign key resolved."""
        doctors = await insert_target_doctors(target, [1])
        await insert_source_items(source, [(1, 1, "a"), (2, 1, "b"), (3, 1, "c")])

        report = await make_engine(source, target).run(item_config())

        assert report.processed == 3
        assert report.inserted == 3
        assert report.skipped == 0
        assert report.errored == 0
        assert report.success_rate_percent == 100.0
        assert report.is_conserved
        assert report.batches == 1
        assert report.last_source_key == 3
        assert await migrated_items(target) == [
            (1, doctors[1], "a"),
            (2, doctors[1], "b"),
            (3, doctors[1], "c"),
        ]

    @pytest.mark.asyncio
    async def test_metadata_stored_as_json(self, source: AsyncEngine, target: AsyncEngine) -> None:
        """Test the metadata payload is written to its JSON column."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(1, 1, "a")])

        await make_engine(source, target).run(item_config())

        stored = await scalar(target, "SELECT metadata FROM items")
        assert json_loads(stored) == {"legacy_doctor_id": 1}

    @pytest.mark.asyncio
    async def test_conflict_key_filled_and_custom_metadata_column(
        self, source: AsyncEngine, target: AsyncEngine
    ) -> None:
        """Test the conflict key defaults to the source key and metadata may go elsewhere."""
        await run_sql(target, "ALTER TABLE items ADD COLUMN extra TEXT")
        await insert_source_items(source, [(1, 1, "a")])

        def transform(row, lookups):
            return TransformedRecord(
                values={"name": row["name"]},
                metadata={"note": "x"},
                metadata_column="extra",
            )

        await make_engine(source, target).run(item_config(transform=transform, lookups=()))

        rows = await fetch_all(target, "SELECT legacy_item_id, extra, metadata FROM items")
        assert rows == [(1, '{"note": "x"}', None)]

    @pytest.mark.asyncio
    async def test_empty_source(self, source: AsyncEngine, target: AsyncEngine) -> None:
        """Test an empty source yields an empty, healthy report."""
        report = await make_engine(source, target).run(item_config())

        assert report.processed == 0
        assert report.batches == 0
        assert report.success_rate_percent == 0.0
        assert report.is_healthy()


class TestIdempotence:
    """Tests for re-running a migration."""

    @pytest.mark.asyncio
    async def test_rerun_inserts_nothing(self, source: AsyncEngine, target: AsyncEngine) -> None:
        """Test a second run counts rows as already migrated."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(1, 1, "a"), (2, 1, "b"), (3, 1, "c")])
        engine = make_engine(source, target)

        await engine.run(item_config())
        before = await migrated_items(target)
        report = await engine.run(item_config())

        assert report.processed == 3
        assert report.inserted == 0
        assert report.already_migrated == 3
        assert report.is_conserved
        assert report.migrated_percent == 100.0
        assert await migrated_items(target) == before

    @pytest.mark.asyncio
    async def test_rerun_without_prefilter_relies_on_conflict(
        self, source: AsyncEngine, target: AsyncEngine
    ) -> None:
        """Test ON CONFLICT DO NOTHING alone keeps re-runs duplicate-free."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(1, 1, "a"), (2, 1, "b")])
        engine = make_engine(source, target)
        config = item_config(prefilter_migrated=False)

        await engine.run(config)
        report = await engine.run(config)

        assert report.inserted == 0
        assert report.already_migrated == 2
        assert await scalar(target, "SELECT COUNT(*) FROM items") == 2

    @pytest.mark.asyncio
    async def test_only_new_rows_inserted(self, source: AsyncEngine, target: AsyncEngine) -> None:
        """Test rows added to the source since the last run are picked up."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(1, 1, "a")])
        engine = make_engine(source, target)
        await engine.run(item_config())

        await insert_source_items(source, [(2, 1, "b")])
        report = await engine.run(item_config())

        assert report.inserted == 1
        assert report.already_migrated == 1

    @pytest.mark.asyncio
    async def test_rerun_with_unresolved_row(self, source: AsyncEngine, target: AsyncEngine) -> None:
        """Test a re-run skips the unresolved row again and inserts nothing."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(1, 1, "a"), (2, 2, "b"), (3, 1, "c")])
        engine = make_engine(source, target)

        first = await engine.run(item_config())
        assert (first.inserted, first.skipped) == (2, 1)

        report = await engine.run(item_config())

        assert report.processed == 3
        assert report.inserted == 0
        assert report.skipped == 1
        assert report.errored == 0
        assert report.already_migrated == 2
        assert report.is_conserved
        assert report.skipped_rows[0].source_key == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("prefilter", [True, False])
    async def test_shared_table_scoped_by_legacy_table(
        self, source: AsyncEngine, target: AsyncEngine, prefilter: bool
    ) -> None:
        """Test a key used by another legacy table in the same target table is not treated as migrated."""
        await run_sql(target, "INSERT INTO notes (legacy_table, legacy_id, content) VALUES ('legacy_notes', 1, 'x')")
        await insert_source_items(source, [(1, None, "a"), (2, None, "b")])
        engine = make_engine(source, target)
        config = note_config(prefilter_migrated=prefilter)

        report = await engine.run(config)
        assert report.inserted == 2
        assert report.already_migrated == 0

        report = await engine.run(config)
        assert report.inserted == 0
        assert report.already_migrated == 2

        rows = await fetch_all(target, "SELECT legacy_table, legacy_id, content FROM notes ORDER BY id")
        assert rows == [("legacy_notes", 1, "x"), ("legacy_items", 1, "a"), ("legacy_items", 2, "b")]


class TestSkips:
    """Tests for unresolved references."""

    @pytest.mark.asyncio
    async def test_unresolved_reference_skipped(self, source: AsyncEngine, target: AsyncEngine) -> None:
        """Test a row whose doctor was never migrated is skipped, not errored."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(1, 1, "a"), (2, 2, "b")])

        report = await make_engine(source, target).run(item_config())

        assert report.inserted == 1
        assert report.skipped == 1
        assert report.errored == 0
        skipped = report.skipped_rows[0]
        assert skipped.source_key == 2
        assert skipped.lookup_name == "doctors"
        assert skipped.legacy_id == 2
        assert [row[0] for row in await migrated_items(target)] == [1]

    @pytest.mark.asyncio
    async def test_missing_reference_skipped(self, source: AsyncEngine, target: AsyncEngine) -> None:
        """Test a row with no doctor at all is skipped."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(1, None, "a")])

        report = await make_engine(source, target).run(item_config())

        assert report.skipped == 1
        assert report.skipped_rows[0].legacy_id is None


class TestFailures:
    """Tests for non-fatal write and transform failures."""

    @pytest_asyncio.fixture
    async def hundred_items_one_bad(self, source: AsyncEngine, target: AsyncEngine) -> None:
        await insert_target_doctors(target, [1])
        await insert_source_items(
            source,
            [(i, 1, None if i == 37 else f"item {i}") for i in range(1, 101)],
        )

    @pytest.mark.asyncio
    async def test_failed_batch_marks_all_records_errored(
        self, source: AsyncEngine, target: AsyncEngine, hundred_items_one_bad: None
    ) -> None:
        """Test one bad row fails its whole batch and the run continues."""
        report = await make_engine(source, target).run(item_config(batch_size=50))

        assert report.processed == 100
        assert report.errored == 50
        assert report.inserted == 50
        assert report.is_conserved
        assert report.success_rate_percent == 50.0
        assert not report.is_healthy()

        failure = report.batch_failures[0]
        assert failure.batch_number == 1
        assert failure.record_count == 50
        assert (failure.first_key, failure.last_key) == (1, 50)
        assert failure.first_record_shape["name"] == "str"
        assert "NOT NULL" in failure.error.upper()

        ids = [row[0] for row in await migrated_items(target)]
        assert ids == list(range(51, 101))

    @pytest.mark.asyncio
    async def test_row_fallback_isolates_bad_row(
        self, source: AsyncEngine, target: AsyncEngine, hundred_items_one_bad: None
    ) -> None:
        """Test row fallback errors only the offending row."""
        report = await make_engine(source, target).run(item_config(batch_size=50, row_fallback=True))

        assert report.errored == 1
        assert report.inserted == 99
        assert report.is_conserved
        assert len(report.batch_failures) == 1
        assert report.row_errors[0].source_key == 37
        assert report.row_errors[0].stage == "write"

    @pytest.mark.asyncio
    async def test_transform_exception_errors_row_only(
        self, source: AsyncEngine, target: AsyncEngine
    ) -> None:
        """Test an exception inside the transform errors that row only."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(1, 1, "a"), (2, 1, "b"), (3, 1, "c")])

        def transform(row, lookups):
            if row["id"] == 2:
                raise ValueError("unparsable date")
            return transform_item(row, lookups)

        report = await make_engine(source, target).run(item_config(transform=transform))

        assert report.inserted == 2
        assert report.errored == 1
        assert report.row_errors[0].source_key == 2
        assert report.row_errors[0].stage == "transform"
        assert "unparsable date" in report.row_errors[0].error


class TestCallerConnection:
    """Tests for running against a connection owned by the caller."""

    @pytest.mark.asyncio
    async def test_run_joins_caller_transaction(self, source: AsyncEngine, target: AsyncEngine) -> None:
        """Test rows written on the caller's connection are kept once the caller commits."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(1, 1, "a"), (2, 1, "b")])

        async with target.connect() as conn:
            report = await make_engine(source, conn).run(item_config())
            await conn.commit()

        assert report.inserted == 2
        assert [row[0] for row in await migrated_items(target)] == [1, 2]

    @pytest.mark.asyncio
    async def test_failed_batch_rolls_back_every_statement(
        self,
        source: AsyncEngine,
        target: AsyncEngine,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test a batch split over several statements leaves no partial rows on the caller's connection."""
        monkeypatch.setattr(writer_module, "MAX_PARAMETERS_PER_STATEMENT", 4)
        await insert_target_doctors(target, [1])
        await insert_source_items(
            source,
            [(1, 1, "a"), (2, 1, "b"), (3, 1, None), (4, 1, "d"), (5, 1, "e")],
        )

        async with target.connect() as conn:
            report = await make_engine(source, conn).run(item_config(batch_size=3))
            await conn.commit()

        assert report.processed == 5
        assert report.errored == 3
        assert report.inserted == 2
        assert report.is_conserved
        assert [row[0] for row in await migrated_items(target)] == [4, 5]


class TestBatching:
    """Tests for batch size and pagination independence."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("batch_size", [1, 3, 7, 500])
    async def test_same_rows_for_any_batch_size(
        self, source: AsyncEngine, target: AsyncEngine, batch_size: int
    ) -> None:
        """Test the migrated set does not depend on the batch size."""
        doctors = await insert_target_doctors(target, [1, 2])
        await insert_source_items(source, [(i, 1 + i % 3, f"item {i}") for i in range(1, 21)])

        report = await make_engine(source, target).run(item_config(batch_size=batch_size))

        expected = [i for i in range(1, 21) if 1 + i % 3 in doctors]
        assert [row[0] for row in await migrated_items(target)] == expected
        assert report.inserted == len(expected)
        assert report.skipped == 20 - len(expected)
        assert report.batches == -(-20 // batch_size)

    @pytest.mark.asyncio
    async def test_offset_pagination(self, source: AsyncEngine, target: AsyncEngine) -> None:
        """Test offset pagination reads every row exactly once."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(i, 1, f"item {i}") for i in range(1, 11)])

        report = await make_engine(source, target).run(
            item_config(batch_size=4, pagination=PaginationMode.OFFSET)
        )

        assert report.processed == 10
        assert report.inserted == 10
        assert report.batches == 3

    @pytest.mark.asyncio
    async def test_progress_callback(self, source: AsyncEngine, target: AsyncEngine) -> None:
        """Test progress is reported after every batch."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(i, 1, f"item {i}") for i in range(1, 6)])
        progress: list[BatchProgress] = []

        await make_engine(source, target).run(item_config(batch_size=2), progress.append)

        assert [p.batch_number for p in progress] == [1, 2, 3]
        assert [p.processed for p in progress] == [2, 4, 5]
        assert [p.last_source_key for p in progress] == [2, 4, 5]
        assert progress[-1].inserted == 5


class TestFatalErrors:
    """Tests for failures that abort the run."""

    @pytest.mark.asyncio
    async def test_source_read_error(self, source: AsyncEngine, target: AsyncEngine) -> None:
        """Test an unreadable source aborts with SourceReadError."""
        config = item_config(source_query="SELECT id, doctor_id, name FROM no_such_table")

        with pytest.raises(SourceReadError) as exc_info:
            await make_engine(source, target).run(config)

        assert exc_info.value.batch_number == 1
        assert exc_info.value.migration_name == "items"

    @pytest.mark.asyncio
    async def test_lookup_failure_writes_nothing(self, source: AsyncEngine, target: AsyncEngine) -> None:
        """Test a lookup that cannot be built aborts before any write."""
        await insert_source_items(source, [(1, 1, "a")])
        config = item_config(lookups=(LookupSpec("doctors", "no_such_table", "legacy_doctor_id"),))

        with pytest.raises(LookupBuildError) as exc_info:
            await make_engine(source, target).run(config)

        assert exc_info.value.lookup_name == "doctors"
        assert await scalar(target, "SELECT COUNT(*) FROM items") == 0

    @pytest.mark.asyncio
    async def test_resume_without_store(self, source: AsyncEngine, target: AsyncEngine) -> None:
        """Test resume needs a checkpoint store."""
        await insert_target_doctors(target, [1])
        with pytest.raises(ConfigurationError):
            await make_engine(source, target).run(item_config(resume=True))


class TestResume:
    """Tests for checkpointed resume."""

    @pytest.mark.asyncio
    async def test_checkpoint_saved_after_each_batch(
        self,
        source: AsyncEngine,
        target: AsyncEngine,
        checkpoint_store: InMemoryCheckpointStore,
    ) -> None:
        """Test the cursor follows the last cleanly finished batch."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(i, 1, f"item {i}") for i in range(1, 6)])

        await make_engine(source, target, checkpoint_store=checkpoint_store).run(item_config(batch_size=2))

        checkpoint = await checkpoint_store.get_checkpoint("items")
        assert checkpoint is not None
        assert checkpoint.last_source_key == 5
        assert checkpoint.rows_processed == 5

    @pytest.mark.asyncio
    async def test_resume_reads_only_new_rows(
        self,
        source: AsyncEngine,
        target: AsyncEngine,
        checkpoint_store: InMemoryCheckpointStore,
    ) -> None:
        """Test a resumed run starts after the saved cursor."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(1, 1, "a"), (2, 1, "b"), (3, 1, "c")])
        engine = make_engine(source, target, checkpoint_store=checkpoint_store)
        await engine.run(item_config())

        await insert_source_items(source, [(4, 1, "d"), (5, 1, "e")])
        report = await engine.run(item_config(resume=True))

        assert report.processed == 2
        assert report.inserted == 2
        checkpoint = await checkpoint_store.get_checkpoint("items")
        assert checkpoint.last_source_key == 5
        assert checkpoint.rows_processed == 5

    @pytest.mark.asyncio
    async def test_cursor_stops_before_errored_batch(
        self,
        source: AsyncEngine,
        target: AsyncEngine,
        checkpoint_store: InMemoryCheckpointStore,
    ) -> None:
        """Test errored rows are revisited by the next resumed run."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(1, 1, "a"), (2, 1, "b"), (3, 1, None), (4, 1, "d"), (5, 1, "e")])
        engine = make_engine(source, target, checkpoint_store=checkpoint_store)

        first = await engine.run(item_config(batch_size=2))
        assert first.errored == 2
        checkpoint = await checkpoint_store.get_checkpoint("items")
        assert checkpoint.last_source_key == 2

        await run_sql(source, "UPDATE legacy_items SET name = 'c' WHERE id = 3")
        second = await engine.run(item_config(batch_size=2, resume=True))

        assert second.processed == 3
        assert second.inserted == 2
        assert second.already_migrated == 1
        assert [row[0] for row in await migrated_items(target)] == [1, 2, 3, 4, 5]


class TestTracing:
    """Tests for span emission."""

    @pytest.mark.asyncio
    async def test_spans(self, source: AsyncEngine, target: AsyncEngine, mock_tracer: MockTracer) -> None:
        """Test the run, lookup, read and write spans are emitted."""
        await insert_target_doctors(target, [1])
        await insert_source_items(source, [(1, 1, "a")])

        engine = MigrationEngine(source, target, tracer=mock_tracer, enable_metrics=False)
        await engine.run(item_config())

        names = mock_tracer.span_names
        assert names[0] == "legacymigrate.engine.run"
        assert "legacymigrate.lookups.build" in names
        assert names.count("legacymigrate.reader.fetch_batch") == 1
        assert names.count("legacymigrate.writer.write_batch") == 1

        run_attributes = mock_tracer.find("legacymigrate.engine.run")[0].attributes
        assert run_attributes["legacymigrate.migration.name"] == "items"
        assert run_attributes["db.system"] == "sqlite"
        assert run_attributes["legacymigrate.rows.processed"] == 1
        assert run_attributes["legacymigrate.rows.inserted"] == 1

        lookup_attributes = mock_tracer.find("legacymigrate.lookups.build")[0].attributes
        assert lookup_attributes["legacymigrate.lookup.size"] == 1
