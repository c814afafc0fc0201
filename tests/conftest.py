"""
Shared pytest fixtures for the legacymigrate tests.

This module provides:
- SQLite availability check and skip marker
- Source and target async engines backed by SQLite files in tmp_path
- Engines pre-loaded with the test schema from tests.fixtures
- Tracer and checkpoint store fixtures
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from legacymigrate.checkpoints import InMemoryCheckpointStore
from legacymigrate.observability import MockTracer
from tests.fixtures import SOURCE_SCHEMA, TARGET_SCHEMA, run_sql

# ============================================================================
# SQLite Availability Check
# ============================================================================

AIOSQLITE_AVAILABLE = False
try:
    import aiosqlite  # noqa: F401

    AIOSQLITE_AVAILABLE = True
except ImportError:
    pass


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")


skip_if_no_aiosqlite = pytest.mark.skipif(not AIOSQLITE_AVAILABLE, reason="aiosqlite not installed")


# ============================================================================
# Engine Fixtures
# ============================================================================


def sqlite_url(path: Path) -> str:
    return f"sqlite+aiosqlite:///{path}"


async def _engine(path: Path) -> AsyncEngine:
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")
    return create_async_engine(sqlite_url(path))


@pytest_asyncio.fixture
async def source_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Provide an empty source database.

    Yields:
        AsyncEngine for a fresh SQLite file, disposed after the test
    """
    engine = await _engine(tmp_path / "source.db")
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def target_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Provide an empty target database.

    Yields:
        AsyncEngine for a fresh SQLite file, disposed after the test
    """
    engine = await _engine(tmp_path / "target.db")
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def source(source_engine: AsyncEngine) -> AsyncEngine:
    """Source database with the legacy test schema created."""
    await run_sql(source_engine, *SOURCE_SCHEMA)
    return source_engine


@pytest_asyncio.fixture
async def target(target_engine: AsyncEngine) -> AsyncEngine:
    """Target database with the migrated test schema created."""
    await run_sql(target_engine, *TARGET_SCHEMA)
    return target_engine


# ============================================================================
# Collaborator Fixtures
# ============================================================================


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Provide a tracer that records spans."""
    return MockTracer()


@pytest.fixture
def checkpoint_store() -> InMemoryCheckpointStore:
    """Provide an empty in-memory checkpoint store."""
    return InMemoryCheckpointStore(enable_tracing=False)
