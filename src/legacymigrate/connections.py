"""
Scoped acquisition of the source and target engines.

Both engines are created together, checked with ``SELECT 1`` and disposed
when the block exits, whatever the outcome of the migration.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from legacymigrate.exceptions import StoreConnectionError
from legacymigrate.settings import MigrationSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Stores:
    """The pair of engines a migration runs against."""

    source: AsyncEngine
    target: AsyncEngine


async def verify_connection(engine: AsyncEngine, store: str) -> None:
    """
    Check that a store answers a trivial query.

    Raises:
        StoreConnectionError: If the store is unreachable
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error("Cannot connect to %s database: %s", store, e)
        raise StoreConnectionError(store, str(e)) from e
    logger.info("Connected to %s database (%s)", store, engine.url.render_as_string(hide_password=True))


@asynccontextmanager
async def open_stores(
    source_url: str | URL,
    target_url: str | URL,
    **engine_options: Any,
) -> AsyncIterator[Stores]:
    """
    Create, verify and finally dispose the source and target engines.

    Args:
        source_url: SQLAlchemy URL of the source store
        target_url: SQLAlchemy URL of the target store
        **engine_options: Passed to ``create_async_engine`` for both engines

    Yields:
        Stores with both engines connected

    Raises:
        StoreConnectionError: If either store is unreachable

    Example:
        >>> async with open_stores(settings.source.url(), settings.target.url()) as stores:
        ...     engine = MigrationEngine(stores.source, stores.target)
    """
    source = create_async_engine(source_url, **engine_options)
    target = create_async_engine(target_url, **engine_options)
    try:
        await verify_connection(source, "source")
        await verify_connection(target, "target")
        yield Stores(source=source, target=target)
    finally:
        await source.dispose()
        await target.dispose()
        logger.debug("Disposed source and target engines")


@asynccontextmanager
async def open_stores_from_settings(settings: MigrationSettings) -> AsyncIterator[Stores]:
    """Open both stores described by ``settings``."""
    async with open_stores(
        settings.source.url(),
        settings.target.url(),
        pool_pre_ping=True,
    ) as stores:
        yield stores


__all__ = ["Stores", "verify_connection", "open_stores", "open_stores_from_settings"]
