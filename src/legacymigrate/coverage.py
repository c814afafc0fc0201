"""
Post-run coverage verification.

Compares how many rows a migration's source query yields with how many
target rows carry a legacy key, and flags migrations below a threshold.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from legacymigrate._connection import execute_with_connection
from legacymigrate._sql import equality_conditions, quote_identifier
from legacymigrate.exceptions import LookupBuildError
from legacymigrate.models import MigrationConfig
from legacymigrate.reader import SourceReader

logger = logging.getLogger(__name__)

DEFAULT_HEALTH_THRESHOLD = 90.0


@dataclass(frozen=True)
class CoverageResult:
    """
    Source vs. target row counts for one migration.

    Attributes:
        migration_name: Name of the migration
        source_count: Rows returned by the source query
        target_count: Target rows with a non-null conflict key (within migrated_where)
        threshold: Minimum coverage percent considered healthy
    """

    migration_name: str
    source_count: int
    target_count: int
    threshold: float = DEFAULT_HEALTH_THRESHOLD

    @property
    def coverage_percent(self) -> float:
        """Target rows as a percentage of source rows (100.0 for an empty source)."""
        if self.source_count == 0:
            return 100.0
        return round(self.target_count / self.source_count * 100, 2)

    @property
    def is_healthy(self) -> bool:
        return self.coverage_percent >= self.threshold

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "migration_name": self.migration_name,
            "source_count": self.source_count,
            "target_count": self.target_count,
            "coverage_percent": self.coverage_percent,
            "threshold": self.threshold,
            "is_healthy": self.is_healthy,
        }


class CoverageChecker:
    """
    Computes CoverageResults for migration configs.

    Example:
        >>> checker = CoverageChecker(source_engine, target_engine)
        >>> result = await checker.check(patients_config)
        >>> result.is_healthy
        True
    """

    def __init__(
        self,
        source: AsyncEngine | AsyncConnection,
        target: AsyncEngine | AsyncConnection,
        *,
        threshold: float = DEFAULT_HEALTH_THRESHOLD,
    ) -> None:
        self._reader = SourceReader(source, enable_tracing=False)
        self._target = target
        self._threshold = threshold

    async def check(self, config: MigrationConfig) -> CoverageResult:
        """
        Count source and target rows for one migration.

        Raises:
            SourceReadError: If the source count fails
            LookupBuildError: If the target count fails
        """
        source_count = await self._reader.count(config)
        target_count = await self._count_target(config)

        result = CoverageResult(
            migration_name=config.name,
            source_count=source_count,
            target_count=target_count,
            threshold=self._threshold,
        )

        if result.is_healthy:
            logger.info(
                "%s coverage: %d/%d (%.2f%%)",
                config.name,
                target_count,
                source_count,
                result.coverage_percent,
            )
        else:
            logger.warning(
                "%s coverage below %.0f%%: %d/%d (%.2f%%)",
                config.name,
                self._threshold,
                target_count,
                source_count,
                result.coverage_percent,
            )
        return result

    async def check_all(self, configs: list[MigrationConfig]) -> list[CoverageResult]:
        """Check several migrations in order."""
        return [await self.check(config) for config in configs]

    async def _count_target(self, config: MigrationConfig) -> int:
        column = quote_identifier(config.conflict_key)
        filters, params = equality_conditions(config.migrated_where)
        conditions = [f"{column} IS NOT NULL", *filters]
        query = text(
            f"SELECT COUNT(*) FROM {quote_identifier(config.target_table)} "
            f"WHERE {' AND '.join(conditions)}"
        )
        try:
            async with execute_with_connection(self._target, transactional=False) as conn:
                result = await conn.execute(query, params)
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise LookupBuildError(
                "coverage",
                config.target_table,
                str(e),
                migration_name=config.name,
            ) from e


__all__ = ["CoverageChecker", "CoverageResult", "DEFAULT_HEALTH_THRESHOLD"]
