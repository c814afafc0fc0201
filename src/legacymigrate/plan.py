"""
Dependency-ordered execution of several migrations.

Entities reference each other through legacy ids, so a migration can only
resolve references to tables migrated before it. A MigrationPlan groups
configs by ``dependency_level`` and runs them level by level, each against
lookups built fresh from the target (later migrations see earlier inserts).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from legacymigrate.engine import MigrationEngine, ProgressCallback
from legacymigrate.exceptions import MigrationError
from legacymigrate.models import MigrationConfig, MigrationReport

logger = logging.getLogger(__name__)


@dataclass
class PlanResult:
    """
    Outcome of running a MigrationPlan.

    Attributes:
        reports: Reports of the migrations that completed, in run order
        failed_migration: Name of the migration that raised a fatal error
        error: The fatal error, if any
        not_run: Migrations never started because of the fatal error
    """

    reports: list[MigrationReport] = field(default_factory=list)
    failed_migration: str | None = None
    error: MigrationError | None = None
    not_run: list[str] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        """True if every migration in the plan ran to completion."""
        return self.error is None

    def report(self, migration_name: str) -> MigrationReport | None:
        """Get the report of one migration by name."""
        for report in self.reports:
            if report.migration_name == migration_name:
                return report
        return None

    @property
    def total_processed(self) -> int:
        return sum(report.processed for report in self.reports)

    @property
    def total_inserted(self) -> int:
        return sum(report.inserted for report in self.reports)


class MigrationPlan:
    """
    Ordered collection of migration configs.

    Configs run by ascending ``dependency_level``; within a level they keep
    the order they were added in.

    Example:
        >>> plan = MigrationPlan([offices, profiles, doctors, patients, comments])
        >>> result = await plan.run(engine)
        >>> result.completed
        True
    """

    def __init__(self, configs: Iterable[MigrationConfig] = ()) -> None:
        self._configs: list[MigrationConfig] = []
        for config in configs:
            self.add(config)

    def add(self, config: MigrationConfig) -> None:
        """
        Add a config to the plan.

        Raises:
            ValueError: If a config with the same name is already planned
        """
        if any(existing.name == config.name for existing in self._configs):
            raise ValueError(f"Migration {config.name} is already in the plan")
        self._configs.append(config)

    @property
    def configs(self) -> list[MigrationConfig]:
        """Configs in execution order."""
        return sorted(self._configs, key=lambda config: config.dependency_level)

    def levels(self) -> dict[int, list[str]]:
        """Migration names grouped by dependency level, ascending."""
        grouped: dict[int, list[str]] = {}
        for config in self.configs:
            grouped.setdefault(config.dependency_level, []).append(config.name)
        return grouped

    def __len__(self) -> int:
        return len(self._configs)

    async def run(
        self,
        engine: MigrationEngine,
        progress_callback: ProgressCallback | None = None,
    ) -> PlanResult:
        """
        Run every config in order, stopping at the first fatal error.

        Non-fatal outcomes (skips, failed batches) never stop the plan; they
        are in the individual reports.

        Args:
            engine: Engine bound to the source and target stores
            progress_callback: Passed to every run

        Returns:
            PlanResult with the completed reports and any fatal error
        """
        result = PlanResult()
        ordered = self.configs

        for index, config in enumerate(ordered):
            logger.info(
                "Plan step %d/%d: %s (level %d)",
                index + 1,
                len(ordered),
                config.name,
                config.dependency_level,
            )
            try:
                report = await engine.run(config, progress_callback)
            except MigrationError as e:
                result.failed_migration = config.name
                result.error = e
                result.not_run = [remaining.name for remaining in ordered[index + 1 :]]
                logger.error(
                    "Plan stopped at %s: %s; not run: %s",
                    config.name,
                    e,
                    ", ".join(result.not_run) or "none",
                )
                return result

            result.reports.append(report)

        logger.info(
            "Plan completed: %d migrations, %d rows processed, %d inserted",
            len(result.reports),
            result.total_processed,
            result.total_inserted,
        )
        return result


__all__ = ["MigrationPlan", "PlanResult"]
