"""
Catalog of concrete entity migrations.

Each entity module exposes a ``build_config(**overrides)`` factory returning
its MigrationConfig. The catalog keeps them in dependency order:

    level 1: offices, profiles
    level 2: doctors, patients, projects
    level 3: orders
    level 4: treatment_plans
    level 5: comments
    level 6: treatment_discussions

Example:
    >>> from legacymigrate.entities import build_plan
    >>> plan = build_plan(["offices", "patients"], batch_size=100)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from legacymigrate.entities import (
    comments,
    doctors,
    offices,
    orders,
    patients,
    profiles,
    projects,
    treatment_plans,
)
from legacymigrate.models import MigrationConfig
from legacymigrate.plan import MigrationPlan

ConfigFactory = Callable[..., MigrationConfig]

CATALOG: dict[str, ConfigFactory] = {
    offices.NAME: offices.build_config,
    profiles.NAME: profiles.build_config,
    doctors.NAME: doctors.build_config,
    patients.NAME: patients.build_config,
    projects.NAME: projects.build_config,
    orders.NAME: orders.build_config,
    treatment_plans.NAME: treatment_plans.build_config,
    comments.COMMENTS: comments.build_config,
    comments.DISCUSSIONS: comments.build_discussion_config,
}


def entity_names() -> list[str]:
    """Names of all catalogued entities, in dependency order."""
    return list(CATALOG)


def get_config(name: str, **overrides: Any) -> MigrationConfig:
    """
    Build the MigrationConfig of one entity.

    Raises:
        KeyError: If the entity is not in the catalog
    """
    try:
        factory = CATALOG[name]
    except KeyError:
        raise KeyError(f"Unknown entity '{name}'; available: {', '.join(CATALOG)}") from None
    return factory(**overrides)


def build_plan(names: Iterable[str] | None = None, **overrides: Any) -> MigrationPlan:
    """
    Build a MigrationPlan for the given entities (all when None).

    Keyword arguments are applied to every config, e.g. ``batch_size``.
    """
    selected = list(names) if names else entity_names()
    return MigrationPlan(get_config(name, **overrides) for name in selected)


__all__ = ["CATALOG", "entity_names", "get_config", "build_plan"]
