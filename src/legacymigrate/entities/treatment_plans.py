"""
Treatment plans: ``dispatch_plan`` -> ``treatment_plans``.

Depends on orders (through the instruction id) and projects, both required:
``treatment_plans.project_id`` is NOT NULL, so plans whose project was not
migrated are skipped rather than rejected by the store.

Target requirements: unique ``treatment_plans.legacy_plan_id``.
"""

from __future__ import annotations

from typing import Any

from legacymigrate.entities._cleaning import migration_metadata
from legacymigrate.lookups import LookupTables
from legacymigrate.models import LookupSpec, MigrationConfig, SourceRow, TransformedRecord

NAME = "treatment_plans"

SOURCE_QUERY = """
    SELECT id, instruction_id, project_id, notes, number, name, original
    FROM dispatch_plan
"""

LOOKUPS = (
    LookupSpec("orders", "orders", "legacy_instruction_id"),
    LookupSpec("projects", "projects", "legacy_project_id"),
)


def transform_plan(row: SourceRow, lookups: LookupTables) -> TransformedRecord:
    return TransformedRecord(
        values={
            "legacy_plan_id": row["id"],
            "legacy_instruction_id": row["instruction_id"],
            "order_id": lookups.require("orders", row["instruction_id"]),
            "project_id": lookups.require("projects", row["project_id"]),
            "plan_name": row["name"],
            "plan_notes": row["notes"],
            "plan_number": row["number"],
            "is_original": bool(row["original"]),
        },
        metadata=migration_metadata(
            "dispatch_plan",
            source_project_id=row["project_id"],
        ),
    )


def build_config(**overrides: Any) -> MigrationConfig:
    """Migration config for treatment plans; keyword arguments override defaults."""
    options: dict[str, Any] = {
        "name": NAME,
        "source_query": SOURCE_QUERY,
        "target_table": "treatment_plans",
        "conflict_key": "legacy_plan_id",
        "transform": transform_plan,
        "lookups": LOOKUPS,
        "dependency_level": 4,
        "description": "Treatment plans of migrated orders and projects",
    }
    options.update(overrides)
    return MigrationConfig(**options)
