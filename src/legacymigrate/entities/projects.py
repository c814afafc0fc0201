"""
Projects: ``dispatch_project`` -> ``projects``.

Depends on profiles: the creator is required, and projects whose creator
has no profile are skipped. Legacy integer type and status codes map to the
target enums, falling back to 'other' and 'draft'.

Target requirements: unique ``projects.legacy_project_id``.
"""

from __future__ import annotations

from typing import Any

from legacymigrate.entities._cleaning import migration_metadata
from legacymigrate.lookups import LookupTables
from legacymigrate.models import LookupSpec, MigrationConfig, SourceRow, TransformedRecord

NAME = "projects"

SOURCE_QUERY = """
    SELECT id, uid, created_at, name, size, public, type, status, creator_id
    FROM dispatch_project
"""

LOOKUPS = (LookupSpec("profiles", "profiles", "legacy_user_id"),)

PROJECT_TYPES = {
    1: "treatment_plan",
    2: "stl_upper",
    3: "stl_lower",
    4: "clinical_photo",
    5: "xray",
    6: "cbct_scan",
    7: "simulation",
    8: "aligner_design",
    9: "document",
}

PROJECT_STATUSES = {
    0: "draft",
    1: "in_review",
    2: "approved",
    3: "in_progress",
    4: "completed",
    5: "archived",
    6: "deleted",
}


def transform_project(row: SourceRow, lookups: LookupTables) -> TransformedRecord:
    return TransformedRecord(
        values={
            "legacy_project_id": row["id"],
            "creator_id": lookups.require("profiles", row["creator_id"]),
            "name": row["name"],
            "project_type": PROJECT_TYPES.get(row["type"], "other"),
            "status": PROJECT_STATUSES.get(row["status"], "draft"),
            "file_uid": row["uid"],
            "file_size_bytes": row["size"],
            "is_public": bool(row["public"]),
            "created_at": row["created_at"],
        },
        metadata=migration_metadata(
            "dispatch_project",
            source_type=row["type"],
            source_status=row["status"],
            source_creator_id=row["creator_id"],
        ),
    )


def build_config(**overrides: Any) -> MigrationConfig:
    """Migration config for projects; keyword arguments override defaults."""
    options: dict[str, Any] = {
        "name": NAME,
        "source_query": SOURCE_QUERY,
        "target_table": "projects",
        "conflict_key": "legacy_project_id",
        "transform": transform_project,
        "lookups": LOOKUPS,
        "dependency_level": 2,
        "description": "Project files with a migrated creator",
    }
    options.update(overrides)
    return MigrationConfig(**options)
