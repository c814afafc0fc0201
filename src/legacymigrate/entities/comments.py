"""
Comments: ``dispatch_comment`` -> ``comments`` and ``treatment_discussions``.

A legacy comment becomes a ``comments`` row plus a ``treatment_discussions``
row linking it to its treatment plan. Both require the plan to have been
migrated (``treatment_plans.legacy_plan_id``); comments on unknown plans are
skipped. The author is optional: an unmapped author leaves ``author_id``
empty.

``comments`` also holds rows migrated from other legacy tables, so the
comment migration is scoped to ``legacy_table = 'dispatch_comment'``.

Target requirements: unique ``comments (legacy_table, legacy_id)`` and
``treatment_discussions.legacy_comment_id``.
"""

from __future__ import annotations

from typing import Any

from legacymigrate.lookups import LookupTables
from legacymigrate.models import LookupSpec, MigrationConfig, SourceRow, TransformedRecord

COMMENTS = "comments"
DISCUSSIONS = "treatment_discussions"

LEGACY_TABLE = "dispatch_comment"

SOURCE_QUERY = """
    SELECT c.id, c.created_at, c.text, c.author_id, c.plan_id
    FROM dispatch_comment c
    WHERE c.text IS NOT NULL AND TRIM(c.text) != ''
"""

PLAN_LOOKUP = LookupSpec("treatment_plans", "treatment_plans", "legacy_plan_id")
AUTHOR_LOOKUP = LookupSpec("profiles", "profiles", "legacy_user_id")
COMMENT_LOOKUP = LookupSpec(
    "comments",
    "comments",
    "legacy_id",
    where={"legacy_table": LEGACY_TABLE},
)


def transform_comment(row: SourceRow, lookups: LookupTables) -> TransformedRecord:
    lookups.require("treatment_plans", row["plan_id"])
    return TransformedRecord(
        values={
            "legacy_table": LEGACY_TABLE,
            "legacy_id": row["id"],
            "content": row["text"],
            "comment_type": "treatment_discussion",
            "author_id": lookups.get("profiles", row["author_id"]),
            "created_at": row["created_at"],
            "updated_at": row["created_at"],
        },
    )


def transform_discussion(row: SourceRow, lookups: LookupTables) -> TransformedRecord:
    return TransformedRecord(
        values={
            "legacy_comment_id": row["id"],
            "treatment_id": lookups.require("treatment_plans", row["plan_id"]),
            "comment_id": lookups.require("comments", row["id"]),
            "created_at": row["created_at"],
            "is_visible_to_patient": True,
        },
    )


def build_config(**overrides: Any) -> MigrationConfig:
    """Migration config for comments; keyword arguments override defaults."""
    options: dict[str, Any] = {
        "name": COMMENTS,
        "source_query": SOURCE_QUERY,
        "target_table": "comments",
        "conflict_key": "legacy_id",
        "migrated_where": {"legacy_table": LEGACY_TABLE},
        "transform": transform_comment,
        "lookups": (PLAN_LOOKUP, AUTHOR_LOOKUP),
        "dependency_level": 5,
        "description": "Non-empty comments on migrated treatment plans",
    }
    options.update(overrides)
    return MigrationConfig(**options)


def build_discussion_config(**overrides: Any) -> MigrationConfig:
    """Migration config linking migrated comments to their treatment plans."""
    options: dict[str, Any] = {
        "name": DISCUSSIONS,
        "source_query": SOURCE_QUERY,
        "target_table": "treatment_discussions",
        "conflict_key": "legacy_comment_id",
        "transform": transform_discussion,
        "lookups": (PLAN_LOOKUP, COMMENT_LOOKUP),
        "dependency_level": 6,
        "description": "Comment to treatment plan links",
    }
    options.update(overrides)
    return MigrationConfig(**options)
