"""
Orders: ``dispatch_instruction`` + ``dispatch_patient`` -> ``orders``.

Depends on patients and doctors (both required) and offices (optional).
Deleted instructions are not migrated. The order number joins the
patient's suffix and the instruction id, e.g. ``AB-1042``.

Target requirements: unique ``orders.legacy_instruction_id``.
"""

from __future__ import annotations

from typing import Any

from legacymigrate.entities._cleaning import migration_metadata
from legacymigrate.lookups import LookupTables
from legacymigrate.models import LookupSpec, MigrationConfig, SourceRow, TransformedRecord

NAME = "orders"

SOURCE_QUERY = """
    SELECT i.id, i.patient_id, i.course_id, i.status, i.notes, i.complaint,
           i.price, i.submitted_at, i.updated_at,
           p.suffix, p.doctor_id, p.office_id
    FROM dispatch_instruction i
    INNER JOIN dispatch_patient p ON i.patient_id = p.id
    WHERE i.deleted = false
"""

LOOKUPS = (
    LookupSpec("patients", "patients", "legacy_patient_id"),
    LookupSpec("doctors", "doctors", "legacy_user_id"),
    LookupSpec("offices", "offices", "legacy_office_id"),
)

COURSE_TYPES = {
    1: "main",
    2: "refinement",
    3: "replacement",
    4: "any",
    7: "invoice",
    8: "merchandise",
}

ORDER_STATUSES = {
    0: "no_product",
    1: "submitted",
    2: "approved",
    4: "shipped",
}


def order_number(suffix: str | None, instruction_id: int) -> str:
    return f"{suffix or ''}-{instruction_id}"


def transform_order(row: SourceRow, lookups: LookupTables) -> TransformedRecord:
    return TransformedRecord(
        values={
            "legacy_instruction_id": row["id"],
            "order_number": order_number(row["suffix"], row["id"]),
            "patient_id": lookups.require("patients", row["patient_id"]),
            "doctor_id": lookups.require("doctors", row["doctor_id"]),
            "office_id": lookups.get("offices", row["office_id"]),
            "course_type": COURSE_TYPES.get(row["course_id"], "main"),
            "status": ORDER_STATUSES.get(row["status"], "no_product"),
            "notes": row["notes"],
            "complaint": row["complaint"],
            "amount": row["price"],
            "submitted_at": row["submitted_at"],
            "updated_at": row["updated_at"],
        },
        metadata=migration_metadata(
            "dispatch_instruction",
            source_course_id=row["course_id"],
            source_status=row["status"],
            legacy_office_id=row["office_id"],
        ),
    )


def build_config(**overrides: Any) -> MigrationConfig:
    """Migration config for orders; keyword arguments override defaults."""
    options: dict[str, Any] = {
        "name": NAME,
        "source_query": SOURCE_QUERY,
        "target_table": "orders",
        "conflict_key": "legacy_instruction_id",
        "transform": transform_order,
        "lookups": LOOKUPS,
        "dependency_level": 3,
        "description": "Non-deleted instructions of migrated patients",
    }
    options.update(overrides)
    return MigrationConfig(**options)
