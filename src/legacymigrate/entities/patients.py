"""
Patients: ``dispatch_patient`` + ``auth_user`` -> ``patients``.

Depends on profiles (required: a patient without a profile is skipped),
doctors and offices (optional: unresolved ids stay in the metadata payload
so relationships can be repaired later).

Target requirements: unique ``patients.legacy_patient_id``.
"""

from __future__ import annotations

from typing import Any

from legacymigrate.entities._cleaning import gender_from_sex, migration_metadata, parse_schemes
from legacymigrate.lookups import LookupTables
from legacymigrate.models import LookupSpec, MigrationConfig, SourceRow, TransformedRecord

NAME = "patients"

SOURCE_QUERY = """
    SELECT p.id, p.doctor_id, p.user_id, p.birthdate, p.office_id, p.archived,
           p.status, p.submitted_at, p.suffix, p.updated_at, p.sex, p.suspended,
           p.schemes, u.is_superuser, u.is_staff, u.is_active
    FROM dispatch_patient p
    INNER JOIN auth_user u ON p.user_id = u.id
"""

LOOKUPS = (
    LookupSpec("profiles", "profiles", "legacy_user_id"),
    LookupSpec("doctors", "doctors", "legacy_user_id"),
    LookupSpec("offices", "offices", "legacy_office_id"),
)


def transform_patient(row: SourceRow, lookups: LookupTables) -> TransformedRecord:
    profile_id = lookups.require("profiles", row["user_id"])
    return TransformedRecord(
        values={
            "legacy_patient_id": row["id"],
            "profile_id": profile_id,
            "doctor_id": lookups.get("doctors", row["doctor_id"]),
            "office_id": lookups.get("offices", row["office_id"]),
            "date_of_birth": row["birthdate"],
            "gender": gender_from_sex(row["sex"]),
            "suffix": row["suffix"] or None,
            "status": row["status"],
            "archived": bool(row["archived"]),
            "suspended": bool(row["suspended"]),
            "medical_history": parse_schemes(row["schemes"]),
            "submitted_at": row["submitted_at"],
        },
        metadata=migration_metadata(
            "dispatch_patient + auth_user",
            patient_data={
                "status": row["status"],
                "submitted_at": row["submitted_at"],
                "updated_at": row["updated_at"],
                "legacy_doctor_id": row["doctor_id"],
                "legacy_office_id": row["office_id"],
            },
            original_user_flags={
                "is_superuser": row["is_superuser"],
                "is_staff": row["is_staff"],
                "is_active": row["is_active"],
            },
        ),
    )


def build_config(**overrides: Any) -> MigrationConfig:
    """Migration config for patients; keyword arguments override defaults."""
    options: dict[str, Any] = {
        "name": NAME,
        "source_query": SOURCE_QUERY,
        "target_table": "patients",
        "conflict_key": "legacy_patient_id",
        "transform": transform_patient,
        "lookups": LOOKUPS,
        "dependency_level": 2,
        "description": "Patients linked to their profile, doctor and office",
    }
    options.update(overrides)
    return MigrationConfig(**options)
