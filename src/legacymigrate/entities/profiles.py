"""
Profiles: ``auth_user`` (+ first ``dispatch_patient``) -> ``profiles``.

Every legacy user gets one profile. The profile type is derived from the
user flags: users with a patient record are patients, superusers are
masters, staff are technicians and everyone else is a doctor.

Target requirements: unique ``profiles.legacy_user_id``.
"""

from __future__ import annotations

from typing import Any

from legacymigrate.entities._cleaning import (
    clean_email,
    clean_name,
    gender_from_sex,
    migration_metadata,
    parse_schemes,
)
from legacymigrate.lookups import LookupTables
from legacymigrate.models import MigrationConfig, SourceRow, TransformedRecord

NAME = "profiles"

SOURCE_QUERY = """
    SELECT u.id, u.username, u.first_name, u.last_name, u.email, u.password,
           u.is_superuser, u.is_staff, u.is_active, u.date_joined, u.last_login,
           p.id AS patient_id, p.doctor_id, p.birthdate, p.office_id,
           p.archived AS patient_archived, p.status AS patient_status,
           p.submitted_at, p.suffix, p.updated_at, p.sex,
           p.suspended AS patient_suspended, p.schemes
    FROM auth_user u
    LEFT JOIN dispatch_patient p ON p.id = (
        SELECT MIN(p2.id) FROM dispatch_patient p2 WHERE p2.user_id = u.id
    )
"""


def profile_type(row: SourceRow) -> str:
    if row["patient_id"] is not None:
        return "patient"
    if row["is_superuser"]:
        return "master"
    if row["is_staff"]:
        return "technician"
    return "doctor"


def transform_profile(row: SourceRow, lookups: LookupTables) -> TransformedRecord:
    is_patient = row["patient_id"] is not None
    return TransformedRecord(
        values={
            "legacy_user_id": row["id"],
            "legacy_patient_id": row["patient_id"],
            "profile_type": profile_type(row),
            "first_name": clean_name(row["first_name"]),
            "last_name": clean_name(row["last_name"]),
            "email": clean_email(row["email"]),
            "date_of_birth": row["birthdate"],
            "gender": gender_from_sex(row["sex"]),
            "username": row["username"] or None,
            "password_hash": row["password"] or None,
            "is_active": bool(row["is_active"]),
            "is_verified": False,
            "archived": bool(row["patient_archived"]),
            "suspended": bool(row["patient_suspended"]),
            "patient_suffix": row["suffix"] or None,
            "medical_history": parse_schemes(row["schemes"]),
            "last_login_at": row["last_login"],
        },
        metadata=migration_metadata(
            "auth_user + dispatch_patient",
            original_user_flags={
                "is_superuser": row["is_superuser"],
                "is_staff": row["is_staff"],
                "is_active": row["is_active"],
            },
            patient_data=(
                {
                    "doctor_id": row["doctor_id"],
                    "office_id": row["office_id"],
                    "status": row["patient_status"],
                    "submitted_at": row["submitted_at"],
                    "updated_at": row["updated_at"],
                }
                if is_patient
                else None
            ),
        ),
    )


def build_config(**overrides: Any) -> MigrationConfig:
    """Migration config for profiles; keyword arguments override defaults."""
    options: dict[str, Any] = {
        "name": NAME,
        "source_query": SOURCE_QUERY,
        "target_table": "profiles",
        "conflict_key": "legacy_user_id",
        "transform": transform_profile,
        "dependency_level": 1,
        "description": "One profile per legacy auth_user",
    }
    options.update(overrides)
    return MigrationConfig(**options)
