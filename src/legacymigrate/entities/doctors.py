"""
Doctors: ``auth_user`` with doctor settings or office assignments -> ``doctors``.

Depends on profiles: the doctor's profile is linked when one of type
'doctor' exists, and left empty otherwise.

Target requirements: unique ``doctors.legacy_user_id``.
"""

from __future__ import annotations

from typing import Any

from legacymigrate.entities._cleaning import clean_email, migration_metadata, normalize_text
from legacymigrate.lookups import LookupTables
from legacymigrate.models import LookupSpec, MigrationConfig, SourceRow, TransformedRecord

NAME = "doctors"

SOURCE_QUERY = """
    SELECT u.id, u.first_name, u.last_name, u.email, u.username,
           u.is_active, u.date_joined, u.last_login,
           EXISTS (SELECT 1 FROM dispatch_office_doctors od WHERE od.user_id = u.id)
               AS has_office_assignment,
           EXISTS (SELECT 1 FROM dispatch_usersetting us WHERE us.user_id = u.id)
               AS has_settings
    FROM auth_user u
    WHERE EXISTS (SELECT 1 FROM dispatch_office_doctors od WHERE od.user_id = u.id)
       OR EXISTS (SELECT 1 FROM dispatch_usersetting us WHERE us.user_id = u.id)
"""

LOOKUPS = (
    LookupSpec(
        "doctor_profiles",
        "profiles",
        "legacy_user_id",
        where={"profile_type": "doctor"},
    ),
)


def transform_doctor(row: SourceRow, lookups: LookupTables) -> TransformedRecord:
    return TransformedRecord(
        values={
            "legacy_user_id": row["id"],
            "legacy_doctor_id": row["id"],
            "profile_id": lookups.get("doctor_profiles", row["id"]),
            "first_name": normalize_text(row["first_name"]) or "",
            "last_name": normalize_text(row["last_name"]) or "",
            "email": clean_email(row["email"]),
            "specialization": "General Practice",
            "is_active": True if row["is_active"] is None else bool(row["is_active"]),
            "is_verified": True,
            "archived": False,
            "suspended": False,
        },
        metadata={
            **migration_metadata("auth_user"),
            "has_office_assignment": bool(row["has_office_assignment"]),
            "has_settings": bool(row["has_settings"]),
            "username": row["username"],
            "date_joined": row["date_joined"],
            "last_login": row["last_login"],
        },
    )


def build_config(**overrides: Any) -> MigrationConfig:
    """Migration config for doctors; keyword arguments override defaults."""
    options: dict[str, Any] = {
        "name": NAME,
        "source_query": SOURCE_QUERY,
        "target_table": "doctors",
        "conflict_key": "legacy_user_id",
        "transform": transform_doctor,
        "lookups": LOOKUPS,
        "dependency_level": 2,
        "description": "Users with doctor settings or office assignments",
    }
    options.update(overrides)
    return MigrationConfig(**options)
