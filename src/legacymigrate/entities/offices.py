"""
Offices: ``dispatch_office`` -> ``offices``.

Only valid offices are migrated. Tax rates are squeezed into numeric(5,4)
and the original value is preserved in the metadata payload.

Target requirements: unique ``offices.legacy_office_id``.
"""

from __future__ import annotations

from typing import Any

from legacymigrate.entities._cleaning import (
    migration_metadata,
    normalize_phone,
    normalize_tax_rate,
    normalize_text,
    normalize_zip,
)
from legacymigrate.lookups import LookupTables
from legacymigrate.models import MigrationConfig, SourceRow, TransformedRecord

NAME = "offices"

SOURCE_QUERY = """
    SELECT o.id, o.name, o.address, o.apt, o.city, o.state, o.zip,
           o.phone, o.tax_rate, o.valid, o.sq_customer_id, o.emails
    FROM dispatch_office o
    WHERE o.valid IS TRUE
"""


def transform_office(row: SourceRow, lookups: LookupTables) -> TransformedRecord:
    state = normalize_text(row["state"])
    return TransformedRecord(
        values={
            "legacy_office_id": row["id"],
            "name": normalize_text(row["name"]) or f"Office {row['id']}",
            "address": normalize_text(row["address"]),
            "apartment": normalize_text(row["apt"]),
            "city": normalize_text(row["city"]),
            "state": state.upper() if state else None,
            "zip_code": normalize_zip(row["zip"]),
            "country": "US",
            "phone": normalize_phone(row["phone"]),
            "tax_rate": normalize_tax_rate(row["tax_rate"]),
            "square_customer_id": row["sq_customer_id"] or None,
            "is_active": True,
            "email_notifications": True if row["emails"] is None else bool(row["emails"]),
        },
        metadata=migration_metadata(
            "dispatch_office",
            original_valid=row["valid"],
            original_tax_rate=row["tax_rate"],
        ),
    )


def build_config(**overrides: Any) -> MigrationConfig:
    """Migration config for offices; keyword arguments override defaults."""
    options: dict[str, Any] = {
        "name": NAME,
        "source_query": SOURCE_QUERY,
        "target_table": "offices",
        "conflict_key": "legacy_office_id",
        "transform": transform_office,
        "dependency_level": 1,
        "description": "Valid dispatch offices",
    }
    options.update(overrides)
    return MigrationConfig(**options)
