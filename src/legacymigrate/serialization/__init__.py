"""
Serialization utilities for legacymigrate.

JSON encoding for the metadata payloads attached to migrated rows, which
routinely carry UUIDs, timestamps and numeric columns from the legacy schema.

Example:
    >>> from legacymigrate.serialization import json_dumps
    >>> json_dumps({"legacy_doctor_id": 71, "migrated_at": datetime.now(UTC)})
"""

from legacymigrate.serialization.json import (
    LegacyJSONEncoder,
    json_dumps,
    json_loads,
)

__all__ = [
    "LegacyJSONEncoder",
    "json_dumps",
    "json_loads",
]
