"""Value cleanup shared by the entity transforms."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from legacymigrate.serialization import json_loads

_WHITESPACE = re.compile(r"\s+")
_PHONE_JUNK = re.compile(r"[^0-9+\-\s()]")
_NON_DIGIT = re.compile(r"[^0-9]")

MAX_TAX_RATE = Decimal("0.9999")

GENDERS = {1: "male", 2: "female", 0: "other"}


def normalize_text(value: str | None) -> str | None:
    """Trim and collapse internal whitespace; empty strings become None."""
    if value is None:
        return None
    cleaned = _WHITESPACE.sub(" ", str(value).strip())
    return cleaned or None


def clean_name(value: str | None) -> str:
    """Normalized name, or 'Unknown' for blank and literal 'null' values."""
    cleaned = normalize_text(value)
    if not cleaned or cleaned == "null":
        return "Unknown"
    return cleaned


def clean_email(value: str | None) -> str | None:
    """Lower-cased email, or None when the value cannot be an address."""
    if not value or value.strip() in ("", "null") or "@" not in value:
        return None
    return value.strip().lower()


def normalize_phone(value: str | None) -> str | None:
    if not value:
        return None
    return _PHONE_JUNK.sub("", value).strip() or None


def normalize_zip(value: str | None) -> str | None:
    if not value:
        return None
    return _NON_DIGIT.sub("", value) or None


def normalize_tax_rate(value: Any) -> Decimal:
    """
    Fit a legacy tax rate into numeric(5,4).

    Values above 1 are percentages (10.25 -> 0.1025). Results are capped at
    0.9999; missing, unparsable or non-finite values become 0.
    """
    if value is None:
        return Decimal("0.0000")
    try:
        rate = Decimal(str(value))
    except InvalidOperation:
        return Decimal("0.0000")
    if not rate.is_finite():
        return Decimal("0.0000")
    if rate > 1:
        rate = rate / 100
    return min(rate, MAX_TAX_RATE).quantize(Decimal("0.0001"))


def gender_from_sex(sex: Any) -> str:
    """Map the legacy integer sex code to the target gender enum."""
    return GENDERS.get(sex, "unknown")


def parse_schemes(schemes: str | None) -> dict[str, Any] | None:
    """
    Parse the legacy ``schemes`` column into a medical history payload.

    JSON objects are kept as-is; anything else is wrapped under
    ``legacy_schemes`` so no source text is lost.
    """
    if not schemes:
        return None
    try:
        parsed = json_loads(schemes)
    except (TypeError, ValueError):
        return {"legacy_schemes": schemes}
    if isinstance(parsed, dict):
        return parsed or None
    return {"legacy_schemes": parsed}


def migration_metadata(source_table: str, **details: Any) -> dict[str, Any]:
    """Build the ``metadata.migration`` payload recorded on every migrated row."""
    return {
        "migration": {
            "source_table": source_table,
            "migrated_at": datetime.now(UTC).isoformat(),
            **details,
        }
    }
