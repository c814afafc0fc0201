"""
JSON for values read from the legacy schema.

Metadata payloads and checkpoint cursors are stored as JSON text. Legacy rows
hand back UUIDs, dates and ``numeric`` columns (Decimal) that the stock
encoder rejects; they are written as strings so nothing loses precision.

Example:
    >>> json_dumps({"original_tax_rate": Decimal("10.25"), "birthdate": date(1980, 5, 17)})
    '{"original_tax_rate": "10.25", "birthdate": "1980-05-17"}'
"""

import json
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID


class LegacyJSONEncoder(json.JSONEncoder):
    """
    Encoder for the extra types found in legacy rows.

    - UUID: canonical string
    - datetime, date, time: ISO 8601
    - Decimal: string
    - set, frozenset: sorted list
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID | Decimal):
            return str(obj)
        if isinstance(obj, datetime | date | time):
            return obj.isoformat()
        if isinstance(obj, set | frozenset):
            return sorted(obj)
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """Serialize with :class:`LegacyJSONEncoder`."""
    return json.dumps(obj, cls=LegacyJSONEncoder)


def json_loads(s: str | bytes) -> Any:
    """
    Parse JSON text.

    Strings written for UUIDs, dates and Decimals stay strings.

    Raises:
        ValueError: If ``s`` is not valid JSON
    """
    return json.loads(s)


__all__ = [
    "LegacyJSONEncoder",
    "json_dumps",
    "json_loads",
]
