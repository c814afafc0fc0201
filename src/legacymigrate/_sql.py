"""
SQL identifier helpers.

Table and column names in migration configs end up interpolated into SQL
text, so they are validated and double-quoted here. Values always travel as
bound parameters.
"""

import re
from collections.abc import Mapping
from typing import Any

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_identifier(name: str) -> bool:
    """Return True if every dot-separated part of ``name`` is a plain SQL identifier."""
    return bool(name) and all(_IDENTIFIER.match(part) for part in name.split("."))


def quote_identifier(name: str) -> str:
    """
    Quote a (possibly schema-qualified) identifier for PostgreSQL and SQLite.

    Args:
        name: Identifier such as ``patients`` or ``public.patients``

    Returns:
        The quoted identifier, e.g. ``"public"."patients"``

    Raises:
        ValueError: If ``name`` is not a plain identifier
    """
    if not is_identifier(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return ".".join(f'"{part}"' for part in name.split("."))


def strip_statement(query: str) -> str:
    """Remove surrounding whitespace and trailing semicolons so a query can be nested."""
    return query.strip().rstrip(";").rstrip()


def equality_conditions(
    where: Mapping[str, Any] | None,
    prefix: str = "where",
) -> tuple[list[str], dict[str, Any]]:
    """
    Turn column -> value filters into ``"col" = :prefix_i`` conditions.

    Returns:
        The condition strings and their bound parameters
    """
    conditions = []
    params: dict[str, Any] = {}
    for i, (column, value) in enumerate((where or {}).items()):
        conditions.append(f"{quote_identifier(column)} = :{prefix}_{i}")
        params[f"{prefix}_{i}"] = value
    return conditions, params
