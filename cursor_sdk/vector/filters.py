# cursor_sdk/vector/filters.py
# SPDX-License-Identifier: Apache-2.0
"""
Boolean filter clauses injected by the iterators.

Literals are rendered from the primary field's *declared* type: VARCHAR keys
are double-quoted (with embedded quotes and backslashes escaped), INT64 keys
are rendered as integers. A value that does not match the declared type is a
``BadRequest`` rather than a silently malformed expression.
"""

from __future__ import annotations

import json
from typing import Iterable, Optional

from cursor_sdk.vector.iterator_base import (
    BadRequest,
    ConfigurationError,
    DataType,
    FieldSchema,
    PRIMARY_KEY_TYPES,
    PrimaryKey,
)


def require_primary_key_field(primary_field: FieldSchema) -> None:
    """Reject primary fields whose type cannot be paged by key."""
    if primary_field.data_type not in PRIMARY_KEY_TYPES:
        raise ConfigurationError(
            f"primary key field '{primary_field.name}' has unsupported type "
            f"{primary_field.data_type.value}; expected INT64 or VARCHAR",
            details={"field": primary_field.name, "data_type": primary_field.data_type.value},
        )


def format_pk_literal(primary_field: FieldSchema, value: PrimaryKey) -> str:
    """Render ``value`` as an expression literal for ``primary_field``."""
    if primary_field.data_type is DataType.VARCHAR:
        if not isinstance(value, str):
            raise BadRequest(
                f"primary key '{primary_field.name}' is VARCHAR but got {type(value).__name__}",
                details={"field": primary_field.name},
            )
        # json.dumps escapes quotes/backslashes the same way the expression parser reads them
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, bool) or not isinstance(value, int):
        raise BadRequest(
            f"primary key '{primary_field.name}' is INT64 but got {type(value).__name__}",
            details={"field": primary_field.name},
        )
    return str(int(value))


def and_join(*clauses: Optional[str]) -> str:
    """
    Join non-empty clauses with ``and``; empty input yields ``""``.

    Once more than one clause is present every clause is parenthesized, so
    an ``or`` inside a caller's filter (``or``, ``OR``, ``||``, spaced or
    not) cannot escape the join.
    """
    parts = [c.strip() for c in clauses if c and c.strip()]
    if len(parts) > 1:
        parts = [f"({p})" for p in parts]
    return " and ".join(parts)


def greater_than_clause(primary_field: FieldSchema, last_key: Optional[PrimaryKey]) -> str:
    """``pk > last_key``, or ``""`` when no key has been seen yet."""
    if last_key is None:
        return ""
    return f"{primary_field.name} > {format_pk_literal(primary_field, last_key)}"


def not_in_clause(primary_field: FieldSchema, ids: Iterable[PrimaryKey]) -> str:
    """``pk not in [a,b,...]``, or ``""`` for an empty id collection."""
    literals = [format_pk_literal(primary_field, i) for i in ids]
    if not literals:
        return ""
    return f"{primary_field.name} not in [{','.join(literals)}]"


__all__ = [
    "require_primary_key_field",
    "format_pk_literal",
    "and_join",
    "greater_than_clause",
    "not_in_clause",
]
