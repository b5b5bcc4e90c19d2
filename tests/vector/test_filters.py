# SPDX-License-Identifier: Apache-2.0
"""
Filter clauses: literal rendering and clause composition.
"""

import pytest

from cursor_sdk.vector.filters import (
    and_join,
    format_pk_literal,
    greater_than_clause,
    not_in_clause,
    require_primary_key_field,
)
from cursor_sdk.vector.iterator_base import (
    BadRequest,
    ConfigurationError,
    DataType,
    FieldSchema,
)
from tests.mock.mock_gateway import INT_PK, VARCHAR_PK


def test_format_int_literal():
    """Verify INT64 keys render as bare integers."""
    assert format_pk_literal(INT_PK, 42) == "42"
    assert format_pk_literal(INT_PK, -7) == "-7"


def test_format_varchar_literal_is_quoted_and_escaped():
    """Verify VARCHAR keys are double-quoted with quotes and backslashes escaped."""
    assert format_pk_literal(VARCHAR_PK, "abc") == '"abc"'
    assert format_pk_literal(VARCHAR_PK, 'say "hi"') == '"say \\"hi\\""'
    assert format_pk_literal(VARCHAR_PK, "a\\b") == '"a\\\\b"'
    assert format_pk_literal(VARCHAR_PK, "ünï") == '"ünï"'


@pytest.mark.parametrize(
    "field, value",
    [
        (INT_PK, "12"),
        (INT_PK, True),
        (INT_PK, 1.5),
        (VARCHAR_PK, 12),
    ],
)
def test_format_literal_rejects_mismatched_types(field, value):
    """Verify a value that disagrees with the declared key type is rejected."""
    with pytest.raises(BadRequest) as exc_info:
        format_pk_literal(field, value)

    assert exc_info.value.details["field"] == field.name


def test_greater_than_clause():
    """Verify the cursor clause is omitted until a key has been seen."""
    assert greater_than_clause(INT_PK, None) == ""
    assert greater_than_clause(INT_PK, 9) == "id > 9"
    assert greater_than_clause(VARCHAR_PK, "k9") == 'key > "k9"'


def test_not_in_clause():
    """Verify the tie clause lists ids without spaces and is omitted when empty."""
    assert not_in_clause(INT_PK, []) == ""
    assert not_in_clause(INT_PK, [3, 1, 2]) == "id not in [3,1,2]"
    assert not_in_clause(VARCHAR_PK, ["a", "b"]) == 'key not in ["a","b"]'


def test_and_join_skips_empty_clauses():
    """Verify empty and whitespace-only clauses are dropped."""
    assert and_join() == ""
    assert and_join("", None, "  ") == ""
    assert and_join(" a > 1 ") == "a > 1"
    assert and_join("", "id > 3") == "id > 3"
    assert and_join("a > 1", "id > 3") == "(a > 1) and (id > 3)"


def test_and_join_parenthesizes_disjunctions():
    """Verify clauses containing 'or' keep their grouping when combined."""
    assert and_join("a == 1 or b == 2", "id > 3") == "(a == 1 or b == 2) and (id > 3)"
    assert and_join("a == 1 || b == 2", "id > 3") == "(a == 1 || b == 2) and (id > 3)"
    # a lone disjunction needs no parens
    assert and_join("a == 1 or b == 2") == "a == 1 or b == 2"


@pytest.mark.parametrize("expr", ["id == 1||id == 2", "id == 1 OR id == 2", "(id == 1)or(id == 2)"])
def test_and_join_groups_unspaced_disjunctions(expr):
    """Verify a disjunction written without spaces cannot absorb the appended clause."""
    assert and_join(expr, "id > 5") == f"({expr}) and (id > 5)"


@pytest.mark.parametrize("data_type", [DataType.INT64, DataType.VARCHAR])
def test_primary_key_types_accepted(data_type):
    """Verify INT64 and VARCHAR are pageable primary key types."""
    require_primary_key_field(FieldSchema("pk", data_type, is_primary=True))


@pytest.mark.parametrize("data_type", [DataType.INT32, DataType.FLOAT, DataType.JSON])
def test_primary_key_types_rejected(data_type):
    """Verify other primary key types are configuration errors."""
    with pytest.raises(ConfigurationError) as exc_info:
        require_primary_key_field(FieldSchema("pk", data_type, is_primary=True))

    assert exc_info.value.details["data_type"] == data_type.value
