# SPDX-License-Identifier: Apache-2.0
"""
Data model, error taxonomy and tuning configuration.
"""

import dataclasses

import pytest

from cursor_sdk.vector.iterator_base import (
    AuthError,
    BadRequest,
    ConfigurationError,
    DataType,
    FieldSchema,
    FieldValue,
    IndexNotReady,
    IteratorError,
    IteratorStateError,
    IterationTuning,
    MAX_TRY_TIME,
    NoopMetrics,
    QueryIteratorSpec,
    RemoteCallFailed,
    ResourceExhausted,
    Row,
    SearchGateway,
    TransientNetwork,
    Unavailable,
    metrics_positive_related,
    row_from_mapping,
)
from tests.mock.mock_gateway import INT_PK, MockGateway


# ---------------------------------------------------------------------------
# Typed values and rows
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "data_type, value",
    [
        (DataType.BOOL, True),
        (DataType.INT64, 7),
        (DataType.DOUBLE, 1),
        (DataType.FLOAT, 0.5),
        (DataType.VARCHAR, "x"),
        (DataType.FLOAT_VECTOR, [0.1, 0.2]),
        (DataType.SPARSE_FLOAT_VECTOR, {3: 0.5}),
        (DataType.BINARY_VECTOR, b"\x01"),
        (DataType.JSON, {"a": [1, 2]}),
        (DataType.VARCHAR, None),
    ],
)
def test_field_value_accepts_matching_values(data_type, value):
    """Verify values agreeing with their declared type are accepted."""
    assert FieldValue(data_type, value).value == value


@pytest.mark.parametrize(
    "data_type, value",
    [
        (DataType.BOOL, 1),
        (DataType.INT64, True),
        (DataType.INT32, "3"),
        (DataType.VARCHAR, 3),
        (DataType.FLOAT_VECTOR, "abc"),
        (DataType.SPARSE_FLOAT_VECTOR, [0.1]),
    ],
)
def test_field_value_rejects_mismatched_values(data_type, value):
    """Verify values disagreeing with their declared type raise BadRequest."""
    with pytest.raises(BadRequest) as exc_info:
        FieldValue(data_type, value)

    assert exc_info.value.details["data_type"] == data_type.value


def test_row_from_mapping_types_fields():
    """Verify declared fields keep their type and unknown fields become JSON."""
    schema = {"id": INT_PK, "title": FieldSchema("title", DataType.VARCHAR)}
    row = row_from_mapping({"id": 3, "title": "t", "extra": {"k": 1}}, schema, INT_PK, score=0.25)

    assert row.pk == 3
    assert row["title"] == "t"
    assert row.fields["extra"].data_type is DataType.JSON
    assert row.get("missing", "dflt") == "dflt"
    assert row.to_dict() == {"id": 3, "title": "t", "extra": {"k": 1}, "score": 0.25}


def test_row_from_mapping_requires_primary_key():
    """Verify a row without its primary key is rejected."""
    with pytest.raises(BadRequest):
        row_from_mapping({"title": "t"}, {}, INT_PK)


def test_query_row_to_dict_has_no_score():
    """Verify rows without a score flatten to their fields only."""
    row = Row(pk=1, fields={"id": FieldValue(DataType.INT64, 1)})
    assert row.to_dict() == {"id": 1}


def test_specs_are_immutable():
    """Verify request templates are frozen."""
    spec = QueryIteratorSpec(collection_name="docs")
    with pytest.raises(dataclasses.FrozenInstanceError):
        spec.batch_size = 5  # type: ignore[misc]


def test_mock_gateway_satisfies_protocol():
    """Verify the gateway protocol is runtime checkable."""
    assert isinstance(MockGateway(INT_PK, []), SearchGateway)
    assert not isinstance(object(), SearchGateway)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "cls, code",
    [
        (BadRequest, "BAD_REQUEST"),
        (ConfigurationError, "BAD_CONFIG"),
        (IteratorStateError, "INTERNAL"),
        (RemoteCallFailed, "REMOTE_CALL_FAILED"),
        (TransientNetwork, "TRANSIENT_NETWORK"),
        (Unavailable, "UNAVAILABLE"),
        (ResourceExhausted, "RESOURCE_EXHAUSTED"),
        (AuthError, "AUTH_ERROR"),
        (IndexNotReady, "INDEX_NOT_READY"),
    ],
)
def test_error_default_codes(cls, code):
    """Verify each error class carries its machine-readable default code."""
    err = cls("boom")
    assert isinstance(err, IteratorError)
    assert err.code == code
    assert err.retry_after_ms is None


def test_error_asdict_is_stable():
    """Verify asdict() serializes with sorted detail keys."""
    err = ResourceExhausted("slow down", retry_after_ms=250, details={"z": 1, "a": 2})

    data = err.asdict()

    assert data["message"] == "slow down"
    assert data["code"] == "RESOURCE_EXHAUSTED"
    assert data["retry_after_ms"] == 250
    assert list(data["details"]) == ["a", "z"]


def test_configuration_error_is_a_bad_request():
    """Verify configuration problems can be caught as BadRequest."""
    assert issubclass(ConfigurationError, BadRequest)
    assert issubclass(TransientNetwork, RemoteCallFailed)


# ---------------------------------------------------------------------------
# Metric direction
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "metric, positive",
    [("L2", True), ("jaccard", True), (" HAMMING ", True), ("IP", False), ("cosine", False)],
)
def test_metric_direction(metric, positive):
    """Verify distance metrics are positive related and similarities are not."""
    assert metrics_positive_related(metric) is positive


def test_unknown_metric_rejected():
    """Verify unknown metrics are configuration errors."""
    with pytest.raises(ConfigurationError):
        metrics_positive_related("BM25")


# ---------------------------------------------------------------------------
# Tuning
# ---------------------------------------------------------------------------

def test_tuning_defaults():
    """Verify default tuning mirrors the module constants."""
    tuning = IterationTuning()
    assert tuning.max_try_time == MAX_TRY_TIME
    assert tuning.extension_rate == 10
    assert tuning.max_batch_size == 16384
    assert tuning.min_width == pytest.approx(0.05)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_try_time": -1},
        {"extension_rate": 0},
        {"max_batch_size": 0},
        {"max_filtered_ids": 0},
        {"min_width": 0.0},
        {"min_width": float("inf")},
    ],
)
def test_tuning_validation(kwargs):
    """Verify nonsensical tuning values are rejected."""
    with pytest.raises(ConfigurationError):
        IterationTuning(**kwargs)


def test_tuning_from_env(monkeypatch):
    """Verify CURSOR_SDK_* variables override defaults and bad values are ignored."""
    monkeypatch.setenv("CURSOR_SDK_MAX_TRY_TIME", "5")
    monkeypatch.setenv("CURSOR_SDK_EXTENSION_RATE", "4")
    monkeypatch.setenv("CURSOR_SDK_MIN_RING_WIDTH", "0.2")
    monkeypatch.setenv("CURSOR_SDK_MAX_BATCH_SIZE", "lots")
    monkeypatch.delenv("CURSOR_SDK_MAX_FILTERED_IDS", raising=False)

    tuning = IterationTuning.from_env()

    assert tuning.max_try_time == 5
    assert tuning.extension_rate == 4
    assert tuning.min_width == pytest.approx(0.2)
    assert tuning.max_batch_size == 16384
    assert tuning.max_filtered_ids == 100000


def test_noop_metrics_accepts_anything():
    """Verify the default metrics sink swallows calls."""
    sink = NoopMetrics()
    sink.observe(component="c", op="o", ms=1.0, ok=True)
    sink.counter(component="c", name="n", value=3)
