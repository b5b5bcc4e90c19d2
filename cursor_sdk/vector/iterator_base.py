# cursor_sdk/vector/iterator_base.py
# SPDX-License-Identifier: Apache-2.0
"""
Cursor SDK: Result iteration contracts

Purpose
-------
Typed contracts shared by the result iterators: the row/page data model,
declared schema types, the request shapes sent to the remote gateway, the
error taxonomy, tuning constants and the metrics extension point.

A remote vector database never returns more than a capped number of rows per
call. The iterators built on these contracts (``QueryIterator`` and
``SearchIterator``) turn those bounded responses into resumable,
duplicate-free logical cursors. Everything that actually talks to the server
lives behind the ``SearchGateway`` protocol:

    gateway.query(QueryRequest(...))   -> List[Row]   (ordered by primary key)
    gateway.search(SearchRequest(...)) -> List[Row]   (ordered best-first, scored)

Design Philosophy
-----------------
- Synchronous call-and-return: no threads, no event loop, no callbacks.
- Immutable configuration: iterator specs are frozen dataclasses validated
  once at construction.
- Typed rows: field values are tagged with their declared schema type so
  filter clauses (e.g. quoting string keys) never depend on runtime guessing.
- Errors are normalized: configuration problems fail fast, gateway failures
  surface as ``RemoteCallFailed``, exhaustion is never an error.

Deliberate Non-Goals
--------------------
- No transport, authentication, TLS or connection pooling.
- No retry of gateway errors inside the iterators (see ``cursor_sdk.core.retry``
  for an opt-in gateway middleware).
- No server-side query execution.
"""

from __future__ import annotations

import enum
import logging
import math
import os
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
    runtime_checkable,
)

ITERATOR_PROTOCOL_VERSION = "1.0.0"
LOG = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

UNLIMITED: int = -1
"""Sentinel for "no hard cap" on ``limit`` / ``top_k``."""

NO_CACHE_ID: int = -1
"""Sentinel handle meaning "no page cached"."""

MAX_BATCH_SIZE: int = 16384
"""Largest page a single gateway call may be asked for."""

MAX_TRY_TIME: int = 20
"""Probe attempts after which a ring fill gives up and returns what it has."""

DEFAULT_SEARCH_EXTENSION_RATE: int = 10
"""Multiplier applied to the batch size for ring probes."""

MAX_FILTERED_IDS_COUNT_ITERATION: int = 100000
"""Upper bound on primary keys tracked for tie suppression."""

MIN_RING_WIDTH: float = 0.05
"""Floor applied to a zero ring width."""

# Search parameter keys understood by the ring iterator.
EF = "ef"
RADIUS = "radius"
RANGE_FILTER = "range_filter"
OFFSET = "offset"

# =============================================================================
# Schema types and typed field values
# =============================================================================


class DataType(str, enum.Enum):
    """Declared schema field types."""

    BOOL = "BOOL"
    INT8 = "INT8"
    INT16 = "INT16"
    INT32 = "INT32"
    INT64 = "INT64"
    FLOAT = "FLOAT"
    DOUBLE = "DOUBLE"
    VARCHAR = "VARCHAR"
    JSON = "JSON"
    ARRAY = "ARRAY"
    FLOAT_VECTOR = "FLOAT_VECTOR"
    BINARY_VECTOR = "BINARY_VECTOR"
    FLOAT16_VECTOR = "FLOAT16_VECTOR"
    BFLOAT16_VECTOR = "BFLOAT16_VECTOR"
    SPARSE_FLOAT_VECTOR = "SPARSE_FLOAT_VECTOR"

    @property
    def is_integer(self) -> bool:
        return self in (DataType.INT8, DataType.INT16, DataType.INT32, DataType.INT64)

    @property
    def is_vector(self) -> bool:
        return self.name.endswith("_VECTOR")


PRIMARY_KEY_TYPES: Tuple[DataType, ...] = (DataType.INT64, DataType.VARCHAR)

PrimaryKey = Union[int, str]


@dataclass(frozen=True)
class FieldSchema:
    """
    A declared collection field.

    Attributes:
        name: Field name as known to the server
        data_type: Declared type of the field
        is_primary: Whether this field is the collection's primary key
    """
    name: str
    data_type: DataType
    is_primary: bool = False


@dataclass(frozen=True)
class FieldValue:
    """
    A single field value tagged with its declared schema type.

    Construction validates that the python value agrees with the tag; a
    ``None`` value is accepted for any type (nullable fields).
    """
    data_type: DataType
    value: Any

    def __post_init__(self) -> None:
        v = self.value
        if v is None:
            return
        dt = self.data_type
        ok: bool
        if dt is DataType.BOOL:
            ok = isinstance(v, bool)
        elif dt.is_integer:
            ok = isinstance(v, int) and not isinstance(v, bool)
        elif dt in (DataType.FLOAT, DataType.DOUBLE):
            ok = isinstance(v, (int, float)) and not isinstance(v, bool)
        elif dt is DataType.VARCHAR:
            ok = isinstance(v, str)
        elif dt is DataType.SPARSE_FLOAT_VECTOR:
            ok = isinstance(v, Mapping)
        elif dt in (DataType.BINARY_VECTOR, DataType.FLOAT16_VECTOR, DataType.BFLOAT16_VECTOR):
            ok = isinstance(v, (bytes, bytearray, memoryview, Sequence)) and not isinstance(v, str)
        elif dt in (DataType.FLOAT_VECTOR, DataType.ARRAY):
            ok = isinstance(v, Sequence) and not isinstance(v, (str, bytes))
        else:
            # JSON accepts any decoded JSON value
            ok = True
        if not ok:
            raise BadRequest(
                f"value of type {type(v).__name__} does not match declared type {dt.value}",
                details={"data_type": dt.value, "python_type": type(v).__name__},
            )


@dataclass(frozen=True)
class Row:
    """
    One result row.

    Attributes:
        pk: Primary key value (int or str, fixed per collection schema)
        fields: Typed field values keyed by field name
        score: Similarity score for search hits, None for query rows
    """
    pk: PrimaryKey
    fields: Mapping[str, FieldValue] = field(default_factory=dict)
    score: Optional[float] = None

    def __getitem__(self, name: str) -> Any:
        return self.fields[name].value

    def get(self, name: str, default: Any = None) -> Any:
        fv = self.fields.get(name)
        return default if fv is None else fv.value

    def to_dict(self) -> Dict[str, Any]:
        """Flatten to a plain dict; ``score`` is included for search hits."""
        out = {name: fv.value for name, fv in self.fields.items()}
        if self.score is not None:
            out["score"] = self.score
        return out


Page = List[Row]


def row_from_mapping(
    data: Mapping[str, Any],
    schema: Mapping[str, FieldSchema],
    primary_field: FieldSchema,
    *,
    score: Optional[float] = None,
) -> Row:
    """
    Build a typed ``Row`` from a raw field mapping using declared schema types.

    Fields absent from ``schema`` are typed as JSON (dynamic fields).
    """
    if primary_field.name not in data:
        raise BadRequest(
            f"row is missing primary key field '{primary_field.name}'",
            details={"primary_field": primary_field.name},
        )
    fields: Dict[str, FieldValue] = {}
    for name, value in data.items():
        fs = schema.get(name)
        fields[name] = FieldValue(fs.data_type if fs else DataType.JSON, value)
    return Row(pk=data[primary_field.name], fields=fields, score=score)


# =============================================================================
# Normalized Errors
# =============================================================================


class IteratorError(Exception):
    """
    Base exception for all iteration errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (UPPER_SNAKE_CASE)
        retry_after_ms: Suggested delay before retry (None if not retryable)
        details: Additional JSON-serializable context
    """
    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        retry_after_ms: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retry_after_ms = retry_after_ms
        self.details = dict(details or {})

    def asdict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization and logging."""
        return {
            "message": self.message,
            "code": self.code,
            "retry_after_ms": self.retry_after_ms,
            "details": {k: self.details[k] for k in sorted(self.details)},
        }


class BadRequest(IteratorError):
    """The request template is invalid (batch size, limit, vectors...)."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "BAD_REQUEST")
        super().__init__(message, **kwargs)


class ConfigurationError(BadRequest):
    """Metric, range or index parameters are inconsistent; never retried."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "BAD_CONFIG")
        super().__init__(message, **kwargs)


class IteratorStateError(IteratorError):
    """Internal page bookkeeping was violated."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "INTERNAL")
        super().__init__(message, **kwargs)


class RemoteCallFailed(IteratorError):
    """A gateway query/search call failed."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "REMOTE_CALL_FAILED")
        super().__init__(message, **kwargs)


class TransientNetwork(RemoteCallFailed):
    """Transient network failure that may succeed on retry."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "TRANSIENT_NETWORK")
        super().__init__(message, **kwargs)


class Unavailable(RemoteCallFailed):
    """Service is temporarily unavailable or overloaded."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "UNAVAILABLE")
        super().__init__(message, **kwargs)


class ResourceExhausted(RemoteCallFailed):
    """Quota or rate limit exceeded."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "RESOURCE_EXHAUSTED")
        super().__init__(message, **kwargs)


class AuthError(RemoteCallFailed):
    """Authentication or authorization failed."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "AUTH_ERROR")
        super().__init__(message, **kwargs)


class IndexNotReady(RemoteCallFailed):
    """Collection, partition or index is not loaded yet."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "INDEX_NOT_READY")
        super().__init__(message, **kwargs)


# =============================================================================
# Metric direction
# =============================================================================

_POSITIVE_RELATED_METRICS = frozenset({"L2", "JACCARD", "HAMMING"})
_NEGATIVE_RELATED_METRICS = frozenset({"IP", "COSINE"})


def normalize_metric(metric_type: Optional[str]) -> str:
    return (metric_type or "").strip().upper()


def metrics_positive_related(metric_type: str) -> bool:
    """
    Return True when a larger score means *farther* from the query.

    L2, JACCARD and HAMMING are distances (ring grows by raising the bound);
    IP and COSINE are similarities (ring grows by lowering the bound).
    """
    m = normalize_metric(metric_type)
    if m in _POSITIVE_RELATED_METRICS:
        return True
    if m in _NEGATIVE_RELATED_METRICS:
        return False
    raise ConfigurationError(
        f"unsupported metrics type for search iteration: {metric_type}",
        details={"metric_type": metric_type},
    )


# =============================================================================
# Tuning (numeric knobs, env-overridable)
# =============================================================================


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        LOG.warning("ignoring non-integer %s=%r", name, raw)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        LOG.warning("ignoring non-numeric %s=%r", name, raw)
        return default


@dataclass(frozen=True)
class IterationTuning:
    """
    Numeric knobs of the iteration engine.

    Attributes:
        max_try_time: Probe attempts before a ring fill gives up
        extension_rate: Batch size multiplier for ring probes
        max_batch_size: Ceiling on any single gateway call's limit
        max_filtered_ids: Ceiling on tracked tie ids
        min_width: Floor for a zero ring width
    """
    max_try_time: int = MAX_TRY_TIME
    extension_rate: int = DEFAULT_SEARCH_EXTENSION_RATE
    max_batch_size: int = MAX_BATCH_SIZE
    max_filtered_ids: int = MAX_FILTERED_IDS_COUNT_ITERATION
    min_width: float = MIN_RING_WIDTH

    def __post_init__(self) -> None:
        if self.max_try_time < 0:
            raise ConfigurationError("max_try_time must be >= 0")
        if self.extension_rate < 1:
            raise ConfigurationError("extension_rate must be >= 1")
        if self.max_batch_size < 1:
            raise ConfigurationError("max_batch_size must be >= 1")
        if self.max_filtered_ids < 1:
            raise ConfigurationError("max_filtered_ids must be >= 1")
        if not (self.min_width > 0 and math.isfinite(self.min_width)):
            raise ConfigurationError("min_width must be a positive finite number")

    @classmethod
    def from_env(cls) -> "IterationTuning":
        """
        Build tuning from ``CURSOR_SDK_*`` environment variables, falling back
        to the module defaults for unset or malformed values.
        """
        return cls(
            max_try_time=_env_int("CURSOR_SDK_MAX_TRY_TIME", MAX_TRY_TIME),
            extension_rate=_env_int("CURSOR_SDK_EXTENSION_RATE", DEFAULT_SEARCH_EXTENSION_RATE),
            max_batch_size=_env_int("CURSOR_SDK_MAX_BATCH_SIZE", MAX_BATCH_SIZE),
            max_filtered_ids=_env_int("CURSOR_SDK_MAX_FILTERED_IDS", MAX_FILTERED_IDS_COUNT_ITERATION),
            min_width=_env_float("CURSOR_SDK_MIN_RING_WIDTH", MIN_RING_WIDTH),
        )


# =============================================================================
# Metrics Interface (low-cardinality, payload-free)
# =============================================================================


class MetricsSink(Protocol):
    """
    Protocol for metrics collection implementations.

    Never include vectors, row payloads or filter literals in ``extra``.
    """
    def observe(
        self,
        *,
        component: str,
        op: str,
        ms: float,
        ok: bool,
        code: str = "OK",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Record operation timing and status."""
        ...

    def counter(
        self,
        *,
        component: str,
        name: str,
        value: int = 1,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Increment a counter metric."""
        ...


class NoopMetrics:
    """No-operation metrics sink for testing or when metrics are disabled."""
    def observe(self, **_: Any) -> None: ...
    def counter(self, **_: Any) -> None: ...


# =============================================================================
# Iterator request templates (immutable, validated by the iterators)
# =============================================================================


@dataclass(frozen=True)
class QueryIteratorSpec:
    """
    Request template for an exact filtered scan ordered by primary key.

    Attributes:
        collection_name: Target collection
        expr: Boolean filter expression ("" for none)
        batch_size: Rows per ``next()`` page
        limit: Hard cap on rows returned over the iterator's lifetime
        offset: Rows to skip before the first page
        output_fields: Fields to return
        partition_names: Partitions to restrict the scan to
        consistency_level: Passed through to the gateway untouched
    """
    collection_name: str
    expr: str = ""
    batch_size: int = 1000
    limit: int = UNLIMITED
    offset: int = 0
    output_fields: Tuple[str, ...] = ()
    partition_names: Tuple[str, ...] = ()
    consistency_level: Optional[str] = None


@dataclass(frozen=True)
class SearchIteratorSpec:
    """
    Request template for a ranked similarity scan.

    Attributes:
        collection_name: Target collection
        vectors: Query vectors (exactly one is supported)
        anns_field: Vector field to search
        metric_type: L2, IP, COSINE, JACCARD or HAMMING
        batch_size: Rows per ``next()`` page
        top_k: Hard cap on rows returned over the iterator's lifetime
        expr: Boolean filter expression ("" for none)
        params: Index/search params (ef, nprobe, radius, range_filter, ...)
        output_fields: Fields to return
        partition_names: Partitions to restrict the search to
        round_decimal: Score rounding passed to the server (-1 = none)
        group_by_field: Optional grouping field passed to the server
        consistency_level: Passed through to the gateway untouched
    """
    collection_name: str
    vectors: Sequence[Any]
    anns_field: str
    metric_type: str
    batch_size: int = 1000
    top_k: int = UNLIMITED
    expr: str = ""
    params: Mapping[str, Any] = field(default_factory=dict)
    output_fields: Tuple[str, ...] = ()
    partition_names: Tuple[str, ...] = ()
    round_decimal: int = -1
    group_by_field: Optional[str] = None
    consistency_level: Optional[str] = None


# =============================================================================
# Gateway request shapes (one RPC each)
# =============================================================================


@dataclass(frozen=True)
class QueryRequest:
    """One bounded scalar query."""
    collection_name: str
    expr: str
    limit: int
    offset: int = 0
    output_fields: Tuple[str, ...] = ()
    partition_names: Tuple[str, ...] = ()
    consistency_level: Optional[str] = None


@dataclass(frozen=True)
class SearchRequest:
    """One bounded similarity search for a single query vector."""
    collection_name: str
    anns_field: str
    vectors: Sequence[Any]
    metric_type: str
    limit: int
    expr: str = ""
    params: Mapping[str, Any] = field(default_factory=dict)
    output_fields: Tuple[str, ...] = ()
    partition_names: Tuple[str, ...] = ()
    round_decimal: int = -1
    group_by_field: Optional[str] = None
    consistency_level: Optional[str] = None


# =============================================================================
# Gateway Protocol (external collaborator)
# =============================================================================


@runtime_checkable
class SearchGateway(Protocol):
    """
    The remote query/search collaborator.

    Implementations execute exactly one bounded RPC per call and raise on
    failure; they return fewer rows than requested only when the server has
    no more candidates in range.
    """

    def query(self, request: QueryRequest) -> List[Row]: ...

    def search(self, request: SearchRequest) -> List[Row]: ...


PageFilter = Callable[[Page], Page]
"""Client-side post-filter applied to each probe's rows."""


__all__ = [
    "ITERATOR_PROTOCOL_VERSION",
    "UNLIMITED",
    "NO_CACHE_ID",
    "MAX_BATCH_SIZE",
    "MAX_TRY_TIME",
    "DEFAULT_SEARCH_EXTENSION_RATE",
    "MAX_FILTERED_IDS_COUNT_ITERATION",
    "MIN_RING_WIDTH",
    "EF",
    "RADIUS",
    "RANGE_FILTER",
    "OFFSET",
    "DataType",
    "PRIMARY_KEY_TYPES",
    "PrimaryKey",
    "FieldSchema",
    "FieldValue",
    "Row",
    "Page",
    "row_from_mapping",
    "IteratorError",
    "BadRequest",
    "ConfigurationError",
    "IteratorStateError",
    "RemoteCallFailed",
    "TransientNetwork",
    "Unavailable",
    "ResourceExhausted",
    "AuthError",
    "IndexNotReady",
    "normalize_metric",
    "metrics_positive_related",
    "IterationTuning",
    "MetricsSink",
    "NoopMetrics",
    "QueryIteratorSpec",
    "SearchIteratorSpec",
    "QueryRequest",
    "SearchRequest",
    "SearchGateway",
    "PageFilter",
]
