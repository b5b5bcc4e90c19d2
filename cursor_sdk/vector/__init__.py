# cursor_sdk/vector/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
Result Iteration - Public API

This module provides the public interface for paging over a remote vector
database. All public types and iterators are re-exported here for clean
imports. ``MilvusGateway`` lives in ``cursor_sdk.vector.milvus_gateway``.
"""

from cursor_sdk.vector.iterator_base import (
    # Protocol version
    ITERATOR_PROTOCOL_VERSION,

    # Constants
    UNLIMITED,
    NO_CACHE_ID,
    MAX_BATCH_SIZE,
    MAX_TRY_TIME,
    DEFAULT_SEARCH_EXTENSION_RATE,
    MAX_FILTERED_IDS_COUNT_ITERATION,
    MIN_RING_WIDTH,

    # Data model
    DataType,
    FieldSchema,
    FieldValue,
    PrimaryKey,
    Row,
    Page,
    row_from_mapping,

    # Error types
    IteratorError,
    BadRequest,
    ConfigurationError,
    IteratorStateError,
    RemoteCallFailed,
    TransientNetwork,
    Unavailable,
    ResourceExhausted,
    AuthError,
    IndexNotReady,

    # Configuration and metrics
    IterationTuning,
    MetricsSink,
    NoopMetrics,

    # Specifications
    QueryIteratorSpec,
    SearchIteratorSpec,
    QueryRequest,
    SearchRequest,

    # Gateway interface
    SearchGateway,
    PageFilter,
)
from cursor_sdk.vector.cache import PageCache
from cursor_sdk.vector.query_iterator import QueryIterator, QueryIteratorState
from cursor_sdk.vector.search_iterator import SearchIterator, SearchIteratorState

__all__ = [
    "ITERATOR_PROTOCOL_VERSION",
    "UNLIMITED",
    "NO_CACHE_ID",
    "MAX_BATCH_SIZE",
    "MAX_TRY_TIME",
    "DEFAULT_SEARCH_EXTENSION_RATE",
    "MAX_FILTERED_IDS_COUNT_ITERATION",
    "MIN_RING_WIDTH",
    "DataType",
    "FieldSchema",
    "FieldValue",
    "PrimaryKey",
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
    "IterationTuning",
    "MetricsSink",
    "NoopMetrics",
    "QueryIteratorSpec",
    "SearchIteratorSpec",
    "QueryRequest",
    "SearchRequest",
    "SearchGateway",
    "PageFilter",
    "PageCache",
    "QueryIterator",
    "QueryIteratorState",
    "SearchIterator",
    "SearchIteratorState",
]
