# cursor_sdk/vector/query_iterator.py
# SPDX-License-Identifier: Apache-2.0
"""
Exact filtered pagination ordered by primary key.

Usage
-----
    from cursor_sdk.vector import QueryIterator, QueryIteratorSpec, FieldSchema, DataType

    it = QueryIterator(
        QueryIteratorSpec(collection_name="docs", expr="year > 2020", batch_size=500),
        gateway,
        FieldSchema("id", DataType.INT64, is_primary=True),
    )
    with it:
        for page in it:
            handle(page)

Server-side offsets get slower and less reliable the deeper they go, so this
iterator never uses them after the initial seek: every request carries
``<expr> and pk > <last returned key>`` and asks for one batch.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cursor_sdk.vector.base_iterator import BaseResultIterator
from cursor_sdk.vector.filters import and_join, greater_than_clause
from cursor_sdk.vector.iterator_base import (
    BadRequest,
    FieldSchema,
    IterationTuning,
    MetricsSink,
    NO_CACHE_ID,
    Page,
    PrimaryKey,
    QueryIteratorSpec,
    QueryRequest,
    UNLIMITED,
)

logger = logging.getLogger(__name__)


@dataclass
class QueryIteratorState:
    """Mutable cursor state, owned by exactly one QueryIterator."""
    last_key: Optional[PrimaryKey] = None
    returned_count: int = 0
    # set when the initial seek already ran past the last matching row
    drained_by_seek: bool = False


class QueryIterator(BaseResultIterator):
    """
    Cursor iterator over an exact filtered scan.

    ``next()`` returns up to ``batch_size`` rows in ascending primary key
    order; an empty page means no more matching rows exist.
    """

    _component = "query_iterator"

    def __init__(
        self,
        spec: QueryIteratorSpec,
        gateway: Any,
        primary_field: FieldSchema,
        *,
        metrics: Optional[MetricsSink] = None,
        tuning: Optional[IterationTuning] = None,
    ) -> None:
        super().__init__(gateway, primary_field, metrics=metrics, tuning=tuning)
        self._validate_spec(spec)
        self._require_method(gateway, "query")

        self._spec = spec
        self._batch_size = spec.batch_size
        self._limit = spec.limit
        self._expr = spec.expr or ""
        self._state = QueryIteratorState()

        self._seek(spec.offset)

    def _validate_spec(self, spec: QueryIteratorSpec) -> None:
        self._require_non_empty("collection_name", spec.collection_name)
        if not isinstance(spec.expr, str):
            raise BadRequest("expr must be a string")
        if spec.offset < 0:
            raise BadRequest("The offset value cannot be less than 0")
        if spec.limit != UNLIMITED and spec.limit < 0:
            raise BadRequest("The limit value cannot be less than 0")
        self._require_batch_size(spec.batch_size)

    # --- state ---

    @property
    def state(self) -> QueryIteratorState:
        """Snapshot of the cursor state."""
        return dataclasses.replace(self._state)

    def _context(self) -> Dict[str, Any]:
        return {
            "collection": self._spec.collection_name,
            "batch_size": self._batch_size,
            "returned_count": self._state.returned_count,
        }

    # --- gateway ---

    def _query(self, expr: str, limit: int) -> Page:
        request = QueryRequest(
            collection_name=self._spec.collection_name,
            expr=expr,
            limit=limit,
            offset=0,
            output_fields=tuple(self._spec.output_fields),
            partition_names=tuple(self._spec.partition_names),
            consistency_level=self._spec.consistency_level,
        )
        return list(self._call_gateway("query", self._gateway.query, request, limit=limit))

    def _seek(self, offset: int) -> None:
        """Skip ``offset`` rows with one call, remembering only the last key."""
        self._cache_id = NO_CACHE_ID
        if offset == 0:
            self._state.last_key = None
            return

        res = self._query(self._expr, offset)
        skipped = res[:offset]
        if len(skipped) < offset:
            logger.debug(
                "offset %s is past the end of the result set (%s rows), iterator drained",
                offset,
                len(skipped),
            )
            self._state.drained_by_seek = True
        self._update_cursor(skipped)

    # --- helpers ---

    def _next_expr(self) -> str:
        return and_join(self._expr, greater_than_clause(self._primary_field, self._state.last_key))

    def _update_cursor(self, page: Page) -> None:
        if page:
            self._state.last_key = page[-1].pk

    def _reached_limit(self) -> bool:
        return self._limit != UNLIMITED and self._state.returned_count >= self._limit

    def _truncate_to_limit(self, page: Page) -> Page:
        if self._limit == UNLIMITED:
            return page
        left = self._limit - self._state.returned_count
        if left >= len(page):
            return page
        return page[:max(0, left)]

    def _maybe_cache(self, res: Page) -> None:
        # requests ask for batch_size rows, but a gateway may over-return;
        # a full extra page is served from the cache without a round trip
        if len(res) < 2 * self._batch_size:
            return
        self._cache_id = self._cache.store(NO_CACHE_ID, res[self._batch_size:])

    # --- public API ---

    def next(self) -> Page:
        """Return the next page; ``[]`` once no more rows match or the limit is reached."""
        if self._closed or self._state.drained_by_seek or self._reached_limit():
            return []

        cached = self._cache.fetch(self._cache_id)
        if cached is not None and len(cached) >= self._batch_size:
            ret = cached[:self._batch_size]
            self._cache.store(self._cache_id, cached[self._batch_size:])
        else:
            self._cache.release(self._cache_id)
            self._cache_id = NO_CACHE_ID
            res = self._query(self._next_expr(), self._batch_size)
            self._maybe_cache(res)
            ret = res[:self._batch_size]

        ret = self._truncate_to_limit(ret)
        self._update_cursor(ret)
        self._state.returned_count += len(ret)
        return ret


__all__ = ["QueryIterator", "QueryIteratorState"]
