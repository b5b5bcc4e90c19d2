# cursor_sdk/vector/search_iterator.py
# SPDX-License-Identifier: Apache-2.0
"""
Ranked pagination over approximate nearest-neighbour search.

An ANN index only answers "the K closest to this vector". To page past the
first K, this iterator treats the score as a 1-D axis and issues *range*
searches over consecutive rings:

    seed:   top-K search               -> width, tail_band, tie set
    probe:  radius       = tail_band +/- width * coefficient
            range_filter = tail_band
            expr         = (<expr>) and (pk not in [ids tied at tail_band])

Rows from successive probes are merged into the page cache until a full batch
is available or the probe budget runs out. A short or empty page after the
budget is spent is the normal end-of-stream signal, not an error.

Metric direction
----------------
L2, JACCARD and HAMMING scores are distances: the ring grows by *raising* the
radius. IP and COSINE scores are similarities: the ring grows by *lowering*
it. Any other metric is rejected at construction.

Usage
-----
    it = SearchIterator(
        SearchIteratorSpec(
            collection_name="docs",
            vectors=[query_vec],
            anns_field="embedding",
            metric_type="COSINE",
            batch_size=100,
            top_k=1000,
            params={"ef": 200},
        ),
        gateway,
        FieldSchema("id", DataType.INT64, is_primary=True),
    )
    with it:
        for page in it:
            handle(page)
"""

from __future__ import annotations

import copy
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from cursor_sdk.vector.base_iterator import BaseResultIterator
from cursor_sdk.vector.filters import and_join, not_in_clause
from cursor_sdk.vector.iterator_base import (
    BadRequest,
    ConfigurationError,
    EF,
    FieldSchema,
    IterationTuning,
    IteratorStateError,
    MetricsSink,
    NO_CACHE_ID,
    OFFSET,
    Page,
    PageFilter,
    PrimaryKey,
    RADIUS,
    RANGE_FILTER,
    SearchIteratorSpec,
    SearchRequest,
    UNLIMITED,
    metrics_positive_related,
    normalize_metric,
)

logger = logging.getLogger(__name__)


def _numeric_param(params: Mapping[str, Any], name: str, kind: type, error_cls: type) -> Any:
    """Coerce ``params[name]`` with ``kind``; a non-numeric value raises ``error_cls``."""
    value = params[name]
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise error_cls(
            f"search param {name} must be numeric, got {value!r}",
            details={"param": name, "value": repr(value)},
        ) from e


@dataclass
class SearchIteratorState:
    """Mutable ring state, owned by exactly one SearchIterator."""
    init_success: bool = False
    returned_count: int = 0
    width: float = 0.0
    tail_band: float = 0.0
    filtered_ids: List[PrimaryKey] = field(default_factory=list)
    filtered_score: Optional[float] = None


class SearchIterator(BaseResultIterator):
    """
    Similarity-ring iterator.

    ``next()`` returns up to ``batch_size`` hits ordered by closeness, never
    repeating a primary key already tied at a ring boundary, and never more
    than ``top_k`` in total.
    """

    _component = "search_iterator"

    def __init__(
        self,
        spec: SearchIteratorSpec,
        gateway: Any,
        primary_field: FieldSchema,
        *,
        external_filter: Optional[PageFilter] = None,
        metrics: Optional[MetricsSink] = None,
        tuning: Optional[IterationTuning] = None,
    ) -> None:
        super().__init__(gateway, primary_field, metrics=metrics, tuning=tuning)
        self._validate_spec(spec)
        self._require_method(gateway, "search")

        self._spec = spec
        self._batch_size = spec.batch_size
        self._top_k = spec.top_k
        self._expr = spec.expr or ""
        self._metric_type = normalize_metric(spec.metric_type)
        self._positive = metrics_positive_related(self._metric_type)
        self._external_filter = external_filter
        self._params: Dict[str, Any] = copy.deepcopy(dict(spec.params or {}))
        self._state = SearchIteratorState()

        self._check_for_special_index_param()
        self._check_range_search_parameters()
        self._init_search_iterator()

    # --- validation ---

    def _validate_spec(self, spec: SearchIteratorSpec) -> None:
        self._require_non_empty("collection_name", spec.collection_name)
        self._require_non_empty("anns_field", spec.anns_field)
        self._require_batch_size(spec.batch_size)
        if spec.top_k != UNLIMITED and spec.top_k <= 0:
            raise BadRequest("top_k must be a positive integer or UNLIMITED")
        if not normalize_metric(spec.metric_type):
            raise BadRequest("must specify metric_type for search iterator")
        if not spec.vectors:
            raise BadRequest("Target vectors can not be empty")
        if len(spec.vectors) > 1:
            raise BadRequest(
                "search iteration over multiple vectors is not supported",
                details={"vectors": len(spec.vectors)},
            )
        params = spec.params or {}
        if params.get(OFFSET) is not None and _numeric_param(params, OFFSET, int, BadRequest) > 0:
            raise BadRequest("offset is not supported for search iteration")

    def _check_for_special_index_param(self) -> None:
        if EF not in self._params:
            return
        if _numeric_param(self._params, EF, int, ConfigurationError) < self._batch_size:
            raise ConfigurationError(
                "When using hnsw index, provided ef must be larger than or equal to batch size",
                details={"ef": self._params[EF], "batch_size": self._batch_size},
            )

    def _check_range_search_parameters(self) -> None:
        for name in (RADIUS, RANGE_FILTER):
            if name in self._params:
                _numeric_param(self._params, name, float, ConfigurationError)
        if RADIUS not in self._params or RANGE_FILTER not in self._params:
            return
        radius = float(self._params[RADIUS])
        range_filter = float(self._params[RANGE_FILTER])
        if self._positive and radius <= range_filter:
            raise ConfigurationError(
                f"for metrics:{self._metric_type}, radius must be larger than range_filter, "
                f"please adjust your parameter",
                details={"radius": radius, "range_filter": range_filter},
            )
        if not self._positive and radius >= range_filter:
            raise ConfigurationError(
                f"for metrics:{self._metric_type}, radius must be smaller than range_filter, "
                f"please adjust your parameter",
                details={"radius": radius, "range_filter": range_filter},
            )

    # --- state ---

    @property
    def state(self) -> SearchIteratorState:
        """Snapshot of the ring state."""
        return dataclasses.replace(self._state, filtered_ids=list(self._state.filtered_ids))

    def _context(self) -> Dict[str, Any]:
        return {
            "collection": self._spec.collection_name,
            "metric_type": self._metric_type,
            "batch_size": self._batch_size,
            "returned_count": self._state.returned_count,
            "width": self._state.width,
            "tail_band": self._state.tail_band,
        }

    # --- seed ---

    def _init_search_iterator(self) -> None:
        page = self._execute_search(copy.deepcopy(self._params), self._expr, to_extend=False)
        if not page:
            logger.error(
                "Cannot init search iterator because init page contains no matched rows, "
                "please check the radius and range_filter set up by search params"
            )
            self._cache_id = NO_CACHE_ID
            self._state.init_success = False
            return

        self._cache_id = self._cache.store(NO_CACHE_ID, self._filter_page(page))
        self._set_up_range_parameters(page)
        self._update_filtered_ids(page)
        self._state.init_success = True

    def _set_up_range_parameters(self, page: Page) -> None:
        self._update_width(page)
        self._state.tail_band = page[-1].score
        logger.debug(
            "set up init parameter for search iterator width:%s tail_band:%s",
            self._state.width,
            self._state.tail_band,
        )

    # --- ring arithmetic ---

    def _update_width(self, page: Page) -> None:
        first, last = page[0].score, page[-1].score
        width = (last - first) if self._positive else (first - last)
        width = abs(width)
        if width == 0.0:
            # a zero-width ring would make radius == range_filter
            width = self._tuning.min_width
        self._state.width = width

    def _next_params(self, coefficient: int) -> Dict[str, Any]:
        coefficient = max(1, coefficient)
        next_params = copy.deepcopy(self._params)
        tail_band = self._state.tail_band
        step = self._state.width * coefficient

        if self._positive:
            next_radius = tail_band + step
            if RADIUS in self._params and next_radius > float(self._params[RADIUS]):
                next_radius = float(self._params[RADIUS])
        else:
            next_radius = tail_band - step
            if RADIUS in self._params and next_radius < float(self._params[RADIUS]):
                next_radius = float(self._params[RADIUS])
        next_params[RADIUS] = next_radius
        next_params[RANGE_FILTER] = tail_band

        logger.debug(
            "next round search iteration radius:%s,range_filter:%s,coefficient:%s",
            next_params[RADIUS],
            next_params[RANGE_FILTER],
            coefficient,
        )
        return next_params

    def _extend_batch_size(self, next_params: Dict[str, Any], to_extend: bool) -> int:
        rate = self._tuning.extension_rate if to_extend else 1
        real_batch = min(self._tuning.max_batch_size, self._batch_size * rate)
        if EF in next_params:
            ef = int(next_params[EF])
            real_batch = min(real_batch, ef)
            if ef > real_batch:
                next_params[EF] = real_batch
        return real_batch

    # --- tie suppression ---

    def _update_filtered_ids(self, page: Page) -> None:
        if not page:
            return
        last_score = page[-1].score
        if self._state.filtered_score is None or last_score != self._state.filtered_score:
            # boundary moved, the old ties can no longer come back
            self._state.filtered_ids = []
            self._state.filtered_score = last_score

        for hit in page:
            if hit.score == last_score:
                self._state.filtered_ids.append(hit.pk)

        limit = self._tuning.max_filtered_ids
        if len(self._state.filtered_ids) > limit:
            raise ConfigurationError(
                f"filtered ids length has accumulated to more than {limit}, "
                f"there is a danger of overly memory consumption",
                details={"filtered_ids": len(self._state.filtered_ids), "max": limit},
            )

    def _filtered_duplicated_result_expr(self) -> str:
        return and_join(self._expr, not_in_clause(self._primary_field, self._state.filtered_ids))

    # --- gateway ---

    def _execute_search(self, next_params: Dict[str, Any], expr: str, *, to_extend: bool, **ctx: Any) -> Page:
        limit = self._extend_batch_size(next_params, to_extend)
        request = SearchRequest(
            collection_name=self._spec.collection_name,
            anns_field=self._spec.anns_field,
            vectors=self._spec.vectors,
            metric_type=self._metric_type,
            limit=limit,
            expr=expr,
            params=next_params,
            output_fields=tuple(self._spec.output_fields),
            partition_names=tuple(self._spec.partition_names),
            round_decimal=self._spec.round_decimal,
            group_by_field=self._spec.group_by_field,
            consistency_level=self._spec.consistency_level,
        )
        op = "probe" if to_extend else "seed"
        page = list(self._call_gateway(op, self._gateway.search, request, limit=limit, **ctx))
        for hit in page:
            if hit.score is None:
                raise IteratorStateError(
                    "search hit is missing its score",
                    details={"op": op, "collection": self._spec.collection_name},
                )
        return page

    def _filter_page(self, page: Page) -> Page:
        if self._external_filter is None:
            return page
        return list(self._external_filter(list(page)))

    # --- cache ---

    def _is_cache_enough(self, count: int) -> bool:
        cached = self._cache.fetch(self._cache_id)
        return cached is not None and len(cached) >= count

    def _extract_page_from_cache(self, count: int) -> Page:
        cached = self._cache.fetch(self._cache_id)
        if cached is None or len(cached) < count:
            raise IteratorStateError(
                f"tried to extract {count} rows from a cache holding "
                f"{0 if cached is None else len(cached)}",
            )
        self._cache.store(self._cache_id, cached[count:])
        return cached[:count]

    def _push_new_page_to_cache(self, page: Page) -> int:
        merged = list(self._cache.fetch(self._cache_id) or [])
        merged.extend(page)
        self._cache.release(self._cache_id)
        self._cache_id = self._cache.store(NO_CACHE_ID, merged)
        return len(merged)

    # --- probing ---

    def _try_search_fill(self) -> Page:
        """
        Probe outward ring by ring until a batch is collected.

        An empty probe widens the next ring (coefficient + 1) and counts
        against the probe budget; a probe that returns anything is merged,
        moves the tail band and resets the coefficient.

        If any probe fails, the tail band and tie set are rewound to where
        the fill started: the rows collected so far have not reached the
        cache yet, so the next call must probe for them again.
        """
        checkpoint = dataclasses.replace(self._state, filtered_ids=list(self._state.filtered_ids))
        try:
            return self._probe_rings()
        except Exception:
            self._state = checkpoint
            raise

    def _probe_rings(self) -> Page:
        final_page: Page = []
        stalls = 0
        coefficient = 1

        while True:
            next_params = self._next_params(coefficient)
            next_expr = self._filtered_duplicated_result_expr()
            new_page = self._execute_search(
                next_params, next_expr, to_extend=True, coefficient=coefficient
            )
            self._metrics.counter(component=self._component, name="probes", value=1)
            self._update_filtered_ids(new_page)

            if new_page:
                final_page.extend(self._filter_page(new_page))
                self._state.tail_band = new_page[-1].score
                coefficient = 1
            else:
                stalls += 1
                coefficient += 1

            if len(final_page) >= self._batch_size:
                break

            if stalls >= self._tuning.max_try_time:
                logger.warning(
                    "Search exceed max try times:%s directly break",
                    self._tuning.max_try_time,
                )
                self._metrics.counter(component=self._component, name="probe_budget_exhausted", value=1)
                break

        return final_page

    # --- public API ---

    def _reached_limit(self) -> bool:
        if self._top_k == UNLIMITED or self._state.returned_count < self._top_k:
            return False
        logger.debug(
            "reached search limit:%s, returned_count:%s, directly return",
            self._top_k,
            self._state.returned_count,
        )
        return True

    def next(self) -> Page:
        """
        Return the next page of hits.

        ``[]`` once the iterator failed to initialise, hit ``top_k``, or the
        rings are drained; a short page means the probe budget ran out.
        """
        if self._closed or not self._state.init_success or self._reached_limit():
            return []

        ret_len = self._batch_size
        if self._top_k != UNLIMITED:
            ret_len = min(ret_len, self._top_k - self._state.returned_count)

        if self._is_cache_enough(ret_len):
            page = self._extract_page_from_cache(ret_len)
            self._state.returned_count += len(page)
            return page

        new_page = self._try_search_fill()
        cached_len = self._push_new_page_to_cache(new_page)
        ret_len = min(cached_len, ret_len)
        page = self._extract_page_from_cache(ret_len)
        if len(page) == self._batch_size:
            self._update_width(page)

        if not page:
            self._state.filtered_ids.clear()

        self._state.returned_count += len(page)
        return page


__all__ = ["SearchIterator", "SearchIteratorState"]
