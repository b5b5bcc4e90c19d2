# cursor_sdk/vector/milvus_gateway.py
# SPDX-License-Identifier: Apache-2.0
"""
Milvus-backed ``SearchGateway``.

Maps one ``QueryRequest`` / ``SearchRequest`` onto one ``MilvusClient.query``
/ ``MilvusClient.search`` call, types the returned rows with the declared
schema, and normalizes pymilvus errors into the iteration error taxonomy.

Usage
-----
    from pymilvus import MilvusClient
    from cursor_sdk.vector import DataType, FieldSchema, SearchIteratorSpec
    from cursor_sdk.vector.milvus_gateway import MilvusGateway

    gateway = MilvusGateway(
        client=MilvusClient(uri="http://localhost:19530"),
        schema=[
            FieldSchema("id", DataType.INT64, is_primary=True),
            FieldSchema("title", DataType.VARCHAR),
            FieldSchema("embedding", DataType.FLOAT_VECTOR),
        ],
    )

    with gateway.search_iterator(
        SearchIteratorSpec(
            collection_name="docs",
            vectors=[query_vec],
            anns_field="embedding",
            metric_type="L2",
            batch_size=100,
        )
    ) as it:
        for page in it:
            ...

Design notes
------------
- Synchronous: the client call runs on the caller's thread.
- Connection lifecycle, TLS and retries are the client's business; wrap the
  gateway in ``cursor_sdk.core.retry.RetryingGateway`` for transient retries.
- Range search params (``radius`` / ``range_filter``) travel inside
  ``search_params["params"]`` as Milvus expects.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Sequence

from cursor_sdk.vector.iterator_base import (
    AuthError,
    ConfigurationError,
    FieldSchema,
    IndexNotReady,
    IteratorError,
    IterationTuning,
    MetricsSink,
    Page,
    QueryIteratorSpec,
    QueryRequest,
    RemoteCallFailed,
    ResourceExhausted,
    Row,
    SearchIteratorSpec,
    SearchRequest,
    TransientNetwork,
    Unavailable,
    row_from_mapping,
)
from cursor_sdk.vector.query_iterator import QueryIterator
from cursor_sdk.vector.search_iterator import SearchIterator

logger = logging.getLogger(__name__)

try:  # pragma: no cover - import surface only
    import pymilvus  # type: ignore
    from pymilvus import MilvusClient  # type: ignore[attr-defined]

    try:
        from pymilvus.exceptions import MilvusException  # type: ignore[attr-defined]
    except Exception:  # pragma: no cover
        MilvusException = Exception  # type: ignore[assignment]
except Exception:  # pragma: no cover
    pymilvus = None  # type: ignore[assignment]
    MilvusClient = None  # type: ignore[assignment]
    MilvusException = Exception  # type: ignore[assignment]


class MilvusGateway:
    """
    ``SearchGateway`` over a Milvus collection via ``pymilvus.MilvusClient``.

    ``schema`` must list the primary key field (``is_primary=True``) and
    should list every output field so rows are typed by declaration rather
    than by inspection; undeclared fields are typed as JSON.
    """

    _component = "milvus_gateway"

    def __init__(
        self,
        *,
        schema: Sequence[FieldSchema],
        client: Optional["MilvusClient"] = None,
        uri: Optional[str] = None,
        token: Optional[str] = None,
        db_name: str = "default",
        timeout_s: Optional[float] = None,
    ) -> None:
        if client is None:
            if MilvusClient is None:
                raise RuntimeError(
                    "MilvusGateway requires the `pymilvus` Python package. "
                    "Install via `pip install pymilvus`."
                )
            uri = uri or os.getenv("MILVUS_URI") or "http://localhost:19530"
            client_kwargs: Dict[str, Any] = {"uri": uri}
            token = token or os.getenv("MILVUS_TOKEN")
            if token:
                client_kwargs["token"] = token
            if db_name:
                client_kwargs["db_name"] = db_name
            client = MilvusClient(**client_kwargs)  # type: ignore[call-arg]

        primaries = [f for f in schema if f.is_primary]
        if len(primaries) != 1:
            raise ConfigurationError(
                "schema must declare exactly one primary key field",
                details={"primary_fields": [f.name for f in primaries]},
            )

        self._client = client
        self._schema: Dict[str, FieldSchema] = {f.name: f for f in schema}
        self._primary_field = primaries[0]
        self._timeout_s = float(timeout_s) if timeout_s is not None else None

    @property
    def primary_field(self) -> FieldSchema:
        return self._primary_field

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _safe_get(obj: Any, key: str, default: Any = None) -> Any:
        """Support both dict-style and attribute-style access."""
        if isinstance(obj, Mapping):
            return obj.get(key, default)
        return getattr(obj, key, default)

    def _common_kwargs(self, partition_names: Sequence[str], consistency_level: Optional[str]) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {}
        if partition_names:
            kwargs["partition_names"] = list(partition_names)
        if consistency_level:
            kwargs["consistency_level"] = consistency_level
        if self._timeout_s is not None:
            kwargs["timeout"] = self._timeout_s
        return kwargs

    def _output_fields(self, requested: Sequence[str]) -> Optional[List[str]]:
        if not requested:
            return None
        fields = list(requested)
        if self._primary_field.name not in fields:
            fields.append(self._primary_field.name)
        return fields

    def _to_row(self, data: Mapping[str, Any], *, score: Optional[float] = None) -> Row:
        return row_from_mapping(data, self._schema, self._primary_field, score=score)

    def _hit_to_row(self, hit: Any) -> Row:
        entity = self._safe_get(hit, "entity") or {}
        data: Dict[str, Any] = dict(entity) if isinstance(entity, Mapping) else {}
        pk = self._safe_get(hit, "id")
        if pk is None:
            pk = data.get(self._primary_field.name)
        data[self._primary_field.name] = pk
        distance = self._safe_get(hit, "distance")
        return self._to_row(data, score=float(distance) if distance is not None else None)

    def _translate_error(self, err: Exception, *, op: str) -> IteratorError:
        """
        Map Milvus exceptions into normalized RemoteCallFailed types.

        Collection/partition "not found" is treated as IndexNotReady so it
        stays retryable while collection lifecycle lags behind the client.
        """
        msg = str(err) or f"Milvus error during {op}"
        lowered = msg.lower()
        logger.debug("Milvus error in %s: %r", op, err)

        if isinstance(err, MilvusException):
            status = getattr(err, "code", None)
            try:
                status_int: Optional[int] = int(status) if status is not None else None
            except (TypeError, ValueError):
                status_int = None

            if (
                "rate limit" in lowered
                or "too many requests" in lowered
                or "resource exhausted" in lowered
                or "exceeded quota" in lowered
            ):
                return ResourceExhausted(
                    "Milvus rate limit exceeded",
                    retry_after_ms=500,
                    details={"op": op},
                )

            if "unauthorized" in lowered or "forbidden" in lowered or "permission" in lowered:
                return AuthError(
                    "Milvus authentication/authorization error",
                    details={"op": op},
                )

            if (
                "not found" in lowered
                or "not loaded" in lowered
                or (status_int is not None and status_int == 7)
            ):
                return IndexNotReady(
                    "Milvus collection or partition not ready",
                    retry_after_ms=1000,
                    details={"op": op},
                )

            if "timeout" in lowered or "temporarily unavailable" in lowered or "connection" in lowered:
                return TransientNetwork(
                    "Milvus transient network error",
                    retry_after_ms=500,
                    details={"op": op},
                )

            if "invalid" in lowered or "illegal" in lowered or "bad request" in lowered:
                return RemoteCallFailed(
                    msg,
                    code="BAD_REQUEST",
                    details={"op": op},
                )

            return Unavailable(msg, details={"op": op})

        if "timeout" in lowered:
            return TransientNetwork("Milvus network timeout", retry_after_ms=500, details={"op": op})
        if "connection" in lowered:
            return TransientNetwork("Milvus connection error", retry_after_ms=500, details={"op": op})

        return Unavailable(msg, details={"op": op})

    # ------------------------------------------------------------------ #
    # SearchGateway
    # ------------------------------------------------------------------ #

    def query(self, request: QueryRequest) -> Page:
        kwargs = self._common_kwargs(request.partition_names, request.consistency_level)
        kwargs["limit"] = request.limit
        if request.offset:
            kwargs["offset"] = request.offset
        try:
            res = self._client.query(
                collection_name=request.collection_name,
                filter=request.expr,
                output_fields=self._output_fields(request.output_fields),
                **kwargs,
            )
        except Exception as exc:  # noqa: BLE001
            raise self._translate_error(exc, op="query") from exc
        return [self._to_row(r) for r in (res or [])]

    def search(self, request: SearchRequest) -> Page:
        kwargs = self._common_kwargs(request.partition_names, request.consistency_level)
        if request.round_decimal is not None and request.round_decimal >= 0:
            kwargs["round_decimal"] = request.round_decimal
        if request.group_by_field:
            kwargs["group_by_field"] = request.group_by_field

        search_params = {
            "metric_type": request.metric_type,
            "params": dict(request.params),
        }
        try:
            res = self._client.search(
                collection_name=request.collection_name,
                data=list(request.vectors),
                filter=request.expr,
                limit=request.limit,
                output_fields=self._output_fields(request.output_fields),
                search_params=search_params,
                anns_field=request.anns_field,
                **kwargs,
            )
        except Exception as exc:  # noqa: BLE001
            raise self._translate_error(exc, op="search") from exc

        # one list of hits per query vector; iterators send exactly one
        hits: Sequence[Any] = res[0] if res else []
        return [self._hit_to_row(h) for h in hits]

    # ------------------------------------------------------------------ #
    # Iterator factories
    # ------------------------------------------------------------------ #

    def query_iterator(
        self,
        spec: QueryIteratorSpec,
        *,
        metrics: Optional[MetricsSink] = None,
        tuning: Optional[IterationTuning] = None,
    ) -> QueryIterator:
        return QueryIterator(spec, self, self._primary_field, metrics=metrics, tuning=tuning)

    def search_iterator(
        self,
        spec: SearchIteratorSpec,
        *,
        external_filter=None,
        metrics: Optional[MetricsSink] = None,
        tuning: Optional[IterationTuning] = None,
    ) -> SearchIterator:
        return SearchIterator(
            spec,
            self,
            self._primary_field,
            external_filter=external_filter,
            metrics=metrics,
            tuning=tuning,
        )


__all__ = ["MilvusGateway"]
