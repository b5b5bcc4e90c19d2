# cursor_sdk/vector/base_iterator.py
# SPDX-License-Identifier: Apache-2.0
"""
Shared plumbing for the result iterators.

``BaseResultIterator`` owns the page cache handle, normalizes gateway
failures into ``RemoteCallFailed`` (attaching iteration context), records
SIEM-safe metrics, and provides the python iteration / context-manager
surface. Subclasses implement ``next()``.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterator, Optional, TypeVar

from cursor_sdk.core.error_context import attach_context
from cursor_sdk.vector.cache import PageCache
from cursor_sdk.vector.filters import require_primary_key_field
from cursor_sdk.vector.iterator_base import (
    BadRequest,
    FieldSchema,
    IterationTuning,
    IteratorError,
    MetricsSink,
    NO_CACHE_ID,
    NoopMetrics,
    Page,
    RemoteCallFailed,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")


class BaseResultIterator:
    """
    Base class for iterators that page over a remote gateway.

    Subclasses keep their live page under ``self._cache_id`` in ``self._cache``
    and implement ``next()``; an empty page is the terminal signal.
    """

    _component = "iterator"

    def __init__(
        self,
        gateway: Any,
        primary_field: FieldSchema,
        *,
        metrics: Optional[MetricsSink] = None,
        tuning: Optional[IterationTuning] = None,
    ) -> None:
        require_primary_key_field(primary_field)
        self._gateway = gateway
        self._primary_field = primary_field
        self._metrics: MetricsSink = metrics or NoopMetrics()
        self._tuning = tuning or IterationTuning()
        self._cache = PageCache()
        self._cache_id = NO_CACHE_ID
        self._closed = False

    # --- validation helpers ---

    @staticmethod
    def _require_non_empty(name: str, value: Any) -> None:
        if not isinstance(value, str) or not value.strip():
            raise BadRequest(f"{name} must be a non-empty string")

    @staticmethod
    def _require_method(gateway: Any, name: str) -> None:
        if not callable(getattr(gateway, name, None)):
            raise BadRequest(
                f"gateway must provide a callable {name}()",
                details={"gateway": type(gateway).__name__},
            )

    def _require_batch_size(self, batch_size: Any) -> None:
        if not isinstance(batch_size, int) or isinstance(batch_size, bool) or batch_size < 1:
            raise BadRequest("batch size must be a positive integer")
        if batch_size > self._tuning.max_batch_size:
            raise BadRequest(
                f"batch size cannot be larger than {self._tuning.max_batch_size}",
                details={"max_batch_size": self._tuning.max_batch_size},
            )

    # --- instrumentation ---

    def _record(self, op: str, t0: float, ok: bool, *, code: str = "OK", **extra: Any) -> None:
        try:
            ms = (time.monotonic() - t0) * 1000.0
            self._metrics.observe(
                component=self._component,
                op=op,
                ms=ms,
                ok=ok,
                code=code,
                extra=extra or None,
            )
        except Exception:
            # Never let metrics recording break the operation
            pass

    def _context(self) -> dict:
        """Iteration context attached to propagated errors; subclasses extend."""
        return {}

    def _call_gateway(self, op: str, func: Callable[[Any], R], request: Any, **ctx: Any) -> R:
        """
        Run one gateway call.

        IteratorErrors raised by the gateway propagate as-is; anything else is
        wrapped in ``RemoteCallFailed``. Either way iteration context is
        attached and no retry happens here.
        """
        info = {**self._context(), **ctx, "operation": op}
        t0 = time.monotonic()
        try:
            result = func(request)
        except IteratorError as e:
            attach_context(e, self._component, **info)
            self._record(op, t0, False, code=e.code or type(e).__name__)
            raise
        except Exception as e:
            err = RemoteCallFailed(
                f"{op} call failed: {e}",
                details={"op": op, "cause": type(e).__name__},
            )
            attach_context(err, self._component, **info)
            self._record(op, t0, False, code=err.code or "REMOTE_CALL_FAILED")
            raise err from e
        self._record(op, t0, True)
        return result

    # --- public surface ---

    @property
    def closed(self) -> bool:
        return self._closed

    def next(self) -> Page:
        raise NotImplementedError

    def close(self) -> None:
        """Release the cached page. Safe to call any number of times."""
        self._cache.release(self._cache_id)
        self._cache_id = NO_CACHE_ID
        self._closed = True

    def __iter__(self) -> Iterator[Page]:
        while True:
            page = self.next()
            if not page:
                return
            yield page

    def __enter__(self):
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


__all__ = ["BaseResultIterator"]
