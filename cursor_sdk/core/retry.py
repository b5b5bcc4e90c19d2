# cursor_sdk/core/retry.py
# SPDX-License-Identifier: Apache-2.0
"""
Opt-in transient retry for gateway calls.

The iterators never retry on their own: a failed gateway call surfaces as
``RemoteCallFailed`` and the iterator's state is left exactly as it was, so
the caller may simply call ``next()`` again. Callers who prefer the gateway
itself to absorb short outages wrap it:

    gateway = RetryingGateway(MilvusGateway(schema=...), max_retries=3)

Transient retry
---------------
- Only errors matching ``retry_on`` are retried (by default the retryable
  ``RemoteCallFailed`` subclasses).
- Attempt N sleeps for ``backoff_s * (2 ** (N - 1))`` seconds, or for the
  error's ``retry_after_ms`` hint when that is larger.
- Each retry logs a warning; the final failure is re-raised unchanged.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Optional, Tuple, Type, TypeVar

from cursor_sdk.vector.iterator_base import (
    IndexNotReady,
    QueryRequest,
    ResourceExhausted,
    Row,
    SearchRequest,
    TransientNetwork,
    Unavailable,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_ON: Tuple[Type[BaseException], ...] = (
    TransientNetwork,
    Unavailable,
    ResourceExhausted,
    IndexNotReady,
)


def _delay_for(exc: BaseException, attempt: int, backoff_s: float) -> float:
    delay = backoff_s * (2 ** (attempt - 1))
    hint = getattr(exc, "retry_after_ms", None)
    if isinstance(hint, (int, float)) and hint > 0:
        delay = max(delay, hint / 1000.0)
    return delay


def with_transient_retry(
    func: Callable[[], T],
    *,
    max_retries: int = 3,
    backoff_s: float = 0.25,
    retry_on: Tuple[Type[BaseException], ...] = DEFAULT_RETRY_ON,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "gateway",
) -> T:
    """
    Call ``func()`` retrying transient failures with exponential backoff.

    Parameters
    ----------
    max_retries:
        Retry attempts after the first call; 0 disables retry.
    backoff_s:
        Initial backoff delay in seconds.
    retry_on:
        Exception types considered transient.
    sleep:
        Sleep function, injectable for tests.
    """
    max_retries = max(0, int(max_retries))
    backoff_s = max(0.0, float(backoff_s))
    attempt = 0
    while True:
        try:
            return func()
        except retry_on as exc:
            if attempt >= max_retries:
                logger.error(
                    "%s transient error persisted after %d retries: %s",
                    label,
                    max_retries,
                    exc,
                )
                raise
            attempt += 1
            delay = _delay_for(exc, attempt, backoff_s)
            logger.warning(
                "%s transient error attempt=%d/%d; backing off for %.3fs: %s",
                label,
                attempt,
                max_retries,
                delay,
                exc,
            )
            sleep(delay)


class RetryingGateway:
    """
    ``SearchGateway`` decorator that retries transient failures of the
    wrapped gateway's ``query`` / ``search`` calls.
    """

    def __init__(
        self,
        gateway: Any,
        *,
        max_retries: int = 3,
        backoff_s: float = 0.25,
        retry_on: Tuple[Type[BaseException], ...] = DEFAULT_RETRY_ON,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._gateway = gateway
        self._max_retries = max_retries
        self._backoff_s = backoff_s
        self._retry_on = retry_on
        self._sleep = sleep or time.sleep

    @property
    def inner(self) -> Any:
        return self._gateway

    def _call(self, label: str, func: Callable[[], T]) -> T:
        return with_transient_retry(
            func,
            max_retries=self._max_retries,
            backoff_s=self._backoff_s,
            retry_on=self._retry_on,
            sleep=self._sleep,
            label=label,
        )

    def query(self, request: QueryRequest) -> List[Row]:
        return self._call("query", lambda: self._gateway.query(request))

    def search(self, request: SearchRequest) -> List[Row]:
        return self._call("search", lambda: self._gateway.search(request))


__all__ = ["DEFAULT_RETRY_ON", "with_transient_retry", "RetryingGateway"]
