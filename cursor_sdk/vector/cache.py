# cursor_sdk/vector/cache.py
# SPDX-License-Identifier: Apache-2.0
"""
Pending-page cache for the result iterators.

A gateway round may fetch more rows than one ``next()`` hands out (a ring
probe overshoots, a query returns a double page). The surplus is parked here
under an integer handle until the next call consumes it.

Each iterator owns its own ``PageCache`` and at most one live handle; there is
no sharing and therefore no locking.
"""

from __future__ import annotations

import itertools
import logging
from typing import Dict, List, Optional

from cursor_sdk.vector.iterator_base import NO_CACHE_ID, Page, Row

logger = logging.getLogger(__name__)


class PageCache:
    """Very small handle -> page store."""

    def __init__(self) -> None:
        self._store: Dict[int, List[Row]] = {}
        self._ids = itertools.count(0)

    def store(self, handle: Optional[int], page: Page) -> int:
        """
        Store ``page``.

        ``None`` or ``NO_CACHE_ID`` allocates a fresh handle; any other handle
        has its page replaced. Returns the handle the page now lives under.
        """
        if handle is None or handle == NO_CACHE_ID:
            handle = next(self._ids)
        self._store[handle] = list(page)
        return handle

    def fetch(self, handle: Optional[int]) -> Optional[Page]:
        """Return the page stored under ``handle``, or None if absent/released."""
        if handle is None or handle == NO_CACHE_ID:
            return None
        return self._store.get(handle)

    def release(self, handle: Optional[int]) -> None:
        """Discard the page under ``handle``; releasing twice is a no-op."""
        if handle is None or handle == NO_CACHE_ID:
            return
        if self._store.pop(handle, None) is not None:
            logger.debug("released cached page handle=%s", handle)

    def __len__(self) -> int:
        return len(self._store)


__all__ = ["PageCache"]
