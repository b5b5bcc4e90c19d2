# cursor_sdk/core/error_context.py
# SPDX-License-Identifier: Apache-2.0

"""
Error context utilities for iterators and gateways.

Iterators propagate gateway failures unchanged, but a bare transport error
says nothing about *where* in a long pagination it happened. This module
attaches that information (collection, iterator kind, operation, returned
count, ring parameters) to the exception object itself, leaving message,
type and traceback untouched.

Typical usage
-------------

    from cursor_sdk.core.error_context import attach_context

    try:
        rows = gateway.search(request)
    except Exception as exc:
        attach_context(
            exc,
            component="search_iterator",
            operation="probe",
            collection="docs",
            coefficient=3,
        )
        raise

Later, in error handlers:

    except Exception as exc:
        ctx = get_context(exc)
        logger.error("iteration failed", extra={"operation": ctx.get("operation")})

Two attributes are written:

* ``__cursor_context__`` (canonical), shared by every layer.
* ``__<component>_context__``, the same mapping under a component-specific
  name (e.g. ``__query_iterator_context__``) for discoverability.

Repeated calls merge; the first ``component`` recorded wins.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping, Optional

logger = logging.getLogger(__name__)

_CANONICAL_ATTR = "__cursor_context__"


def _component_attr(component: str) -> str:
    return f"__{component}_context__"


def attach_context(
    exc: BaseException,
    component: str,
    **context: Any,
) -> None:
    """
    Attach debugging context to an exception.

    Parameters
    ----------
    exc:
        The exception to enrich. Any BaseException is accepted.

    component:
        Origin of the context, e.g. ``"query_iterator"``, ``"search_iterator"``
        or ``"milvus_gateway"``. Stored under the ``component`` key and used
        to build the component-specific attribute name.

    **context:
        Arbitrary JSON-friendly values. Common keys:
            - operation: str ("seek", "next", "probe", "search", "query")
            - collection: str
            - batch_size / returned_count / coefficient: int
            - error_stage: str

        Never pass vectors, row payloads or credentials.

    Notes
    -----
    Attachment is best-effort: failures are logged at DEBUG and never
    prevent the original exception from propagating.
    """
    try:
        merged: MutableMapping[str, Any] = {}

        existing = getattr(exc, _CANONICAL_ATTR, None)
        if isinstance(existing, Mapping):
            merged.update(existing)

        merged.setdefault("component", component)
        merged.update(context)

        setattr(exc, _CANONICAL_ATTR, merged)
        setattr(exc, _component_attr(component), merged)
    except Exception as attachment_error:  # noqa: BLE001
        logger.debug(
            "Failed to attach error context to %s: %s",
            type(exc).__name__,
            attachment_error,
            extra={"component": component},
        )


def get_context(
    exc: BaseException,
    *,
    component: Optional[str] = None,
) -> Mapping[str, Any]:
    """
    Retrieve attached context from an exception.

    If ``component`` is given, the component-specific attribute is preferred;
    otherwise (or if it is missing) the canonical mapping is returned. An empty
    dict is returned when nothing was attached.
    """
    try:
        if component:
            ctx = getattr(exc, _component_attr(component), None)
            if isinstance(ctx, Mapping):
                return ctx

        ctx = getattr(exc, _CANONICAL_ATTR, None)
        if isinstance(ctx, Mapping):
            return ctx
    except Exception as retrieval_error:  # noqa: BLE001
        logger.debug(
            "Failed to retrieve error context from %s: %s",
            type(exc).__name__,
            retrieval_error,
        )

    return {}


def has_context(
    exc: BaseException,
    *,
    component: Optional[str] = None,
) -> bool:
    """Return True if non-empty context is attached (optionally for ``component``)."""
    if component:
        ctx = getattr(exc, _component_attr(component), None)
        return isinstance(ctx, Mapping) and len(ctx) > 0
    return len(get_context(exc)) > 0


def clear_context(
    exc: BaseException,
    *,
    component: Optional[str] = None,
) -> None:
    """
    Remove attached context from an exception.

    With ``component`` only that attribute (plus the canonical one) is removed;
    otherwise every ``__<name>_context__`` attribute is dropped.
    """
    try:
        if hasattr(exc, _CANONICAL_ATTR):
            delattr(exc, _CANONICAL_ATTR)

        if component:
            attr = _component_attr(component)
            if hasattr(exc, attr):
                delattr(exc, attr)
            return

        for attr in list(vars(exc)):
            if attr.startswith("__") and attr.endswith("_context__"):
                delattr(exc, attr)
    except Exception as clear_error:  # noqa: BLE001
        logger.debug(
            "Failed to clear error context from %s: %s",
            type(exc).__name__,
            clear_error,
        )


__all__ = [
    "attach_context",
    "get_context",
    "has_context",
    "clear_context",
]
