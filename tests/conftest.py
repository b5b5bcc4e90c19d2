# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures for the Cursor SDK tests.

Gateways are in-memory (``tests/mock/mock_gateway.py``); nothing here talks
to a real server.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import pytest

from cursor_sdk.vector.iterator_base import FieldSchema, IterationTuning
from tests.mock.mock_gateway import (
    INT_PK,
    TAG,
    VARCHAR_PK,
    MockGateway,
    int_rows,
)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

class RecordingMetrics:
    """MetricsSink that keeps every observation for assertions."""

    def __init__(self) -> None:
        self.observations: List[Dict[str, Any]] = []
        self.counters: Dict[Tuple[str, str], int] = {}

    def observe(
        self,
        *,
        component: str,
        op: str,
        ms: float,
        ok: bool,
        code: str = "OK",
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.observations.append(
            {"component": component, "op": op, "ms": ms, "ok": ok, "code": code, "extra": extra}
        )

    def counter(
        self,
        *,
        component: str,
        name: str,
        value: int = 1,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        key = (component, name)
        self.counters[key] = self.counters.get(key, 0) + value


# ---------------------------------------------------------------------------
# Schema fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def int_pk() -> FieldSchema:
    return INT_PK


@pytest.fixture
def varchar_pk() -> FieldSchema:
    return VARCHAR_PK


# ---------------------------------------------------------------------------
# Gateway fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def ten_rows_gateway() -> MockGateway:
    """INT64 keys 1..10, every key scored ``k / 10`` for search."""
    rows = int_rows(10)
    return MockGateway(
        INT_PK,
        rows,
        scores={r["id"]: r["id"] / 10 for r in rows},
        schema=[INT_PK, TAG],
    )


@pytest.fixture
def ring_gateway() -> MockGateway:
    """INT64 keys 1..30 with distinct ascending scores ``k / 10``."""
    rows = int_rows(30)
    return MockGateway(
        INT_PK,
        rows,
        scores={r["id"]: r["id"] / 10 for r in rows},
        schema=[INT_PK, TAG],
    )


@pytest.fixture
def metrics() -> RecordingMetrics:
    return RecordingMetrics()


@pytest.fixture
def fast_tuning() -> IterationTuning:
    """Small probe budget so exhaustion tests stay quick."""
    return IterationTuning(max_try_time=3)
