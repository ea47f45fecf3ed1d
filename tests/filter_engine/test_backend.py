# This test file covers the async adapter around the blocking HTTP client.
# It exists so GET routing, per-endpoint timeouts, and the retry policy stay predictable.
# A fake client records calls so no network is needed.

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from src.filter_engine.api_client import ApiUnavailableError
from src.filter_engine.backend import HttpAggregationBackend
from src.filter_engine.filter_set import FilterSet, eq


class _FakeClient:
    def __init__(self, outcomes: list[Any]) -> None:
        self.timeout_seconds = 30
        self.outcomes = outcomes
        self.calls: list[tuple[str, str, float | None]] = []

    def post_filters(self, path: str, filter_set: FilterSet, *, timeout_seconds: float | None = None) -> Any:
        self.calls.append(("POST", path, timeout_seconds))
        return self._next()

    def get_json(self, path: str, *, timeout_seconds: float | None = None) -> Any:
        self.calls.append(("GET", path, timeout_seconds))
        return self._next()

    def _next(self) -> Any:
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_routes_and_timeouts_per_endpoint() -> None:
    client = _FakeClient([{"a": 1}, {"b": 2}, []])
    backend = HttpAggregationBackend(
        client,
        endpoint_timeouts={"/filter/aggregated": 60, "/dashboard-data": 90},
    )

    async def scenario() -> None:
        await backend.fetch("/filter/aggregated", FilterSet.of(eq("tema", "A")))
        await backend.fetch("/dashboard-data", FilterSet.empty())
        await backend.fetch("/filter", FilterSet.of(eq("tema", "A")))

    asyncio.run(scenario())

    assert client.calls == [
        ("POST", "/filter/aggregated", 60),
        ("GET", "/dashboard-data", 90),
        ("POST", "/filter", 30),
    ]


def test_transient_failures_are_retried() -> None:
    client = _FakeClient([ApiUnavailableError("down"), ApiUnavailableError("down"), {"ok": True}])
    backend = HttpAggregationBackend(client, max_retries=2, retry_backoff_seconds=0)

    result = asyncio.run(backend.fetch("/filter/aggregated", FilterSet.empty()))

    assert result == {"ok": True}
    assert len(client.calls) == 3


def test_retries_are_bounded() -> None:
    client = _FakeClient([ApiUnavailableError("down")] * 3)
    backend = HttpAggregationBackend(client, max_retries=1, retry_backoff_seconds=0)

    with pytest.raises(ApiUnavailableError):
        asyncio.run(backend.fetch("/filter/aggregated", FilterSet.empty()))
    assert len(client.calls) == 2


def test_client_errors_are_not_retried() -> None:
    client = _FakeClient([ValueError("rejected"), {"ok": True}])
    backend = HttpAggregationBackend(client, retry_backoff_seconds=0)

    with pytest.raises(ValueError):
        asyncio.run(backend.fetch("/filter/aggregated", FilterSet.empty()))
    assert len(client.calls) == 1


def test_invalid_limits_are_rejected() -> None:
    with pytest.raises(ValueError):
        HttpAggregationBackend(_FakeClient([]), max_concurrent_requests=0)
