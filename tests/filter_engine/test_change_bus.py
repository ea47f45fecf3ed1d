# This test file validates fan-out of filter changes to page subscribers.
# It exists so hidden pages are skipped, failing renderers are isolated, and mid-update changes are not lost.
# Loader behaviour is real; only the backend is faked.

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from src.filter_engine.api_client import ApiUnavailableError
from src.filter_engine.change_bus import FilterChangeBus
from src.filter_engine.data_loader import FilteredDataLoader
from src.filter_engine.filter_set import FilterSet, eq
from src.filter_engine.subscriptions import SubscriptionRegistry


class _FakeBackend:
    def __init__(self, *, gated: bool = False) -> None:
        self.gated = gated
        self.calls: list[tuple[str, FilterSet]] = []
        self._gates: dict[int, asyncio.Event] = {}

    def release(self, index: int) -> None:
        self._gates.setdefault(index, asyncio.Event()).set()

    async def fetch(self, endpoint: str, filter_set: FilterSet) -> Any:
        index = len(self.calls)
        self.calls.append((endpoint, filter_set))
        if self.gated:
            await self._gates.setdefault(index, asyncio.Event()).wait()
        predicate = filter_set.predicate_for("tema")
        if predicate is None:
            raise ApiUnavailableError("unexpected unfiltered call")
        return {"manifestationsByTheme": [{"theme": predicate.value, "count": 1}]}


def _theme(result: Any) -> str:
    return result.by_theme[0].key if result.by_theme else ""


def _bus(backend: _FakeBackend, *, debounce_seconds: float = 0) -> tuple[SubscriptionRegistry, FilterChangeBus]:
    registry = SubscriptionRegistry()
    loader = FilteredDataLoader(backend, debounce_seconds=debounce_seconds)
    return registry, FilterChangeBus(registry, loader)


def test_hidden_subscribers_are_skipped_without_fetch() -> None:
    backend = _FakeBackend()
    registry, bus = _bus(backend)
    received: dict[str, list[str]] = {"overview": [], "tema": []}
    registry.subscribe("overview", lambda: True, lambda result: received["overview"].append(_theme(result)))
    registry.subscribe("tema", lambda: False, lambda result: received["tema"].append(_theme(result)))

    updated = asyncio.run(bus.notify_filter_change(FilterSet.of(eq("tema", "A"))))

    assert updated == ["overview"]
    assert received == {"overview": ["A"], "tema": []}
    assert len(backend.calls) == 1


def test_failing_subscriber_does_not_block_others(caplog: pytest.LogCaptureFixture) -> None:
    backend = _FakeBackend()
    registry, bus = _bus(backend)
    received: list[str] = []

    def broken(result: Any) -> None:
        raise RuntimeError("render failed")

    async def healthy(result: Any) -> None:
        received.append(_theme(result))

    registry.subscribe("broken-page", lambda: True, broken)
    registry.subscribe("healthy-page", lambda: True, healthy)

    with caplog.at_level(logging.ERROR):
        updated = asyncio.run(bus.notify_filter_change(FilterSet.of(eq("tema", "A"))))

    assert received == ["A"]
    assert set(updated) == {"broken-page", "healthy-page"}
    assert "broken-page" in caplog.text


def test_resubscribing_replaces_callback() -> None:
    backend = _FakeBackend()
    registry, bus = _bus(backend)
    old: list[str] = []
    new: list[str] = []
    registry.subscribe("overview", lambda: True, lambda result: old.append(_theme(result)))
    registry.subscribe("overview", lambda: True, lambda result: new.append(_theme(result)))

    asyncio.run(bus.notify_filter_change(FilterSet.of(eq("tema", "A"))))

    assert len(registry) == 1
    assert old == []
    assert new == ["A"]


def test_change_during_debounce_results_in_single_backend_call() -> None:
    backend = _FakeBackend()
    registry, bus = _bus(backend, debounce_seconds=0.05)
    received: list[str] = []
    registry.subscribe("overview", lambda: True, lambda result: received.append(_theme(result)))

    async def scenario() -> list[str]:
        first = asyncio.create_task(bus.notify_filter_change(FilterSet.of(eq("tema", "A"))))
        await asyncio.sleep(0.01)
        assert bus.is_updating("overview")
        second = await bus.notify_filter_change(FilterSet.of(eq("tema", "B")))
        await first
        return second

    second_updated = asyncio.run(scenario())

    assert second_updated == []
    assert [filters.predicate_for("tema").value for _, filters in backend.calls] == ["B"]
    assert received and set(received) == {"B"}
    assert not bus.is_updating("overview")


def test_change_during_fetch_triggers_follow_up_update() -> None:
    backend = _FakeBackend(gated=True)
    registry, bus = _bus(backend)
    received: list[str] = []
    registry.subscribe("overview", lambda: True, lambda result: received.append(_theme(result)))

    async def scenario() -> None:
        first = asyncio.create_task(bus.notify_filter_change(FilterSet.of(eq("tema", "A"))))
        while len(backend.calls) < 1:
            await asyncio.sleep(0.005)
        await bus.notify_filter_change(FilterSet.of(eq("tema", "B")))
        while len(backend.calls) < 2:
            await asyncio.sleep(0.005)
        backend.release(1)
        backend.release(0)
        await first

    asyncio.run(scenario())

    assert received[-1] == "B"
    assert "A" not in received
    assert len(backend.calls) == 2


def test_named_events_isolate_listener_failures() -> None:
    registry, bus = _bus(_FakeBackend())
    seen: list[Any] = []

    def broken(payload: Any) -> None:
        raise RuntimeError("listener failed")

    bus.on("filter:applied", broken)
    unsubscribe = bus.on("filter:applied", seen.append)

    assert bus.listener_count("filter:applied") == 2
    assert bus.emit("filter:applied", {"field": "tema"}) == 1
    assert seen == [{"field": "tema"}]

    unsubscribe()
    assert bus.listener_count("filter:applied") == 1
    assert bus.emit("filter:cleared") == 0
