# This test file covers the page subscription registry.
# It exists so repeated page initialization never stacks duplicate subscribers.

from __future__ import annotations

import pytest

from src.filter_engine.subscriptions import SubscriptionRegistry


def test_subscribe_is_idempotent_per_page() -> None:
    registry = SubscriptionRegistry()
    registry.subscribe("overview", lambda: True, lambda result: None)
    latest = registry.subscribe("overview", lambda: False, lambda result: None, endpoint="/filter")

    assert len(registry) == 1
    assert registry.get("overview") is latest
    assert [sub.endpoint for sub in registry] == ["/filter"]


def test_failing_visibility_check_counts_as_hidden() -> None:
    registry = SubscriptionRegistry()

    def broken() -> bool:
        raise RuntimeError("element detached")

    subscription = registry.subscribe("overview", broken, lambda result: None)

    assert subscription.visible() is False


def test_unsubscribe_and_validation() -> None:
    registry = SubscriptionRegistry()
    registry.subscribe("overview", lambda: True, lambda result: None)

    assert registry.unsubscribe("overview")
    assert not registry.unsubscribe("overview")
    assert "overview" not in registry
    with pytest.raises(ValueError):
        registry.subscribe("", lambda: True, lambda result: None)
