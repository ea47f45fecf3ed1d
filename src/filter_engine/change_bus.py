# This module fans an effective filter change out to every visible subscriber.
# Each subscriber has an update guard: a change that arrives mid-update is kept as a single follow-up
# and replayed once the current update finishes, so renders never overlap and never lag behind.
# Subscriber and listener failures are isolated and logged; notification itself never raises.

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Callable

from src.filter_engine.data_loader import FilteredDataLoader
from src.filter_engine.filter_set import FilterSet
from src.filter_engine.subscriptions import Subscription, SubscriptionRegistry

logger = logging.getLogger(__name__)

FILTER_APPLIED = "filter:applied"
FILTER_REMOVED = "filter:removed"
FILTER_CLEARED = "filter:cleared"
PAGE_FILTER_CHANGED = "page-filter:changed"
DATA_DEGRADED = "data:degraded"

Listener = Callable[[Any], None]


@dataclass
class _UpdateGuard:
    updating: bool = False
    follow_up: FilterSet | None = None


class FilterChangeBus:
    def __init__(self, registry: SubscriptionRegistry, loader: FilteredDataLoader) -> None:
        self.registry = registry
        self.loader = loader
        self._guards: dict[str, _UpdateGuard] = {}
        self._listeners: dict[str, list[Listener]] = {}
        self._prefetches: set[asyncio.Task[Any]] = set()

    async def notify_filter_change(
        self,
        effective: FilterSet,
        *,
        page_ids: Iterable[str] | None = None,
    ) -> list[str]:
        """Load and deliver `effective` to visible subscribers; return the page ids that were updated.

        Hidden subscribers are skipped without a fetch. A subscriber that is already updating
        records the change as its follow-up and is not counted as updated by this call.
        """

        try:
            wanted = set(page_ids) if page_ids is not None else None
            pending: list[Subscription] = []
            for subscription in self.registry:
                if wanted is not None and subscription.page_id not in wanted:
                    continue
                if not subscription.visible():
                    logger.debug("Skipping hidden page %s.", subscription.page_id)
                    continue
                pending.append(subscription)

            updated = await asyncio.gather(*(self._update(sub, effective) for sub in pending))
            return [sub.page_id for sub, done in zip(pending, updated) if done]
        except Exception:
            logger.exception("Filter change notification failed.")
            return []

    def is_updating(self, page_id: str) -> bool:
        guard = self._guards.get(page_id)
        return guard is not None and guard.updating

    async def _update(self, subscription: Subscription, filter_set: FilterSet) -> bool:
        page_id = subscription.page_id
        guard = self._guards.setdefault(page_id, _UpdateGuard())
        if guard.updating:
            guard.follow_up = filter_set
            self._prefetch(subscription.endpoint, filter_set, page_id)
            logger.debug("Page %s is updating; queued follow-up.", page_id)
            return False

        guard.updating = True
        pending: FilterSet | None = filter_set
        try:
            while pending is not None:
                guard.follow_up = None
                current = self.registry.get(page_id)
                if current is None or not current.visible():
                    break
                result = await self.loader.load(current.endpoint, pending, channel=page_id)
                await self._deliver(current, result)
                pending = guard.follow_up
        finally:
            guard.updating = False
        return True

    def _prefetch(self, endpoint: str, filter_set: FilterSet, page_id: str) -> None:
        # Lets an open debounce window pick up the newest filters instead of waiting for the follow-up.
        task = asyncio.ensure_future(self.loader.load(endpoint, filter_set, channel=page_id))
        self._prefetches.add(task)
        task.add_done_callback(self._prefetches.discard)

    async def _deliver(self, subscription: Subscription, result: Any) -> None:
        try:
            outcome = subscription.on_filtered_data(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Subscriber for page %s failed while rendering filtered data.", subscription.page_id)

    def on(self, event: str, callback: Listener) -> Callable[[], None]:
        listeners = self._listeners.setdefault(event, [])
        listeners.append(callback)

        def unsubscribe() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def emit(self, event: str, payload: Any = None) -> int:
        delivered = 0
        for callback in list(self._listeners.get(event, ())):
            try:
                callback(payload)
                delivered += 1
            except Exception:
                logger.exception("Listener for %s failed.", event)
        return delivered

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))
