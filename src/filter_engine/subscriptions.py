# This module tracks which pages want filtered data and how to reach them.
# Page initialization can run more than once, so subscribing an existing page id replaces its entry.
# Visibility is a callable evaluated at notification time, never a cached flag.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, Union

from src.filter_engine.normalization import AGGREGATED_ENDPOINT

logger = logging.getLogger(__name__)

VisibilityCheck = Callable[[], bool]
DataCallback = Callable[[Any], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class Subscription:
    page_id: str
    is_visible: VisibilityCheck
    on_filtered_data: DataCallback
    endpoint: str = AGGREGATED_ENDPOINT

    def visible(self) -> bool:
        """Evaluate the visibility check; a failing check counts as hidden."""

        try:
            return bool(self.is_visible())
        except Exception:
            logger.exception("Visibility check failed for page %s; treating it as hidden.", self.page_id)
            return False


class SubscriptionRegistry:
    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}

    def subscribe(
        self,
        page_id: str,
        is_visible: VisibilityCheck,
        on_filtered_data: DataCallback,
        *,
        endpoint: str = AGGREGATED_ENDPOINT,
    ) -> Subscription:
        if not page_id:
            raise ValueError("page_id must be a non-empty string.")
        subscription = Subscription(
            page_id=page_id,
            is_visible=is_visible,
            on_filtered_data=on_filtered_data,
            endpoint=endpoint,
        )
        if page_id in self._subscriptions:
            logger.debug("Replacing existing subscription for page %s.", page_id)
        self._subscriptions[page_id] = subscription
        return subscription

    def unsubscribe(self, page_id: str) -> bool:
        return self._subscriptions.pop(page_id, None) is not None

    def get(self, page_id: str) -> Subscription | None:
        return self._subscriptions.get(page_id)

    def page_ids(self) -> list[str]:
        return list(self._subscriptions)

    def __iter__(self) -> Iterator[Subscription]:
        # Iterate over a copy so callbacks may (re-)subscribe during notification.
        return iter(list(self._subscriptions.values()))

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __contains__(self, page_id: object) -> bool:
        return page_id in self._subscriptions
