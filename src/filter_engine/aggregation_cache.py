# This module caches aggregation results by endpoint and canonical filters.
# Keys are derived from the canonical (order-independent) form so equivalent filter sets share one entry.
# Expiry is lazy: a stale entry is evicted on read and reported as a miss.
# A hit is served only when the stored canonical key matches exactly, never on hash equality alone.

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from src.filter_engine.filter_set import FilterSet

logger = logging.getLogger(__name__)


def canonical_key(endpoint: str, filter_set: FilterSet) -> str:
    return json.dumps(
        {"endpoint": endpoint, "filters": [list(item) for item in filter_set.canonical()]},
        ensure_ascii=False,
        sort_keys=True,
    )


def cache_key(endpoint: str, filter_set: FilterSet) -> str:
    digest = hashlib.sha256(canonical_key(endpoint, filter_set).encode("utf-8")).hexdigest()
    return f"{endpoint}:{digest}"


@dataclass(frozen=True)
class CacheEntry:
    key: str
    canonical: str
    endpoint: str
    payload: Any
    expires_at: float


class AggregationCache:
    """TTL store for aggregation results; the TTL comes from the caller on every `set`."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._store: dict[str, CacheEntry] = {}

    def get(self, endpoint: str, filter_set: FilterSet) -> Any | None:
        key = cache_key(endpoint, filter_set)
        entry = self._store.get(key)
        if entry is None:
            return None

        if entry.canonical != canonical_key(endpoint, filter_set):
            logger.warning("Cache key collision on %s; treating as miss.", key)
            self._store.pop(key, None)
            return None

        if self._clock() >= entry.expires_at:
            self._store.pop(key, None)
            logger.debug("Cache entry expired for %s.", endpoint)
            return None
        return entry.payload

    def set(self, endpoint: str, filter_set: FilterSet, result: Any, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be greater than 0, got {ttl_seconds}.")
        key = cache_key(endpoint, filter_set)
        self._store[key] = CacheEntry(
            key=key,
            canonical=canonical_key(endpoint, filter_set),
            endpoint=endpoint,
            payload=result,
            expires_at=self._clock() + ttl_seconds,
        )

    def invalidate(self, endpoint: str | None = None) -> int:
        if endpoint is None:
            removed = len(self._store)
            self._store.clear()
            return removed
        keys = [key for key, entry in self._store.items() if entry.endpoint == endpoint]
        for key in keys:
            del self._store[key]
        return len(keys)

    def clear_expired(self) -> int:
        now = self._clock()
        keys = [key for key, entry in self._store.items() if now >= entry.expires_at]
        for key in keys:
            del self._store[key]
        return len(keys)

    def __len__(self) -> int:
        return len(self._store)
