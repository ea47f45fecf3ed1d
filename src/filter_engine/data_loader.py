# This module is the single data interface between filter changes and the aggregation backend.
# It checks the cache, joins identical in-flight requests, debounces bursts, and discards superseded responses.
# Failures never propagate: callers receive the last known-good result or the defined empty shape.
# Only this module writes the aggregation caches.

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from prometheus_client import Counter

from src.filter_engine.aggregation_cache import AggregationCache, cache_key
from src.filter_engine.backend import AggregationBackend
from src.filter_engine.debounce import Debouncer
from src.filter_engine.filter_set import FilterSet
from src.filter_engine.normalization import (
    AGGREGATED_ENDPOINT,
    DASHBOARD_DATA_ENDPOINT,
    RECORDS_ENDPOINT,
    MalformedPayloadError,
    empty_result_for,
    normalizer_for,
)

logger = logging.getLogger(__name__)

LOADER_CACHE_HITS_TOTAL = Counter(
    "filter_loader_cache_hits_total",
    "Loads served from the aggregation cache.",
    ["endpoint"],
)
LOADER_BACKEND_REQUESTS_TOTAL = Counter(
    "filter_loader_backend_requests_total",
    "Backend requests issued by the filtered data loader.",
    ["endpoint", "outcome"],
)
LOADER_DISCARDED_RESPONSES_TOTAL = Counter(
    "filter_loader_discarded_responses_total",
    "Backend responses dropped because a newer request was issued on the same endpoint and channel.",
    ["endpoint"],
)
LOADER_FALLBACKS_TOTAL = Counter(
    "filter_loader_fallbacks_total",
    "Loads answered with a fallback value after a backend failure.",
    ["endpoint", "kind"],
)

IDLE = "idle"
DEBOUNCING = "debouncing"
FETCHING = "fetching"

DegradedHook = Callable[[str, str], None]
Lane = tuple[str, str | None]


@dataclass(frozen=True)
class _LoadRequest:
    filter_set: FilterSet
    ttl_seconds: float | None


class FilteredDataLoader:
    def __init__(
        self,
        backend: AggregationBackend,
        *,
        cache: AggregationCache | None = None,
        full_dataset_cache: AggregationCache | None = None,
        debounce_seconds: float = 0.15,
        default_ttl_seconds: float = 300,
        endpoint_ttls: Mapping[str, float] | None = None,
        unfiltered_ttl_seconds: float = 600,
        unfiltered_endpoints: Mapping[str, str] | None = None,
        empty_when_unfiltered: frozenset[str] = frozenset({RECORDS_ENDPOINT}),
        known_good_capacity: int = 256,
        on_degraded: DegradedHook | None = None,
    ) -> None:
        self.backend = backend
        self.cache = cache or AggregationCache()
        self.full_dataset_cache = full_dataset_cache or AggregationCache()
        self.debounce_seconds = debounce_seconds
        self.default_ttl_seconds = default_ttl_seconds
        self.endpoint_ttls = dict(endpoint_ttls or {})
        self.unfiltered_ttl_seconds = unfiltered_ttl_seconds
        self.unfiltered_endpoints = dict(
            {AGGREGATED_ENDPOINT: DASHBOARD_DATA_ENDPOINT}
            if unfiltered_endpoints is None
            else unfiltered_endpoints
        )
        self.empty_when_unfiltered = empty_when_unfiltered
        self.known_good_capacity = known_good_capacity
        self.on_degraded = on_degraded

        self._debouncers: dict[Lane, Debouncer[_LoadRequest, Any]] = {}
        self._inflight: dict[str, asyncio.Future[Any]] = {}
        self._fetching: dict[str, int] = {}
        self._sequence: dict[Lane, int] = {}
        self._latest_request: dict[Lane, asyncio.Future[Any]] = {}
        self._known_good: OrderedDict[str, Any] = OrderedDict()
        self._last_good: dict[str, Any] = {}

    def ttl_for(self, endpoint: str) -> float:
        if endpoint in self.endpoint_ttls:
            return self.endpoint_ttls[endpoint]
        for pattern, ttl in self.endpoint_ttls.items():
            if endpoint.startswith(pattern):
                return ttl
        return self.default_ttl_seconds

    def state(self, endpoint: str) -> str:
        if self._fetching.get(endpoint, 0) > 0:
            return FETCHING
        if any(lane[0] == endpoint and debouncer.pending for lane, debouncer in self._debouncers.items()):
            return DEBOUNCING
        return IDLE

    def invalidate(self, endpoint: str | None = None) -> int:
        if endpoint is None:
            return self.cache.invalidate() + self.full_dataset_cache.invalidate()
        removed = self.cache.invalidate(endpoint)
        target = self.unfiltered_endpoints.get(endpoint)
        if target is not None:
            removed += self.full_dataset_cache.invalidate(target)
        return removed

    async def load(
        self,
        endpoint: str,
        filter_set: FilterSet,
        *,
        ttl_seconds: float | None = None,
        force_refresh: bool = False,
        channel: str | None = None,
    ) -> Any:
        """Resolve the normalized result for `endpoint` under `filter_set`; never raises.

        Debouncing and latest-wins discarding apply per `(endpoint, channel)` lane, so
        callers that pass different channels never receive each other's results. Loads
        without a channel share one lane per endpoint.
        """

        try:
            if ttl_seconds is not None and ttl_seconds <= 0:
                raise ValueError(f"ttl_seconds must be > 0, got {ttl_seconds}")
            return await self._load((endpoint, channel), filter_set, ttl_seconds, force_refresh)
        except Exception as exc:
            logger.exception("Unexpected loader failure for %s; serving fallback.", endpoint)
            target, _, _ = self._route(endpoint, filter_set)
            return self._degrade(endpoint, cache_key(target, filter_set), reason=str(exc))

    def _route(self, endpoint: str, filter_set: FilterSet) -> tuple[str, AggregationCache, float]:
        if filter_set.is_empty:
            target = self.unfiltered_endpoints.get(endpoint)
            if target is not None:
                return target, self.full_dataset_cache, self.unfiltered_ttl_seconds
        return endpoint, self.cache, self.ttl_for(endpoint)

    def _debouncer(self, lane: Lane) -> Debouncer[_LoadRequest, Any]:
        debouncer = self._debouncers.get(lane)
        if debouncer is None:

            async def run(request: _LoadRequest) -> Any:
                return await self._execute(lane, request)

            debouncer = Debouncer(self.debounce_seconds, run)
            self._debouncers[lane] = debouncer
        return debouncer

    async def _load(
        self,
        lane: Lane,
        filter_set: FilterSet,
        ttl_seconds: float | None,
        force_refresh: bool,
    ) -> Any:
        endpoint = lane[0]
        if filter_set.is_empty and endpoint in self.empty_when_unfiltered:
            return empty_result_for(endpoint)

        target, cache, _ = self._route(endpoint, filter_set)
        if not force_refresh:
            cached = cache.get(target, filter_set)
            if cached is not None:
                LOADER_CACHE_HITS_TOTAL.labels(endpoint=target).inc()
                logger.debug("Cache hit for %s.", target)
                return cached

        inflight = self._inflight.get(cache_key(target, filter_set))
        if inflight is not None:
            logger.debug("Joining in-flight request for %s.", target)
            return await asyncio.shield(inflight)

        request = _LoadRequest(filter_set=filter_set, ttl_seconds=ttl_seconds)
        return await asyncio.shield(self._debouncer(lane).submit(request))

    async def _execute(self, lane: Lane, request: _LoadRequest) -> Any:
        endpoint = lane[0]
        filter_set = request.filter_set
        target, cache, default_ttl = self._route(endpoint, filter_set)
        ttl = request.ttl_seconds if request.ttl_seconds is not None else default_ttl
        key = cache_key(target, filter_set)

        existing = self._inflight.get(key)
        if existing is not None:
            return await asyncio.shield(existing)

        sequence = self._sequence.get(lane, 0) + 1
        self._sequence[lane] = sequence
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        self._latest_request[lane] = future
        self._fetching[endpoint] = self._fetching.get(endpoint, 0) + 1

        try:
            result = await self._fetch(lane, target, filter_set, key, cache, ttl, sequence)
        except Exception as exc:
            # Joined waiters see the failure itself rather than a cancellation.
            future.set_exception(exc)
            future.exception()
            raise
        except BaseException:
            future.cancel()
            raise
        finally:
            self._fetching[endpoint] -= 1
            if self._inflight.get(key) is future:
                del self._inflight[key]

        # Waiters that joined this key still get the result for their own filters.
        future.set_result(result)
        if sequence != self._sequence.get(lane):
            latest = self._latest_request.get(lane)
            if latest is not None and latest is not future:
                return await asyncio.shield(latest)
        return result

    async def _fetch(
        self,
        lane: Lane,
        target: str,
        filter_set: FilterSet,
        key: str,
        cache: AggregationCache,
        ttl: float,
        sequence: int,
    ) -> Any:
        endpoint = lane[0]
        try:
            raw = await self.backend.fetch(target, filter_set)
            result = normalizer_for(target)(raw)
        except MalformedPayloadError as exc:
            LOADER_BACKEND_REQUESTS_TOTAL.labels(endpoint=target, outcome="malformed").inc()
            logger.warning("Malformed payload from %s: %s", target, exc)
            return self._degrade(endpoint, key, reason=str(exc))
        except Exception as exc:
            LOADER_BACKEND_REQUESTS_TOTAL.labels(endpoint=target, outcome="failure").inc()
            logger.warning("Backend request for %s failed: %s", target, exc)
            return self._degrade(endpoint, key, reason=str(exc))

        LOADER_BACKEND_REQUESTS_TOTAL.labels(endpoint=target, outcome="success").inc()

        if sequence != self._sequence.get(lane):
            LOADER_DISCARDED_RESPONSES_TOTAL.labels(endpoint=endpoint).inc()
            logger.debug(
                "Discarding response %d for %s (channel %s); request %d is newer.",
                sequence,
                endpoint,
                lane[1],
                self._sequence.get(lane),
            )
            return result

        cache.set(target, filter_set, result, ttl)
        self._remember(endpoint, key, result)
        return result

    def _remember(self, endpoint: str, key: str, result: Any) -> None:
        self._known_good[key] = result
        self._known_good.move_to_end(key)
        while len(self._known_good) > self.known_good_capacity:
            self._known_good.popitem(last=False)
        self._last_good[endpoint] = result

    def _degrade(self, endpoint: str, key: str, *, reason: str) -> Any:
        if key in self._known_good:
            kind = "known_good"
            result = self._known_good[key]
            self._known_good.move_to_end(key)
        elif endpoint in self._last_good:
            kind = "last_good"
            result = self._last_good[endpoint]
        else:
            kind = "empty"
            result = empty_result_for(endpoint)

        LOADER_FALLBACKS_TOTAL.labels(endpoint=endpoint, kind=kind).inc()
        logger.warning("Serving %s fallback for %s: %s", kind, endpoint, reason)

        if self.on_degraded is not None:
            try:
                self.on_degraded(endpoint, reason)
            except Exception:
                logger.exception("Degraded-data hook failed for %s.", endpoint)
        return result
