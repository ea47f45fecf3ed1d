# This module adapts the blocking HTTP client to the engine's event loop.
# Requests run in worker threads so a slow aggregation never stalls gesture handling.
# It also bounds concurrent backend requests and retries transient failures with exponential backoff.

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Protocol

from src.filter_engine.api_client import ApiUnavailableError, OmbudsmanApiClient
from src.filter_engine.filter_set import FilterSet
from src.filter_engine.normalization import DASHBOARD_DATA_ENDPOINT

logger = logging.getLogger(__name__)


class AggregationBackend(Protocol):
    async def fetch(self, endpoint: str, filter_set: FilterSet) -> Any:
        """Return the raw payload for `endpoint` under `filter_set`, raising on failure."""


class HttpAggregationBackend:
    def __init__(
        self,
        client: OmbudsmanApiClient,
        *,
        endpoint_timeouts: Mapping[str, float] | None = None,
        max_concurrent_requests: int = 6,
        max_retries: int = 2,
        retry_backoff_seconds: float = 0.5,
        get_endpoints: frozenset[str] = frozenset({DASHBOARD_DATA_ENDPOINT}),
    ) -> None:
        if max_concurrent_requests <= 0:
            raise ValueError("max_concurrent_requests must be greater than 0.")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0.")
        self.client = client
        self.endpoint_timeouts = dict(endpoint_timeouts or {})
        self.max_concurrent_requests = max_concurrent_requests
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.get_endpoints = get_endpoints
        self._semaphore: asyncio.Semaphore | None = None

    def timeout_for(self, endpoint: str) -> float:
        for pattern, timeout in self.endpoint_timeouts.items():
            if endpoint == pattern or endpoint.startswith(pattern):
                return timeout
        return self.client.timeout_seconds

    def _call(self, endpoint: str, filter_set: FilterSet) -> Any:
        timeout = self.timeout_for(endpoint)
        if endpoint in self.get_endpoints:
            return self.client.get_json(endpoint, timeout_seconds=timeout)
        return self.client.post_filters(endpoint, filter_set, timeout_seconds=timeout)

    async def fetch(self, endpoint: str, filter_set: FilterSet) -> Any:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent_requests)

        attempt = 0
        while True:
            try:
                async with self._semaphore:
                    return await asyncio.to_thread(self._call, endpoint, filter_set)
            except ApiUnavailableError as exc:
                if attempt >= self.max_retries:
                    raise
                delay = self.retry_backoff_seconds * (2**attempt)
                attempt += 1
                logger.info(
                    "Retrying %s in %.2fs after transient failure (%d/%d): %s",
                    endpoint,
                    delay,
                    attempt,
                    self.max_retries,
                    exc,
                )
                await asyncio.sleep(delay)
