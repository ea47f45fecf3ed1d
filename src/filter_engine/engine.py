# This module wires the filter engine together and exposes the surface page modules talk to.
# Chart bindings only need the two gesture entry points; dropdown controls use the page-local API.
# Every collaborator is injected so pages never discover engine state through module globals.
# Entry points are fail-soft: a failure is logged and the dashboard keeps its current state.

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

import requests

from src.filter_engine.api_client import OmbudsmanApiClient
from src.filter_engine.backend import AggregationBackend, HttpAggregationBackend
from src.filter_engine.change_bus import (
    DATA_DEGRADED,
    FILTER_APPLIED,
    FILTER_CLEARED,
    FILTER_REMOVED,
    PAGE_FILTER_CHANGED,
    FilterChangeBus,
)
from src.filter_engine.data_loader import FilteredDataLoader
from src.filter_engine.engine_config import FilterEngineConfig
from src.filter_engine.field_map import build_page_local_filters, without_month
from src.filter_engine.filter_history import FilterHistory, HistoryEntry
from src.filter_engine.filter_set import PAGE_LOCAL, FilterSet, Scalar
from src.filter_engine.gestures import (
    CLEAR_ALL,
    FilterSetMutation,
    GestureInterpreter,
    kind_for_modifiers,
)
from src.filter_engine.merger import merge_filters
from src.filter_engine.month_options import derive_month_options, months_from_breakdown
from src.filter_engine.normalization import (
    AGGREGATED_ENDPOINT,
    RECORDS_ENDPOINT,
    AggregationResult,
    FilteredRecords,
)
from src.filter_engine.snapshot_store import PageFilterSnapshotStore
from src.filter_engine.subscriptions import DataCallback, Subscription, SubscriptionRegistry, VisibilityCheck

logger = logging.getLogger(__name__)


@dataclass
class _PageState:
    filters: FilterSet = field(default_factory=lambda: FilterSet.empty(PAGE_LOCAL))
    intent: dict[str, str] = field(default_factory=dict)


class FilterEngine:
    def __init__(
        self,
        config: FilterEngineConfig,
        *,
        loader: FilteredDataLoader,
        registry: SubscriptionRegistry | None = None,
        bus: FilterChangeBus | None = None,
        interpreter: GestureInterpreter | None = None,
        snapshot_store: PageFilterSnapshotStore | None = None,
        history: FilterHistory | None = None,
    ) -> None:
        self.config = config
        self.loader = loader
        self.registry = registry or SubscriptionRegistry()
        self.bus = bus or FilterChangeBus(self.registry, loader)
        self.interpreter = interpreter or GestureInterpreter()
        self.snapshot_store = snapshot_store
        self.history = history
        self._pages: dict[str, _PageState] = {}
        self._ready = asyncio.Event()

        if self.loader.on_degraded is None:
            self.loader.on_degraded = self._on_degraded

    @classmethod
    def from_config(
        cls,
        config: FilterEngineConfig,
        *,
        backend: AggregationBackend | None = None,
        session: requests.Session | None = None,
    ) -> FilterEngine:
        if backend is None:
            client = OmbudsmanApiClient(
                base_url=config.api_base_url,
                timeout_seconds=config.request_timeout_seconds,
                session=session,
            )
            backend = HttpAggregationBackend(
                client,
                endpoint_timeouts=config.endpoint_timeouts,
                max_concurrent_requests=config.max_concurrent_requests,
                max_retries=config.max_retries,
                retry_backoff_seconds=config.retry_backoff_seconds,
            )

        loader = FilteredDataLoader(
            backend,
            debounce_seconds=config.debounce_seconds,
            default_ttl_seconds=config.default_ttl_seconds,
            endpoint_ttls=config.endpoint_ttls,
            unfiltered_ttl_seconds=config.unfiltered_ttl_seconds,
            unfiltered_endpoints=config.unfiltered_endpoints,
            known_good_capacity=config.known_good_capacity,
        )
        snapshot_store = (
            PageFilterSnapshotStore(config.snapshot_dir, max_age=config.snapshot_max_age)
            if config.snapshots_enabled
            else None
        )
        history = FilterHistory(
            config.history_path,
            max_recent=config.max_recent,
            max_favorites=config.max_favorites,
        )
        return cls(config, loader=loader, snapshot_store=snapshot_store, history=history)

    @property
    def crossfilter(self) -> FilterSet:
        return self.interpreter.crossfilter

    def page_filters(self, page_id: str) -> FilterSet:
        state = self._pages.get(page_id)
        return state.filters if state is not None else FilterSet.empty(PAGE_LOCAL)

    def effective_filters(self, page_id: str) -> FilterSet:
        return merge_filters(self.page_filters(page_id), self.crossfilter, self.config.field_map)

    def mark_ready(self) -> None:
        self._ready.set()

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def wait_until_ready(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def register_page(
        self,
        page_id: str,
        is_visible: VisibilityCheck,
        on_filtered_data: DataCallback,
        *,
        endpoint: str = AGGREGATED_ENDPOINT,
        restore_snapshot: bool = True,
    ) -> Subscription:
        """Subscribe a page once the engine is ready and render it straight away if it is visible."""

        await self._ready.wait()
        subscription = self.registry.subscribe(page_id, is_visible, on_filtered_data, endpoint=endpoint)
        self._pages.setdefault(page_id, _PageState())
        if restore_snapshot:
            self.restore_page_filters(page_id)
        if subscription.visible():
            await self._refresh([page_id])
        return subscription

    def unregister_page(self, page_id: str) -> bool:
        self._pages.pop(page_id, None)
        return self.registry.unsubscribe(page_id)

    async def on_element_activated(
        self,
        field_name: str,
        value: Scalar,
        modifiers: Iterable[str] | None = None,
    ) -> FilterSetMutation:
        kind = kind_for_modifiers(modifiers)
        return await self._apply_gesture(kind, field_name, value)

    async def on_element_clear_requested(self) -> FilterSetMutation:
        return await self._apply_gesture(CLEAR_ALL, None, None)

    async def _apply_gesture(
        self,
        kind: str,
        field_name: str | None,
        value: Scalar | None,
    ) -> FilterSetMutation:
        mutation = self.interpreter.interpret(kind, field_name, value)
        if not mutation.changed:
            return mutation

        try:
            self._emit_mutation(mutation)
            await self._refresh(self.registry.page_ids())
        except Exception:
            logger.exception("Failed to propagate %s gesture on %s.", kind, field_name)
        if not mutation.after.is_empty:
            self._record_recent(mutation.after)
        return mutation

    def _record_recent(self, crossfilter: FilterSet, name: str | None = None) -> None:
        if self.history is None:
            return
        try:
            self.history.save_recent(crossfilter, name)
        except Exception:
            logger.exception("Could not record crossfilter in history.")

    def _emit_mutation(self, mutation: FilterSetMutation) -> None:
        payload = {
            "field": mutation.field,
            "value": mutation.value,
            "crossfilter": mutation.after.to_payload(),
        }
        if mutation.kind == CLEAR_ALL:
            self.bus.emit(FILTER_CLEARED, payload)
        elif mutation.value_active:
            self.bus.emit(FILTER_APPLIED, payload)
        else:
            self.bus.emit(FILTER_REMOVED, payload)

    async def set_page_filters(
        self,
        page_id: str,
        *,
        month: str | None = None,
        status: str | None = None,
    ) -> FilterSet:
        filters = build_page_local_filters(month=month, status=status)
        intent = {key: value for key, value in (("month", month), ("status", status)) if value}
        self._set_page_state(page_id, filters, intent)
        if self.snapshot_store is not None:
            if filters.is_empty:
                self.snapshot_store.discard(page_id)
            else:
                self.snapshot_store.save(page_id, filters, intent=intent)
        await self._refresh([page_id])
        return filters

    async def clear_page_filters(self, page_id: str) -> FilterSet:
        """Clear the page's dropdown filters; the crossfilter selection is left untouched."""

        return await self.set_page_filters(page_id)

    def restore_page_filters(self, page_id: str) -> FilterSet | None:
        if self.snapshot_store is None:
            return None
        snapshot = self.snapshot_store.load(page_id)
        if snapshot is None:
            return None

        if snapshot.intent:
            filters = build_page_local_filters(
                month=snapshot.intent.get("month"),
                status=snapshot.intent.get("status"),
            )
        else:
            filters = snapshot.filters
        self._set_page_state(page_id, filters, dict(snapshot.intent))
        logger.info("Restored page-local filters for %s (%d predicates).", page_id, len(filters))
        return filters

    def _set_page_state(self, page_id: str, filters: FilterSet, intent: dict[str, str]) -> None:
        state = self._pages.setdefault(page_id, _PageState())
        state.filters = filters
        state.intent = intent
        self.bus.emit(PAGE_FILTER_CHANGED, {"page_id": page_id, "filters": filters.to_payload()})

    async def page_shown(self, page_id: str) -> bool:
        """Pull the current effective filters for a page that just became visible."""

        refreshed = await self._refresh([page_id])
        return page_id in refreshed

    async def _refresh(self, page_ids: Iterable[str]) -> list[str]:
        notifications = [
            self.bus.notify_filter_change(self.effective_filters(page_id), page_ids={page_id})
            for page_id in page_ids
            if page_id in self.registry
        ]
        results = await asyncio.gather(*notifications)
        return [page_id for refreshed in results for page_id in refreshed]

    async def load_for_page(self, page_id: str, *, force_refresh: bool = False) -> Any:
        subscription = self.registry.get(page_id)
        endpoint = subscription.endpoint if subscription is not None else AGGREGATED_ENDPOINT
        return await self.loader.load(
            endpoint,
            self.effective_filters(page_id),
            force_refresh=force_refresh,
            channel=page_id,
        )

    async def available_months(self, page_id: str) -> list[str]:
        base = without_month(self.effective_filters(page_id))
        channel = f"{page_id}:months"
        if base.is_empty:
            result = await self.loader.load(AGGREGATED_ENDPOINT, base, channel=channel)
            if isinstance(result, AggregationResult):
                return months_from_breakdown(result.by_month)
            return []

        records = await self.loader.load(RECORDS_ENDPOINT, base, channel=channel)
        if isinstance(records, FilteredRecords):
            return derive_month_options(records.records)
        return []

    def save_favorite(self, name: str) -> bool:
        if self.history is None:
            return False
        return self.history.save_favorite(self.crossfilter, name)

    async def apply_history_entry(self, entry: HistoryEntry) -> FilterSetMutation:
        mutation = self.interpreter.replace(entry.filters)
        if mutation.changed:
            self.bus.emit(FILTER_APPLIED, {"field": None, "value": None, "crossfilter": mutation.after.to_payload()})
            await self._refresh(self.registry.page_ids())
            self._record_recent(mutation.after, entry.name)
        return mutation

    def _on_degraded(self, endpoint: str, reason: str) -> None:
        self.bus.emit(DATA_DEGRADED, {"endpoint": endpoint, "reason": reason})
