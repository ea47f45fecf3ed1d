# This module converts raw backend payloads into the shapes every renderer receives.
# Backend responses carry several aliases per concept (status, theme, _id, ...); they are resolved here once.
# Every top-level key is always present: missing breakdowns become empty tuples and missing counts become 0.
# A payload whose top-level type is wrong raises MalformedPayloadError so the loader can fall back.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Final

logger = logging.getLogger(__name__)

AGGREGATED_ENDPOINT: Final = "/filter/aggregated"
RECORDS_ENDPOINT: Final = "/filter"
DASHBOARD_DATA_ENDPOINT: Final = "/dashboard-data"


class MalformedPayloadError(ValueError):
    """Raised when a backend payload does not have the expected top-level type."""


@dataclass(frozen=True)
class CountItem:
    key: str
    count: int


@dataclass(frozen=True)
class AggregationResult:
    total_manifestations: int = 0
    last_7_days: int = 0
    last_30_days: int = 0
    by_month: tuple[CountItem, ...] = ()
    by_day: tuple[CountItem, ...] = ()
    by_status: tuple[CountItem, ...] = ()
    by_theme: tuple[CountItem, ...] = ()
    by_subject: tuple[CountItem, ...] = ()
    by_organ: tuple[CountItem, ...] = ()
    by_type: tuple[CountItem, ...] = ()
    by_channel: tuple[CountItem, ...] = ()
    by_priority: tuple[CountItem, ...] = ()
    by_unit: tuple[CountItem, ...] = ()

    @property
    def is_empty(self) -> bool:
        return self == AggregationResult()


@dataclass(frozen=True)
class FilteredRecords:
    records: tuple[dict[str, Any], ...] = field(default_factory=tuple)
    total: int = 0


SCALAR_KEYS: Final[dict[str, str]] = {
    "totalManifestations": "total_manifestations",
    "last7Days": "last_7_days",
    "last30Days": "last_30_days",
}

BREAKDOWN_KEYS: Final[dict[str, tuple[str, tuple[str, ...]]]] = {
    "manifestationsByMonth": ("by_month", ("month", "ym")),
    "manifestationsByDay": ("by_day", ("date", "day")),
    "manifestationsByStatus": ("by_status", ("status", "statusDemanda")),
    "manifestationsByTheme": ("by_theme", ("theme", "tema")),
    "manifestationsBySubject": ("by_subject", ("subject", "assunto")),
    "manifestationsByOrgan": ("by_organ", ("organ", "orgaos")),
    "manifestationsByType": ("by_type", ("type", "tipoDeManifestacao")),
    "manifestationsByChannel": ("by_channel", ("channel", "canal")),
    "manifestationsByPriority": ("by_priority", ("priority", "prioridade")),
    "manifestationsByUnit": ("by_unit", ("unit", "unidadeCadastro")),
}

GENERIC_KEY_ALIASES: Final[tuple[str, ...]] = ("key", "label", "name", "_id")
COUNT_ALIASES: Final[tuple[str, ...]] = ("count", "total", "value", "quantidade")


def _to_int(value: Any, *, context: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        logger.warning("Boolean value for %s in backend payload; using 0.", context)
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            pass
    logger.warning("Non-numeric value %r for %s in backend payload; using 0.", value, context)
    return 0


def _normalize_item(item: Any, aliases: tuple[str, ...], *, context: str) -> CountItem | None:
    if not isinstance(item, dict):
        logger.warning("Skipping non-object item in %s: %r", context, item)
        return None

    key: Any = None
    for alias in aliases + GENERIC_KEY_ALIASES:
        candidate = item.get(alias)
        if candidate not in (None, ""):
            key = candidate
            break
    if key is None:
        key = "N/A"

    count: Any = None
    for alias in COUNT_ALIASES:
        if alias in item:
            count = item[alias]
            break
    return CountItem(key=str(key), count=_to_int(count, context=f"{context}.count"))


def _normalize_breakdown(raw: Any, aliases: tuple[str, ...], *, context: str) -> tuple[CountItem, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        logger.warning("Expected a list for %s, got %s; using empty list.", context, type(raw).__name__)
        return ()
    items = (_normalize_item(item, aliases, context=context) for item in raw)
    return tuple(item for item in items if item is not None)


def normalize_aggregation(payload: Any) -> AggregationResult:
    if not isinstance(payload, dict):
        raise MalformedPayloadError(
            f"Aggregation payload must be an object, got {type(payload).__name__}."
        )

    values: dict[str, Any] = {}
    for raw_key, attribute in SCALAR_KEYS.items():
        values[attribute] = _to_int(payload.get(raw_key), context=raw_key)

    for raw_key, (attribute, aliases) in BREAKDOWN_KEYS.items():
        values[attribute] = _normalize_breakdown(payload.get(raw_key), aliases, context=raw_key)

    if not values["total_manifestations"]:
        for attribute in ("by_status", "by_month", "by_day"):
            derived = sum(item.count for item in values[attribute])
            if derived:
                values["total_manifestations"] = derived
                break

    return AggregationResult(**values)


def _flatten_record(row: dict[str, Any]) -> dict[str, Any]:
    nested = row.get("data")
    if not isinstance(nested, dict):
        return dict(row)
    flattened = {key: value for key, value in row.items() if key != "data"}
    for key, value in nested.items():
        flattened.setdefault(key, value)
    return flattened


def normalize_records(payload: Any) -> FilteredRecords:
    rows: Any = payload
    if isinstance(payload, dict):
        rows = payload.get("data", payload.get("rows"))
    if not isinstance(rows, list):
        raise MalformedPayloadError(
            f"Filtered records payload must be a list, got {type(rows).__name__}."
        )

    records = []
    for row in rows:
        if not isinstance(row, dict):
            logger.warning("Skipping non-object row in filtered records: %r", row)
            continue
        records.append(_flatten_record(row))
    return FilteredRecords(records=tuple(records), total=len(records))


NORMALIZERS: Final[dict[str, Callable[[Any], Any]]] = {
    AGGREGATED_ENDPOINT: normalize_aggregation,
    DASHBOARD_DATA_ENDPOINT: normalize_aggregation,
    RECORDS_ENDPOINT: normalize_records,
}


def normalizer_for(endpoint: str) -> Callable[[Any], Any]:
    return NORMALIZERS.get(endpoint, normalize_aggregation)


def empty_result_for(endpoint: str) -> AggregationResult | FilteredRecords:
    if normalizer_for(endpoint) is normalize_records:
        return FilteredRecords()
    return AggregationResult()


def missing_top_level_keys(payload: Any) -> list[str]:
    """Canonical backend keys absent from a raw aggregation payload."""

    if not isinstance(payload, dict):
        raise MalformedPayloadError(
            f"Aggregation payload must be an object, got {type(payload).__name__}."
        )
    expected = list(SCALAR_KEYS) + list(BREAKDOWN_KEYS)
    return [key for key in expected if key not in payload]
