"""
Month dropdown options derived from backend data.
Records carry their creation date under one of two keys depending on the import path.
"""

from __future__ import annotations

from typing import Any, Iterable

import pandas as pd

from src.filter_engine.normalization import CountItem

DATE_FIELDS = ("dataCriacaoIso", "dataDaCriacao")


def _creation_date(record: dict[str, Any]) -> Any:
    for field_name in DATE_FIELDS:
        value = record.get(field_name)
        if value not in (None, ""):
            return value
    return None


def _distinct_months(raw_dates: pd.Series) -> list[str]:
    parsed = pd.to_datetime(raw_dates, utc=True, errors="coerce", format="mixed").dropna()
    if parsed.empty:
        return []
    months = parsed.dt.strftime("%Y-%m").drop_duplicates()
    return sorted(months.tolist(), reverse=True)


def derive_month_options(records: Iterable[dict[str, Any]]) -> list[str]:
    """Distinct `YYYY-MM` values of the records' creation dates, newest first."""

    dates = [_creation_date(record) for record in records if isinstance(record, dict)]
    return _distinct_months(pd.Series(dates, dtype="object"))


def months_from_breakdown(items: Iterable[CountItem]) -> list[str]:
    """Month options from an aggregated month breakdown, skipping months with no records."""

    return _distinct_months(pd.Series([item.key for item in items if item.count > 0], dtype="object"))
