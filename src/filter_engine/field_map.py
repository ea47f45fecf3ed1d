# This module owns the translation between chart-facing field names and backend field names.
# Chart segments speak in short UI names (status, tema, unidade); the aggregation backend expects stored names.
# It also turns dropdown control values (month, status) into page-local predicates.
# Keeping both here means every page builds identical predicates for identical control values.

from __future__ import annotations

import calendar
import logging
import re
from typing import Final, Mapping

from src.filter_engine.filter_set import PAGE_LOCAL, FilterSet, Predicate

logger = logging.getLogger(__name__)

DEFAULT_FIELD_MAP: Final[dict[str, str]] = {
    "status": "statusDemanda",
    "tema": "tema",
    "assunto": "assunto",
    "orgaos": "orgaos",
    "tipo": "tipoDeManifestacao",
    "canal": "canal",
    "prioridade": "prioridade",
    "unidade": "unidadeCadastro",
    "bairro": "bairro",
}

CREATION_DATE_FIELD: Final = "dataCriacaoIso"
STATUS_FIELD: Final = "statusDemanda"

# Dropdown presets that match a family of stored statuses rather than one exact value.
STATUS_PRESETS: Final[dict[str, Predicate]] = {
    "concluido": Predicate(STATUS_FIELD, "contains", "concluíd"),
    "em-andamento": Predicate(STATUS_FIELD, "contains", "atendimento"),
}

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


def translate_field(field_name: str, field_map: Mapping[str, str] | None = None) -> str:
    mapping = DEFAULT_FIELD_MAP if field_map is None else field_map
    return mapping.get(field_name, field_name)


def month_range_predicates(month: str) -> tuple[Predicate, Predicate] | None:
    """Return the inclusive creation-date bounds for a `YYYY-MM` value, or None if malformed."""

    match = _MONTH_RE.match(month.strip())
    if match is None:
        return None
    year, month_number = int(match.group(1)), int(match.group(2))
    if not 1 <= month_number <= 12:
        return None
    last_day = calendar.monthrange(year, month_number)[1]
    prefix = f"{year:04d}-{month_number:02d}"
    return (
        Predicate(CREATION_DATE_FIELD, "gte", f"{prefix}-01"),
        Predicate(CREATION_DATE_FIELD, "lte", f"{prefix}-{last_day:02d}T23:59:59.999Z"),
    )


def status_predicate(status: str) -> Predicate:
    preset = STATUS_PRESETS.get(status.strip().lower())
    if preset is not None:
        return preset
    return Predicate(STATUS_FIELD, "eq", status.strip())


def build_page_local_filters(
    *,
    month: str | None = None,
    status: str | None = None,
) -> FilterSet:
    filters = FilterSet.empty(PAGE_LOCAL)

    if month and month.strip():
        bounds = month_range_predicates(month)
        if bounds is None:
            logger.warning("Ignoring malformed month filter value %r (expected YYYY-MM).", month)
        else:
            for predicate in bounds:
                filters = filters.with_predicate(predicate)

    if status and status.strip():
        filters = filters.with_predicate(status_predicate(status))

    return filters


def without_month(filters: FilterSet) -> FilterSet:
    return filters.without_field(CREATION_DATE_FIELD)
