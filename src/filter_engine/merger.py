# This module combines the page-local and crossfilter fragments into the filters sent to the backend.
# Dropdown predicates always win: a chart click on a field the page already constrains is dropped.
# The merge is a pure function of its inputs so any effective FilterSet can be replayed in isolation.

from __future__ import annotations

import logging
from typing import Mapping

from src.filter_engine.field_map import translate_field
from src.filter_engine.filter_set import EFFECTIVE, FilterSet, Predicate

logger = logging.getLogger(__name__)


def _constrained_fields(page_local: FilterSet) -> set[str]:
    return {predicate.field.lower() for predicate in page_local}


def merge_filters(
    page_local: FilterSet,
    crossfilter: FilterSet,
    field_map: Mapping[str, str] | None = None,
) -> FilterSet:
    merged: list[Predicate] = list(page_local.predicates)
    constrained = _constrained_fields(page_local)

    for predicate in crossfilter:
        backend_field = translate_field(predicate.field, field_map)
        if backend_field.lower() in constrained or predicate.field.lower() in constrained:
            logger.debug(
                "Crossfilter on %s suppressed by page-local predicate on %s.",
                predicate.field,
                backend_field,
            )
            continue

        if isinstance(predicate.value, tuple):
            if not predicate.value:
                continue
            merged.append(Predicate(backend_field, "in", predicate.value))
        else:
            merged.append(Predicate(backend_field, "eq", predicate.value))

    return FilterSet(predicates=tuple(merged), source=EFFECTIVE)
