# This module turns clicks on chart elements into crossfilter mutations.
# It is the only writer of the crossfilter fragment; page-local controls have their own path.
# Interpretation is fail-soft: a bad gesture is logged and becomes a no-op mutation.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Final, Iterable

from src.filter_engine.filter_set import CROSSFILTER, FilterSet, Predicate, Scalar

logger = logging.getLogger(__name__)

PLAIN: Final = "plain"
MULTI_SELECT: Final = "multiSelect"
CLEAR_ALL: Final = "clearAll"
GESTURE_KINDS: Final[tuple[str, ...]] = (PLAIN, MULTI_SELECT, CLEAR_ALL)

MULTI_SELECT_MODIFIERS: Final[frozenset[str]] = frozenset({"ctrl", "meta", "shift"})
CLEAR_ALL_MODIFIERS: Final[frozenset[str]] = frozenset({"right", "contextmenu"})


@dataclass(frozen=True)
class GestureEvent:
    kind: str


@dataclass(frozen=True)
class FilterSetMutation:
    kind: str
    field: str | None
    value: Scalar | None
    before: FilterSet
    after: FilterSet

    @property
    def changed(self) -> bool:
        return self.before != self.after

    @property
    def value_active(self) -> bool:
        """True when the gesture's value is part of the crossfilter after the mutation."""

        if self.field is None or self.value is None:
            return False
        predicate = self.after.predicate_for(self.field)
        return predicate is not None and any(_same_value(v, self.value) for v in predicate.values)


def kind_for_modifiers(modifiers: Iterable[str] | None) -> str:
    normalized = {str(modifier).strip().lower() for modifier in (modifiers or ())}
    if normalized & CLEAR_ALL_MODIFIERS:
        return CLEAR_ALL
    if normalized & MULTI_SELECT_MODIFIERS:
        return MULTI_SELECT
    return PLAIN


def _same_value(left: object, right: object) -> bool:
    return str(left).casefold() == str(right).casefold()


def _toggle_multi(crossfilter: FilterSet, field_name: str, value: Scalar) -> FilterSet:
    current = crossfilter.predicate_for(field_name, "match")
    if current is None:
        return crossfilter.with_predicate(Predicate(field_name, "in", (value,)))

    if current.operator == "eq":
        if _same_value(current.value, value):
            return crossfilter.without_field(field_name)
        return crossfilter.with_predicate(Predicate(field_name, "in", (current.value, value)))

    remaining = tuple(item for item in current.values if not _same_value(item, value))
    if len(remaining) == len(current.values):
        return crossfilter.with_predicate(Predicate(field_name, "in", current.values + (value,)))
    if not remaining:
        return crossfilter.without_field(field_name)
    return crossfilter.with_predicate(Predicate(field_name, "in", remaining))


def apply_gesture(
    crossfilter: FilterSet,
    kind: str,
    field_name: str | None,
    value: Scalar | None,
) -> FilterSet:
    """Pure transition of the crossfilter fragment for one gesture."""

    if kind == CLEAR_ALL:
        return FilterSet.empty(CROSSFILTER)
    if kind not in (PLAIN, MULTI_SELECT):
        raise ValueError(f"Unknown gesture kind {kind!r}; expected one of {GESTURE_KINDS}.")
    if not field_name:
        raise ValueError("A field is required for plain and multi-select gestures.")
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"A value is required for a {kind} gesture on {field_name!r}.")

    if kind == PLAIN:
        return crossfilter.without_field(field_name).with_predicate(Predicate(field_name, "eq", value))
    return _toggle_multi(crossfilter, field_name, value)


class GestureInterpreter:
    def __init__(self, crossfilter: FilterSet | None = None) -> None:
        self._crossfilter = (crossfilter or FilterSet.empty(CROSSFILTER)).retagged(CROSSFILTER)

    @property
    def crossfilter(self) -> FilterSet:
        return self._crossfilter

    def replace(self, crossfilter: FilterSet) -> FilterSetMutation:
        """Swap in a whole crossfilter fragment, e.g. one recalled from history."""

        before = self._crossfilter
        self._crossfilter = crossfilter.retagged(CROSSFILTER)
        return FilterSetMutation(kind=PLAIN, field=None, value=None, before=before, after=self._crossfilter)

    def interpret(
        self,
        event: GestureEvent | str,
        field_name: str | None = None,
        value: Scalar | None = None,
    ) -> FilterSetMutation:
        kind = event.kind if isinstance(event, GestureEvent) else str(event)
        before = self._crossfilter
        try:
            after = apply_gesture(before, kind, field_name, value)
        except Exception:
            logger.exception(
                "Ignoring gesture kind=%s field=%s value=%r.", kind, field_name, value
            )
            after = before

        self._crossfilter = after
        return FilterSetMutation(kind=kind, field=field_name, value=value, before=before, after=after)
