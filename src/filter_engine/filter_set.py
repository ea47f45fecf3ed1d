# This module defines the filter value types shared by every dashboard page.
# A FilterSet is an ordered, immutable collection of predicates tagged with the source that produced it.
# Writers never mutate a FilterSet in place; they derive a new one, which keeps merging replayable.
# The canonical form defined here is the one cache keys and history entries are built from.

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Final, Iterator, Union

Scalar = Union[str, int, float, bool]
PredicateValue = Union[Scalar, tuple[Scalar, ...]]

OPERATORS: Final[tuple[str, ...]] = ("eq", "in", "contains", "gte", "lte", "ne")

# Predicates of the same class on the same field replace each other.
OPERATOR_CLASSES: Final[dict[str, str]] = {
    "eq": "match",
    "in": "match",
    "ne": "exclude",
    "contains": "text",
    "gte": "lower_bound",
    "lte": "upper_bound",
}

PAGE_LOCAL: Final = "page-local"
CROSSFILTER: Final = "crossfilter"
EFFECTIVE: Final = "effective"
SOURCES: Final[tuple[str, ...]] = (PAGE_LOCAL, CROSSFILTER, EFFECTIVE)


def _freeze_value(value: Any) -> PredicateValue:
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(value)
    return value


@dataclass(frozen=True)
class Predicate:
    field: str
    operator: str
    value: PredicateValue

    def __post_init__(self) -> None:
        if not self.field:
            raise ValueError("Predicate field must be a non-empty string.")
        if self.operator not in OPERATORS:
            raise ValueError(f"Unsupported operator {self.operator!r}; expected one of {OPERATORS}.")
        object.__setattr__(self, "value", _freeze_value(self.value))
        if self.operator == "in" and not isinstance(self.value, tuple):
            object.__setattr__(self, "value", (self.value,))

    @property
    def operator_class(self) -> str:
        return OPERATOR_CLASSES[self.operator]

    @property
    def values(self) -> tuple[Scalar, ...]:
        return self.value if isinstance(self.value, tuple) else (self.value,)

    def to_dict(self) -> dict[str, Any]:
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return {"field": self.field, "op": self.operator, "value": value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Predicate:
        if not isinstance(data, dict):
            raise ValueError(f"Predicate must be an object, got: {type(data).__name__}")
        if "field" not in data:
            raise ValueError("Predicate is missing its field.")
        operator = data.get("op", data.get("operator", "eq"))
        return cls(field=str(data["field"]), operator=str(operator), value=data.get("value"))

    def canonical(self) -> tuple[str, str, str]:
        if self.operator == "in":
            value: Any = sorted(self.values, key=lambda item: json.dumps(item, ensure_ascii=False))
        elif isinstance(self.value, tuple):
            value = list(self.value)
        else:
            value = self.value
        return (self.field, self.operator, json.dumps(value, ensure_ascii=False, sort_keys=True))


def eq(field_name: str, value: Scalar) -> Predicate:
    return Predicate(field_name, "eq", value)


def in_(field_name: str, values: list[Scalar] | tuple[Scalar, ...]) -> Predicate:
    return Predicate(field_name, "in", tuple(values))


@dataclass(frozen=True)
class FilterSet:
    """
    Ordered predicates from one source.

    At most one predicate exists per (field, operator class); `with_predicate`
    replaces rather than appends so repeated writes from the same control
    never stack.
    """

    predicates: tuple[Predicate, ...] = field(default_factory=tuple)
    source: str = EFFECTIVE

    def __post_init__(self) -> None:
        if self.source not in SOURCES:
            raise ValueError(f"Unknown filter source {self.source!r}; expected one of {SOURCES}.")
        object.__setattr__(self, "predicates", tuple(self.predicates))

    @classmethod
    def empty(cls, source: str = EFFECTIVE) -> FilterSet:
        return cls(predicates=(), source=source)

    @classmethod
    def of(cls, *predicates: Predicate, source: str = EFFECTIVE) -> FilterSet:
        result = cls.empty(source)
        for predicate in predicates:
            result = result.with_predicate(predicate)
        return result

    def __iter__(self) -> Iterator[Predicate]:
        return iter(self.predicates)

    def __len__(self) -> int:
        return len(self.predicates)

    @property
    def is_empty(self) -> bool:
        return not self.predicates

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(predicate.field for predicate in self.predicates))

    def has_field(self, field_name: str) -> bool:
        return any(predicate.field == field_name for predicate in self.predicates)

    def predicate_for(self, field_name: str, operator_class: str | None = None) -> Predicate | None:
        for predicate in self.predicates:
            if predicate.field != field_name:
                continue
            if operator_class is None or predicate.operator_class == operator_class:
                return predicate
        return None

    def with_predicate(self, predicate: Predicate) -> FilterSet:
        updated: list[Predicate] = []
        replaced = False
        for existing in self.predicates:
            same_slot = (
                existing.field == predicate.field
                and existing.operator_class == predicate.operator_class
            )
            if same_slot:
                if not replaced:
                    updated.append(predicate)
                    replaced = True
                continue
            updated.append(existing)
        if not replaced:
            updated.append(predicate)
        return FilterSet(predicates=tuple(updated), source=self.source)

    def without_field(self, field_name: str) -> FilterSet:
        return FilterSet(
            predicates=tuple(p for p in self.predicates if p.field != field_name),
            source=self.source,
        )

    def without_operator_class(self, field_name: str, operator_class: str) -> FilterSet:
        return FilterSet(
            predicates=tuple(
                p
                for p in self.predicates
                if not (p.field == field_name and p.operator_class == operator_class)
            ),
            source=self.source,
        )

    def retagged(self, source: str) -> FilterSet:
        return FilterSet(predicates=self.predicates, source=source)

    def canonical(self) -> tuple[tuple[str, str, str], ...]:
        """Order-independent form: predicates sorted by field, then operator, then value."""

        return tuple(sorted(predicate.canonical() for predicate in self.predicates))

    def to_payload(self) -> list[dict[str, Any]]:
        return [predicate.to_dict() for predicate in self.predicates]

    @classmethod
    def from_payload(cls, items: list[dict[str, Any]], source: str = EFFECTIVE) -> FilterSet:
        if not isinstance(items, (list, tuple)):
            raise ValueError(f"Filter payload must be a list of predicates, got: {type(items).__name__}")
        return cls.of(*(Predicate.from_dict(item) for item in items), source=source)
