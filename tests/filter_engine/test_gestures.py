# This test file covers the chart gesture state machine.
# It exists so plain clicks, multi-select toggles, and clear-all keep their documented transitions.
# Bad gestures must never raise out of the interpreter.

from __future__ import annotations

import pytest

from src.filter_engine.filter_set import CROSSFILTER, FilterSet, Predicate, eq, in_
from src.filter_engine.gestures import (
    CLEAR_ALL,
    MULTI_SELECT,
    PLAIN,
    GestureEvent,
    GestureInterpreter,
    apply_gesture,
    kind_for_modifiers,
)


@pytest.mark.parametrize(
    ("modifiers", "expected"),
    [
        (None, PLAIN),
        ([], PLAIN),
        (["ctrl"], MULTI_SELECT),
        (["Meta"], MULTI_SELECT),
        (["shift", "alt"], MULTI_SELECT),
        (["contextmenu"], CLEAR_ALL),
        (["right", "ctrl"], CLEAR_ALL),
    ],
)
def test_kind_for_modifiers(modifiers: list[str] | None, expected: str) -> None:
    assert kind_for_modifiers(modifiers) == expected


def test_plain_click_replaces_predicate_on_field() -> None:
    start = FilterSet.of(in_("tema", ["A", "B"]), eq("canal", "Web"), source=CROSSFILTER)

    after = apply_gesture(start, PLAIN, "tema", "C")

    assert after.predicate_for("tema") == eq("tema", "C")
    assert after.predicate_for("canal") == eq("canal", "Web")


@pytest.mark.parametrize(
    "start",
    [
        FilterSet.empty(CROSSFILTER),
        FilterSet.of(eq("canal", "Web"), source=CROSSFILTER),
        FilterSet.of(in_("tema", ["A"]), source=CROSSFILTER),
        FilterSet.of(in_("tema", ["A", "B"]), eq("canal", "Web"), source=CROSSFILTER),
    ],
)
def test_multi_select_twice_is_identity(start: FilterSet) -> None:
    once = apply_gesture(start, MULTI_SELECT, "tema", "Z")
    twice = apply_gesture(once, MULTI_SELECT, "tema", "Z")

    assert once != start
    assert twice.canonical() == start.canonical()


def test_multi_select_removal_is_case_insensitive() -> None:
    start = FilterSet.of(in_("tema", ["Saúde", "Obras"]), source=CROSSFILTER)
    after = apply_gesture(start, MULTI_SELECT, "tema", "saúde")
    assert after.predicate_for("tema") == in_("tema", ["Obras"])


def test_multi_select_on_eq_predicate() -> None:
    start = FilterSet.of(eq("tema", "A"), source=CROSSFILTER)

    assert apply_gesture(start, MULTI_SELECT, "tema", "A").is_empty
    assert apply_gesture(start, MULTI_SELECT, "tema", "B").predicate_for("tema") == in_("tema", ["A", "B"])


def test_clear_all_empties_crossfilter() -> None:
    interpreter = GestureInterpreter(FilterSet.of(eq("tema", "A"), source=CROSSFILTER))

    mutation = interpreter.interpret(GestureEvent(CLEAR_ALL))

    assert mutation.changed
    assert interpreter.crossfilter.is_empty
    assert interpreter.crossfilter.source == CROSSFILTER


def test_interpret_is_fail_soft_for_bad_input() -> None:
    interpreter = GestureInterpreter(FilterSet.of(eq("tema", "A"), source=CROSSFILTER))

    missing_value = interpreter.interpret(PLAIN, "tema", None)
    unknown_kind = interpreter.interpret("doubleClick", "tema", "B")

    assert not missing_value.changed
    assert not unknown_kind.changed
    assert interpreter.crossfilter.predicates == (Predicate("tema", "eq", "A"),)


def test_mutation_reports_value_active() -> None:
    interpreter = GestureInterpreter()

    added = interpreter.interpret(MULTI_SELECT, "tema", "A")
    removed = interpreter.interpret(MULTI_SELECT, "tema", "A")

    assert added.value_active
    assert not removed.value_active
    assert removed.changed
