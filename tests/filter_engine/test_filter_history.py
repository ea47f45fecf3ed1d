# This test file validates the recent and favourite filter lists.
# It exists so list limits, move-to-top ordering, and generated names behave like the dashboard expects.
# Storage errors must degrade to empty results rather than raise.

from __future__ import annotations

import json
from pathlib import Path

from src.filter_engine.filter_history import FilterHistory, default_name
from src.filter_engine.filter_set import FilterSet, eq, in_


def test_recent_moves_reapplied_set_to_top(tmp_path: Path) -> None:
    history = FilterHistory(tmp_path / "history.json", max_recent=2)
    first = FilterSet.of(eq("tema", "A"))
    second = FilterSet.of(eq("tema", "B"))
    third = FilterSet.of(eq("tema", "C"))

    history.save_recent(first)
    history.save_recent(second)
    history.save_recent(FilterSet.of(eq("tema", "A")))
    assert [entry.filters for entry in history.recent()] == [first, second]

    history.save_recent(third)
    assert [entry.filters for entry in history.recent()] == [third, first]


def test_empty_filter_set_is_not_recorded(tmp_path: Path) -> None:
    history = FilterHistory(tmp_path / "history.json")
    assert history.save_recent(FilterSet.empty()) is None
    assert history.recent() == []


def test_favourites_update_in_place_and_evict_oldest(tmp_path: Path) -> None:
    history = FilterHistory(tmp_path / "history.json", max_favorites=2)

    assert history.save_favorite(FilterSet.of(eq("tema", "A")), "Saúde")
    assert history.save_favorite(FilterSet.of(eq("tema", "B")), "Obras")
    original_id = history.favorites()[0].entry_id
    assert history.save_favorite(FilterSet.of(eq("tema", "C")), "Saúde")

    favourites = history.favorites()
    assert [fav.name for fav in favourites] == ["Saúde", "Obras"]
    assert favourites[0].entry_id == original_id
    assert favourites[0].filters == FilterSet.of(eq("tema", "C"))

    history.save_favorite(FilterSet.of(eq("tema", "D")), "Trânsito")
    assert [fav.name for fav in history.favorites()] == ["Obras", "Trânsito"]


def test_remove_favourite(tmp_path: Path) -> None:
    history = FilterHistory(tmp_path / "history.json")
    history.save_favorite(FilterSet.of(eq("tema", "A")), "Saúde")
    entry_id = history.favorites()[0].entry_id

    assert history.remove_favorite(str(entry_id))
    assert not history.remove_favorite("missing")
    assert history.favorites() == []


def test_default_name_lists_first_three_predicates() -> None:
    filters = FilterSet.of(
        eq("statusDemanda", "ABERTO"),
        in_("tema", ["Saúde", "Obras"]),
        eq("canal", "Web"),
        eq("bairro", "Centro"),
    )
    assert default_name(filters) == "Status: ABERTO, Tema: Saúde, Obras, Canal: Web +1"


def test_corrupt_history_file_reads_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "history.json"
    path.write_text("[1, 2", encoding="utf-8")
    history = FilterHistory(path)

    assert history.recent() == []
    assert history.favorites() == []


def test_malformed_history_entries_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "history.json"
    good = FilterSet.of(eq("tema", "A"))
    path.write_text(
        json.dumps(
            {
                "recent": [
                    {"filters": ["bad"]},
                    "not-an-entry",
                    {"filters": "tema=A"},
                    {"name": "Tema A", "filters": good.to_payload(), "timestamp": 1},
                ]
            }
        ),
        encoding="utf-8",
    )
    history = FilterHistory(path)

    assert [entry.filters for entry in history.recent()] == [good]
    assert history.save_recent(FilterSet.of(eq("tema", "B"))) is not None
    assert len(history.recent()) == 2
