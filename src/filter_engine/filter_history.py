# This module keeps the recently applied filter sets and the user's named favourites.
# Both lists live in one JSON document so they can be restored between sessions.
# Storage problems are logged and degrade to empty lists; they never interrupt filtering.

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from src.filter_engine.filter_set import FilterSet, Scalar

logger = logging.getLogger(__name__)

FIELD_LABELS: dict[str, str] = {
    "statusDemanda": "Status",
    "tema": "Tema",
    "assunto": "Assunto",
    "orgaos": "Órgão",
    "tipoDeManifestacao": "Tipo",
    "canal": "Canal",
    "prioridade": "Prioridade",
    "unidadeCadastro": "Unidade",
    "bairro": "Bairro",
    "dataCriacaoIso": "Data de Criação",
}

NAMED_PREDICATE_LIMIT = 3


def history_key(filter_set: FilterSet) -> str:
    return json.dumps(filter_set.canonical(), ensure_ascii=False)


def _format_value(values: tuple[Scalar, ...]) -> str:
    return ", ".join(str(value) for value in values)


def default_name(filter_set: FilterSet) -> str:
    if filter_set.is_empty:
        return "Filtro vazio"
    parts = [
        f"{FIELD_LABELS.get(predicate.field, predicate.field)}: {_format_value(predicate.values)}"
        for predicate in filter_set.predicates[:NAMED_PREDICATE_LIMIT]
    ]
    name = ", ".join(parts)
    extra = len(filter_set) - NAMED_PREDICATE_LIMIT
    if extra > 0:
        name = f"{name} +{extra}"
    return name


@dataclass(frozen=True)
class HistoryEntry:
    key: str
    filters: FilterSet
    name: str
    timestamp: float
    entry_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "key": self.key,
            "filters": self.filters.to_payload(),
            "name": self.name,
            "timestamp": self.timestamp,
        }
        if self.entry_id is not None:
            data["id"] = self.entry_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        filters = FilterSet.from_payload(data["filters"])
        return cls(
            key=history_key(filters),
            filters=filters,
            name=str(data.get("name") or default_name(filters)),
            timestamp=float(data.get("timestamp", 0)),
            entry_id=data.get("id"),
        )


class FilterHistory:
    def __init__(
        self,
        path: str | Path,
        *,
        max_recent: int = 10,
        max_favorites: int = 20,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_recent <= 0 or max_favorites <= 0:
            raise ValueError("History limits must be greater than 0.")
        self.path = Path(path)
        self.max_recent = max_recent
        self.max_favorites = max_favorites
        self._clock = clock

    def recent(self) -> list[HistoryEntry]:
        return self._read_list("recent")

    def favorites(self) -> list[HistoryEntry]:
        return self._read_list("favorites")

    def save_recent(self, filter_set: FilterSet, name: str | None = None) -> HistoryEntry | None:
        if filter_set.is_empty:
            return None

        key = history_key(filter_set)
        entries = [entry for entry in self.recent() if entry.key != key]
        entry = HistoryEntry(
            key=key,
            filters=filter_set,
            name=name or default_name(filter_set),
            timestamp=self._clock(),
        )
        entries.insert(0, entry)
        if not self._write_list("recent", entries[: self.max_recent]):
            return None
        logger.debug("Saved recent filter %r (%d stored).", entry.name, min(len(entries), self.max_recent))
        return entry

    def save_favorite(self, filter_set: FilterSet, name: str) -> bool:
        if filter_set.is_empty or not name:
            return False

        favorites = self.favorites()
        existing = next((i for i, fav in enumerate(favorites) if fav.name == name), None)
        entry = HistoryEntry(
            key=history_key(filter_set),
            filters=filter_set,
            name=name,
            timestamp=self._clock(),
            entry_id=favorites[existing].entry_id if existing is not None else f"fav_{uuid.uuid4().hex[:12]}",
        )
        if existing is not None:
            favorites[existing] = entry
        else:
            favorites.append(entry)
            favorites = favorites[-self.max_favorites :]
        return self._write_list("favorites", favorites)

    def remove_favorite(self, entry_id: str) -> bool:
        favorites = self.favorites()
        remaining = [fav for fav in favorites if fav.entry_id != entry_id]
        if len(remaining) == len(favorites):
            return False
        return self._write_list("favorites", remaining)

    def clear_recent(self) -> bool:
        return self._write_list("recent", [])

    def _read_document(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Could not read filter history from %s: %s", self.path, exc)
            return {}
        if not isinstance(document, dict):
            logger.error("Filter history at %s is not a JSON object; ignoring it.", self.path)
            return {}
        return document

    def _read_list(self, name: str) -> list[HistoryEntry]:
        raw = self._read_document().get(name) or []
        if not isinstance(raw, list):
            logger.error("Filter history list %r is malformed; ignoring it.", name)
            return []

        entries: list[HistoryEntry] = []
        for item in raw:
            try:
                entries.append(HistoryEntry.from_dict(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed %s history entry: %s", name, exc)
        return entries

    def _write_list(self, name: str, entries: list[HistoryEntry]) -> bool:
        document = self._read_document()
        document[name] = [entry.to_dict() for entry in entries]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.error("Could not write filter history to %s: %s", self.path, exc)
            return False
        return True
