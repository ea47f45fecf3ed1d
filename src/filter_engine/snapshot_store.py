# This module persists the page-local filter intent of each page so it can be recalled on the next visit.
# Only page-local filters are stored; crossfilter selections are never persisted.
# Snapshots are advisory: stale (older than max age), unreadable, or malformed files are discarded silently.

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Mapping

from src.filter_engine.filter_set import PAGE_LOCAL, FilterSet

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PageFilterSnapshot:
    page_id: str
    filters: FilterSet
    intent: dict[str, str] = field(default_factory=dict)
    saved_at: datetime = field(default_factory=_utc_now)


class PageFilterSnapshotStore:
    def __init__(
        self,
        directory: str | Path,
        *,
        max_age: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.directory = Path(directory)
        self.max_age = max_age
        self._clock = clock

    def path_for(self, page_id: str) -> Path:
        safe = _UNSAFE_CHARS.sub("_", page_id) or "_"
        return self.directory / f"{safe}.json"

    def save(
        self,
        page_id: str,
        filters: FilterSet,
        *,
        intent: Mapping[str, str | None] | None = None,
    ) -> bool:
        document = {
            "version": SNAPSHOT_VERSION,
            "page_id": page_id,
            "saved_at": self._clock().isoformat(),
            "intent": {key: value for key, value in (intent or {}).items() if value},
            "filters": filters.to_payload(),
        }
        path = self.path_for(page_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(document, ensure_ascii=False), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not save filter snapshot for page %s: %s", page_id, exc)
            return False
        return True

    def load(self, page_id: str) -> PageFilterSnapshot | None:
        path = self.path_for(page_id)
        if not path.exists():
            return None

        try:
            document = json.loads(path.read_text(encoding="utf-8"))
            snapshot = self._parse(page_id, document)
        except (OSError, ValueError, TypeError, KeyError) as exc:
            logger.debug("Discarding unreadable filter snapshot for page %s: %s", page_id, exc)
            self.discard(page_id)
            return None

        if self._clock() - snapshot.saved_at > self.max_age:
            logger.debug("Discarding stale filter snapshot for page %s.", page_id)
            self.discard(page_id)
            return None
        return snapshot

    def discard(self, page_id: str) -> None:
        try:
            self.path_for(page_id).unlink(missing_ok=True)
        except OSError as exc:
            logger.debug("Could not remove filter snapshot for page %s: %s", page_id, exc)

    @staticmethod
    def _parse(page_id: str, document: Any) -> PageFilterSnapshot:
        if not isinstance(document, dict) or document.get("version") != SNAPSHOT_VERSION:
            raise ValueError("Unsupported snapshot document.")
        if document.get("page_id") != page_id:
            raise ValueError("Snapshot belongs to another page.")

        saved_at = datetime.fromisoformat(document["saved_at"])
        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=timezone.utc)

        raw_intent = document.get("intent") or {}
        if not isinstance(raw_intent, dict):
            raise ValueError("Snapshot intent must be an object.")

        return PageFilterSnapshot(
            page_id=page_id,
            filters=FilterSet.from_payload(document["filters"], source=PAGE_LOCAL),
            intent={str(key): str(value) for key, value in raw_intent.items()},
            saved_at=saved_at,
        )
