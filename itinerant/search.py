"""Destination index of generated itineraries."""

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import List

from pydantic import BaseModel, Field, TypeAdapter

from .constants import INDEX_KEY_PREFIX, INDEX_MAX_ENTRIES
from .contracts import utcnow
from .models import Document
from .persistence import StateStore

_NON_SLUG = re.compile(r"[^a-z0-9]+")


class IndexEntry(BaseModel):
    workflow_id: str
    destination: str
    title: str
    duration_days: int
    indexed_at: datetime = Field(default_factory=utcnow)


_ENTRIES = TypeAdapter(List[IndexEntry])


def destination_slug(destination: str) -> str:
    return _NON_SLUG.sub("-", destination.lower()).strip("-") or "unknown"


class ItineraryIndex:
    """Per-destination lists of itineraries kept in the state store.

    Concurrent writers for the same destination may lose entries; the
    index is advisory. Each destination keeps at most ``max_entries``, newest
    first.
    """

    def __init__(
        self,
        store: StateStore,
        key_prefix: str = INDEX_KEY_PREFIX,
        max_entries: int = INDEX_MAX_ENTRIES,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._store = store
        self._key_prefix = key_prefix
        self._max_entries = max_entries

    def key_for(self, destination: str) -> str:
        return f"{self._key_prefix}:{destination_slug(destination)}"

    async def add(self, workflow_id: str, document: Document) -> IndexEntry:
        """Index ``document``; re-adding the same workflow replaces its entry."""
        entries = [
            e for e in await self.search(document.destination, limit=None)
            if e.workflow_id != workflow_id
        ]
        entry = IndexEntry(
            workflow_id=workflow_id,
            destination=document.destination,
            title=document.title,
            duration_days=document.duration_days,
        )
        entries.insert(0, entry)
        del entries[self._max_entries :]
        await self._store.set(
            self.key_for(document.destination),
            json.dumps(_ENTRIES.dump_python(entries, mode="json")),
        )
        return entry

    async def search(self, destination: str, limit: int | None = 10) -> List[IndexEntry]:
        """Most recently indexed itineraries for ``destination``."""
        raw = await self._store.get(self.key_for(destination))
        if raw is None:
            return []
        entries = _ENTRIES.validate_json(raw)
        return entries if limit is None else entries[:limit]
