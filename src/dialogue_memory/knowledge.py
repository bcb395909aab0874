"""Shared knowledge entries not owned by any single entity."""

from __future__ import annotations

import threading
from typing import Any
from uuid import UUID

from loguru import logger

from .models import MemoryRecord


class CommonKnowledgeStore:
    """Small keyword-indexed list of world facts.

    Entries are MemoryRecord-shaped and matched by keyword only; they never
    get vectors.
    """

    def __init__(self):
        self._entries: list[MemoryRecord] = []
        self.lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, summary: str, keywords: list[str], importance: int = 3) -> MemoryRecord | None:
        if not summary or not summary.strip():
            return None
        record = MemoryRecord(summary=summary.strip(), keywords=keywords, importance=importance)
        with self.lock:
            self._entries.append(record)
        return record

    def remove(self, record_id: UUID) -> bool:
        with self.lock:
            for index, record in enumerate(self._entries):
                if record.id == record_id:
                    del self._entries[index]
                    return True
        return False

    def entries(self) -> list[MemoryRecord]:
        with self.lock:
            return list(self._entries)

    def clear(self) -> None:
        with self.lock:
            self._entries.clear()

    def export_state(self) -> list[dict[str, Any]]:
        with self.lock:
            return [r.model_dump(mode="json") for r in self._entries]

    def import_state(self, entries: list[dict[str, Any]]) -> int:
        loaded = []
        for data in entries or []:
            try:
                loaded.append(MemoryRecord.model_validate(data))
            except ValueError as e:
                logger.warning(f"Skipping malformed knowledge entry: {e}")
        with self.lock:
            self._entries = loaded
        return len(loaded)
