"""Per-entity tiered memory storage.

Each entity owns three ordered tiers (recent, mid, long), two counters of
records not yet covered by a consolidation, and two in-progress flags.
All mutation of an entity happens under that entity's lock; the
entity map itself is locked only while entries are inserted or removed.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any
from uuid import UUID

from loguru import logger

from .config import ConsolidationConfig
from .models import MemoryRecord, MemoryTier, TierTransition
from .storage.vector_store import VectorStore

if TYPE_CHECKING:
    from .vector_queue import VectorComputeQueue


class EntityMemory:
    """Memory tiers of a single entity, keyed by an opaque integer id."""

    def __init__(self, entity_id: int):
        self.entity_id = entity_id
        self.recent: list[MemoryRecord] = []
        self.mid: list[MemoryRecord] = []
        self.long: list[MemoryRecord] = []
        self.unconsolidated_recent = 0
        self.unconsolidated_mid = 0
        # Never persisted; always False after a reload.
        self.recent_consolidating = False
        self.mid_consolidating = False
        self.lock = threading.RLock()

    def tier(self, tier: MemoryTier) -> list[MemoryRecord]:
        if tier is MemoryTier.RECENT:
            return self.recent
        if tier is MemoryTier.MID:
            return self.mid
        return self.long

    def counter(self, tier: MemoryTier) -> int:
        if tier is MemoryTier.RECENT:
            return self.unconsolidated_recent
        if tier is MemoryTier.MID:
            return self.unconsolidated_mid
        return 0

    def set_counter(self, tier: MemoryTier, value: int) -> None:
        value = max(0, value)
        if tier is MemoryTier.RECENT:
            self.unconsolidated_recent = value
        elif tier is MemoryTier.MID:
            self.unconsolidated_mid = value

    def is_consolidating(self, transition: TierTransition) -> bool:
        if transition is TierTransition.RECENT_TO_MID:
            return self.recent_consolidating
        return self.mid_consolidating

    def set_consolidating(self, transition: TierTransition, value: bool) -> None:
        if transition is TierTransition.RECENT_TO_MID:
            self.recent_consolidating = value
        else:
            self.mid_consolidating = value

    def all_records(self) -> Iterator[MemoryRecord]:
        yield from self.recent
        yield from self.mid
        yield from self.long

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "recent": [r.model_dump(mode="json") for r in self.recent],
            "mid": [r.model_dump(mode="json") for r in self.mid],
            "long": [r.model_dump(mode="json") for r in self.long],
            "unconsolidated_recent": self.unconsolidated_recent,
            "unconsolidated_mid": self.unconsolidated_mid,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EntityMemory":
        entity = cls(int(data["entity_id"]))
        entity.recent = [MemoryRecord.model_validate(r) for r in data.get("recent") or []]
        entity.mid = [MemoryRecord.model_validate(r) for r in data.get("mid") or []]
        entity.long = [MemoryRecord.model_validate(r) for r in data.get("long") or []]
        entity.unconsolidated_recent = min(
            max(0, int(data.get("unconsolidated_recent", 0))), len(entity.recent)
        )
        entity.unconsolidated_mid = min(
            max(0, int(data.get("unconsolidated_mid", 0))), len(entity.mid)
        )
        return entity


class TieredMemoryStore:
    """Map of entity id → EntityMemory with the tier operations."""

    def __init__(
        self,
        vector_store: VectorStore,
        config: ConsolidationConfig | None = None,
        vector_queue: VectorComputeQueue | None = None,
    ):
        """Initialize the store.

        Args:
            vector_store: Vectors to drop when records are removed
            config: Tier thresholds and trim buffer
            vector_queue: Receives recompute requests for edited summaries
        """
        self._vectors = vector_store
        self._config = config or ConsolidationConfig()
        self._queue = vector_queue
        self._entities: dict[int, EntityMemory] = {}
        self._map_lock = threading.Lock()

    @property
    def config(self) -> ConsolidationConfig:
        return self._config

    def threshold(self, tier: MemoryTier) -> int:
        if tier is MemoryTier.RECENT:
            return self._config.recent_threshold
        if tier is MemoryTier.MID:
            return self._config.mid_threshold
        return self._config.long_cap

    # ------------------------------------------------------------------
    # Entity map
    # ------------------------------------------------------------------

    def get(self, entity_id: int | None) -> EntityMemory | None:
        if entity_id is None:
            return None
        return self._entities.get(entity_id)

    def get_or_create(self, entity_id: int) -> EntityMemory:
        entity = self._entities.get(entity_id)
        if entity is not None:
            return entity
        with self._map_lock:
            entity = self._entities.get(entity_id)
            if entity is None:
                entity = EntityMemory(entity_id)
                self._entities[entity_id] = entity
                logger.debug(f"Created memory tiers for entity {entity_id}")
            return entity

    def entity_ids(self) -> list[int]:
        with self._map_lock:
            return list(self._entities)

    def all_record_ids(self) -> set[UUID]:
        """Ids of every record in any tier of any entity."""
        ids: set[UUID] = set()
        with self._map_lock:
            entities = list(self._entities.values())
        for entity in entities:
            with entity.lock:
                ids.update(r.id for r in entity.all_records())
        return ids

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def append(self, entity_id: int | None, record: MemoryRecord | None) -> bool:
        """Add a record to the recent tier.

        Returns:
            Whether the unconsolidated counter reached the recent threshold
        """
        if entity_id is None or record is None or not record.summary.strip():
            return False

        entity = self.get_or_create(entity_id)
        with entity.lock:
            entity.recent.append(record)
            entity.unconsolidated_recent += 1
            crossed = entity.unconsolidated_recent >= self._config.recent_threshold
            self._trim_locked(entity, MemoryTier.RECENT)
        return crossed

    def trim(self, entity_id: int, tier: MemoryTier) -> int:
        entity = self.get(entity_id)
        if entity is None:
            return 0
        with entity.lock:
            return self._trim_locked(entity, tier)

    def _trim_locked(self, entity: EntityMemory, tier: MemoryTier) -> int:
        """Drop the oldest already-consolidated records beyond threshold + buffer."""
        if tier is MemoryTier.LONG:
            return 0
        records = entity.tier(tier)
        keep = self.threshold(tier) + self._config.trim_buffer
        safe = len(records) - entity.counter(tier)
        remove = min(len(records) - keep, safe)
        if remove <= 0:
            return 0
        dropped = records[:remove]
        del records[:remove]
        for record in dropped:
            self._vectors.remove(record.id)
        logger.debug(
            f"Trimmed {remove} {tier.value} memories for entity {entity.entity_id}"
        )
        return remove

    def find(self, entity_id: int, record_id: UUID) -> tuple[MemoryTier, MemoryRecord] | None:
        entity = self.get(entity_id)
        if entity is None:
            return None
        with entity.lock:
            for tier in (MemoryTier.RECENT, MemoryTier.MID, MemoryTier.LONG):
                for record in entity.tier(tier):
                    if record.id == record_id:
                        return tier, record
        return None

    def edit(
        self,
        entity_id: int,
        record_id: UUID,
        summary: str,
        keywords: list[str],
        importance: int,
    ) -> bool:
        """Edit a record in place. Importance is clamped to [1, 5].

        A changed summary invalidates the stored vector and schedules a
        recompute.
        """
        entity = self.get(entity_id)
        if entity is None:
            return False
        with entity.lock:
            found = self.find(entity_id, record_id)
            if found is None:
                return False
            _, record = found
            summary_changed = record.summary != summary
            record.summary = summary
            record.keywords = keywords
            record.importance = importance

        if summary_changed:
            self._vectors.remove(record_id)
            if self._queue is not None:
                self._queue.enqueue_memory(record_id, summary)
        return True

    def delete(self, entity_id: int, record_id: UUID) -> bool:
        """Remove a record from the first tier holding it (recent, mid, long).

        The vector is removed only when a record was actually removed.
        """
        entity = self.get(entity_id)
        if entity is None:
            return False
        with entity.lock:
            removed = False
            for tier in (MemoryTier.RECENT, MemoryTier.MID, MemoryTier.LONG):
                records = entity.tier(tier)
                for index, record in enumerate(records):
                    if record.id == record_id:
                        del records[index]
                        removed = True
                        break
                if removed:
                    entity.set_counter(tier, min(entity.counter(tier), len(records)))
                    break
        if removed:
            self._vectors.remove(record_id)
        return removed

    def clear(self, entity_id: int | None = None) -> None:
        """Drop one entity's tiers, or every entity when ``entity_id`` is None."""
        with self._map_lock:
            if entity_id is None:
                self._entities.clear()
            else:
                self._entities.pop(entity_id, None)

    def reset_consolidation_flags(self) -> None:
        """Clear every in-progress flag, for when in-flight work was cancelled."""
        with self._map_lock:
            entities = list(self._entities.values())
        for entity in entities:
            with entity.lock:
                for transition in TierTransition:
                    entity.set_consolidating(transition, False)

    def tier_records(self, entity_id: int, tier: MemoryTier) -> list[MemoryRecord]:
        """Copy of a tier, for browsing."""
        entity = self.get(entity_id)
        if entity is None:
            return []
        with entity.lock:
            return list(entity.tier(tier))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def export_state(self) -> dict[str, Any]:
        with self._map_lock:
            entities = list(self._entities.values())
        exported = []
        for entity in entities:
            with entity.lock:
                exported.append(entity.to_dict())
        return {"entities": exported}

    def import_state(self, state: dict[str, Any]) -> int:
        """Replace all tiers from ``export_state`` output.

        Returns:
            Number of entities loaded
        """
        loaded: dict[int, EntityMemory] = {}
        for data in state.get("entities") or []:
            try:
                entity = EntityMemory.from_dict(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed entity memory: {e}")
                continue
            loaded[entity.entity_id] = entity
        with self._map_lock:
            self._entities = loaded
        logger.info(f"Imported memory tiers for {len(loaded)} entities")
        return len(loaded)
