"""Memory retrieval for a new conversational context.

Personal memories are scored against a pool of context vectors, one per
independent facet of the situation (mood, location, recent events). A
record's semantic score is its best match over the pool, so a memory
surfaces when it strongly matches any single facet:

  score = semantic * W_semantic
        + importance * W_importance * time_decay
        + name_bonus
        - access_count * W_access

Shared knowledge is matched by keywords only.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

import numpy as np
from loguru import logger

from .config import KnowledgeConfig, RetrievalConfig
from .decay import floored_decay, raw_decay
from .embedding.vectors import cosine_similarity
from .keyword_matcher import evaluate
from .knowledge import CommonKnowledgeStore
from .models import MemoryRecord
from .storage.vector_store import VectorStore
from .tiers import TieredMemoryStore
from .vector_queue import VectorComputeQueue

EXCLUDED_SCORE = -1.0


@dataclass(frozen=True)
class RetrievalQuotas:
    total: int
    recent: int
    long: int


def quotas_for(participant_count: int) -> RetrievalQuotas:
    """Fewer memories per participant as conversations get crowded."""
    if participant_count <= 1:
        return RetrievalQuotas(total=8, recent=3, long=1)
    if participant_count == 2:
        return RetrievalQuotas(total=6, recent=2, long=1)
    return RetrievalQuotas(total=4, recent=1, long=1)


def time_decay(record: MemoryRecord, now_tick: int, config: RetrievalConfig) -> float:
    """Decay multiplier with the importance floor applied."""
    raw = raw_decay(
        record.created_tick,
        now_tick,
        config.grace_days,
        config.half_life_days,
        config.ticks_per_day,
    )
    return floored_decay(raw, record.importance, config.decay_floors)


class RetrievalEngine:
    """Scores and selects personal memories and shared knowledge."""

    def __init__(
        self,
        store: TieredMemoryStore,
        vector_store: VectorStore,
        vector_queue: VectorComputeQueue,
        knowledge: CommonKnowledgeStore,
        clock: Callable[[], int],
        config: RetrievalConfig | None = None,
        knowledge_config: KnowledgeConfig | None = None,
    ):
        """Initialize the retrieval engine.

        Args:
            store: Entity tiers
            vector_store: Memory vectors
            vector_queue: Missing vectors are queued here
            knowledge: Shared knowledge entries
            clock: Returns the current host tick
            config: Personal scoring weights and quotas
            knowledge_config: Knowledge scoring weights
        """
        self._store = store
        self._vectors = vector_store
        self._queue = vector_queue
        self._knowledge = knowledge
        self._clock = clock
        self._config = config or RetrievalConfig()
        self._knowledge_config = knowledge_config or KnowledgeConfig()

    # ------------------------------------------------------------------
    # Personal memories
    # ------------------------------------------------------------------

    def semantic_score(self, record: MemoryRecord, context_vectors: list[np.ndarray]) -> float:
        """Best cosine similarity over the context pool, 0 below the threshold.

        A record without a stored vector scores 0 and is queued for embedding.
        """
        vector = self._vectors.get(record.id)
        if vector is None:
            if record.summary:
                self._queue.enqueue_memory(record.id, record.summary)
            return 0.0

        best = 0.0
        for context_vector in context_vectors:
            if context_vector is None:
                continue
            best = max(best, cosine_similarity(context_vector, vector))
        return best if best >= self._config.similarity_threshold else 0.0

    def name_bonus(self, record: MemoryRecord, context_names: set[str]) -> float:
        if not context_names:
            return 0.0
        matched = sum(1 for kw in record.keywords if kw.casefold() in context_names)
        return matched * self._config.name_weight

    def score(
        self,
        record: MemoryRecord,
        context_vectors: list[np.ndarray],
        context_names: set[str],
        now_tick: int,
    ) -> float:
        semantic = self.semantic_score(record, context_vectors)
        bonus = self.name_bonus(record, context_names)
        if semantic == 0.0 and bonus == 0.0:
            return EXCLUDED_SCORE

        return (
            semantic * self._config.semantic_weight
            + record.importance * self._config.importance_weight * time_decay(record, now_tick, self._config)
            + bonus
            - record.access_count * self._config.access_weight
        )

    def retrieve_personal(
        self,
        context_vectors: list[np.ndarray],
        entity_id: int | None,
        context_names: set[str] | None = None,
        quotas: RetrievalQuotas | None = None,
    ) -> list[MemoryRecord]:
        """Select the memories most relevant to the context.

        Selection order: up to ``quotas.recent`` recent-tier records within
        the relative threshold of the best recent score, then up to
        ``quotas.long`` long-tier records, then the remaining slots from
        everything not yet chosen under the same relative threshold.
        Selected records have their access count incremented.

        Args:
            context_vectors: One vector per context facet
            entity_id: Owning entity
            context_names: Names present in the context
            quotas: Selection caps; defaults to the configured single-speaker caps

        Returns:
            Selected records, recent picks first
        """
        if not context_vectors or entity_id is None:
            return []
        entity = self._store.get(entity_id)
        if entity is None:
            return []

        quotas = quotas or RetrievalQuotas(
            total=self._config.total_limit,
            recent=self._config.recent_limit,
            long=self._config.long_limit,
        )
        names = {n.casefold() for n in (context_names or set()) if n}
        now_tick = self._clock()

        with entity.lock:
            recent = list(entity.recent)
            mid = list(entity.mid)
            long = list(entity.long)

        scores: dict[UUID, float] = {}
        for record in (*recent, *mid, *long):
            scores[record.id] = self.score(record, context_vectors, names, now_tick)

        selected = self._select(recent, long, [*recent, *mid, *long], scores, quotas)

        with entity.lock:
            for record in selected:
                record.access_count += 1

        logger.debug(
            f"Retrieved {len(selected)} memories for entity {entity_id} "
            f"from {len(scores)} candidates"
        )
        return selected

    def _ranked(self, records: list[MemoryRecord], scores: dict[UUID, float]) -> list[MemoryRecord]:
        eligible = [r for r in records if scores[r.id] >= 0]
        return sorted(eligible, key=lambda r: scores[r.id], reverse=True)

    def _within_relative(
        self, ranked: list[MemoryRecord], scores: dict[UUID, float], limit: int
    ) -> list[MemoryRecord]:
        if not ranked or limit <= 0:
            return []
        floor = scores[ranked[0].id] * self._config.relative_threshold
        return [r for r in ranked if scores[r.id] >= floor][:limit]

    def _select(
        self,
        recent: list[MemoryRecord],
        long: list[MemoryRecord],
        pool: list[MemoryRecord],
        scores: dict[UUID, float],
        quotas: RetrievalQuotas,
    ) -> list[MemoryRecord]:
        selected = self._within_relative(self._ranked(recent, scores), scores, quotas.recent)
        selected.extend(self._ranked(long, scores)[: max(0, quotas.long)])

        remaining = quotas.total - len(selected)
        if remaining > 0:
            chosen = {r.id for r in selected}
            rest = self._ranked([r for r in pool if r.id not in chosen], scores)
            selected.extend(self._within_relative(rest, scores, remaining))
        return selected

    # ------------------------------------------------------------------
    # Shared knowledge
    # ------------------------------------------------------------------

    def retrieve_knowledge(self, context_text: str) -> list[MemoryRecord]:
        """Keyword-overlap search of the shared knowledge pool.

        Entries with fewer keywords score more per match:
        ``matched * (standard_length / max(1, keyword_count)) * W_keyword
        + importance * W_importance``. Keywords may be boolean expressions.

        Returns:
            Top entries by score; their access counts are incremented
        """
        if not context_text or not context_text.strip():
            return []

        cfg = self._knowledge_config
        scored: list[tuple[float, MemoryRecord]] = []
        for entry in self._knowledge.entries():
            if not entry.keywords:
                continue
            matched = sum(1 for kw in entry.keywords if evaluate(kw, context_text)[0])
            if matched == 0:
                continue
            length_factor = cfg.standard_length / max(1, len(entry.keywords))
            score = (
                matched * length_factor * cfg.keyword_weight
                + entry.importance * cfg.importance_weight
            )
            scored.append((score, entry))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        result = [entry for _, entry in scored[: cfg.limit]]
        with self._knowledge.lock:
            for entry in result:
                entry.access_count += 1
        return result
