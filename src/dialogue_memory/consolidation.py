"""Tier consolidation pipeline.

When an entity's recent tier collects enough unconsolidated records, a
snapshot is handed to the summarizer in the background; the merged
memories land in the mid tier, and the same happens from mid to long.

Per (entity, transition) the pipeline walks
``IDLE → SNAPSHOTTING → AWAITING_SUMMARY → APPLYING_SUCCESS | ROLLING_BACK → IDLE``.
The snapshot and the in-progress flag are taken under the entity lock;
the lock is never held while waiting on the summarizer. On success the
source counter drops by the snapshot's count only, so records appended
while the summary was in flight still count toward the next trigger.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Callable, Coroutine
from enum import Enum
from typing import Any

from loguru import logger

from .config import ConsolidationConfig, TaskConfig
from .decay import floored_decay, raw_decay, within_grace
from .interfaces import Summarizer
from .models import MemoryRecord, MemoryTier, MergedMemory, TierTransition
from .storage.vector_store import VectorStore
from .tasks import (
    CancellationSource,
    CancellationToken,
    MainThreadQueue,
    NoticeBoard,
    run_retryable,
)
from .tiers import TieredMemoryStore
from .vector_queue import VectorComputeQueue

PINNED_SCORE = math.inf


class ConsolidationState(str, Enum):
    IDLE = "idle"
    SNAPSHOTTING = "snapshotting"
    AWAITING_SUMMARY = "awaiting_summary"
    APPLYING_SUCCESS = "applying_success"
    ROLLING_BACK = "rolling_back"


def merged_metadata(
    source_ids: list[int],
    snapshot: list[MemoryRecord],
    fallback_tick: int,
) -> tuple[int, int]:
    """Average creation tick and access count over cited snapshot entries.

    Args:
        source_ids: 1-based indices into ``snapshot``; others are ignored
        snapshot: Records the summarizer was given
        fallback_tick: Tick to use when no valid index is cited

    Returns:
        ``(created_tick, access_count)``
    """
    cited = [snapshot[i - 1] for i in source_ids or [] if 1 <= i <= len(snapshot)]
    if not cited:
        return fallback_tick, 0
    avg_tick = int(sum(r.created_tick for r in cited) / len(cited))
    avg_access = int(sum(r.access_count for r in cited) / len(cited))
    return avg_tick, avg_access


def retention_score(record: MemoryRecord, now_tick: int, config: ConsolidationConfig) -> float:
    """Long-tier retention score; records inside the grace period are pinned."""
    if within_grace(record.created_tick, now_tick, config.grace_days, config.ticks_per_day):
        return PINNED_SCORE
    raw = raw_decay(
        record.created_tick,
        now_tick,
        config.grace_days,
        config.half_life_days,
        config.ticks_per_day,
    )
    decay = floored_decay(raw, record.importance, config.decay_floors)
    return (
        record.importance * config.importance_weight * decay
        + record.access_count * config.access_weight * raw
    )


def prune_long_tier(
    records: list[MemoryRecord],
    cap: int,
    now_tick: int,
    config: ConsolidationConfig,
) -> list[MemoryRecord]:
    """Remove the lowest-scoring records until ``len(records) <= cap``.

    Pinned records are never removed, so the tier may stay above the cap.
    The list is modified in place.

    Returns:
        Removed records, so their vectors can be dropped
    """
    excess = len(records) - cap
    if excess <= 0:
        return []

    scored = sorted(
        ((retention_score(r, now_tick, config), r) for r in records),
        key=lambda pair: pair[0],
    )
    removed: list[MemoryRecord] = []
    for score, record in scored:
        if len(removed) >= excess or score == PINNED_SCORE:
            break
        removed.append(record)

    removed_ids = {r.id for r in removed}
    records[:] = [r for r in records if r.id not in removed_ids]
    return removed


class ConsolidationPipeline:
    """Drives recent→mid and mid→long consolidation for every entity."""

    def __init__(
        self,
        store: TieredMemoryStore,
        vector_store: VectorStore,
        vector_queue: VectorComputeQueue,
        summarizer: Summarizer,
        dispatcher: MainThreadQueue,
        scheduler: Callable[[Coroutine[Any, Any, Any]], Any],
        cancellation: CancellationSource,
        clock: Callable[[], int],
        config: ConsolidationConfig | None = None,
        task_config: TaskConfig | None = None,
        notices: NoticeBoard | None = None,
        is_alive: Callable[[], bool] = lambda: True,
    ):
        """Initialize the pipeline.

        Args:
            store: Entity tiers
            vector_store: Vectors of pruned records are removed here
            vector_queue: New merged records are queued for embedding
            summarizer: Produces merged memories from a snapshot
            dispatcher: Host-thread callback queue
            scheduler: Launches a coroutine on the background loop
            cancellation: Session cancellation source
            clock: Returns the current host tick
            config: Thresholds and retention weights
            task_config: Retry policy for summarizer calls
            notices: User-visible notices
            is_alive: Whether the host session still exists
        """
        self._store = store
        self._vectors = vector_store
        self._queue = vector_queue
        self._summarizer = summarizer
        self._dispatcher = dispatcher
        self._schedule = scheduler
        self._cancellation = cancellation
        self._clock = clock
        self._config = config or store.config
        self._task_config = task_config or TaskConfig()
        self._notices = notices or NoticeBoard()
        self._is_alive = is_alive
        self._states: dict[tuple[int, TierTransition], ConsolidationState] = {}
        self._labels: dict[int, str] = {}
        self._state_lock = threading.Lock()

    def state(self, entity_id: int, transition: TierTransition) -> ConsolidationState:
        with self._state_lock:
            return self._states.get((entity_id, transition), ConsolidationState.IDLE)

    def _set_state(
        self, entity_id: int, transition: TierTransition, state: ConsolidationState
    ) -> None:
        with self._state_lock:
            if state is ConsolidationState.IDLE:
                self._states.pop((entity_id, transition), None)
            else:
                self._states[(entity_id, transition)] = state

    def reset_states(self) -> None:
        with self._state_lock:
            self._states.clear()

    def _threshold(self, transition: TierTransition) -> int:
        if transition is TierTransition.RECENT_TO_MID:
            return self._config.recent_threshold
        return self._config.mid_threshold

    def maybe_trigger(
        self,
        entity_id: int,
        transition: TierTransition,
        entity_label: str | None = None,
    ) -> Any:
        """Start a consolidation if the backlog is large enough and none is running.

        Returns:
            Whatever the scheduler returned for the launched task, or None
        """
        if entity_label:
            self._labels[entity_id] = entity_label
        entity = self._store.get(entity_id)
        if entity is None:
            return None

        source = transition.source
        with entity.lock:
            if entity.is_consolidating(transition):
                return None
            if entity.counter(source) < self._threshold(transition):
                return None
            entity.set_consolidating(transition, True)
            self._set_state(entity_id, transition, ConsolidationState.SNAPSHOTTING)
            snapshot = list(entity.tier(source))
            snapshot_count = entity.counter(source)

        label = self._labels.get(entity_id, str(entity_id))
        call_tick = self._clock()
        token = self._cancellation.token
        self._set_state(entity_id, transition, ConsolidationState.AWAITING_SUMMARY)
        logger.info(
            f"Consolidating {snapshot_count} {source.value} memories for {label} "
            f"({transition.value})"
        )

        coro = run_retryable(
            task_name=f"{transition.value} for {label}",
            action=lambda: self._summarize(snapshot, label, call_tick, transition),
            on_success=lambda records: self._apply_success(
                entity_id, transition, snapshot_count, records, token
            ),
            on_failure=lambda cancelled: self._roll_back(entity_id, transition, cancelled, token),
            token=token,
            dispatcher=self._dispatcher,
            is_alive=self._is_alive,
            max_attempts=self._task_config.max_attempts,
            retry_delay=self._task_config.retry_delay_seconds,
            notices=self._notices,
        )
        return self._schedule(coro)

    async def _summarize(
        self,
        snapshot: list[MemoryRecord],
        label: str,
        call_tick: int,
        transition: TierTransition,
    ) -> list[MemoryRecord]:
        merged = await self._summarizer.summarize(snapshot, label, call_tick, transition)
        return self.build_records(merged or [], snapshot, call_tick)

    @staticmethod
    def build_records(
        merged: list[MergedMemory],
        snapshot: list[MemoryRecord],
        call_tick: int,
    ) -> list[MemoryRecord]:
        """Turn summarizer output into new records with averaged metadata."""
        records: list[MemoryRecord] = []
        for item in merged:
            if item is None or not item.summary.strip():
                continue
            valid_ids = [i for i in item.source_ids if 1 <= i <= len(snapshot)]
            created_tick, access_count = merged_metadata(valid_ids, snapshot, call_tick)
            records.append(
                MemoryRecord(
                    summary=item.summary.strip(),
                    keywords=item.keywords,
                    importance=item.importance,
                    created_tick=created_tick,
                    access_count=access_count,
                    source_ids=valid_ids,
                )
            )
        return records

    def _apply_success(
        self,
        entity_id: int,
        transition: TierTransition,
        snapshot_count: int,
        records: list[MemoryRecord],
        token: CancellationToken,
    ) -> None:
        if token.cancelled:
            logger.debug(
                f"Discarding consolidation {transition.value} result for entity {entity_id}: "
                f"session was reset"
            )
            return

        entity = self._store.get(entity_id)
        if entity is None:
            self._set_state(entity_id, transition, ConsolidationState.IDLE)
            return

        if not records:
            self._roll_back(entity_id, transition, cancelled=False, token=token)
            return

        self._set_state(entity_id, transition, ConsolidationState.APPLYING_SUCCESS)
        source, target = transition.source, transition.target
        pruned: list[MemoryRecord] = []
        with entity.lock:
            entity.tier(target).extend(records)
            if target is MemoryTier.MID:
                entity.unconsolidated_mid += len(records)
            entity.set_counter(source, entity.counter(source) - snapshot_count)
            entity.set_consolidating(transition, False)
            self._store.trim(entity_id, source)
            if target is MemoryTier.LONG:
                pruned = prune_long_tier(
                    entity.long, self._config.long_cap, self._clock(), self._config
                )

        for record in pruned:
            self._vectors.remove(record.id)
        for record in records:
            self._queue.enqueue_memory(record.id, record.summary)

        label = self._labels.get(entity_id, str(entity_id))
        logger.info(
            f"Consolidation {transition.value} applied for {label}: "
            f"{len(records)} new {target.value} memories, {len(pruned)} pruned"
        )
        self._notices.notify_once(
            f"consolidated:{entity_id}:{target.value}",
            f"New {target.value}-term memories formed for {label}",
            level="info",
        )
        self._set_state(entity_id, transition, ConsolidationState.IDLE)

        if transition is TierTransition.RECENT_TO_MID:
            self.maybe_trigger(entity_id, TierTransition.MID_TO_LONG)

    def _roll_back(
        self,
        entity_id: int,
        transition: TierTransition,
        cancelled: bool,
        token: CancellationToken,
    ) -> None:
        """Release the in-progress flag so the backlog can trigger again.

        A task from a reset session leaves flags and states alone: the reset
        already cleared them and a newer consolidation may own them now.
        """
        if token.cancelled:
            logger.debug(f"Consolidation {transition.value} for entity {entity_id} cancelled")
            return

        self._set_state(entity_id, transition, ConsolidationState.ROLLING_BACK)
        entity = self._store.get(entity_id)
        if entity is not None:
            with entity.lock:
                entity.set_consolidating(transition, False)
        if cancelled:
            logger.debug(f"Consolidation {transition.value} for entity {entity_id} interrupted")
        else:
            logger.warning(
                f"Consolidation {transition.value} for entity {entity_id} produced nothing; "
                f"backlog kept for the next trigger"
            )
        self._set_state(entity_id, transition, ConsolidationState.IDLE)
