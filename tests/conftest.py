"""
Dialogue memory test fixtures
Shared fakes for the summarizer, clock, scheduler and notifier
"""
from __future__ import annotations

from collections.abc import Coroutine
from typing import Any

import numpy as np
import pytest

from dialogue_memory.config import ConsolidationConfig, TaskConfig, VectorQueueConfig
from dialogue_memory.embedding.engine import EmbeddingEngine
from dialogue_memory.embedding.remote import RemoteEmbeddingClient
from dialogue_memory.models import MemoryRecord, MergedMemory
from dialogue_memory.storage.semantic_cache import SemanticCache
from dialogue_memory.storage.vector_store import VectorStore
from dialogue_memory.tasks import CancellationSource, MainThreadQueue, NoticeBoard
from dialogue_memory.tiers import TieredMemoryStore
from dialogue_memory.vector_queue import VectorComputeQueue


def unit(*values: float) -> np.ndarray:
    """Unit-length float32 vector from the given components."""
    vector = np.asarray(values, dtype=np.float32)
    return vector / np.linalg.norm(vector)


def make_record(summary: str = "memory", **kwargs) -> MemoryRecord:
    return MemoryRecord(summary=summary, **kwargs)


class FakeClock:
    """Manually advanced host tick counter."""

    def __init__(self, tick: int = 1000):
        self.tick = tick

    def __call__(self) -> int:
        return self.tick

    def advance(self, ticks: int) -> None:
        self.tick += ticks


class FakeSummarizer:
    """Returns queued results in order; an exception instance is raised instead."""

    def __init__(self, *results: Any):
        self.results = list(results)
        self.calls: list[dict] = []

    async def summarize(self, snapshot, entity_label, fallback_tick, transition):
        self.calls.append(
            {
                "snapshot": list(snapshot),
                "label": entity_label,
                "tick": fallback_tick,
                "transition": transition,
            }
        )
        result = self.results.pop(0) if self.results else []
        if isinstance(result, Exception):
            raise result
        return result


class CollectingScheduler:
    """Keeps launched coroutines so a test can await them explicitly."""

    def __init__(self):
        self.pending: list[Coroutine] = []

    def __call__(self, coro: Coroutine) -> Coroutine:
        self.pending.append(coro)
        return coro

    async def run_all(self) -> list[Any]:
        results = []
        while self.pending:
            results.append(await self.pending.pop(0))
        return results

    def close_all(self) -> None:
        for coro in self.pending:
            coro.close()
        self.pending.clear()


class RecordingNotifier:
    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def notify(self, message: str, level: str = "info") -> None:
        self.messages.append((message, level))


def merged(summary: str, source_ids: list[int], importance: int = 3, keywords=None) -> MergedMemory:
    return MergedMemory(
        summary=summary,
        keywords=keywords or [],
        importance=importance,
        source_ids=source_ids,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def notices(notifier):
    return NoticeBoard(notifier)


@pytest.fixture
def vector_store():
    return VectorStore()


@pytest.fixture
def semantic_cache():
    return SemanticCache()


@pytest.fixture
def vector_queue(vector_store, semantic_cache, notices):
    """Queue with no processor running; tests inspect what gets enqueued."""
    return VectorComputeQueue(
        vector_store,
        semantic_cache,
        EmbeddingEngine(),
        RemoteEmbeddingClient(),
        config=VectorQueueConfig(
            batch_window_seconds=0.05,
            retry_interval_seconds=0.01,
            cooldown_seconds=60,
            local_poll_seconds=0.01,
            remote_poll_seconds=0.01,
        ),
        notices=notices,
    )


@pytest.fixture
def small_config():
    """Thresholds small enough to cross in a few appends."""
    return ConsolidationConfig(recent_threshold=3, mid_threshold=4, long_cap=5, trim_buffer=1)


@pytest.fixture
def tier_store(vector_store, small_config, vector_queue):
    return TieredMemoryStore(vector_store, config=small_config, vector_queue=vector_queue)


@pytest.fixture
def dispatcher():
    return MainThreadQueue()


@pytest.fixture
def cancellation():
    return CancellationSource()


@pytest.fixture
def fast_tasks():
    return TaskConfig(max_attempts=2, retry_delay_seconds=0.0)


@pytest.fixture
def scheduler():
    s = CollectingScheduler()
    yield s
    s.close_all()
