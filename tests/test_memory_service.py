"""Tests for the MemoryService facade, driven from the host thread."""

import json
import time

import httpx
import pytest

from dialogue_memory.config import MemoryConfig
from dialogue_memory.context_builder import ContextVectorBuilder
from dialogue_memory.memory_service import MemoryService
from dialogue_memory.models import MemoryTier, VectorKind
from dialogue_memory.storage.semantic_cache import text_key

from conftest import FakeSummarizer, make_record, merged, unit


def make_config(tmp_path, **vector_queue):
    return MemoryConfig.model_validate(
        {
            "storage": {
                "vector_store_path": str(tmp_path / "vectors.bin"),
                "semantic_cache_path": str(tmp_path / "cache.bin"),
            },
            "embedding": {"model_path": str(tmp_path / "missing.onnx")},
            "remote_embedding": {"api_key": "sk-test", "endpoint": "https://embed.test/v1/embeddings"},
            "vector_queue": {
                "batch_window_seconds": 0.05,
                "retry_interval_seconds": 0.01,
                "local_poll_seconds": 0.01,
                "remote_poll_seconds": 0.01,
                **vector_queue,
            },
            "tasks": {"max_attempts": 2, "retry_delay_seconds": 0},
            "consolidation": {"recent_threshold": 3, "mid_threshold": 50, "trim_buffer": 1},
        }
    )


def embedding_transport():
    def handler(request: httpx.Request):
        texts = json.loads(request.content)["input"]
        data = [{"index": i, "embedding": [1.0, float(i)]} for i in range(len(texts))]
        return httpx.Response(200, json={"data": data})

    return httpx.MockTransport(handler)


def pump(service, predicate, timeout=5.0):
    """Simulate host ticks until ``predicate`` holds."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        service.update()
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not reached in time")


@pytest.fixture
def summarizer():
    return FakeSummarizer()


@pytest.fixture
def service(tmp_path, summarizer, clock, notifier):
    svc = MemoryService(
        summarizer=summarizer,
        clock=clock,
        config=make_config(tmp_path),
        notifier=notifier,
        transport=embedding_transport(),
    )
    yield svc
    svc.close()


class TestShortMemory:
    def test_appends_and_queues_vector(self, service):
        record = make_record("found a cave")
        assert service.on_short_memory(1, record, "Alice") is True
        assert service.get_tier(1, MemoryTier.RECENT) == [record]
        assert service.vector_queue.is_pending(VectorKind.MEMORY, record.id)

    def test_rejects_missing_input(self, service):
        assert service.on_short_memory(None, make_record("x")) is False
        assert service.on_short_memory(1, None) is False
        assert service.on_short_memory(1, make_record("")) is False

    def test_disabled_service_ignores_memories(self, service):
        service.config.enabled = False
        assert service.on_short_memory(1, make_record("x")) is False
        assert service.store.get(1) is None

    def test_threshold_runs_consolidation_in_background(self, service, summarizer):
        summarizer.results = [[merged("explored the caves together", [1, 2, 3])]]
        for i in range(3):
            service.on_short_memory(1, make_record(f"cave {i}", created_tick=100 * (i + 1)), "Alice")

        pump(service, lambda: service.get_tier(1, MemoryTier.MID))

        (mid,) = service.get_tier(1, MemoryTier.MID)
        assert mid.summary == "explored the caves together"
        assert mid.created_tick == 200
        assert service.store.get(1).unconsolidated_recent == 0
        assert summarizer.calls[0]["label"] == "Alice"

    def test_consolidation_disabled(self, tmp_path, summarizer, clock):
        config = make_config(tmp_path)
        config.consolidation.enabled = False
        svc = MemoryService(summarizer=summarizer, clock=clock, config=config)
        try:
            for i in range(5):
                svc.on_short_memory(1, make_record(f"m{i}"))
            time.sleep(0.05)
            svc.update()
            assert summarizer.calls == []
        finally:
            svc.close()


class TestEditDelete:
    def test_edit_and_delete(self, service):
        record = make_record("old")
        service.on_short_memory(1, record)
        assert service.edit_memory(1, record.id, "new", ["tag"], 4) is True
        assert service.get_tier(1, MemoryTier.RECENT)[0].summary == "new"
        assert service.delete_memory(1, record.id) is True
        assert service.get_tier(1, MemoryTier.RECENT) == []


class TestRetrieval:
    def test_retrieve_and_format(self, service, clock):
        record = make_record("Bob fixed the roof", keywords=["Bob"], created_tick=clock())
        service.on_short_memory(1, record)
        service.vector_store.add(record.id, unit(1.0, 0.0))

        selected = service.retrieve_memories([unit(1.0, 0.0)], 1, names=["bob"], participant_count=2)

        assert selected == [record]
        assert service.recall_prompt(selected) == "Recalled Memories:\n- [just now] Bob fixed the roof\n"

    def test_knowledge(self, service):
        service.knowledge.add("Winter is harsh", ["winter"])
        result = service.retrieve_knowledge("winter is coming")
        assert service.knowledge_prompt(result) == "- Winter is harsh\n"

    def test_context_vectors_through_remote_backend(self, tmp_path, summarizer, clock):
        svc = MemoryService(
            summarizer=summarizer,
            clock=clock,
            config=make_config(tmp_path, use_remote=True),
            transport=embedding_transport(),
        )
        try:
            builder = ContextVectorBuilder()
            builder.collect_text("bitterly cold")
            builder.collect_mood(0.6)

            vectors = svc.build_context_vectors(builder)

            assert len(vectors) == 2
            assert svc.semantic_cache.has(VectorKind.TAG_TEXT, text_key("bitterly cold"))
        finally:
            svc.close()


class TestBackend:
    def test_remote_processor_fills_vectors(self, tmp_path, summarizer, clock):
        svc = MemoryService(
            summarizer=summarizer,
            clock=clock,
            config=make_config(tmp_path, use_remote=True),
            transport=embedding_transport(),
        )
        try:
            svc.start()
            record = make_record("found a cave")
            svc.on_short_memory(1, record)
            pump(svc, lambda: svc.vector_store.contains(record.id))
        finally:
            svc.close()

    def test_switch_keeps_pending_requests(self, service):
        service.start()
        record = make_record("queued while local model is missing")
        service.on_short_memory(1, record)

        service.switch_embedding_mode(use_remote=True)

        assert service.vector_queue.use_remote is True
        assert service.config.vector_queue.use_remote is True
        pump(service, lambda: service.vector_store.contains(record.id))


class TestPersistence:
    def test_save_filters_orphans_and_load_restores(self, tmp_path, service, summarizer, clock):
        kept = make_record("kept")
        service.on_short_memory(1, kept)
        service.vector_store.add(kept.id, unit(1.0, 0.0))
        orphan = make_record("orphan")
        service.vector_store.add(orphan.id, unit(0.0, 1.0))
        service.semantic_cache.add(VectorKind.TAG_TEXT, text_key("cold"), unit(1.0, 1.0))

        assert service.save() == 1

        fresh = MemoryService(summarizer=summarizer, clock=clock, config=make_config(tmp_path))
        try:
            assert fresh.load() == (True, True)
            assert fresh.vector_store.contains(kept.id)
            assert not fresh.vector_store.contains(orphan.id)
            assert fresh.semantic_cache.has(VectorKind.TAG_TEXT, text_key("cold"))
        finally:
            fresh.close()

    def test_load_without_files(self, service):
        assert service.load() == (False, False)

    def test_state_round_trip(self, service):
        service.on_short_memory(5, make_record("a"))
        service.knowledge.add("fact", ["fact"])
        state = service.export_state()

        service.clear()
        service.knowledge.clear()
        service.import_state(state)

        assert [r.summary for r in service.get_tier(5, MemoryTier.RECENT)] == ["a"]
        assert len(service.knowledge) == 1


class TestClear:
    def test_clear_discards_tiers_and_vectors(self, service):
        record = make_record("a")
        service.on_short_memory(1, record)
        service.vector_store.add(record.id, unit(1.0, 0.0))

        service.clear(keep_saved_data=False)

        assert service.store.get(1) is None
        assert len(service.vector_store) == 0
        assert service.vector_queue.pending_count == 0

    def test_clear_keeping_data_resets_in_flight_work(self, service):
        for i in range(3):
            service.store.append(1, make_record(f"m{i}"))
        old_token = service.cancellation.token
        service.store.get(1).recent_consolidating = True
        service.dispatcher.post(lambda: None)

        service.clear(keep_saved_data=True)

        assert old_token.cancelled
        assert not service.cancellation.token.cancelled
        assert len(service.dispatcher) == 0
        assert service.store.get(1).recent_consolidating is False
        assert len(service.get_tier(1, MemoryTier.RECENT)) == 3
