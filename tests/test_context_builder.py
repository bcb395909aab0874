"""Tests for context facet collection and vector resolution."""

from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from dialogue_memory.context_builder import ContextVectorBuilder, mood_to_text, temperature_to_text
from dialogue_memory.exceptions import RemoteEmbeddingError
from dialogue_memory.models import VectorKind
from dialogue_memory.storage.semantic_cache import definition_key, text_key

from conftest import unit


@pytest.mark.parametrize(
    "mood, expected",
    [
        (0.05, "on the verge of breaking down, desperate"),
        (0.2, "miserable and stressed"),
        (0.4, "uneasy, a little down"),
        (0.6, "calm and content"),
        (0.8, "cheerful and upbeat"),
        (0.95, "elated, full of joy"),
    ],
)
def test_mood_buckets(mood, expected):
    assert mood_to_text(mood) == expected


@pytest.mark.parametrize(
    "celsius, expected",
    [
        (-30, "extreme cold, danger of frostbite"),
        (-5, "bitterly cold"),
        (10, "cool, a bit chilly"),
        (20, "comfortable and pleasant"),
        (30, "warm, a bit hot"),
        (40, "sweltering heat"),
        (50, "deadly heat"),
    ],
)
def test_temperature_buckets(celsius, expected):
    assert temperature_to_text(celsius) == expected


class TestCollect:
    def test_facets(self):
        builder = ContextVectorBuilder()
        builder.collect_definition("Injured", "badly hurt, bleeding")
        builder.collect_text("  sitting by the fire  ")
        builder.collect_text("   ")
        builder.collect_mood(0.6)

        facets = builder.facets
        assert [f.kind for f in facets] == [
            VectorKind.TAG_DEFINITION,
            VectorKind.TAG_TEXT,
            VectorKind.TAG_TEXT,
        ]
        assert facets[0].key == definition_key("Injured")
        assert facets[1].text == "sitting by the fire"
        assert facets[2].key == text_key("calm and content")

    def test_names_case_insensitive(self):
        builder = ContextVectorBuilder()
        builder.add_names(["Alice", "alice", " Bob ", ""])
        assert builder.names == {"Alice", "Bob"}


def make_queue(result=None, error=None):
    queue = MagicMock()
    queue.compute_now = AsyncMock(return_value=result, side_effect=error)
    return queue


class TestResolve:
    async def test_cache_hits_skip_computation(self, semantic_cache):
        semantic_cache.add(VectorKind.TAG_TEXT, text_key("cold"), unit(1.0, 0.0))
        builder = ContextVectorBuilder()
        builder.collect_text("cold")
        queue = make_queue(result=[])

        vectors = await builder.resolve(semantic_cache, queue)

        assert len(vectors) == 1
        queue.compute_now.assert_not_called()

    async def test_misses_computed_and_cached(self, semantic_cache):
        builder = ContextVectorBuilder()
        builder.collect_text("cold")
        builder.collect_definition("Injured", "badly hurt")
        queue = make_queue(result=[unit(1.0, 0.0), unit(0.0, 1.0)])

        vectors = await builder.resolve(semantic_cache, queue)

        assert len(vectors) == 2
        queue.compute_now.assert_awaited_once_with(["cold", "badly hurt"], is_query=True)
        assert semantic_cache.has(VectorKind.TAG_TEXT, text_key("cold"))
        assert np.allclose(
            semantic_cache.get(VectorKind.TAG_DEFINITION, definition_key("Injured")), [0.0, 1.0]
        )

    async def test_zero_vectors_not_cached(self, semantic_cache):
        builder = ContextVectorBuilder()
        builder.collect_text("cold")
        queue = make_queue(result=[np.zeros(2, dtype=np.float32)])

        assert await builder.resolve(semantic_cache, queue) == []
        assert semantic_cache.text_count == 0

    async def test_failure_enqueues_misses(self, semantic_cache):
        semantic_cache.add(VectorKind.TAG_TEXT, text_key("warm"), unit(1.0, 0.0))
        builder = ContextVectorBuilder()
        builder.collect_text("warm")
        builder.collect_text("cold")
        queue = make_queue(error=RemoteEmbeddingError("quota"))

        vectors = await builder.resolve(semantic_cache, queue)

        assert len(vectors) == 1
        queue.enqueue_context.assert_called_once_with(VectorKind.TAG_TEXT, text_key("cold"), "cold")
