"""Collects the facets of a conversational context and resolves their vectors.

A context is a bag of independent facets (mood, weather, injuries,
relations, activity); each facet gets its own vector so retrieval can
match memories against whichever facet fits best. Vectors are looked up
in the SemanticCache first and only misses are embedded.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from loguru import logger

from .models import VectorKind
from .storage.semantic_cache import SemanticCache, definition_key, text_key
from .vector_queue import VectorComputeQueue

MOOD_DESCRIPTIONS = (
    "on the verge of breaking down, desperate",
    "miserable and stressed",
    "uneasy, a little down",
    "calm and content",
    "cheerful and upbeat",
    "elated, full of joy",
)


def mood_to_text(mood_fraction: float) -> str:
    if mood_fraction < 0.1:
        return MOOD_DESCRIPTIONS[0]
    if mood_fraction < 0.3:
        return MOOD_DESCRIPTIONS[1]
    if mood_fraction < 0.5:
        return MOOD_DESCRIPTIONS[2]
    if mood_fraction < 0.7:
        return MOOD_DESCRIPTIONS[3]
    if mood_fraction < 0.9:
        return MOOD_DESCRIPTIONS[4]
    return MOOD_DESCRIPTIONS[5]


def temperature_to_text(celsius: float) -> str:
    if celsius < -20:
        return "extreme cold, danger of frostbite"
    if celsius < 0:
        return "bitterly cold"
    if celsius < 15:
        return "cool, a bit chilly"
    if celsius < 25:
        return "comfortable and pleasant"
    if celsius < 35:
        return "warm, a bit hot"
    if celsius < 45:
        return "sweltering heat"
    return "deadly heat"


@dataclass(frozen=True)
class ContextFacet:
    kind: VectorKind
    key: int
    text: str


class ContextVectorBuilder:
    """Accumulates context facets and participant names for one retrieval."""

    def __init__(self):
        self._facets: list[ContextFacet] = []
        self._names: dict[str, str] = {}

    def collect_definition(self, name: str, text: str) -> None:
        """Add a facet with a stable identity (a status, a weather type)."""
        if name and text and text.strip():
            self._facets.append(
                ContextFacet(VectorKind.TAG_DEFINITION, definition_key(name), text.strip())
            )

    def collect_text(self, text: str) -> None:
        if text and text.strip():
            text = text.strip()
            self._facets.append(ContextFacet(VectorKind.TAG_TEXT, text_key(text), text))

    def collect_mood(self, mood_fraction: float) -> None:
        self.collect_text(mood_to_text(mood_fraction))

    def collect_temperature(self, celsius: float) -> None:
        self.collect_text(temperature_to_text(celsius))

    def add_name(self, name: str) -> None:
        if name and name.strip():
            self._names.setdefault(name.strip().casefold(), name.strip())

    def add_names(self, names) -> None:
        for name in names or []:
            self.add_name(name)

    @property
    def facets(self) -> list[ContextFacet]:
        return list(self._facets)

    @property
    def names(self) -> set[str]:
        """Collected names; duplicates differing only in case are merged."""
        return set(self._names.values())

    async def resolve(
        self,
        cache: SemanticCache,
        queue: VectorComputeQueue,
        is_query: bool = True,
    ) -> list[np.ndarray]:
        """Vectors for every collected facet that could be resolved.

        Cached vectors are used as-is. Misses are embedded in one batch
        through the queue's active backend and cached; if that fails they
        are queued for later and left out of this pool.
        """
        resolved: list[np.ndarray | None] = [None] * len(self._facets)
        misses: list[int] = []
        for index, facet in enumerate(self._facets):
            cached = cache.get(facet.kind, facet.key)
            if cached is not None:
                resolved[index] = cached
            else:
                misses.append(index)

        if misses:
            texts = [self._facets[i].text for i in misses]
            try:
                computed = await queue.compute_now(texts, is_query=is_query)
            except Exception as e:
                logger.warning(f"Context vector computation failed, queued instead: {e}")
                for i in misses:
                    facet = self._facets[i]
                    queue.enqueue_context(facet.kind, facet.key, facet.text)
                computed = []

            for i, vector in zip(misses, computed):
                if vector is None or not np.any(vector):
                    continue
                facet = self._facets[i]
                resolved[i] = vector
                cache.add(facet.kind, facet.key, vector)

        return [v for v in resolved if v is not None]
