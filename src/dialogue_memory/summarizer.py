"""LLM-backed summarizer for tier consolidation.

Snapshot records are listed with their 1-based position as the id; the
model cites those ids back in ``source_ids`` so the pipeline can average
the creation time and access count of the sources.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from .exceptions import SummarizerError
from .formatter import format_snapshot_lines
from .interfaces import ChatModel
from .json_repair import parse_json
from .models import MemoryRecord, MergedMemory, TierTransition

SUMMARIZER_SYSTEM_PROMPT = """\
You are a memory consolidation assistant for a character in an ongoing story. \
You merge fragments of the character's memories into fewer, richer entries.

Return ONLY a JSON object of the form:
{"memories": [{"summary": "...", "keywords": ["..."], "importance": 3, "source_ids": [1, 2]}]}
No markdown, no explanation.
"""

IMPORTANCE_SCALE = """\
   1 = trivial routine (small talk, complaints)
   2 = ordinary interaction (normal talk, minor arguments, daily events)
   3 = worth remembering (clear conflict, promise, important discovery)
   4 = major event (injury, battle, big relationship change)
   5 = unforgettable (life and death, betrayal, turning point)"""

RECENT_TO_MID_PROMPT = """\
Merge the following short-term memory fragments of {label} into 6-8 event memories.

Fragments:
{fragments}

1. "summary": merge related events into one entry and link them causally; \
fold repeated actions into a pattern but keep unusual events separate; keep \
unique details (nicknames, jokes, promises, strong words) and the names of \
everyone involved; never use relative time ("yesterday"); at most 120 characters.
2. "keywords": up to 4 of the most distinctive concrete concepts.
3. "importance" (1-5), based on the source fragments:
{scale}
   Only truly significant events get 3 or more.
4. "source_ids" (required): the [ID] numbers of every fragment merged into the entry.
"""

MID_TO_LONG_PROMPT = """\
Merge the following medium-term memories of {label} into 6-8 biographical long-term memories.

Memories:
{fragments}

1. "summary": third-person biographical summary including the character's state \
of mind; keep names of everyone involved; capture the overall tone of the period \
and key lasting issues with concrete events as evidence; fold trivial details \
into higher-level descriptions; at most 180 characters.
2. "keywords": up to 5 of the most defining concepts from the sources, or none.
3. "importance" (1-5), may be raised for highly significant sources:
{scale}
4. "source_ids" (required): the [ID] numbers of every memory the entry covers.
"""


def _coerce_source_ids(raw: Any) -> list[int]:
    ids: list[int] = []
    for value in raw if isinstance(raw, list) else []:
        try:
            ids.append(int(str(value).strip()))
        except (TypeError, ValueError):
            continue
    return ids


def parse_merged_memories(raw: str) -> list[MergedMemory]:
    """Parse a model response into merged memories, tolerating truncation.

    Accepts ``{"memories": [...]}``, a bare array, or a single object.
    """
    data = parse_json(raw)
    if data is None and '"memories"' in raw:
        tail = raw[raw.index('"memories"'):]
        bracket = tail.find("[")
        if bracket >= 0:
            data = parse_json(tail[bracket:], expect_list=True)

    if isinstance(data, dict):
        items = data.get("memories", [data] if "summary" in data else [])
    elif isinstance(data, list):
        items = data
    else:
        return []

    merged: list[MergedMemory] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        summary = str(item.get("summary") or "").strip()
        if not summary:
            continue
        keywords = item.get("keywords")
        merged.append(
            MergedMemory(
                summary=summary,
                keywords=keywords if isinstance(keywords, list) else [],
                importance=item.get("importance", 3),
                source_ids=_coerce_source_ids(item.get("source_ids")),
            )
        )
    return merged


class LLMSummarizer:
    """Summarizer that prompts a streaming chat model."""

    def __init__(self, llm: ChatModel, ticks_per_day: int = 60000):
        """Initialize the summarizer.

        Args:
            llm: Chat model exposing ``chat_completion(messages, system)``
            ticks_per_day: Tick length of one day, for the [Day: n] column
        """
        self._llm = llm
        self._ticks_per_day = ticks_per_day

    def build_prompt(
        self,
        snapshot: list[MemoryRecord],
        entity_label: str,
        transition: TierTransition,
    ) -> str:
        template = (
            RECENT_TO_MID_PROMPT
            if transition is TierTransition.RECENT_TO_MID
            else MID_TO_LONG_PROMPT
        )
        return template.format(
            label=entity_label,
            fragments=format_snapshot_lines(snapshot, self._ticks_per_day),
            scale=IMPORTANCE_SCALE,
        )

    async def summarize(
        self,
        snapshot: list[MemoryRecord],
        entity_label: str,
        fallback_tick: int,
        transition: TierTransition,
    ) -> list[MergedMemory]:
        if not snapshot:
            return []

        messages = [
            {
                "role": "user",
                "content": self.build_prompt(snapshot, entity_label, transition),
            }
        ]
        raw = await self._call_llm(messages)
        if not raw:
            logger.debug("Summarizer LLM returned empty response")
            return []

        merged = parse_merged_memories(raw)
        logger.info(
            f"Summarizer produced {len(merged)} memories from {len(snapshot)} "
            f"({transition.value}, {entity_label})"
        )
        return merged

    async def _call_llm(self, messages: list[dict]) -> str:
        response_parts: list[str] = []
        try:
            stream = self._llm.chat_completion(
                messages=messages,
                system=SUMMARIZER_SYSTEM_PROMPT,
            )
            async for chunk in stream:
                if isinstance(chunk, str):
                    response_parts.append(chunk)
                elif isinstance(chunk, dict) and chunk.get("type") == "text_delta":
                    response_parts.append(chunk.get("text", ""))
        except Exception as e:
            logger.error(f"Summarizer LLM call failed: {e}")
            raise SummarizerError(f"LLM call failed: {e}") from e

        return "".join(response_parts).strip()
