"""
Collaborator interfaces consumed by the memory system.

The host application supplies these; the memory system never imports a
concrete LLM client, UI, or game/session object.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from .models import MemoryRecord, MergedMemory, TierTransition


@runtime_checkable
class Summarizer(Protocol):
    """Merges a tier snapshot into fewer, more abstract memories."""

    async def summarize(
        self,
        snapshot: list[MemoryRecord],
        entity_label: str,
        fallback_tick: int,
        transition: TierTransition,
    ) -> list[MergedMemory]:
        """
        Summarize a snapshot.

        Args:
            snapshot: Records copied from the source tier, oldest first
            entity_label: Display name of the owning entity, for prompts
            fallback_tick: Current tick, used when no source ids are cited
            transition: Which tier transition is being consolidated

        Returns:
            Merged memories; an empty list means nothing usable
        """
        ...


@runtime_checkable
class ChatModel(Protocol):
    """Streaming chat completion interface of the host's LLM client."""

    def chat_completion(
        self,
        messages: list[dict],
        system: str | None = None,
    ) -> AsyncIterator[str | dict]:
        """Stream response chunks (text, or ``{"type": "text_delta", "text": ...}``)."""
        ...


@runtime_checkable
class Notifier(Protocol):
    """User-visible notice sink (toast, chat line, status bar)."""

    def notify(self, message: str, level: str = "info") -> None:
        ...
