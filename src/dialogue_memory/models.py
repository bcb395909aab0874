"""Dialogue memory core data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 5


def clamp_importance(value: int) -> int:
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, int(value)))


def dedupe_keywords(keywords: list[str] | None) -> list[str]:
    """Drop blanks and duplicates while keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for kw in keywords or []:
        if not isinstance(kw, str):
            continue
        kw = kw.strip()
        if kw and kw not in seen:
            seen.add(kw)
            result.append(kw)
    return result


class MemoryTier(str, Enum):
    RECENT = "recent"
    MID = "mid"
    LONG = "long"


class TierTransition(str, Enum):
    RECENT_TO_MID = "recent_to_mid"
    MID_TO_LONG = "mid_to_long"

    @property
    def source(self) -> MemoryTier:
        return MemoryTier.RECENT if self is TierTransition.RECENT_TO_MID else MemoryTier.MID

    @property
    def target(self) -> MemoryTier:
        return MemoryTier.MID if self is TierTransition.RECENT_TO_MID else MemoryTier.LONG


class MemoryRecord(BaseModel):
    """A single memory held in one of an entity's tiers.

    The embedding vector is not part of the record; it lives in the
    VectorStore keyed by ``id``. ``source_ids`` only exists while a
    consolidation result is being applied and is never persisted.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    summary: str = ""
    keywords: list[str] = Field(default_factory=list)
    importance: int = 3
    access_count: int = 0
    created_tick: int = 0
    source_ids: list[int] = Field(default_factory=list, exclude=True)

    @field_validator("importance", mode="before")
    @classmethod
    def _clamp_importance(cls, value: int) -> int:
        try:
            return clamp_importance(value)
        except (TypeError, ValueError):
            return 3

    @field_validator("keywords", mode="before")
    @classmethod
    def _dedupe_keywords(cls, value: list[str] | None) -> list[str]:
        return dedupe_keywords(value)

    @field_validator("access_count", mode="after")
    @classmethod
    def _non_negative_access(cls, value: int) -> int:
        return max(0, value)


class MergedMemory(BaseModel):
    """One consolidated memory produced by a summarizer.

    ``source_ids`` are 1-based indices into the snapshot handed to the
    summarizer; indices outside ``[1, len(snapshot)]`` are ignored.
    """

    summary: str
    keywords: list[str] = Field(default_factory=list)
    importance: int = 3
    source_ids: list[int] = Field(default_factory=list)

    @field_validator("importance", mode="before")
    @classmethod
    def _clamp_importance(cls, value: int) -> int:
        try:
            return clamp_importance(value)
        except (TypeError, ValueError):
            return 3

    @field_validator("keywords", mode="before")
    @classmethod
    def _dedupe_keywords(cls, value: list[str] | None) -> list[str]:
        return dedupe_keywords(value)


class VectorKind(str, Enum):
    MEMORY = "memory"
    TAG_DEFINITION = "tag_definition"
    TAG_TEXT = "tag_text"


@dataclass
class PendingVectorRequest:
    """Queued embedding work. Never persisted."""

    kind: VectorKind
    target_key: UUID | int
    text: str
    copy_targets: list[UUID] = field(default_factory=list)

    @property
    def dedup_key(self) -> tuple[VectorKind, UUID | int]:
        return (self.kind, self.target_key)
