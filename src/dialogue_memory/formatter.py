"""Text rendering of memories for prompts."""

from __future__ import annotations

from .models import MemoryRecord

TICKS_PER_HOUR = 2500
HOURS_PER_DAY = 24
DAYS_PER_SEASON = 15
SEASONS_PER_YEAR = 4


def time_ago(created_tick: int, now_tick: int) -> str:
    """Human-readable age of a tick: hours, days, seasons or years."""
    if created_tick <= 0:
        return "some time ago"

    hours = max(0, now_tick - created_tick) / TICKS_PER_HOUR
    if hours < 1:
        return "just now"
    if hours < HOURS_PER_DAY:
        return f"{int(hours)} hours ago"

    days = hours / HOURS_PER_DAY
    if days < DAYS_PER_SEASON:
        return f"{int(days)} days ago"

    seasons = days / DAYS_PER_SEASON
    if seasons < SEASONS_PER_YEAR:
        return f"{int(seasons)} seasons ago"

    return f"{int(seasons / SEASONS_PER_YEAR)} years ago"


def format_recalled_memories(records: list[MemoryRecord], now_tick: int) -> str:
    if not records:
        return ""
    lines = ["Recalled Memories:"]
    for record in records:
        lines.append(f"- [{time_ago(record.created_tick, now_tick)}] {record.summary}")
    return "\n".join(lines) + "\n"


def format_knowledge(records: list[MemoryRecord]) -> str:
    if not records:
        return ""
    return "\n".join(f"- {record.summary}" for record in records) + "\n"


def format_snapshot_lines(records: list[MemoryRecord], ticks_per_day: int = 60000) -> str:
    """Numbered lines for a summarizer prompt.

    Ids are the 1-based snapshot positions the summarizer cites back in
    ``source_ids``; days are counted from the oldest record.
    """
    if not records:
        return ""
    base_tick = min(r.created_tick for r in records)
    lines = []
    for index, record in enumerate(records, start=1):
        day = max(0, (record.created_tick - base_tick) // ticks_per_day)
        tags = ",".join(record.keywords)
        lines.append(
            f"[ID: {index}] [Day: {day}] (Imp:{record.importance}) [{tags}] {record.summary}"
        )
    return "\n".join(lines)
