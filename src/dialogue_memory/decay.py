"""Time decay shared by long-tier pruning and retrieval scoring.

Ages are measured in host ticks and converted to days. Nothing decays
during the grace period; afterwards the multiplier falls off as
``exp(-days_past_grace / half_life_days)``, and important records are
held above a floor.
"""

from __future__ import annotations

import math

from .config import DecayFloors


def elapsed_days(created_tick: int, now_tick: int, ticks_per_day: int) -> float:
    return max(0.0, (now_tick - created_tick) / float(ticks_per_day))


def raw_decay(
    created_tick: int,
    now_tick: int,
    grace_days: float,
    half_life_days: float,
    ticks_per_day: int,
) -> float:
    """Decay multiplier without the importance floor; 1.0 inside the grace period."""
    effective = max(0.0, elapsed_days(created_tick, now_tick, ticks_per_day) - grace_days)
    return math.exp(-effective / half_life_days)


def floored_decay(raw: float, importance: int, floors: DecayFloors) -> float:
    return max(raw, floors.floor_for(importance))


def within_grace(created_tick: int, now_tick: int, grace_days: float, ticks_per_day: int) -> bool:
    return now_tick - created_tick < grace_days * ticks_per_day
