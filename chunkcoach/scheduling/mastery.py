from __future__ import annotations

"""Mastery ladder and spaced-repetition rules.

Six levels from New to Mastered. Each level fixes the practice tempo (as a
fraction of the song tempo) and how many days pass before the chunk is due
again. Ratings move a chunk one rung at a time: 4-5 promote, 1-2 demote, 3
holds.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from ..app import explain
from ..util.rounding import round_half_up


@dataclass(frozen=True)
class MasteryLevel:
    name: str
    tempo_pct: float
    interval_days: int


MASTERY_LEVELS: List[MasteryLevel] = [
    MasteryLevel("New", 0.40, 0),
    MasteryLevel("Learning", 0.55, 1),
    MasteryLevel("Developing", 0.70, 3),
    MasteryLevel("Proficient", 0.85, 7),
    MasteryLevel("Solid", 1.00, 14),
    MasteryLevel("Mastered", 1.00, 30),
]

MAX_LEVEL = len(MASTERY_LEVELS) - 1


@dataclass(frozen=True)
class TempoTier:
    label: str
    pct: float
    reps: int


# Five tiers for six levels; Mastered reuses Target.
TEMPO_TIERS: List[TempoTier] = [
    TempoTier("Crawl", 0.40, 5),
    TempoTier("Slow", 0.55, 4),
    TempoTier("Medium", 0.70, 3),
    TempoTier("Push", 0.85, 3),
    TempoTier("Target", 1.00, 2),
]

RATING_NAMES = {1: "Struggled", 3: "Okay", 5: "Clean"}


def level_info(level: int) -> MasteryLevel:
    if not isinstance(level, int) or isinstance(level, bool) or not 0 <= level <= MAX_LEVEL:
        raise ValueError(f"mastery level must be 0..{MAX_LEVEL}, got {level!r}")
    return MASTERY_LEVELS[level]


def tier_for(level: int) -> TempoTier:
    level_info(level)
    return TEMPO_TIERS[min(level, len(TEMPO_TIERS) - 1)]


def validate_rating(rating: Any) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValueError(f"rating must be an integer 1-5, got {rating!r}")
    return rating


def next_level(level: int, rating: int) -> int:
    validate_rating(rating)
    if rating >= 4:
        return min(MAX_LEVEL, level + 1)
    if rating <= 2:
        return max(0, level - 1)
    return level


def practice_bpm(base_tempo: float, level: int) -> int:
    return round_half_up(base_tempo * level_info(level).tempo_pct)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class HistoryEntry:
    date: datetime
    rating: int
    tempo: int


@dataclass(frozen=True)
class ChunkMasteryState:
    mastery_level: int = 0
    last_practiced: Optional[datetime] = None
    next_review: Optional[datetime] = None
    history: tuple = field(default_factory=tuple)

    def is_due(self, now: Optional[datetime] = None) -> bool:
        if self.next_review is None:
            return False
        return self.next_review <= (now or utcnow())

    @property
    def level(self) -> MasteryLevel:
        return level_info(self.mastery_level)


def apply_rating(state: ChunkMasteryState, rating: int, base_tempo: float,
                 now: Optional[datetime] = None) -> ChunkMasteryState:
    """Return the state after one rating.

    The history entry records the tempo practiced at, i.e. the tempo of the
    level held before the rating moved it.
    """
    validate_rating(rating)
    now = now or utcnow()
    old = state.mastery_level
    new = next_level(old, rating)
    entry = HistoryEntry(date=now, rating=rating, tempo=practice_bpm(base_tempo, old))
    explain.trace("rating_applied", {"rating": rating, "from": old, "to": new})
    return replace(
        state,
        mastery_level=new,
        last_practiced=now,
        next_review=now + timedelta(days=MASTERY_LEVELS[new].interval_days),
        history=state.history + (entry,),
    )


def review_status(state: Optional[ChunkMasteryState], now: Optional[datetime] = None) -> str:
    """Short label for progress tables: "Now", "Due" or "<n>d"."""
    if state is None or state.next_review is None:
        return "Now"
    now = now or utcnow()
    if state.next_review <= now:
        return "Due"
    days = -(-(state.next_review - now).total_seconds() // 86400)
    return f"{int(days)}d"
