from __future__ import annotations

"""Session assembly.

A session is four phases in fixed order:

- Isolation: the weakest and hardest chunks, each at its level's tempo with
  the level's rep count.
- Context: neighbouring selected chunks joined into one range so the seams
  between them get played.
- Interleaving: a few selected chunks in random order at a fixed tempo.
- Run-through: the whole piece at a fixed tempo, stopped by hand.

`build_session` is pure apart from the injected RNG; `flatten_session` turns
the result into the item list the runner walks through.
"""

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..analysis.models import Chunk, bar_span_label
from ..app import explain
from ..util.rounding import round_half_up
from .mastery import MASTERY_LEVELS, MAX_LEVEL, ChunkMasteryState, level_info, tier_for, utcnow

PHASE_SPLIT: Dict[str, float] = {
    "isolation": 0.40,
    "context": 0.30,
    "interleaving": 0.20,
    "runthrough": 0.10,
}

ISOLATION = "Isolation"
CONTEXT = "Context"
INTERLEAVING = "Interleaving"
RUNTHROUGH = "Run-through"

MIN_CUSTOM_REPS = 1
MAX_CUSTOM_REPS = 20

_FRESH = ChunkMasteryState()


@dataclass(frozen=True)
class SessionOptions:
    min_isolation_chunks: int = 3
    interleave_count: int = 3
    interleave_tempo_pct: float = 0.70
    interleave_reps: int = 2
    runthrough_tempo_pct: float = 0.60
    context_floor_pct: float = 0.60
    context_max_gap: int = 2

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "SessionOptions":
        scfg = cfg.get("session", {})
        return cls(**{k: scfg[k] for k in cls.__dataclass_fields__ if k in scfg})


@dataclass(frozen=True)
class IsolationItem:
    chunk: Chunk
    bpm: int
    tempo_pct: float
    reps: int
    level: int
    level_name: str
    tier_label: str
    is_review: bool = False


@dataclass(frozen=True)
class ContextPair:
    chunks: Tuple[Chunk, Chunk]
    bar_range: Tuple[int, int]
    bpm: int
    tempo_pct: float


@dataclass(frozen=True)
class InterleavingBlock:
    chunks: Tuple[Chunk, ...]
    bpm: int
    tempo_pct: float
    reps: int


@dataclass(frozen=True)
class RunthroughBlock:
    bpm: int
    tempo_pct: float


@dataclass
class Session:
    session_number: int
    date: datetime
    total_minutes: int
    phase_time: Dict[str, int]
    base_tempo: float
    isolation: List[IsolationItem] = field(default_factory=list)
    context: List[ContextPair] = field(default_factory=list)
    interleaving: InterleavingBlock = field(default_factory=lambda: InterleavingBlock((), 0, 0.0, 0))
    runthrough: RunthroughBlock = field(default_factory=lambda: RunthroughBlock(0, 0.0))

    @property
    def selected_chunks(self) -> List[Chunk]:
        return [item.chunk for item in self.isolation]

    def to_json(self) -> Dict[str, Any]:
        return {
            "session_number": self.session_number,
            "date": self.date.isoformat(),
            "total_minutes": self.total_minutes,
            "phase_time": dict(self.phase_time),
            "base_tempo": self.base_tempo,
            "isolation": [
                {
                    "chunk_id": i.chunk.id,
                    "label": i.chunk.display_label,
                    "bpm": i.bpm,
                    "tempo_pct": i.tempo_pct,
                    "reps": i.reps,
                    "level": i.level_name,
                    "tier": i.tier_label,
                    "is_review": i.is_review,
                }
                for i in self.isolation
            ],
            "context": [
                {
                    "chunk_ids": [c.id for c in p.chunks],
                    "bar_range": list(p.bar_range),
                    "bpm": p.bpm,
                    "tempo_pct": p.tempo_pct,
                }
                for p in self.context
            ],
            "interleaving": {
                "chunk_ids": [c.id for c in self.interleaving.chunks],
                "bpm": self.interleaving.bpm,
                "tempo_pct": self.interleaving.tempo_pct,
                "reps": self.interleaving.reps,
            },
            "runthrough": {"bpm": self.runthrough.bpm, "tempo_pct": self.runthrough.tempo_pct},
        }


def phase_minutes(total_minutes: int) -> Dict[str, int]:
    """Minutes per phase, each rounded on its own (the sum may drift from the total)."""
    return {phase: round_half_up(total_minutes * share) for phase, share in PHASE_SPLIT.items()}


def _state(states: Mapping[str, ChunkMasteryState], chunk: Chunk) -> ChunkMasteryState:
    return states.get(chunk.id) or _FRESH


def select_isolation_chunks(chunks: Sequence[Chunk], states: Mapping[str, ChunkMasteryState],
                            isolation_minutes: int, now: datetime,
                            min_chunks: int = 3) -> List[Chunk]:
    """Lowest level first, hardest first within a level; mastered chunks only when due."""
    ordered = sorted(chunks, key=lambda c: (_state(states, c).mastery_level, -c.difficulty))
    eligible = [
        c for c in ordered
        if _state(states, c).mastery_level < MAX_LEVEL or _state(states, c).is_due(now)
    ]
    return eligible[:max(min_chunks, isolation_minutes // 2)]


def build_session(chunks: Sequence[Chunk], states: Mapping[str, ChunkMasteryState],
                  base_tempo: float, minutes: int, *, session_count: int = 0,
                  now: Optional[datetime] = None, rng: Optional[random.Random] = None,
                  options: Optional[SessionOptions] = None) -> Session:
    """Assemble a time-boxed session from chunks and their mastery states.

    Args:
        chunks: Chunks of the current analysis.
        states: Mastery state per chunk id; missing ids count as fresh.
        base_tempo: Song tempo in BPM.
        minutes: Total session length.
        session_count: Sessions already recorded; the new one is numbered after it.
        now: Reference time for due checks.
        rng: Source of the interleaving order.
        options: Phase tunables.

    Returns:
        A Session. Zero chunks give a session with empty phases.
    """
    if minutes <= 0:
        raise ValueError(f"session minutes must be positive, got {minutes!r}")
    if base_tempo <= 0:
        raise ValueError(f"base tempo must be positive, got {base_tempo!r}")
    opts = options or SessionOptions()
    now = now or utcnow()
    rng = rng or random.Random()

    times = phase_minutes(minutes)
    selected = select_isolation_chunks(chunks, states, times["isolation"], now,
                                       opts.min_isolation_chunks)

    isolation = []
    for chunk in selected:
        st = _state(states, chunk)
        info = level_info(st.mastery_level)
        tier = tier_for(st.mastery_level)
        isolation.append(IsolationItem(
            chunk=chunk,
            bpm=round_half_up(base_tempo * info.tempo_pct),
            tempo_pct=info.tempo_pct,
            reps=tier.reps,
            level=st.mastery_level,
            level_name=info.name,
            tier_label=tier.label,
            is_review=st.is_due(now),
        ))

    by_position = sorted(selected, key=lambda c: c.bar_range[0])
    context = []
    for a, b in zip(by_position, by_position[1:]):
        if b.bar_range[0] - a.bar_range[1] > opts.context_max_gap:
            continue
        low = min(_state(states, a).mastery_level, _state(states, b).mastery_level)
        pct = max(opts.context_floor_pct, MASTERY_LEVELS[low].tempo_pct - 0.10)
        context.append(ContextPair(
            chunks=(a, b),
            bar_range=(a.bar_range[0], b.bar_range[1]),
            bpm=round_half_up(base_tempo * pct),
            tempo_pct=pct,
        ))

    shuffled = list(selected)
    rng.shuffle(shuffled)
    interleaving = InterleavingBlock(
        chunks=tuple(shuffled[:min(opts.interleave_count, len(selected))]),
        bpm=round_half_up(base_tempo * opts.interleave_tempo_pct),
        tempo_pct=opts.interleave_tempo_pct,
        reps=opts.interleave_reps,
    )
    runthrough = RunthroughBlock(
        bpm=round_half_up(base_tempo * opts.runthrough_tempo_pct),
        tempo_pct=opts.runthrough_tempo_pct,
    )

    session = Session(
        session_number=session_count + 1,
        date=now,
        total_minutes=minutes,
        phase_time=times,
        base_tempo=base_tempo,
        isolation=isolation,
        context=context,
        interleaving=interleaving,
        runthrough=runthrough,
    )
    explain.trace("session_built", {
        "session": session.session_number,
        "phase_time": times,
        "isolation": [c.id for c in selected],
        "context": len(context),
        "interleaving": [c.id for c in interleaving.chunks],
    })
    return session


@dataclass(frozen=True)
class SessionItem:
    """One playable step of a running session."""

    phase: str
    phase_index: int
    type: str  # "chunk" | "range"
    label: str
    bpm: int
    tempo_pct: float
    reps: int  # 0 = until playback stops
    needs_rating: bool
    bar_start: int
    bar_end: int
    chunk_id: Optional[str] = None
    level: Optional[str] = None
    is_runthrough: bool = False


def clamp_reps(reps: int) -> int:
    return max(MIN_CUSTOM_REPS, min(MAX_CUSTOM_REPS, int(reps)))


def flatten_session(session: Session, total_bars: int,
                    custom_reps: Optional[Mapping[str, int]] = None) -> List[SessionItem]:
    """Flatten the four phases into runner items, in phase order.

    `custom_reps` overrides isolation rep targets per chunk id (clamped to
    1..20). A session without selected chunks yields no items.
    """
    custom_reps = custom_reps or {}
    if not session.isolation:
        return []
    items: List[SessionItem] = []
    for iso in session.isolation:
        c = iso.chunk
        reps = clamp_reps(custom_reps[c.id]) if c.id in custom_reps else iso.reps
        items.append(SessionItem(
            phase=ISOLATION, phase_index=0, type="chunk", label=c.display_label,
            bpm=iso.bpm, tempo_pct=iso.tempo_pct, reps=reps, needs_rating=True,
            bar_start=c.bar_range[0], bar_end=c.bar_range[1],
            chunk_id=c.id, level=iso.level_name,
        ))
    for pair in session.context:
        items.append(SessionItem(
            phase=CONTEXT, phase_index=1, type="range",
            label=" + ".join(c.display_label for c in pair.chunks),
            bpm=pair.bpm, tempo_pct=pair.tempo_pct, reps=0, needs_rating=False,
            bar_start=pair.bar_range[0], bar_end=pair.bar_range[1],
        ))
    block = session.interleaving
    for c in block.chunks:
        items.append(SessionItem(
            phase=INTERLEAVING, phase_index=2, type="chunk", label=c.display_label,
            bpm=block.bpm, tempo_pct=block.tempo_pct, reps=block.reps, needs_rating=False,
            bar_start=c.bar_range[0], bar_end=c.bar_range[1], chunk_id=c.id,
        ))
    if total_bars >= 1:
        items.append(SessionItem(
            phase=RUNTHROUGH, phase_index=3, type="range", label="Full piece",
            bpm=session.runthrough.bpm, tempo_pct=session.runthrough.tempo_pct,
            reps=0, needs_rating=True, bar_start=1, bar_end=total_bars,
            is_runthrough=True,
        ))
    return items


def describe_range(item: SessionItem) -> str:
    return bar_span_label(item.bar_start, item.bar_end)
