from __future__ import annotations

"""Music data model consumed by the analysis pipeline.

The score structures mirror what a tab/score parser exports: a song holds
master bars (timing, time signature, section markers, tempo automation) and
tracks whose first staff holds one bar per master bar. Every `from_json`
tolerates missing fields: numerics default to 0 and flags to False.
"""

import json
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

QUARTER_TIME = 960

FEATURE_KEYS: Tuple[str, ...] = (
    "note_density",
    "string_crossings",
    "position_shifts",
    "technique_score",
    "rhythm_score",
    "fret_span",
)


def _int(data: Dict[str, Any], key: str, default: int = 0) -> int:
    value = data.get(key)
    if value is None:
        return default
    return int(value)


def _flag(data: Dict[str, Any], key: str) -> bool:
    return bool(data.get(key, False))


@dataclass
class Note:
    fret: int = 0
    string: int = 0
    is_dead: bool = False
    bend_type: int = 0
    is_hammer_pull_origin: bool = False
    slide_out_type: int = 0
    slide_in_type: int = 0
    vibrato: int = 0
    is_harmonic: bool = False
    is_trill: bool = False
    is_palm_mute: bool = False
    is_let_ring: bool = False
    is_staccato: bool = False

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Note":
        return cls(
            fret=_int(data, "fret"),
            string=_int(data, "string"),
            is_dead=_flag(data, "is_dead"),
            bend_type=_int(data, "bend_type"),
            is_hammer_pull_origin=_flag(data, "is_hammer_pull_origin"),
            slide_out_type=_int(data, "slide_out_type"),
            slide_in_type=_int(data, "slide_in_type"),
            vibrato=_int(data, "vibrato"),
            is_harmonic=_flag(data, "is_harmonic"),
            is_trill=_flag(data, "is_trill"),
            is_palm_mute=_flag(data, "is_palm_mute"),
            is_let_ring=_flag(data, "is_let_ring"),
            is_staccato=_flag(data, "is_staccato"),
        )


@dataclass
class Beat:
    """One rhythmic event. `duration` is the note value (4 = quarter, 16 = sixteenth)."""

    notes: List[Note] = field(default_factory=list)
    duration: int = 4
    dots: int = 0
    is_rest: bool = False
    is_empty: bool = False
    has_tuplet: bool = False
    grace_type: int = 0
    pick_stroke: int = 0

    @property
    def is_playable(self) -> bool:
        return not self.is_empty and not self.is_rest

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Beat":
        return cls(
            notes=[Note.from_json(n) for n in data.get("notes") or []],
            duration=_int(data, "duration", 4),
            dots=_int(data, "dots"),
            is_rest=_flag(data, "is_rest"),
            is_empty=_flag(data, "is_empty"),
            has_tuplet=_flag(data, "has_tuplet"),
            grace_type=_int(data, "grace_type"),
            pick_stroke=_int(data, "pick_stroke"),
        )


@dataclass
class Voice:
    beats: List[Beat] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return len(self.beats) == 0

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Voice":
        return cls(beats=[Beat.from_json(b) for b in data.get("beats") or []])


@dataclass
class Bar:
    voices: List[Voice] = field(default_factory=list)

    def played_beats(self) -> List[Beat]:
        """Non-rest, non-empty beats of every voice, in performance order."""
        return [b for v in self.voices if not v.is_empty for b in v.beats if b.is_playable]

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Bar":
        return cls(voices=[Voice.from_json(v) for v in data.get("voices") or []])


@dataclass
class MasterBar:
    start: int = 0
    time_signature_numerator: int = 4
    time_signature_denominator: int = 4
    section: Optional[str] = None
    tempo_automation: Optional[float] = None

    @property
    def duration(self) -> int:
        """Bar length in ticks."""
        den = self.time_signature_denominator or 4
        return int(self.time_signature_numerator * QUARTER_TIME * 4 / den)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "MasterBar":
        section = data.get("section")
        if isinstance(section, dict):
            section = section.get("text") or section.get("marker")
        tempo = data.get("tempo_automation")
        return cls(
            start=_int(data, "start"),
            time_signature_numerator=_int(data, "time_signature_numerator", 4),
            time_signature_denominator=_int(data, "time_signature_denominator", 4),
            section=str(section) if section else None,
            tempo_automation=float(tempo) if tempo is not None else None,
        )


@dataclass
class Track:
    name: str = ""
    bars: List[Optional[Bar]] = field(default_factory=list)

    def bar(self, index: int) -> Optional[Bar]:
        if 0 <= index < len(self.bars):
            return self.bars[index]
        return None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Track":
        return cls(
            name=str(data.get("name", "")),
            bars=[Bar.from_json(b) if b is not None else None for b in data.get("bars") or []],
        )


@dataclass
class Song:
    title: str = ""
    tempo: float = 120.0
    master_bars: List[MasterBar] = field(default_factory=list)
    tracks: List[Track] = field(default_factory=list)

    @property
    def bar_count(self) -> int:
        return len(self.master_bars)

    def track(self, index: int) -> Track:
        if not 0 <= index < len(self.tracks):
            names = ", ".join(f"[{i}] {t.name}" for i, t in enumerate(self.tracks))
            raise IndexError(f"Track {index} not found. Available: {names}")
        return self.tracks[index]

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Song":
        master_bars = [MasterBar.from_json(mb) for mb in data.get("master_bars") or []]
        # Exports without explicit starts get cumulative tick positions.
        if master_bars and not any("start" in mb for mb in data.get("master_bars") or []):
            tick = 0
            for mb in master_bars:
                mb.start = tick
                tick += mb.duration
        return cls(
            title=str(data.get("title", "")),
            tempo=float(data.get("tempo") or 120.0),
            master_bars=master_bars,
            tracks=[Track.from_json(t) for t in data.get("tracks") or []],
        )

    @classmethod
    def load(cls, path: str | Path) -> "Song":
        with Path(path).open("r", encoding="utf-8") as f:
            return cls.from_json(json.load(f))


@dataclass
class BarFeature:
    """Numeric summary of one bar. `difficulty` is attached after scoring."""

    bar_index: int
    note_density: float = 0.0
    string_crossings: int = 0
    fret_span: int = 0
    position_shifts: float = 0.0
    technique_score: float = 0.0
    rhythm_score: float = 0.0
    techniques: List[str] = field(default_factory=list)
    note_count: int = 0
    is_empty: bool = False
    difficulty: int = 0

    @property
    def bar_number(self) -> int:
        return self.bar_index + 1

    def vector(self) -> List[float]:
        return [float(getattr(self, k) or 0) for k in FEATURE_KEYS]

    def to_json(self) -> Dict[str, Any]:
        data = asdict(self)
        data["bar_number"] = self.bar_number
        return data


@dataclass(frozen=True)
class Chunk:
    id: str
    bar_indices: Tuple[int, ...]
    bar_range: Tuple[int, int]
    difficulty: int
    label: str
    techniques: Tuple[str, ...] = ()

    @property
    def display_label(self) -> str:
        """Marker text when the chunk carries one, else its bar span."""
        if self.label and not self.label.startswith("Bar"):
            return self.label
        return bar_span_label(*self.bar_range)

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bar_indices": list(self.bar_indices),
            "bar_range": list(self.bar_range),
            "difficulty": self.difficulty,
            "label": self.label,
            "techniques": list(self.techniques),
        }


def bar_span_label(start_bar: int, end_bar: int) -> str:
    if start_bar == end_bar:
        return f"Bar {start_bar}"
    return f"Bars {start_bar}-{end_bar}"
