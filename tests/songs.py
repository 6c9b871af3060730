"""Builders for small song exports used across the test suite."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from chunkcoach.analysis.models import Chunk, Song


def note(fret: int, string: int, **flags: Any) -> Dict[str, Any]:
    return {"fret": fret, "string": string, **flags}


def beat(*notes: Dict[str, Any], duration: int = 4, **flags: Any) -> Dict[str, Any]:
    return {"notes": list(notes), "duration": duration, **flags}


def bar(*beats: Dict[str, Any]) -> Dict[str, Any]:
    return {"voices": [{"beats": list(beats)}]}


def rest_bar() -> Dict[str, Any]:
    return bar({"is_rest": True, "duration": 1})


def simple_bar() -> Dict[str, Any]:
    """Four quarter notes on one string."""
    return bar(*(beat(note(5, 3)) for _ in range(4)))


def busy_bar() -> Dict[str, Any]:
    """Sixteen bent sixteenths jumping across strings and positions."""
    beats = []
    for i in range(16):
        string = 1 + (i % 6)
        fret = 2 if i % 2 == 0 else 12
        beats.append(beat(note(fret, string, bend_type=1), duration=16))
    return bar(*beats)


def song_json(bars: Sequence[Optional[Dict[str, Any]]], *, tempo: float = 120, title: str = "Etude",
              sections: Optional[Dict[int, str]] = None, time_signature=(4, 4),
              tempo_changes: Optional[Dict[int, float]] = None) -> Dict[str, Any]:
    sections = sections or {}
    tempo_changes = tempo_changes or {}
    master_bars = []
    for i in range(len(bars)):
        mb: Dict[str, Any] = {
            "time_signature_numerator": time_signature[0],
            "time_signature_denominator": time_signature[1],
        }
        if i in sections:
            mb["section"] = {"text": sections[i]}
        if i in tempo_changes:
            mb["tempo_automation"] = tempo_changes[i]
        master_bars.append(mb)
    return {
        "title": title,
        "tempo": tempo,
        "master_bars": master_bars,
        "tracks": [{"name": "Lead Guitar", "bars": list(bars)}],
    }


def make_song(bars: Sequence[Optional[Dict[str, Any]]], **kwargs: Any) -> Song:
    return Song.from_json(song_json(bars, **kwargs))


def make_chunks(difficulties: Sequence[int], *, spacing: int = 1) -> List[Chunk]:
    """One single-bar chunk per difficulty, `spacing` bars apart."""
    chunks = []
    for i, d in enumerate(difficulties):
        start = 1 + i * spacing
        chunks.append(Chunk(
            id=f"chunk-{i}",
            bar_indices=(start - 1,),
            bar_range=(start, start),
            difficulty=d,
            label=f"Bar {start}",
        ))
    return chunks
