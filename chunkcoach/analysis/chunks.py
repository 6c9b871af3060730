from __future__ import annotations

"""Greedy segmentation of bars into practice chunks.

Bars are walked left to right. A chunk is closed at a section marker, around
an empty bar, when it reaches the maximum size, or when the next bar is
neither shaped nor timed like the previous one and its feature vector is too
far away. The result is greedy, not optimal.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np

from .models import Bar, BarFeature, Chunk, Song, bar_span_label
from ..app import explain

MAX_CHUNK_SIZE = 4
SIMILARITY_THRESHOLD = 5.0


def extract_sections(song: Song) -> List[Dict[str, object]]:
    sections = []
    for i, mb in enumerate(song.master_bars):
        text = (mb.section or "").strip()
        if text:
            sections.append({"bar_index": i, "bar_number": i + 1, "text": text})
    return sections


def extract_shape(bar: Optional[Bar]) -> str:
    """Fret/string pattern relative to the first sounding fret, e.g. ``"3:0,2:2"``."""
    if bar is None:
        return ""
    notes = [n for b in bar.played_beats() for n in b.notes if not n.is_dead]
    if not notes:
        return ""
    base = notes[0].fret
    return ",".join(f"{n.string}:{n.fret - base}" for n in notes)


def extract_rhythm(bar: Optional[Bar]) -> str:
    """Duration signature of every beat, rests included, e.g. ``"8-8-4.-16t"``."""
    if bar is None:
        return ""
    parts = []
    for voice in bar.voices:
        if voice.is_empty:
            continue
        for beat in voice.beats:
            parts.append(f"{beat.duration}{'.' if beat.dots > 0 else ''}{'t' if beat.has_tuplet else ''}")
    return "-".join(parts)


def feature_distance(a: BarFeature, b: BarFeature) -> float:
    return float(np.linalg.norm(np.subtract(a.vector(), b.vector())))


def _similar(bar_a: Optional[Bar], bar_b: Optional[Bar], fa: BarFeature, fb: BarFeature,
             threshold: float) -> bool:
    shape_a = extract_shape(bar_a)
    if shape_a and shape_a == extract_shape(bar_b):
        return True
    rhythm_a = extract_rhythm(bar_a)
    if rhythm_a and rhythm_a == extract_rhythm(bar_b):
        return True
    return feature_distance(fa, fb) < threshold


def segment_bars(song: Song, features: Sequence[BarFeature], sections: Sequence[Dict[str, object]],
                 track_index: int = 0, max_size: int = MAX_CHUNK_SIZE,
                 threshold: float = SIMILARITY_THRESHOLD) -> List[List[int]]:
    """Bar-index runs in order, empty singletons included."""
    if not features:
        return []
    track = song.track(track_index)
    section_starts = {s["bar_index"] for s in sections}
    runs: List[List[int]] = []
    current = [0]
    for i in range(1, len(features)):
        if i in section_starts or features[i].is_empty or features[i - 1].is_empty:
            split = True
        else:
            split = not (
                len(current) < max_size
                and _similar(track.bar(i - 1), track.bar(i), features[i - 1], features[i], threshold)
            )
        if split:
            runs.append(current)
            current = [i]
        else:
            current.append(i)
    runs.append(current)
    return runs


def build_chunks(song: Song, features: Sequence[BarFeature], sections: Sequence[Dict[str, object]],
                 track_index: int = 0, max_size: int = MAX_CHUNK_SIZE,
                 threshold: float = SIMILARITY_THRESHOLD) -> List[Chunk]:
    """Segment scored bars into chunks with ids ``chunk-0..n`` in bar order.

    Runs made only of empty bars are dropped before ids are assigned.
    """
    runs = segment_bars(song, features, sections, track_index, max_size, threshold)
    chunks: List[Chunk] = []
    for run in runs:
        if all(features[i].is_empty for i in run):
            continue
        first, last = run[0], run[-1]
        label = bar_span_label(first + 1, last + 1)
        for s in sections:
            if first <= s["bar_index"] <= last:
                label = str(s["text"])
                break
        techniques: List[str] = []
        for i in run:
            for t in features[i].techniques:
                if t not in techniques:
                    techniques.append(t)
        chunks.append(Chunk(
            id=f"chunk-{len(chunks)}",
            bar_indices=tuple(run),
            bar_range=(first + 1, last + 1),
            difficulty=max(features[i].difficulty for i in run),
            label=label,
            techniques=tuple(techniques),
        ))
    explain.trace("chunks_built", {
        "chunks": len(chunks),
        "sizes": [len(c.bar_indices) for c in chunks],
    })
    return chunks
