from __future__ import annotations

"""Per-bar feature extraction."""

from typing import Dict, List, Optional

from .models import Bar, Beat, BarFeature, Note, Song
from ..app import explain

# (weight, tag) per beat-level technique
BEAT_TECHNIQUES: Dict[str, tuple] = {
    "has_tuplet": (1.5, "tuplet"),
    "grace_type": (1.0, "grace"),
    "pick_stroke": (0.5, "pick stroke"),
}

# (weight, tag) per note-level technique
NOTE_TECHNIQUES: Dict[str, tuple] = {
    "bend_type": (3.0, "bend"),
    "is_hammer_pull_origin": (1.0, "H/P"),
    "slide_out_type": (1.5, "slide"),
    "slide_in_type": (1.0, "slide"),
    "vibrato": (0.5, "vibrato"),
    "is_harmonic": (2.0, "harmonic"),
    "is_trill": (2.5, "trill"),
    "is_palm_mute": (0.3, "palm mute"),
    "is_let_ring": (0.2, "let ring"),
    "is_dead": (0.5, "dead note"),
    "is_staccato": (0.3, "staccato"),
}

SWEEP_RUN = 3


def empty_features(bar_index: int) -> BarFeature:
    return BarFeature(bar_index=bar_index, is_empty=True)


def _fretted(notes: List[Note]) -> List[int]:
    return [n.fret for n in notes if not n.is_dead and n.fret >= 0]


def _technique_score(beats: List[Beat], tags: List[str]) -> float:
    score = 0.0

    def hit(tag: str) -> None:
        if tag not in tags:
            tags.append(tag)

    for beat in beats:
        for attr, (weight, tag) in BEAT_TECHNIQUES.items():
            if getattr(beat, attr):
                score += weight
                hit(tag)
        for note in beat.notes:
            for attr, (weight, tag) in NOTE_TECHNIQUES.items():
                if getattr(note, attr):
                    score += weight
                    hit(tag)
    return score


def _has_sweep(strings: List[int]) -> bool:
    """True when at least SWEEP_RUN consecutive string changes go the same way."""
    run = 0
    direction = 0
    for prev, cur in zip(strings, strings[1:]):
        diff = cur - prev
        if diff == 0:
            continue
        d = 1 if diff > 0 else -1
        if d == direction:
            run += 1
            if run >= SWEEP_RUN:
                return True
        else:
            direction = d
            run = 1
    return False


def _rhythm_score(beats: List[Beat]) -> float:
    score = 0.0
    durations = set()
    for beat in beats:
        durations.add(beat.duration)
        if beat.dots > 0:
            score += beat.dots * 0.5
        if beat.has_tuplet:
            score += 2
        if beat.duration >= 16:
            score += 1
        if beat.duration >= 32:
            score += 2
    score += max(0, len(durations) - 1) * 0.5
    return score


def bar_features(bar: Optional[Bar], bar_index: int, beats_per_bar: int,
                 position_shift_min: float = 3) -> BarFeature:
    """Summarize one bar. Missing bars and bars without played beats are empty."""
    if bar is None:
        return empty_features(bar_index)
    beats = bar.played_beats()
    if not beats:
        return empty_features(bar_index)

    notes = [n for b in beats for n in b.notes]
    note_count = len(notes)

    crossings = sum(1 for a, b in zip(notes, notes[1:]) if a.string != b.string)

    frets = _fretted(notes)
    fret_span = max(frets) - min(frets) if frets else 0

    shifts = 0.0
    prev_avg = None
    for beat in beats:
        beat_frets = _fretted(beat.notes)
        if not beat_frets:
            continue
        avg = sum(beat_frets) / len(beat_frets)
        if prev_avg is not None:
            shift = abs(avg - prev_avg)
            if shift >= position_shift_min:
                shifts += shift
        prev_avg = avg

    techniques: List[str] = []
    technique_score = _technique_score(beats, techniques)
    if _has_sweep([n.string for n in notes]):
        techniques.append("sweep")

    return BarFeature(
        bar_index=bar_index,
        note_density=note_count / max(1, beats_per_bar),
        string_crossings=crossings,
        fret_span=fret_span,
        position_shifts=shifts,
        technique_score=technique_score,
        rhythm_score=_rhythm_score(beats),
        techniques=techniques,
        note_count=note_count,
        is_empty=False,
    )


def extract_bar_features(song: Song, track_index: int = 0,
                         position_shift_min: float = 3) -> List[BarFeature]:
    """One BarFeature per master bar of the chosen track."""
    track = song.track(track_index)
    features = [
        bar_features(track.bar(i), i, mb.time_signature_numerator, position_shift_min)
        for i, mb in enumerate(song.master_bars)
    ]
    explain.trace("features_extracted", {
        "track": track_index,
        "bars": len(features),
        "empty": sum(1 for f in features if f.is_empty),
    })
    return features
