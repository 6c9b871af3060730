from __future__ import annotations

"""Tempo map and tick arithmetic (960 ticks per quarter note)."""

from dataclasses import dataclass, field
from typing import List, Tuple

from .models import QUARTER_TIME, Song


@dataclass(frozen=True)
class TempoChange:
    tick: int
    bpm: float


@dataclass
class TempoMap:
    changes: List[TempoChange] = field(default_factory=list)
    song_end_tick: int = 0

    def tick_to_ms(self, target_tick: int) -> float:
        ms = 0.0
        prev_tick = 0
        bpm = self.changes[0].bpm
        for tc in self.changes[1:]:
            if tc.tick >= target_tick:
                break
            ms += (tc.tick - prev_tick) / QUARTER_TIME * (60000.0 / bpm)
            bpm = tc.bpm
            prev_tick = tc.tick
        ms += (target_tick - prev_tick) / QUARTER_TIME * (60000.0 / bpm)
        return ms

    @property
    def song_duration_ms(self) -> float:
        return self.tick_to_ms(self.song_end_tick)


def build_tempo_map(song: Song) -> TempoMap:
    changes = [TempoChange(0, song.tempo)]
    for mb in song.master_bars:
        if mb.tempo_automation:
            changes.append(TempoChange(mb.start, mb.tempo_automation))
    # stable: the base tempo stays first when bar 1 also carries automation
    changes.sort(key=lambda c: c.tick)
    end = 0
    if song.master_bars:
        last = song.master_bars[-1]
        end = last.start + last.duration
    return TempoMap(changes=changes, song_end_tick=end)


def bar_tick_range(song: Song, start_bar: int, end_bar: int) -> Tuple[int, int]:
    """Inclusive tick range covering 1-based bars `start_bar`..`end_bar`."""
    if not song.master_bars:
        return (0, 0)
    n = len(song.master_bars)
    first = song.master_bars[min(max(start_bar, 1), n) - 1]
    last = song.master_bars[min(max(end_bar, 1), n) - 1]
    return (first.start, last.start + last.duration - 1)
