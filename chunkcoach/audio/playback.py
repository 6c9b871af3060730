from __future__ import annotations

"""Playback control seam between the session runner and a playback engine.

The runner only talks to `PlaybackControl`. `GuardedPlayback` adapts a raw
engine to it and makes stopping idempotent: however many times the engine
or its callers report a stop, listeners hear about it once per logical stop.
Each `play()` hands the engine a fresh stop callback, so a notification
that arrives late from an earlier play is dropped.
"""

import functools
import threading
from typing import Callable, List, Optional, Protocol, Tuple

from ..app import explain

PositionListener = Callable[[int], None]
StoppedListener = Callable[[], None]
Unsubscribe = Callable[[], None]


class PlaybackControl(Protocol):
    def play(self) -> None: ...

    def pause(self) -> None: ...

    def stop(self) -> None: ...

    def set_loop_range(self, start_tick: int, end_tick: int) -> None: ...

    def set_speed(self, multiplier: float) -> None: ...

    def on_position_changed(self, callback: PositionListener) -> Unsubscribe: ...

    def on_stopped(self, callback: StoppedListener) -> Unsubscribe: ...


class PlaybackEngine(Protocol):
    """A raw player. It may report the same stop more than once.

    `set_listeners` is called again before every play. A stop is reported
    through the stop listener that was current when the stop was issued.
    """

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def stop(self) -> None: ...

    def set_loop_range(self, start_tick: int, end_tick: int) -> None: ...

    def set_speed(self, multiplier: float) -> None: ...

    def set_listeners(self, on_position: PositionListener, on_stopped: StoppedListener) -> None: ...


class GuardedPlayback:
    """`PlaybackControl` over a `PlaybackEngine` with at-most-once stop notifications."""

    def __init__(self, engine: PlaybackEngine) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        self._stopped = True
        self._generation = 0
        self._position_listeners: List[PositionListener] = []
        self._stopped_listeners: List[StoppedListener] = []
        engine.set_listeners(self._handle_position, self._handle_stopped)

    @property
    def is_playing(self) -> bool:
        return not self._stopped

    def play(self) -> None:
        with self._lock:
            self._stopped = False
            self._generation += 1
            generation = self._generation
        self._engine.set_listeners(self._handle_position, functools.partial(self._handle_stopped, generation))
        self._engine.play()

    def pause(self) -> None:
        self._engine.pause()

    def stop(self) -> None:
        self._engine.stop()
        self._handle_stopped()

    def set_loop_range(self, start_tick: int, end_tick: int) -> None:
        self._engine.set_loop_range(start_tick, end_tick)

    def set_speed(self, multiplier: float) -> None:
        self._engine.set_speed(multiplier)

    def on_position_changed(self, callback: PositionListener) -> Unsubscribe:
        return self._add(self._position_listeners, callback)

    def on_stopped(self, callback: StoppedListener) -> Unsubscribe:
        return self._add(self._stopped_listeners, callback)

    def _add(self, listeners: list, callback) -> Unsubscribe:
        with self._lock:
            listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in listeners:
                    listeners.remove(callback)

        return unsubscribe

    def _handle_position(self, tick: int) -> None:
        with self._lock:
            listeners = list(self._position_listeners)
        for cb in listeners:
            cb(tick)

    def _handle_stopped(self, generation: Optional[int] = None) -> None:
        with self._lock:
            if self._stopped or (generation is not None and generation != self._generation):
                explain.trace("stop_suppressed", {"generation": generation})
                return
            self._stopped = True
            listeners = list(self._stopped_listeners)
        for cb in listeners:
            cb()


class SimulatedEngine:
    """In-memory engine that loops a tick range when advanced by hand.

    Used by the ``simulate`` command. Like many real players it reports a
    stop both when told to stop and when the range is abandoned.
    """

    def __init__(self) -> None:
        self.playing = False
        self.speed = 1.0
        self.loop_range: Tuple[int, int] = (0, 0)
        self.position = 0
        self._on_position: Optional[PositionListener] = None
        self._on_stopped: Optional[StoppedListener] = None

    def set_listeners(self, on_position: PositionListener, on_stopped: StoppedListener) -> None:
        self._on_position = on_position
        self._on_stopped = on_stopped

    def play(self) -> None:
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def stop(self) -> None:
        self.playing = False
        self.position = self.loop_range[0]
        if self._on_stopped:
            self._on_stopped()

    def set_loop_range(self, start_tick: int, end_tick: int) -> None:
        self.loop_range = (start_tick, end_tick)
        self.position = start_tick

    def set_speed(self, multiplier: float) -> None:
        self.speed = multiplier

    def advance(self, ticks: int) -> None:
        """Move the cursor forward, wrapping at the end of the loop range."""
        if not self.playing:
            return
        start, end = self.loop_range
        pos = self.position + ticks
        if pos > end:
            pos = start + (pos - end - 1) % max(1, end - start + 1)
        self.position = pos
        if self._on_position:
            self._on_position(pos)
