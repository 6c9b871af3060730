from __future__ import annotations

"""Cancellable one-shot scheduling.

The runner never sleeps. It asks a `Scheduler` to call it back later and
keeps the returned handle so a skip or a stop can cancel the callback before
it fires.
"""

import heapq
import itertools
import threading
from typing import Callable, List, Optional, Protocol, Tuple


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle: ...


class _ThreadTimer:
    def __init__(self, delay_ms: int, callback: Callable[[], None]) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._callback = callback
        self._timer = threading.Timer(max(0, delay_ms) / 1000.0, self._fire)
        self._timer.daemon = True
        self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
        self._callback()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
        self._timer.cancel()


class ThreadingScheduler:
    """Wall-clock scheduler backed by daemon `threading.Timer`s."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        return _ThreadTimer(delay_ms, callback)


class _ManualTimer:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual clock. Nothing fires until `advance` moves time past the due time."""

    def __init__(self) -> None:
        self._now_ms = 0
        self._seq = itertools.count()
        self._queue: List[Tuple[int, int, _ManualTimer, Callable[[], None]]] = []

    def now(self) -> float:
        """Current virtual time in seconds."""
        return self._now_ms / 1000.0

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        handle = _ManualTimer()
        heapq.heappush(self._queue, (self._now_ms + max(0, int(delay_ms)), next(self._seq), handle, callback))
        return handle

    def pending(self) -> int:
        return sum(1 for _, _, h, _ in self._queue if not h.cancelled)

    def advance(self, ms: int) -> int:
        """Move the clock forward by `ms`, firing due callbacks in order. Returns how many fired."""
        target = self._now_ms + max(0, int(ms))
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._queue)
            self._now_ms = due
            if handle.cancelled:
                continue
            handle.cancelled = True
            callback()
            fired += 1
        self._now_ms = target
        return fired

    def next_due_ms(self) -> Optional[int]:
        live = [due for due, _, h, _ in self._queue if not h.cancelled]
        return min(live) - self._now_ms if live else None
