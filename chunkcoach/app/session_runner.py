from __future__ import annotations

"""Session runner: walks a flattened session item by item.

States::

    IDLE -> PLAYING -> AWAITING_RATING -> (advance)
    PLAYING -> (advance)                      [items without rating]
    (advance) -> REST | PHASE_INTERSTITIAL -> PLAYING
    (advance) -> SESSION_COMPLETE -> IDLE     [dismiss]
    any state -> IDLE                         [stop]

Items with a rep target end when enough reps have been counted from
playback positions. Items without one (context ranges, run-through) end on
the playback-stopped notification. Events that arrive in the wrong state
are ignored. Every handler runs under one re-entrant lock, and handlers are
detached before the state is reset so nothing fires into a finished run.
"""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..audio.playback import PlaybackControl
from ..scheduling.mastery import validate_rating
from ..scheduling.session import SessionItem
from ..util.rounding import round_half_up
from . import explain
from .events import EventBus, PLAYBACK_STOPPED, RATING_SAVED, REP_COMPLETED, STOP_REQUESTED
from .timers import Scheduler, TimerHandle


class RunnerStatus(str, Enum):
    IDLE = "IDLE"
    PLAYING = "PLAYING"
    AWAITING_RATING = "AWAITING_RATING"
    REST = "REST"
    PHASE_INTERSTITIAL = "PHASE_INTERSTITIAL"
    SESSION_COMPLETE = "SESSION_COMPLETE"


@dataclass(frozen=True)
class RunnerOptions:
    rest_ms: int = 5000
    interstitial_ms: int = 5000
    tempo_ramp: bool = False
    tempo_ramp_pct: float = 0.05
    rep_min_travel_ticks: int = 500
    rep_return_window_ticks: int = 100

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "RunnerOptions":
        rcfg = cfg.get("runner", {})
        return cls(**{k: rcfg[k] for k in cls.__dataclass_fields__ if k in rcfg})


@dataclass(frozen=True)
class Outcome:
    chunk_id: Optional[str]
    label: str
    rating: int
    bpm_start: int
    bpm_end: int
    phase: str


@dataclass(frozen=True)
class SessionSummary:
    minutes: int
    items: int
    average_rating: Optional[float]
    nailed: Tuple[str, ...]
    needs_work: Tuple[str, ...]


@dataclass
class RunnerState:
    status: RunnerStatus = RunnerStatus.IDLE
    items: List[SessionItem] = field(default_factory=list)
    current_idx: int = -1
    current_phase: str = ""
    started_at: Optional[float] = None
    phase_started_at: Optional[float] = None
    finished_at: Optional[float] = None
    tempo_ramp: bool = False
    results: List[Outcome] = field(default_factory=list)
    rep_count: int = 0
    last_tick: Optional[int] = None
    loop_start: int = 0
    speed: float = 1.0
    now_playing_bpm: int = 0

    @property
    def current_item(self) -> Optional[SessionItem]:
        if 0 <= self.current_idx < len(self.items):
            return self.items[self.current_idx]
        return None


@dataclass(frozen=True)
class RunnerView:
    """Read-only snapshot for rendering."""

    status: RunnerStatus
    item: Optional[SessionItem]
    index: int
    total: int
    phase: str
    phase_done: int
    phase_total: int
    elapsed_s: int
    rep_count: int
    now_playing_bpm: int
    tempo_ramp: bool
    results: Tuple[Outcome, ...]
    summary: Optional[SessionSummary] = None


TickRange = Callable[[int, int], Tuple[int, int]]


class SessionRunner:
    """Drives one practice session against a `PlaybackControl`.

    Args:
        playback: The engine the runner owns while a session is active.
        scheduler: Source of cancellable rest/interstitial callbacks.
        base_tempo: Song tempo; speeds are fractions of it.
        tick_range: Maps a 1-based inclusive bar span to a loop tick range.
        options: Delays, tempo ramp and rep detection tunables.
        clock: Seconds clock for elapsed time.
        on_rating: Called with ``(chunk_id, rating)`` before a chunk rating
            is recorded, e.g. to persist it.
    """

    def __init__(self, playback: PlaybackControl, scheduler: Scheduler, *, base_tempo: float,
                 tick_range: TickRange, options: Optional[RunnerOptions] = None,
                 clock: Callable[[], float] = time.monotonic,
                 on_rating: Optional[Callable[[str, int], None]] = None) -> None:
        if base_tempo <= 0:
            raise ValueError(f"base tempo must be positive, got {base_tempo!r}")
        self.playback = playback
        self.scheduler = scheduler
        self.base_tempo = base_tempo
        self.tick_range = tick_range
        self.options = options or RunnerOptions()
        self.clock = clock
        self.on_rating = on_rating
        self.events = EventBus()
        self.state = RunnerState(tempo_ramp=self.options.tempo_ramp)
        self._lock = threading.RLock()
        self._timer: Optional[TimerHandle] = None
        self._detach: List[Callable[[], None]] = []
        self._summary: Optional[SessionSummary] = None

    # ---- commands -------------------------------------------------------

    def start_session(self, items: Sequence[SessionItem]) -> bool:
        """Start walking `items`. Returns False if already running or nothing to play."""
        with self._lock:
            if self.state.status != RunnerStatus.IDLE or not items:
                explain.trace("runner_start_ignored", {"status": self.state.status.value, "items": len(items)})
                return False
            now = self.clock()
            self.state = RunnerState(
                items=list(items),
                current_idx=0,
                started_at=now,
                phase_started_at=now,
                tempo_ramp=self.state.tempo_ramp,
            )
            self._summary = None
            self._attach()
            self._play_current()
            return True

    def stop_session(self) -> None:
        """Cancel everything and return to IDLE, synchronously."""
        with self._lock:
            if self.state.status == RunnerStatus.IDLE:
                return
            self._cancel_timer()
            self._detach_all()
            self.playback.stop()
            self._transition(RunnerStatus.IDLE)
            self.state = RunnerState(tempo_ramp=self.state.tempo_ramp)

    def request_stop(self) -> bool:
        """Stop request from the UI (Escape / Stop). True when the runner consumed it."""
        handled = {"value": False}

        def set_handled() -> None:
            handled["value"] = True

        with self._lock:
            if self.state.status == RunnerStatus.IDLE:
                return False
            self.events.emit(STOP_REQUESTED, {"set_handled": set_handled})
        return handled["value"]

    def rate(self, rating: int) -> bool:
        """Rate the current item. False when no rating is awaited."""
        validate_rating(rating)
        with self._lock:
            item = self.state.current_item
            if self.state.status != RunnerStatus.AWAITING_RATING or item is None:
                explain.trace("rating_ignored", {"status": self.state.status.value})
                return False
            if item.chunk_id is not None and self.on_rating is not None:
                self.on_rating(item.chunk_id, rating)
            self.events.emit(RATING_SAVED, {"chunk_id": item.chunk_id, "rating": rating})
            return True

    def skip_rest(self) -> bool:
        with self._lock:
            if self.state.status != RunnerStatus.REST:
                return False
            self._cancel_timer()
            self._play_current()
            return True

    def continue_interstitial(self) -> bool:
        with self._lock:
            if self.state.status != RunnerStatus.PHASE_INTERSTITIAL:
                return False
            self._cancel_timer()
            self._play_current()
            return True

    def dismiss(self) -> bool:
        """Leave the summary screen and reset to IDLE."""
        with self._lock:
            if self.state.status != RunnerStatus.SESSION_COMPLETE:
                return False
            self._detach_all()
            self._transition(RunnerStatus.IDLE)
            self.state = RunnerState(tempo_ramp=self.state.tempo_ramp)
            self._summary = None
            return True

    def set_tempo_ramp(self, enabled: bool) -> None:
        with self._lock:
            self.state.tempo_ramp = bool(enabled)

    # ---- notifications from the playback engine -------------------------

    def on_position_changed(self, tick: int) -> None:
        """Count a rep when the cursor returns to the loop start after travelling past it."""
        with self._lock:
            st = self.state
            item = st.current_item
            last = st.last_tick
            st.last_tick = tick
            if st.status != RunnerStatus.PLAYING or item is None or item.reps <= 0 or last is None:
                return
            opts = self.options
            if last > st.loop_start + opts.rep_min_travel_ticks and tick <= st.loop_start + opts.rep_return_window_ticks:
                st.rep_count += 1
                self.events.emit(REP_COMPLETED, {"rep_count": st.rep_count, "rep_total": item.reps})

    def on_playback_stopped(self) -> None:
        with self._lock:
            self.events.emit(PLAYBACK_STOPPED, None)

    # ---- event handlers (attached for the lifetime of one run) -----------

    def _handle_rep_completed(self, payload: Dict[str, Any]) -> None:
        st = self.state
        item = st.current_item
        if st.status != RunnerStatus.PLAYING or item is None:
            return
        explain.trace("rep_completed", {"index": st.current_idx, "rep": payload.get("rep_count"), "of": item.reps})
        if st.tempo_ramp:
            st.speed = min(1.0, st.speed + self.options.tempo_ramp_pct)
            self.playback.set_speed(st.speed)
            st.now_playing_bpm = round_half_up(self.base_tempo * st.speed)
            explain.trace("tempo_ramped", {"speed": round(st.speed, 3), "bpm": st.now_playing_bpm})
        if item.reps > 0 and st.rep_count >= item.reps:
            self.playback.stop()
            self._finish_item(item)

    def _handle_playback_stopped(self, _payload: Any) -> None:
        item = self.state.current_item
        if self.state.status != RunnerStatus.PLAYING or item is None:
            return
        if item.reps == 0:
            self._finish_item(item)

    def _handle_rating_saved(self, payload: Dict[str, Any]) -> None:
        st = self.state
        item = st.current_item
        if st.status != RunnerStatus.AWAITING_RATING or item is None:
            return
        st.results.append(Outcome(
            chunk_id=item.chunk_id,
            label=item.label,
            rating=int(payload["rating"]),
            bpm_start=item.bpm,
            bpm_end=round_half_up(self.base_tempo * st.speed),
            phase=item.phase,
        ))
        self._advance()

    def _handle_stop_requested(self, payload: Dict[str, Any]) -> None:
        if self.state.status != RunnerStatus.IDLE:
            payload["set_handled"]()
            self.stop_session()

    # ---- internals ------------------------------------------------------

    def _attach(self) -> None:
        handlers = (
            (REP_COMPLETED, self._handle_rep_completed),
            (PLAYBACK_STOPPED, self._handle_playback_stopped),
            (RATING_SAVED, self._handle_rating_saved),
            (STOP_REQUESTED, self._handle_stop_requested),
        )
        for event, handler in handlers:
            self.events.subscribe(event, handler)
            self._detach.append(lambda e=event, h=handler: self.events.unsubscribe(e, h))
        self._detach.append(self.playback.on_position_changed(self.on_position_changed))
        self._detach.append(self.playback.on_stopped(self.on_playback_stopped))

    def _detach_all(self) -> None:
        detach, self._detach = self._detach, []
        for fn in detach:
            fn()

    def _transition(self, to: RunnerStatus) -> None:
        frm = self.state.status
        self.state.status = to
        explain.trace("runner_transition", {"from": frm.value, "to": to.value, "index": self.state.current_idx})

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm(self, delay_ms: int, expected: RunnerStatus) -> None:
        self._cancel_timer()
        holder: Dict[str, TimerHandle] = {}

        def fire() -> None:
            with self._lock:
                # A skip, stop or newer timer has taken over.
                if self._timer is not holder.get("handle") or self.state.status != expected:
                    return
                self._timer = None
                self._play_current()

        holder["handle"] = self._timer = self.scheduler.call_later(delay_ms, fire)

    def _play_current(self) -> None:
        st = self.state
        item = st.current_item
        if item is None:
            self._complete()
            return
        # Stop before PLAYING so this stop can never end the new item.
        self.playback.stop()
        if item.phase != st.current_phase:
            st.phase_started_at = self.clock()
        st.current_phase = item.phase
        st.rep_count = 0
        st.last_tick = None
        st.speed = item.tempo_pct
        st.now_playing_bpm = item.bpm
        start, end = self.tick_range(item.bar_start, item.bar_end)
        st.loop_start = start
        self._transition(RunnerStatus.PLAYING)
        self.playback.set_loop_range(start, end)
        self.playback.set_speed(item.tempo_pct)
        self.playback.play()

    def _finish_item(self, item: SessionItem) -> None:
        if item.needs_rating:
            self._transition(RunnerStatus.AWAITING_RATING)
        else:
            self._advance()

    def _advance(self) -> None:
        st = self.state
        previous = st.current_item
        st.current_idx += 1
        nxt = st.current_item
        if nxt is None:
            self._complete()
        elif previous is not None and previous.phase != nxt.phase:
            self._transition(RunnerStatus.PHASE_INTERSTITIAL)
            self._arm(self.options.interstitial_ms, RunnerStatus.PHASE_INTERSTITIAL)
        else:
            self._transition(RunnerStatus.REST)
            self._arm(self.options.rest_ms, RunnerStatus.REST)

    def _complete(self) -> None:
        self._cancel_timer()
        self.state.finished_at = self.clock()
        self._transition(RunnerStatus.SESSION_COMPLETE)
        self._summary = self._summarize()

    def _summarize(self) -> SessionSummary:
        st = self.state
        end = st.finished_at if st.finished_at is not None else self.clock()
        rated = [r for r in st.results if r.rating is not None]
        avg = round(sum(r.rating for r in rated) / len(rated), 1) if rated else None
        return SessionSummary(
            minutes=round_half_up((end - (st.started_at or end)) / 60.0),
            items=len(st.results),
            average_rating=avg,
            nailed=tuple(r.label for r in rated if r.rating >= 5),
            needs_work=tuple(r.label for r in rated if r.rating <= 1),
        )

    # ---- read-only view -------------------------------------------------

    @property
    def status(self) -> RunnerStatus:
        return self.state.status

    @property
    def summary(self) -> Optional[SessionSummary]:
        return self._summary

    def view(self) -> RunnerView:
        with self._lock:
            st = self.state
            item = st.current_item
            phase = item.phase if item else st.current_phase
            phase_items = [i for i, it in enumerate(st.items) if it.phase == phase]
            elapsed = 0
            if st.started_at is not None:
                end = st.finished_at if st.finished_at is not None else self.clock()
                elapsed = int(end - st.started_at)
            return RunnerView(
                status=st.status,
                item=item,
                index=st.current_idx,
                total=len(st.items),
                phase=phase,
                phase_done=sum(1 for i in phase_items if i < st.current_idx),
                phase_total=len(phase_items),
                elapsed_s=elapsed,
                rep_count=st.rep_count,
                now_playing_bpm=st.now_playing_bpm,
                tempo_ramp=st.tempo_ramp,
                results=tuple(st.results),
                summary=self._summary,
            )
