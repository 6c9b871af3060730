import unittest

from chunkcoach.app.events import REP_COMPLETED
from chunkcoach.app.session_runner import RunnerOptions, RunnerStatus, SessionRunner
from chunkcoach.app.timers import ManualScheduler
from chunkcoach.audio.playback import GuardedPlayback, SimulatedEngine
from chunkcoach.scheduling.session import CONTEXT, INTERLEAVING, ISOLATION, RUNTHROUGH, SessionItem

BAR_TICKS = 3840


def _tick_range(start_bar: int, end_bar: int):
    return ((start_bar - 1) * BAR_TICKS, end_bar * BAR_TICKS - 1)


def _chunk_item(n: int, *, reps: int = 2, phase: str = ISOLATION, rated: bool = True,
                pct: float = 0.40) -> SessionItem:
    return SessionItem(
        phase=phase, phase_index=0 if phase == ISOLATION else 2, type="chunk", label=f"Bar {n}",
        bpm=round(100 * pct), tempo_pct=pct, reps=reps, needs_rating=rated,
        bar_start=n, bar_end=n, chunk_id=f"chunk-{n - 1}", level="New",
    )


def _range_item(start: int, end: int, *, phase: str = CONTEXT, rated: bool = False) -> SessionItem:
    return SessionItem(
        phase=phase, phase_index=1 if phase == CONTEXT else 3, type="range", label=f"Bars {start}-{end}",
        bpm=60, tempo_pct=0.60, reps=0, needs_rating=rated, bar_start=start, bar_end=end,
        is_runthrough=phase == RUNTHROUGH,
    )


class RunnerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = SimulatedEngine()
        self.playback = GuardedPlayback(self.engine)
        self.scheduler = ManualScheduler()
        self.rated = []
        self.runner = SessionRunner(
            self.playback,
            self.scheduler,
            base_tempo=100,
            tick_range=_tick_range,
            options=RunnerOptions(rest_ms=5000, interstitial_ms=3000),
            clock=self.scheduler.now,
            on_rating=lambda cid, r: self.rated.append((cid, r)),
        )

    def loop_once(self) -> None:
        """Travel past the rep threshold, then wrap back to the loop start."""
        start, end = self.engine.loop_range
        self.engine.position = start
        self.engine.advance(600)
        self.engine.advance(end - start + 1 - 600)


class FullSessionTests(RunnerTestCase):
    def test_walks_every_phase(self) -> None:
        items = [
            _chunk_item(1),
            _chunk_item(2),
            _chunk_item(3, reps=1, phase=INTERLEAVING, rated=False, pct=0.70),
            _range_item(1, 3, phase=RUNTHROUGH, rated=True),
        ]
        self.assertTrue(self.runner.start_session(items))
        self.assertEqual(self.runner.status, RunnerStatus.PLAYING)
        self.assertTrue(self.engine.playing)
        self.assertAlmostEqual(self.engine.speed, 0.40)
        self.assertEqual(self.engine.loop_range, (0, 3839))

        self.loop_once()
        self.assertEqual(self.runner.status, RunnerStatus.PLAYING)
        self.assertEqual(self.runner.view().rep_count, 1)
        self.loop_once()
        self.assertEqual(self.runner.status, RunnerStatus.AWAITING_RATING)
        self.assertFalse(self.engine.playing)

        self.assertTrue(self.runner.rate(5))
        self.assertEqual(self.rated, [("chunk-0", 5)])
        self.assertEqual(self.runner.status, RunnerStatus.REST)
        self.assertEqual(self.scheduler.pending(), 1)
        self.scheduler.advance(4999)
        self.assertEqual(self.runner.status, RunnerStatus.REST)
        self.scheduler.advance(1)
        self.assertEqual(self.runner.status, RunnerStatus.PLAYING)
        self.assertEqual(self.engine.loop_range, (3840, 7679))

        self.loop_once()
        self.loop_once()
        self.runner.rate(1)
        self.assertEqual(self.runner.status, RunnerStatus.PHASE_INTERSTITIAL)
        self.assertTrue(self.runner.continue_interstitial())
        self.assertEqual(self.scheduler.pending(), 0)
        self.assertEqual(self.runner.view().phase, INTERLEAVING)
        self.assertAlmostEqual(self.engine.speed, 0.70)

        # unrated item moves on by itself
        self.loop_once()
        self.assertEqual(self.runner.status, RunnerStatus.PHASE_INTERSTITIAL)
        self.scheduler.advance(3000)
        self.assertEqual(self.runner.status, RunnerStatus.PLAYING)
        self.assertEqual(self.engine.loop_range, (0, 11519))

        # run-through ends when playback is stopped by hand
        self.playback.stop()
        self.assertEqual(self.runner.status, RunnerStatus.AWAITING_RATING)
        self.runner.rate(3)
        self.assertEqual(self.runner.status, RunnerStatus.SESSION_COMPLETE)
        self.assertEqual(self.rated, [("chunk-0", 5), ("chunk-1", 1)])

        view = self.runner.view()
        self.assertEqual(len(view.results), 3)
        self.assertIsNone(view.results[-1].chunk_id)
        summary = self.runner.summary
        self.assertEqual(summary.items, 3)
        self.assertEqual(summary.average_rating, 3.0)
        self.assertEqual(summary.nailed, ("Bar 1",))
        self.assertEqual(summary.needs_work, ("Bar 2",))

        self.assertTrue(self.runner.dismiss())
        self.assertEqual(self.runner.status, RunnerStatus.IDLE)
        self.assertIsNone(self.runner.summary)

    def test_skip_rest(self) -> None:
        self.runner.start_session([_chunk_item(1, reps=1), _chunk_item(2, reps=1)])
        self.loop_once()
        self.runner.rate(4)
        self.assertTrue(self.runner.skip_rest())
        self.assertEqual(self.runner.view().index, 1)
        self.assertEqual(self.scheduler.advance(10000), 0)
        self.assertEqual(self.runner.status, RunnerStatus.PLAYING)


class IgnoredEventTests(RunnerTestCase):
    def test_rating_while_playing_is_ignored(self) -> None:
        self.runner.start_session([_chunk_item(1)])
        self.assertFalse(self.runner.rate(5))
        self.assertEqual(self.runner.view().results, ())
        self.assertEqual(self.rated, [])

    def feed_loop(self) -> None:
        """Report a full loop of cursor positions straight to the runner."""
        start, end = _tick_range(1, 1)
        for tick in (start, start + 600, end, start):
            self.runner.on_position_changed(tick)

    def test_positions_outside_playing_are_ignored(self) -> None:
        self.runner.start_session([_chunk_item(1, reps=1), _chunk_item(2, reps=1)])
        self.loop_once()
        self.assertEqual(self.runner.status, RunnerStatus.AWAITING_RATING)
        self.assertEqual(self.runner.view().rep_count, 1)
        self.feed_loop()
        self.assertEqual(self.runner.status, RunnerStatus.AWAITING_RATING)
        self.assertEqual(self.runner.view().rep_count, 1)

        self.runner.rate(4)
        self.assertEqual(self.runner.status, RunnerStatus.REST)
        self.feed_loop()
        self.assertEqual(self.runner.status, RunnerStatus.REST)
        self.assertEqual(self.scheduler.pending(), 1)
        self.assertEqual(len(self.runner.view().results), 1)

    def test_rep_event_during_rest_is_ignored(self) -> None:
        self.runner.set_tempo_ramp(True)
        self.runner.start_session([_chunk_item(1, reps=1), _chunk_item(2, reps=1)])
        self.loop_once()
        self.runner.rate(4)
        speed = self.engine.speed
        self.runner.events.emit(REP_COMPLETED, {"rep_count": 5, "rep_total": 1})
        self.assertEqual(self.runner.status, RunnerStatus.REST)
        self.assertEqual(self.engine.speed, speed)
        self.assertFalse(self.engine.playing)
        self.assertEqual(self.scheduler.pending(), 1)

    def test_rating_is_validated(self) -> None:
        self.runner.start_session([_chunk_item(1, reps=1)])
        self.loop_once()
        with self.assertRaises(ValueError):
            self.runner.rate(9)
        self.assertEqual(self.runner.status, RunnerStatus.AWAITING_RATING)

    def test_commands_in_the_wrong_state(self) -> None:
        self.assertFalse(self.runner.skip_rest())
        self.assertFalse(self.runner.continue_interstitial())
        self.assertFalse(self.runner.dismiss())
        self.runner.start_session([_chunk_item(1, reps=1), _chunk_item(2, reps=1)])
        self.assertFalse(self.runner.skip_rest())
        self.loop_once()
        self.runner.rate(3)
        self.assertFalse(self.runner.continue_interstitial())

    def test_stop_during_rest_does_not_advance(self) -> None:
        self.runner.start_session([_range_item(1, 2), _range_item(3, 4)])
        self.engine.stop()
        self.assertEqual(self.runner.status, RunnerStatus.REST)
        self.assertEqual(self.runner.view().index, 1)
        # the engine repeats itself; the guard swallows it
        self.engine.stop()
        self.playback.stop()
        self.assertEqual(self.runner.status, RunnerStatus.REST)
        self.assertEqual(self.runner.view().index, 1)

    def test_stop_does_not_end_a_rep_counted_item(self) -> None:
        self.runner.start_session([_chunk_item(1, reps=3)])
        self.playback.stop()
        self.assertEqual(self.runner.status, RunnerStatus.PLAYING)

    def test_short_travel_is_not_a_rep(self) -> None:
        self.runner.start_session([_chunk_item(1, reps=1)])
        self.engine.advance(300)
        self.engine.advance(BAR_TICKS - 300)
        self.assertEqual(self.runner.view().rep_count, 0)
        self.assertEqual(self.runner.status, RunnerStatus.PLAYING)

    def test_start_rules(self) -> None:
        self.assertFalse(self.runner.start_session([]))
        self.assertEqual(self.runner.status, RunnerStatus.IDLE)
        self.assertTrue(self.runner.start_session([_chunk_item(1)]))
        self.assertFalse(self.runner.start_session([_chunk_item(2)]))


class StopTests(RunnerTestCase):
    def test_stop_cancels_pending_timer(self) -> None:
        self.runner.start_session([_chunk_item(1, reps=1), _chunk_item(2, reps=1)])
        self.loop_once()
        self.runner.rate(5)
        self.assertEqual(self.scheduler.pending(), 1)
        self.runner.stop_session()
        self.assertEqual(self.runner.status, RunnerStatus.IDLE)
        self.assertEqual(self.scheduler.pending(), 0)
        self.assertEqual(self.scheduler.advance(10000), 0)
        self.assertEqual(self.runner.status, RunnerStatus.IDLE)
        self.assertFalse(self.engine.playing)

    def test_handlers_are_detached(self) -> None:
        self.runner.start_session([_chunk_item(1)])
        self.runner.stop_session()
        self.engine.play()
        self.loop_once()
        self.runner.on_playback_stopped()
        self.assertEqual(self.runner.status, RunnerStatus.IDLE)
        self.assertEqual(self.runner.view().rep_count, 0)

    def test_request_stop(self) -> None:
        self.assertFalse(self.runner.request_stop())
        self.runner.start_session([_chunk_item(1)])
        self.assertTrue(self.runner.request_stop())
        self.assertEqual(self.runner.status, RunnerStatus.IDLE)

    def test_restart_after_stop(self) -> None:
        self.runner.start_session([_chunk_item(1)])
        self.runner.stop_session()
        self.assertTrue(self.runner.start_session([_chunk_item(2)]))
        self.assertEqual(self.engine.loop_range, (3840, 7679))


class TempoRampTests(RunnerTestCase):
    def test_ramp_raises_speed_per_rep(self) -> None:
        self.runner.set_tempo_ramp(True)
        self.runner.start_session([_chunk_item(1, reps=3, pct=0.80)])
        self.loop_once()
        self.assertAlmostEqual(self.engine.speed, 0.85)
        self.assertEqual(self.runner.view().now_playing_bpm, 85)
        self.loop_once()
        self.loop_once()
        self.assertEqual(self.runner.status, RunnerStatus.AWAITING_RATING)
        self.runner.rate(5)
        outcome = self.runner.view().results[0]
        self.assertEqual((outcome.bpm_start, outcome.bpm_end), (80, 95))

    def test_ramp_is_capped_at_full_speed(self) -> None:
        self.runner.set_tempo_ramp(True)
        self.runner.start_session([_chunk_item(1, reps=3, pct=0.98)])
        self.loop_once()
        self.loop_once()
        self.assertAlmostEqual(self.engine.speed, 1.0)
        self.assertEqual(self.runner.view().now_playing_bpm, 100)

    def test_ramp_off_keeps_speed(self) -> None:
        self.runner.start_session([_chunk_item(1, reps=3, pct=0.80)])
        self.loop_once()
        self.assertAlmostEqual(self.engine.speed, 0.80)


if __name__ == "__main__":
    unittest.main()
