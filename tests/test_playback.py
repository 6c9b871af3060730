import io
import threading
import unittest
from contextlib import redirect_stdout

from chunkcoach.app import explain
from chunkcoach.app.events import EventBus
from chunkcoach.app.timers import ManualScheduler, ThreadingScheduler
from chunkcoach.audio.playback import GuardedPlayback, SimulatedEngine


class DeferredEngine(SimulatedEngine):
    """Queues stop notifications until `deliver` is called."""

    def __init__(self) -> None:
        super().__init__()
        self.queued = []

    def stop(self) -> None:
        self.playing = False
        self.queued.append(self._on_stopped)

    def deliver(self) -> None:
        queued, self.queued = self.queued, []
        for cb in queued:
            cb()


class GuardedPlaybackTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = SimulatedEngine()
        self.playback = GuardedPlayback(self.engine)
        self.stops = []
        self.positions = []
        self.unsub_stop = self.playback.on_stopped(lambda: self.stops.append(1))
        self.playback.on_position_changed(self.positions.append)

    def test_duplicate_stops_are_suppressed(self) -> None:
        self.assertFalse(self.playback.is_playing)
        self.playback.play()
        self.assertTrue(self.playback.is_playing)
        # the engine reports the stop, then the guard would report it again
        self.playback.stop()
        self.playback.stop()
        self.engine.stop()
        self.assertEqual(len(self.stops), 1)
        self.playback.play()
        self.engine.stop()
        self.assertEqual(len(self.stops), 2)

    def test_stop_before_play_is_silent(self) -> None:
        self.playback.stop()
        self.assertEqual(self.stops, [])

    def test_late_stop_from_an_earlier_play_is_dropped(self) -> None:
        engine = DeferredEngine()
        playback = GuardedPlayback(engine)
        stops = []
        playback.on_stopped(lambda: stops.append(1))
        playback.play()
        playback.stop()
        self.assertEqual(len(stops), 1)
        # the next item starts before the engine gets round to reporting the first stop
        playback.play()
        engine.deliver()
        self.assertEqual(len(stops), 1)
        self.assertTrue(playback.is_playing)
        playback.stop()
        engine.deliver()
        self.assertEqual(len(stops), 2)

    def test_unsubscribe(self) -> None:
        self.unsub_stop()
        self.unsub_stop()
        self.playback.play()
        self.playback.stop()
        self.assertEqual(self.stops, [])

    def test_positions_pass_through(self) -> None:
        self.playback.set_loop_range(0, 999)
        self.playback.play()
        self.engine.advance(400)
        self.engine.advance(400)
        self.engine.advance(400)
        self.assertEqual(self.positions, [400, 800, 200])

    def test_engine_only_moves_while_playing(self) -> None:
        self.playback.set_loop_range(100, 199)
        self.engine.advance(50)
        self.assertEqual(self.positions, [])
        self.playback.play()
        self.playback.pause()
        self.engine.advance(50)
        self.assertEqual(self.positions, [])

    def test_speed_and_range_reach_the_engine(self) -> None:
        self.playback.set_speed(0.55)
        self.playback.set_loop_range(3840, 7679)
        self.assertEqual(self.engine.speed, 0.55)
        self.assertEqual(self.engine.loop_range, (3840, 7679))
        self.assertEqual(self.engine.position, 3840)


class ManualSchedulerTests(unittest.TestCase):
    def test_fires_in_due_order(self) -> None:
        s = ManualScheduler()
        fired = []
        s.call_later(100, lambda: fired.append("late"))
        s.call_later(50, lambda: fired.append("early"))
        self.assertEqual(s.advance(60), 1)
        self.assertEqual(fired, ["early"])
        self.assertAlmostEqual(s.now(), 0.06)
        self.assertEqual(s.next_due_ms(), 40)
        self.assertEqual(s.advance(40), 1)
        self.assertEqual(fired, ["early", "late"])
        self.assertIsNone(s.next_due_ms())

    def test_cancelled_timers_never_fire(self) -> None:
        s = ManualScheduler()
        fired = []
        handle = s.call_later(10, lambda: fired.append(1))
        self.assertEqual(s.pending(), 1)
        handle.cancel()
        self.assertEqual(s.pending(), 0)
        self.assertEqual(s.advance(100), 0)
        self.assertEqual(fired, [])

    def test_callback_may_schedule_more(self) -> None:
        s = ManualScheduler()
        fired = []
        s.call_later(10, lambda: s.call_later(10, lambda: fired.append(s.now())))
        s.advance(25)
        self.assertEqual(fired, [0.02])


class ThreadingSchedulerTests(unittest.TestCase):
    def test_fires_once(self) -> None:
        fired = threading.Event()
        ThreadingScheduler().call_later(10, fired.set)
        self.assertTrue(fired.wait(2.0))

    def test_cancel(self) -> None:
        fired = threading.Event()
        handle = ThreadingScheduler().call_later(50, fired.set)
        handle.cancel()
        self.assertFalse(fired.wait(0.2))


class ExplainTests(unittest.TestCase):
    def tearDown(self) -> None:
        explain.enable(False)

    def test_trace_only_when_enabled(self) -> None:
        out = io.StringIO()
        with redirect_stdout(out):
            explain.trace("quiet", {"a": 1})
            explain.enable(True)
            self.assertTrue(explain.enabled())
            explain.trace("loud", {"a": 1})
        self.assertEqual(out.getvalue(), '[EXPLAIN] loud :: {"a":1}\n')

    def test_duplicate_stop_is_traced(self) -> None:
        playback = GuardedPlayback(SimulatedEngine())
        out = io.StringIO()
        explain.enable(True)
        with redirect_stdout(out):
            playback.stop()
        self.assertIn("stop_suppressed", out.getvalue())


class EventBusTests(unittest.TestCase):
    def test_emit_in_subscription_order(self) -> None:
        bus = EventBus()
        seen = []
        bus.subscribe("e", lambda p: seen.append(("a", p)))
        bus.subscribe("e", lambda p: seen.append(("b", p)))
        bus.emit("e", 1)
        bus.emit("other", 2)
        self.assertEqual(seen, [("a", 1), ("b", 1)])

    def test_unsubscribe_while_emitting(self) -> None:
        bus = EventBus()
        seen = []

        def once(payload) -> None:
            seen.append(payload)
            bus.unsubscribe("e", once)

        bus.subscribe("e", once)
        bus.emit("e", 1)
        bus.emit("e", 2)
        self.assertEqual(seen, [1])

    def test_handler_errors_propagate(self) -> None:
        bus = EventBus()

        def boom(_payload) -> None:
            raise RuntimeError("boom")

        bus.subscribe("e", boom)
        with self.assertRaises(RuntimeError):
            bus.emit("e")
        bus.unsubscribe("e", boom)
        bus.emit("e")


if __name__ == "__main__":
    unittest.main()
