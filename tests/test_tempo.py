import unittest

from chunkcoach.analysis.models import Song
from chunkcoach.analysis.tempo import bar_tick_range, build_tempo_map

from tests.songs import make_song, simple_bar


class TickTests(unittest.TestCase):
    def test_cumulative_starts(self) -> None:
        song = make_song([simple_bar()] * 3)
        self.assertEqual([mb.start for mb in song.master_bars], [0, 3840, 7680])

    def test_explicit_starts_are_kept(self) -> None:
        song = Song.from_json({"master_bars": [{"start": 100}, {"start": 5000}]})
        self.assertEqual([mb.start for mb in song.master_bars], [100, 5000])

    def test_bar_duration(self) -> None:
        self.assertEqual(make_song([simple_bar()], time_signature=(3, 4)).master_bars[0].duration, 2880)
        self.assertEqual(make_song([simple_bar()], time_signature=(6, 8)).master_bars[0].duration, 2880)

    def test_bar_tick_range(self) -> None:
        song = make_song([simple_bar()] * 2)
        self.assertEqual(bar_tick_range(song, 1, 1), (0, 3839))
        self.assertEqual(bar_tick_range(song, 2, 2), (3840, 7679))
        self.assertEqual(bar_tick_range(song, 1, 2), (0, 7679))
        # out-of-range bars clamp to the song
        self.assertEqual(bar_tick_range(song, 0, 9), (0, 7679))
        self.assertEqual(bar_tick_range(Song(), 1, 4), (0, 0))


class TempoMapTests(unittest.TestCase):
    def test_constant_tempo(self) -> None:
        tm = build_tempo_map(make_song([simple_bar()] * 2, tempo=120))
        self.assertAlmostEqual(tm.tick_to_ms(1920), 1000.0)
        self.assertAlmostEqual(tm.song_duration_ms, 4000.0)

    def test_tempo_automation(self) -> None:
        tm = build_tempo_map(make_song([simple_bar()] * 2, tempo=120, tempo_changes={1: 60}))
        self.assertAlmostEqual(tm.tick_to_ms(3840), 2000.0)
        self.assertAlmostEqual(tm.song_duration_ms, 6000.0)

    def test_automation_on_first_bar_replaces_base_tempo(self) -> None:
        tm = build_tempo_map(make_song([simple_bar()], tempo=120, tempo_changes={0: 60}))
        self.assertAlmostEqual(tm.song_duration_ms, 4000.0)


if __name__ == "__main__":
    unittest.main()
