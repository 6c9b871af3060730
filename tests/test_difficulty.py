import unittest

from chunkcoach.analysis.difficulty import WEIGHTS, compute_medians, score_bars, score_difficulty, sigmoid
from chunkcoach.analysis.features import empty_features
from chunkcoach.analysis.models import FEATURE_KEYS, BarFeature


def _feature(i: int, density: float) -> BarFeature:
    return BarFeature(bar_index=i, note_density=density)


class SigmoidTests(unittest.TestCase):
    def test_centre_and_tails(self) -> None:
        self.assertAlmostEqual(sigmoid(3.0, 3.0), 0.5)
        self.assertGreater(sigmoid(4.0, 3.0), 0.5)
        self.assertLess(sigmoid(2.0, 3.0), 0.5)

    def test_extremes_do_not_overflow(self) -> None:
        self.assertAlmostEqual(sigmoid(1000.0, 0.0), 1.0)
        self.assertAlmostEqual(sigmoid(-1000.0, 0.0), 0.0)


class MedianTests(unittest.TestCase):
    def test_odd_count(self) -> None:
        medians = compute_medians([_feature(0, 3), _feature(1, 1), _feature(2, 2)])
        self.assertEqual(medians["note_density"], 2.0)

    def test_even_count_takes_upper_middle(self) -> None:
        medians = compute_medians([_feature(i, d) for i, d in enumerate([4, 1, 3, 2])])
        self.assertEqual(medians["note_density"], 3.0)

    def test_empty_bars_are_ignored(self) -> None:
        medians = compute_medians([_feature(0, 2), empty_features(1), empty_features(2)])
        self.assertEqual(medians["note_density"], 2.0)

    def test_no_bars(self) -> None:
        self.assertEqual(compute_medians([]), {k: 0.0 for k in FEATURE_KEYS})


class ScoreTests(unittest.TestCase):
    def test_weights_sum_to_one(self) -> None:
        self.assertAlmostEqual(sum(WEIGHTS.values()), 1.0)
        self.assertEqual(set(WEIGHTS), set(FEATURE_KEYS))

    def test_median_bar_scores_fifty(self) -> None:
        f = BarFeature(bar_index=0, note_density=2, string_crossings=3, fret_span=4,
                       position_shifts=1, technique_score=0.5, rhythm_score=1)
        medians = {k: float(getattr(f, k)) for k in FEATURE_KEYS}
        self.assertEqual(score_difficulty(f, medians), 50)

    def test_empty_bar_scores_zero(self) -> None:
        self.assertEqual(score_difficulty(empty_features(0), {k: 0.0 for k in FEATURE_KEYS}), 0)

    def test_score_bars_is_song_relative(self) -> None:
        features = [_feature(0, 1), _feature(1, 2), _feature(2, 8), empty_features(3)]
        scored = score_bars(features)
        self.assertEqual(scored[1].difficulty, 50)
        self.assertLess(scored[0].difficulty, 50)
        self.assertGreater(scored[2].difficulty, 50)
        self.assertEqual(scored[3].difficulty, 0)
        # inputs are left untouched
        self.assertEqual(features[2].difficulty, 0)

    def test_scores_are_bounded(self) -> None:
        scored = score_bars([_feature(0, 0), _feature(1, 1000)])
        for f in scored:
            self.assertGreaterEqual(f.difficulty, 0)
            self.assertLessEqual(f.difficulty, 100)


if __name__ == "__main__":
    unittest.main()
