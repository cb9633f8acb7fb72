from __future__ import annotations

import unittest
from typing import List, Sequence

from ztd_balance.analysis import BackendError, NumpyBackend, PurePythonBackend, StatisticalEngine, get_backend
from ztd_balance.models import Confidence, Trend


class _BrokenBackend:
    name = "broken"

    def mean(self, values: Sequence[float]) -> float:
        raise BackendError("mean unavailable")

    def median(self, values: Sequence[float]) -> float:
        raise BackendError("median unavailable")

    def variance(self, values: Sequence[float]) -> float:
        raise BackendError("variance unavailable")

    def polyfit(self, xs: Sequence[float], ys: Sequence[float], degree: int) -> List[float]:
        raise BackendError("polyfit unavailable")


class _EngineCases:
    """Shared cases, run once per backend."""

    backend_factory = NumpyBackend

    def setUp(self) -> None:
        self.engine = StatisticalEngine(backend=self.backend_factory())

    def test_outliers_on_tiny_input(self) -> None:
        empty = self.engine.detect_outliers([])
        self.assertFalse(empty.has_outliers)
        self.assertEqual(empty.mean, 0.0)

        single = self.engine.detect_outliers([42])
        self.assertEqual(single.mean, 42.0)
        self.assertEqual(single.standard_deviation, 0.0)
        self.assertFalse(single.has_outliers)

    def test_outlier_is_flagged_with_z_score(self) -> None:
        result = self.engine.detect_outliers([10] * 9 + [100])
        self.assertAlmostEqual(result.mean, 19.0)
        self.assertAlmostEqual(result.standard_deviation, 27.0)
        self.assertTrue(result.has_outliers)
        self.assertEqual([point.index for point in result.outliers], [9])
        self.assertAlmostEqual(result.outliers[0].deviation, 3.0)

    def test_custom_threshold_and_flat_series(self) -> None:
        self.assertFalse(self.engine.detect_outliers([10] * 9 + [100], threshold_sigmas=3.5).has_outliers)
        flat = self.engine.detect_outliers([5, 5, 5])
        self.assertFalse(flat.has_outliers)
        self.assertEqual(flat.mean, 5.0)

    def test_rising_trend(self) -> None:
        result = self.engine.analyze_trend([(1, 100), (2, 150), (3, 200), (4, 250), (5, 300)])
        self.assertEqual(result.trend, Trend.GETTING_HARDER)
        self.assertAlmostEqual(result.slope, 50.0)
        self.assertAlmostEqual(result.intercept, 50.0)
        self.assertAlmostEqual(result.r_squared, 1.0)
        self.assertEqual(result.confidence, Confidence.HIGH)

    def test_falling_and_stable_trends(self) -> None:
        falling = self.engine.analyze_trend([(1, 30), (2, 20), (3, 10)])
        self.assertEqual(falling.trend, Trend.GETTING_EASIER)
        stable = self.engine.analyze_trend([(1, 10), (2, 10.05), (3, 10.1)])
        self.assertEqual(stable.trend, Trend.STABLE)

    def test_degenerate_trends(self) -> None:
        self.assertEqual(self.engine.analyze_trend([]).trend, Trend.STABLE)

        single = self.engine.analyze_trend([(3, 7)])
        self.assertEqual(single.intercept, 7.0)
        self.assertEqual(single.confidence, Confidence.LOW)

        same_x = self.engine.analyze_trend([(2, 1), (2, 3)])
        self.assertEqual(same_x.slope, 0.0)
        self.assertAlmostEqual(same_x.intercept, 2.0)
        self.assertEqual(same_x.r_squared, 0.0)
        self.assertIsNone(same_x.error)

        flat = self.engine.analyze_trend([(1, 4), (2, 4), (3, 4)])
        self.assertEqual(flat.r_squared, 1.0)
        self.assertEqual(flat.trend, Trend.STABLE)

    def test_prediction_needs_two_points(self) -> None:
        predictions = self.engine.predict_wave_difficulty([(1, 10)], [2, 3])
        self.assertEqual([item.wave for item in predictions], [2, 3])
        self.assertTrue(all(item.is_degraded for item in predictions))
        self.assertEqual(self.engine.predict_wave_difficulty([(1, 10), (2, 20)], []), [])

    def test_linear_history_extrapolates(self) -> None:
        predictions = self.engine.predict_wave_difficulty([(1, 10), (2, 20), (3, 30)], [4, 5])
        self.assertAlmostEqual(predictions[0].predicted_difficulty, 40.0)
        self.assertAlmostEqual(predictions[0].recommended_dps, 40.0)
        self.assertAlmostEqual(predictions[0].lower, 32.0)
        self.assertAlmostEqual(predictions[0].upper, 48.0)
        self.assertAlmostEqual(predictions[1].predicted_difficulty, 50.0)
        self.assertFalse(predictions[0].is_degraded)

    def test_quadratic_history(self) -> None:
        predictions = self.engine.predict_wave_difficulty([(1, 1), (2, 4), (3, 9), (4, 16)], [5])
        self.assertAlmostEqual(predictions[0].predicted_difficulty, 25.0)

    def test_two_points_fit_a_line(self) -> None:
        predictions = self.engine.predict_wave_difficulty([(1, 10), (2, 14)], [3])
        self.assertAlmostEqual(predictions[0].predicted_difficulty, 18.0)

    def test_summary(self) -> None:
        empty = self.engine.calculate_summary([])
        self.assertEqual(empty.mean, 0.0)

        single = self.engine.calculate_summary([7])
        self.assertEqual((single.mean, single.median, single.mode, single.range), (7.0, 7.0, 7.0, 0.0))

        result = self.engine.calculate_summary([1, 2, 2, 3, 4])
        self.assertAlmostEqual(result.mean, 2.4)
        self.assertAlmostEqual(result.median, 2.0)
        self.assertEqual(result.mode, 2.0)
        self.assertAlmostEqual(result.variance, 1.04)
        self.assertAlmostEqual(result.standard_deviation, 1.04**0.5)
        self.assertEqual((result.min, result.max, result.range), (1.0, 4.0, 3.0))

    def test_mode_tie_picks_smallest(self) -> None:
        self.assertEqual(self.engine.calculate_summary([3, 1, 3, 1]).mode, 1.0)


class NumpyEngineTests(_EngineCases, unittest.TestCase):
    backend_factory = NumpyBackend


class PurePythonEngineTests(_EngineCases, unittest.TestCase):
    backend_factory = PurePythonBackend


class BackendFailureTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = StatisticalEngine(backend=_BrokenBackend())

    def test_failures_return_sentinels_with_error(self) -> None:
        with self.assertLogs("ztd_balance.analysis.engine", level="WARNING"):
            outliers = self.engine.detect_outliers([1, 2, 3])
            trend = self.engine.analyze_trend([(1, 1), (2, 2)])
            predictions = self.engine.predict_wave_difficulty([(1, 1), (2, 2)], [3, 4])
            summary = self.engine.calculate_summary([1, 2])

        self.assertEqual(outliers.error, "mean unavailable")
        self.assertFalse(outliers.has_outliers)
        self.assertEqual(trend.trend, Trend.STABLE)
        self.assertIsNotNone(trend.error)
        self.assertEqual(len(predictions), 2)
        self.assertTrue(all(item.error == "polyfit unavailable" and item.is_degraded for item in predictions))
        self.assertEqual(summary.mean, 0.0)
        self.assertIsNotNone(summary.error)


class BackendTests(unittest.TestCase):
    def test_lookup(self) -> None:
        self.assertIsInstance(get_backend("numpy"), NumpyBackend)
        self.assertIsInstance(get_backend(" Python "), PurePythonBackend)
        with self.assertRaises(ValueError):
            get_backend("fortran")

    def test_singular_fit_raises(self) -> None:
        with self.assertRaises(BackendError):
            PurePythonBackend().polyfit([1, 1, 1], [1, 2, 3], 1)
        with self.assertRaises(BackendError):
            PurePythonBackend().polyfit([1], [1], 2)

    def test_backends_agree(self) -> None:
        xs = [1, 2, 3, 4, 5, 6]
        ys = [3.0, 7.5, 14.0, 22.0, 33.5, 45.0]
        numpy_fit = NumpyBackend().polyfit(xs, ys, 2)
        python_fit = PurePythonBackend().polyfit(xs, ys, 2)
        for left, right in zip(numpy_fit, python_fit):
            self.assertAlmostEqual(left, right, places=6)


if __name__ == "__main__":
    unittest.main()
