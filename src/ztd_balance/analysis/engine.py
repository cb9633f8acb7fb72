from __future__ import annotations

import logging
import math
from collections import Counter
from typing import List, Sequence, Tuple

from ..config import StatisticalParams
from ..models import (
    Confidence,
    OutlierPoint,
    OutlierResult,
    StatisticalSummary,
    Trend,
    TrendResult,
    WavePrediction,
)
from .backends import BackendError, NumpyBackend, StatisticsBackend

logger = logging.getLogger(__name__)

SeriesPoint = Tuple[float, float]

# Anything a backend may raise on hostile numbers.
_BACKEND_FAILURES = (BackendError, ArithmeticError, ValueError)


def _horner(coefficients: Sequence[float], x: float) -> float:
    result = 0.0
    for coefficient in coefficients:
        result = result * x + coefficient
    return result


class StatisticalEngine:
    """Outliers, trends, forecasts and summaries over plain number series.

    No method raises for small or degenerate input. When the backend fails
    the zero-filled result is returned with ``error`` set.
    """

    def __init__(self, backend: StatisticsBackend | None = None, params: StatisticalParams | None = None):
        self.backend = backend or NumpyBackend()
        self.params = params or StatisticalParams()

    def detect_outliers(self, values: Sequence[float], threshold_sigmas: float | None = None) -> OutlierResult:
        data = [float(item) for item in values]
        if not data:
            return OutlierResult()
        if len(data) == 1:
            return OutlierResult(mean=data[0])

        threshold = self.params.outlier_threshold if threshold_sigmas is None else threshold_sigmas
        try:
            mean = self.backend.mean(data)
            std = math.sqrt(max(0.0, self.backend.variance(data)))
        except _BACKEND_FAILURES as exc:
            logger.warning("Outlier detection failed on %s backend: %s", self.backend.name, exc)
            return OutlierResult(error=str(exc))

        if std == 0:
            return OutlierResult(mean=mean)

        outliers = []
        for index, value in enumerate(data):
            z_score = abs(value - mean) / std
            if z_score > threshold:
                outliers.append(OutlierPoint(value=value, index=index, deviation=z_score))

        return OutlierResult(
            mean=mean,
            standard_deviation=std,
            outliers=tuple(outliers),
            has_outliers=bool(outliers),
        )

    def _confidence(self, r_squared: float) -> Confidence:
        if r_squared >= self.params.confidence_high_r_squared:
            return Confidence.HIGH
        if r_squared >= self.params.confidence_medium_r_squared:
            return Confidence.MEDIUM
        return Confidence.LOW

    def _classify(self, slope: float) -> Trend:
        if slope > self.params.trend_slope_threshold:
            return Trend.GETTING_HARDER
        if slope < -self.params.trend_slope_threshold:
            return Trend.GETTING_EASIER
        return Trend.STABLE

    def analyze_trend(self, points: Sequence[SeriesPoint]) -> TrendResult:
        if not points:
            return TrendResult()
        xs = [float(x) for x, _ in points]
        ys = [float(y) for _, y in points]
        if len(points) == 1:
            return TrendResult(intercept=ys[0])

        try:
            mean_y = self.backend.mean(ys)
            if len(set(xs)) == 1:
                slope, intercept = 0.0, mean_y
            else:
                slope, intercept = self.backend.polyfit(xs, ys, 1)
        except _BACKEND_FAILURES as exc:
            logger.warning("Trend analysis failed on %s backend: %s", self.backend.name, exc)
            return TrendResult(error=str(exc))

        ss_total = sum((y - mean_y) ** 2 for y in ys)
        ss_residual = sum((y - (slope * x + intercept)) ** 2 for x, y in zip(xs, ys))
        if ss_total == 0:
            r_squared = 1.0
        else:
            r_squared = max(0.0, min(1.0, 1.0 - ss_residual / ss_total))

        return TrendResult(
            trend=self._classify(slope),
            slope=slope,
            intercept=intercept,
            r_squared=r_squared,
            confidence=self._confidence(r_squared),
        )

    def predict_wave_difficulty(
        self,
        history: Sequence[SeriesPoint],
        future_waves: Sequence[int],
    ) -> List[WavePrediction]:
        """Fit a low-order polynomial to ``history`` and extrapolate.

        The band is a fixed +/- ``prediction_band`` fraction of the point
        estimate, not a statistical prediction interval.
        """
        if len(history) < 2:
            return [WavePrediction(wave=wave) for wave in future_waves]

        xs = [float(x) for x, _ in history]
        ys = [float(y) for _, y in history]
        degree = min(self.params.polynomial_order, len(history) - 1, len(set(xs)) - 1)

        try:
            coefficients = [round(item, 2) for item in self.backend.polyfit(xs, ys, degree)]
        except _BACKEND_FAILURES as exc:
            logger.warning("Wave forecast failed on %s backend: %s", self.backend.name, exc)
            return [WavePrediction(wave=wave, error=str(exc)) for wave in future_waves]

        band = self.params.prediction_band
        predictions: List[WavePrediction] = []
        for wave in future_waves:
            value = round(_horner(coefficients, float(wave)), 2)
            predictions.append(
                WavePrediction(
                    wave=wave,
                    predicted_difficulty=value,
                    recommended_dps=value,
                    lower=round(value * (1.0 - band), 2),
                    upper=round(value * (1.0 + band), 2),
                )
            )
        return predictions

    def calculate_summary(self, values: Sequence[float]) -> StatisticalSummary:
        data = [float(item) for item in values]
        if not data:
            return StatisticalSummary()
        if len(data) == 1:
            value = data[0]
            return StatisticalSummary(mean=value, median=value, mode=value, min=value, max=value)

        try:
            mean = self.backend.mean(data)
            median = self.backend.median(data)
            variance = max(0.0, self.backend.variance(data))
        except _BACKEND_FAILURES as exc:
            logger.warning("Summary failed on %s backend: %s", self.backend.name, exc)
            return StatisticalSummary(error=str(exc))

        counts = Counter(data)
        top = max(counts.values())
        mode = min(value for value, count in counts.items() if count == top)
        low, high = min(data), max(data)
        return StatisticalSummary(
            mean=mean,
            median=median,
            mode=mode,
            standard_deviation=math.sqrt(variance),
            variance=variance,
            min=low,
            max=high,
            range=high - low,
        )
