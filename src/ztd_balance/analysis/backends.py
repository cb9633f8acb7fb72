from __future__ import annotations

import statistics
from typing import List, Protocol, Sequence

import numpy as np


class BackendError(RuntimeError):
    """Raised by a statistics backend that cannot produce a result."""


class StatisticsBackend(Protocol):
    name: str

    def mean(self, values: Sequence[float]) -> float: ...

    def median(self, values: Sequence[float]) -> float: ...

    def variance(self, values: Sequence[float]) -> float:
        """Population variance."""

    def polyfit(self, xs: Sequence[float], ys: Sequence[float], degree: int) -> List[float]:
        """Least-squares coefficients, highest power first."""


class NumpyBackend:
    name = "numpy"

    def mean(self, values: Sequence[float]) -> float:
        return float(np.mean(np.asarray(values, dtype=float)))

    def median(self, values: Sequence[float]) -> float:
        return float(np.median(np.asarray(values, dtype=float)))

    def variance(self, values: Sequence[float]) -> float:
        return float(np.var(np.asarray(values, dtype=float), ddof=0))

    def polyfit(self, xs: Sequence[float], ys: Sequence[float], degree: int) -> List[float]:
        try:
            coefficients = np.polyfit(np.asarray(xs, dtype=float), np.asarray(ys, dtype=float), degree)
        except (np.linalg.LinAlgError, TypeError) as exc:
            raise BackendError(f"numpy polyfit failed: {exc}") from exc
        if not np.all(np.isfinite(coefficients)):
            raise BackendError("numpy polyfit produced non-finite coefficients")
        return [float(item) for item in coefficients]


class PurePythonBackend:
    """Standard library implementation, solves the normal equations directly."""

    name = "python"

    def mean(self, values: Sequence[float]) -> float:
        return statistics.fmean(values)

    def median(self, values: Sequence[float]) -> float:
        return float(statistics.median(values))

    def variance(self, values: Sequence[float]) -> float:
        return float(statistics.pvariance(values))

    def polyfit(self, xs: Sequence[float], ys: Sequence[float], degree: int) -> List[float]:
        if degree < 0:
            raise BackendError("Polynomial degree must be >= 0")
        size = degree + 1
        if len(xs) < size:
            raise BackendError(f"Need at least {size} points for degree {degree}, got {len(xs)}")

        # Normal equations: (X^T X) c = X^T y, with powers ordered ascending.
        power_sums = [sum(x**k for x in xs) for k in range(2 * degree + 1)]
        matrix = [[power_sums[row + col] for col in range(size)] for row in range(size)]
        rhs = [sum(y * x**row for x, y in zip(xs, ys)) for row in range(size)]

        solution = _solve(matrix, rhs)
        return list(reversed(solution))


def _solve(matrix: List[List[float]], rhs: List[float]) -> List[float]:
    size = len(rhs)
    rows = [list(row) + [value] for row, value in zip(matrix, rhs)]
    scale = max((abs(item) for row in matrix for item in row), default=0.0) or 1.0

    for col in range(size):
        pivot = max(range(col, size), key=lambda index: abs(rows[index][col]))
        if abs(rows[pivot][col]) <= 1e-12 * scale:
            raise BackendError("Singular system in least-squares fit")
        rows[col], rows[pivot] = rows[pivot], rows[col]
        for row in range(col + 1, size):
            factor = rows[row][col] / rows[col][col]
            for index in range(col, size + 1):
                rows[row][index] -= factor * rows[col][index]

    solution = [0.0] * size
    for row in range(size - 1, -1, -1):
        acc = rows[row][size] - sum(rows[row][index] * solution[index] for index in range(row + 1, size))
        solution[row] = acc / rows[row][row]
    return solution


_BACKENDS = {
    NumpyBackend.name: NumpyBackend,
    PurePythonBackend.name: PurePythonBackend,
}


def backend_names() -> List[str]:
    return sorted(_BACKENDS)


def get_backend(name: str = "numpy") -> StatisticsBackend:
    try:
        return _BACKENDS[name.strip().lower()]()
    except KeyError as exc:
        raise ValueError(f"Unknown statistics backend '{name}'. Use one of: {', '.join(backend_names())}.") from exc
