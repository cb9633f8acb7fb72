"""Statistical analysis over wave and damage series."""

from .backends import (
    BackendError,
    NumpyBackend,
    PurePythonBackend,
    StatisticsBackend,
    backend_names,
    get_backend,
)
from .engine import SeriesPoint, StatisticalEngine

__all__ = [
    "BackendError",
    "NumpyBackend",
    "PurePythonBackend",
    "SeriesPoint",
    "StatisticalEngine",
    "StatisticsBackend",
    "backend_names",
    "get_backend",
]
