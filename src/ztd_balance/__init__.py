"""Adaptive difficulty and balance analysis engine for a zombie tower-defense game."""

from .analysis import NumpyBackend, PurePythonBackend, StatisticalEngine, get_backend
from .combat import (
    analyze_tower_efficiency,
    apply_diminishing_returns,
    calculate_break_even_point,
    calculate_effective_dps,
    calculate_efficiency_score,
    calculate_threat_score,
    can_defend_wave,
    detect_balance_issues,
    get_optimal_tower_mix,
    overall_rating,
    severity_for_deviation,
)
from .config import ConfigError, EngineConfig, load_config
from .formatting import format_issues, format_report
from .models import (
    BalanceIssue,
    BalanceReport,
    BalanceSnapshot,
    IssueType,
    ModelError,
    OutlierResult,
    Severity,
    TrendResult,
    WaveEnemyGroup,
    WavePrediction,
    ZombieType,
)
from .sessions import SessionError, SessionStore
from .tracking import BalanceTracker, LiveCounters
from .waves import DifficultyController, WaveComposer, WaveTable, build_wave_table

__all__ = [
    "BalanceIssue",
    "BalanceReport",
    "BalanceSnapshot",
    "BalanceTracker",
    "ConfigError",
    "DifficultyController",
    "EngineConfig",
    "IssueType",
    "LiveCounters",
    "ModelError",
    "NumpyBackend",
    "OutlierResult",
    "PurePythonBackend",
    "SessionError",
    "SessionStore",
    "Severity",
    "StatisticalEngine",
    "TrendResult",
    "WaveComposer",
    "WaveEnemyGroup",
    "WavePrediction",
    "WaveTable",
    "ZombieType",
    "analyze_tower_efficiency",
    "apply_diminishing_returns",
    "build_wave_table",
    "calculate_break_even_point",
    "calculate_effective_dps",
    "calculate_efficiency_score",
    "calculate_threat_score",
    "can_defend_wave",
    "detect_balance_issues",
    "format_issues",
    "format_report",
    "get_backend",
    "get_optimal_tower_mix",
    "load_config",
    "overall_rating",
    "severity_for_deviation",
]
