from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ModelError(ValueError):
    """Raised for malformed model payloads."""


class ZombieType(str, Enum):
    BASIC = "Basic"
    FAST = "Fast"
    TANK = "Tank"
    ARMORED = "Armored"
    SWARM = "Swarm"
    STEALTH = "Stealth"
    MECHANICAL = "Mechanical"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class IssueType(str, Enum):
    INEFFICIENT_TOWERS = "INEFFICIENT_TOWERS"
    WEAK_DEFENSE = "WEAK_DEFENSE"
    EXCESSIVE_OVERKILL = "EXCESSIVE_OVERKILL"
    NEGATIVE_ECONOMY = "NEGATIVE_ECONOMY"
    OVERPRICED_TOWER = "OVERPRICED_TOWER"
    UNDERPRICED_TOWER = "UNDERPRICED_TOWER"
    IMBALANCED_THREAT = "IMBALANCED_THREAT"
    DIFFICULTY_SPIKE = "DIFFICULTY_SPIKE"
    SUBOPTIMAL_MIX = "SUBOPTIMAL_MIX"


class Trend(str, Enum):
    GETTING_HARDER = "GETTING_HARDER"
    GETTING_EASIER = "GETTING_EASIER"
    STABLE = "STABLE"


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class BalanceRating(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    CRITICAL = "CRITICAL"


def _require(payload: Dict[str, Any], key: str) -> Any:
    if key not in payload:
        raise ModelError(f"Missing required field: {key}")
    return payload[key]


def _as_float(payload: Dict[str, Any], key: str, default: Optional[float] = None) -> float:
    raw = _require(payload, key) if default is None else payload.get(key, default)
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ModelError(f"Field '{key}' must be numeric, got {raw!r}.") from exc


def _stable_float(value: float, digits: int = 10) -> Optional[float]:
    if not math.isfinite(value):
        return None
    rounded = round(float(value), digits)
    # Normalize signed zero to keep deterministic JSON across runtimes.
    return 0.0 if rounded == 0.0 else rounded


def stabilize_numeric_payload(payload: Any, digits: int = 10) -> Any:
    if isinstance(payload, bool):
        return payload
    if isinstance(payload, Enum):
        return payload.value
    if isinstance(payload, float):
        return _stable_float(payload, digits=digits)
    if is_dataclass(payload) and not isinstance(payload, type):
        return {
            item.name: stabilize_numeric_payload(getattr(payload, item.name), digits=digits)
            for item in fields(payload)
        }
    if isinstance(payload, (list, tuple)):
        return [stabilize_numeric_payload(item, digits=digits) for item in payload]
    if isinstance(payload, dict):
        return {
            (key.value if isinstance(key, Enum) else key): stabilize_numeric_payload(value, digits=digits)
            for key, value in payload.items()
        }
    return payload


# ---------------------------------------------------------------------------
# Enemies and waves
# ---------------------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class EnemyTypeProfile:
    enemy_type: str
    base_health: float
    base_damage: float
    speed: float
    reward: float

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "EnemyTypeProfile":
        return cls(
            enemy_type=str(_require(payload, "type")),
            base_health=_as_float(payload, "base_health"),
            base_damage=_as_float(payload, "base_damage"),
            speed=_as_float(payload, "speed"),
            reward=_as_float(payload, "reward"),
        )


DEFAULT_ENEMY_PROFILES: Dict[str, EnemyTypeProfile] = {
    profile.enemy_type: profile
    for profile in (
        EnemyTypeProfile(ZombieType.BASIC.value, 100, 10, 50, 10),
        EnemyTypeProfile(ZombieType.FAST.value, 70, 8, 100, 15),
        EnemyTypeProfile(ZombieType.TANK.value, 500, 25, 25, 50),
        EnemyTypeProfile(ZombieType.ARMORED.value, 300, 15, 40, 30),
        EnemyTypeProfile(ZombieType.SWARM.value, 50, 5, 60, 5),
        EnemyTypeProfile(ZombieType.STEALTH.value, 120, 12, 70, 25),
        EnemyTypeProfile(ZombieType.MECHANICAL.value, 250, 20, 55, 40),
    )
}


@dataclass(slots=True, frozen=True)
class WaveEnemyGroup:
    enemy_type: str
    count: int
    spawn_interval_s: float


@dataclass(slots=True, frozen=True)
class PerformanceMetrics:
    kill_rate: float = 100.0
    lives_lost: int = 0
    resource_efficiency: float = 100.0


@dataclass(slots=True)
class DifficultyState:
    multiplier: float = 1.0
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)


# ---------------------------------------------------------------------------
# Towers and combat
# ---------------------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class TowerStats:
    tower_type: str
    cost: float
    dps: float
    range: float
    accuracy: float = 1.0
    damage_per_hit: float = 0.0

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "TowerStats":
        return cls(
            tower_type=str(_require(payload, "type")),
            cost=_as_float(payload, "cost"),
            dps=_as_float(payload, "dps"),
            range=_as_float(payload, "range"),
            accuracy=_as_float(payload, "accuracy", 1.0),
            damage_per_hit=_as_float(payload, "damage_per_hit", 0.0),
        )


DEFAULT_TOWERS: Tuple[TowerStats, ...] = (
    TowerStats("MachineGun", cost=250, dps=96, range=150, accuracy=0.85, damage_per_hit=12),
    TowerStats("Sniper", cost=900, dps=150, range=400, accuracy=0.95, damage_per_hit=150),
    TowerStats("Shotgun", cost=400, dps=48, range=120, accuracy=0.8, damage_per_hit=60),
    TowerStats("Flame", cost=750, dps=150, range=120, accuracy=0.9, damage_per_hit=200),
    TowerStats("Tesla", cost=1500, dps=160, range=200, accuracy=0.9, damage_per_hit=80),
    TowerStats("Grenade", cost=1250, dps=27, range=180, accuracy=0.75, damage_per_hit=90),
)


@dataclass(slots=True, frozen=True)
class BalanceSnapshot:
    damage_per_dollar: float
    survival_rate: float
    overkill_percent: float
    economy_efficiency: float

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "BalanceSnapshot":
        return cls(
            damage_per_dollar=_as_float(payload, "damage_per_dollar"),
            survival_rate=_as_float(payload, "survival_rate"),
            overkill_percent=_as_float(payload, "overkill_percent"),
            economy_efficiency=_as_float(payload, "economy_efficiency"),
        )


@dataclass(slots=True, frozen=True)
class BalanceIssue:
    type: IssueType
    severity: Severity
    message: str
    value: float = 0.0
    threshold: float = 0.0
    recommendation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return stabilize_numeric_payload(self)


@dataclass(slots=True, frozen=True)
class WaveDefenseAnalysis:
    wave: int
    can_defend: bool
    total_zombie_hp: float
    total_tower_dps: float
    time_to_reach_end: float
    damage_dealt: float
    damage_required: float
    safety_margin: float
    recommendation: str


@dataclass(slots=True, frozen=True)
class ThreatScore:
    zombie_type: str
    health: float
    speed: float
    count: int
    reward: float
    threat_score: float
    threat_per_dollar: float
    is_balanced: bool


@dataclass(slots=True, frozen=True)
class TowerEfficiency:
    tower_type: str
    cost: float
    dps: float
    range: float
    accuracy: float
    efficiency_score: float
    effective_dps: float
    break_even_time: float


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class OutlierPoint:
    value: float
    index: int
    deviation: float


@dataclass(slots=True, frozen=True)
class OutlierResult:
    mean: float = 0.0
    standard_deviation: float = 0.0
    outliers: Tuple[OutlierPoint, ...] = tuple()
    has_outliers: bool = False
    error: Optional[str] = None


@dataclass(slots=True, frozen=True)
class TrendResult:
    trend: Trend = Trend.STABLE
    slope: float = 0.0
    intercept: float = 0.0
    r_squared: float = 0.0
    confidence: Confidence = Confidence.LOW
    error: Optional[str] = None


@dataclass(slots=True, frozen=True)
class WavePrediction:
    wave: int
    predicted_difficulty: float = 0.0
    recommended_dps: float = 0.0
    lower: float = 0.0
    upper: float = 0.0
    error: Optional[str] = None

    @property
    def is_degraded(self) -> bool:
        return self.predicted_difficulty == 0.0 and self.lower == 0.0 and self.upper == 0.0


@dataclass(slots=True, frozen=True)
class StatisticalSummary:
    mean: float = 0.0
    median: float = 0.0
    mode: float = 0.0
    standard_deviation: float = 0.0
    variance: float = 0.0
    min: float = 0.0
    max: float = 0.0
    range: float = 0.0
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class AnalysisTiming:
    analysis_count: int = 0
    avg_analysis_ms: float = 0.0
    max_analysis_ms: float = 0.0
    last_analysis_ms: float = 0.0


@dataclass(slots=True, frozen=True)
class BalanceReport:
    session_id: str
    duration_s: float
    summary: Dict[str, Any]
    event_counts: Dict[str, int]
    balance_issues: Tuple[BalanceIssue, ...]
    overall_rating: BalanceRating
    wave_defense: Tuple[WaveDefenseAnalysis, ...] = tuple()
    tower_efficiencies: Dict[str, TowerEfficiency] = field(default_factory=dict)
    damage_by_type: Dict[str, float] = field(default_factory=dict)
    outliers: Optional[OutlierResult] = None
    trend: Optional[TrendResult] = None
    predictions: Tuple[WavePrediction, ...] = tuple()
    difficulty_multiplier: Optional[float] = None
    timing: AnalysisTiming = field(default_factory=AnalysisTiming)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = stabilize_numeric_payload(self)
        payload["issue_count"] = len(self.balance_issues)
        return payload
