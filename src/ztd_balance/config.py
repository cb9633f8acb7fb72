from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

import yaml

from .models import (
    DEFAULT_ENEMY_PROFILES,
    DEFAULT_TOWERS,
    EnemyTypeProfile,
    ModelError,
    TowerStats,
)


class ConfigError(RuntimeError):
    """Raised when configuration file is invalid."""


@dataclass(slots=True, frozen=True)
class BalanceThresholds:
    damage_per_dollar_min: float = 15.0
    survival_rate_min: float = 50.0
    overkill_percent_max: float = 15.0
    economy_efficiency_min: float = 100.0
    break_even_time_min: float = 15.0
    break_even_time_max: float = 30.0
    threat_score_min: float = 0.8
    threat_score_max: float = 1.2
    safety_margin_min: float = 20.0
    optimal_mix_deviation_max: float = 30.0


@dataclass(slots=True, frozen=True)
class DifficultyRules:
    initial_multiplier: float = 1.0
    floor: float = 0.7
    ceiling: float = 1.3
    # (kill rate threshold, step, bound) per branch
    struggling_below: float = 70.0
    struggling_step: float = 0.15
    struggling_floor: float = 0.85
    dominating_above: float = 90.0
    dominating_step: float = 0.10
    dominating_ceiling: float = 1.2
    crushing_above: float = 95.0
    crushing_step: float = 0.05
    crushing_ceiling: float = 1.3
    failing_below: float = 60.0
    failing_step: float = 0.10
    failing_floor: float = 0.7
    health_per_wave: float = 1.8
    damage_per_wave: float = 1.5
    spawn_decay: float = 0.95
    min_spawn_interval_s: float = 0.5
    count_growth: float = 1.08
    boss_wave_every: int = 5
    boss_wave_bonus: float = 1.2
    max_group_count: int = 1_000_000


@dataclass(slots=True, frozen=True)
class DiminishingReturns:
    duplicate_decay: float = 0.9


@dataclass(slots=True, frozen=True)
class StatisticalParams:
    outlier_threshold: float = 2.0
    confidence_high_r_squared: float = 0.85
    confidence_medium_r_squared: float = 0.65
    trend_slope_threshold: float = 0.1
    polynomial_order: int = 2
    prediction_band: float = 0.2
    prediction_wave_count: int = 5
    min_data_points: int = 3


@dataclass(slots=True, frozen=True)
class TrackingParams:
    analysis_interval_s: float = 10.0
    max_analysis_ms: float = 5.0
    dps_window_s: float = 5.0
    starting_lives: int = 20
    path_length: float = 1000.0
    spawn_x: float = 50.0
    spawn_y: float = 384.0


@dataclass(slots=True, frozen=True)
class WaveTier:
    first_wave: int
    last_wave: int
    base_count: float
    growth_per_wave: float
    # enemy type -> (share percent, spawn interval seconds)
    composition: Tuple[Tuple[str, float, float], ...]

    def contains(self, wave: int) -> bool:
        return self.first_wave <= wave <= self.last_wave

    @property
    def share_total(self) -> float:
        return sum(share for _, share, _ in self.composition)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "WaveTier":
        try:
            first_wave, last_wave = (int(item) for item in payload["waves"])
            composition = tuple(
                (str(entry["type"]), float(entry["share"]), float(entry["interval"]))
                for entry in payload.get("composition", [])
            )
            return cls(
                first_wave=first_wave,
                last_wave=last_wave,
                base_count=float(payload["base_count"]),
                growth_per_wave=float(payload["growth_per_wave"]),
                composition=composition,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ModelError(f"Invalid wave tier payload: {exc}") from exc


def _tier(first: int, base: float, growth: float, *composition: Tuple[str, float, float]) -> WaveTier:
    return WaveTier(first, first + 4, base, growth, tuple(composition))


DEFAULT_WAVE_TIERS: Tuple[WaveTier, ...] = (
    _tier(1, 8, 2.0, ("Basic", 70, 2.2), ("Fast", 30, 2.6)),
    _tier(6, 12, 2.0, ("Basic", 60, 2.0), ("Fast", 30, 2.4), ("Tank", 10, 4.0)),
    _tier(
        11, 18, 2.5,
        ("Basic", 50, 1.8), ("Fast", 25, 2.2), ("Tank", 15, 3.5), ("Armored", 10, 3.5),
    ),
    _tier(
        16, 22, 3.0,
        ("Basic", 45, 1.3), ("Fast", 20, 1.7), ("Tank", 15, 2.8), ("Armored", 10, 3.2),
        ("Swarm", 10, 1.0),
    ),
    _tier(
        21, 28, 3.0,
        ("Basic", 40, 1.2), ("Fast", 20, 1.6), ("Tank", 15, 2.6), ("Armored", 10, 3.0),
        ("Swarm", 10, 0.9), ("Stealth", 5, 1.8),
    ),
    _tier(
        26, 35, 3.5,
        ("Basic", 35, 1.1), ("Fast", 20, 1.5), ("Tank", 15, 2.4), ("Armored", 10, 2.8),
        ("Swarm", 10, 0.8), ("Stealth", 5, 1.7), ("Mechanical", 5, 2.2),
    ),
    _tier(
        31, 40, 4.0,
        ("Basic", 30, 1.0), ("Fast", 20, 1.4), ("Tank", 15, 2.2), ("Armored", 15, 2.6),
        ("Swarm", 10, 0.8), ("Stealth", 5, 1.6), ("Mechanical", 5, 2.0),
    ),
    _tier(
        36, 50, 4.5,
        ("Basic", 25, 0.9), ("Fast", 20, 1.3), ("Tank", 15, 2.0), ("Armored", 15, 2.4),
        ("Swarm", 12, 0.7), ("Stealth", 8, 1.5), ("Mechanical", 5, 1.9),
    ),
    _tier(
        41, 70, 5.0,
        ("Basic", 20, 0.8), ("Fast", 18, 1.2), ("Tank", 18, 1.8), ("Armored", 18, 2.2),
        ("Swarm", 12, 0.6), ("Stealth", 8, 1.4), ("Mechanical", 6, 1.7),
    ),
    _tier(
        46, 100, 6.0,
        ("Basic", 15, 0.7), ("Fast", 15, 1.1), ("Tank", 15, 1.6), ("Armored", 20, 2.0),
        ("Swarm", 15, 0.5), ("Stealth", 12, 1.3), ("Mechanical", 8, 1.5),
    ),
)


@dataclass(slots=True, frozen=True)
class EngineConfig:
    thresholds: BalanceThresholds = field(default_factory=BalanceThresholds)
    difficulty: DifficultyRules = field(default_factory=DifficultyRules)
    diminishing: DiminishingReturns = field(default_factory=DiminishingReturns)
    statistics: StatisticalParams = field(default_factory=StatisticalParams)
    tracking: TrackingParams = field(default_factory=TrackingParams)
    enemy_profiles: Dict[str, EnemyTypeProfile] = field(default_factory=lambda: dict(DEFAULT_ENEMY_PROFILES))
    towers: Tuple[TowerStats, ...] = DEFAULT_TOWERS
    wave_tiers: Tuple[WaveTier, ...] = DEFAULT_WAVE_TIERS

    @classmethod
    def default(cls) -> "EngineConfig":
        return cls()

    def tower(self, tower_type: str) -> TowerStats | None:
        for item in self.towers:
            if item.tower_type == tower_type:
                return item
        return None


def _read_raw(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")

    try:
        if suffix == ".json":
            return json.loads(text)
        if suffix in {".yaml", ".yml"}:
            return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot parse config {path}: {exc}") from exc

    raise ConfigError(f"Unsupported config format '{suffix}'. Use .json or .yaml/.yml.")


def _merge_section(base: Any, payload: Any, section: str) -> Any:
    if payload is None:
        return base
    if not isinstance(payload, Mapping):
        raise ConfigError(f"Section '{section}' must be a mapping.")

    known = {item.name: item for item in fields(base)}
    updates: Dict[str, Any] = {}
    for key, raw in payload.items():
        if key not in known:
            raise ConfigError(f"Unknown field '{section}.{key}'.")
        current = getattr(base, key)
        try:
            updates[key] = int(raw) if isinstance(current, int) else float(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Field '{section}.{key}' must be numeric, got {raw!r}.") from exc
    return replace(base, **updates)


def _load_profiles(payload: Iterable[Dict[str, Any]]) -> Dict[str, EnemyTypeProfile]:
    profiles = dict(DEFAULT_ENEMY_PROFILES)
    for raw in payload:
        try:
            profile = EnemyTypeProfile.from_dict(raw)
        except ModelError as exc:
            name = raw.get("type", "<unknown>") if isinstance(raw, dict) else "<unknown>"
            raise ConfigError(f"Invalid enemy profile '{name}': {exc}") from exc
        profiles[profile.enemy_type] = profile
    return profiles


def _load_towers(payload: Iterable[Dict[str, Any]]) -> Tuple[TowerStats, ...]:
    towers: List[TowerStats] = []
    for raw in payload:
        try:
            towers.append(TowerStats.from_dict(raw))
        except ModelError as exc:
            name = raw.get("type", "<unknown>") if isinstance(raw, dict) else "<unknown>"
            raise ConfigError(f"Invalid tower definition '{name}': {exc}") from exc
    return tuple(towers)


def _load_tiers(payload: Iterable[Dict[str, Any]]) -> Tuple[WaveTier, ...]:
    tiers: List[WaveTier] = []
    for index, raw in enumerate(payload, start=1):
        try:
            tiers.append(WaveTier.from_dict(raw))
        except ModelError as exc:
            raise ConfigError(f"Invalid wave tier #{index}: {exc}") from exc
    return tuple(tiers)


def validate_wave_tiers(tiers: Sequence[WaveTier]) -> None:
    if not tiers:
        raise ConfigError("At least one wave tier is required.")

    expected_first = 1
    for tier in sorted(tiers, key=lambda item: item.first_wave):
        if tier.first_wave != expected_first:
            problem = "overlap" if tier.first_wave < expected_first else "gap"
            raise ConfigError(
                f"Wave tier {tier.first_wave}-{tier.last_wave}: {problem} at wave {expected_first}."
            )
        if tier.last_wave < tier.first_wave:
            raise ConfigError(f"Wave tier {tier.first_wave}-{tier.last_wave} has an empty range.")
        if not tier.composition:
            raise ConfigError(f"Wave tier {tier.first_wave}-{tier.last_wave} has no enemy groups.")
        if abs(tier.share_total - 100.0) > 1e-6:
            raise ConfigError(
                f"Wave tier {tier.first_wave}-{tier.last_wave} shares sum to {tier.share_total}, expected 100."
            )
        for enemy_type, _, interval in tier.composition:
            if interval <= 0:
                raise ConfigError(
                    f"Wave tier {tier.first_wave}-{tier.last_wave}: spawn interval for "
                    f"'{enemy_type}' must be > 0."
                )
        expected_first = tier.last_wave + 1


def validate_config(config: EngineConfig) -> EngineConfig:
    rules = config.difficulty
    if rules.floor > rules.initial_multiplier or rules.initial_multiplier > rules.ceiling:
        raise ConfigError(
            "Difficulty bounds must satisfy floor <= initial_multiplier <= ceiling "
            f"(got {rules.floor} / {rules.initial_multiplier} / {rules.ceiling})."
        )
    if rules.min_spawn_interval_s <= 0:
        raise ConfigError("Field 'difficulty.min_spawn_interval_s' must be > 0.")
    if rules.boss_wave_every <= 0:
        raise ConfigError("Field 'difficulty.boss_wave_every' must be a positive integer.")
    if rules.max_group_count <= 0:
        raise ConfigError("Field 'difficulty.max_group_count' must be a positive integer.")
    if config.tracking.starting_lives <= 0:
        raise ConfigError("Field 'tracking.starting_lives' must be a positive integer.")
    validate_wave_tiers(config.wave_tiers)
    return config


def config_from_dict(payload: Mapping[str, Any]) -> EngineConfig:
    if not isinstance(payload, Mapping):
        raise ConfigError("Config root must be an object (JSON/YAML mapping).")

    base = EngineConfig.default()
    config = EngineConfig(
        thresholds=_merge_section(base.thresholds, payload.get("thresholds"), "thresholds"),
        difficulty=_merge_section(base.difficulty, payload.get("difficulty"), "difficulty"),
        diminishing=_merge_section(base.diminishing, payload.get("diminishing"), "diminishing"),
        statistics=_merge_section(base.statistics, payload.get("statistics"), "statistics"),
        tracking=_merge_section(base.tracking, payload.get("tracking"), "tracking"),
        enemy_profiles=_load_profiles(payload.get("enemy_profiles", [])),
        towers=_load_towers(payload["towers"]) if "towers" in payload else base.towers,
        wave_tiers=_load_tiers(payload["wave_tiers"]) if "wave_tiers" in payload else base.wave_tiers,
    )
    return validate_config(config)


def load_config(path: Path | str) -> EngineConfig:
    path = Path(path)
    payload = _read_raw(path)
    if payload is None:
        return EngineConfig.default()
    return config_from_dict(payload)
