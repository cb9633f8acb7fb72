from __future__ import annotations

import logging
import math
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .combat import calculate_threat_score
from .config import DifficultyRules, EngineConfig, WaveTier, validate_wave_tiers
from .models import (
    DifficultyState,
    EnemyTypeProfile,
    PerformanceMetrics,
    ThreatScore,
    WaveEnemyGroup,
)

logger = logging.getLogger(__name__)

EnemyFactory = Callable[[str, float, float, int], Optional[Any]]

_FALLBACK_PROFILE = EnemyTypeProfile("Unknown", base_health=100, base_damage=10, speed=50, reward=10)


class WaveTable:
    """Read-only mapping of wave number to its enemy groups."""

    def __init__(self, tiers: Sequence[WaveTier], waves: Dict[int, Tuple[WaveEnemyGroup, ...]]):
        self.tiers = tuple(tiers)
        self._waves = dict(waves)
        self.last_wave = max(self._waves)

    def groups_for(self, wave: int) -> Tuple[WaveEnemyGroup, ...]:
        if wave < 1:
            wave = 1
        # Waves past the table reuse the last defined wave.
        return self._waves.get(wave, self._waves[self.last_wave])

    def tier_for(self, wave: int) -> WaveTier:
        for tier in self.tiers:
            if tier.contains(wave):
                return tier
        return self.tiers[-1] if wave > self.tiers[-1].last_wave else self.tiers[0]

    def total_count(self, wave: int) -> int:
        return sum(group.count for group in self.groups_for(wave))

    def __len__(self) -> int:
        return len(self._waves)


def build_wave_table(tiers: Sequence[WaveTier] | None = None) -> WaveTable:
    if tiers is None:
        tiers = EngineConfig.default().wave_tiers
    validate_wave_tiers(tiers)

    ordered = sorted(tiers, key=lambda item: item.first_wave)
    waves: Dict[int, Tuple[WaveEnemyGroup, ...]] = {}
    for tier in ordered:
        for wave in range(tier.first_wave, tier.last_wave + 1):
            total = math.floor(tier.base_count + wave * tier.growth_per_wave)
            waves[wave] = tuple(
                WaveEnemyGroup(
                    enemy_type=enemy_type,
                    # float guard for exact shares
                    count=max(0, math.floor(total * share / 100.0 + 1e-9)),
                    spawn_interval_s=interval,
                )
                for enemy_type, share, interval in tier.composition
            )
    return WaveTable(ordered, waves)


class DifficultyController:
    """Owns the wave table and the bounded difficulty multiplier.

    The multiplier is the only mutable state in the engine. Every read and
    write goes through ``_lock`` so the controller can be shared between the
    game loop and the API worker threads.
    """

    def __init__(self, config: EngineConfig | None = None, table: WaveTable | None = None):
        self.config = config or EngineConfig.default()
        self.rules: DifficultyRules = self.config.difficulty
        self.table = table or build_wave_table(self.config.wave_tiers)
        self._lock = threading.Lock()
        self._wave = 1
        self._state = DifficultyState(multiplier=self.rules.initial_multiplier)

    @property
    def wave(self) -> int:
        with self._lock:
            return self._wave

    @property
    def multiplier(self) -> float:
        with self._lock:
            return self._state.multiplier

    @property
    def performance(self) -> PerformanceMetrics:
        with self._lock:
            return self._state.performance

    def state(self) -> DifficultyState:
        with self._lock:
            return replace(self._state)

    def next_wave(self) -> int:
        with self._lock:
            self._wave += 1
            return self._wave

    def current_wave_groups(self) -> Tuple[WaveEnemyGroup, ...]:
        return self.table.groups_for(self.wave)

    def update_performance_metrics(
        self,
        kill_rate: float,
        lives_lost: int,
        resource_efficiency: float,
    ) -> float:
        with self._lock:
            self._state.performance = PerformanceMetrics(
                kill_rate=float(kill_rate),
                lives_lost=int(lives_lost),
                resource_efficiency=float(resource_efficiency),
            )
            before = self._state.multiplier
            self._state.multiplier = self._adjust(before, float(kill_rate))
            after = self._state.multiplier

        if after != before:
            logger.info("Difficulty multiplier %.2f -> %.2f (kill rate %.1f%%)", before, after, kill_rate)
        else:
            logger.debug("Difficulty multiplier unchanged at %.2f (kill rate %.1f%%)", after, kill_rate)
        return after

    def _adjust(self, multiplier: float, kill_rate: float) -> float:
        rules = self.rules
        # The two pairs are evaluated independently and may both fire.
        if kill_rate < rules.struggling_below:
            multiplier = max(rules.struggling_floor, multiplier - rules.struggling_step)
        elif kill_rate > rules.dominating_above:
            multiplier = min(rules.dominating_ceiling, multiplier + rules.dominating_step)

        if kill_rate > rules.crushing_above:
            multiplier = min(rules.crushing_ceiling, multiplier + rules.crushing_step)
        elif kill_rate < rules.failing_below:
            multiplier = max(rules.failing_floor, multiplier - rules.failing_step)

        return min(rules.ceiling, max(rules.floor, round(multiplier, 10)))

    def reset(self) -> None:
        with self._lock:
            self._wave = 1
            self._state = DifficultyState(multiplier=self.rules.initial_multiplier)
        logger.debug("Difficulty controller reset")


class WaveComposer:
    def __init__(self, controller: DifficultyController):
        self.controller = controller
        self.config = controller.config
        self.rules = controller.rules

    def profile(self, enemy_type: str) -> EnemyTypeProfile:
        profile = self.config.enemy_profiles.get(enemy_type)
        if profile is None:
            return replace(_FALLBACK_PROFILE, enemy_type=enemy_type)
        return profile

    def calculate_zombie_health(self, enemy_type: str, wave: int) -> int:
        return math.floor(self.profile(enemy_type).base_health + wave * self.rules.health_per_wave)

    def calculate_zombie_damage(self, enemy_type: str, wave: int) -> int:
        base = self.profile(enemy_type).base_damage
        return math.floor(base + wave * self.rules.damage_per_wave * self.controller.multiplier)

    def calculate_spawn_rate(self, base_interval: float, wave: int) -> float:
        scaled = base_interval * self.rules.spawn_decay**wave * self.controller.multiplier
        return max(self.rules.min_spawn_interval_s, scaled)

    def calculate_zombie_count(self, base_count: int, wave: int) -> int:
        if base_count <= 0:
            return 0
        bonus = self.rules.boss_wave_bonus if wave % self.rules.boss_wave_every == 0 else 1.0
        try:
            scaled = base_count * self.rules.count_growth**wave * self.controller.multiplier * bonus
        except OverflowError:
            scaled = math.inf
        # Saturate so far-out waves stay finite.
        return max(0, math.floor(min(scaled, self.rules.max_group_count)))

    def build_wave(self, wave: int) -> Tuple[WaveEnemyGroup, ...]:
        return tuple(
            WaveEnemyGroup(
                enemy_type=group.enemy_type,
                count=self.calculate_zombie_count(group.count, wave),
                spawn_interval_s=self.calculate_spawn_rate(group.spawn_interval_s, wave),
            )
            for group in self.controller.table.groups_for(wave)
        )

    def create_wave_zombies(self, factory: EnemyFactory, wave: int | None = None) -> List[Any]:
        if wave is None:
            wave = self.controller.wave
        spawn_x = self.config.tracking.spawn_x
        spawn_y = self.config.tracking.spawn_y

        zombies: List[Any] = []
        for group in self.controller.table.groups_for(wave):
            adjusted = self.calculate_zombie_count(group.count, wave)
            for _ in range(adjusted):
                zombie = factory(group.enemy_type, spawn_x, spawn_y, wave)
                if zombie is None:
                    logger.warning("Enemy factory returned nothing for type %r (wave %d)", group.enemy_type, wave)
                    continue
                zombies.append(zombie)
        return zombies

    def wave_hit_points(self, wave: int) -> float:
        return float(
            sum(
                group.count * self.calculate_zombie_health(group.enemy_type, wave)
                for group in self.build_wave(wave)
            )
        )

    def average_speed(self, wave: int) -> float:
        groups = self.build_wave(wave)
        total = sum(group.count for group in groups)
        if total <= 0:
            return 0.0
        return sum(group.count * self.profile(group.enemy_type).speed for group in groups) / total

    def threat_scores(self, wave: int) -> List[ThreatScore]:
        thresholds = self.config.thresholds
        scores: List[ThreatScore] = []
        for group in self.build_wave(wave):
            profile = self.profile(group.enemy_type)
            scores.append(
                calculate_threat_score(
                    health=self.calculate_zombie_health(group.enemy_type, wave),
                    speed=profile.speed,
                    count=group.count,
                    reward=profile.reward,
                    zombie_type=group.enemy_type,
                    balanced_min=thresholds.threat_score_min,
                    balanced_max=thresholds.threat_score_max,
                )
            )
        return scores
