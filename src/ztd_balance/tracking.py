from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from .analysis import StatisticalEngine
from .combat import (
    analyze_tower,
    can_defend_wave,
    detect_balance_issues,
    detect_difficulty_spikes,
    detect_mix_issues,
    detect_pricing_issues,
    detect_threat_issues,
    get_optimal_tower_mix,
    overall_rating,
    rate_damage_per_dollar,
    rate_economy_efficiency,
    rate_survival_rate,
    rate_wave_progression,
)
from .config import EngineConfig
from .models import (
    AnalysisTiming,
    BalanceIssue,
    BalanceReport,
    BalanceSnapshot,
    OutlierResult,
    TowerEfficiency,
    TrendResult,
    WaveDefenseAnalysis,
    WavePrediction,
)
from .waves import DifficultyController, WaveComposer

logger = logging.getLogger(__name__)


class EconomyAction(str, Enum):
    BUILD = "BUILD"
    UPGRADE = "UPGRADE"
    SELL = "SELL"
    EARN = "EARN"


class TowerAction(str, Enum):
    PLACED = "PLACED"
    UPGRADED = "UPGRADED"
    SOLD = "SOLD"


@dataclass(slots=True, frozen=True)
class LiveCounters:
    wave: int
    money: float
    lives: int


@dataclass(slots=True, frozen=True)
class DamageEvent:
    time: float
    wave: int
    tower_type: str
    damage: float
    killed: bool
    overkill: float


@dataclass(slots=True, frozen=True)
class EconomyEvent:
    time: float
    wave: int
    money: float
    action: EconomyAction
    amount: float


@dataclass(slots=True, frozen=True)
class WaveEvent:
    wave: int
    start_time: float
    end_time: float
    zombies_spawned: int
    zombies_killed: int
    lives_lost: int

    @property
    def kill_rate(self) -> Optional[float]:
        # None when the spawn count was not reported.
        if self.zombies_spawned <= 0:
            return None
        return self.zombies_killed / self.zombies_spawned * 100.0


@dataclass(slots=True, frozen=True)
class TowerEvent:
    time: float
    wave: int
    action: TowerAction
    tower_type: str
    cost: float
    level: int


class BalanceTracker:
    """Collects game events and runs balance analysis over them.

    Live counters are pulled by value through ``counters``; nothing here
    subscribes to the game. All ``track_*`` calls are no-ops while the
    tracker is disabled.
    """

    def __init__(
        self,
        counters: Callable[[], LiveCounters],
        config: EngineConfig | None = None,
        statistics: StatisticalEngine | None = None,
        controller: DifficultyController | None = None,
        composer: WaveComposer | None = None,
        clock: Callable[[], float] = time.time,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.counters = counters
        self.config = config or EngineConfig.default()
        self.statistics = statistics or StatisticalEngine(params=self.config.statistics)
        self.controller = controller
        if composer is None:
            composer = WaveComposer(controller or DifficultyController(self.config))
        self.composer = composer
        self.clock = clock
        self.timer = timer
        self._clear()

    def _clear(self) -> None:
        self.enabled = False
        self.session_id = ""
        self.start_time = 0.0
        self.damage_events: List[DamageEvent] = []
        self.economy_events: List[EconomyEvent] = []
        self.wave_events: List[WaveEvent] = []
        self.tower_events: List[TowerEvent] = []
        self.balance_issues: List[BalanceIssue] = []
        self.wave_defense: List[WaveDefenseAnalysis] = []
        self.tower_efficiencies: Dict[str, TowerEfficiency] = {}
        self.outliers: Optional[OutlierResult] = None
        self.trend: Optional[TrendResult] = None
        self.predictions: List[WavePrediction] = []
        self._last_analysis_at = 0.0
        self._wave_started_at = 0.0
        self._analysis_count = 0
        self._analysis_total_ms = 0.0
        self._analysis_max_ms = 0.0
        self._analysis_last_ms = 0.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def enable(self) -> None:
        if self.enabled:
            logger.debug("Balance tracking already enabled")
            return
        self.enabled = True
        self.start_time = self.clock()
        self.session_id = f"balance-{int(self.start_time)}-{uuid4().hex[:8]}"
        logger.info("Balance tracking enabled, session %s", self.session_id)

    def disable(self) -> None:
        if not self.enabled:
            logger.debug("Balance tracking already disabled")
            return
        self.enabled = False
        logger.info("Balance tracking disabled")

    def reset(self) -> None:
        self._clear()
        logger.info("Balance tracking data reset")

    # ------------------------------------------------------------------
    # Event tracking
    # ------------------------------------------------------------------
    def track_damage(self, tower_type: str, damage: float, killed: bool, overkill: float = 0.0) -> None:
        if not self.enabled:
            return
        self.damage_events.append(
            DamageEvent(
                time=self.clock(),
                wave=self.counters().wave,
                tower_type=tower_type,
                damage=float(damage),
                killed=bool(killed),
                overkill=float(overkill),
            )
        )

    def track_economy(self, action: EconomyAction | str, amount: float) -> None:
        if not self.enabled:
            return
        try:
            action = action if isinstance(action, EconomyAction) else EconomyAction(str(action).strip().upper())
        except ValueError:
            logger.warning("Ignoring economy event with unknown action %r", action)
            return
        counters = self.counters()
        self.economy_events.append(
            EconomyEvent(
                time=self.clock(),
                wave=counters.wave,
                money=counters.money,
                action=action,
                amount=float(amount),
            )
        )

    def track_wave_start(self) -> None:
        if not self.enabled:
            return
        self._wave_started_at = self.clock()
        logger.debug("Wave %d tracking started", self.counters().wave)

    def track_wave_complete(
        self,
        zombies_killed: int,
        lives_lost: int,
        zombies_spawned: int | None = None,
    ) -> None:
        if not self.enabled:
            return
        wave = self.counters().wave
        event = WaveEvent(
            wave=wave,
            start_time=self._wave_started_at,
            end_time=self.clock(),
            zombies_spawned=0 if zombies_spawned is None else int(zombies_spawned),
            zombies_killed=int(zombies_killed),
            lives_lost=int(lives_lost),
        )
        self.wave_events.append(event)
        self._perform_wave_analysis(event)
        logger.info("Wave %d complete: %d killed, %d lives lost", wave, event.zombies_killed, event.lives_lost)

    def _track_tower(self, action: TowerAction, tower_type: str, cost: float, level: int) -> None:
        self.tower_events.append(
            TowerEvent(
                time=self.clock(),
                wave=self.counters().wave,
                action=action,
                tower_type=tower_type,
                cost=float(cost),
                level=level,
            )
        )

    def track_tower_placed(self, tower_type: str, cost: float) -> None:
        if not self.enabled:
            return
        self._track_tower(TowerAction.PLACED, tower_type, cost, 1)
        self.track_economy(EconomyAction.BUILD, cost)

    def track_tower_upgraded(self, tower_type: str, cost: float, level: int) -> None:
        if not self.enabled:
            return
        self._track_tower(TowerAction.UPGRADED, tower_type, cost, level)
        self.track_economy(EconomyAction.UPGRADE, cost)

    def track_tower_sold(self, tower_type: str, refund: float) -> None:
        if not self.enabled:
            return
        self._track_tower(TowerAction.SOLD, tower_type, -refund, 0)
        self.track_economy(EconomyAction.SELL, refund)

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------
    def total_damage(self) -> float:
        return sum(event.damage for event in self.damage_events)

    def total_money_spent(self) -> float:
        return sum(
            event.amount
            for event in self.economy_events
            if event.action in (EconomyAction.BUILD, EconomyAction.UPGRADE)
        )

    def total_money_earned(self) -> float:
        return sum(event.amount for event in self.economy_events if event.action is EconomyAction.EARN)

    def damage_per_dollar(self) -> float:
        spent = self.total_money_spent()
        if spent == 0:
            return 0.0
        return self.total_damage() / spent

    def current_dps(self) -> float:
        now = self.clock()
        window = self.config.tracking.dps_window_s
        recent = [event for event in self.damage_events if now - event.time < window]
        if not recent:
            return 0.0
        span = now - recent[0].time
        return sum(event.damage for event in recent) / span if span > 0 else 0.0

    def survival_rate(self) -> float:
        return self.counters().lives / self.config.tracking.starting_lives * 100.0

    def overkill_percent(self) -> float:
        total = self.total_damage()
        if total == 0:
            return 0.0
        return sum(event.overkill for event in self.damage_events) / total * 100.0

    def economy_efficiency(self) -> float:
        spent = self.total_money_spent()
        if spent == 0:
            return 100.0
        return self.total_money_earned() / spent * 100.0

    def damage_by_tower_type(self) -> Dict[str, float]:
        totals: Dict[str, float] = defaultdict(float)
        for event in self.damage_events:
            totals[event.tower_type] += event.damage
        return dict(totals)

    def tower_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = defaultdict(int)
        for event in self.tower_events:
            if event.action is TowerAction.PLACED:
                counts[event.tower_type] += 1
            elif event.action is TowerAction.SOLD:
                counts[event.tower_type] = max(0, counts[event.tower_type] - 1)
        return {key: value for key, value in counts.items() if value > 0}

    def snapshot(self) -> BalanceSnapshot:
        return BalanceSnapshot(
            damage_per_dollar=self.damage_per_dollar(),
            survival_rate=self.survival_rate(),
            overkill_percent=self.overkill_percent(),
            economy_efficiency=self.economy_efficiency(),
        )

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------
    def update(self) -> bool:
        """Run the throttled real-time analysis if its interval has elapsed."""
        if not self.enabled:
            return False
        now = self.clock()
        if now - self._last_analysis_at < self.config.tracking.analysis_interval_s:
            return False
        self.perform_real_time_analysis()
        self._last_analysis_at = now
        return True

    def perform_real_time_analysis(self) -> List[BalanceIssue]:
        started = self.timer()
        self.balance_issues = detect_balance_issues(self.snapshot(), self.config.thresholds)
        self._log_issues(self.balance_issues)
        self._record_timing(started)
        return list(self.balance_issues)

    def _perform_wave_analysis(self, event: WaveEvent) -> None:
        started = self.timer()

        kill_rate = event.kill_rate
        if self.controller is not None and kill_rate is None:
            logger.warning("Wave %d has no spawn count; difficulty not adjusted", event.wave)
        elif self.controller is not None:
            self.controller.update_performance_metrics(
                kill_rate=kill_rate,
                lives_lost=event.lives_lost,
                resource_efficiency=self.economy_efficiency(),
            )

        if len(self.wave_events) >= self.config.statistics.min_data_points:
            series = [(float(item.wave), float(item.zombies_killed)) for item in self.wave_events]
            self.trend = self.statistics.analyze_trend(series)
            current = self.counters().wave
            horizon = self.config.statistics.prediction_wave_count
            self.predictions = self.statistics.predict_wave_difficulty(
                series, [current + offset for offset in range(1, horizon + 1)]
            )
            logger.info("Trend: %s (confidence %s)", self.trend.trend.value, self.trend.confidence.value)

        self._record_timing(started)

    def _wave_averages(self, wave: int) -> Tuple[float, float]:
        groups = self.composer.build_wave(wave)
        total = sum(group.count for group in groups)
        if total <= 0:
            return 0.0, 0.0
        hp = sum(group.count * self.composer.calculate_zombie_health(group.enemy_type, wave) for group in groups)
        reward = sum(group.count * self.composer.profile(group.enemy_type).reward for group in groups)
        return hp / total, reward / total

    def perform_end_game_analysis(self) -> List[BalanceIssue]:
        started = self.timer()
        thresholds = self.config.thresholds
        wave = max(1, self.counters().wave)
        extra: List[BalanceIssue] = []

        damage_values = [event.damage for event in self.damage_events]
        if damage_values:
            self.outliers = self.statistics.detect_outliers(damage_values)

        average_hp, average_reward = self._wave_averages(wave)
        counts = self.tower_counts()
        self.tower_efficiencies = {}
        for tower_type in counts:
            tower = self.config.tower(tower_type)
            if tower is None:
                logger.warning("No stats configured for tower type %r", tower_type)
                continue
            self.tower_efficiencies[tower_type] = analyze_tower(tower, average_hp, average_reward)
        extra.extend(detect_pricing_issues(self.tower_efficiencies.values(), thresholds))

        extra.extend(detect_threat_issues(self.composer.threat_scores(wave), thresholds))

        if len(self.wave_events) >= self.config.statistics.min_data_points:
            killed = [float(item.zombies_killed) for item in self.wave_events]
            spikes = self.statistics.detect_outliers(killed)
            extra.extend(detect_difficulty_spikes(killed, [item.wave for item in self.wave_events], spikes))

        if counts:
            optimal = get_optimal_tower_mix(
                self.total_money_spent(), self.config.towers, self.config.diminishing.duplicate_decay
            )
            extra.extend(detect_mix_issues(counts, optimal, thresholds))

        next_wave = wave + 1
        total_dps = 0.0
        for tower_type, count in counts.items():
            tower = self.config.tower(tower_type)
            if tower is not None:
                total_dps += count * tower.dps
        self.wave_defense.append(
            can_defend_wave(
                total_dps,
                self.composer.wave_hit_points(next_wave),
                self.composer.average_speed(next_wave),
                self.config.tracking.path_length,
                next_wave,
            )
        )

        snapshot_issues = detect_balance_issues(self.snapshot(), thresholds)
        self.balance_issues = snapshot_issues + extra
        self._log_issues(self.balance_issues)
        self._record_timing(started)
        logger.info("End-game analysis complete with %d issue(s)", len(self.balance_issues))
        return list(self.balance_issues)

    def _log_issues(self, issues: List[BalanceIssue]) -> None:
        if not issues:
            logger.debug("Balance check: no issues detected")
            return
        for issue in issues:
            logger.warning(
                "[%s] %s: %s (value %.2f, threshold %g)",
                issue.severity.value,
                issue.type.value,
                issue.message,
                issue.value,
                issue.threshold,
            )

    def _record_timing(self, started: float) -> None:
        elapsed_ms = (self.timer() - started) * 1000.0
        self._analysis_count += 1
        self._analysis_total_ms += elapsed_ms
        self._analysis_max_ms = max(self._analysis_max_ms, elapsed_ms)
        self._analysis_last_ms = elapsed_ms
        if elapsed_ms > self.config.tracking.max_analysis_ms:
            logger.warning(
                "Balance analysis took %.2fms (target: <%gms)", elapsed_ms, self.config.tracking.max_analysis_ms
            )

    def performance_stats(self) -> AnalysisTiming:
        average = self._analysis_total_ms / self._analysis_count if self._analysis_count else 0.0
        return AnalysisTiming(
            analysis_count=self._analysis_count,
            avg_analysis_ms=average,
            max_analysis_ms=self._analysis_max_ms,
            last_analysis_ms=self._analysis_last_ms,
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def generate_report(self) -> BalanceReport:
        counters = self.counters()
        damage_per_dollar = self.damage_per_dollar()
        survival_rate = self.survival_rate()
        economy_efficiency = self.economy_efficiency()
        summary = {
            "wave": counters.wave,
            "total_damage": self.total_damage(),
            "total_money_spent": self.total_money_spent(),
            "total_money_earned": self.total_money_earned(),
            "damage_per_dollar": damage_per_dollar,
            "current_dps": self.current_dps(),
            "survival_rate": survival_rate,
            "overkill_percent": self.overkill_percent(),
            "economy_efficiency": economy_efficiency,
            "ratings": {
                "damage_per_dollar": rate_damage_per_dollar(damage_per_dollar).value,
                "economy_efficiency": rate_economy_efficiency(economy_efficiency).value,
                "survival_rate": rate_survival_rate(survival_rate).value,
                "wave_progression": rate_wave_progression(counters.wave).value,
            },
        }
        return BalanceReport(
            session_id=self.session_id,
            duration_s=self.clock() - self.start_time if self.session_id else 0.0,
            summary=summary,
            event_counts={
                "damage_events": len(self.damage_events),
                "economy_events": len(self.economy_events),
                "wave_events": len(self.wave_events),
                "tower_events": len(self.tower_events),
            },
            balance_issues=tuple(self.balance_issues),
            overall_rating=overall_rating(self.balance_issues),
            wave_defense=tuple(self.wave_defense),
            tower_efficiencies=dict(self.tower_efficiencies),
            damage_by_type=self.damage_by_tower_type(),
            outliers=self.outliers,
            trend=self.trend,
            predictions=tuple(self.predictions),
            difficulty_multiplier=self.controller.multiplier if self.controller is not None else None,
            timing=self.performance_stats(),
        )
