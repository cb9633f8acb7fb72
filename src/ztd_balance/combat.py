"""Closed-form combat balance model.

Every function here is pure and total: degenerate inputs (zero DPS, zero
cost, empty collections) map to documented sentinels such as ``0.0`` or
``math.inf`` instead of raising.
"""

from __future__ import annotations

import math
from collections import Counter
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .config import BalanceThresholds
from .models import (
    BalanceIssue,
    BalanceRating,
    BalanceSnapshot,
    IssueType,
    OutlierResult,
    Severity,
    ThreatScore,
    TowerEfficiency,
    TowerStats,
    WaveDefenseAnalysis,
)


def severity_for_deviation(value: float, threshold: float, *, is_floor: bool) -> Severity:
    """Band how far ``value`` sits past ``threshold``, in percent of the threshold."""
    if threshold == 0:
        return Severity.CRITICAL
    if is_floor:
        deviation = (threshold - value) / abs(threshold) * 100.0
    else:
        deviation = (value - threshold) / abs(threshold) * 100.0

    if deviation < 10:
        return Severity.LOW
    if deviation < 25:
        return Severity.MEDIUM
    if deviation < 50:
        return Severity.HIGH
    return Severity.CRITICAL


def _defense_recommendation(safety_margin: float) -> str:
    if safety_margin >= 50:
        return f"Excellent defense with {safety_margin:.1f}% safety margin. Consider saving money for future waves."
    if safety_margin >= 20:
        return f"Good defense with {safety_margin:.1f}% safety margin. Defense is adequate."
    if safety_margin >= 0:
        return f"Marginal defense with only {safety_margin:.1f}% safety margin. Consider upgrading towers."
    if safety_margin >= -20:
        return f"Weak defense, deficit of {abs(safety_margin):.1f}%. Upgrade towers immediately."
    return f"Critical defense failure, deficit of {abs(safety_margin):.1f}%. Build more towers urgently."


def can_defend_wave(
    total_dps: float,
    zombie_hp: float,
    zombie_speed: float,
    path_length: float,
    wave: int,
) -> WaveDefenseAnalysis:
    if zombie_speed <= 0:
        time_to_reach_end = math.inf
        damage_dealt = math.inf if total_dps > 0 else 0.0
    else:
        time_to_reach_end = path_length / zombie_speed
        damage_dealt = total_dps * time_to_reach_end

    if zombie_hp <= 0:
        can_defend = True
        safety_margin = math.inf
    else:
        can_defend = damage_dealt >= zombie_hp
        safety_margin = (damage_dealt - zombie_hp) / zombie_hp * 100.0

    return WaveDefenseAnalysis(
        wave=wave,
        can_defend=can_defend,
        total_zombie_hp=zombie_hp,
        total_tower_dps=total_dps,
        time_to_reach_end=time_to_reach_end,
        damage_dealt=damage_dealt,
        damage_required=zombie_hp,
        safety_margin=safety_margin,
        recommendation=_defense_recommendation(safety_margin),
    )


def calculate_efficiency_score(
    dps: float,
    tower_range: float,
    accuracy: float,
    build_cost: float,
    upgrade_cost: float = 0.0,
) -> float:
    total_cost = build_cost + upgrade_cost
    if total_cost <= 0:
        return 0.0
    return dps * tower_range * accuracy / total_cost


def apply_diminishing_returns(
    stat_value: float,
    stack_count: int,
    diminishing_factor: float = 100.0,
    cap: float = 0.5,
) -> float:
    if stack_count <= 1:
        return stat_value
    if stat_value <= 0 or stat_value + diminishing_factor <= 0:
        return 0.0
    return stat_value / (stat_value + diminishing_factor) * cap * stack_count


def calculate_threat_score(
    health: float,
    speed: float,
    count: int,
    reward: float,
    zombie_type: str,
    balanced_min: float = 0.8,
    balanced_max: float = 1.2,
) -> ThreatScore:
    if reward <= 0:
        threat_score = math.inf
        threat_per_dollar = math.inf
    else:
        threat_score = health * speed * count / (reward * 10.0)
        threat_per_dollar = health * speed / reward

    return ThreatScore(
        zombie_type=zombie_type,
        health=health,
        speed=speed,
        count=count,
        reward=reward,
        threat_score=threat_score,
        threat_per_dollar=threat_per_dollar,
        is_balanced=balanced_min <= threat_score <= balanced_max,
    )


def calculate_effective_dps(nominal_dps: float, average_zombie_hp: float, damage_per_hit: float) -> float:
    if damage_per_hit <= 0 or average_zombie_hp <= 0:
        return nominal_dps

    shots_to_kill = math.ceil(average_zombie_hp / damage_per_hit)
    dealt = shots_to_kill * damage_per_hit
    wasted = dealt - average_zombie_hp
    return nominal_dps * (1.0 - wasted / dealt)


def calculate_break_even_point(
    tower_cost: float,
    tower_dps: float,
    average_zombie_reward: float,
    average_zombie_hp: float,
) -> float:
    if tower_dps <= 0 or average_zombie_hp <= 0:
        return math.inf

    kill_time = average_zombie_hp / tower_dps
    revenue_per_second = average_zombie_reward / kill_time
    if revenue_per_second <= 0:
        return math.inf
    return tower_cost / revenue_per_second


def analyze_tower_efficiency(
    tower_type: str,
    cost: float,
    dps: float,
    tower_range: float,
    accuracy: float,
    damage_per_hit: float,
    average_zombie_hp: float,
    average_zombie_reward: float,
) -> TowerEfficiency:
    return TowerEfficiency(
        tower_type=tower_type,
        cost=cost,
        dps=dps,
        range=tower_range,
        accuracy=accuracy,
        efficiency_score=calculate_efficiency_score(dps, tower_range, accuracy, cost, 0.0),
        effective_dps=calculate_effective_dps(dps, average_zombie_hp, damage_per_hit),
        break_even_time=calculate_break_even_point(cost, dps, average_zombie_reward, average_zombie_hp),
    )


def analyze_tower(tower: TowerStats, average_zombie_hp: float, average_zombie_reward: float) -> TowerEfficiency:
    return analyze_tower_efficiency(
        tower.tower_type,
        tower.cost,
        tower.dps,
        tower.range,
        tower.accuracy,
        tower.damage_per_hit,
        average_zombie_hp,
        average_zombie_reward,
    )


def get_optimal_tower_mix(
    budget: float,
    towers: Sequence[TowerStats],
    duplicate_decay: float = 0.9,
) -> Dict[str, int]:
    mix: Dict[str, int] = {tower.tower_type: 0 for tower in towers}
    candidates = [tower for tower in towers if tower.cost > 0]
    remaining = budget

    while remaining > 0:
        best: Optional[TowerStats] = None
        best_utility = -math.inf
        for tower in candidates:
            if tower.cost > remaining:
                continue
            base_efficiency = tower.dps * tower.range / tower.cost
            utility = base_efficiency * duplicate_decay ** mix[tower.tower_type]
            if best is None or utility > best_utility:
                best = tower
                best_utility = utility

        if best is None:
            break
        mix[best.tower_type] += 1
        remaining -= best.cost

    return mix


# ---------------------------------------------------------------------------
# Issue detection
# ---------------------------------------------------------------------------
def detect_balance_issues(
    snapshot: BalanceSnapshot,
    thresholds: BalanceThresholds | None = None,
) -> List[BalanceIssue]:
    limits = thresholds or BalanceThresholds()
    issues: List[BalanceIssue] = []

    if snapshot.damage_per_dollar < limits.damage_per_dollar_min:
        issues.append(
            BalanceIssue(
                type=IssueType.INEFFICIENT_TOWERS,
                severity=severity_for_deviation(
                    snapshot.damage_per_dollar, limits.damage_per_dollar_min, is_floor=True
                ),
                message=(
                    f"Damage per dollar is {snapshot.damage_per_dollar:.1f}, "
                    f"below threshold of {limits.damage_per_dollar_min:g}"
                ),
                value=snapshot.damage_per_dollar,
                threshold=limits.damage_per_dollar_min,
                recommendation=(
                    "Build fewer towers and upgrade existing ones more. Focus on cost-effective tower types."
                ),
            )
        )

    if snapshot.survival_rate < limits.survival_rate_min:
        issues.append(
            BalanceIssue(
                type=IssueType.WEAK_DEFENSE,
                severity=severity_for_deviation(snapshot.survival_rate, limits.survival_rate_min, is_floor=True),
                message=(
                    f"Survival rate is {snapshot.survival_rate:.1f}%, "
                    f"below threshold of {limits.survival_rate_min:g}%"
                ),
                value=snapshot.survival_rate,
                threshold=limits.survival_rate_min,
                recommendation=(
                    "Build more towers or upgrade existing towers. Focus on high-DPS towers in critical positions."
                ),
            )
        )

    if snapshot.overkill_percent > limits.overkill_percent_max:
        issues.append(
            BalanceIssue(
                type=IssueType.EXCESSIVE_OVERKILL,
                severity=severity_for_deviation(
                    snapshot.overkill_percent, limits.overkill_percent_max, is_floor=False
                ),
                message=(
                    f"Overkill percentage is {snapshot.overkill_percent:.1f}%, "
                    f"above threshold of {limits.overkill_percent_max:g}%"
                ),
                value=snapshot.overkill_percent,
                threshold=limits.overkill_percent_max,
                recommendation=(
                    "Spread towers out more or use different tower types. Avoid stacking damage in one area."
                ),
            )
        )

    if snapshot.economy_efficiency < limits.economy_efficiency_min:
        issues.append(
            BalanceIssue(
                type=IssueType.NEGATIVE_ECONOMY,
                severity=severity_for_deviation(
                    snapshot.economy_efficiency, limits.economy_efficiency_min, is_floor=True
                ),
                message=(
                    f"Economy efficiency is {snapshot.economy_efficiency:.1f}%, "
                    f"below threshold of {limits.economy_efficiency_min:g}%"
                ),
                value=snapshot.economy_efficiency,
                threshold=limits.economy_efficiency_min,
                recommendation=(
                    "Spending more than earning. Build fewer towers per wave and focus on income generation."
                ),
            )
        )

    return issues


def detect_pricing_issues(
    efficiencies: Iterable[TowerEfficiency],
    thresholds: BalanceThresholds | None = None,
) -> List[BalanceIssue]:
    limits = thresholds or BalanceThresholds()
    issues: List[BalanceIssue] = []
    for item in efficiencies:
        if math.isinf(item.break_even_time):
            continue
        if item.break_even_time > limits.break_even_time_max:
            issues.append(
                BalanceIssue(
                    type=IssueType.OVERPRICED_TOWER,
                    severity=severity_for_deviation(
                        item.break_even_time, limits.break_even_time_max, is_floor=False
                    ),
                    message=(
                        f"{item.tower_type} needs {item.break_even_time:.1f}s to break even, "
                        f"above {limits.break_even_time_max:g}s"
                    ),
                    value=item.break_even_time,
                    threshold=limits.break_even_time_max,
                    recommendation=f"Lower the cost of {item.tower_type} or raise its damage output.",
                )
            )
        elif item.break_even_time < limits.break_even_time_min:
            issues.append(
                BalanceIssue(
                    type=IssueType.UNDERPRICED_TOWER,
                    severity=severity_for_deviation(
                        item.break_even_time, limits.break_even_time_min, is_floor=True
                    ),
                    message=(
                        f"{item.tower_type} breaks even in {item.break_even_time:.1f}s, "
                        f"below {limits.break_even_time_min:g}s"
                    ),
                    value=item.break_even_time,
                    threshold=limits.break_even_time_min,
                    recommendation=f"Raise the cost of {item.tower_type} or reduce its damage output.",
                )
            )
    return issues


def detect_threat_issues(
    scores: Iterable[ThreatScore],
    thresholds: BalanceThresholds | None = None,
) -> List[BalanceIssue]:
    limits = thresholds or BalanceThresholds()
    issues: List[BalanceIssue] = []
    for score in scores:
        if score.count <= 0 or limits.threat_score_min <= score.threat_score <= limits.threat_score_max:
            continue
        too_strong = score.threat_score > limits.threat_score_max
        threshold = limits.threat_score_max if too_strong else limits.threat_score_min
        severity = (
            Severity.CRITICAL
            if math.isinf(score.threat_score)
            else severity_for_deviation(score.threat_score, threshold, is_floor=not too_strong)
        )
        issues.append(
            BalanceIssue(
                type=IssueType.IMBALANCED_THREAT,
                severity=severity,
                message=(
                    f"{score.zombie_type} threat score {score.threat_score:.2f} is outside "
                    f"[{limits.threat_score_min:g}, {limits.threat_score_max:g}]"
                ),
                value=score.threat_score,
                threshold=threshold,
                recommendation=(
                    f"Raise the reward for {score.zombie_type} or weaken it."
                    if too_strong
                    else f"Lower the reward for {score.zombie_type} or make it tougher."
                ),
            )
        )
    return issues


def detect_difficulty_spikes(
    values: Sequence[float],
    waves: Sequence[int],
    outliers: OutlierResult,
) -> List[BalanceIssue]:
    issues: List[BalanceIssue] = []
    for point in outliers.outliers:
        wave = waves[point.index] if point.index < len(waves) else point.index + 1
        harder = point.value > outliers.mean
        issues.append(
            BalanceIssue(
                type=IssueType.DIFFICULTY_SPIKE,
                severity=severity_for_deviation(point.value, outliers.mean, is_floor=not harder),
                message=(
                    f"Wave {wave} difficulty {point.value:.1f} is {point.deviation:.1f} standard "
                    f"deviations from the mean {outliers.mean:.1f}"
                ),
                value=point.value,
                threshold=outliers.mean,
                recommendation=(
                    f"Smooth the composition around wave {wave}; "
                    + ("it is much harder than its neighbours." if harder else "it is much easier than its neighbours.")
                ),
            )
        )
    return issues


def _shares(mix: Mapping[str, int]) -> Dict[str, float]:
    total = sum(max(0, count) for count in mix.values())
    if total <= 0:
        return {key: 0.0 for key in mix}
    return {key: max(0, count) / total * 100.0 for key, count in mix.items()}


def detect_mix_issues(
    actual_mix: Mapping[str, int],
    optimal_mix: Mapping[str, int],
    thresholds: BalanceThresholds | None = None,
) -> List[BalanceIssue]:
    limits = thresholds or BalanceThresholds()
    if sum(actual_mix.values()) <= 0:
        return []

    actual = _shares(actual_mix)
    optimal = _shares(optimal_mix)
    issues: List[BalanceIssue] = []
    for tower_type in sorted(set(actual) | set(optimal)):
        deviation = abs(actual.get(tower_type, 0.0) - optimal.get(tower_type, 0.0))
        if deviation <= limits.optimal_mix_deviation_max:
            continue
        issues.append(
            BalanceIssue(
                type=IssueType.SUBOPTIMAL_MIX,
                severity=severity_for_deviation(deviation, limits.optimal_mix_deviation_max, is_floor=False),
                message=(
                    f"{tower_type} makes up {actual.get(tower_type, 0.0):.0f}% of towers, "
                    f"optimal share is {optimal.get(tower_type, 0.0):.0f}%"
                ),
                value=deviation,
                threshold=limits.optimal_mix_deviation_max,
                recommendation=f"Rebalance tower purchases toward the optimal share of {tower_type}.",
            )
        )
    return issues


# ---------------------------------------------------------------------------
# Ratings
# ---------------------------------------------------------------------------
def _rate(value: float, excellent: float, good: float, fair: float) -> BalanceRating:
    if value >= excellent:
        return BalanceRating.EXCELLENT
    if value >= good:
        return BalanceRating.GOOD
    if value >= fair:
        return BalanceRating.FAIR
    return BalanceRating.POOR


def rate_damage_per_dollar(value: float) -> BalanceRating:
    return _rate(value, 100.0, 50.0, 25.0)


def rate_economy_efficiency(value: float) -> BalanceRating:
    return _rate(value, 150.0, 120.0, 100.0)


def rate_survival_rate(value: float) -> BalanceRating:
    return _rate(value, 100.0, 80.0, 50.0)


def rate_wave_progression(wave: int) -> BalanceRating:
    if wave < 5:
        return BalanceRating.CRITICAL
    return _rate(wave, 20.0, 15.0, 10.0)


def overall_rating(issues: Iterable[BalanceIssue]) -> BalanceRating:
    counts = Counter(issue.severity for issue in issues)
    if counts[Severity.CRITICAL]:
        return BalanceRating.CRITICAL
    if counts[Severity.HIGH] >= 2:
        return BalanceRating.POOR
    if counts[Severity.HIGH] == 1 or counts[Severity.MEDIUM] >= 3:
        return BalanceRating.FAIR
    if counts[Severity.MEDIUM]:
        return BalanceRating.GOOD
    return BalanceRating.EXCELLENT
