from __future__ import annotations

import math
import unittest

from ztd_balance.combat import (
    analyze_tower,
    apply_diminishing_returns,
    calculate_break_even_point,
    calculate_effective_dps,
    calculate_efficiency_score,
    calculate_threat_score,
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
    severity_for_deviation,
)
from ztd_balance.models import (
    BalanceIssue,
    BalanceRating,
    BalanceSnapshot,
    IssueType,
    OutlierPoint,
    OutlierResult,
    Severity,
    ThreatScore,
    TowerEfficiency,
    TowerStats,
)


def _efficiency(tower_type: str, break_even_time: float) -> TowerEfficiency:
    return TowerEfficiency(
        tower_type=tower_type,
        cost=100,
        dps=10,
        range=100,
        accuracy=1.0,
        efficiency_score=10,
        effective_dps=10,
        break_even_time=break_even_time,
    )


def _issue(severity: Severity) -> BalanceIssue:
    return BalanceIssue(type=IssueType.WEAK_DEFENSE, severity=severity, message="x")


class DefenseTests(unittest.TestCase):
    def test_adequate_defense(self) -> None:
        result = can_defend_wave(300, 5000, 50, 1000, 5)
        self.assertTrue(result.can_defend)
        self.assertAlmostEqual(result.time_to_reach_end, 20.0)
        self.assertAlmostEqual(result.damage_dealt, 6000.0)
        self.assertAlmostEqual(result.safety_margin, 20.0)
        self.assertEqual(result.damage_required, 5000)
        self.assertTrue(result.recommendation.startswith("Good defense"))

    def test_failing_defense(self) -> None:
        result = can_defend_wave(100, 5000, 50, 1000, 5)
        self.assertFalse(result.can_defend)
        self.assertAlmostEqual(result.safety_margin, -60.0)
        self.assertTrue(result.recommendation.startswith("Critical defense failure"))

    def test_stationary_enemies(self) -> None:
        result = can_defend_wave(10, 5000, 0, 1000, 3)
        self.assertTrue(math.isinf(result.time_to_reach_end))
        self.assertTrue(result.can_defend)

        idle = can_defend_wave(0, 5000, 0, 1000, 3)
        self.assertEqual(idle.damage_dealt, 0.0)
        self.assertFalse(idle.can_defend)

    def test_empty_wave_is_always_defended(self) -> None:
        result = can_defend_wave(0, 0, 50, 1000, 1)
        self.assertTrue(result.can_defend)
        self.assertTrue(math.isinf(result.safety_margin))


class TowerMathTests(unittest.TestCase):
    def test_efficiency_score(self) -> None:
        self.assertAlmostEqual(calculate_efficiency_score(50, 150, 0.85, 100, 0), 63.75)
        self.assertAlmostEqual(calculate_efficiency_score(50, 150, 0.85, 50, 50), 63.75)
        self.assertEqual(calculate_efficiency_score(50, 150, 0.85, 0, 0), 0.0)

    def test_diminishing_returns(self) -> None:
        self.assertEqual(apply_diminishing_returns(100, 1), 100)
        self.assertEqual(apply_diminishing_returns(100, 0), 100)
        stacked = apply_diminishing_returns(100, 3)
        self.assertAlmostEqual(stacked, 0.75)
        self.assertLess(stacked, 300)
        self.assertEqual(apply_diminishing_returns(0, 3), 0.0)

    def test_threat_score(self) -> None:
        score = calculate_threat_score(100, 50, 2, 1000, "Basic")
        self.assertAlmostEqual(score.threat_score, 1.0)
        self.assertAlmostEqual(score.threat_per_dollar, 5.0)
        self.assertTrue(score.is_balanced)

        free = calculate_threat_score(100, 50, 2, 0, "Basic")
        self.assertTrue(math.isinf(free.threat_score))
        self.assertFalse(free.is_balanced)

    def test_effective_dps_discounts_overkill(self) -> None:
        # 4 shots of 30 to kill 100 HP wastes 20 of 120 damage
        self.assertAlmostEqual(calculate_effective_dps(100, 100, 30), 100 * (1 - 20 / 120))
        self.assertEqual(calculate_effective_dps(100, 100, 25), 100)
        self.assertEqual(calculate_effective_dps(100, 100, 0), 100)

    def test_break_even(self) -> None:
        self.assertAlmostEqual(calculate_break_even_point(100, 50, 10, 100), 20.0)
        self.assertTrue(math.isinf(calculate_break_even_point(100, 0, 10, 100)))
        self.assertTrue(math.isinf(calculate_break_even_point(100, 50, 0, 100)))

    def test_analyze_tower_combines_metrics(self) -> None:
        tower = TowerStats("MachineGun", cost=250, dps=96, range=150, accuracy=0.85, damage_per_hit=12)
        result = analyze_tower(tower, average_zombie_hp=120, average_zombie_reward=10)
        self.assertEqual(result.tower_type, "MachineGun")
        self.assertAlmostEqual(result.efficiency_score, 96 * 150 * 0.85 / 250)
        self.assertAlmostEqual(result.effective_dps, 96)
        self.assertAlmostEqual(result.break_even_time, 250 / (10 / (120 / 96)))


class TowerMixTests(unittest.TestCase):
    def setUp(self) -> None:
        self.towers = [
            TowerStats("A", cost=100, dps=10, range=100),
            TowerStats("B", cost=500, dps=100, range=100),
        ]

    def test_greedy_prefers_best_utility(self) -> None:
        self.assertEqual(get_optimal_tower_mix(1000, self.towers), {"A": 0, "B": 2})

    def test_falls_back_to_affordable_towers(self) -> None:
        self.assertEqual(get_optimal_tower_mix(250, self.towers), {"A": 2, "B": 0})

    def test_zero_budget_and_free_towers(self) -> None:
        self.assertEqual(get_optimal_tower_mix(0, self.towers), {"A": 0, "B": 0})
        towers = self.towers + [TowerStats("Free", cost=0, dps=10, range=100)]
        mix = get_optimal_tower_mix(300, towers)
        self.assertEqual(mix["Free"], 0)
        self.assertEqual(mix["A"], 3)

    def test_spend_never_exceeds_budget(self) -> None:
        for budget in (0, 99, 100, 450, 999, 5000):
            mix = get_optimal_tower_mix(budget, self.towers)
            spent = sum(tower.cost * mix[tower.tower_type] for tower in self.towers)
            self.assertLessEqual(spent, budget)


class IssueDetectionTests(unittest.TestCase):
    def test_healthy_snapshot_has_no_issues(self) -> None:
        self.assertEqual(detect_balance_issues(BalanceSnapshot(20, 80, 10, 120)), [])

    def test_low_damage_per_dollar_is_high_severity(self) -> None:
        issues = detect_balance_issues(BalanceSnapshot(10, 80, 10, 120))
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].type, IssueType.INEFFICIENT_TOWERS)
        self.assertEqual(issues[0].severity, Severity.HIGH)
        self.assertEqual(issues[0].threshold, 15)
        self.assertIn("10.0", issues[0].message)

    def test_each_rule_reports_with_banded_severity(self) -> None:
        issues = detect_balance_issues(BalanceSnapshot(20, 20, 16, 80))
        by_type = {issue.type: issue.severity for issue in issues}
        self.assertEqual(
            by_type,
            {
                IssueType.WEAK_DEFENSE: Severity.CRITICAL,
                IssueType.EXCESSIVE_OVERKILL: Severity.LOW,
                IssueType.NEGATIVE_ECONOMY: Severity.MEDIUM,
            },
        )

    def test_thresholds_are_exclusive(self) -> None:
        self.assertEqual(detect_balance_issues(BalanceSnapshot(15, 50, 15, 100)), [])

    def test_severity_bands(self) -> None:
        self.assertEqual(severity_for_deviation(95, 100, is_floor=True), Severity.LOW)
        self.assertEqual(severity_for_deviation(85, 100, is_floor=True), Severity.MEDIUM)
        self.assertEqual(severity_for_deviation(60, 100, is_floor=True), Severity.HIGH)
        self.assertEqual(severity_for_deviation(160, 100, is_floor=False), Severity.CRITICAL)
        self.assertEqual(severity_for_deviation(5, 0, is_floor=True), Severity.CRITICAL)

    def test_pricing_issues(self) -> None:
        issues = detect_pricing_issues(
            [_efficiency("Slow", 40), _efficiency("Cheap", 10), _efficiency("Fine", 20), _efficiency("Idle", math.inf)]
        )
        self.assertEqual(
            [(issue.type, issue.message.split()[0]) for issue in issues],
            [(IssueType.OVERPRICED_TOWER, "Slow"), (IssueType.UNDERPRICED_TOWER, "Cheap")],
        )

    def test_threat_issues(self) -> None:
        scores = [
            ThreatScore("Basic", 101, 50, 7, 10, 353.5, 505, False),
            ThreatScore("Swarm", 50, 60, 4, 100, 0.5, 30, False),
            ThreatScore("Fast", 70, 100, 0, 15, 0.0, 466, False),
            ThreatScore("Tank", 500, 25, 1, 0, math.inf, math.inf, False),
        ]
        issues = detect_threat_issues(scores)
        self.assertEqual([issue.severity for issue in issues], [Severity.CRITICAL, Severity.HIGH, Severity.CRITICAL])
        self.assertTrue(all(issue.type == IssueType.IMBALANCED_THREAT for issue in issues))

    def test_difficulty_spikes(self) -> None:
        outliers = OutlierResult(
            mean=19.0,
            standard_deviation=27.0,
            outliers=(OutlierPoint(value=100.0, index=9, deviation=3.0),),
            has_outliers=True,
        )
        issues = detect_difficulty_spikes([10.0] * 9 + [100.0], list(range(1, 11)), outliers)
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].type, IssueType.DIFFICULTY_SPIKE)
        self.assertIn("Wave 10", issues[0].message)
        self.assertIn("harder", issues[0].recommendation)

    def test_mix_issues(self) -> None:
        issues = detect_mix_issues({"A": 4, "B": 0}, {"A": 0, "B": 2})
        self.assertEqual(len(issues), 2)
        self.assertTrue(all(issue.severity == Severity.CRITICAL for issue in issues))
        self.assertEqual(detect_mix_issues({"A": 1, "B": 1}, {"A": 1, "B": 1}), [])
        self.assertEqual(detect_mix_issues({"A": 0}, {"A": 3}), [])


class RatingTests(unittest.TestCase):
    def test_overall_rating(self) -> None:
        self.assertEqual(overall_rating([]), BalanceRating.EXCELLENT)
        self.assertEqual(overall_rating([_issue(Severity.CRITICAL)]), BalanceRating.CRITICAL)
        self.assertEqual(overall_rating([_issue(Severity.HIGH)] * 2), BalanceRating.POOR)
        self.assertEqual(overall_rating([_issue(Severity.HIGH)]), BalanceRating.FAIR)
        self.assertEqual(overall_rating([_issue(Severity.MEDIUM)] * 3), BalanceRating.FAIR)
        self.assertEqual(overall_rating([_issue(Severity.MEDIUM)]), BalanceRating.GOOD)
        self.assertEqual(overall_rating([_issue(Severity.LOW)] * 4), BalanceRating.EXCELLENT)

    def test_metric_ratings(self) -> None:
        self.assertEqual(rate_damage_per_dollar(120), BalanceRating.EXCELLENT)
        self.assertEqual(rate_damage_per_dollar(60), BalanceRating.GOOD)
        self.assertEqual(rate_damage_per_dollar(10), BalanceRating.POOR)
        self.assertEqual(rate_economy_efficiency(110), BalanceRating.FAIR)
        self.assertEqual(rate_survival_rate(100), BalanceRating.EXCELLENT)
        self.assertEqual(rate_wave_progression(3), BalanceRating.CRITICAL)
        self.assertEqual(rate_wave_progression(16), BalanceRating.GOOD)


if __name__ == "__main__":
    unittest.main()
