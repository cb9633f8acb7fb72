from __future__ import annotations

import math
from typing import Dict, Iterable, List, Sequence

from .models import (
    BalanceIssue,
    BalanceReport,
    OutlierResult,
    TrendResult,
    WaveDefenseAnalysis,
    WaveEnemyGroup,
    WavePrediction,
)


def _num(value: float, digits: int = 2) -> str:
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return f"{value:.{digits}f}"


def summarize_groups(groups: Sequence[WaveEnemyGroup]) -> str:
    parts = [f"{group.enemy_type} x{group.count}" for group in groups if group.count > 0]
    return ", ".join(parts) if parts else "none"


def format_issue(issue: BalanceIssue, index: int | None = None) -> str:
    prefix = f"#{index} " if index is not None else ""
    lines = [
        f"{prefix}[{issue.severity.value}] {issue.type.value}",
        f"  {issue.message}",
        f"  Current: {_num(issue.value)} | Threshold: {issue.threshold:g}",
    ]
    if issue.recommendation:
        lines.append(f"  Recommendation: {issue.recommendation}")
    return "\n".join(lines)


def format_issues(issues: Iterable[BalanceIssue]) -> str:
    items = list(issues)
    if not items:
        return "No balance issues detected."
    blocks = [format_issue(issue, index) for index, issue in enumerate(items, start=1)]
    blocks.append(f"Total issues: {len(items)}")
    return "\n\n".join(blocks)


def format_trend(trend: TrendResult) -> str:
    text = (
        f"Trend: {trend.trend.value} (slope {_num(trend.slope, 3)}, "
        f"R^2 {_num(trend.r_squared, 3)}, confidence {trend.confidence.value})"
    )
    if trend.error:
        text += f" [error: {trend.error}]"
    return text


def format_outliers(result: OutlierResult) -> str:
    lines = [f"Mean {_num(result.mean)}, std dev {_num(result.standard_deviation)}"]
    if result.error:
        lines.append(f"  error: {result.error}")
    for point in result.outliers:
        lines.append(f"  index {point.index}: {_num(point.value)} ({_num(point.deviation)} sigma)")
    if not result.has_outliers:
        lines.append("  no outliers")
    return "\n".join(lines)


def format_predictions(predictions: Sequence[WavePrediction]) -> str:
    if not predictions:
        return "No predictions."
    lines = [f"{'Wave':<6}{'Predicted':<12}{'Band':<20}"]
    for item in predictions:
        band = f"{_num(item.lower)} - {_num(item.upper)}"
        lines.append(f"{item.wave:<6}{_num(item.predicted_difficulty):<12}{band:<20}")
    return "\n".join(line.rstrip() for line in lines)


def format_defense(analysis: WaveDefenseAnalysis) -> str:
    verdict = "OK" if analysis.can_defend else "FAIL"
    return (
        f"Wave {analysis.wave}: {verdict} | DPS {_num(analysis.total_tower_dps)} | "
        f"HP {_num(analysis.total_zombie_hp, 0)} | margin {_num(analysis.safety_margin, 1)}%\n"
        f"  {analysis.recommendation}"
    )


def format_wave_table(rows: Dict[int, Sequence[WaveEnemyGroup]]) -> str:
    header = f"{'Wave':<6}{'Total':<8}Composition"
    lines = [header, "-" * len(header)]
    for wave, groups in rows.items():
        total = sum(group.count for group in groups)
        lines.append(f"{wave:<6}{total:<8}{summarize_groups(groups)}")
    return "\n".join(lines)


def format_report(report: BalanceReport) -> str:
    lines: List[str] = []
    lines.append(f"Session: {report.session_id or '-'}")
    lines.append(f"Duration: {report.duration_s:.1f}s")
    lines.append(f"Overall rating: {report.overall_rating.value}")
    if report.difficulty_multiplier is not None:
        lines.append(f"Difficulty multiplier: {report.difficulty_multiplier:.2f}")
    lines.append("")

    lines.append("Summary:")
    for key, value in report.summary.items():
        if isinstance(value, dict):
            joined = ", ".join(f"{name}={rating}" for name, rating in value.items())
            lines.append(f"  {key}: {joined}")
        elif isinstance(value, float):
            lines.append(f"  {key}: {_num(value)}")
        else:
            lines.append(f"  {key}: {value}")
    lines.append("")

    if report.damage_by_type:
        lines.append("Damage by tower:")
        for tower_type, damage in sorted(report.damage_by_type.items(), key=lambda item: -item[1]):
            lines.append(f"  {tower_type:<12}{_num(damage)}")
        lines.append("")

    if report.tower_efficiencies:
        lines.append(f"{'Tower':<12}{'Score':<10}{'Eff DPS':<10}Break-even")
        for tower_type, item in report.tower_efficiencies.items():
            lines.append(
                f"{tower_type:<12}{_num(item.efficiency_score):<10}{_num(item.effective_dps):<10}"
                f"{_num(item.break_even_time, 1)}s"
            )
        lines.append("")

    for analysis in report.wave_defense:
        lines.append(format_defense(analysis))
    if report.wave_defense:
        lines.append("")

    if report.trend is not None:
        lines.append(format_trend(report.trend))
    if report.predictions:
        lines.append(format_predictions(report.predictions))
    if report.outliers is not None:
        lines.append("Damage outliers: " + format_outliers(report.outliers))
    lines.append("")

    lines.append(format_issues(report.balance_issues))
    timing = report.timing
    lines.append("")
    lines.append(
        f"Analysis passes: {timing.analysis_count} "
        f"(avg {timing.avg_analysis_ms:.3f}ms, max {timing.max_analysis_ms:.3f}ms)"
    )
    return "\n".join(lines).rstrip()
