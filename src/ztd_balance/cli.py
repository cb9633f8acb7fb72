from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

from .analysis import backend_names, get_backend
from .combat import detect_balance_issues, overall_rating
from .config import ConfigError, EngineConfig, load_config, validate_config
from .formatting import format_issues, format_report, format_wave_table
from .models import BalanceSnapshot, stabilize_numeric_payload
from .sessions import SessionError, SessionStore
from .waves import DifficultyController, WaveComposer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ztd-balance",
        description="Wave composition, difficulty and balance analysis for the zombie tower-defense engine.",
    )
    parser.add_argument("--config", default=None, help="Path to a JSON/YAML engine config (defaults are built in).")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging verbosity.",
    )
    parser.add_argument(
        "--format",
        choices=("table", "json"),
        default="table",
        help="Output format.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    waves = subparsers.add_parser("waves", help="Print wave compositions for a range of waves.")
    waves.add_argument("--start", type=int, default=1, help="First wave to print.")
    waves.add_argument("--end", type=int, default=10, help="Last wave to print.")
    waves.add_argument("--multiplier", type=float, default=None, help="Difficulty multiplier to apply.")
    waves.add_argument(
        "--scaled",
        action="store_true",
        help="Apply count and spawn-rate scaling instead of printing the raw table.",
    )

    check = subparsers.add_parser("check", help="Detect balance issues for four snapshot metrics.")
    check.add_argument("--damage-per-dollar", type=float, required=True)
    check.add_argument("--survival-rate", type=float, required=True)
    check.add_argument("--overkill", type=float, required=True, help="Overkill percentage.")
    check.add_argument("--economy", type=float, required=True, help="Economy efficiency percentage.")

    analyze = subparsers.add_parser("analyze", help="Replay a recorded session (json/csv) and print its report.")
    analyze.add_argument("session", help="Path to the session file.")
    analyze.add_argument("--backend", choices=backend_names(), default="numpy", help="Statistics backend.")
    analyze.add_argument("--root", default=".", help="Directory that receives runtime/sessions and runtime/reports.")
    analyze.add_argument("--save", action="store_true", help="Store the report as JSON under runtime/reports.")
    return parser


def _print_json(payload: Any) -> None:
    json.dump(stabilize_numeric_payload(payload), sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")


def _run_waves(args: argparse.Namespace, config: EngineConfig, parser: argparse.ArgumentParser) -> int:
    if args.start < 1 or args.end < args.start:
        parser.error("Wave range must satisfy 1 <= --start <= --end.")

    if args.multiplier is not None:
        try:
            config = validate_config(
                replace(config, difficulty=replace(config.difficulty, initial_multiplier=args.multiplier))
            )
        except ConfigError as exc:
            parser.error(str(exc))

    controller = DifficultyController(config)
    composer = WaveComposer(controller)
    rows = {}
    for wave in range(args.start, args.end + 1):
        rows[wave] = composer.build_wave(wave) if args.scaled else controller.table.groups_for(wave)

    if args.format == "json":
        _print_json({str(wave): list(groups) for wave, groups in rows.items()})
    else:
        print(format_wave_table(rows))
    return 0


def _run_check(args: argparse.Namespace, config: EngineConfig) -> int:
    snapshot = BalanceSnapshot(
        damage_per_dollar=args.damage_per_dollar,
        survival_rate=args.survival_rate,
        overkill_percent=args.overkill,
        economy_efficiency=args.economy,
    )
    issues = detect_balance_issues(snapshot, config.thresholds)
    if args.format == "json":
        _print_json({"issues": issues, "overall_rating": overall_rating(issues)})
    else:
        print(format_issues(issues))
        print(f"Overall rating: {overall_rating(issues).value}")
    return 0


def _run_analyze(args: argparse.Namespace, config: EngineConfig, parser: argparse.ArgumentParser) -> int:
    store = SessionStore(project_root=Path(args.root).expanduser().resolve())
    try:
        session = store.import_file(args.session)
    except SessionError as exc:
        parser.error(str(exc))
        return 2

    report = store.replay(session, config=config, backend=get_backend(args.backend))
    if args.save:
        path = store.save_report(report)
        logging.getLogger(__name__).info("Report saved to %s", path)

    if args.format == "json":
        _print_json(report.to_dict())
    else:
        print(format_report(report))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = load_config(Path(args.config)) if args.config else EngineConfig.default()
    except ConfigError as exc:
        parser.error(str(exc))
        return 2

    if args.command == "waves":
        return _run_waves(args, config, parser)
    if args.command == "check":
        return _run_check(args, config)
    return _run_analyze(args, config, parser)


if __name__ == "__main__":
    raise SystemExit(main())
