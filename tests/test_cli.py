from __future__ import annotations

import io
import json
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

from ztd_balance.cli import main

SESSION_CSV = """wave,spawned,killed,lives_lost,damage,spent,earned,tower_type
1,10,10,0,1200,250,300,MachineGun
2,12,11,1,1500,0,320,MachineGun
3,15,12,3,1800,400,350,MachineGun
"""


def _run(argv: list[str]) -> tuple[int, str]:
    buffer = io.StringIO()
    with redirect_stdout(buffer):
        code = main(argv)
    return code, buffer.getvalue()


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _assert_usage_error(self, argv: list[str]) -> None:
        with redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit) as ctx:
                main(argv)
        self.assertEqual(ctx.exception.code, 2)

    def test_waves_table(self) -> None:
        code, output = _run(["waves", "--start", "1", "--end", "3"])
        self.assertEqual(code, 0)
        self.assertIn("Composition", output)
        self.assertIn("Basic x7, Fast x3", output)

    def test_waves_json_scaled(self) -> None:
        code, output = _run(["--format", "json", "waves", "--start", "5", "--end", "5", "--scaled", "--multiplier", "1.2"])
        self.assertEqual(code, 0)
        payload = json.loads(output)
        self.assertEqual(list(payload), ["5"])
        counts = {group["enemy_type"]: group["count"] for group in payload["5"]}
        # boss wave: floor(12 * 1.08^5 * 1.2 * 1.2)
        self.assertEqual(counts["Basic"], 25)

    def test_check_table(self) -> None:
        code, output = _run(
            ["check", "--damage-per-dollar", "10", "--survival-rate", "80", "--overkill", "10", "--economy", "120"]
        )
        self.assertEqual(code, 0)
        self.assertIn("[HIGH] INEFFICIENT_TOWERS", output)
        self.assertIn("Overall rating: FAIR", output)

    def test_check_json_healthy(self) -> None:
        code, output = _run(
            [
                "--format", "json", "check",
                "--damage-per-dollar", "20", "--survival-rate", "80", "--overkill", "10", "--economy", "120",
            ]
        )
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(output), {"issues": [], "overall_rating": "EXCELLENT"})

    def test_config_thresholds_apply(self) -> None:
        config = self.root / "strict.json"
        config.write_text(json.dumps({"thresholds": {"damage_per_dollar_min": 25}}), encoding="utf-8")
        code, output = _run(
            [
                "--config", str(config), "--format", "json", "check",
                "--damage-per-dollar", "20", "--survival-rate", "80", "--overkill", "10", "--economy", "120",
            ]
        )
        self.assertEqual(code, 0)
        issues = json.loads(output)["issues"]
        self.assertEqual([issue["type"] for issue in issues], ["INEFFICIENT_TOWERS"])
        self.assertEqual(issues[0]["threshold"], 25.0)

    def test_analyze_session(self) -> None:
        session = self.root / "match.csv"
        session.write_text(SESSION_CSV, encoding="utf-8")
        code, output = _run(["analyze", str(session), "--root", str(self.root), "--backend", "python", "--save"])
        self.assertEqual(code, 0)
        self.assertIn("Overall rating:", output)
        self.assertIn("Trend: GETTING_HARDER", output)
        self.assertEqual(len(list((self.root / "runtime" / "reports").glob("*.json"))), 1)

    def test_analyze_json_output(self) -> None:
        session = self.root / "match.csv"
        session.write_text(SESSION_CSV, encoding="utf-8")
        code, output = _run(["--format", "json", "analyze", str(session), "--root", str(self.root)])
        self.assertEqual(code, 0)
        payload = json.loads(output)
        self.assertEqual(payload["event_counts"]["wave_events"], 3)
        self.assertEqual(payload["damage_by_type"], {"MachineGun": 4500.0})

    def test_usage_errors(self) -> None:
        self._assert_usage_error(["waves", "--start", "5", "--end", "2"])
        self._assert_usage_error(["waves", "--multiplier", "2.0"])
        self._assert_usage_error(["analyze", str(self.root / "missing.csv"), "--root", str(self.root)])
        self._assert_usage_error(["--config", str(self.root / "missing.yaml"), "waves"])
        self._assert_usage_error(["check", "--damage-per-dollar", "10"])


if __name__ == "__main__":
    unittest.main()
