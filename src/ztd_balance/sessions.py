from __future__ import annotations

import csv
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from .analysis import StatisticalEngine, StatisticsBackend
from .config import EngineConfig
from .models import BalanceReport
from .tracking import BalanceTracker, EconomyAction, LiveCounters
from .waves import DifficultyController, WaveComposer

logger = logging.getLogger(__name__)


class SessionError(RuntimeError):
    """Raised when a recorded session payload is malformed."""


EVENT_TYPES = frozenset(
    {
        "damage",
        "economy",
        "wave_start",
        "wave_complete",
        "tower_placed",
        "tower_upgraded",
        "tower_sold",
    }
)

_NUMERIC_FIELDS = (
    "time",
    "wave",
    "money",
    "lives",
    "damage",
    "killed",
    "spawned",
    "lives_lost",
    "overkill",
    "amount",
    "cost",
    "refund",
    "level",
)


@dataclass(slots=True, frozen=True)
class SessionRecord:
    session_id: str
    source: str
    counters: Dict[str, float]
    events: Tuple[Dict[str, Any], ...] = field(default_factory=tuple)


@dataclass(slots=True)
class _ReplayState:
    wave: int
    money: float
    lives: int
    now: float = 0.0

    def counters(self) -> LiveCounters:
        return LiveCounters(wave=self.wave, money=self.money, lives=self.lives)

    def clock(self) -> float:
        return self.now

    def apply(self, event: Dict[str, Any]) -> None:
        self.now = float(event.get("time", self.now + 1.0))
        if "wave" in event:
            self.wave = int(event["wave"])
        if "money" in event:
            self.money = float(event["money"])
        if "lives" in event:
            self.lives = int(event["lives"])
        elif event.get("type") == "wave_complete":
            self.lives = max(0, self.lives - int(event.get("lives_lost", 0)))


def _validate_event(raw: Any, index: int) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise SessionError(f"Event #{index} must be an object.")
    kind = str(raw.get("type", "")).strip().lower()
    if kind not in EVENT_TYPES:
        raise SessionError(f"Event #{index} has unknown type {raw.get('type')!r}.")
    event = dict(raw)
    event["type"] = kind
    for key in _NUMERIC_FIELDS:
        if key in event:
            try:
                event[key] = float(event[key])
            except (TypeError, ValueError) as exc:
                raise SessionError(f"Event #{index}: field '{key}' must be numeric.") from exc
    if kind == "economy":
        try:
            event["action"] = EconomyAction(str(event.get("action", "")).upper()).value
        except ValueError as exc:
            raise SessionError(f"Event #{index}: unknown economy action {event.get('action')!r}.") from exc
    return event


class SessionStore:
    def __init__(self, project_root: Optional[Path] = None):
        if project_root is None:
            project_root = Path(__file__).resolve().parents[2]
        self.project_root = project_root
        self.sessions_dir = self.project_root / "runtime" / "sessions"
        self.reports_dir = self.project_root / "runtime" / "reports"
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self.reports_dir.mkdir(parents=True, exist_ok=True)

    def _session_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}.json"

    def import_payload(self, payload_format: str, content: str) -> SessionRecord:
        normalized = payload_format.strip().lower()
        if normalized not in {"json", "csv"}:
            raise SessionError("Unsupported session format. Use json or csv.")

        counters, events = self._parse_json(content) if normalized == "json" else self._parse_csv(content)
        session_id = f"session-{int(time.time())}-{uuid4().hex[:8]}"
        session = SessionRecord(session_id=session_id, source=normalized, counters=counters, events=tuple(events))

        self._session_path(session_id).write_text(
            json.dumps(
                {
                    "session_id": session.session_id,
                    "source": session.source,
                    "counters": session.counters,
                    "events": list(session.events),
                },
                ensure_ascii=False,
                indent=2,
            ),
            encoding="utf-8",
        )
        logger.info("Imported %s session %s with %d events", normalized, session_id, len(events))
        return session

    def import_file(self, path: Path | str) -> SessionRecord:
        path = Path(path)
        if not path.exists():
            raise SessionError(f"Session file not found: {path}")
        suffix = path.suffix.lower().lstrip(".")
        return self.import_payload(suffix, path.read_text(encoding="utf-8"))

    def load_session(self, session_id: str) -> SessionRecord:
        path = self._session_path(session_id)
        if not path.exists():
            raise SessionError(f"Session not found: {session_id}")
        payload = json.loads(path.read_text(encoding="utf-8"))
        return SessionRecord(
            session_id=session_id,
            source=str(payload.get("source", "json")),
            counters=dict(payload.get("counters", {})),
            events=tuple(payload.get("events", [])),
        )

    def replay(
        self,
        session: SessionRecord,
        config: EngineConfig | None = None,
        backend: StatisticsBackend | None = None,
    ) -> BalanceReport:
        config = config or EngineConfig.default()
        state = _ReplayState(
            wave=int(session.counters.get("wave", 1)),
            money=float(session.counters.get("money", 0.0)),
            lives=int(session.counters.get("lives", config.tracking.starting_lives)),
            now=float(session.counters.get("time", 0.0)),
        )
        controller = DifficultyController(config)
        tracker = BalanceTracker(
            counters=state.counters,
            config=config,
            statistics=StatisticalEngine(backend=backend, params=config.statistics),
            controller=controller,
            composer=WaveComposer(controller),
            clock=state.clock,
        )
        tracker.enable()

        for event in session.events:
            state.apply(event)
            self._dispatch(tracker, event)
            tracker.update()

        tracker.perform_end_game_analysis()
        return tracker.generate_report()

    @staticmethod
    def _dispatch(tracker: BalanceTracker, event: Dict[str, Any]) -> None:
        kind = event["type"]
        if kind == "damage":
            tracker.track_damage(
                str(event.get("tower_type", "Unknown")),
                float(event.get("damage", 0.0)),
                bool(event.get("killed", False)),
                float(event.get("overkill", 0.0)),
            )
        elif kind == "economy":
            tracker.track_economy(str(event["action"]), float(event.get("amount", 0.0)))
        elif kind == "wave_start":
            tracker.track_wave_start()
        elif kind == "wave_complete":
            spawned = event.get("spawned")
            tracker.track_wave_complete(
                int(event.get("killed", 0)),
                int(event.get("lives_lost", 0)),
                None if spawned is None else int(spawned),
            )
        elif kind == "tower_placed":
            tracker.track_tower_placed(str(event.get("tower_type", "Unknown")), float(event.get("cost", 0.0)))
        elif kind == "tower_upgraded":
            tracker.track_tower_upgraded(
                str(event.get("tower_type", "Unknown")),
                float(event.get("cost", 0.0)),
                int(event.get("level", 2)),
            )
        elif kind == "tower_sold":
            tracker.track_tower_sold(str(event.get("tower_type", "Unknown")), float(event.get("refund", 0.0)))

    def save_report(self, report: BalanceReport) -> Path:
        name = report.session_id or f"report-{int(time.time())}-{uuid4().hex[:8]}"
        path = self.reports_dir / f"{name}.json"
        path.write_text(json.dumps(report.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        return path

    def _parse_json(self, content: str) -> Tuple[Dict[str, float], List[Dict[str, Any]]]:
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as exc:
            raise SessionError(f"Invalid JSON session payload: {exc}") from exc

        if isinstance(payload, list):
            raw_events, raw_counters = payload, {}
        elif isinstance(payload, dict):
            raw_events = payload.get("events", [])
            raw_counters = payload.get("counters", {})
        else:
            raise SessionError("JSON session payload must be a list or an object with events.")

        if not isinstance(raw_counters, dict):
            raise SessionError("Session counters must be an object.")
        counters: Dict[str, float] = {}
        for key in ("wave", "money", "lives", "time"):
            if key in raw_counters:
                try:
                    counters[key] = float(raw_counters[key])
                except (TypeError, ValueError) as exc:
                    raise SessionError(f"Counter '{key}' must be numeric.") from exc

        events = [_validate_event(item, index) for index, item in enumerate(raw_events, start=1)]
        if not events:
            raise SessionError("Session payload contains no events.")
        return counters, events

    def _parse_csv(self, content: str) -> Tuple[Dict[str, float], List[Dict[str, Any]]]:
        rows = list(csv.DictReader(content.splitlines()))
        events: List[Dict[str, Any]] = []
        now = 0.0

        for index, row in enumerate(rows, start=1):
            try:
                wave = int(row.get("wave") or 0)
                spawned = int(row.get("spawned") or 0)
                killed = int(row.get("killed") or 0)
                lives_lost = int(row.get("lives_lost") or 0)
                damage = float(row.get("damage") or 0.0)
                spent = float(row.get("spent") or 0.0)
                earned = float(row.get("earned") or 0.0)
                lives = float(row["lives"]) if (row.get("lives") or "").strip() else None
            except (TypeError, ValueError) as exc:
                raise SessionError(f"CSV row #{index} is malformed: {exc}") from exc

            if wave <= 0:
                raise SessionError(f"CSV row #{index} must have a positive wave number.")

            tower_type = (row.get("tower_type") or "").strip() or "Mixed"
            events.append({"type": "wave_start", "time": now, "wave": wave})
            if damage:
                events.append(
                    {"type": "damage", "time": now + 30.0, "tower_type": tower_type, "damage": damage, "killed": True}
                )
            if spent:
                events.append({"type": "economy", "time": now + 30.0, "action": "BUILD", "amount": spent})
            if earned:
                events.append({"type": "economy", "time": now + 30.0, "action": "EARN", "amount": earned})
            complete: Dict[str, Any] = {
                "type": "wave_complete",
                "time": now + 60.0,
                "killed": killed,
                "spawned": spawned,
                "lives_lost": lives_lost,
            }
            if lives is not None:
                complete["lives"] = lives
            events.append(complete)
            now += 60.0

        if not events:
            raise SessionError("CSV session payload contains no rows.")
        return {}, events
