from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .analysis import StatisticalEngine, get_backend
from .combat import can_defend_wave, detect_balance_issues, get_optimal_tower_mix, overall_rating
from .config import EngineConfig, load_config
from .models import (
    BalanceSnapshot,
    ModelError,
    TowerStats,
    stabilize_numeric_payload,
)
from .sessions import SessionError, SessionStore
from .waves import DifficultyController, WaveComposer


def _resolve_project_root() -> Path:
    env_root = os.environ.get("ZTD_BALANCE_ROOT", "").strip()
    if env_root:
        return Path(env_root).expanduser().resolve()
    return Path.cwd()


def _load_engine_config() -> EngineConfig:
    config_path = os.environ.get("ZTD_BALANCE_CONFIG", "").strip()
    if not config_path:
        return EngineConfig.default()
    return load_config(Path(config_path).expanduser())


app = FastAPI(
    title="Zombie TD Balance API",
    description="Wave composition, adaptive difficulty and balance analytics.",
    version="1.0.0",
)
app.state.config = _load_engine_config()
app.state.controller = DifficultyController(app.state.config)
app.state.composer = WaveComposer(app.state.controller)
app.state.statistics = StatisticalEngine(
    backend=get_backend(os.environ.get("ZTD_BALANCE_BACKEND", "numpy")),
    params=app.state.config.statistics,
)
app.state.session_store = None


def _session_store() -> SessionStore:
    if app.state.session_store is None:
        app.state.session_store = SessionStore(project_root=_resolve_project_root())
    return app.state.session_store


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------
class PerformanceRequest(BaseModel):
    kill_rate: float = Field(..., ge=0.0, le=100.0, description="Percent of spawned enemies killed.")
    lives_lost: int = Field(0, ge=0)
    resource_efficiency: float = Field(100.0, description="Income / expenses, percent.")


class SnapshotRequest(BaseModel):
    damage_per_dollar: float
    survival_rate: float
    overkill_percent: float
    economy_efficiency: float


class DefenseRequest(BaseModel):
    wave: int = Field(..., ge=1)
    total_dps: float
    zombie_hp: Optional[float] = Field(default=None, description="Defaults to the composed wave's HP pool.")
    zombie_speed: Optional[float] = Field(default=None, description="Defaults to the wave's average speed.")
    path_length: Optional[float] = None


class TowerInput(BaseModel):
    type: str
    cost: float
    dps: float
    range: float
    accuracy: float = 1.0
    damage_per_hit: float = 0.0


class TowerMixRequest(BaseModel):
    budget: float = Field(..., ge=0.0)
    towers: List[TowerInput] = Field(default_factory=list, description="Defaults to the configured catalogue.")


class OutlierRequest(BaseModel):
    values: List[float] = Field(default_factory=list)
    threshold: Optional[float] = Field(default=None, gt=0.0)


class TrendRequest(BaseModel):
    points: List[List[float]] = Field(default_factory=list, description="[x, y] pairs.")


class ForecastRequest(BaseModel):
    history: List[List[float]] = Field(default_factory=list, description="[wave, difficulty] pairs.")
    future_waves: List[int] = Field(default_factory=list)


class SummaryRequest(BaseModel):
    values: List[float] = Field(default_factory=list)


class SessionImportRequest(BaseModel):
    format: Literal["json", "csv"]
    content: str
    save_report: bool = False


def _pairs(raw: List[List[float]]) -> List[tuple[float, float]]:
    pairs = []
    for index, item in enumerate(raw):
        if len(item) != 2:
            raise HTTPException(status_code=400, detail=f"Point #{index} must be an [x, y] pair.")
        pairs.append((float(item[0]), float(item[1])))
    return pairs


def _difficulty_payload() -> Dict[str, Any]:
    controller: DifficultyController = app.state.controller
    state = controller.state()
    return stabilize_numeric_payload(
        {
            "wave": controller.wave,
            "multiplier": state.multiplier,
            "performance": state.performance,
            "bounds": [controller.rules.floor, controller.rules.ceiling],
        }
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/waves/{wave}")
def wave_composition(wave: int) -> Dict[str, Any]:
    if wave < 1:
        raise HTTPException(status_code=400, detail="Wave must be >= 1.")
    composer: WaveComposer = app.state.composer
    groups = composer.build_wave(wave)
    return stabilize_numeric_payload(
        {
            "wave": wave,
            "multiplier": composer.controller.multiplier,
            "base_groups": composer.controller.table.groups_for(wave),
            "groups": groups,
            "health": {group.enemy_type: composer.calculate_zombie_health(group.enemy_type, wave) for group in groups},
            "damage": {group.enemy_type: composer.calculate_zombie_damage(group.enemy_type, wave) for group in groups},
            "total_hp": composer.wave_hit_points(wave),
            "average_speed": composer.average_speed(wave),
            "threat_scores": composer.threat_scores(wave),
        }
    )


@app.get("/api/v1/difficulty")
def difficulty_state() -> Dict[str, Any]:
    return _difficulty_payload()


@app.post("/api/v1/difficulty/performance")
def update_performance(payload: PerformanceRequest) -> Dict[str, Any]:
    app.state.controller.update_performance_metrics(
        payload.kill_rate,
        payload.lives_lost,
        payload.resource_efficiency,
    )
    return _difficulty_payload()


@app.post("/api/v1/difficulty/next-wave")
def next_wave() -> Dict[str, Any]:
    app.state.controller.next_wave()
    return _difficulty_payload()


@app.post("/api/v1/difficulty/reset")
def reset_difficulty() -> Dict[str, Any]:
    app.state.controller.reset()
    return _difficulty_payload()


@app.post("/api/v1/balance/issues")
def balance_issues(payload: SnapshotRequest) -> Dict[str, Any]:
    try:
        snapshot = BalanceSnapshot.from_dict(payload.model_dump())
    except ModelError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    issues = detect_balance_issues(snapshot, app.state.config.thresholds)
    return stabilize_numeric_payload({"issues": issues, "overall_rating": overall_rating(issues)})


@app.post("/api/v1/balance/defense")
def wave_defense(payload: DefenseRequest) -> Dict[str, Any]:
    composer: WaveComposer = app.state.composer
    hp = composer.wave_hit_points(payload.wave) if payload.zombie_hp is None else payload.zombie_hp
    speed = composer.average_speed(payload.wave) if payload.zombie_speed is None else payload.zombie_speed
    path_length = app.state.config.tracking.path_length if payload.path_length is None else payload.path_length
    analysis = can_defend_wave(payload.total_dps, hp, speed, path_length, payload.wave)
    return stabilize_numeric_payload(analysis)


@app.post("/api/v1/balance/tower-mix")
def tower_mix(payload: TowerMixRequest) -> Dict[str, Any]:
    try:
        towers = (
            [TowerStats.from_dict(item.model_dump()) for item in payload.towers]
            if payload.towers
            else list(app.state.config.towers)
        )
    except ModelError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid tower: {exc}") from exc
    mix = get_optimal_tower_mix(payload.budget, towers, app.state.config.diminishing.duplicate_decay)
    spent = sum(tower.cost * mix.get(tower.tower_type, 0) for tower in towers)
    return stabilize_numeric_payload({"mix": mix, "spent": spent, "remaining": payload.budget - spent})


@app.post("/api/v1/analytics/outliers")
def analytics_outliers(payload: OutlierRequest) -> Dict[str, Any]:
    return stabilize_numeric_payload(app.state.statistics.detect_outliers(payload.values, payload.threshold))


@app.post("/api/v1/analytics/trend")
def analytics_trend(payload: TrendRequest) -> Dict[str, Any]:
    return stabilize_numeric_payload(app.state.statistics.analyze_trend(_pairs(payload.points)))


@app.post("/api/v1/analytics/forecast")
def analytics_forecast(payload: ForecastRequest) -> Dict[str, Any]:
    predictions = app.state.statistics.predict_wave_difficulty(_pairs(payload.history), payload.future_waves)
    return stabilize_numeric_payload({"predictions": predictions})


@app.post("/api/v1/analytics/summary")
def analytics_summary(payload: SummaryRequest) -> Dict[str, Any]:
    return stabilize_numeric_payload(app.state.statistics.calculate_summary(payload.values))


@app.post("/api/v1/sessions/import")
def import_session(payload: SessionImportRequest) -> Dict[str, Any]:
    store = _session_store()
    try:
        session = store.import_payload(payload.format, payload.content)
    except SessionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    report = store.replay(session, config=app.state.config, backend=app.state.statistics.backend)
    response: Dict[str, Any] = {"session_id": session.session_id, "report": report.to_dict()}
    if payload.save_report:
        response["report_path"] = str(store.save_report(report))
    return response

