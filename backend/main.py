"""
Trading Performance & Risk API — FastAPI host for the analytics engine.

Endpoints
---------
GET  /health          Health check.
GET  /template        Downloadable CSV template.
GET  /scenarios       Built-in Monte Carlo scenario profiles.
POST /upload          Parse a trade-history CSV → TradeRecord list.
POST /analyze         Metrics, equity curve, time windows and breakdowns for a trade list.
POST /simulate        Forward Monte Carlo projection under a scenario profile.

The engine modules are pure functions; this module only adapts them to HTTP,
maps engine errors to status codes and keeps an explicit result cache.
"""
from __future__ import annotations

import hashlib
import logging
import threading
from collections import OrderedDict
from typing import Dict, List, Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from analytics import assess_risk, compute_metrics, trade_breakdown
from config import get_settings
from equity import build_equity_curve, drawdown_periods, monthly_returns
from errors import IngestionError, SimulationCancelledError, SimulationConfigError
from ingestion import TEMPLATE_CSV, ingest
from models import (
    AnalysisRequest,
    AnalysisResponse,
    SimulationRequest,
    SimulationResult,
    SimulationScenario,
    UploadResponse,
)
from monte_carlo import SCENARIOS, get_scenario, simulate
from time_buckets import aggregate_time_buckets, best_windows, worst_windows

settings = get_settings()

logging.basicConfig(level=settings.log_level, format="%(levelname)s  %(name)s  %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Trading Performance & Risk API",
    description="Turns trade histories into performance/risk metrics and runs scenario Monte Carlo projections.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Number of best / worst (weekday, hour) windows returned by /analyze.
_WINDOW_LIMIT = 5


class ResultCache:
    """Bounded LRU of analysis results keyed by a SHA-256 hash of the request."""

    def __init__(self, max_size: int) -> None:
        self._max_size = max_size
        self._entries: "OrderedDict[str, AnalysisResponse]" = OrderedDict()

    @staticmethod
    def key_for(request: AnalysisRequest) -> str:
        return hashlib.sha256(request.model_dump_json().encode("utf-8")).hexdigest()

    def get(self, key: str) -> Optional[AnalysisResponse]:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    def put(self, key: str, value: AnalysisResponse) -> None:
        if self._max_size <= 0:
            return
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


_analysis_cache = ResultCache(settings.cache_size)


def analyze_trades(request: AnalysisRequest) -> AnalysisResponse:
    """Run every historical analysis over one trade list."""
    trades = request.trades
    metrics = compute_metrics(trades, request.benchmark)
    curve = build_equity_curve(trades, request.benchmark)
    buckets = aggregate_time_buckets(trades)

    return AnalysisResponse(
        metrics=metrics,
        risk=assess_risk(metrics),
        equity_curve=curve,
        drawdown_periods=drawdown_periods(curve),
        monthly_returns=monthly_returns(trades),
        best_windows=best_windows(buckets, _WINDOW_LIMIT),
        worst_windows=worst_windows(buckets, _WINDOW_LIMIT),
        breakdown=trade_breakdown(trades),
    )


def _resolve_scenario(request: SimulationRequest) -> SimulationScenario:
    if request.daily_drift is not None or request.daily_volatility is not None:
        if request.daily_drift is None or request.daily_volatility is None:
            raise SimulationConfigError(
                "a custom scenario needs both daily_drift and daily_volatility",
                parameter="scenario",
            )
        return SimulationScenario(
            name=request.scenario or "custom",
            daily_drift=request.daily_drift,
            daily_volatility=request.daily_volatility,
            description="Custom profile",
        )
    return get_scenario(request.scenario or "bull")


# ── Routes ─────────────────────────────────────────────────────────────────────────

@app.get("/health")
def health() -> Dict[str, str]:
    """Simple liveness probe."""
    return {"status": "ok"}


@app.get("/template", response_class=PlainTextResponse)
def template() -> PlainTextResponse:
    """CSV template showing the expected columns."""
    return PlainTextResponse(
        TEMPLATE_CSV,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=backtest_template.csv"},
    )


@app.get("/scenarios", response_model=List[SimulationScenario])
def scenarios() -> List[SimulationScenario]:
    return list(SCENARIOS.values())


@app.post("/upload", response_model=UploadResponse)
async def upload_csv(file: UploadFile = File(...)) -> UploadResponse:
    """
    Accept a trade-history CSV and return the normalised trades.

    Column names are matched through the alias table, so exports from
    different platforms load without renaming.
    """
    if not file.filename or not file.filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Only CSV files are accepted.")

    raw = await file.read()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"File is not valid UTF-8: {exc}")

    try:
        trades = ingest(text)
    except IngestionError as exc:
        logger.info("Rejected upload %s: %s", file.filename, exc)
        raise HTTPException(status_code=422, detail=str(exc))

    symbols = sorted({t.symbol for t in trades})
    logger.info("Ingested %d trades across symbols: %s", len(trades), symbols)

    return UploadResponse(trades=trades, total_trades=len(trades), symbols=symbols)


@app.post("/analyze", response_model=AnalysisResponse)
async def analyze(request: AnalysisRequest) -> AnalysisResponse:
    """
    Compute metrics, risk assessment, equity curve, drawdown periods, monthly
    returns, best/worst time windows and per-symbol breakdown.
    """
    if not request.trades:
        raise HTTPException(status_code=400, detail="Trade list is empty.")

    key = ResultCache.key_for(request)
    cached = _analysis_cache.get(key)
    if cached is not None:
        logger.debug("Analysis cache hit %s", key[:12])
        return cached

    response = analyze_trades(request)
    _analysis_cache.put(key, response)
    logger.info("Analysis complete for %d trades.", len(request.trades))
    return response


@app.post("/simulate", response_model=SimulationResult)
async def run_simulation(request: SimulationRequest) -> SimulationResult:
    """
    Project equity paths forward under a named or custom scenario.

    Runs off the event loop. Once the configured timeout elapses the cancel
    event is set, the simulator stops at the next path boundary and its
    partial paths are discarded.
    """
    horizon = request.horizon_days if request.horizon_days is not None else settings.default_horizon_days
    path_count = request.path_count if request.path_count is not None else settings.default_path_count
    seed = request.seed if request.seed is not None else settings.default_seed

    try:
        scenario = _resolve_scenario(request)
        if path_count > settings.max_path_count:
            raise SimulationConfigError(
                f"path_count must be <= {settings.max_path_count}", parameter="path_count"
            )
        if horizon > settings.max_horizon_days:
            raise SimulationConfigError(
                f"horizon_days must be <= {settings.max_horizon_days}", parameter="horizon_days"
            )
    except SimulationConfigError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    # The timer trips the cancel event; the simulator checks it between paths.
    cancel = threading.Event()
    timer = threading.Timer(settings.simulation_timeout_seconds, cancel.set)
    timer.daemon = True
    timer.start()
    try:
        return await run_in_threadpool(
            simulate,
            scenario,
            request.initial_capital,
            horizon,
            path_count,
            seed,
            max_workers=settings.max_workers,
            cancel=cancel,
        )
    except SimulationConfigError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except SimulationCancelledError:
        logger.warning(
            "Simulation exceeded %.1fs and was cancelled", settings.simulation_timeout_seconds
        )
        raise HTTPException(status_code=504, detail="Simulation timed out.")
    finally:
        timer.cancel()
