"""
Pydantic data models for the trading performance & risk engine.

Engine records (TradeRecord, EquityPoint, MetricsSnapshot, ...) come first,
followed by the request/response envelopes used by the HTTP host.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class TradeRecord(BaseModel):
    """A single normalised round-trip trade. Immutable once ingested."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    side: Side
    entry_price: float = Field(ge=0.0)
    exit_price: float = Field(ge=0.0)
    quantity: float = Field(ge=0.0)
    entry_time: datetime
    exit_time: datetime
    pnl: float
    pnl_percentage: float

    @field_validator("entry_time", "exit_time")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are taken to be UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _exit_not_before_entry(self) -> "TradeRecord":
        if self.exit_time < self.entry_time:
            raise ValueError("exit_time precedes entry_time")
        return self


class EquityPoint(BaseModel):
    """One point of the cumulative P&L curve, emitted per trade in exit-time order."""
    timestamp: datetime
    equity: float
    peak_to_date: float
    drawdown_pct: float = Field(ge=0.0)
    benchmark: Optional[float] = None


class DrawdownPeriod(BaseModel):
    """A contiguous spell spent below the running peak."""
    start: datetime
    end: datetime
    max_drawdown_pct: float
    recovery_days: float
    recovered: bool


class MonthlyReturn(BaseModel):
    year: int
    month: int
    return_percentage: float
    trades_count: int


class MetricsSnapshot(BaseModel):
    """Flat record of every computed ratio. Recomputed from scratch, never mutated."""
    total_trades: int
    winners: int
    losers: int
    breakeven: int
    total_pnl: float
    gross_profit: float
    gross_loss: float
    largest_win: float
    largest_loss: float
    expectancy: float
    win_rate: float                # percent, 0-100
    profit_factor: float           # inf when there are no losses but some profit
    avg_win: float
    avg_loss: float
    max_drawdown_pct: float
    annualized_return_pct: float
    sharpe_ratio: float
    sortino_ratio: float
    calmar_ratio: float
    omega_ratio: float             # inf when no trade returned below zero
    var_95: float                  # percent return per trade
    var_99: float
    cvar_95: float
    kelly_percentage: float
    beta: float
    alpha: float
    information_ratio: float
    treynor_ratio: float
    ulcer_index: float
    pain_ratio: float
    tail_ratio: float
    common_sense_ratio: float
    skewness: float

    @field_serializer("profit_factor", "omega_ratio", "common_sense_ratio", when_used="json")
    def _serialize_sentinel(self, value: float) -> Union[float, str]:
        # JSON has no infinity literal.
        if math.isinf(value):
            return "inf" if value > 0 else "-inf"
        return value


class RiskAssessment(BaseModel):
    score: int
    level: str                     # "low" | "medium" | "high"


class SymbolBreakdown(BaseModel):
    symbol: str
    wins: int
    losses: int
    total: int
    pnl: float


class PnLRangeCount(BaseModel):
    range: str
    count: int


class TradeBreakdown(BaseModel):
    by_symbol: List[SymbolBreakdown]
    pnl_distribution: List[PnLRangeCount]


class TimeBucket(BaseModel):
    """Aggregated per-trade returns for one (weekday, hour) slot."""
    weekday: int = Field(ge=0, le=6)   # Monday = 0
    hour: int = Field(ge=0, le=23)
    sum_pnl_pct: float
    trade_count: int

    @property
    def average(self) -> float:
        return self.sum_pnl_pct / self.trade_count if self.trade_count else 0.0


class SimulationScenario(BaseModel):
    """Named market profile driving the daily random walk."""
    model_config = ConfigDict(frozen=True)

    name: str
    daily_drift: float
    daily_volatility: float
    description: str = ""


class SimulationResult(BaseModel):
    scenario: SimulationScenario
    initial_capital: float
    horizon_days: int
    path_count: int
    seed: int
    expected_return_pct: float
    max_drawdown_pct: float        # mean of each path's own max drawdown
    var_95: float                  # 5th percentile of final equity (capital units)
    probability_of_loss_pct: float
    best_case: float               # 95th percentile of final equity
    worst_case: float              # 5th percentile of final equity
    best_return_pct: float
    worst_return_pct: float
    mean_final: float
    median_final: float
    paths: List[List[float]]       # horizon_days + 1 points each
    median_path: List[float]
    p5_path: List[float]
    p25_path: List[float]
    p75_path: List[float]
    p95_path: List[float]


# ── HTTP envelopes ──────────────────────────────────────────────────────────────


class UploadResponse(BaseModel):
    trades: List[TradeRecord]
    total_trades: int
    symbols: List[str]


class AnalysisRequest(BaseModel):
    trades: List[TradeRecord]
    benchmark: Optional[List[float]] = None   # per-trade benchmark returns, percent


class AnalysisResponse(BaseModel):
    metrics: MetricsSnapshot
    risk: RiskAssessment
    equity_curve: List[EquityPoint]
    drawdown_periods: List[DrawdownPeriod]
    monthly_returns: List[MonthlyReturn]
    best_windows: List[TimeBucket]
    worst_windows: List[TimeBucket]
    breakdown: TradeBreakdown


class SimulationRequest(BaseModel):
    scenario: Optional[str] = None
    daily_drift: Optional[float] = None        # custom profile overrides the named one
    daily_volatility: Optional[float] = None
    initial_capital: float = 100_000.0
    horizon_days: Optional[int] = None
    path_count: Optional[int] = None
    seed: Optional[int] = None
