"""
Core performance & risk analytics for a normalised trade list.

Counts, win rate, profit factor and average win/loss are measured on
currency P&L.  Every distribution statistic (Sharpe, Sortino, VaR, Omega,
beta, ...) runs on the per-trade ``pnl_percentage`` series so results do
not depend on account size.

No function here raises once ingestion has succeeded: empty series, zero
variance and zero drawdown resolve to 0.  Profit factor resolves to
``float("inf")`` when there is profit but no loss; Omega does so whenever
no return is below zero.
"""
from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from equity import build_equity_curve, max_drawdown_pct
from models import (
    MetricsSnapshot,
    PnLRangeCount,
    RiskAssessment,
    SymbolBreakdown,
    TradeBreakdown,
    TradeRecord,
)

logger = logging.getLogger(__name__)

TRADING_DAYS_PER_YEAR = 252
INF = float("inf")

# Histogram ranges for per-trade returns; each bin is (lower, upper].
_PNL_RANGES: List[Tuple[str, float, float]] = [
    ("< -5%", -INF, -5.0),
    ("-5% to -2%", -5.0, -2.0),
    ("-2% to 0%", -2.0, 0.0),
    ("0% to 2%", 0.0, 2.0),
    ("2% to 5%", 2.0, 5.0),
    ("> 5%", 5.0, INF),
]


def _ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0 when the denominator is 0."""
    return float(numerator / denominator) if denominator != 0 else 0.0


def _unbounded_ratio(numerator: float, denominator: float) -> float:
    """Like _ratio, but positive-over-zero is the infinite sentinel."""
    if denominator > 0:
        return float(numerator / denominator)
    return INF if numerator > 0 else 0.0


def _percentile(series: np.ndarray, q: float) -> float:
    # numpy's default method is linear interpolation between order statistics.
    return float(np.percentile(series, q)) if series.size else 0.0


def _benchmark_stats(
    returns: np.ndarray, benchmark: Optional[Sequence[float]]
) -> Dict[str, float]:
    """Beta, alpha, information ratio and Treynor against a benchmark return series."""
    zero = {"beta": 0.0, "alpha": 0.0, "information_ratio": 0.0, "treynor_ratio": 0.0}
    if benchmark is None or len(benchmark) == 0 or returns.size == 0:
        return zero

    bench = np.asarray(benchmark, dtype=np.float64)
    if bench.size != returns.size:
        logger.warning(
            "Benchmark has %d points for %d trades; using the first %d pairs",
            bench.size,
            returns.size,
            min(bench.size, returns.size),
        )
    n = min(bench.size, returns.size)
    strat, bench = returns[:n], bench[:n]

    bench_var = float(np.var(bench))
    covariance = float(np.mean((strat - strat.mean()) * (bench - bench.mean())))
    beta = _ratio(covariance, bench_var)
    alpha = float(strat.mean() - beta * bench.mean())

    excess = strat - bench
    mean_excess = float(excess.mean())
    return {
        "beta": beta,
        "alpha": alpha,
        "information_ratio": _ratio(mean_excess, float(np.std(excess))),
        "treynor_ratio": _ratio(mean_excess, beta),
    }


def kelly_percentage(win_rate_pct: float, avg_win: float, avg_loss: float) -> float:
    """
    Kelly fraction ``W - (1 - W) / R`` as a percentage clamped to [0, 100].

    ``W`` is the win probability and ``R`` the average win / average loss.
    Returns 0 when either average is 0.
    """
    if avg_loss == 0 or avg_win == 0:
        return 0.0
    w = win_rate_pct / 100.0
    kelly = w - (1.0 - w) / (avg_win / avg_loss)
    return float(min(max(kelly * 100.0, 0.0), 100.0))


def compute_metrics(
    trades: Sequence[TradeRecord],
    benchmark: Optional[Sequence[float]] = None,
) -> MetricsSnapshot:
    """
    Compute a fresh MetricsSnapshot from a trade list.

    Args:
        trades:    Normalised trades (any order; drawdown uses exit-time order).
        benchmark: Optional per-trade benchmark returns in percent, aligned
                   with ``trades``.  Needed for beta, alpha, information and
                   Treynor ratios; all four are 0 without it.

    Returns:
        MetricsSnapshot.
    """
    pnl = np.array([t.pnl for t in trades], dtype=np.float64)
    returns = np.array([t.pnl_percentage for t in trades], dtype=np.float64)
    n = int(pnl.size)

    wins = pnl[pnl > 0]
    losses = pnl[pnl < 0]
    gross_profit = float(wins.sum())
    gross_loss = float(abs(losses.sum()))

    win_rate = _ratio(wins.size * 100.0, n)
    avg_win = _ratio(gross_profit, wins.size)
    avg_loss = _ratio(gross_loss, losses.size)
    profit_factor = _unbounded_ratio(gross_profit, gross_loss)

    # ── Equity curve / drawdown (exit-time order) ───────────────────────────────────
    curve = build_equity_curve(trades)
    drawdowns = np.array([p.drawdown_pct for p in curve], dtype=np.float64)
    max_dd = max_drawdown_pct(curve)
    ulcer_index = float(np.sqrt(np.mean(drawdowns ** 2))) if n else 0.0
    pain_index = float(np.mean(drawdowns)) if n else 0.0

    # ── Return distribution ───────────────────────────────────────────────────────────
    mean_ret = float(returns.mean()) if n else 0.0
    std_ret = float(returns.std()) if n else 0.0
    annualized_return = mean_ret * TRADING_DAYS_PER_YEAR
    sqrt_year = math.sqrt(TRADING_DAYS_PER_YEAR)

    sharpe = _ratio(mean_ret, std_ret) * sqrt_year
    downside = returns[returns < 0]
    sortino = _ratio(mean_ret, float(downside.std())) * sqrt_year if downside.size else 0.0

    # No return below zero at all, including an empty series, is the sentinel.
    downside_sum = float(np.abs(downside).sum())
    omega = float(returns[returns > 0].sum()) / downside_sum if downside_sum > 0 else INF

    var_95 = _percentile(returns, 5)
    var_99 = _percentile(returns, 1)
    tail = returns[returns <= var_95]
    cvar_95 = float(tail.mean()) if tail.size else 0.0

    p95 = _percentile(returns, 95)
    tail_ratio = _ratio(abs(p95), abs(var_95))
    if math.isinf(profit_factor):
        common_sense = INF if tail_ratio > 0 else 0.0
    else:
        common_sense = profit_factor * tail_ratio

    skewness = float(stats.skew(returns)) if n > 2 and std_ret > 0 else 0.0

    return MetricsSnapshot(
        total_trades=n,
        winners=int(wins.size),
        losers=int(losses.size),
        breakeven=int(n - wins.size - losses.size),
        total_pnl=float(pnl.sum()),
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        largest_win=float(wins.max()) if wins.size else 0.0,
        largest_loss=float(losses.min()) if losses.size else 0.0,
        expectancy=_ratio(float(pnl.sum()), n),
        win_rate=win_rate,
        profit_factor=profit_factor,
        avg_win=avg_win,
        avg_loss=avg_loss,
        max_drawdown_pct=max_dd,
        annualized_return_pct=annualized_return,
        sharpe_ratio=sharpe,
        sortino_ratio=sortino,
        calmar_ratio=_ratio(annualized_return, abs(max_dd)),
        omega_ratio=omega,
        var_95=var_95,
        var_99=var_99,
        cvar_95=cvar_95,
        kelly_percentage=kelly_percentage(win_rate, avg_win, avg_loss),
        ulcer_index=ulcer_index,
        pain_ratio=_ratio(annualized_return, pain_index),
        tail_ratio=tail_ratio,
        common_sense_ratio=common_sense,
        skewness=skewness,
        **_benchmark_stats(returns, benchmark),
    )


def assess_risk(metrics: MetricsSnapshot) -> RiskAssessment:
    """
    Score a snapshot 0-100 across five criteria, 20 / 10 / 0 points each.

    >= 80 is "low" risk, >= 50 "medium", anything else "high".
    """
    score = 0

    if metrics.sharpe_ratio > 2:
        score += 20
    elif metrics.sharpe_ratio > 1:
        score += 10

    if metrics.max_drawdown_pct < 10:
        score += 20
    elif metrics.max_drawdown_pct < 20:
        score += 10

    if metrics.profit_factor > 2:
        score += 20
    elif metrics.profit_factor > 1.5:
        score += 10

    if metrics.sortino_ratio > 2.5:
        score += 20
    elif metrics.sortino_ratio > 1.5:
        score += 10

    if 15 < metrics.kelly_percentage < 25:
        score += 20
    elif metrics.kelly_percentage > 10:
        score += 10

    if score >= 80:
        level = "low"
    elif score >= 50:
        level = "medium"
    else:
        level = "high"
    return RiskAssessment(score=score, level=level)


def trade_breakdown(trades: Sequence[TradeRecord]) -> TradeBreakdown:
    """Per-symbol win/loss tallies and a histogram of per-trade returns."""
    by_symbol: Dict[str, Dict[str, float]] = {}
    for trade in trades:
        entry = by_symbol.setdefault(trade.symbol, {"wins": 0, "losses": 0, "pnl": 0.0})
        if trade.pnl > 0:
            entry["wins"] += 1
        elif trade.pnl < 0:
            entry["losses"] += 1
        entry["pnl"] += trade.pnl

    symbols = sorted(
        (
            SymbolBreakdown(
                symbol=symbol,
                wins=int(data["wins"]),
                losses=int(data["losses"]),
                total=int(data["wins"] + data["losses"]),
                pnl=float(data["pnl"]),
            )
            for symbol, data in by_symbol.items()
        ),
        key=lambda s: s.pnl,
        reverse=True,
    )

    distribution = [
        PnLRangeCount(
            range=label,
            count=sum(1 for t in trades if lower < t.pnl_percentage <= upper),
        )
        for label, lower, upper in _PNL_RANGES
    ]
    return TradeBreakdown(by_symbol=symbols, pnl_distribution=distribution)
