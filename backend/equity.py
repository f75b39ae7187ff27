"""
Equity & drawdown tracking over a normalised trade list.

Equity here lives in cumulative-P&L space: the curve starts at 0 and each
trade adds its pnl.  The running peak also starts at 0, so drawdown is only
defined once the curve has been above zero.

Trades are ordered by exit_time with a stable sort on a working copy; the
caller's list is never reordered.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from models import DrawdownPeriod, EquityPoint, MonthlyReturn, TradeRecord

logger = logging.getLogger(__name__)


def drawdown_series(values: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Running peak and percentage drawdown for an equity series.

    The peak is seeded at 0, so ``peak_i = max(0, values[0..i])`` and
    ``drawdown_i = (peak_i - values_i) / peak_i * 100`` when the peak is
    positive, else 0.

    Works on 1-D series and row-wise on 2-D (paths × steps) arrays.

    Returns:
        (peaks, drawdown_pct) with the same shape as ``values``.
    """
    values = np.asarray(values, dtype=np.float64)
    if values.size == 0:
        return values.copy(), values.copy()

    peaks: np.ndarray = np.maximum.accumulate(np.maximum(values, 0.0), axis=-1)
    drawdowns = np.zeros_like(values)
    np.divide((peaks - values) * 100.0, peaks, out=drawdowns, where=peaks > 0)
    # Floating-point noise must never produce a negative drawdown.
    return peaks, np.maximum(drawdowns, 0.0)


def build_equity_curve(
    trades: Sequence[TradeRecord],
    benchmark: Optional[Sequence[float]] = None,
) -> List[EquityPoint]:
    """
    Build the cumulative P&L curve, one point per trade, ordered by exit_time.

    Args:
        trades:    Normalised trades in any order.
        benchmark: Optional per-trade benchmark returns aligned with ``trades``
                   as given; they are reordered with the trades and
                   accumulated into the ``benchmark`` column.

    Returns:
        EquityPoint list in non-decreasing timestamp order.
    """
    # Stable: trades sharing an exit_time keep their ingestion order.
    order = sorted(range(len(trades)), key=lambda i: trades[i].exit_time)
    ordered = [trades[i] for i in order]

    pnl = np.array([t.pnl for t in ordered], dtype=np.float64)
    equity: np.ndarray = np.cumsum(pnl)
    peaks, drawdowns = drawdown_series(equity)

    bench_curve: Optional[np.ndarray] = None
    if benchmark is not None:
        if len(benchmark) == len(trades):
            bench = np.asarray(benchmark, dtype=np.float64)[order]
            bench_curve = np.cumsum(bench)
        else:
            logger.warning(
                "Benchmark length %d does not match %d trades; omitting benchmark column",
                len(benchmark),
                len(trades),
            )

    return [
        EquityPoint(
            timestamp=trade.exit_time,
            equity=float(equity[i]),
            peak_to_date=float(peaks[i]),
            drawdown_pct=float(drawdowns[i]),
            benchmark=float(bench_curve[i]) if bench_curve is not None else None,
        )
        for i, trade in enumerate(ordered)
    ]


def max_drawdown_pct(curve: Sequence[EquityPoint]) -> float:
    """Largest drawdown over the curve; 0 for an empty or never-declining curve."""
    return max((p.drawdown_pct for p in curve), default=0.0)


def drawdown_periods(curve: Sequence[EquityPoint]) -> List[DrawdownPeriod]:
    """
    Split the curve into underwater spells.

    A spell opens at the last point that set the peak and closes at the first
    point that regains it.  A spell still open at the end of the curve is
    reported with ``recovered=False`` and ``end`` at the last point.
    """
    periods: List[DrawdownPeriod] = []
    peak_time = None
    start = None
    worst = 0.0

    for point in curve:
        if point.drawdown_pct > 0:
            if start is None:
                start = peak_time if peak_time is not None else point.timestamp
                worst = 0.0
            worst = max(worst, point.drawdown_pct)
            continue

        if start is not None:
            periods.append(
                DrawdownPeriod(
                    start=start,
                    end=point.timestamp,
                    max_drawdown_pct=worst,
                    recovery_days=(point.timestamp - start).total_seconds() / 86_400,
                    recovered=True,
                )
            )
            start = None
        peak_time = point.timestamp

    if start is not None:
        last = curve[-1].timestamp
        periods.append(
            DrawdownPeriod(
                start=start,
                end=last,
                max_drawdown_pct=worst,
                recovery_days=(last - start).total_seconds() / 86_400,
                recovered=False,
            )
        )
    return periods


def monthly_returns(trades: Sequence[TradeRecord]) -> List[MonthlyReturn]:
    """Sum of per-trade returns grouped by the calendar month of exit_time."""
    buckets: Dict[Tuple[int, int], List[float]] = defaultdict(list)
    for trade in trades:
        buckets[(trade.exit_time.year, trade.exit_time.month)].append(trade.pnl_percentage)

    return [
        MonthlyReturn(
            year=year,
            month=month,
            return_percentage=float(sum(values)),
            trades_count=len(values),
        )
        for (year, month), values in sorted(buckets.items())
    ]
