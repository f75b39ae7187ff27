"""
Weekday × hour aggregation of per-trade returns.

Trades are bucketed by the (weekday, hour) of their UTC entry_time, with
Monday = 0.  Rankings are deterministic: equal averages fall back to the
lower (weekday, hour) key.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from models import TimeBucket, TradeRecord


def aggregate_time_buckets(trades: Sequence[TradeRecord]) -> List[TimeBucket]:
    """
    Sum pnl_percentage and count trades per (weekday, hour) of entry_time.

    Returns:
        One TimeBucket per occupied slot, ordered by (weekday, hour).
    """
    sums: Dict[Tuple[int, int], float] = defaultdict(float)
    counts: Dict[Tuple[int, int], int] = defaultdict(int)
    for trade in trades:
        key = (trade.entry_time.weekday(), trade.entry_time.hour)
        sums[key] += trade.pnl_percentage
        counts[key] += 1

    return [
        TimeBucket(weekday=key[0], hour=key[1], sum_pnl_pct=sums[key], trade_count=counts[key])
        for key in sorted(sums)
    ]


def best_windows(buckets: Sequence[TimeBucket], limit: Optional[int] = None) -> List[TimeBucket]:
    """Buckets by average return, highest first."""
    ranked = sorted(buckets, key=lambda b: (-b.average, b.weekday, b.hour))
    return ranked if limit is None else ranked[:limit]


def worst_windows(buckets: Sequence[TimeBucket], limit: Optional[int] = None) -> List[TimeBucket]:
    """Buckets by average return, lowest first."""
    ranked = sorted(buckets, key=lambda b: (b.average, b.weekday, b.hour))
    return ranked if limit is None else ranked[:limit]
