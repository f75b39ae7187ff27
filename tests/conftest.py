"""Shared fixtures for the risk engine test suite."""

from __future__ import annotations

from typing import Callable, List

import pytest

from factories import make_trade, trades_from_pnl
from models import TradeRecord


@pytest.fixture
def trade_factory() -> Callable[..., TradeRecord]:
    return make_trade


@pytest.fixture
def sample_trades() -> List[TradeRecord]:
    """The three-trade history [100, -50, 200]."""
    return trades_from_pnl([100.0, -50.0, 200.0])


@pytest.fixture
def sample_csv() -> str:
    return (
        "symbol,side,entry_price,exit_price,quantity,entry_time,exit_time\n"
        "AAPL,buy,150.00,155.00,100,2024-01-15T10:30:00,2024-01-16T14:00:00\n"
        "GOOGL,sell,140.00,135.00,50,2024-01-17T09:00:00,2024-01-18T11:30:00\n"
        "MSFT,buy,400.00,390.00,10,2024-01-19T15:00:00,2024-01-19T16:00:00\n"
    )
