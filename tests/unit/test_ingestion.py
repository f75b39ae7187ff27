"""Tests for CSV trade ingestion: aliases, coercion, derivation and failures."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from errors import IngestionError
from ingestion import TEMPLATE_CSV, ingest, serialize_trades
from models import Side


class TestIngestBasics:

    def test_parses_rows_in_input_order(self, sample_csv):
        trades = ingest(sample_csv)
        assert [t.symbol for t in trades] == ["AAPL", "GOOGL", "MSFT"]

    def test_derives_pnl_for_buy_and_sell(self, sample_csv):
        aapl, googl, msft = ingest(sample_csv)
        assert aapl.pnl == pytest.approx(500.0)
        assert googl.side == Side.SELL
        assert googl.pnl == pytest.approx(250.0)
        assert msft.pnl == pytest.approx(-100.0)

    def test_pnl_percentage_uses_entry_notional(self, sample_csv):
        aapl, googl, msft = ingest(sample_csv)
        assert aapl.pnl_percentage == pytest.approx(500.0 / 15_000.0 * 100.0)
        assert googl.pnl_percentage == pytest.approx(250.0 / 7_000.0 * 100.0)
        assert msft.pnl_percentage == pytest.approx(-2.5)

    def test_naive_timestamps_become_utc(self, sample_csv):
        trade = ingest(sample_csv)[0]
        assert trade.entry_time == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert trade.exit_time.tzinfo is not None

    def test_offset_timestamps_are_converted_to_utc(self):
        text = (
            "symbol,side,entry_price,exit_price,quantity,entry_time,exit_time\n"
            "AAPL,buy,1,2,1,2024-01-15T10:30:00+02:00,2024-01-15T12:00:00+02:00\n"
        )
        trade = ingest(text)[0]
        assert trade.entry_time == datetime(2024, 1, 15, 8, 30, tzinfo=timezone.utc)

    def test_template_is_ingestible(self):
        trades = ingest(TEMPLATE_CSV)
        assert len(trades) == 2
        assert trades[0].pnl == pytest.approx(500.0)

    def test_header_only_yields_empty_list(self):
        assert ingest("symbol,side,entry_price,exit_price\n") == []

    def test_records_are_immutable(self, sample_csv):
        trade = ingest(sample_csv)[0]
        with pytest.raises(Exception):
            trade.pnl = 1.0


class TestColumnAliases:

    def test_camel_case_aliases(self):
        text = (
            "Symbol,SIDE,EntryPrice,ExitPrice,Quantity,EntryTime,ExitTime,PnL\n"
            "ETH,Buy,10,12,3,2024-02-01T00:00:00,2024-02-02T00:00:00,7.5\n"
        )
        trade = ingest(text)[0]
        assert trade.symbol == "ETH"
        assert trade.side == Side.BUY
        assert trade.entry_price == 10.0
        assert trade.exit_price == 12.0
        assert trade.quantity == 3.0
        assert trade.pnl == 7.5

    def test_short_aliases_in_any_order(self):
        text = (
            "qty,exit,entry,side,symbol,exit_date,entry_date,profit\n"
            "2,110,100,sell,SPY,2024-03-02,2024-03-01,\n"
        )
        trade = ingest(text)[0]
        assert trade.quantity == 2.0
        assert trade.entry_price == 100.0
        assert trade.exit_price == 110.0
        assert trade.pnl == pytest.approx(-20.0)

    def test_spaced_headers_resolve(self):
        text = (
            "Symbol, Side ,Entry Price,Exit Price,Quantity,Entry Time,Exit Time\n"
            "BTC,buy,1,3,1,2024-01-01,2024-01-02\n"
        )
        assert ingest(text)[0].pnl == pytest.approx(2.0)

    def test_first_matching_header_wins(self):
        text = (
            "symbol,SYMBOL,side,entry_price,exit_price,quantity,entry_time,exit_time\n"
            "FIRST,SECOND,buy,1,2,1,2024-01-01,2024-01-01\n"
        )
        assert ingest(text)[0].symbol == "FIRST"


class TestCoercion:

    def _row(self, side="buy", entry="100", exit_="110", qty="1", pnl=""):
        return (
            "symbol,side,entry_price,exit_price,quantity,entry_time,exit_time,pnl\n"
            f"X,{side},{entry},{exit_},{qty},2024-01-01T00:00:00,2024-01-01T01:00:00,{pnl}\n"
        )

    def test_unknown_side_defaults_to_buy(self):
        assert ingest(self._row(side="short"))[0].side == Side.BUY

    def test_side_is_lower_cased(self):
        assert ingest(self._row(side="SELL"))[0].side == Side.SELL

    def test_explicit_pnl_is_kept(self):
        trade = ingest(self._row(pnl="42.5"))[0]
        assert trade.pnl == 42.5
        assert trade.pnl_percentage == pytest.approx(42.5)

    def test_zero_pnl_is_derived(self):
        assert ingest(self._row(pnl="0"))[0].pnl == pytest.approx(10.0)

    def test_unparseable_numbers_become_zero(self):
        trade = ingest(self._row(qty="lots"))[0]
        assert trade.quantity == 0.0
        assert trade.pnl == 0.0
        assert trade.pnl_percentage == 0.0

    def test_missing_price_gives_zero_percentage(self):
        trade = ingest(self._row(entry="", pnl="5"))[0]
        assert trade.entry_price == 0.0
        assert trade.pnl == 5.0
        assert trade.pnl_percentage == 0.0

    def test_single_timestamp_is_used_for_both(self):
        text = "symbol,side,exit_time\nAAPL,buy,2024-05-01T12:00:00\n"
        trade = ingest(text)[0]
        assert trade.entry_time == trade.exit_time


class TestIngestionErrors:

    def test_empty_input(self):
        with pytest.raises(IngestionError):
            ingest("")

    def test_missing_required_column(self):
        text = "ticker,side\nAAPL,buy\n"
        with pytest.raises(IngestionError) as exc:
            ingest(text)
        assert exc.value.column == "symbol"
        assert exc.value.row is None

    def test_missing_side_column(self):
        with pytest.raises(IngestionError) as exc:
            ingest("symbol,entry_price\nAAPL,1\n")
        assert exc.value.column == "side"

    def test_empty_symbol_names_row(self, sample_csv):
        bad = sample_csv + ",buy,1,2,1,2024-01-20T00:00:00,2024-01-20T01:00:00\n"
        with pytest.raises(IngestionError) as exc:
            ingest(bad)
        assert exc.value.row == 3
        assert exc.value.column == "symbol"
        assert "row 3" in str(exc.value)

    def test_empty_side_names_row(self):
        text = "symbol,side,exit_time\nAAPL,,2024-01-01\n"
        with pytest.raises(IngestionError) as exc:
            ingest(text)
        assert (exc.value.row, exc.value.column) == (0, "side")

    def test_unparseable_timestamp(self):
        text = "symbol,side,entry_time,exit_time\nAAPL,buy,yesterday-ish,2024-01-01\n"
        with pytest.raises(IngestionError) as exc:
            ingest(text)
        assert (exc.value.row, exc.value.column) == (0, "entry_time")

    @pytest.mark.parametrize("token", ["now", "today", "NOW"])
    def test_relative_timestamps_are_rejected(self, token):
        text = (
            "symbol,side,entry_time,exit_time\n"
            "AAPL,buy,2024-01-01T10:00:00,2024-01-01T11:00:00\n"
            f"A,buy,{token},{token}\n"
        )
        with pytest.raises(IngestionError) as exc:
            ingest(text)
        assert (exc.value.row, exc.value.column) == (1, "entry_time")

    def test_row_wider_than_header_names_row(self, sample_csv):
        bad = sample_csv.replace("MSFT,buy,400.00", "MSFT,buy,400.00,1,2")
        with pytest.raises(IngestionError) as exc:
            ingest(bad)
        assert exc.value.row == 2
        assert "row 2" in str(exc.value)

    def test_exit_before_entry(self):
        text = "symbol,side,entry_time,exit_time\nAAPL,buy,2024-01-02,2024-01-01\n"
        with pytest.raises(IngestionError) as exc:
            ingest(text)
        assert exc.value.column == "exit_time"

    def test_row_without_timestamps_fails(self):
        with pytest.raises(IngestionError) as exc:
            ingest("symbol,side\nAAPL,buy\n")
        assert (exc.value.row, exc.value.column) == (0, "entry_time")

    def test_negative_quantity(self):
        text = "symbol,side,quantity,exit_time\nAAPL,buy,-3,2024-01-01\n"
        with pytest.raises(IngestionError) as exc:
            ingest(text)
        assert exc.value.column == "quantity"


class TestSerializeRoundTrip:

    def test_round_trip_is_identical(self, sample_csv):
        trades = ingest(sample_csv)
        assert ingest(serialize_trades(trades)) == trades

    def test_round_trip_keeps_explicit_pnl(self):
        text = (
            "symbol,side,entry_price,exit_price,quantity,entry_time,exit_time,pnl\n"
            "X,buy,100,110,1,2024-01-01T00:00:00,2024-01-01T01:00:00,3.14159\n"
        )
        trades = ingest(text)
        again = ingest(serialize_trades(trades))
        assert again == trades
        assert again[0].pnl == 3.14159

    def test_serialized_header_is_canonical(self, sample_csv):
        header = serialize_trades(ingest(sample_csv)).splitlines()[0]
        assert header == "symbol,side,entry_price,exit_price,quantity,entry_time,exit_time,pnl"
