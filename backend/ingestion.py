"""
Trade ingestion: raw tabular text → validated, immutable TradeRecord list.

The pipeline runs in three explicit stages:

    1. parse:    pandas reads the text as untyped strings (raw rows).
    2. validate: the alias table resolves logical fields and every row is
                 checked against the minimal schema (ValidatedRow).
    3. coerce:   validated rows become TradeRecord objects with derived
                 pnl / pnl_percentage.

Any failure aborts the whole call with an IngestionError naming the row and
column; callers never see a partial trade list.  Output keeps input order.
"""
from __future__ import annotations

import csv
import io
import logging
import math
import re
from datetime import datetime
from typing import Dict, List, NamedTuple, Optional, Sequence

import pandas as pd

from errors import IngestionError
from models import Side, TradeRecord

logger = logging.getLogger(__name__)

# ── Column normalisation ──────────────────────────────────────────────────────────
# Logical field → accepted header aliases.  Headers are compared after
# lower-casing and stripping "_", "-" and whitespace, so "EntryPrice",
# "entry_price" and "Entry Price" all resolve to entry_price.
_COLUMN_ALIASES: Dict[str, List[str]] = {
    "symbol":      ["symbol"],
    "side":        ["side"],
    "entry_price": ["entry_price", "EntryPrice", "entry"],
    "exit_price":  ["exit_price", "ExitPrice", "exit"],
    "quantity":    ["quantity", "Quantity", "qty"],
    "entry_time":  ["entry_time", "EntryTime", "entry_date"],
    "exit_time":   ["exit_time", "ExitTime", "exit_date"],
    "pnl":         ["pnl", "PnL", "profit"],
}

_REQUIRED_COLUMNS = ("symbol", "side")
_NON_NEGATIVE_FIELDS = ("entry_price", "exit_price", "quantity")

# Canonical column order written by serialize_trades().
CSV_COLUMNS = [
    "symbol", "side", "entry_price", "exit_price", "quantity",
    "entry_time", "exit_time", "pnl",
]

# Timestamps must open with a calendar date; relative words like "now" are refused.
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")

TEMPLATE_CSV = (
    "symbol,side,entry_price,exit_price,quantity,entry_time,exit_time\n"
    "AAPL,buy,150.00,155.00,100,2024-01-15T10:30:00,2024-01-16T14:00:00\n"
    "GOOGL,sell,140.00,135.00,50,2024-01-17T09:00:00,2024-01-18T11:30:00\n"
)


def _header_key(name: str) -> str:
    return re.sub(r"[\s_\-]+", "", str(name)).lower()


_ALIAS_LOOKUP: Dict[str, str] = {
    _header_key(alias): field
    for field, aliases in _COLUMN_ALIASES.items()
    for alias in aliases
}


class ValidatedRow(NamedTuple):
    """A row that passed schema validation; all values are typed."""
    index: int
    symbol: str
    side: Side
    entry_price: float
    exit_price: float
    quantity: float
    entry_time: datetime
    exit_time: datetime
    pnl: float


# ── Stage 1: parse ──────────────────────────────────────────────────────────────────

def _check_row_widths(raw_text: str) -> None:
    """Reject data rows carrying more non-empty fields than the header declares."""
    records = (fields for fields in csv.reader(io.StringIO(raw_text)) if fields)
    try:
        header = next(records, None)
        if header is None:
            return
        width = len(header)
        for index, fields in enumerate(records):
            if len(fields) > width and any(f.strip() for f in fields[width:]):
                raise IngestionError(
                    f"row has {len(fields)} fields but the header declares {width}", row=index
                )
    except csv.Error as exc:
        raise IngestionError(f"could not parse tabular input: {exc}") from exc


def _read_table(raw_text: str) -> pd.DataFrame:
    if not raw_text or not raw_text.strip():
        raise IngestionError("input is empty; a header row is required")
    _check_row_widths(raw_text)
    try:
        return pd.read_csv(
            io.StringIO(raw_text),
            dtype=str,
            index_col=False,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise IngestionError(f"could not parse tabular input: {exc}") from exc


def _resolve_columns(columns: Sequence[str]) -> Dict[str, str]:
    """Map logical field → actual header. The first matching header wins."""
    resolved: Dict[str, str] = {}
    for col in columns:
        field = _ALIAS_LOOKUP.get(_header_key(col))
        if field is not None and field not in resolved:
            resolved[field] = col

    for field in _REQUIRED_COLUMNS:
        if field not in resolved:
            raise IngestionError(
                f"required column is missing; found columns: {list(columns)}",
                column=field,
            )
    return resolved


# ── Stage 2: validate ─────────────────────────────────────────────────────────────

def _cell(raw: Dict[str, object], header: Optional[str]) -> str:
    if header is None:
        return ""
    value = raw.get(header, "")
    # Short rows come back from pandas as NaN, not "".
    return value.strip() if isinstance(value, str) else ""


def _parse_float(text: str) -> float:
    """Unparseable or missing numbers coerce to 0."""
    if not text:
        return 0.0
    try:
        value = float(text)
    except ValueError:
        return 0.0
    return value if math.isfinite(value) else 0.0


def _parse_timestamp(text: str, index: int, field: str) -> datetime:
    try:
        if not _ISO_DATE.match(text):
            raise ValueError("not an ISO-8601 date")
        ts = pd.to_datetime(text, format="ISO8601")
    except (ValueError, TypeError) as exc:
        raise IngestionError(f"unparseable timestamp {text!r}", row=index, column=field) from exc
    if pd.isna(ts):
        raise IngestionError(f"unparseable timestamp {text!r}", row=index, column=field)
    ts = ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")
    return ts.to_pydatetime()


def _validate_row(index: int, raw: Dict[str, object], columns: Dict[str, str]) -> ValidatedRow:
    symbol = _cell(raw, columns["symbol"])
    if not symbol:
        raise IngestionError("symbol is empty", row=index, column="symbol")

    side_text = _cell(raw, columns["side"]).lower()
    if not side_text:
        raise IngestionError("side is empty", row=index, column="side")
    side = Side.SELL if side_text == Side.SELL.value else Side.BUY

    numbers: Dict[str, float] = {}
    for field in _NON_NEGATIVE_FIELDS:
        value = _parse_float(_cell(raw, columns.get(field)))
        if value < 0:
            raise IngestionError(f"must not be negative, got {value}", row=index, column=field)
        numbers[field] = value

    entry_text = _cell(raw, columns.get("entry_time"))
    exit_text = _cell(raw, columns.get("exit_time"))
    if not entry_text and not exit_text:
        raise IngestionError("row has neither entry_time nor exit_time", row=index, column="entry_time")
    entry_time = _parse_timestamp(entry_text or exit_text, index, "entry_time")
    exit_time = _parse_timestamp(exit_text or entry_text, index, "exit_time")
    if exit_time < entry_time:
        raise IngestionError(
            f"exit_time {exit_time.isoformat()} precedes entry_time {entry_time.isoformat()}",
            row=index,
            column="exit_time",
        )

    return ValidatedRow(
        index=index,
        symbol=symbol,
        side=side,
        entry_price=numbers["entry_price"],
        exit_price=numbers["exit_price"],
        quantity=numbers["quantity"],
        entry_time=entry_time,
        exit_time=exit_time,
        pnl=_parse_float(_cell(raw, columns.get("pnl"))),
    )


# ── Stage 3: coerce ─────────────────────────────────────────────────────────────────

def derive_pnl(side: Side, entry_price: float, exit_price: float, quantity: float) -> float:
    direction = 1.0 if side == Side.BUY else -1.0
    return (exit_price - entry_price) * quantity * direction


def pnl_percentage(pnl: float, entry_price: float, quantity: float) -> float:
    notional = entry_price * quantity
    return pnl / notional * 100.0 if notional != 0 else 0.0


def _coerce(row: ValidatedRow) -> TradeRecord:
    pnl = row.pnl
    if pnl == 0:
        pnl = derive_pnl(row.side, row.entry_price, row.exit_price, row.quantity)
        logger.debug("Row %d: derived pnl=%.4f from prices", row.index, pnl)

    return TradeRecord(
        symbol=row.symbol,
        side=row.side,
        entry_price=row.entry_price,
        exit_price=row.exit_price,
        quantity=row.quantity,
        entry_time=row.entry_time,
        exit_time=row.exit_time,
        pnl=pnl,
        pnl_percentage=pnl_percentage(pnl, row.entry_price, row.quantity),
    )


# ── Public API ──────────────────────────────────────────────────────────────────────

def ingest(raw_text: str) -> List[TradeRecord]:
    """
    Parse raw CSV text into a list of TradeRecord objects.

    Args:
        raw_text: Header row plus data rows; column order and casing are free.

    Returns:
        Trades in input row order.

    Raises:
        IngestionError: On a missing required column or any row that cannot
            be coerced.  Row indices are 0-based over the data rows.
    """
    df = _read_table(raw_text)
    columns = _resolve_columns(list(df.columns))
    logger.info("Resolved columns: %s", columns)

    validated = [
        _validate_row(index, raw, columns)
        for index, raw in enumerate(df.to_dict(orient="records"))
    ]
    trades = [_coerce(row) for row in validated]

    logger.info("Ingested %d trades", len(trades))
    return trades


def serialize_trades(trades: Sequence[TradeRecord]) -> str:
    """Write trades as canonical CSV; ingest() of the output reproduces them."""
    df = pd.DataFrame(
        [
            {
                "symbol": t.symbol,
                "side": t.side.value,
                "entry_price": t.entry_price,
                "exit_price": t.exit_price,
                "quantity": t.quantity,
                "entry_time": t.entry_time.isoformat(),
                "exit_time": t.exit_time.isoformat(),
                "pnl": t.pnl,
            }
            for t in trades
        ],
        columns=CSV_COLUMNS,
    )
    return df.to_csv(index=False)
