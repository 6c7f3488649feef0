from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, fields, replace
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

import pandas as pd

from unusual_options.metrics.calculator import PnL
from unusual_options.types import Direction, PaperTrade, Signal
from unusual_options.utils import as_utc, parse_date, parse_dt, utcnow

log = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS unusual_signals (
    id TEXT PRIMARY KEY,
    symbol TEXT NOT NULL,
    ticker TEXT NOT NULL,
    description TEXT,
    option_type TEXT NOT NULL CHECK (option_type IN ('call', 'put')),
    strike REAL NOT NULL,
    expiration_date TEXT NOT NULL,
    dte INTEGER NOT NULL,
    contract_size INTEGER DEFAULT 100,
    volume INTEGER NOT NULL,
    open_interest INTEGER NOT NULL,
    volume_oi_ratio REAL NOT NULL,
    premium REAL NOT NULL,
    last_price REAL NOT NULL,
    bid REAL,
    ask REAL,
    bid_size INTEGER,
    ask_size INTEGER,
    bid_ask_spread_pct REAL,
    underlying_price REAL NOT NULL,
    underlying_change REAL,
    underlying_change_pct REAL,
    delta REAL,
    gamma REAL,
    theta REAL,
    vega REAL,
    rho REAL,
    phi REAL,
    implied_volatility REAL,
    greeks_updated_at TEXT,
    moneyness REAL,
    moneyness_category TEXT CHECK (moneyness_category IN ('deep_itm', 'itm', 'atm', 'otm', 'deep_otm')),
    strength TEXT CHECK (strength IN ('high', 'medium', 'low')),
    detected_at TEXT NOT NULL,
    trade_date INTEGER,
    exchange TEXT,
    UNIQUE (symbol, detected_at)
);
CREATE INDEX IF NOT EXISTS idx_unusual_signals_ticker ON unusual_signals(ticker);
CREATE INDEX IF NOT EXISTS idx_unusual_signals_detected_at ON unusual_signals(detected_at DESC);

CREATE TABLE IF NOT EXISTS paper_trades (
    id TEXT PRIMARY KEY,
    signal_id TEXT NOT NULL REFERENCES unusual_signals(id) ON DELETE CASCADE,
    direction TEXT NOT NULL CHECK (direction IN ('long', 'short')),
    quantity INTEGER NOT NULL DEFAULT 1,
    entry_price REAL NOT NULL,
    entry_time TEXT NOT NULL,
    entry_underlying_price REAL,
    exit_price REAL,
    exit_time TEXT,
    exit_underlying_price REAL,
    exit_reason TEXT CHECK (exit_reason IN ('manual', 'time_limit', 'expired', 'stop_loss', 'take_profit')),
    pnl REAL,
    pnl_pct REAL,
    max_pnl REAL,
    max_pnl_pct REAL,
    min_pnl REAL,
    min_pnl_pct REAL,
    status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'closed', 'expired')),
    notes TEXT,
    created_at TEXT,
    updated_at TEXT,
    UNIQUE (signal_id)
);
CREATE INDEX IF NOT EXISTS idx_paper_trades_status ON paper_trades(status);

CREATE TABLE IF NOT EXISTS paper_trade_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    trade_id TEXT NOT NULL REFERENCES paper_trades(id) ON DELETE CASCADE,
    option_price REAL NOT NULL,
    underlying_price REAL,
    pnl REAL,
    pnl_pct REAL,
    snapshot_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS alert_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    signal_id TEXT REFERENCES unusual_signals(id) ON DELETE SET NULL,
    recipient_phone TEXT NOT NULL,
    message_body TEXT NOT NULL,
    provider_sid TEXT,
    provider_status TEXT,
    error_message TEXT,
    alert_type TEXT NOT NULL CHECK (alert_type IN ('signal_detected', 'trade_update', 'daily_summary')),
    sent_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS stock_watchlist (
    ticker TEXT PRIMARY KEY,
    company_name TEXT,
    enabled INTEGER NOT NULL DEFAULT 1,
    added_at TEXT NOT NULL,
    last_scanned_at TEXT,
    notes TEXT
);
"""

_SIGNAL_COLS = [f.name for f in fields(Signal)]
_TRADE_COLS = [f.name for f in fields(PaperTrade)]


def _ts(dt: datetime | None) -> str | None:
    # Fixed-width so ISO strings order the same as the instants they encode
    if dt is None:
        return None
    return as_utc(dt).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _signal_row(signal: Signal) -> dict:
    row = asdict(signal)
    row["expiration_date"] = signal.expiration_date.isoformat()
    row["detected_at"] = _ts(signal.detected_at)
    return row


def _row_signal(row: sqlite3.Row) -> Signal:
    d = {k: row[k] for k in _SIGNAL_COLS}
    d["expiration_date"] = parse_date(d["expiration_date"])
    d["detected_at"] = parse_dt(d["detected_at"])
    return Signal(**d)


def _trade_row(trade: PaperTrade) -> dict:
    row = asdict(trade)
    row["direction"] = trade.direction.value
    row["entry_time"] = _ts(trade.entry_time)
    row["exit_time"] = _ts(trade.exit_time)
    return row


def _row_trade(row: sqlite3.Row) -> PaperTrade:
    d = {k: row[k] for k in _TRADE_COLS}
    d["direction"] = Direction(d["direction"])
    d["entry_time"] = parse_dt(d["entry_time"])
    d["exit_time"] = parse_dt(d["exit_time"])
    return PaperTrade(**d)


class SignalRepository:
    """SQLite store for signals, paper trades, alerts and the watchlist.

    Identities and detection timestamps are assigned here, never by callers.
    """

    def __init__(
        self,
        path: str = "unusual_options.db",
        *,
        dedup_window_seconds: int = 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.conn = sqlite3.connect(path)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.dedup_window = timedelta(seconds=dedup_window_seconds)
        self.clock = clock
        self._init()

    def _init(self) -> None:
        with self.conn:
            self.conn.executescript(_SCHEMA)

    def close(self) -> None:
        self.conn.close()

    # ---------- signals ----------

    def signal_exists(self, symbol: str, at: datetime) -> bool:
        cur = self.conn.execute(
            "SELECT 1 FROM unusual_signals WHERE symbol = ? AND detected_at BETWEEN ? AND ? LIMIT 1",
            (symbol, _ts(at - self.dedup_window), _ts(at + self.dedup_window)),
        )
        return cur.fetchone() is not None

    def insert_signal(self, signal: Signal) -> Optional[Signal]:
        """Persist a signal; ``None`` when the same contract was logged within the dedup window."""
        now = self.clock()
        if self.signal_exists(signal.symbol, now):
            log.info("signal_duplicate symbol=%s", signal.symbol)
            return None
        stored = replace(signal, id=uuid4().hex, detected_at=as_utc(now))
        row = _signal_row(stored)
        cols = ", ".join(_SIGNAL_COLS)
        marks = ", ".join("?" for _ in _SIGNAL_COLS)
        try:
            with self.conn:
                self.conn.execute(
                    f"INSERT INTO unusual_signals ({cols}) VALUES ({marks})",
                    [row[c] for c in _SIGNAL_COLS],
                )
        except sqlite3.IntegrityError:
            log.info("signal_duplicate symbol=%s", signal.symbol)
            return None
        return stored

    def get_signal(self, signal_id: str) -> Optional[Signal]:
        row = self.conn.execute("SELECT * FROM unusual_signals WHERE id = ?", (signal_id,)).fetchone()
        return _row_signal(row) if row is not None else None

    def get_recent_signals(self, limit: int = 50, ticker: str | None = None) -> list[Signal]:
        if ticker:
            rows = self.conn.execute(
                "SELECT * FROM unusual_signals WHERE ticker = ? ORDER BY detected_at DESC LIMIT ?",
                (ticker, limit),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM unusual_signals ORDER BY detected_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [_row_signal(r) for r in rows]

    def signals_frame(self, limit: int = 50) -> pd.DataFrame:
        cur = self.conn.execute(
            "SELECT s.detected_at, s.ticker, s.symbol, s.option_type, s.strike, s.expiration_date, s.dte, "
            "s.volume, s.open_interest, s.volume_oi_ratio, s.premium, s.moneyness, s.strength, "
            "t.status AS trade_status, t.pnl AS trade_pnl "
            "FROM unusual_signals s LEFT JOIN paper_trades t ON t.signal_id = s.id "
            "ORDER BY s.detected_at DESC LIMIT ?",
            (limit,),
        )
        columns = [d[0] for d in cur.description]
        return pd.DataFrame.from_records([tuple(r) for r in cur.fetchall()], columns=columns)

    # ---------- paper trades ----------

    def create_paper_trade(self, trade: PaperTrade) -> PaperTrade:
        stored = replace(trade, id=uuid4().hex)
        row = _trade_row(stored)
        now = _ts(self.clock())
        cols = _TRADE_COLS + ["created_at", "updated_at"]
        marks = ", ".join("?" for _ in cols)
        try:
            with self.conn:
                self.conn.execute(
                    f"INSERT INTO paper_trades ({', '.join(cols)}) VALUES ({marks})",
                    [row[c] for c in _TRADE_COLS] + [now, now],
                )
        except sqlite3.IntegrityError:
            existing = self.get_trade_by_signal_id(trade.signal_id)
            if existing is None:
                raise
            return existing
        return stored

    def update_paper_trade(self, trade: PaperTrade) -> PaperTrade:
        if trade.id is None:
            raise ValueError("cannot update a paper trade without an id")
        row = _trade_row(trade)
        cols = [c for c in _TRADE_COLS if c not in ("id", "signal_id")]
        assignments = ", ".join(f"{c} = ?" for c in cols)
        with self.conn:
            cur = self.conn.execute(
                f"UPDATE paper_trades SET {assignments}, updated_at = ? WHERE id = ?",
                [row[c] for c in cols] + [_ts(self.clock()), trade.id],
            )
        if cur.rowcount == 0:
            raise KeyError(f"paper trade {trade.id} not found")
        return trade

    def get_trade_by_signal_id(self, signal_id: str) -> Optional[PaperTrade]:
        row = self.conn.execute("SELECT * FROM paper_trades WHERE signal_id = ?", (signal_id,)).fetchone()
        return _row_trade(row) if row is not None else None

    def get_open_trades(self) -> list[PaperTrade]:
        rows = self.conn.execute(
            "SELECT * FROM paper_trades WHERE status = 'open' ORDER BY entry_time DESC"
        ).fetchall()
        return [_row_trade(r) for r in rows]

    def get_closed_trades(self) -> list[PaperTrade]:
        rows = self.conn.execute(
            "SELECT * FROM paper_trades WHERE status IN ('closed', 'expired') ORDER BY exit_time DESC"
        ).fetchall()
        return [_row_trade(r) for r in rows]

    def get_all_trades(self) -> list[PaperTrade]:
        rows = self.conn.execute("SELECT * FROM paper_trades ORDER BY entry_time DESC").fetchall()
        return [_row_trade(r) for r in rows]

    def record_snapshot(
        self,
        trade_id: str,
        option_price: float,
        underlying_price: float | None,
        result: PnL,
        at: datetime,
    ) -> None:
        with self.conn:
            self.conn.execute(
                "INSERT INTO paper_trade_snapshots (trade_id, option_price, underlying_price, pnl, pnl_pct, snapshot_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (trade_id, option_price, underlying_price, result.pnl, result.pnl_pct, _ts(at)),
            )

    def get_snapshots(self, trade_id: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM paper_trade_snapshots WHERE trade_id = ? ORDER BY snapshot_at", (trade_id,)
        ).fetchall()
        return [dict(r) for r in rows]

    # ---------- alerts ----------

    def log_alert(
        self,
        *,
        signal_id: str | None,
        recipient_phone: str,
        message_body: str,
        provider_sid: str | None,
        provider_status: str | None,
        error_message: str | None = None,
        alert_type: str = "signal_detected",
    ) -> None:
        with self.conn:
            self.conn.execute(
                "INSERT INTO alert_log (signal_id, recipient_phone, message_body, provider_sid, provider_status, "
                "error_message, alert_type, sent_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    signal_id,
                    recipient_phone,
                    message_body,
                    provider_sid,
                    provider_status,
                    error_message,
                    alert_type,
                    _ts(self.clock()),
                ),
            )

    def get_alerts(self, limit: int = 50) -> list[dict]:
        rows = self.conn.execute("SELECT * FROM alert_log ORDER BY sent_at DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]

    # ---------- watchlist ----------

    def get_watchlist(self) -> list[str]:
        rows = self.conn.execute("SELECT ticker FROM stock_watchlist WHERE enabled = 1 ORDER BY ticker").fetchall()
        return [r["ticker"] for r in rows]

    def add_to_watchlist(self, ticker: str, company_name: str | None = None, notes: str | None = None) -> None:
        with self.conn:
            self.conn.execute(
                "INSERT INTO stock_watchlist (ticker, company_name, enabled, added_at, notes) VALUES (?, ?, 1, ?, ?) "
                "ON CONFLICT(ticker) DO UPDATE SET enabled = 1",
                (ticker.upper(), company_name, _ts(self.clock()), notes),
            )

    def update_last_scanned(self, ticker: str) -> None:
        with self.conn:
            self.conn.execute(
                "UPDATE stock_watchlist SET last_scanned_at = ? WHERE ticker = ?",
                (_ts(self.clock()), ticker),
            )
