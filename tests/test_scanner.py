from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from unusual_options.alerts.sms import AlertResult
from unusual_options.config import AppConfig, ScannerConfig
from unusual_options.data.tradier_client import MarketDataError, TradierClient
from unusual_options.runtime.scanner import OptionsScanner
from unusual_options.storage.repository import SignalRepository
from unusual_options.types import OptionQuote, UnderlyingQuote

T0 = datetime(2025, 9, 1, 15, 0, tzinfo=timezone.utc)
SYMBOL = "NVDA250919C00175000"


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _option(**kw) -> OptionQuote:
    base = OptionQuote(
        symbol=SYMBOL,
        underlying="NVDA",
        kind="option",
        option_type="call",
        strike=175.0,
        expiration_date=date(2025, 9, 19),
        volume=1000,
        open_interest=100,
        last=2.0,
        bid=1.9,
        ask=2.1,
    )
    return replace(base, **kw)


class _Client:
    def __init__(self) -> None:
        self.underlying = UnderlyingQuote(ticker="NVDA", kind="stock", last=150.0)
        self.chain = [_option(), _option(symbol="NVDA250919C00180000", strike=180.0, volume=50)]
        self.quote = _option()
        self.chain_requests: list[date] = []
        self.fail_tickers: set[str] = set()

    def get_market_status(self):
        return {"state": "open"}

    def get_underlying_quote(self, ticker):
        if ticker in self.fail_tickers:
            raise MarketDataError("boom")
        return self.underlying

    def get_expirations(self, ticker):
        # past, in window, beyond max dte
        return [date(2025, 8, 29), date(2025, 9, 19), date(2025, 12, 19)]

    def get_options_chain(self, ticker, expiration):
        self.chain_requests.append(expiration)
        return list(self.chain)

    def get_option_quote(self, symbol):
        return self.quote


class _Notifier:
    recipient = "+15550001111"

    def __init__(self) -> None:
        self.sent = []

    def send_signal_alert(self, signal):
        self.sent.append(signal)
        return AlertResult(success=True, message_sid=f"SM{len(self.sent)}")


@pytest.fixture()
def env(tmp_path):
    clock = _Clock(T0)
    store = SignalRepository(str(tmp_path / "scan.db"), clock=clock)
    client = _Client()
    notifier = _Notifier()
    cfg = AppConfig(scanner=ScannerConfig(tickers=("NVDA",)))
    scanner = OptionsScanner(cfg, client, store, notifier, clock=clock, sleep=lambda s: None)
    yield scanner, client, notifier, clock
    store.close()


def test_scan_detects_saves_alerts_and_enters(env):
    scanner, client, notifier, _ = env
    status = scanner.run_scan()

    assert client.chain_requests == [date(2025, 9, 19)]
    assert status.tickers == 1
    assert status.signals_found == 1
    assert status.signals_saved == 1
    assert status.alerts_sent == 1
    assert status.trades_entered == 1
    assert status.trades_closed == 0
    assert status.last_error is None

    trades = scanner.store.get_open_trades()
    assert len(trades) == 1
    assert trades[0].entry_price == 2.0
    assert trades[0].max_pnl == 0.0
    assert [a["provider_sid"] for a in scanner.store.get_alerts()] == ["SM1"]
    assert len(notifier.sent) == 1


def test_repeat_scan_inside_window_saves_nothing(env):
    scanner, _, notifier, clock = env
    scanner.run_scan()
    clock.now = T0 + timedelta(seconds=30)
    status = scanner.run_scan()

    assert status.signals_found == 1
    assert status.signals_saved == 0
    assert status.trades_entered == 0
    assert len(notifier.sent) == 1
    assert len(scanner.store.get_all_trades()) == 1


def test_time_limit_closes_trade_on_later_scan(env):
    scanner, client, _, clock = env
    scanner.run_scan()

    clock.now = T0 + timedelta(hours=25)
    client.chain = []
    client.quote = _option(bid=2.9, ask=3.1)
    status = scanner.run_scan()

    assert status.trades_closed == 1
    closed = scanner.store.get_closed_trades()
    assert len(closed) == 1
    assert closed[0].exit_reason == "time_limit"
    assert closed[0].exit_price == 3.0
    assert closed[0].pnl == 100.0
    assert closed[0].pnl_pct == 50.0
    assert scanner.performance().win_rate == 100.0


def test_unpriced_trade_is_skipped(env):
    scanner, client, _, clock = env
    scanner.run_scan()
    clock.now = T0 + timedelta(hours=25)
    client.chain = []
    client.quote = None
    status = scanner.run_scan()

    assert status.trades_closed == 0
    assert len(scanner.store.get_open_trades()) == 1


def test_failing_ticker_does_not_stop_cycle(env):
    scanner, client, _, _ = env
    scanner.cfg = replace(scanner.cfg, scanner=ScannerConfig(tickers=("BAD", "NVDA")))
    client.fail_tickers = {"BAD"}
    status = scanner.run_scan()

    assert status.tickers == 2
    assert status.signals_saved == 1


def test_watchlist_takes_precedence_over_configured_tickers(env):
    scanner, _, _, _ = env
    scanner.store.add_to_watchlist("amd")
    assert scanner.tickers() == ["AMD"]


def test_empty_watchlist_and_no_tickers(env):
    scanner, _, _, _ = env
    scanner.cfg = replace(scanner.cfg, scanner=ScannerConfig(tickers=()))
    status = scanner.run_scan()
    assert status.last_error == "watchlist_empty"
    assert status.signals_saved == 0


def test_storage_failure_while_monitoring_skips_only_that_step(env, monkeypatch):
    scanner, _, notifier, _ = env

    def _locked():
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(scanner.store, "get_open_trades", _locked)
    status = scanner.run_scan()

    assert status.signals_saved == 1
    assert status.alerts_sent == 1
    assert status.trades_entered == 1
    assert status.trades_closed == 0
    assert status.last_error == "database is locked"
    assert len(notifier.sent) == 1


def test_watchlist_read_failure_falls_back_to_configured_tickers(env, monkeypatch):
    scanner, _, _, _ = env

    def _locked():
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(scanner.store, "get_watchlist", _locked)
    status = scanner.run_scan()

    assert status.tickers == 1
    assert status.signals_saved == 1
    assert status.last_error == "database is locked"


class _HttpResp:
    def __init__(self, payload):
        self.payload = payload
        self.status_code = 200

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


def _chain_row(**kw) -> dict:
    row = {
        "symbol": SYMBOL,
        "type": "option",
        "underlying": "NVDA",
        "option_type": "call",
        "strike": 175.0,
        "expiration_date": "2025-09-19",
        "volume": 1000,
        "open_interest": 100,
        "last": 2.0,
        "bid": 1.9,
        "ask": 2.1,
    }
    row.update(kw)
    return row


class _TradierSession:
    def __init__(self) -> None:
        self.headers = {}

    def get(self, url, params=None, timeout=None):
        if url.endswith("/markets/clock"):
            return _HttpResp({"clock": {"state": "open"}})
        if url.endswith("/markets/options/expirations"):
            return _HttpResp({"expirations": {"date": ["2025-09-19"]}})
        if url.endswith("/markets/options/chains"):
            bad = _chain_row(symbol="NVDA250919C00180000", strike=180.0, volume="N/A")
            return _HttpResp({"options": {"option": [bad, _chain_row()]}})
        if url.endswith("/markets/quotes"):
            if params["symbols"] == "NVDA":
                return _HttpResp({"quotes": {"quote": {"symbol": "NVDA", "type": "stock", "last": 150.0}}})
            return _HttpResp({"quotes": {"quote": _chain_row()}})
        raise AssertionError(url)


def test_malformed_chain_row_does_not_abort_scan(tmp_path):
    clock = _Clock(T0)
    store = SignalRepository(str(tmp_path / "scan.db"), clock=clock)
    client = TradierClient("key", "https://api.example.com/v1", session=_TradierSession())
    cfg = AppConfig(scanner=ScannerConfig(tickers=("NVDA",)))
    scanner = OptionsScanner(cfg, client, store, clock=clock, sleep=lambda s: None)
    try:
        status = scanner.run_scan()
        assert status.signals_found == 1
        assert status.signals_saved == 1
        assert status.trades_entered == 1
        assert [s.symbol for s in store.get_recent_signals()] == [SYMBOL]
    finally:
        store.close()
