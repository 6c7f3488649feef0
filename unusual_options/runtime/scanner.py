from __future__ import annotations

import argparse
import json
import logging
import os
import signal as signal_mod
import sqlite3
import time as time_mod
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from dotenv import load_dotenv

from unusual_options.alerts.sms import TwilioNotifier, format_signal_message
from unusual_options.config import AppConfig, load_config, validate_config
from unusual_options.data.tradier_client import MarketDataError, TradierClient
from unusual_options.metrics.calculator import days_to_expiration, mid_price
from unusual_options.paper.lifecycle import MonitorReport, PaperTradeManager, PriceQuote
from unusual_options.paper.performance import PerformanceSummary, summarize_trades
from unusual_options.signals.detector import SignalDetector
from unusual_options.storage.repository import SignalRepository
from unusual_options.types import PaperTrade, Signal
from unusual_options.utils import utcnow

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanStatus:
    time_utc: str
    scan_number: int
    tickers: int
    signals_found: int
    signals_saved: int
    alerts_sent: int
    trades_entered: int
    trades_closed: int
    duration_seconds: float
    last_error: str | None


def _write_status(path: Path, status: ScanStatus) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(status), separators=(",", ":"), ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)


class OptionsScanner:
    """One scan cycle, split into steps a scheduler can call on their own.

    fetch/detect -> persist -> notify -> auto-enter -> monitor -> summary.
    A failing step is logged and the rest of the cycle still runs.
    """

    def __init__(
        self,
        cfg: AppConfig,
        client: TradierClient,
        store: SignalRepository,
        notifier: TwilioNotifier | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time_mod.sleep,
    ) -> None:
        self.cfg = cfg
        self.client = client
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.sleep = sleep
        self.detector = SignalDetector(cfg.signal, clock=clock)
        self.trader = PaperTradeManager(cfg.paper, store, clock=clock)
        self.scan_count = 0

    # ---------- steps ----------

    def tickers(self) -> list[str]:
        watchlist = self.store.get_watchlist()
        return watchlist or list(self.cfg.scanner.tickers)

    def scan_ticker(self, ticker: str) -> list[Signal]:
        try:
            underlying = self.client.get_underlying_quote(ticker)
            if underlying is None:
                log.warning("no_quote ticker=%s", ticker)
                return []
            expirations = self.client.get_expirations(ticker)
        except MarketDataError:
            log.exception("ticker_fetch_error ticker=%s", ticker)
            return []

        now = self.clock()
        max_dte = self.cfg.signal.max_dte
        valid = [e for e in expirations if 0 < days_to_expiration(e, now) <= max_dte]
        log.info(
            "ticker_scan ticker=%s last=%s expirations=%d",
            ticker,
            underlying.last,
            len(valid),
        )

        found: list[Signal] = []
        for exp in valid[: self.cfg.scanner.expirations_per_ticker]:
            try:
                chain = self.client.get_options_chain(ticker, exp)
            except MarketDataError:
                log.exception("chain_fetch_error ticker=%s expiration=%s", ticker, exp)
                continue
            signals = self.detector.evaluate_batch(chain, underlying)
            if signals:
                log.info("signals_found ticker=%s expiration=%s count=%d", ticker, exp, len(signals))
            found.extend(signals)
            self.sleep(self.cfg.scanner.request_delay_seconds)

        try:
            self.store.update_last_scanned(ticker)
        except sqlite3.Error:
            log.exception("last_scanned_update_error ticker=%s", ticker)
        return found

    def persist_signals(self, signals: list[Signal]) -> list[Signal]:
        saved: list[Signal] = []
        for s in signals:
            try:
                stored = self.store.insert_signal(s)
            except sqlite3.Error:
                log.exception("signal_save_error symbol=%s", s.symbol)
                continue
            if stored is None:
                continue
            log.info(
                "signal_saved ticker=%s strike=%s type=%s premium=%.2f ratio=%.2f strength=%s",
                s.ticker,
                s.strike,
                s.option_type,
                s.premium,
                s.volume_oi_ratio,
                s.strength,
            )
            saved.append(stored)
        return saved

    def notify(self, signals: list[Signal]) -> int:
        if self.notifier is None:
            return 0
        sent = 0
        for s in signals:
            result = self.notifier.send_signal_alert(s)
            if result.success:
                sent += 1
            try:
                self.store.log_alert(
                    signal_id=s.id,
                    recipient_phone=self.notifier.recipient,
                    message_body=format_signal_message(s),
                    provider_sid=result.message_sid,
                    provider_status="sent" if result.success else "failed",
                    error_message=result.error,
                )
            except sqlite3.Error:
                log.exception("alert_log_error symbol=%s", s.symbol)
        return sent

    def auto_enter(self, signals: list[Signal]) -> list[PaperTrade]:
        return self.trader.auto_enter_batch(signals)

    def lookup_price(self, trade: PaperTrade) -> Optional[PriceQuote]:
        sig = self.store.get_signal(trade.signal_id)
        if sig is None:
            log.warning("signal_missing trade_id=%s", trade.id)
            return None
        quote = self.client.get_option_quote(sig.symbol)
        underlying = self.client.get_underlying_quote(sig.ticker)
        self.sleep(self.cfg.scanner.request_delay_seconds)
        if quote is None:
            return None
        price = mid_price(quote.bid or 0.0, quote.ask or 0.0)
        if price <= 0:
            price = quote.last or 0.0
        if price <= 0:
            return None
        return PriceQuote(
            option_price=price,
            underlying_price=underlying.last if underlying is not None else None,
            expiration_date=sig.expiration_date,
        )

    def monitor_open_trades(self) -> MonitorReport:
        trades = self.store.get_open_trades()
        if not trades:
            log.info("no_open_trades")
            return MonitorReport()
        log.info("monitoring_trades count=%d", len(trades))
        return self.trader.monitor_all(trades, self.lookup_price)

    def performance(self) -> PerformanceSummary:
        return summarize_trades(self.store.get_all_trades())

    # ---------- cycle ----------

    def run_scan(self) -> ScanStatus:
        self.scan_count += 1
        started = time_mod.monotonic()
        status = ScanStatus(
            time_utc=self.clock().isoformat(),
            scan_number=self.scan_count,
            tickers=0,
            signals_found=0,
            signals_saved=0,
            alerts_sent=0,
            trades_entered=0,
            trades_closed=0,
            duration_seconds=0.0,
            last_error=None,
        )

        try:
            clock = self.client.get_market_status()
            log.info("market_status state=%s", clock.get("state"))
        except MarketDataError:
            log.warning("market_status_unavailable", exc_info=True)

        last_error = None
        try:
            tickers = self.tickers()
        except sqlite3.Error as e:
            log.exception("watchlist_read_error")
            last_error = str(e)
            tickers = list(self.cfg.scanner.tickers)
        if not tickers:
            log.warning("watchlist_empty")
            return replace(status, last_error="watchlist_empty")

        found: list[Signal] = []
        for i, t in enumerate(tickers):
            found.extend(self.scan_ticker(t))
            if i < len(tickers) - 1:
                self.sleep(self.cfg.scanner.ticker_delay_seconds)

        saved = self.persist_signals(found)
        sent = self.notify(saved)
        entered = self.auto_enter(saved)
        try:
            report = self.monitor_open_trades()
        except sqlite3.Error as e:
            log.exception("monitor_error")
            last_error = str(e)
            report = MonitorReport()

        try:
            perf = self.performance()
            if perf.total_trades:
                log.info(
                    "performance trades=%d open=%d closed=%d win_rate=%.1f total_pnl=%.2f avg_pnl=%.2f best=%.2f worst=%.2f",
                    perf.total_trades,
                    perf.open_trades,
                    perf.closed_trades,
                    perf.win_rate,
                    perf.total_pnl,
                    perf.avg_pnl,
                    perf.best_trade,
                    perf.worst_trade,
                )
        except sqlite3.Error as e:
            log.exception("performance_error")
            last_error = str(e)

        duration = time_mod.monotonic() - started
        log.info("scan_complete scan=%d signals=%d duration=%.1fs", self.scan_count, len(saved), duration)
        return replace(
            status,
            tickers=len(tickers),
            signals_found=len(found),
            signals_saved=len(saved),
            alerts_sent=sent,
            trades_entered=len(entered),
            trades_closed=len(report.closed),
            duration_seconds=round(duration, 3),
            last_error=last_error,
        )


def build_scanner(cfg: AppConfig) -> OptionsScanner:
    client = TradierClient(cfg.tradier.api_key, cfg.tradier.api_url)
    store = SignalRepository(cfg.scanner.db_path, dedup_window_seconds=cfg.scanner.dedup_window_seconds)
    notifier = None
    if validate_config(cfg)["twilio"]:
        t = cfg.twilio
        notifier = TwilioNotifier(t.account_sid, t.auth_token, t.phone_number, t.recipient_phone)
        log.info("sms_alerts_enabled")
    else:
        log.info("sms_alerts_disabled reason=twilio_not_configured")
    return OptionsScanner(cfg, client, store, notifier)


def main() -> int:
    ap = argparse.ArgumentParser(description="Scan option chains for unusual activity")
    ap.add_argument("--once", action="store_true")
    ap.add_argument("--interval-seconds", type=int, default=0)
    ap.add_argument("--db", default="")
    ap.add_argument("--tickers", default="", help="comma separated, used when the watchlist is empty")
    ap.add_argument("--env-file", default=".env")
    ap.add_argument("--status-file", default="")
    ap.add_argument("--log-file", default="")
    args = ap.parse_args()

    load_dotenv(args.env_file)

    log_level = os.environ.get("UNUSUAL_OPTIONS_LOG_LEVEL", "INFO").upper()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if args.log_file:
        handlers.append(logging.FileHandler(args.log_file, encoding="utf-8"))
    logging.basicConfig(level=getattr(logging, log_level, logging.INFO), handlers=handlers, format="%(asctime)s %(levelname)s %(message)s")

    cfg = load_config()
    scan = cfg.scanner
    if args.db:
        scan = replace(scan, db_path=str(args.db))
    if args.interval_seconds:
        scan = replace(scan, interval_seconds=int(args.interval_seconds))
    if args.tickers:
        scan = replace(scan, tickers=tuple(t.strip().upper() for t in args.tickers.split(",") if t.strip()))
    cfg = replace(cfg, scanner=scan)

    scanner = build_scanner(cfg)
    sig = cfg.signal
    log.info(
        "scanner_ready min_premium=%.0f min_ratio=%.1f max_dte=%d interval=%ds",
        sig.min_premium,
        sig.min_volume_oi_ratio,
        sig.max_dte,
        scan.interval_seconds,
    )

    stopping = False

    def _stop(signum, frame):  # noqa: ARG001
        nonlocal stopping
        stopping = True
        log.info("shutdown_requested signal=%s", signum)

    signal_mod.signal(signal_mod.SIGINT, _stop)
    signal_mod.signal(signal_mod.SIGTERM, _stop)

    status_path = Path(args.status_file) if args.status_file else None
    while True:
        try:
            s = scanner.run_scan()
        except Exception as e:  # noqa: BLE001
            log.exception("scan_run_error")
            s = ScanStatus(
                time_utc=utcnow().isoformat(),
                scan_number=scanner.scan_count,
                tickers=0,
                signals_found=0,
                signals_saved=0,
                alerts_sent=0,
                trades_entered=0,
                trades_closed=0,
                duration_seconds=0.0,
                last_error=str(e),
            )
        if status_path is not None:
            _write_status(status_path, s)
        if args.once:
            break

        deadline = time_mod.monotonic() + max(1, int(scan.interval_seconds))
        while not stopping and time_mod.monotonic() < deadline:
            time_mod.sleep(0.5)
        if stopping:
            break

    scanner.store.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
