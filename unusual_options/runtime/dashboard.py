from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Callable

import pandas as pd
from dotenv import load_dotenv

from unusual_options.alerts.sms import AlertResult, TwilioNotifier, format_daily_summary
from unusual_options.config import DEFAULT_CONFIG, load_config, validate_config
from unusual_options.paper.performance import summarize_trades, trades_frame
from unusual_options.storage.repository import SignalRepository
from unusual_options.utils import as_utc, utcnow

log = logging.getLogger(__name__)


def render(store: SignalRepository, *, limit: int = 20) -> str:
    signals = store.signals_frame(limit=limit)
    perf = summarize_trades(store.get_all_trades())
    out = [f"Recent signals ({len(signals)})"]
    if len(signals):
        with pd.option_context("display.width", 200, "display.max_columns", None):
            out.append(signals.to_string(index=False))
    else:
        out.append("  none")
    out.append("")
    out.append("Paper trading performance")
    out.append(f"  Total trades: {perf.total_trades} ({perf.open_trades} open, {perf.closed_trades} closed)")
    out.append(f"  Win rate: {perf.win_rate:.1f}% ({perf.winning_trades}W / {perf.losing_trades}L)")
    out.append(f"  Total P/L: ${perf.total_pnl:,.2f}  Avg P/L: ${perf.avg_pnl:,.2f}")
    out.append(f"  Best: ${perf.best_trade:,.2f} | Worst: ${perf.worst_trade:,.2f}")
    return "\n".join(out)


def render_alerts(store: SignalRepository, *, limit: int = 20) -> str:
    rows = store.get_alerts(limit=limit)
    if not rows:
        return "No alerts sent"
    cols = ["sent_at", "alert_type", "recipient_phone", "provider_status", "provider_sid", "error_message"]
    return pd.DataFrame(rows, columns=cols).to_string(index=False)


def render_snapshots(store: SignalRepository, trade_id: str) -> str:
    rows = store.get_snapshots(trade_id)
    if not rows:
        return f"No snapshots for trade {trade_id}"
    cols = ["snapshot_at", "option_price", "underlying_price", "pnl", "pnl_pct"]
    return pd.DataFrame(rows, columns=cols).to_string(index=False)


def send_daily_summary(
    store: SignalRepository,
    notifier: TwilioNotifier,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> AlertResult:
    """Text today's signal count, top signals by premium and paper P/L."""
    today = as_utc(clock()).date()
    todays = [
        s for s in store.get_recent_signals(limit=500) if s.detected_at is not None and as_utc(s.detected_at).date() == today
    ]
    top = sorted(todays, key=lambda s: s.premium, reverse=True)
    perf = summarize_trades(store.get_all_trades())
    result = notifier.send_daily_summary(
        signals_detected=len(todays),
        top_signals=top,
        open_trades=perf.open_trades,
        total_pnl=perf.total_pnl,
    )
    store.log_alert(
        signal_id=None,
        recipient_phone=notifier.recipient,
        message_body=format_daily_summary(
            signals_detected=len(todays),
            top_signals=top,
            open_trades=perf.open_trades,
            total_pnl=perf.total_pnl,
        ),
        provider_sid=result.message_sid,
        provider_status="sent" if result.success else "failed",
        error_message=result.error,
        alert_type="daily_summary",
    )
    return result


def main() -> int:
    ap = argparse.ArgumentParser(description="Show recent signals and paper trading performance")
    ap.add_argument("--db", default=DEFAULT_CONFIG.scanner.db_path)
    ap.add_argument("--limit", type=int, default=20)
    ap.add_argument("--add", default="", help="comma separated tickers to add to the watchlist")
    ap.add_argument("--out-trades", default="")
    ap.add_argument("--json", action="store_true")
    ap.add_argument("--alerts", action="store_true", help="list recently sent alerts")
    ap.add_argument("--snapshots", default="", help="trade id to show price snapshots for")
    ap.add_argument("--send-summary", action="store_true", help="text the daily summary via Twilio")
    ap.add_argument("--env-file", default=".env")
    args = ap.parse_args()

    load_dotenv(args.env_file)
    log_level = os.environ.get("UNUSUAL_OPTIONS_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=getattr(logging, log_level, logging.INFO), format="%(asctime)s %(levelname)s %(message)s")

    store = SignalRepository(str(args.db))
    try:
        for t in [x.strip() for x in args.add.split(",") if x.strip()]:
            store.add_to_watchlist(t)

        if args.json:
            perf = summarize_trades(store.get_all_trades())
            print(json.dumps(asdict(perf), separators=(",", ":"), ensure_ascii=False))
        else:
            print(render(store, limit=int(args.limit)))

        if args.alerts:
            print()
            print(render_alerts(store, limit=int(args.limit)))
        if args.snapshots:
            print()
            print(render_snapshots(store, args.snapshots))

        if args.out_trades:
            out_path = Path(args.out_trades)
            out_path.parent.mkdir(parents=True, exist_ok=True)
            trades_frame(store.get_all_trades()).to_csv(out_path, index=False)

        if args.send_summary:
            cfg = load_config()
            if not validate_config(cfg)["twilio"]:
                log.error("daily_summary_skipped reason=twilio_not_configured")
                return 1
            t = cfg.twilio
            notifier = TwilioNotifier(t.account_sid, t.auth_token, t.phone_number, t.recipient_phone)
            result = send_daily_summary(store, notifier)
            if not result.success:
                return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
