from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import requests

from unusual_options.types import Signal
from unusual_options.utils import format_currency, format_percentage

log = logging.getLogger(__name__)

TWILIO_API = "https://api.twilio.com/2010-04-01"

_STRENGTH_EMOJI = {"high": "🔥", "medium": "⚡", "low": "💡"}


@dataclass(frozen=True)
class AlertResult:
    success: bool
    message_sid: Optional[str] = None
    error: Optional[str] = None


def format_signal_message(signal: Signal) -> str:
    direction = "📈" if signal.option_type == "call" else "📉"
    lines = [
        f"{_STRENGTH_EMOJI.get(signal.strength, '💡')} UNUSUAL OPTIONS DETECTED {direction}",
        "",
        f"{signal.ticker} ${signal.strike:g} {signal.option_type.upper()}",
        f"Exp: {signal.expiration_date.isoformat()} ({signal.dte}d)",
        "",
        f"Vol: {signal.volume:,} ({signal.volume_oi_ratio:.1f}x OI)",
        f"Premium: {format_currency(signal.premium)}",
        f"Stock: ${signal.underlying_price:.2f}",
        f"Moneyness: {format_percentage(signal.moneyness, 1)}",
        f"Strength: {signal.strength.upper()}",
    ]
    return "\n".join(lines)


def format_daily_summary(
    *,
    signals_detected: int,
    top_signals: Iterable[Signal],
    open_trades: int,
    total_pnl: float,
) -> str:
    lines = [
        "📊 DAILY OPTIONS SUMMARY",
        "",
        f"Signals Detected: {signals_detected}",
        f"Open Trades: {open_trades}",
        f"Total P/L: {format_currency(total_pnl)}",
    ]
    top = list(top_signals)[:3]
    if top:
        lines += ["", "Top Signals:"]
        for i, s in enumerate(top, start=1):
            lines.append(f"{i}. {s.ticker} ${s.strike:g} {s.option_type.upper()} - {format_currency(s.premium)}")
    return "\n".join(lines)


class TwilioNotifier:
    """SMS delivery through Twilio's Messages REST endpoint.

    Delivery failures are reported in the returned ``AlertResult``; nothing
    here raises for a failed send and nothing is retried.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        to_number: str,
        timeout: int = 10,
        session: requests.Session | None = None,
    ) -> None:
        if not account_sid or not auth_token:
            raise ValueError("Twilio account SID and auth token are required")
        if not from_number or not to_number:
            raise ValueError("Twilio phone numbers (from and to) are required")
        self.account_sid = account_sid
        self.from_number = from_number
        self.to_number = to_number
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (account_sid, auth_token)

    @property
    def recipient(self) -> str:
        return self.to_number

    def send(self, body: str) -> AlertResult:
        url = f"{TWILIO_API}/Accounts/{self.account_sid}/Messages.json"
        try:
            resp = self.session.post(
                url,
                data={"Body": body, "From": self.from_number, "To": self.to_number},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            sid = resp.json().get("sid")
        except (requests.RequestException, ValueError) as e:
            log.warning("sms_send_failed error=%s", e)
            return AlertResult(success=False, error=str(e))
        log.info("sms_sent sid=%s", sid)
        return AlertResult(success=True, message_sid=sid)

    def send_signal_alert(self, signal: Signal) -> AlertResult:
        return self.send(format_signal_message(signal))

    def send_daily_summary(
        self,
        *,
        signals_detected: int,
        top_signals: Iterable[Signal],
        open_trades: int,
        total_pnl: float,
    ) -> AlertResult:
        return self.send(
            format_daily_summary(
                signals_detected=signals_detected,
                top_signals=top_signals,
                open_trades=open_trades,
                total_pnl=total_pnl,
            )
        )
