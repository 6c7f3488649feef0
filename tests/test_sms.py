from __future__ import annotations

from datetime import date

import pytest
import requests

from unusual_options.alerts.sms import TwilioNotifier, format_daily_summary, format_signal_message
from unusual_options.types import Signal


def _signal() -> Signal:
    return Signal(
        symbol="NVDA250919C00175000",
        ticker="NVDA",
        option_type="call",
        strike=175.0,
        expiration_date=date(2025, 9, 19),
        dte=18,
        contract_size=100,
        volume=1000,
        open_interest=100,
        volume_oi_ratio=10.0,
        premium=200_000.0,
        last_price=2.0,
        underlying_price=150.0,
        moneyness=16.67,
        moneyness_category="deep_otm",
        strength="high",
    )


class _Resp:
    def __init__(self, payload, status=201):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class _Session:
    def __init__(self, resp):
        self.resp = resp
        self.auth = None
        self.posts = []

    def post(self, url, data=None, timeout=None):
        self.posts.append((url, data))
        return self.resp


def test_signal_message_content():
    msg = format_signal_message(_signal())
    assert msg.startswith("🔥 UNUSUAL OPTIONS DETECTED 📈")
    assert "NVDA $175 CALL" in msg
    assert "Exp: 2025-09-19 (18d)" in msg
    assert "Vol: 1,000 (10.0x OI)" in msg
    assert "Premium: $200,000" in msg
    assert "Moneyness: +16.7%" in msg
    assert "Strength: HIGH" in msg


def test_daily_summary_lists_top_three():
    msg = format_daily_summary(signals_detected=5, top_signals=[_signal()] * 5, open_trades=2, total_pnl=-120.0)
    assert "Signals Detected: 5" in msg
    assert "Total P/L: -$120" in msg
    assert "3. NVDA $175 CALL - $200,000" in msg
    assert "4." not in msg


def test_send_posts_to_messages_endpoint():
    session = _Session(_Resp({"sid": "SM123"}))
    n = TwilioNotifier("AC1", "tok", "+1555", "+1666", session=session)
    r = n.send_signal_alert(_signal())
    assert r.success
    assert r.message_sid == "SM123"
    url, data = session.posts[0]
    assert url.endswith("/Accounts/AC1/Messages.json")
    assert data["From"] == "+1555" and data["To"] == "+1666"
    assert session.auth == ("AC1", "tok")


def test_send_failure_is_reported_not_raised():
    n = TwilioNotifier("AC1", "tok", "+1555", "+1666", session=_Session(_Resp({"message": "bad"}, 400)))
    r = n.send("hello")
    assert not r.success
    assert r.error


def test_requires_credentials():
    with pytest.raises(ValueError):
        TwilioNotifier("", "tok", "+1555", "+1666")
    with pytest.raises(ValueError):
        TwilioNotifier("AC1", "tok", "", "+1666")
