from __future__ import annotations

import pytest

from unusual_options.config import DEFAULT_CONFIG, load_config, validate_config


def _env(**kw) -> dict[str, str]:
    base = {"TRADIER_API_KEY": "key", "TRADIER_API_URL": "https://sandbox.tradier.com/v1"}
    base.update(kw)
    return base


def test_defaults_when_only_tradier_is_set():
    cfg = load_config(_env())
    assert cfg.tradier.api_key == "key"
    assert cfg.signal == DEFAULT_CONFIG.signal
    assert cfg.paper.time_limit_hours == 24.0
    assert cfg.scanner.tickers == ()
    assert validate_config(cfg) == {"tradier": True, "twilio": False}


def test_missing_tradier_settings_raise():
    with pytest.raises(ValueError, match="TRADIER_API_KEY"):
        load_config({"TRADIER_API_URL": "https://x"})
    with pytest.raises(ValueError, match="TRADIER_API_URL"):
        load_config({"TRADIER_API_KEY": "k"})


def test_overrides_are_parsed():
    cfg = load_config(
        _env(
            MIN_PREMIUM="50000",
            MIN_VOLUME_OI_RATIO="2.5",
            MAX_DTE="30",
            PAPER_TIME_LIMIT_HOURS="6",
            SCAN_TICKERS=" nvda, spy ,,tsla",
            DB_PATH="/tmp/x.db",
        )
    )
    assert cfg.signal.min_premium == 50_000.0
    assert cfg.signal.min_volume_oi_ratio == 2.5
    assert cfg.signal.max_dte == 30
    assert cfg.paper.time_limit_hours == 6.0
    assert cfg.scanner.tickers == ("NVDA", "SPY", "TSLA")
    assert cfg.scanner.db_path == "/tmp/x.db"


def test_twilio_needs_every_setting():
    partial = load_config(_env(TWILIO_ACCOUNT_SID="AC", TWILIO_AUTH_TOKEN="t", TWILIO_PHONE_NUMBER="+1"))
    assert validate_config(partial)["twilio"] is False
    full = load_config(
        _env(TWILIO_ACCOUNT_SID="AC", TWILIO_AUTH_TOKEN="t", TWILIO_PHONE_NUMBER="+1", ALERT_RECIPIENT_PHONE="+2")
    )
    assert validate_config(full)["twilio"] is True
