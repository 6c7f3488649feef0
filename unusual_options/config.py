from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Literal, Mapping


ExitStrategy = Literal["time_limit", "manual"]


@dataclass(frozen=True)
class SignalConfig:
    # Unusual-activity thresholds
    min_premium: float = 25_000.0
    min_volume_oi_ratio: float = 3.0
    min_absolute_volume: int = 100
    max_dte: int = 45

    # Advisory only, never rejects a contract
    min_otm_percent: float = 10.0


@dataclass(frozen=True)
class PaperTradeConfig:
    auto_enter: bool = True
    exit_strategy: ExitStrategy = "time_limit"
    time_limit_hours: float = 24.0
    default_quantity: int = 1
    contract_multiplier: int = 100


@dataclass(frozen=True)
class ScannerConfig:
    interval_seconds: int = 60
    expirations_per_ticker: int = 3
    request_delay_seconds: float = 0.5
    ticker_delay_seconds: float = 1.0
    db_path: str = "unusual_options.db"
    dedup_window_seconds: int = 60
    tickers: tuple[str, ...] = ()


@dataclass(frozen=True)
class TradierConfig:
    api_key: str = ""
    api_url: str = "https://sandbox.tradier.com/v1"


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str = ""
    auth_token: str = ""
    phone_number: str = ""
    recipient_phone: str = ""


@dataclass(frozen=True)
class AppConfig:
    tradier: TradierConfig = field(default_factory=TradierConfig)
    twilio: TwilioConfig = field(default_factory=TwilioConfig)
    signal: SignalConfig = field(default_factory=SignalConfig)
    paper: PaperTradeConfig = field(default_factory=PaperTradeConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    env: str = "development"


DEFAULT_CONFIG = AppConfig()


def _tickers(raw: str) -> tuple[str, ...]:
    return tuple(t.strip().upper() for t in raw.split(",") if t.strip())


def load_config(environ: Mapping[str, str] | None = None) -> AppConfig:
    env = os.environ if environ is None else environ

    missing = [k for k in ("TRADIER_API_KEY", "TRADIER_API_URL") if not env.get(k)]
    if missing:
        raise ValueError(
            f"Missing required environment variables: {', '.join(missing)}. "
            "Copy .env.example to .env and fill in your credentials."
        )

    d_sig = DEFAULT_CONFIG.signal
    d_scan = DEFAULT_CONFIG.scanner
    return AppConfig(
        tradier=TradierConfig(api_key=env["TRADIER_API_KEY"], api_url=env["TRADIER_API_URL"]),
        twilio=TwilioConfig(
            account_sid=env.get("TWILIO_ACCOUNT_SID", ""),
            auth_token=env.get("TWILIO_AUTH_TOKEN", ""),
            phone_number=env.get("TWILIO_PHONE_NUMBER", ""),
            recipient_phone=env.get("ALERT_RECIPIENT_PHONE", ""),
        ),
        signal=SignalConfig(
            min_premium=float(env.get("MIN_PREMIUM", d_sig.min_premium)),
            min_volume_oi_ratio=float(env.get("MIN_VOLUME_OI_RATIO", d_sig.min_volume_oi_ratio)),
            min_absolute_volume=int(env.get("MIN_ABSOLUTE_VOLUME", d_sig.min_absolute_volume)),
            max_dte=int(env.get("MAX_DTE", d_sig.max_dte)),
            min_otm_percent=float(env.get("MIN_OTM_PERCENT", d_sig.min_otm_percent)),
        ),
        paper=PaperTradeConfig(
            time_limit_hours=float(env.get("PAPER_TIME_LIMIT_HOURS", DEFAULT_CONFIG.paper.time_limit_hours)),
        ),
        scanner=ScannerConfig(
            interval_seconds=int(env.get("SCAN_INTERVAL_SECONDS", d_scan.interval_seconds)),
            db_path=env.get("DB_PATH", d_scan.db_path),
            tickers=_tickers(env.get("SCAN_TICKERS", "")),
        ),
        env=env.get("APP_ENV", "development"),
    )


def validate_config(cfg: AppConfig) -> dict[str, bool]:
    t = cfg.twilio
    return {
        "tradier": bool(cfg.tradier.api_key and cfg.tradier.api_url),
        "twilio": bool(t.account_sid and t.auth_token and t.phone_number and t.recipient_phone),
    }
