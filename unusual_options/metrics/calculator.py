from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime

from unusual_options.types import ContractSymbol, InvalidTradeStateError, MoneynessCategory, OptionType
from unusual_options.utils import as_utc, round2


# TICKER + YYMMDD + C/P + strike * 1000 (8 digits)
_CONTRACT_RE = re.compile(r"^([A-Z]+)(\d{2})(\d{2})(\d{2})([CP])(\d{8})$")


@dataclass(frozen=True)
class PnL:
    pnl: float
    pnl_pct: float


def days_to_expiration(expiration_date: date, now: datetime) -> int:
    return (expiration_date - as_utc(now).date()).days


def premium(last_price: float, volume: int, multiplier: int = 100) -> float:
    return float(last_price) * int(volume) * int(multiplier)


def bid_ask_spread_pct(bid: float, ask: float) -> float:
    if bid <= 0 or ask <= 0:
        return 0.0
    mid = (bid + ask) / 2.0
    return (ask - bid) / mid * 100.0


def moneyness(strike: float, underlying_price: float, option_type: OptionType) -> float:
    """Signed distance of the strike from the underlying, in percent.

    Positive is out-of-the-money for both calls and puts.
    """
    if underlying_price <= 0:
        return 0.0
    if option_type == "call":
        return (strike - underlying_price) / underlying_price * 100.0
    return (underlying_price - strike) / underlying_price * 100.0


def moneyness_category(pct: float) -> MoneynessCategory:
    # Checked in order; each boundary belongs to the less extreme bucket.
    if pct < -10:
        return "deep_itm"
    if pct < -2:
        return "itm"
    if abs(pct) <= 2:
        return "atm"
    if pct <= 10:
        return "otm"
    return "deep_otm"


def mid_price(bid: float, ask: float) -> float:
    if bid <= 0 or ask <= 0:
        return 0.0
    return (bid + ask) / 2.0


def pnl(entry_price: float, exit_price: float, quantity: int, multiplier: int = 100) -> PnL:
    if entry_price <= 0:
        raise InvalidTradeStateError(f"entry price must be positive, got {entry_price}")
    diff = exit_price - entry_price
    return PnL(
        pnl=round2(diff * quantity * multiplier),
        pnl_pct=round2(diff / entry_price * 100.0),
    )


def parse_contract_symbol(symbol: str) -> ContractSymbol | None:
    m = _CONTRACT_RE.match(symbol or "")
    if m is None:
        return None
    ticker, yy, mm, dd, flag, strike = m.groups()
    return ContractSymbol(
        ticker=ticker,
        year=2000 + int(yy),
        month=int(mm),
        day=int(dd),
        option_type="call" if flag == "C" else "put",
        strike=int(strike) / 1000.0,
    )
