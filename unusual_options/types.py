from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Literal, Optional


OptionType = Literal["call", "put"]
MoneynessCategory = Literal["deep_itm", "itm", "atm", "otm", "deep_otm"]
SignalStrength = Literal["high", "medium", "low"]
TradeStatus = Literal["open", "closed", "expired"]
ExitReason = Literal["manual", "time_limit", "expired", "stop_loss", "take_profit"]


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"


class InvalidTradeStateError(RuntimeError):
    pass


@dataclass(frozen=True)
class Greeks:
    delta: Optional[float] = None
    gamma: Optional[float] = None
    theta: Optional[float] = None
    vega: Optional[float] = None
    rho: Optional[float] = None
    phi: Optional[float] = None
    implied_volatility: Optional[float] = None
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class OptionQuote:
    symbol: str
    underlying: Optional[str]
    kind: str
    option_type: Optional[OptionType]
    strike: Optional[float]
    expiration_date: Optional[date]
    volume: Optional[int]
    open_interest: Optional[int]
    last: Optional[float]
    bid: Optional[float] = None
    ask: Optional[float] = None
    bid_size: Optional[int] = None
    ask_size: Optional[int] = None
    contract_size: int = 100
    greeks: Optional[Greeks] = None
    description: Optional[str] = None
    exchange: Optional[str] = None
    trade_date: Optional[int] = None
    quoted_at: Optional[datetime] = None


@dataclass(frozen=True)
class UnderlyingQuote:
    ticker: str
    kind: str
    last: Optional[float]
    change: Optional[float] = None
    change_pct: Optional[float] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class ContractSymbol:
    ticker: str
    year: int
    month: int
    day: int
    option_type: OptionType
    strike: float

    @property
    def expiration_date(self) -> date:
        return date(self.year, self.month, self.day)


@dataclass(frozen=True)
class Signal:
    symbol: str
    ticker: str
    option_type: OptionType
    strike: float
    expiration_date: date
    dte: int
    contract_size: int
    volume: int
    open_interest: int
    volume_oi_ratio: float
    premium: float
    last_price: float
    underlying_price: float
    moneyness: float
    moneyness_category: MoneynessCategory
    strength: SignalStrength
    bid: Optional[float] = None
    ask: Optional[float] = None
    bid_size: Optional[int] = None
    ask_size: Optional[int] = None
    bid_ask_spread_pct: Optional[float] = None
    underlying_change: Optional[float] = None
    underlying_change_pct: Optional[float] = None
    delta: Optional[float] = None
    gamma: Optional[float] = None
    theta: Optional[float] = None
    vega: Optional[float] = None
    rho: Optional[float] = None
    phi: Optional[float] = None
    implied_volatility: Optional[float] = None
    greeks_updated_at: Optional[str] = None
    description: Optional[str] = None
    exchange: Optional[str] = None
    trade_date: Optional[int] = None
    # Assigned by storage
    id: Optional[str] = None
    detected_at: Optional[datetime] = None


@dataclass(frozen=True)
class PaperTrade:
    signal_id: str
    entry_price: float
    entry_time: datetime
    quantity: int = 1
    direction: Direction = Direction.LONG
    entry_underlying_price: Optional[float] = None
    exit_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    exit_underlying_price: Optional[float] = None
    exit_reason: Optional[ExitReason] = None
    pnl: Optional[float] = None
    pnl_pct: Optional[float] = None
    max_pnl: Optional[float] = None
    max_pnl_pct: Optional[float] = None
    min_pnl: Optional[float] = None
    min_pnl_pct: Optional[float] = None
    status: TradeStatus = "open"
    notes: Optional[str] = None
    # Assigned by storage
    id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != "open"
