from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable

from unusual_options.config import SignalConfig
from unusual_options.metrics.calculator import (
    bid_ask_spread_pct,
    days_to_expiration,
    moneyness,
    moneyness_category,
    premium,
)
from unusual_options.signals.classifier import SignalClassifier
from unusual_options.types import OptionQuote, Signal, UnderlyingQuote
from unusual_options.utils import round2, utcnow

log = logging.getLogger(__name__)

UNDERLYING_KINDS = ("stock", "etf")


class SignalDetector:
    """Turns raw option quotes into classified signals.

    Rejection is the common outcome and is never an error: ``evaluate``
    returns ``None`` and the reason is only logged at DEBUG.
    """

    def __init__(self, cfg: SignalConfig, clock: Callable[[], datetime] = utcnow) -> None:
        self.cfg = cfg
        self.classifier = SignalClassifier(cfg)
        self.clock = clock

    def evaluate(self, quote: OptionQuote, underlying: UnderlyingQuote) -> Signal | None:
        if quote.kind != "option" or quote.option_type is None:
            return None
        if underlying.kind not in UNDERLYING_KINDS:
            return None
        if (
            quote.expiration_date is None
            or quote.strike is None
            or quote.volume is None
            or quote.open_interest is None
            or not quote.underlying
            or quote.last is None
            or underlying.last is None
        ):
            log.debug("signal_rejected symbol=%s reason=missing_fields", quote.symbol)
            return None

        dte = days_to_expiration(quote.expiration_date, self.clock())
        prem = premium(quote.last, quote.volume, quote.contract_size)
        ratio = quote.volume / quote.open_interest if quote.open_interest > 0 else 0.0
        money = moneyness(quote.strike, underlying.last, quote.option_type)

        check = self.classifier.check(
            volume=quote.volume,
            open_interest=quote.open_interest,
            premium=prem,
            dte=dte,
        )
        if not check.accepted:
            log.debug("signal_rejected symbol=%s reason=%s", quote.symbol, check.reason)
            return None

        spread = None
        if quote.bid is not None and quote.ask is not None and quote.bid > 0 and quote.ask > 0:
            spread = round2(bid_ask_spread_pct(quote.bid, quote.ask))

        g = quote.greeks
        return Signal(
            symbol=quote.symbol,
            ticker=quote.underlying,
            option_type=quote.option_type,
            strike=float(quote.strike),
            expiration_date=quote.expiration_date,
            dte=dte,
            contract_size=quote.contract_size,
            volume=quote.volume,
            open_interest=quote.open_interest,
            volume_oi_ratio=round2(ratio),
            premium=round2(prem),
            last_price=float(quote.last),
            underlying_price=float(underlying.last),
            moneyness=round2(money),
            moneyness_category=moneyness_category(money),
            strength=self.classifier.strength(
                volume_oi_ratio=ratio,
                premium=prem,
                dte=dte,
                moneyness_pct=money,
            ),
            bid=quote.bid,
            ask=quote.ask,
            bid_size=quote.bid_size,
            ask_size=quote.ask_size,
            bid_ask_spread_pct=spread,
            underlying_change=underlying.change,
            underlying_change_pct=underlying.change_pct,
            delta=g.delta if g else None,
            gamma=g.gamma if g else None,
            theta=g.theta if g else None,
            vega=g.vega if g else None,
            rho=g.rho if g else None,
            phi=g.phi if g else None,
            implied_volatility=g.implied_volatility if g else None,
            greeks_updated_at=g.updated_at if g else None,
            description=quote.description,
            exchange=quote.exchange,
            trade_date=quote.trade_date,
        )

    def evaluate_batch(self, quotes: Iterable[OptionQuote], underlying: UnderlyingQuote) -> list[Signal]:
        out: list[Signal] = []
        for q in quotes:
            sig = self.evaluate(q, underlying)
            if sig is not None:
                out.append(sig)
        return out
