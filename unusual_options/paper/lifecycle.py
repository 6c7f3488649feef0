from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Optional, Protocol

from unusual_options.config import PaperTradeConfig
from unusual_options.metrics.calculator import PnL, days_to_expiration, mid_price, pnl
from unusual_options.types import Direction, ExitReason, InvalidTradeStateError, PaperTrade, Signal
from unusual_options.utils import as_utc, utcnow

log = logging.getLogger(__name__)


class TradeStore(Protocol):
    def get_trade_by_signal_id(self, signal_id: str) -> Optional[PaperTrade]: ...

    def create_paper_trade(self, trade: PaperTrade) -> PaperTrade: ...

    def update_paper_trade(self, trade: PaperTrade) -> PaperTrade: ...

    def record_snapshot(
        self, trade_id: str, option_price: float, underlying_price: float | None, result: PnL, at: datetime
    ) -> None: ...


@dataclass(frozen=True)
class PriceQuote:
    option_price: float
    underlying_price: Optional[float]
    expiration_date: Optional[date] = None


PriceLookup = Callable[[PaperTrade], Optional[PriceQuote]]


@dataclass(frozen=True)
class MonitorReport:
    updated: list[PaperTrade] = field(default_factory=list)
    closed: list[PaperTrade] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def _lo(prev: float | None, cur: float) -> float:
    return cur if prev is None else min(prev, cur)


def _hi(prev: float | None, cur: float) -> float:
    return cur if prev is None else max(prev, cur)


class PaperTradeManager:
    """Simulated position per signal: open -> (monitor)* -> closed | expired.

    Transitions never mutate the trade they are given. The new state is
    persisted first and only the stored copy is returned, so a storage
    failure leaves the caller holding the previous state.
    """

    def __init__(
        self,
        cfg: PaperTradeConfig,
        store: TradeStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.cfg = cfg
        self.store = store
        self.clock = clock

    def entry_price(self, signal: Signal) -> float:
        if signal.bid is not None and signal.ask is not None:
            mid = mid_price(signal.bid, signal.ask)
            if mid > 0:
                return mid
        return float(signal.last_price)

    def enter(self, signal: Signal) -> Optional[PaperTrade]:
        if not self.cfg.auto_enter:
            return None
        if signal.id is None:
            raise InvalidTradeStateError(f"signal {signal.symbol} has not been persisted")

        existing = self.store.get_trade_by_signal_id(signal.id)
        if existing is not None:
            log.info("trade_exists symbol=%s trade_id=%s", signal.symbol, existing.id)
            return existing

        price = self.entry_price(signal)
        if price <= 0:
            log.warning("trade_not_entered symbol=%s reason=no_entry_price", signal.symbol)
            return None

        trade = PaperTrade(
            signal_id=signal.id,
            entry_price=price,
            entry_time=self.clock(),
            quantity=self.cfg.default_quantity,
            direction=Direction.LONG,
            entry_underlying_price=signal.underlying_price,
            notes=f"Auto-entered from {signal.strength} strength signal",
        )
        stored = self.store.create_paper_trade(trade)
        log.info("trade_entered symbol=%s entry=%.2f trade_id=%s", signal.symbol, price, stored.id)
        return stored

    def monitor(self, trade: PaperTrade, option_price: float, underlying_price: float | None) -> PaperTrade:
        if trade.is_terminal:
            raise InvalidTradeStateError(f"trade {trade.id} is {trade.status}")
        cur = pnl(trade.entry_price, option_price, trade.quantity, self.cfg.contract_multiplier)
        updated = replace(
            trade,
            max_pnl=_hi(trade.max_pnl, cur.pnl),
            min_pnl=_lo(trade.min_pnl, cur.pnl),
            max_pnl_pct=_hi(trade.max_pnl_pct, cur.pnl_pct),
            min_pnl_pct=_lo(trade.min_pnl_pct, cur.pnl_pct),
        )
        stored = self.store.update_paper_trade(updated)
        if stored.id is not None:
            self.store.record_snapshot(stored.id, option_price, underlying_price, cur, self.clock())
        log.info(
            "trade_marked trade_id=%s entry=%.2f current=%.2f pnl=%.2f pnl_pct=%.2f",
            trade.id,
            trade.entry_price,
            option_price,
            cur.pnl,
            cur.pnl_pct,
        )
        return stored

    def exit(
        self,
        trade: PaperTrade,
        exit_price: float,
        exit_underlying_price: float | None,
        reason: ExitReason,
    ) -> PaperTrade:
        if trade.is_terminal:
            raise InvalidTradeStateError(f"trade {trade.id} already {trade.status}")
        final = pnl(trade.entry_price, exit_price, trade.quantity, self.cfg.contract_multiplier)
        closed = replace(
            trade,
            exit_price=exit_price,
            exit_time=self.clock(),
            exit_underlying_price=exit_underlying_price,
            exit_reason=reason,
            pnl=final.pnl,
            pnl_pct=final.pnl_pct,
            status="expired" if reason == "expired" else "closed",
        )
        stored = self.store.update_paper_trade(closed)
        log.info(
            "trade_closed trade_id=%s reason=%s pnl=%+.2f pnl_pct=%+.2f",
            trade.id,
            reason,
            final.pnl,
            final.pnl_pct,
        )
        return stored

    def auto_exit_reason(self, trade: PaperTrade, expiration_date: date | None) -> Optional[ExitReason]:
        now = self.clock()
        if self.cfg.exit_strategy == "time_limit":
            held = as_utc(now) - as_utc(trade.entry_time)
            if held >= timedelta(hours=self.cfg.time_limit_hours):
                return "time_limit"
        if expiration_date is not None and days_to_expiration(expiration_date, now) <= 0:
            return "expired"
        return None

    def auto_enter_batch(self, signals: Iterable[Signal]) -> list[PaperTrade]:
        if not self.cfg.auto_enter:
            return []
        out: list[PaperTrade] = []
        for s in signals:
            if s.id is None:
                continue
            try:
                trade = self.enter(s)
            except Exception:  # noqa: BLE001
                log.exception("trade_enter_error symbol=%s", s.symbol)
                continue
            if trade is not None:
                out.append(trade)
        return out

    def monitor_all(self, open_trades: Iterable[PaperTrade], price_lookup: PriceLookup) -> MonitorReport:
        report = MonitorReport()
        for trade in open_trades:
            if trade.is_terminal:
                continue
            try:
                quote = price_lookup(trade)
            except Exception:  # noqa: BLE001
                log.warning("price_lookup_failed trade_id=%s", trade.id, exc_info=True)
                quote = None
            if quote is None:
                report.skipped.append(str(trade.id))
                continue

            try:
                cur = self.monitor(trade, quote.option_price, quote.underlying_price)
                reason = self.auto_exit_reason(cur, quote.expiration_date)
                if reason is not None:
                    cur = self.exit(cur, quote.option_price, quote.underlying_price, reason)
                    report.closed.append(cur)
                else:
                    report.updated.append(cur)
            except Exception:  # noqa: BLE001
                log.exception("trade_monitor_error trade_id=%s", trade.id)
                report.skipped.append(str(trade.id))
        return report
