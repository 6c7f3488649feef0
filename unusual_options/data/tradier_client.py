from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Optional

import requests

from unusual_options.types import Greeks, OptionQuote, UnderlyingQuote
from unusual_options.utils import parse_date

log = logging.getLogger(__name__)


class MarketDataError(RuntimeError):
    pass


def _as_list(value: Any) -> list:
    # Tradier returns a bare object for single results and null for none
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _f(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _i(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def parse_greeks(row: dict | None) -> Optional[Greeks]:
    if not row:
        return None
    iv = _f(row.get("mid_iv"))
    if not iv:
        iv = _f(row.get("smv_vol"))
    return Greeks(
        delta=_f(row.get("delta")),
        gamma=_f(row.get("gamma")),
        theta=_f(row.get("theta")),
        vega=_f(row.get("vega")),
        rho=_f(row.get("rho")),
        phi=_f(row.get("phi")),
        implied_volatility=iv,
        updated_at=row.get("updated_at"),
    )


def parse_option_quote(row: dict, *, quoted_at: datetime | None = None) -> OptionQuote:
    option_type = row.get("option_type")
    return OptionQuote(
        symbol=str(row.get("symbol", "")),
        underlying=row.get("underlying") or None,
        kind=str(row.get("type", "")),
        option_type=option_type if option_type in ("call", "put") else None,
        strike=_f(row.get("strike")),
        expiration_date=parse_date(row.get("expiration_date")),
        volume=_i(row.get("volume")),
        open_interest=_i(row.get("open_interest")),
        last=_f(row.get("last")),
        bid=_f(row.get("bid")),
        ask=_f(row.get("ask")),
        bid_size=_i(row.get("bidsize")),
        ask_size=_i(row.get("asksize")),
        contract_size=_i(row.get("contract_size")) or 100,
        greeks=parse_greeks(row.get("greeks")),
        description=row.get("description"),
        exchange=row.get("exch"),
        trade_date=_i(row.get("trade_date")),
        quoted_at=quoted_at or datetime.now(timezone.utc),
    )


def parse_underlying_quote(row: dict) -> UnderlyingQuote:
    return UnderlyingQuote(
        ticker=str(row.get("symbol", "")),
        kind=str(row.get("type", "")),
        last=_f(row.get("last")),
        change=_f(row.get("change")),
        change_pct=_f(row.get("change_percentage")),
        description=row.get("description"),
    )


class TradierClient:
    """Thin wrapper over the Tradier market-data REST API.

    Handles:
      - /markets/quotes
      - /markets/options/expirations
      - /markets/options/chains
      - /markets/clock
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://sandbox.tradier.com/v1",
        timeout: int = 10,
        session: requests.Session | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Tradier API key is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {api_key}", "Accept": "application/json"})

    def _get(self, path: str, params: dict[str, Any]) -> dict:
        url = self.base_url + path
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise MarketDataError(f"Tradier GET {path} failed: {e}") from e
        if not isinstance(data, dict):
            raise MarketDataError(f"Tradier GET {path} returned unexpected payload")
        return data

    def get_quotes(self, symbols: str | list[str], greeks: bool = True) -> list[dict]:
        joined = symbols if isinstance(symbols, str) else ",".join(symbols)
        data = self._get("/markets/quotes", {"symbols": joined, "greeks": str(greeks).lower()})
        quotes = data.get("quotes") or {}
        return [q for q in _as_list(quotes.get("quote")) if isinstance(q, dict)]

    def get_underlying_quote(self, ticker: str) -> Optional[UnderlyingQuote]:
        rows = self.get_quotes(ticker, greeks=False)
        if not rows:
            return None
        try:
            return parse_underlying_quote(rows[0])
        except (TypeError, ValueError) as e:
            raise MarketDataError(f"Tradier quote for {ticker} is malformed: {e}") from e

    def get_option_quote(self, symbol: str) -> Optional[OptionQuote]:
        rows = self.get_quotes(symbol, greeks=True)
        if not rows:
            return None
        try:
            return parse_option_quote(rows[0])
        except (TypeError, ValueError) as e:
            raise MarketDataError(f"Tradier quote for {symbol} is malformed: {e}") from e

    def get_expirations(self, ticker: str) -> list[date]:
        data = self._get("/markets/options/expirations", {"symbol": ticker})
        exps = data.get("expirations") or {}
        out = []
        for d in _as_list(exps.get("date")):
            try:
                parsed = parse_date(d)
            except ValueError:
                log.warning("expiration_parse_failed ticker=%s value=%r", ticker, d)
                continue
            if parsed is not None:
                out.append(parsed)
        return sorted(out)

    def get_options_chain(self, ticker: str, expiration: date, greeks: bool = True) -> list[OptionQuote]:
        data = self._get(
            "/markets/options/chains",
            {"symbol": ticker, "expiration": expiration.isoformat(), "greeks": str(greeks).lower()},
        )
        options = data.get("options") or {}
        now = datetime.now(timezone.utc)
        out: list[OptionQuote] = []
        for r in _as_list(options.get("option")):
            if not isinstance(r, dict):
                continue
            # one bad row must not cost the rest of the chain
            try:
                out.append(parse_option_quote(r, quoted_at=now))
            except (TypeError, ValueError) as e:
                log.warning("quote_parse_failed symbol=%s error=%s", r.get("symbol"), e)
        return out

    def get_market_status(self) -> dict:
        data = self._get("/markets/clock", {})
        return data.get("clock") or {}
