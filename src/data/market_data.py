from __future__ import annotations

import logging
from typing import Any

import pandas as pd

from src.broker.instruments import InstrumentResolver
from src.broker.pagination import PaginatedFetcher
from src.broker.routes import ApiRoutes
from src.broker.settings import ClientSettings
from src.domain.errors import IntegrationFault, ValidationFault, rejects_invalid_input
from src.ports.broker import TransportPort

logger = logging.getLogger(__name__)

HISTORICAL_INTERVALS = frozenset({"week", "day", "10minute", "5minute"})
HISTORICAL_SPANS = frozenset({"day", "week", "year", "5year", "all"})
HISTORICAL_BOUNDS = frozenset({"extended", "regular", "trading"})
OPTION_TYPES = frozenset({"call", "put"})
MOVER_DIRECTIONS = frozenset({"up", "down"})


def _symbol(symbol: str) -> str:
    if not symbol or not str(symbol).strip():
        raise ValidationFault("symbol must be a non-empty string")
    return str(symbol).strip().upper()


def _choice(value: str, allowed: frozenset[str], *, name: str) -> str:
    v = str(value or "").strip().lower()
    if v not in allowed:
        raise ValidationFault(f"{name} must be one of {sorted(allowed)}; got {value!r}")
    return v


class MarketData:
    """
    Read-only market data: quotes, fundamentals, historicals, news, earnings and options.

    Bad arguments (empty symbol, unknown interval, out-of-range days) are logged and
    answered with an empty result (None, [] or an empty DataFrame) without a request.
    """

    def __init__(
        self,
        transport: TransportPort,
        fetcher: PaginatedFetcher,
        resolver: InstrumentResolver,
        settings: ClientSettings | None = None,
    ) -> None:
        self.transport = transport
        self.fetcher = fetcher
        self.resolver = resolver
        self.routes = ApiRoutes((settings or ClientSettings()).origin)

    # ----- Equities -----

    @rejects_invalid_input(default_factory=lambda: None)
    def quote(self, symbol: str) -> dict[str, Any] | None:
        return self.transport.get_json(self.routes.quote(_symbol(symbol))).unwrap()

    @rejects_invalid_input(default_factory=list)
    def quotes(self, symbols: list[str]) -> list[dict[str, Any]]:
        """Batch quote lookup; unknown symbols come back as null entries and are dropped."""
        joined = ",".join(_symbol(s) for s in symbols)
        payload = self.transport.get_json(self.routes.quotes, query={"symbols": joined}).unwrap()
        return [q for q in (payload or {}).get("results") or [] if q]

    @rejects_invalid_input(default_factory=lambda: None)
    def fundamentals(self, symbol: str) -> dict[str, Any] | None:
        return self.transport.get_json(self.routes.fundamentals(_symbol(symbol))).unwrap()

    @rejects_invalid_input(default_factory=lambda: None)
    def historical_quote(
        self,
        symbol: str,
        interval: str = "day",
        span: str = "year",
        bounds: str = "regular",
    ) -> dict[str, Any] | None:
        query = {
            "interval": _choice(interval, HISTORICAL_INTERVALS, name="interval"),
            "span": _choice(span, HISTORICAL_SPANS, name="span"),
            "bounds": _choice(bounds, HISTORICAL_BOUNDS, name="bounds"),
        }
        return self.transport.get_json(self.routes.historicals(_symbol(symbol)), query=query).unwrap()

    @rejects_invalid_input(default_factory=pd.DataFrame)
    def fetch_historical_data(
        self,
        symbol: str,
        interval: str = "day",
        span: str = "year",
        bounds: str = "regular",
    ) -> pd.DataFrame:
        """Historical bars as a DataFrame indexed by bar start time (empty if none)."""
        payload = self.historical_quote(symbol, interval=interval, span=span, bounds=bounds)
        bars = (payload or {}).get("historicals") or []
        if not bars:
            logger.warning(f"No historical data found for {symbol}")
            return pd.DataFrame()

        df = pd.DataFrame(bars)
        for col in ("open_price", "close_price", "high_price", "low_price"):
            if col in df.columns:
                df[col] = pd.to_numeric(df[col], errors="coerce")
        if "begins_at" in df.columns:
            df["begins_at"] = pd.to_datetime(df["begins_at"], utc=True)
            df.set_index("begins_at", inplace=True)
        return df

    @rejects_invalid_input(default_factory=list)
    def top_movers(self, direction: str) -> list[dict[str, Any]]:
        query = {"direction": _choice(direction, MOVER_DIRECTIONS, name="direction")}
        return self.fetcher.fetch_all(self.routes.top_movers, query=query)

    @rejects_invalid_input(default_factory=list)
    def news(self, symbol: str) -> list[dict[str, Any]]:
        return self.fetcher.fetch_all(self.routes.news(_symbol(symbol)))

    @rejects_invalid_input(default_factory=list)
    def earnings(self, symbol: str) -> list[dict[str, Any]]:
        return self.fetcher.fetch_all(self.routes.earnings, query={"symbol": _symbol(symbol)})

    @rejects_invalid_input(default_factory=list)
    def upcoming_earnings(self, days: int) -> list[dict[str, Any]]:
        try:
            n = int(days)
        except (TypeError, ValueError) as exc:
            raise ValidationFault(f"days must be an integer; got {days!r}") from exc
        if not 1 <= n <= 21:
            raise ValidationFault("days must be between 1 and 21")
        return self.fetcher.fetch_all(self.routes.earnings, query={"range": f"{n}day"})

    def default_watchlist(self) -> list[dict[str, Any]]:
        """Items on the default watchlist, each with its instrument resolved to a `symbol`."""
        items = self.fetcher.fetch_all(self.routes.default_watchlist)
        out = []
        for item in items:
            row = dict(item)
            instrument = item.get("instrument")
            if instrument and not row.get("symbol"):
                row["symbol"] = self.resolver.resolve(str(instrument))
            out.append(row)
        return out

    # ----- Options -----

    @rejects_invalid_input(default_factory=lambda: None)
    def chain_and_expirations(self, symbol: str) -> tuple[str, list[str]] | None:
        """The tradable option chain id for a symbol and its valid expiration dates."""
        instrument = self.resolver.instrument(self.resolver.instrument_url_for(_symbol(symbol)))
        chain_id = instrument.get("tradable_chain_id")
        if not chain_id:
            raise IntegrationFault(f"{_symbol(symbol)} has no tradable option chain")
        chain = self.transport.get_json(self.routes.option_chain(str(chain_id))).unwrap()
        return str(chain_id), list((chain or {}).get("expiration_dates") or [])

    @rejects_invalid_input(default_factory=list)
    def option_instruments(self, option_type: str, expiration_date: str, chain_id: str) -> list[dict[str, Any]]:
        query = {
            "chain_id": chain_id,
            "expiration_dates": expiration_date,
            "state": "active",
            "tradability": "tradable",
            "type": _choice(option_type, OPTION_TYPES, name="option_type"),
        }
        return self.fetcher.fetch_all(self.routes.option_instruments, query=query)

    def option_quote(self, instrument_url: str) -> dict[str, Any] | None:
        results = self.option_quotes([instrument_url])
        return results[0] if results else None

    def option_quotes(self, instrument_urls: list[str]) -> list[dict[str, Any]]:
        if not instrument_urls:
            return []
        query = {"instruments": ",".join(instrument_urls)}
        payload = self.transport.get_json(self.routes.option_quotes, query=query).unwrap()
        return [q for q in (payload or {}).get("results") or [] if q]

    def option_quote_by_id(self, instrument_id: str) -> dict[str, Any]:
        return self.transport.get_json(self.routes.option_quote(instrument_id)).unwrap()
