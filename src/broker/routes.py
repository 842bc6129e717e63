from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote


@dataclass(frozen=True)
class ApiRoutes:
    """Absolute route table for one API origin (always ends with '/')."""

    origin: str

    def _url(self, path: str) -> str:
        return f"{self.origin}{path}"

    @property
    def oauth_token(self) -> str:
        # Password exchange and refresh share the same route.
        return self._url("oauth2/token/")

    @property
    def user(self) -> str:
        return self._url("user/")

    @property
    def accounts(self) -> str:
        return self._url("accounts/")

    @property
    def orders(self) -> str:
        return self._url("orders/")

    @property
    def option_orders(self) -> str:
        return self._url("options/orders/")

    @property
    def option_positions(self) -> str:
        return self._url("options/positions/")

    @property
    def option_quotes(self) -> str:
        return self._url("marketdata/options/")

    @property
    def option_instruments(self) -> str:
        return self._url("options/instruments/")

    @property
    def default_watchlist(self) -> str:
        return self._url("watchlists/Default/")

    @property
    def quotes(self) -> str:
        return self._url("quotes/")

    @property
    def top_movers(self) -> str:
        return self._url("midlands/movers/sp500/")

    @property
    def earnings(self) -> str:
        return self._url("marketdata/earnings/")

    @property
    def instruments(self) -> str:
        return self._url("instruments/")

    def quote(self, symbol: str) -> str:
        return self._url(f"quotes/{_segment(symbol)}/")

    def fundamentals(self, symbol: str) -> str:
        return self._url(f"fundamentals/{_segment(symbol)}/")

    def historicals(self, symbol: str) -> str:
        return self._url(f"quotes/historicals/{_segment(symbol)}/")

    def news(self, symbol: str) -> str:
        return self._url(f"midlands/news/{_segment(symbol)}/")

    def option_chain(self, chain_id: str) -> str:
        return self._url(f"options/chains/{_segment(chain_id)}/")

    def option_quote(self, instrument_id: str) -> str:
        return self._url(f"marketdata/options/{_segment(instrument_id)}/")

    def order(self, order_id: str) -> str:
        return self._url(f"orders/{_segment(order_id)}/")

    def cancel_order(self, order_id: str) -> str:
        return self._url(f"orders/{_segment(order_id)}/cancel/")

    def option_order(self, order_id: str) -> str:
        return self._url(f"options/orders/{_segment(order_id)}/")

    def cancel_option_order(self, order_id: str) -> str:
        return self._url(f"options/orders/{_segment(order_id)}/cancel/")


def _segment(value: str) -> str:
    # A single path segment; keeps ids and symbols from escaping the route.
    return quote(str(value).strip(), safe="")
