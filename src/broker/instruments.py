from __future__ import annotations

import logging
from typing import Any

from src.broker.routes import ApiRoutes
from src.broker.settings import ClientSettings
from src.domain.errors import IntegrationFault, ValidationFault
from src.ports.broker import TransportPort

logger = logging.getLogger(__name__)


class InstrumentResolver:
    """
    Memoising lookups between instrument references and ticker symbols.

    Many payloads (orders, watchlist items) only carry an instrument URL. Instrument
    identity never changes, so entries are cached for the life of the process with no
    eviction. Two threads missing the same key may both fetch it; the results are equal.
    """

    def __init__(self, transport: TransportPort, settings: ClientSettings | None = None) -> None:
        self.transport = transport
        self.routes = ApiRoutes((settings or ClientSettings()).origin)
        self._instruments: dict[str, dict[str, Any]] = {}
        self._by_symbol: dict[str, str] = {}

    def instrument(self, instrument_ref: str) -> dict[str, Any]:
        """Full instrument record for a reference (cached)."""
        cached = self._instruments.get(instrument_ref)
        if cached is not None:
            return cached
        payload = self.transport.get_json(instrument_ref).unwrap()
        if not isinstance(payload, dict):
            raise IntegrationFault(f"Instrument payload must be an object; got {type(payload).__name__}")
        self._instruments[instrument_ref] = payload
        return payload

    def resolve(self, instrument_ref: str) -> str:
        symbol = self.instrument(instrument_ref).get("symbol")
        if not symbol:
            raise IntegrationFault(f"Instrument {instrument_ref} has no symbol")
        return str(symbol)

    def display_name(self, instrument_ref: str) -> str:
        record = self.instrument(instrument_ref)
        return str(record.get("name") or record.get("simple_name") or record.get("symbol") or "")

    def instrument_url_for(self, symbol: str) -> str:
        """Instrument reference for a ticker, looked up through its quote (cached)."""
        key = _normalise_symbol(symbol)
        cached = self._by_symbol.get(key)
        if cached is not None:
            return cached
        quote = self.transport.get_json(self.routes.quote(key)).unwrap()
        instrument_ref = quote.get("instrument") if isinstance(quote, dict) else None
        if not instrument_ref:
            raise IntegrationFault(f"Quote for {key} has no instrument reference")
        self._by_symbol[key] = str(instrument_ref)
        return str(instrument_ref)

    def cache_size(self) -> int:
        return len(self._instruments)


def _normalise_symbol(symbol: str) -> str:
    if not symbol or not str(symbol).strip():
        raise ValidationFault("symbol must be a non-empty string")
    return str(symbol).strip().upper()
