from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from src.broker.instruments import InstrumentResolver
from src.broker.pagination import PaginatedFetcher
from src.broker.routes import ApiRoutes
from src.broker.settings import ClientSettings
from src.domain.errors import IntegrationFault, NetworkFault, ValidationFault, rejects_invalid_input
from src.domain.models import (
    ORDER_SIDES,
    OptionLeg,
    OptionOrder,
    Order,
    OrderFilters,
    OrderKind,
)
from src.ports.broker import TransportPort
from src.trading.account import AccountService

logger = logging.getLogger(__name__)

# Option prices are quoted per share; one contract covers 100 shares.
OPTION_CONTRACT_MULTIPLIER = 100


def _parse_quantity(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, float):
            if not value.is_integer():
                return None
            qty = int(value)
        else:
            qty = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return qty if qty > 0 else None


def _parse_price(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        price = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


class OrderService:
    """
    Builds, validates, submits, lists and cancels equity and option limit orders.

    Input is validated locally before any request; invalid input returns False.
    Dry runs only read (quote/instrument lookups) and return a preview string.
    Order state always comes from the API; nothing here infers it.
    """

    def __init__(
        self,
        transport: TransportPort,
        fetcher: PaginatedFetcher,
        resolver: InstrumentResolver,
        accounts: AccountService,
        settings: ClientSettings | None = None,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        ref_id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self.transport = transport
        self.fetcher = fetcher
        self.resolver = resolver
        self.accounts = accounts
        self.routes = ApiRoutes((settings or ClientSettings()).origin)
        self._now = now
        self._new_ref_id = ref_id_factory

    # ----- Placement -----

    def place_equity_order(
        self,
        side: str,
        symbol: str,
        quantity: Any,
        price: Any,
        dry_run: bool = True,
    ) -> str | bool:
        """
        Place a good-for-day limit order for shares.

        Args:
            side: "buy" or "sell".
            symbol: Ticker symbol.
            quantity: Whole number of shares (> 0).
            price: Limit price per share (> 0).
            dry_run: When True, return a description of the order instead of submitting it.

        Returns:
            The preview string for a dry run; otherwise True iff the API answered 201.
            False (with no request made) when the input is invalid.
        """
        side_norm = str(side or "").strip().lower()
        symbol_norm = str(symbol or "").strip().upper()
        qty = _parse_quantity(quantity)
        px = _parse_price(price)
        if side_norm not in ORDER_SIDES or not symbol_norm or qty is None or px is None:
            logger.warning(
                f"Rejected equity order input: side={side!r} symbol={symbol!r} quantity={quantity!r} price={price!r}"
            )
            return False

        instrument = self.resolver.instrument_url_for(symbol_norm)
        if dry_run:
            name = self.resolver.display_name(instrument)
            return (
                f"You are placing an order to {side_norm} {qty} shares of {name} ({symbol_norm}) "
                f"with a limit price of {px}"
            )

        payload = {
            "account": self.accounts.account_url(),
            "instrument": instrument,
            "symbol": symbol_norm,
            "side": side_norm,
            "quantity": str(qty),
            "price": str(px),
            "type": "limit",
            "time_in_force": "gfd",
            "trigger": "immediate",
        }
        response = self.transport.post(self.routes.orders, payload)
        placed = response.status == 201
        if placed:
            logger.info(f"Placed {side_norm.upper()} limit order for {qty} {symbol_norm} @ {px}")
        else:
            logger.warning(f"Equity order for {symbol_norm} not accepted (HTTP {response.status})")
        return placed

    def place_option_order(
        self,
        instrument_ref: str,
        quantity: Any,
        price: Any,
        dry_run: bool = True,
        *,
        ref_id: str | None = None,
    ) -> str | bool:
        """
        Buy to open a single-leg debit limit order for option contracts.

        A live submission carries a reference id. Pass `ref_id` to resubmit the same logical
        order; otherwise a fresh one is generated per submission (never for dry runs).
        """
        ref = str(instrument_ref or "").strip()
        qty = _parse_quantity(quantity)
        px = _parse_price(price)
        if not ref.startswith(self.routes.option_instruments) or qty is None or px is None:
            logger.warning(
                f"Rejected option order input: instrument={instrument_ref!r} quantity={quantity!r} price={price!r}"
            )
            return False

        if dry_run:
            return self._option_preview(ref, qty, px)

        payload = {
            "account": self.accounts.account_url(),
            "direction": "debit",
            "legs": [OptionLeg(side="buy", option=ref, position_effect="open", ratio_quantity=1).to_payload()],
            "override_day_trade_checks": False,
            "override_dtbp_checks": False,
            "price": str(px),
            "quantity": str(qty),
            "ref_id": ref_id or self._new_ref_id(),
            "time_in_force": "gfd",
            "trigger": "immediate",
            "type": "limit",
        }
        response = self.transport.post(self.routes.option_orders, payload)
        placed = response.status == 201
        if placed:
            logger.info(f"Placed option BUY limit order for {qty} contracts @ {px}")
        else:
            logger.warning(f"Option order not accepted (HTTP {response.status})")
        return placed

    def _option_preview(self, instrument_ref: str, qty: int, px: float) -> str:
        option = self.resolver.instrument(instrument_ref)
        chain_symbol = str(option.get("chain_symbol") or "").upper()
        if not chain_symbol:
            raise IntegrationFault(f"Option instrument {instrument_ref} has no chain_symbol")
        name = self.resolver.display_name(self.resolver.instrument_url_for(chain_symbol))
        total = qty * px * OPTION_CONTRACT_MULTIPLIER
        return (
            f"You are placing an order to buy {qty} contracts of the ${option.get('strike_price')} "
            f"{option.get('expiration_date')} {option.get('type')} for {name} ({chain_symbol}) "
            f"with a limit price of {px}\nTotal cost: ${total:,.2f}"
        )

    # ----- Listing -----

    @rejects_invalid_input(default_factory=list)
    def list_orders(
        self,
        kind: OrderKind | str,
        *,
        days: Any = None,
        symbol: str | None = None,
        last: Any = None,
    ) -> list[Order] | list[OptionOrder]:
        """
        Orders newest first.

        - days: only orders updated in the last N days (server-side filter).
        - symbol: equity orders filter server-side by instrument; option orders by chain symbol.
        - last: only the most recent N; pagination stops once N are held.

        Invalid filters are logged and yield an empty list without any request.
        """
        kind = OrderKind.parse(kind)
        filters = OrderFilters.build(days=days, symbol=symbol, last=last)
        if filters.last == 0:
            return []

        query: dict[str, Any] = {}
        if filters.days is not None:
            since = self._now().astimezone(timezone.utc) - timedelta(days=filters.days)
            query["updated_at[gte]"] = since.strftime("%Y-%m-%dT%H:%M:%SZ")

        if kind is OrderKind.EQUITY:
            if filters.symbol:
                query["instrument"] = self.resolver.instrument_url_for(filters.symbol)
            payloads = self.fetcher.fetch_all(self.routes.orders, filters.last, query=query or None)
            return [self._equity_order(p, filters.symbol) for p in payloads]

        # Option orders have no server-side symbol filter; `last` applies after filtering.
        limit = None if filters.symbol else filters.last
        payloads = self.fetcher.fetch_all(self.routes.option_orders, limit, query=query or None)
        orders = [OptionOrder.from_payload(p) for p in payloads]
        if filters.symbol:
            orders = [o for o in orders if o.chain_symbol.upper() == filters.symbol]
            if filters.last is not None:
                orders = orders[: filters.last]
        return orders

    @rejects_invalid_input(default_factory=lambda: None)
    def get_order(self, kind: OrderKind | str, order_id: str) -> Order | OptionOrder | None:
        """One order by id; None (no request) for an unknown kind or an empty id."""
        kind = OrderKind.parse(kind)
        order_id = str(order_id or "").strip()
        if not order_id:
            raise ValidationFault("order id must be a non-empty string")
        if kind is OrderKind.EQUITY:
            payload = self.transport.get_json(self.routes.order(order_id)).unwrap()
            return self._equity_order(payload)
        payload = self.transport.get_json(self.routes.option_order(order_id)).unwrap()
        return OptionOrder.from_payload(payload)

    def _equity_order(self, payload: dict[str, Any], symbol: str | None = None) -> Order:
        if symbol is None and payload.get("instrument"):
            symbol = self.resolver.resolve(str(payload["instrument"]))
        return Order.from_payload(payload, symbol=symbol)

    # ----- Cancellation -----

    @rejects_invalid_input(default_factory=lambda: False)
    def cancel_order(self, kind: OrderKind | str, order_id: str) -> bool:
        """True iff the cancel sub-resource answered 200."""
        kind = OrderKind.parse(kind)
        order_id = str(order_id or "").strip()
        if not order_id:
            logger.warning("Rejected cancel request with an empty order id")
            return False
        url = self.routes.cancel_order(order_id) if kind is OrderKind.EQUITY else self.routes.cancel_option_order(order_id)
        response = self.transport.post(url, {})
        cancelled = response.status == 200
        if cancelled:
            logger.info(f"Cancelled {kind.value} order {order_id}")
        else:
            logger.warning(f"Cancel of {kind.value} order {order_id} not accepted (HTTP {response.status})")
        return cancelled

    @rejects_invalid_input(default_factory=int)
    def cancel_all(self, kind: OrderKind | str) -> int:
        """
        Cancel every order of `kind` that still exposes a cancel link.

        Each cancellation is independent: a failure is logged and the batch carries on.
        Returns the number of confirmed cancellations.
        """
        kind = OrderKind.parse(kind)
        if kind is OrderKind.EQUITY:
            orders: list[Order] | list[OptionOrder] = [
                Order.from_payload(p) for p in self.fetcher.fetch_all(self.routes.orders)
            ]
        else:
            orders = [OptionOrder.from_payload(p) for p in self.fetcher.fetch_all(self.routes.option_orders)]

        cancelled = 0
        for order in orders:
            if not order.cancellable:
                continue
            try:
                if self.cancel_order(kind, order.id):
                    cancelled += 1
            except (NetworkFault, IntegrationFault) as e:
                logger.warning(f"Failed to cancel {kind.value} order {order.id}: {e}")
        logger.info(f"Cancelled {cancelled} open {kind.value} order(s)")
        return cancelled
