from __future__ import annotations

import logging
from typing import Any

from src.broker.pagination import PaginatedFetcher
from src.broker.routes import ApiRoutes
from src.broker.settings import ClientSettings
from src.domain.errors import IntegrationFault
from src.ports.broker import TransportPort

logger = logging.getLogger(__name__)


class AccountService:
    """User, account, position and portfolio lookups for the authenticated user."""

    def __init__(
        self,
        transport: TransportPort,
        fetcher: PaginatedFetcher,
        settings: ClientSettings | None = None,
    ) -> None:
        self.transport = transport
        self.fetcher = fetcher
        self.routes = ApiRoutes((settings or ClientSettings()).origin)

    def logged_in(self) -> bool:
        """True if the current token is accepted by the user route."""
        return self.transport.get(self.routes.user).status == 200

    def user(self) -> dict[str, Any]:
        return self.transport.get_json(self.routes.user).unwrap()

    def accounts(self) -> list[dict[str, Any]]:
        return self.fetcher.fetch_all(self.routes.accounts)

    def account(self) -> dict[str, Any]:
        """
        The single brokerage account.

        Multi-account users are not supported: anything other than exactly one account
        raises IntegrationFault rather than guessing which one to trade in.
        """
        accounts = self.accounts()
        if len(accounts) != 1:
            raise IntegrationFault(f"Unexpected number of accounts: {len(accounts)}")
        account = accounts[0]
        if not account.get("url"):
            raise IntegrationFault("Account payload is missing 'url'")
        return account

    def account_url(self) -> str:
        return str(self.account()["url"])

    def stock_positions(self) -> list[dict[str, Any]]:
        positions_url = self.account().get("positions")
        if not positions_url:
            raise IntegrationFault("Account payload is missing 'positions'")
        return self.fetcher.fetch_all(str(positions_url), query={"nonzero": "true"})

    def option_positions(self) -> list[dict[str, Any]]:
        return self.fetcher.fetch_all(self.routes.option_positions, query={"nonzero": "true"})

    def portfolio(self) -> dict[str, Any]:
        portfolio_url = self.account().get("portfolio")
        if not portfolio_url:
            raise IntegrationFault("Account payload is missing 'portfolio'")
        return self.transport.get_json(str(portfolio_url)).unwrap()
