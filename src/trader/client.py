from __future__ import annotations

import logging
from typing import Callable

from src.broker.instruments import InstrumentResolver
from src.broker.pagination import PaginatedFetcher
from src.broker.session import SessionManager
from src.broker.settings import ClientSettings
from src.broker.transport import HttpTransport
from src.data.market_data import MarketData
from src.domain.models import AuthOutcome, AuthStatus, SessionState
from src.ports.broker import HttpSessionPort
from src.trading.account import AccountService
from src.trading.orders import OrderService

logger = logging.getLogger(__name__)


class BrokerageClient:
    """
    One object wiring transport, session, pagination, instrument cache and services.

    Build it with `BrokerageClient(settings)` and call `login(...)`, or use
    `from_token(...)` / `unauthenticated(...)`. Call `close()` (or use it as a
    context manager) to stop background renewal on shutdown.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        http_session: HttpSessionPort | None = None,
        session: SessionManager | None = None,
    ) -> None:
        self.settings = settings or ClientSettings()
        if session is not None:
            self.transport = session.transport
            self.session = session
        else:
            self.transport = HttpTransport(self.settings, session=http_session)
            self.session = SessionManager(self.transport, self.settings)

        self.fetcher = PaginatedFetcher(self.transport, self.settings)
        self.instruments = InstrumentResolver(self.transport, self.settings)
        self.accounts = AccountService(self.transport, self.fetcher, self.settings)
        self.market = MarketData(self.transport, self.fetcher, self.instruments, self.settings)
        self.orders = OrderService(self.transport, self.fetcher, self.instruments, self.accounts, self.settings)

    @classmethod
    def from_token(
        cls,
        token: str,
        settings: ClientSettings | None = None,
        *,
        http_session: HttpSessionPort | None = None,
    ) -> "BrokerageClient":
        """Client riding on an existing access token; the caller owns its lifetime."""
        settings = settings or ClientSettings()
        transport = HttpTransport(settings, session=http_session)
        session = SessionManager.from_existing_token(token, transport, settings)
        return cls(settings, session=session)

    @classmethod
    def unauthenticated(
        cls,
        settings: ClientSettings | None = None,
        *,
        http_session: HttpSessionPort | None = None,
    ) -> "BrokerageClient":
        """Client for public market data only."""
        return cls(settings, http_session=http_session)

    @property
    def state(self) -> SessionState:
        return self.session.state

    def login(self, username: str, password: str, mfa_code: str | None = None) -> AuthOutcome:
        return self.session.authenticate(username, password, mfa_code)

    def login_with_mfa(self, username: str, password: str, mfa_prompt: Callable[[], str]) -> AuthOutcome:
        """
        Log in, asking `mfa_prompt` for a code only if the API requires one.

        The prompt is called at most once; whatever the second attempt returns is final.
        """
        outcome = self.login(username, password)
        if outcome.status is not AuthStatus.MFA_REQUIRED:
            return outcome
        code = str(mfa_prompt() or "").strip()
        if not code:
            logger.warning("No MFA code supplied")
            return outcome
        return self.login(username, password, mfa_code=code)

    def close(self) -> None:
        self.session.stop()

    def __enter__(self) -> "BrokerageClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
