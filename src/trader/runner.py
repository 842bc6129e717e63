from __future__ import annotations

import logging
import os
from typing import Mapping

from src.broker.settings import load_client_settings, settings_summary
from src.domain.errors import BrokerError
from src.domain.models import AuthStatus, OrderKind
from src.ports.broker import HttpSessionPort
from src.trader.client import BrokerageClient
from src.utils.config_loader import load_config

logger = logging.getLogger(__name__)

# Number of recent orders summarised at startup.
RECENT_ORDERS = 5


def connect_from_env(
    config: dict | None,
    env: Mapping[str, str],
    *,
    http_session: HttpSessionPort | None = None,
) -> BrokerageClient | None:
    """
    Build an authenticated client from environment credentials.

    Prefers ROBINHOOD_ACCESS_TOKEN; otherwise logs in with ROBINHOOD_USERNAME /
    ROBINHOOD_PASSWORD, using ROBINHOOD_MFA_CODE if the API asks for one.
    Returns None (after logging why) when no usable credentials are available.
    """
    settings = load_client_settings(config)
    logger.info("Client settings: %s", settings_summary(settings))

    token = (env.get("ROBINHOOD_ACCESS_TOKEN") or "").strip()
    if token:
        return BrokerageClient.from_token(token, settings, http_session=http_session)

    username = (env.get("ROBINHOOD_USERNAME") or "").strip()
    password = env.get("ROBINHOOD_PASSWORD") or ""
    if not username or not password:
        logger.error("Set ROBINHOOD_ACCESS_TOKEN or ROBINHOOD_USERNAME and ROBINHOOD_PASSWORD")
        return None

    client = BrokerageClient(settings, http_session=http_session)
    outcome = client.login_with_mfa(username, password, lambda: env.get("ROBINHOOD_MFA_CODE", ""))
    if outcome.ok:
        return client

    if outcome.status is AuthStatus.INVALID:
        logger.error("Invalid credentials.")
    elif outcome.status is AuthStatus.MFA_REQUIRED:
        logger.error("An MFA code is required; set ROBINHOOD_MFA_CODE.")
    else:
        logger.error(f"Login failed: {outcome.detail}")
    client.close()
    return None


def run(
    config: dict | None = None,
    env: Mapping[str, str] | None = None,
    *,
    http_session: HttpSessionPort | None = None,
) -> int:
    """Log in, check the session, summarise recent orders, then shut down cleanly."""
    client = connect_from_env(config, os.environ if env is None else env, http_session=http_session)
    if client is None:
        return 1

    with client:
        try:
            if not client.accounts.logged_in():
                logger.error("The API rejected the session token.")
                return 1
            recent = client.orders.list_orders(OrderKind.EQUITY, last=RECENT_ORDERS)
            for order in recent:
                logger.info(
                    f"{order.state:<10} {order.side.upper():<4} {order.quantity} {order.symbol} @ {order.price}"
                )
            open_count = sum(1 for o in recent if o.cancellable)
            logger.info(f"{len(recent)} recent equity order(s), {open_count} still open")
        except BrokerError as e:
            logger.error(f"Session check failed: {type(e).__name__}: {e}")
            return 1
    return 0


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        code = run(load_config())
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        code = 130
    raise SystemExit(code)


if __name__ == "__main__":
    main()
