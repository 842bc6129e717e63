from __future__ import annotations

import logging
from functools import wraps
from typing import Callable, ParamSpec, TypeVar

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class BrokerError(Exception):
    """Base class for every fault raised by the brokerage client."""


class IntegrationFault(BrokerError):
    """The API answered with a status or shape we do not know how to interpret."""

    def __init__(self, message: str, *, status: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class NetworkFault(BrokerError):
    """Transport-level failure (DNS, connect, TLS, timeout)."""


class ValidationFault(BrokerError, ValueError):
    """Bad input detected locally, before any request was made."""


class UntrustedUrlError(ValidationFault):
    """A request targeted a URL outside the configured API origin."""


class SessionFailed(BrokerError):
    """The session can no longer provide a usable credential."""


def rejects_invalid_input(default_factory: Callable[[], T]) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Stop a ValidationFault at a public operation: log it and return `default_factory()`.

    UntrustedUrlError still propagates; a refused URL is never reported as "no data".

    Usage:
        @rejects_invalid_input(default_factory=list)
        def news(self, symbol: str) -> list[dict]:
            ...
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except UntrustedUrlError:
                raise
            except ValidationFault as e:
                logger.warning(f"Rejected {func.__name__} input: {e}")
                return default_factory()

        return wrapper

    return decorator
