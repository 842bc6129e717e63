from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

DEFAULT_ORIGIN = "https://api.robinhood.com/"
# OAuth client id used by the web client.
DEFAULT_CLIENT_ID = "c82SH0WZOsabOXGP2sxqcj34FxkvfnWRZBKlBjFS"


@dataclass(frozen=True)
class ClientSettings:
    origin: str = DEFAULT_ORIGIN
    client_id: str = DEFAULT_CLIENT_ID
    scope: str = "internal"
    expires_in: int = 3600
    api_version: str = "1.280.0"
    request_timeout_seconds: float = 30.0
    renewal_threshold_seconds: float = 60.0
    renewal_poll_seconds: float = 10.0
    page_retries: int = 2
    page_backoff_seconds: float = 1.0

    def __post_init__(self) -> None:
        parts = urlsplit(self.origin)
        if parts.scheme != "https" or not parts.hostname:
            raise ValueError(f"api.origin must be an https URL; got {self.origin!r}")
        if not self.origin.endswith("/"):
            object.__setattr__(self, "origin", self.origin + "/")
        if self.request_timeout_seconds <= 0:
            raise ValueError("api.request_timeout_seconds must be > 0")
        if self.expires_in <= 0:
            raise ValueError("api.expires_in must be > 0")
        if not 0 < self.renewal_threshold_seconds < self.expires_in:
            raise ValueError(
                f"session.renewal_threshold_seconds must be between 0 and api.expires_in ({self.expires_in}); "
                f"got {self.renewal_threshold_seconds}"
            )
        if self.renewal_poll_seconds <= 0:
            raise ValueError("session.renewal_poll_seconds must be > 0")
        if self.page_retries < 0:
            raise ValueError("pagination.retries must be >= 0")


def load_client_settings(config: dict | None) -> ClientSettings:
    """Build typed client settings from the `api`, `session` and `pagination` config sections."""
    cfg = config if isinstance(config, dict) else {}
    api = cfg.get("api") or {}
    session = cfg.get("session") or {}
    pagination = cfg.get("pagination") or {}
    defaults = ClientSettings()
    return ClientSettings(
        origin=str(api.get("origin", defaults.origin)),
        client_id=str(api.get("client_id", defaults.client_id)),
        scope=str(api.get("scope", defaults.scope)),
        expires_in=int(api.get("expires_in", defaults.expires_in)),
        api_version=str(api.get("api_version", defaults.api_version)),
        request_timeout_seconds=float(api.get("request_timeout_seconds", defaults.request_timeout_seconds)),
        renewal_threshold_seconds=float(session.get("renewal_threshold_seconds", defaults.renewal_threshold_seconds)),
        renewal_poll_seconds=float(session.get("renewal_poll_seconds", defaults.renewal_poll_seconds)),
        page_retries=int(pagination.get("retries", defaults.page_retries)),
        page_backoff_seconds=float(pagination.get("backoff_seconds", defaults.page_backoff_seconds)),
    )


def settings_summary(settings: ClientSettings) -> dict[str, Any]:
    return {
        "origin": settings.origin,
        "api_version": settings.api_version,
        "request_timeout_seconds": settings.request_timeout_seconds,
        "renewal_threshold_seconds": settings.renewal_threshold_seconds,
        "renewal_poll_seconds": settings.renewal_poll_seconds,
    }
