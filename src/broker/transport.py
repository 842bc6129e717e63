from __future__ import annotations

import gzip
import logging
import zlib
from typing import Any
from urllib.parse import urlsplit

import requests

from src.broker.settings import ClientSettings
from src.domain.errors import IntegrationFault, NetworkFault, UntrustedUrlError
from src.domain.models import ApiResult, RawResponse
from src.ports.broker import CredentialSource, HttpSessionPort

logger = logging.getLogger(__name__)

_GZIP_MAGIC = b"\x1f\x8b"


def browser_headers(api_version: str) -> dict[str, str]:
    """Headers the web client sends on every call."""
    return {
        "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.14; rv:68.0) Gecko/20100101 Firefox/68.0",
        "Accept": "*/*",
        "Accept-Language": "en-US,en;q=0.5",
        "Accept-Encoding": "gzip, deflate",
        "Referer": "https://robinhood.com/",
        "X-Robinhood-API-Version": api_version,
        "Origin": "https://robinhood.com",
    }


def decode_body(body: bytes, headers: dict[str, str]) -> bytes:
    """
    Gunzip the body when the response declares gzip encoding.

    `requests` usually decodes gzip already; the magic-number check keeps an already
    decoded body from being decompressed twice.
    """
    encoding = ""
    for key, value in headers.items():
        if key.lower() == "content-encoding":
            encoding = str(value).lower()
            break
    if "gzip" in encoding and body[:2] == _GZIP_MAGIC:
        try:
            return gzip.decompress(body)
        except (OSError, EOFError, zlib.error) as exc:
            raise IntegrationFault(f"Response body is not valid gzip: {exc}", body=repr(body[:64])) from exc
    return body


class HttpTransport:
    """
    Stateless GET/POST against a single trusted API origin.

    - Rejects any URL outside the origin before touching the network.
    - Adds the browser headers, plus a bearer token for authenticated calls
      when a credential source is attached and yields a credential.
    - Never retries: only callers know whether an operation is idempotent.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        session: HttpSessionPort | None = None,
        credential_source: CredentialSource | None = None,
    ) -> None:
        self.settings = settings or ClientSettings()
        self.session = session if session is not None else requests.Session()
        self.timeout = float(self.settings.request_timeout_seconds)
        self._credential_source = credential_source

        origin = urlsplit(self.settings.origin)
        self._origin_scheme = origin.scheme
        self._origin_host = (origin.hostname or "").lower()
        self._origin_port = origin.port
        self._origin_path = origin.path or "/"

    def attach_credentials(self, source: CredentialSource | None) -> None:
        self._credential_source = source

    def ensure_trusted(self, url: str) -> None:
        """Raise UntrustedUrlError unless `url` lives under the configured origin."""
        try:
            parts = urlsplit(str(url))
            port = parts.port
        except ValueError as exc:
            raise UntrustedUrlError(f"Malformed URL: {url!r}") from exc
        if (
            parts.scheme != self._origin_scheme
            or (parts.hostname or "").lower() != self._origin_host
            or port != self._origin_port
            or parts.username is not None
            or parts.password is not None
            or not (parts.path or "/").startswith(self._origin_path)
        ):
            raise UntrustedUrlError(f"Requests must target {self.settings.origin}; refused {url!r}")

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        query: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> RawResponse:
        return self._request("GET", url, headers=headers, query=query, authenticated=authenticated)

    def post(
        self,
        url: str,
        body: dict[str, Any] | None = None,
        *,
        headers: dict[str, str] | None = None,
        authenticated: bool = True,
    ) -> RawResponse:
        return self._request("POST", url, headers=headers, body=body or {}, authenticated=authenticated)

    def get_json(
        self,
        url: str,
        *,
        query: dict[str, Any] | None = None,
        expected: tuple[int, ...] = (200,),
        authenticated: bool = True,
    ) -> ApiResult:
        """GET and decode JSON; an unexpected status or body comes back as a fault, not a raise."""
        response = self.get(url, query=query, authenticated=authenticated)
        return to_api_result(response, expected=expected, url=url)

    def _request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        query: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> RawResponse:
        self.ensure_trusted(url)

        merged = browser_headers(self.settings.api_version)
        if body is not None:
            merged["Content-Type"] = "application/json"
        if headers:
            merged.update(headers)
        if authenticated and self._credential_source is not None:
            credential = self._credential_source()
            if credential is not None:
                merged["Authorization"] = f"Bearer {credential.access_token}"

        kwargs: dict[str, Any] = {"headers": merged, "timeout": self.timeout}
        if query:
            kwargs["params"] = query
        if body is not None:
            kwargs["json"] = body

        try:
            resp = self.session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, _redact(url), type(exc).__name__)
            raise NetworkFault(f"{method} {_redact(url)} failed: {exc}") from exc

        resp_headers = {str(k): str(v) for k, v in (resp.headers or {}).items()}
        raw = RawResponse(
            status=int(resp.status_code),
            body=decode_body(resp.content or b"", resp_headers),
            headers=resp_headers,
        )
        logger.debug("%s %s -> %s", method, _redact(url), raw.status)
        return raw


def to_api_result(response: RawResponse, *, expected: tuple[int, ...] = (200,), url: str = "") -> ApiResult:
    if response.status not in expected:
        return ApiResult(
            status=response.status,
            fault=IntegrationFault(
                f"Unexpected HTTP {response.status} from {_redact(url) or 'API'}",
                status=response.status,
                body=response.text[:500],
            ),
        )
    try:
        payload = response.json()
    except IntegrationFault as fault:
        return ApiResult(status=response.status, fault=fault)
    return ApiResult(status=response.status, payload=payload)


def _redact(url: str) -> str:
    # Query strings can carry account or instrument references; keep logs to the path.
    return str(url).split("?", 1)[0]
