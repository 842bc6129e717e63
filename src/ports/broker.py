from __future__ import annotations

from typing import Any, Callable, Protocol

from src.domain.models import ApiResult, Credential, RawResponse

CredentialSource = Callable[[], "Credential | None"]


class TransportPort(Protocol):
    def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        query: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> RawResponse: ...

    def post(
        self,
        url: str,
        body: dict[str, Any] | None = None,
        *,
        headers: dict[str, str] | None = None,
        authenticated: bool = True,
    ) -> RawResponse: ...

    def get_json(
        self,
        url: str,
        *,
        query: dict[str, Any] | None = None,
        expected: tuple[int, ...] = (200,),
        authenticated: bool = True,
    ) -> ApiResult: ...

    def attach_credentials(self, source: CredentialSource | None) -> None: ...


class HttpSessionPort(Protocol):
    """The slice of `requests.Session` the transport relies on."""

    def request(self, method: str, url: str, **kwargs: Any) -> Any: ...
