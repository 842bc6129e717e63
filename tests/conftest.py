from __future__ import annotations

import json
import threading
from typing import Any

import pytest

from src.broker.settings import ClientSettings
from src.broker.transport import HttpTransport

ORIGIN = "https://api.robinhood.com/"


class FakeResponse:
    """Just enough of `requests.Response` for the transport."""

    def __init__(self, status_code: int = 200, content: bytes = b"", headers: dict[str, str] | None = None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}


def json_response(payload: Any, status: int = 200) -> FakeResponse:
    return FakeResponse(status, json.dumps(payload).encode("utf-8"), {"Content-Type": "application/json"})


def page(results: list[dict[str, Any]] | None, next_url: str | None = None) -> FakeResponse:
    body: dict[str, Any] = {"next": next_url}
    if results is not None:
        body["results"] = results
    return json_response(body)


class FakeHttpSession:
    """
    requests.Session stand-in keyed by (method, url).

    Each route holds a queue; the last entry repeats once the queue is drained.
    An exception instance in the queue is raised instead of returned; a callable is
    invoked with the request and its result returned, to act mid-request.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._routes: dict[tuple[str, str], list[Any]] = {}
        self.calls: list[dict[str, Any]] = []

    def add(self, method: str, url: str, *responses: Any) -> "FakeHttpSession":
        self._routes.setdefault((method.upper(), url), []).extend(responses)
        return self

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        with self._lock:
            self.calls.append({"method": method, "url": url, **kwargs})
            queue = self._routes.get((method.upper(), url))
            if not queue:
                raise AssertionError(f"Unexpected request: {method} {url}")
            item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(method, url, **kwargs)
        return item

    def calls_to(self, method: str, url: str) -> list[dict[str, Any]]:
        with self._lock:
            return [c for c in self.calls if c["method"] == method and c["url"] == url]


@pytest.fixture
def fake_http() -> FakeHttpSession:
    return FakeHttpSession()


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(renewal_poll_seconds=0.01)


@pytest.fixture
def transport(settings: ClientSettings, fake_http: FakeHttpSession) -> HttpTransport:
    return HttpTransport(settings, session=fake_http)
