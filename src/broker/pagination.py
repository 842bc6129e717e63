from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterator

from src.broker.settings import ClientSettings
from src.domain.errors import NetworkFault, ValidationFault
from src.domain.models import Page
from src.ports.broker import TransportPort

logger = logging.getLogger(__name__)


class PaginatedFetcher:
    """
    Walks a `results` / `next` listing chain into one ordered list.

    Page reads are idempotent, so a NetworkFault on a single page is retried with
    exponential backoff. Integration faults (bad status, bad shape) are not retried.
    """

    def __init__(
        self,
        transport: TransportPort,
        settings: ClientSettings | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.transport = transport
        settings = settings or ClientSettings()
        self.max_retries = int(settings.page_retries)
        self.backoff_seconds = float(settings.page_backoff_seconds)
        self._sleep = sleep

    def fetch_page(self, url: str, query: dict[str, Any] | None = None) -> Page:
        attempt = 0
        while True:
            try:
                result = self.transport.get_json(url, query=query)
                break
            except NetworkFault as exc:
                attempt += 1
                if attempt > self.max_retries:
                    raise
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(f"Page fetch failed ({exc}); retry {attempt}/{self.max_retries} in {delay:.1f}s")
                self._sleep(delay)
        return Page.from_payload(result.unwrap())

    def iter_pages(self, start_url: str, query: dict[str, Any] | None = None) -> Iterator[Page]:
        """Yield pages lazily; the next link is only followed when the consumer asks for it."""
        page = self.fetch_page(start_url, query=query)
        yield page
        while page.next:
            # The next link already carries the query of the first request.
            page = self.fetch_page(page.next)
            yield page

    def fetch_all(
        self,
        start_url: str,
        limit: int | None = None,
        *,
        query: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Return every item in server order, or the first `limit` items.

        With a limit, no further page is requested once enough items are held.
        `limit=0` returns an empty list without making a request.
        """
        if limit is not None:
            if limit < 0:
                raise ValidationFault("limit must be >= 0")
            if limit == 0:
                return []

        items: list[dict[str, Any]] = []
        for page in self.iter_pages(start_url, query=query):
            items.extend(page.results)
            if limit is not None and len(items) >= limit:
                break

        if limit is not None:
            return items[:limit]
        return items
