from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

FetchPage = Callable[[int, int, int | None], Awaitable[Sequence[T]]]


class PaginatedFetcher(Generic[T]):
    """Walk a page-numbered listing and yield each page as a batch.

    The end of the listing is detected by a page shorter than ``page_size``. The listing protocol
    has no explicit end marker, so an exactly-full final page costs one extra, empty request.
    """

    def __init__(
        self,
        fetch_page: FetchPage[T],
        page_size: int = 250,
        page_delay_seconds: float = 0.3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.fetch_page = fetch_page
        self.page_size = page_size
        self.page_delay_seconds = max(0.0, page_delay_seconds)
        self._sleep = sleep
        self.last_page: int | None = None

    async def iterate(self, since_id: int | None = None, start_page: int = 1) -> AsyncIterator[list[T]]:
        page = start_page
        while True:
            logger.info("Fetching page %s (limit=%s, since_id=%s)", page, self.page_size, since_id)
            records = list(await self.fetch_page(page, self.page_size, since_id))
            self.last_page = page
            logger.info("Page %s returned %s records", page, len(records))

            if records:
                yield records
            if len(records) < self.page_size:
                break

            page += 1
            if self.page_delay_seconds:
                await self._sleep(self.page_delay_seconds)
