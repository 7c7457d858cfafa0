from __future__ import annotations

import asyncio
import base64
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from catalog_sync.errors import FatalSetupFailure, MalformedResponse, UpstreamThrottled, UpstreamUnavailable

logger = logging.getLogger(__name__)

THROTTLED_STATUS = 429
DEFAULT_SPACING_SECONDS = (0.1, 0.3, 1.0)
DEFAULT_LOW_WATER_MARK = 10

Sleep = Callable[[float], Awaitable[None]]


def basic_auth_header(api_key: str, api_secret: str = "") -> str:
    token = base64.b64encode(f"{api_key}:{api_secret}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def parse_quota_header(value: str | None) -> int | None:
    """Return the first window of a quota header.

    Some upstreams report several windows at once (``"290/3000"``: five minutes, then one hour);
    the shortest window is the one that throttles first.
    """
    if value is None:
        return None
    first = value.split("/", 1)[0].strip()
    try:
        return int(first)
    except ValueError:
        return None


@dataclass
class QuotaTracker:
    limit: int | None = None
    remaining: int | None = None

    def update(self, headers: httpx.Headers, limit_header: str, remaining_header: str) -> None:
        limit = parse_quota_header(headers.get(limit_header))
        remaining = parse_quota_header(headers.get(remaining_header))
        if limit is not None:
            self.limit = limit
        if remaining is not None:
            self.remaining = remaining


class RateLimitedClient:
    """Authenticated JSON client that paces itself on the upstream's quota headers.

    Requests are strictly sequential. Before each request the client waits long enough to keep
    a minimum spacing since the previous one; the spacing grows as the reported remaining quota
    falls toward ``low_water_mark``. 429 responses and transport errors are retried with
    exponential backoff (``base_backoff_seconds * 2**retry``) up to ``max_retries`` retries.
    """

    upstream_name = "upstream"
    limit_header = "x-ratelimit-limit"
    remaining_header = "x-ratelimit-remaining"

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        api_secret: str = "",
        *,
        timeout_seconds: float = 30.0,
        max_retries: int = 5,
        base_backoff_seconds: float = 1.0,
        spacing_seconds: tuple[float, float, float] = DEFAULT_SPACING_SECONDS,
        low_water_mark: int = DEFAULT_LOW_WATER_MARK,
        quota: QuotaTracker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if not api_key:
            raise FatalSetupFailure(f"{self.upstream_name} API key is not configured")
        if not base_url:
            raise FatalSetupFailure(f"{self.upstream_name} base URL is not configured")

        self.base_url = base_url.rstrip("/")
        self.max_retries = max(0, max_retries)
        self.base_backoff_seconds = max(0.0, base_backoff_seconds)
        self.spacing_seconds = spacing_seconds
        self.low_water_mark = low_water_mark
        self.quota = quota if quota is not None else QuotaTracker()
        self.request_count = 0
        self._sleep = sleep
        self._last_request_at: float | None = None
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,
            transport=transport,
            headers={
                "Authorization": basic_auth_header(api_key, api_secret),
                "Accept": "application/json",
                "Content-Type": "application/json",
                "User-Agent": "catalog-sync/1.0",
            },
            follow_redirects=True,
        )

    async def __aenter__(self) -> RateLimitedClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def pacing_delay(self) -> float:
        fast, slow, slowest = self.spacing_seconds
        remaining = self.quota.remaining
        if remaining is None or remaining > self.low_water_mark * 5:
            return fast
        if remaining > self.low_water_mark:
            return slow
        return slowest

    def backoff_delay(self, retry_count: int) -> float:
        return self.base_backoff_seconds * (2**retry_count)

    def rate_limit_status(self) -> dict[str, int | None]:
        return {"limit": self.quota.limit, "remaining": self.quota.remaining, "request_count": self.request_count}

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        retry_count = 0
        while True:
            await self._pace()
            try:
                response = await self.client.request(method, endpoint, params=params, json=json)
            except httpx.TransportError as exc:
                self._last_request_at = time.monotonic()
                if retry_count >= self.max_retries:
                    raise UpstreamUnavailable(
                        f"{self.upstream_name} request {method} {endpoint} failed after {retry_count} retries: {exc}"
                    ) from exc
                delay = self.backoff_delay(retry_count)
                logger.warning(
                    "%s network error on %s %s (%s), retry %s/%s in %.1fs",
                    self.upstream_name, method, endpoint, exc, retry_count + 1, self.max_retries, delay,
                )
                await self._sleep(delay)
                retry_count += 1
                continue

            self._last_request_at = time.monotonic()
            self._count_request()
            self.quota.update(response.headers, self.limit_header, self.remaining_header)

            if response.status_code == THROTTLED_STATUS:
                if retry_count >= self.max_retries:
                    raise UpstreamThrottled(
                        f"{self.upstream_name} rate limit exceeded for {method} {endpoint} after {retry_count} retries",
                        status_code=response.status_code,
                        body=response.text,
                    )
                delay = self.backoff_delay(retry_count)
                logger.warning(
                    "%s throttled %s %s, retry %s/%s in %.1fs",
                    self.upstream_name, method, endpoint, retry_count + 1, self.max_retries, delay,
                )
                await self._sleep(delay)
                retry_count += 1
                continue

            if not response.is_success:
                raise UpstreamUnavailable(
                    f"{self.upstream_name} API error: {response.status_code} for {method} {endpoint} - {response.text[:500]}",
                    status_code=response.status_code,
                    body=response.text,
                )

            if response.status_code == 204 or not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise MalformedResponse(
                    f"{self.upstream_name} returned invalid JSON for {method} {endpoint}",
                    status_code=response.status_code,
                    body=response.text[:500],
                ) from exc

    async def _pace(self) -> None:
        if self._last_request_at is None:
            return
        remaining_quota = self.quota.remaining
        if remaining_quota is not None and remaining_quota <= self.low_water_mark:
            logger.warning("%s quota low: %s requests remaining", self.upstream_name, remaining_quota)
        wait = self.pacing_delay() - (time.monotonic() - self._last_request_at)
        if wait > 0:
            await self._sleep(wait)

    def _count_request(self) -> None:
        self.request_count += 1
        if self.request_count % 10 == 0:
            logger.info("%s: made %s API requests", self.upstream_name, self.request_count)
