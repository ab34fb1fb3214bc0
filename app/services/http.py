"""Outbound HTTP plumbing shared by every upstream client."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

import httpx

from ..errors import MalformedUpstreamResponse, RateLimitExceeded, UpstreamUnavailable

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
BROWSER_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "application/json, text/plain, */*",
}


def build_http_client(
    *,
    timeout: float,
    proxy: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Return an ``AsyncClient`` that always identifies itself as a browser."""

    kwargs: dict[str, Any] = {
        "timeout": httpx.Timeout(timeout),
        "headers": BROWSER_HEADERS,
        "follow_redirects": True,
    }
    if transport is not None:
        kwargs["transport"] = transport
    elif proxy:
        kwargs["proxy"] = proxy
    return httpx.AsyncClient(**kwargs)


class TokenBucket:
    """Token bucket refilled lazily from elapsed time.

    ``allow`` never blocks: an empty bucket denies the call immediately.
    """

    def __init__(
        self,
        capacity: int,
        refill_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_interval <= 0:
            raise ValueError("refill_interval must be positive")
        self._capacity = capacity
        self._refill_interval = refill_interval
        self._clock = clock
        self._tokens = capacity
        self._last_refill = clock()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> int:
        with self._lock:
            self._refill(self._clock())
            return self._tokens

    def allow(self) -> bool:
        with self._lock:
            self._refill(self._clock())
            if self._tokens > 0:
                self._tokens -= 1
                return True
            return False

    def _refill(self, now: float) -> None:
        earned = int((now - self._last_refill) / self._refill_interval)
        if earned <= 0:
            return
        self._tokens = min(self._capacity, self._tokens + earned)
        # Keep the fractional remainder so partial intervals are not lost.
        self._last_refill += earned * self._refill_interval


class UpstreamClient:
    """JSON ``GET`` helper translating transport failures into provider errors."""

    def __init__(
        self,
        provider: str,
        http_client: httpx.AsyncClient,
        base_url: str,
        *,
        bucket: TokenBucket | None = None,
        timeout: float | None = None,
    ) -> None:
        self.provider = provider
        self._client = http_client
        self._base_url = base_url.rstrip("/")
        self._bucket = bucket
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def build_url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def get_json(
        self, path: str, *, params: dict[str, Any] | None = None
    ) -> Any:
        """Fetch ``path`` and decode the JSON body.

        Raises ``RateLimitExceeded`` without touching the network when the
        bucket is empty.
        """

        if self._bucket is not None and not self._bucket.allow():
            logger.warning("%s rate limit exhausted for %s", self.provider, path)
            raise RateLimitExceeded(self.provider)

        url = self.build_url(path)
        request_kwargs: dict[str, Any] = {}
        if params:
            request_kwargs["params"] = params
        if self._timeout is not None:
            request_kwargs["timeout"] = self._timeout

        try:
            response = await self._client.get(url, **request_kwargs)
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailable(self.provider, f"timed out fetching {path}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(self.provider, f"request failed: {exc}") from exc

        if response.status_code != 200:
            body = response.text[:200]
            raise UpstreamUnavailable(
                self.provider,
                f"API returned status {response.status_code}: {body}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedUpstreamResponse(
                self.provider, f"failed to parse response from {path}"
            ) from exc
