"""Retrying transport for httpx with bounded exponential backoff."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional
import logging

import httpx

logger = logging.getLogger(__name__)


@dataclass
class HostData:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    first_request_time: Optional[float] = None
    request_count: int = 0
    rate_limit: Optional[float] = None


class BackoffTransport(httpx.AsyncBaseTransport):
    """httpx transport that retries 429, 5xx and transport errors.

    Delays grow as ``retry_delay * 2 ** (attempt - 1)`` and never exceed
    ``max_retry_delay``. A 429 honours ``Retry-After`` and otherwise falls back
    to the rate learned for the host. After ``max_retries`` retries the last
    response is returned (or the last transport error re-raised) so the
    caller decides what a failure means.
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int = 5,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
        max_connections: int = 100,
        max_keepalive_connections: int = 20,
    ):
        self._transport = transport or httpx.AsyncHTTPTransport(
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
            ),
        )
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self._host_data: dict[str, HostData] = {}

    def _get_host_data(self, host: str) -> HostData:
        """Get or create host tracking data."""
        if host not in self._host_data:
            self._host_data[host] = HostData()
        return self._host_data[host]

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.retry_delay * 2 ** (attempt - 1), self.max_retry_delay)

    async def _count_request(self, host: str) -> None:
        host_data = self._get_host_data(host)
        async with host_data.lock:
            if host_data.first_request_time is None:
                host_data.first_request_time = time.monotonic()
            host_data.request_count += 1

    async def _rate_limited_delay(
        self, host: str, response: httpx.Response, attempt: int
    ) -> float:
        host_data = self._get_host_data(host)
        async with host_data.lock:
            default_delay = self.backoff_delay(attempt)
            if host_data.first_request_time:
                elapsed = time.monotonic() - host_data.first_request_time
                if elapsed > 0 and host_data.request_count > 1:
                    host_data.rate_limit = (host_data.request_count - 1) / elapsed
                    logger.info(f"[{host}] Rate limit learned: {host_data.rate_limit:.2f} req/s")
                    default_delay = 1.0 / host_data.rate_limit

            host_data.first_request_time = None
            host_data.request_count = 0

        retry_after = response.headers.get("Retry-After", default_delay)
        try:
            wait_time = float(retry_after)
        except ValueError:
            wait_time = default_delay
        return min(max(wait_time, 0.0), self.max_retry_delay)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        attempt = 0
        host = request.url.host

        while True:
            attempt += 1
            await self._count_request(host)

            try:
                response = await self._transport.handle_async_request(request)
            except httpx.TransportError as e:
                if attempt > self.max_retries:
                    raise
                wait_time = self.backoff_delay(attempt)
                logger.warning(
                    f"[{host}] {type(e).__name__} on attempt {attempt}, "
                    f"retrying after {wait_time:.2f}s"
                )
                await asyncio.sleep(wait_time)
                continue

            status = response.status_code
            if status != 429 and status < 500:
                return response
            if attempt > self.max_retries:
                logger.warning(f"[{host}] Giving up after {attempt} attempts (HTTP {status})")
                return response

            if status == 429:
                wait_time = await self._rate_limited_delay(host, response, attempt)
            else:
                wait_time = self.backoff_delay(attempt)
            await response.aclose()

            logger.warning(
                f"[{host}] HTTP {status}: attempt {attempt}, retrying after {wait_time:.2f}s"
            )
            await asyncio.sleep(wait_time)

    async def aclose(self) -> None:
        await self._transport.aclose()
