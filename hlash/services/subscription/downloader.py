"""
Subscription Downloader

One best-effort HTTP fetch of the subscription into a local file:
1. GET with a per-attempt timeout (10s) and connect timeout (5s),
   following redirects
2. Retry transport errors and statuses above 404 (up to 10 attempts)
3. Back off 2s, 4s, 8s, then 15s between attempts
4. Stream the 200 body to the destination path

Certificate verification is off for this client only: subscription
providers commonly serve self-signed or mismatched certificates.
"""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable

import httpx

from hlash.common.config import Settings
from hlash.common.exceptions import (
    FilesystemError,
    HTTPStatusError,
    NetworkError,
    OperationCancelled,
)
from hlash.common.logging_setup import get_service_logger
from hlash.common.scheduler import wait_or_stop

logger = get_service_logger("subscription.downloader")

# Browser-like headers; some providers reject obvious bots
DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/117.0.0.0 Safari/537.36 Edg/117.0.2045.31"
    ),
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,"
        "image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7"
    ),
    "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8,en-GB;q=0.7,en-US;q=0.6",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

CHUNK_SIZE = 8192

Sleeper = Callable[[asyncio.Event | None, float], Awaitable[bool]]


def backoff_delay(attempt: int, max_backoff: float = 15.0) -> float:
    """Delay before retry `attempt` (1-based): 2s, 4s, 8s, then capped."""
    return min(float(2 ** attempt), max_backoff)


class Downloader:
    """
    Fetches a remote resource with bounded retry.

    The HTTP client is created per fetch so no connection state leaks
    between update cycles that are hours apart.
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleeper = wait_or_stop,
    ):
        self.timeout = httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout)
        self.max_attempts = settings.max_attempts
        self.max_backoff = settings.max_backoff
        self._transport = transport
        self._sleep = sleep

    def _client(self) -> httpx.AsyncClient:
        if self._transport is not None:
            return httpx.AsyncClient(
                transport=self._transport,
                follow_redirects=True,
                timeout=self.timeout,
                headers=DEFAULT_HEADERS,
            )
        return httpx.AsyncClient(
            verify=False,
            follow_redirects=True,
            timeout=self.timeout,
            headers=DEFAULT_HEADERS,
            limits=httpx.Limits(max_connections=10, keepalive_expiry=90.0),
        )

    async def fetch(
        self,
        url: str,
        destination: Path,
        stop_event: asyncio.Event | None = None,
    ) -> Path:
        """
        Download `url` into `destination`.

        Returns:
            The destination path

        Raises:
            NetworkError: transport failure on the last attempt, or a malformed URL
            HTTPStatusError: non-200 status that is terminal or exhausted retries
            FilesystemError: the body could not be written
            OperationCancelled: stop_event fired during a backoff wait
        """
        logger.info(f"download: {url}", extra={"url": url})
        last_error: Exception | None = None

        async with self._client() as client:
            for attempt in range(self.max_attempts):
                if attempt > 0:
                    delay = backoff_delay(attempt, self.max_backoff)
                    logger.info(f"sleep {delay:.0f}s before attempt {attempt + 1}")
                    if await self._sleep(stop_event, delay):
                        raise OperationCancelled("download")

                is_last = attempt == self.max_attempts - 1

                try:
                    async with client.stream("GET", url) as response:
                        if response.status_code != 200:
                            last_error = HTTPStatusError(
                                response.status_code, response.reason_phrase, url
                            )
                            if last_error.recoverable and not is_last:
                                logger.error(f"status error({attempt}): {response.status_code}")
                                continue
                            raise last_error

                        await self._save(response, destination)
                        logger.info(
                            f"downloaded {url} -> {destination}",
                            extra={"attempt": attempt, "path": str(destination)},
                        )
                        return destination

                except httpx.InvalidURL as e:
                    raise NetworkError(f"invalid URL: {e}", url, recoverable=False) from e
                except httpx.HTTPError as e:
                    last_error = NetworkError(str(e) or type(e).__name__, url)
                    if is_last or not last_error.recoverable:
                        raise last_error from e
                    logger.error(f"get error({attempt}): {e!r}")

        # Only reachable with max_attempts < 1
        raise last_error or NetworkError("no download attempts made", url)

    async def _save(self, response: httpx.Response, destination: Path) -> None:
        """Stream the response body to disk; failures here are terminal."""
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with open(destination, "wb") as f:
                async for chunk in response.aiter_bytes(chunk_size=CHUNK_SIZE):
                    f.write(chunk)
        except OSError as e:
            raise FilesystemError(str(e), str(destination)) from e
        except httpx.HTTPError as e:
            # Body broke off mid-stream; not retried
            raise NetworkError(f"reading body: {e!r}", str(response.url)) from e
