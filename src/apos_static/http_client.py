"""Shared HTTP client utilities.

Provides the one network primitive used by discovery, page rendering, video
widgets and upload downloads: fetch_with_retry(), a GET with a per-attempt
timeout and capped exponential backoff. Retries are performed by an
httpx-retries RetryTransport mounted on the shared client, with the policy
passed per request. Also polls the preview server until it is ready.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
from httpx_retries import Retry, RetryTransport

from apos_static.exceptions import FetchError, ServerNotReadyError

if TYPE_CHECKING:
    from apos_static.config import ExportConfig

logger = logging.getLogger(__name__)

USER_AGENT = "apos-static/0.1.0"

# Request extension read by AttemptTimeoutTransport
ATTEMPT_TIMEOUT = "apos_static.attempt_timeout"


def is_retryable_status(status_code: int) -> bool:
    """Return False for client errors other than 429 Too Many Requests."""
    return not (400 <= status_code < 500 and status_code != 429)


RETRY_STATUSES = [code for code in range(400, 600) if is_retryable_status(code)]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry budget and backoff schedule.

    Attempt ``n`` (0-based) that fails with a retryable error is followed by a
    delay of ``min(base_delay * 2**n, max_delay)`` seconds. Total attempts are
    ``retries + 1``.
    """

    retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 5.0

    def single_attempt(self) -> RetryPolicy:
        """Same policy without retries (used for probes)."""
        return RetryPolicy(retries=0, base_delay=self.base_delay, max_delay=self.max_delay)

    def to_retry(self) -> Retry:
        """Build the equivalent httpx-retries policy.

        httpx-retries sleeps ``backoff_factor * 2**k`` before its k-th retry
        (1-based), so half the base delay yields the schedule above.
        """
        if self.max_delay > 0:
            backoff_factor, max_backoff_wait = self.base_delay / 2, self.max_delay
        else:
            # httpx-retries requires a positive cap
            backoff_factor, max_backoff_wait = 0.0, 1.0

        return Retry(
            total=self.retries,
            backoff_factor=backoff_factor,
            max_backoff_wait=max_backoff_wait,
            backoff_jitter=0.0,
            status_forcelist=RETRY_STATUSES,
            retry_on_exceptions=[httpx.TimeoutException, httpx.TransportError],
            respect_retry_after_header=False,
        )


NO_RETRY = RetryPolicy(retries=0)


class AttemptTimeoutTransport(httpx.AsyncBaseTransport):
    """Cancels a single attempt, body included, once its time budget is spent.

    Sits below RetryTransport so that every retry gets a fresh budget. Requests
    without the ``ATTEMPT_TIMEOUT`` extension pass straight through.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport) -> None:
        self.transport = transport

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        limit = request.extensions.get(ATTEMPT_TIMEOUT)
        if limit is None:
            return await self.transport.handle_async_request(request)

        try:
            async with asyncio.timeout(limit):
                response = await self.transport.handle_async_request(request)
                await response.aread()
        except TimeoutError as e:
            raise httpx.TimeoutException(f"Attempt exceeded {limit:g}s", request=request) from e
        return response

    async def aclose(self) -> None:
        await self.transport.aclose()


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    policy: RetryPolicy,
    headers: dict[str, str] | None = None,
    timeout: float = 30.0,
) -> httpx.Response:
    """GET a URL, retrying transient failures.

    The client must come from create_http_client(); a client without the
    retry transport makes a single attempt.

    Args:
        client: Shared HTTP client
        url: Absolute URL to fetch
        policy: Retry budget and backoff schedule
        headers: Extra request headers
        timeout: Seconds allowed for each attempt (cancels the request)

    Returns:
        The first 2xx response

    Raises:
        FetchError: On a non-retryable 4xx response, or once every attempt failed.
            Carries the last status code (None for timeouts and transport errors).
    """
    try:
        response = await client.get(
            url,
            headers=headers,
            timeout=timeout,
            extensions={"retry": policy.to_retry(), ATTEMPT_TIMEOUT: timeout},
        )
    except httpx.TimeoutException as e:
        raise FetchError(url, f"Timed out after {timeout:g}s fetching {url}") from e
    except httpx.HTTPError as e:
        raise FetchError(url, f"{type(e).__name__} fetching {url}: {e}") from e

    if not response.is_success:
        logger.debug(f"GET {url} failed with HTTP {response.status_code}")
        raise FetchError(
            url,
            f"HTTP {response.status_code}: {response.reason_phrase}",
            status_code=response.status_code,
        )

    return response


async def wait_for_server(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout: float = 60.0,
    interval: float = 0.5,
    probe_timeout: float = 5.0,
) -> None:
    """Poll a URL until it answers with a 2xx status.

    Raises:
        ServerNotReadyError: If no successful response arrived within the timeout
    """
    deadline = time.monotonic() + timeout

    while time.monotonic() < deadline:
        try:
            async with asyncio.timeout(min(probe_timeout, max(deadline - time.monotonic(), 0.1))):
                response = await client.get(url, extensions={"retry": NO_RETRY.to_retry()})
            if response.is_success:
                logger.debug(f"Preview server ready at {url}")
                return
        except (TimeoutError, httpx.HTTPError):
            # Server not up yet
            pass
        await asyncio.sleep(interval)

    raise ServerNotReadyError(f"Preview server did not respond at {url} within {timeout:g}s")


def create_http_client(
    config: ExportConfig | None = None,
    *,
    max_connections: int = 100,
    max_keepalive_connections: int = 20,
    keepalive_expiry: float = 30.0,
) -> httpx.AsyncClient:
    """Create the httpx client shared by every component of an export.

    Args:
        config: Export configuration (sizes the pool from the crawl concurrency)
        max_connections: Maximum total connections (default: 100)
        max_keepalive_connections: Maximum keepalive connections (default: 20)
        keepalive_expiry: Keepalive expiry in seconds (default: 30.0)

    Returns:
        Configured httpx AsyncClient whose transport retries with the crawl
        policy unless a request carries its own ``retry`` extension
    """
    policy = RetryPolicy()
    if config is not None:
        policy = config.crawling.retry_policy()
        max_keepalive_connections = max(max_keepalive_connections, config.crawling.concurrency * 2)

    base_transport = httpx.AsyncHTTPTransport(
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive_connections,
            keepalive_expiry=keepalive_expiry,
        ),
        retries=0,
    )

    transport = RetryTransport(
        transport=AttemptTimeoutTransport(base_transport), retry=policy.to_retry()
    )

    return httpx.AsyncClient(
        transport=transport,
        timeout=httpx.Timeout(60.0, connect=10.0),
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
    )
