"""
Authenticated request execution with whole-call retry, plus classification
of offline-like failures.
"""

import asyncio
import json
import socket
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Optional

import structlog

from batchclient.engine.backoff import Backoff
from batchclient.errors import RequestExceededRetriesError, RequestFailedError
from batchclient.transport.interface import Transport, TransportError
from batchclient.urls import ensure_same_origin, get_retry_after_ms, normalize_headers, now_ms, to_full_url

logger = structlog.get_logger(__name__)

# Transport error codes that mean "the network is down", not "the server said no".
OFFLINE_ERROR_CODES: FrozenSet[str] = frozenset({
    "ENOTFOUND",
    "EAI_AGAIN",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "ECONNRESET",
    "ENETUNREACH",
    "EHOSTUNREACH",
})


def is_offline_error(error: BaseException) -> bool:
    """
    Check whether an exception looks like a network outage.

    Matches DNS lookup failures (by syscall or message), the fixed set of
    connection error codes, and Python's own connection/timeout errors.
    """
    if isinstance(error, (ConnectionError, TimeoutError, socket.gaierror)):
        return True

    message = getattr(error, "message", None)
    if not isinstance(message, str):
        message = str(error)

    if getattr(error, "syscall", None) == "getaddrinfo":
        return True
    if "getaddrinfo ENOTFOUND" in message:
        return True

    return getattr(error, "code", None) in OFFLINE_ERROR_CODES


async def default_sleep(ms: float) -> None:
    await asyncio.sleep(ms / 1000)


def _response_text(body: Any) -> str:
    if isinstance(body, str):
        return body
    return json.dumps(body if body is not None else "", default=str)


class AuthenticatedRequester:
    """
    Issues authenticated calls against the service with whole-call retry.

    Each attempt fetches a token, attaches it as a bearer header and calls
    the transport. Network exceptions and retryable statuses are retried up
    to ``max_retries`` times; everything else fails immediately.
    """

    def __init__(
        self,
        transport: Transport,
        get_token: Callable[[], Awaitable[str]],
        base_url: str,
        origin: Optional[str],
        backoff: Backoff,
        retryable_statuses: Iterable[int],
        max_retries: int,
        sleep: Callable[[float], Awaitable[None]] = default_sleep,
        now: Callable[[], float] = now_ms,
    ):
        self._transport = transport
        self._get_token = get_token
        self.base_url = base_url
        self.origin = origin
        self._backoff = backoff
        self.retryable_statuses = frozenset(retryable_statuses)
        self.max_retries = max_retries
        self._sleep = sleep
        self._now = now

    def is_retryable_status(self, status: Any) -> bool:
        return status in self.retryable_statuses

    async def _wait(self, delay_ms: float) -> None:
        if delay_ms > 0:
            await self._sleep(delay_ms)

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
    ) -> Any:
        """
        Perform one authenticated call.

        Args:
            method: HTTP method
            url: Path relative to the service root, or absolute url on its origin
            headers: Extra headers (override the defaults)
            body: JSON body

        Returns:
            Decoded response body, or None for a bodyless success

        Raises:
            OriginMismatchError: If ``url`` is absolute and off-origin
            RequestFailedError: On a non-retryable error status
            RequestExceededRetriesError: If a retryable status outlasts the retries
            TransportError: If the network keeps failing (re-raised unchanged)
        """
        ensure_same_origin(url, self.origin)
        full_url = to_full_url(self.base_url, url, self.origin)

        attempt = 0
        while True:
            token = await self._get_token()

            request_headers = {"authorization": f"Bearer {token}"}
            if body is not None:
                request_headers["content-type"] = "application/json"
            if headers:
                request_headers.update(headers)

            try:
                response = await self._transport.request(
                    method,
                    full_url,
                    headers=request_headers,
                    json=body,
                )
            except (TransportError, OSError) as e:
                attempt += 1
                if attempt > self.max_retries:
                    raise
                delay_ms = self._backoff.compute_delay_ms(attempt)
                logger.warning(
                    "request_network_retry",
                    method=method,
                    url=full_url,
                    attempt=attempt,
                    delay_ms=delay_ms,
                    code=getattr(e, "code", None),
                )
                await self._wait(delay_ms)
                continue

            status = response.status
            if 200 <= status < 300:
                return response.body

            if not self.is_retryable_status(status):
                raise RequestFailedError(status, _response_text(response.body))

            attempt += 1
            if attempt > self.max_retries:
                raise RequestExceededRetriesError(status)

            retry_after_ms = get_retry_after_ms(normalize_headers(response.headers), self._now)
            delay_ms = self._backoff.compute_delay_ms(attempt)
            if retry_after_ms is not None:
                delay_ms = max(retry_after_ms, delay_ms)

            logger.info(
                "request_status_retry",
                method=method,
                url=full_url,
                status=status,
                attempt=attempt,
                delay_ms=delay_ms,
            )
            await self._wait(delay_ms)

    async def get(self, url: str) -> Any:
        """GET shorthand used to fetch follow-up pages."""
        return await self.request("GET", url)
