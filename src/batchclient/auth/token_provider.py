"""
Access token provider for the refresh token grant.

Caches the bearer token until shortly before it expires and coalesces
concurrent refreshes into a single call to the token endpoint.
"""

import asyncio
import json
import math
from typing import Awaitable, Callable, Optional
from urllib.parse import quote

import structlog

from batchclient.config import DEFAULT_SCOPE, DEFAULT_TOKEN_URL, BatchClientConfig
from batchclient.errors import (
    AuthExchangeFailedError,
    AuthExpiryInvalidError,
    AuthTokenMissingError,
    ConfigurationError,
)
from batchclient.transport.interface import Transport
from batchclient.urls import now_ms

logger = structlog.get_logger(__name__)

# Anything awaitable that yields a bearer token can stand in for the provider.
TokenProvider = Callable[[], Awaitable[str]]


class RefreshTokenProvider:
    """
    Exchanges a refresh token for access tokens.

    ``get_token()`` returns the cached token while it is valid. When it is
    not, the first caller starts a refresh and every concurrent caller
    awaits that same refresh, sharing its token or its error.

    Usage:
        ```python
        provider = RefreshTokenProvider.from_config(transport, config)
        token = await provider()
        ```
    """

    def __init__(
        self,
        transport: Transport,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        scope: Optional[str] = None,
        token_url: str = DEFAULT_TOKEN_URL,
        now: Callable[[], float] = now_ms,
        clock_skew_ms: float = 30_000,
    ):
        """
        Initialize the provider.

        Args:
            transport: Transport used for the token exchange
            tenant_id: Directory tenant substituted into ``token_url``
            client_id: OAuth client ID
            client_secret: OAuth client secret
            refresh_token: Long-lived refresh token
            scope: Requested scope
            token_url: Token endpoint template
            now: Clock in milliseconds
            clock_skew_ms: Refresh this long before the token expires

        Raises:
            ConfigurationError: If a required field is missing
        """
        if transport is None:
            raise ConfigurationError("transport is required")
        for name, value in (
            ("tenant_id", tenant_id),
            ("client_id", client_id),
            ("client_secret", client_secret),
            ("refresh_token", refresh_token),
        ):
            if not value:
                raise ConfigurationError(f"auth.{name} is required")

        self._transport = transport
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._scope = scope or DEFAULT_SCOPE
        self.token_url = token_url.format(tenant_id=quote(tenant_id, safe=""))
        self._now = now
        self.clock_skew_ms = clock_skew_ms

        self._token: Optional[str] = None
        self._expires_at_ms: float = 0
        self._pending: Optional[asyncio.Task] = None

        self.refresh_count = 0

    @classmethod
    def from_config(
        cls,
        transport: Transport,
        config: BatchClientConfig,
        now: Callable[[], float] = now_ms,
    ) -> "RefreshTokenProvider":
        """Build a provider from the auth settings of a BatchClientConfig."""
        return cls(
            transport=transport,
            tenant_id=config.tenant_id,
            client_id=config.client_id,
            client_secret=config.client_secret.get_secret_value() if config.client_secret else None,
            refresh_token=config.refresh_token.get_secret_value() if config.refresh_token else None,
            scope=config.scope,
            token_url=config.token_url,
            now=now,
            clock_skew_ms=config.clock_skew_ms,
        )

    def __repr__(self) -> str:
        return f"RefreshTokenProvider(token_url={self.token_url!r}, cached={self._token is not None})"

    async def __call__(self) -> str:
        return await self.get_token()

    def _is_cached_token_valid(self) -> bool:
        return bool(self._token) and self._expires_at_ms - self.clock_skew_ms > self._now()

    async def get_token(self) -> str:
        """
        Return a valid access token, refreshing it if needed.

        Returns:
            Bearer token

        Raises:
            AuthError: If the token exchange fails
            TransportError: If the token endpoint cannot be reached
        """
        if self._is_cached_token_valid():
            return self._token

        if self._pending is None:
            task = asyncio.ensure_future(self.refresh())
            task.add_done_callback(self._clear_pending)
            self._pending = task

        # A cancelled waiter must not cancel the refresh other callers share.
        return await asyncio.shield(self._pending)

    def _clear_pending(self, task: asyncio.Task) -> None:
        if self._pending is task:
            self._pending = None
        # Retrieve the outcome so an unawaited failure is not reported as lost.
        if not task.cancelled():
            task.exception()

    async def refresh(self) -> str:
        """
        Perform the credential exchange and cache the result.

        Raises:
            AuthExchangeFailedError: On a non-2xx token response
            AuthTokenMissingError: If the response has no access_token
            AuthExpiryInvalidError: If expires_in is not a finite number
        """
        self.refresh_count += 1
        logger.debug("token_refresh_started", token_url=self.token_url)

        response = await self._transport.request(
            "POST",
            self.token_url,
            headers={"content-type": "application/x-www-form-urlencoded"},
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "grant_type": "refresh_token",
                "refresh_token": self._refresh_token,
                "scope": self._scope,
            },
        )

        status = response.status if response is not None else None
        if status is None or status < 200 or status >= 300:
            body = response.body if response is not None else None
            body_text = body if isinstance(body, str) else json.dumps(body if body is not None else "")
            logger.warning("token_refresh_failed", status=status)
            raise AuthExchangeFailedError(status if status is not None else "unknown", body_text)

        data = response.body if isinstance(response.body, dict) else {}

        token = data.get("access_token")
        if not token or not isinstance(token, str):
            raise AuthTokenMissingError()

        try:
            expires_in = float(data.get("expires_in"))
        except (TypeError, ValueError):
            raise AuthExpiryInvalidError() from None
        if not math.isfinite(expires_in):
            raise AuthExpiryInvalidError()

        self._token = token
        self._expires_at_ms = self._now() + max(0.0, expires_in * 1000)

        logger.info("token_refreshed", expires_in=expires_in)
        return token
