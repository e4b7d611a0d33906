"""
Test suite for the refresh token provider.

Covers caching, expiry with clock skew, single-flight refresh and the
token endpoint failure modes.
"""

import asyncio

import pytest

from batchclient.auth.token_provider import RefreshTokenProvider
from batchclient.config import BatchClientConfig
from batchclient.errors import (
    AuthExchangeFailedError,
    AuthExpiryInvalidError,
    AuthTokenMissingError,
    ConfigurationError,
)
from batchclient.transport.interface import Transport, TransportResponse

from conftest import FakeClock, ScriptedTransport, http_response


def token_response(token: str = "access-1", expires_in=3600) -> TransportResponse:
    return http_response(200, {"access_token": token, "expires_in": expires_in, "token_type": "Bearer"})


def make_provider(transport: Transport, clock: FakeClock, **overrides) -> RefreshTokenProvider:
    options = dict(
        transport=transport,
        tenant_id="contoso",
        client_id="client-1",
        client_secret="client-secret-value",
        refresh_token="refresh-token-value",
        now=clock,
        clock_skew_ms=30_000,
    )
    options.update(overrides)
    return RefreshTokenProvider(**options)


class SlowTokenTransport(Transport):
    """Token endpoint that answers only after the test releases it."""

    def __init__(self, response: TransportResponse):
        self.response = response
        self.release = asyncio.Event()
        self.calls = 0

    async def request(self, method, url, headers=None, json=None, data=None):
        self.calls += 1
        await self.release.wait()
        return self.response


# ============================================================================
# Test Construction
# ============================================================================

class TestConstruction:
    """Tests for provider construction and validation."""

    @pytest.mark.parametrize("field", ["tenant_id", "client_id", "client_secret", "refresh_token"])
    def test_missing_field_rejected(self, field, clock):
        """Test that each credential field is required."""
        with pytest.raises(ConfigurationError, match=f"auth.{field} is required"):
            make_provider(ScriptedTransport(), clock, **{field: ""})

    def test_missing_transport_rejected(self, clock):
        """Test that a transport is required."""
        with pytest.raises(ConfigurationError):
            make_provider(None, clock)

    def test_token_url_substitutes_tenant(self, clock):
        """Test that the tenant is url-encoded into the endpoint."""
        provider = make_provider(ScriptedTransport(), clock, tenant_id="my tenant")
        assert provider.token_url == "https://login.microsoftonline.com/my%20tenant/oauth2/v2.0/token"

    def test_from_config(self, clock):
        """Test building the provider from settings with secret values."""
        config = BatchClientConfig(
            tenant_id="contoso",
            client_id="client-1",
            client_secret="s3cret",
            refresh_token="r3fresh",
        )
        provider = RefreshTokenProvider.from_config(ScriptedTransport(), config, now=clock)

        assert "contoso" in provider.token_url
        assert "s3cret" not in repr(provider)
        assert "r3fresh" not in repr(provider)


# ============================================================================
# Test Token Caching
# ============================================================================

class TestTokenCaching:
    """Tests for cached tokens and expiry."""

    @pytest.mark.asyncio
    async def test_exchange_request(self, clock):
        """Test the form fields sent to the token endpoint."""
        transport = ScriptedTransport([token_response()])
        provider = make_provider(transport, clock)

        assert await provider.get_token() == "access-1"

        call = transport.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == "https://login.microsoftonline.com/contoso/oauth2/v2.0/token"
        assert call["headers"]["content-type"] == "application/x-www-form-urlencoded"
        assert call["data"]["grant_type"] == "refresh_token"
        assert call["data"]["refresh_token"] == "refresh-token-value"
        assert call["data"]["client_id"] == "client-1"
        assert "offline_access" in call["data"]["scope"]

    @pytest.mark.asyncio
    async def test_cached_token_reused(self, clock):
        """Test that a valid token is served without another exchange."""
        transport = ScriptedTransport([token_response()])
        provider = make_provider(transport, clock)

        await provider.get_token()
        clock.advance(60_000)

        assert await provider() == "access-1"
        assert provider.refresh_count == 1

    @pytest.mark.asyncio
    async def test_refresh_within_clock_skew(self, clock):
        """Test that a token is refreshed once it is inside the skew window."""
        transport = ScriptedTransport([token_response("access-1", 3600), token_response("access-2", 3600)])
        provider = make_provider(transport, clock)

        await provider.get_token()
        clock.advance(3600 * 1000 - 30_000)

        assert await provider.get_token() == "access-2"
        assert provider.refresh_count == 2

    @pytest.mark.asyncio
    async def test_expires_in_as_string(self, clock):
        """Test that a numeric string expiry is accepted."""
        transport = ScriptedTransport([token_response(expires_in="3599")])
        provider = make_provider(transport, clock)

        assert await provider.get_token() == "access-1"


# ============================================================================
# Test Single Flight
# ============================================================================

class TestSingleFlight:
    """Tests for coalescing concurrent refreshes."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, clock):
        """Test that N concurrent callers cause exactly one exchange."""
        transport = SlowTokenTransport(token_response("shared"))
        provider = make_provider(transport, clock)

        waiters = [asyncio.ensure_future(provider.get_token()) for _ in range(10)]
        await asyncio.sleep(0)
        transport.release.set()
        tokens = await asyncio.gather(*waiters)

        assert tokens == ["shared"] * 10
        assert transport.calls == 1
        assert provider.refresh_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_after_expiry(self, clock):
        """Test that callers arriving after expiry share one further exchange."""
        transport = SlowTokenTransport(token_response("shared", 3600))
        provider = make_provider(transport, clock)

        transport.release.set()
        assert await provider.get_token() == "shared"

        transport.release.clear()
        clock.advance(3600 * 1000)

        waiters = [asyncio.ensure_future(provider.get_token()) for _ in range(5)]
        await asyncio.sleep(0)
        transport.release.set()
        tokens = await asyncio.gather(*waiters)

        assert tokens == ["shared"] * 5
        assert transport.calls == 2
        assert provider.refresh_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_failure(self, clock):
        """Test that every waiter sees the same refresh failure."""
        transport = SlowTokenTransport(http_response(400, {"error": "invalid_grant"}))
        provider = make_provider(transport, clock)

        waiters = [asyncio.ensure_future(provider.get_token()) for _ in range(3)]
        await asyncio.sleep(0)
        transport.release.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert all(isinstance(r, AuthExchangeFailedError) for r in results)
        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_failed_refresh_is_not_cached(self, clock):
        """Test that the next call after a failure tries again."""
        transport = ScriptedTransport([http_response(500, "boom"), token_response("recovered")])
        provider = make_provider(transport, clock)

        with pytest.raises(AuthExchangeFailedError):
            await provider.get_token()

        assert await provider.get_token() == "recovered"
        assert provider.refresh_count == 2

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_refresh(self, clock):
        """Test that cancelling one caller leaves the shared refresh running."""
        transport = SlowTokenTransport(token_response("shared"))
        provider = make_provider(transport, clock)

        first = asyncio.ensure_future(provider.get_token())
        second = asyncio.ensure_future(provider.get_token())
        await asyncio.sleep(0)

        first.cancel()
        transport.release.set()

        assert await second == "shared"
        assert first.cancelled()


# ============================================================================
# Test Exchange Failures
# ============================================================================

class TestExchangeFailures:
    """Tests for malformed or failed token responses."""

    @pytest.mark.asyncio
    async def test_non_2xx_status(self, clock):
        """Test that the status and body text end up in the message."""
        transport = ScriptedTransport([http_response(400, {"error": "invalid_grant"})])
        provider = make_provider(transport, clock)

        with pytest.raises(AuthExchangeFailedError) as exc_info:
            await provider.get_token()

        error = exc_info.value
        assert error.status == 400
        assert error.message.startswith("OAuth token refresh failed (400)")
        assert "invalid_grant" in error.message
        assert error.stage == "auth"

    @pytest.mark.asyncio
    async def test_missing_access_token(self, clock):
        """Test a success response without a token."""
        transport = ScriptedTransport([http_response(200, {"expires_in": 3600})])

        with pytest.raises(AuthTokenMissingError):
            await make_provider(transport, clock).get_token()

    @pytest.mark.asyncio
    async def test_non_json_success(self, clock):
        """Test a success response whose body is not JSON."""
        transport = ScriptedTransport([http_response(200, "<html>ok</html>")])

        with pytest.raises(AuthTokenMissingError):
            await make_provider(transport, clock).get_token()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("expires_in", [None, "soon", float("inf")])
    async def test_invalid_expiry(self, expires_in, clock):
        """Test that the expiry must be a finite number."""
        transport = ScriptedTransport([token_response(expires_in=expires_in)])

        with pytest.raises(AuthExpiryInvalidError):
            await make_provider(transport, clock).get_token()

    @pytest.mark.asyncio
    async def test_failure_message_has_no_secrets(self, clock):
        """Test that credentials never appear in exchange errors."""
        transport = ScriptedTransport([http_response(401, {"error": "invalid_client"})])
        provider = make_provider(transport, clock)

        with pytest.raises(AuthExchangeFailedError) as exc_info:
            await provider.get_token()

        text = f"{exc_info.value} {exc_info.value!r}"
        assert "client-secret-value" not in text
        assert "refresh-token-value" not in text
