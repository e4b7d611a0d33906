"""
Pytest configuration and shared fixtures for the test suite.
"""

from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from batchclient.config import BatchClientConfig
from batchclient.core.client import BatchClient
from batchclient.transport.interface import Transport, TransportError, TransportResponse


SECRET_TOKEN = "super-secret-token"
BASE_URL = "https://graph.example/v1.0"
ORIGIN = "https://graph.example"


# ============================================================================
# Test Doubles
# ============================================================================

Step = Union[TransportResponse, BaseException, Callable[[Dict[str, Any]], TransportResponse]]


class ScriptedTransport(Transport):
    """
    Transport that replays a fixed sequence of responses or errors.

    Every call is recorded so tests can assert on what was sent.
    """

    def __init__(self, steps: Optional[List[Step]] = None):
        self.steps: List[Step] = list(steps or [])
        self.calls: List[Dict[str, Any]] = []
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    def add(self, *steps: Step) -> "ScriptedTransport":
        self.steps.extend(steps)
        return self

    async def request(self, method, url, headers=None, json=None, data=None) -> TransportResponse:
        call = {"method": method, "url": url, "headers": headers, "json": json, "data": data}
        self.calls.append(call)

        if not self.steps:
            raise AssertionError(f"transport out of responses (call {len(self.calls)}: {method} {url})")

        step = self.steps.pop(0)
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return step(call)
        return step

    @property
    def batch_calls(self) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["method"] == "POST" and c["url"].endswith("/$batch")]

    def batch_ids(self, index: int) -> List[str]:
        """Ids sent in the n-th batch call."""
        return [r["id"] for r in self.batch_calls[index]["json"]["requests"]]


class RecordingSleep:
    """Async sleep replacement that records requested delays (ms)."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, ms: float) -> None:
        self.calls.append(ms)


class FakeClock:
    """Millisecond clock under test control."""

    def __init__(self, start: float = 1_700_000_000_000):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, ms: float) -> None:
        self.value += ms


# ============================================================================
# Test Data Generators
# ============================================================================

def sub(
    id: str,
    status: int = 200,
    body: Any = None,
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Build one subresponse entry as the batch endpoint returns it."""
    return {"id": id, "status": status, "headers": headers or {}, "body": body}


def batch_response(*subresponses: Dict[str, Any], status: int = 200) -> TransportResponse:
    """Wrap subresponses in a batch endpoint response."""
    return TransportResponse(status=status, headers={}, body={"responses": list(subresponses)})


def http_response(status: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None) -> TransportResponse:
    return TransportResponse(status=status, headers=headers or {}, body=body)


def offline_error(
    code: str = "ENOTFOUND",
    url: str = f"{BASE_URL}/$batch",
    message: Optional[str] = None,
    syscall: Optional[str] = None,
) -> TransportError:
    return TransportError(message or code, code=code, syscall=syscall, url=url)


async def static_token() -> str:
    return SECRET_TOKEN


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_config() -> BatchClientConfig:
    """Create a test configuration with deterministic backoff."""
    return BatchClientConfig(
        base_url=BASE_URL,
        max_requests_per_batch=20,
        max_batch_retries=3,
        max_subrequest_retries=3,
        initial_backoff_ms=100,
        max_backoff_ms=1_000,
        jitter_ratio=0,
        max_pagination_pages=10,
    )


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_client(test_config, transport, sleep, clock):
    """Factory for clients wired to the scripted transport."""

    def _make(config: Optional[BatchClientConfig] = None, **overrides) -> BatchClient:
        if overrides:
            config = (config or test_config).model_copy(update=overrides)
        return BatchClient(
            transport,
            config=config or test_config,
            token_provider=static_token,
            sleep=sleep,
            now=clock,
        )

    return _make
