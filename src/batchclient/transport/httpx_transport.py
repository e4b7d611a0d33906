"""
httpx transport adapter.

Provides the default Transport implementation on top of httpx.AsyncClient.
"""

import errno as errno_codes
import socket
from typing import Any, Dict, Optional

import httpx
import structlog

from batchclient.config import BatchClientConfig, get_config
from batchclient.transport.interface import Transport, TransportError, TransportResponse

logger = structlog.get_logger(__name__)


def _iter_causes(exc: BaseException):
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _translate_error(exc: httpx.RequestError, url: str) -> TransportError:
    """Map an httpx failure onto the TransportError fields used for classification."""
    hostname = httpx.URL(url).host or None
    message = str(exc) or exc.__class__.__name__

    for cause in _iter_causes(exc):
        if isinstance(cause, socket.gaierror):
            code = "EAI_AGAIN" if cause.errno == socket.EAI_AGAIN else "ENOTFOUND"
            return TransportError(
                f"getaddrinfo {code} {hostname}",
                code=code,
                errno=cause.errno,
                syscall="getaddrinfo",
                hostname=hostname,
                url=url,
            )
        if isinstance(cause, OSError) and cause.errno in errno_codes.errorcode:
            return TransportError(
                message,
                code=errno_codes.errorcode[cause.errno],
                errno=cause.errno,
                hostname=hostname,
                url=url,
            )

    if isinstance(exc, httpx.TimeoutException):
        code = "ETIMEDOUT"
    elif isinstance(exc, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        code = "ECONNRESET"
    elif isinstance(exc, httpx.ConnectError):
        code = "ECONNREFUSED"
    else:
        code = None

    return TransportError(message, code=code, hostname=hostname, url=url)


class HttpxTransport(Transport):
    """
    Transport backed by httpx.AsyncClient.

    Every status is returned to the caller; only failures without a
    response are raised, as TransportError.
    """

    def __init__(
        self,
        config: Optional[BatchClientConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the transport.

        Args:
            config: Client configuration. Uses global config if not provided.
            client: Pre-built httpx client (tests pass one wired to httpx.MockTransport)
        """
        self.config = config or get_config()
        self._client = client
        self._owns_client = client is None

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self._client is not None:
            return

        self._client = httpx.AsyncClient(timeout=self.config.http_timeout_seconds)
        self._owns_client = True
        logger.debug("transport_connected", timeout=self.config.http_timeout_seconds)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.debug("transport_disconnected")

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
        data: Optional[Dict[str, str]] = None,
    ) -> TransportResponse:
        if not self._client:
            await self.connect()

        kwargs: Dict[str, Any] = {"headers": headers}
        if json is not None:
            kwargs["json"] = json
        if data is not None:
            kwargs["data"] = data

        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            error = _translate_error(e, url)
            logger.warning(
                "transport_request_error",
                method=method,
                url=url,
                code=error.code,
                error=error.message,
            )
            raise error from e

        return TransportResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=self._decode_body(response),
        )

    @staticmethod
    def _decode_body(response: httpx.Response) -> Any:
        """Decode JSON bodies; fall back to text, or None when empty."""
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text
