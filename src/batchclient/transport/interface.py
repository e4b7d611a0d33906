"""
Abstract interface for the HTTP transport.

Defines the contract the engine relies on; the engine never looks at
transport internals beyond these types.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class TransportResponse:
    """Raw outcome of one HTTP call."""
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None                   # Decoded JSON, text, or None when empty


class TransportError(Exception):
    """
    Raised when an HTTP call produced no response (DNS, connect, reset, timeout).

    Carries the fields used to classify offline-like failures. Request
    headers are never kept.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        errno: Optional[int] = None,
        syscall: Optional[str] = None,
        hostname: Optional[str] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.errno = errno
        self.syscall = syscall
        self.hostname = hostname
        self.url = url


class Transport(ABC):
    """
    Abstract HTTP transport.

    Implementations must return every HTTP status as a TransportResponse
    (retry decisions are made by the caller) and raise TransportError only
    when no response was received.
    """

    async def connect(self) -> None:
        """Acquire underlying resources. Optional for stateless transports."""

    async def disconnect(self) -> None:
        """Release underlying resources."""

    @abstractmethod
    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
        data: Optional[Dict[str, str]] = None,
    ) -> TransportResponse:
        """
        Perform one HTTP call.

        Args:
            method: HTTP method
            url: Absolute url
            headers: Request headers
            json: JSON-serializable body
            data: Form fields, sent url-encoded

        Returns:
            Status, headers and decoded body

        Raises:
            TransportError: If no response was received
        """
        pass

    async def __aenter__(self) -> "Transport":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()
