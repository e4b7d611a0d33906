"""
HTTP Transport Layer.

Abstracts the HTTP client the engine sends requests through.
"""

from batchclient.transport.interface import Transport, TransportError, TransportResponse
from batchclient.transport.httpx_transport import HttpxTransport

__all__ = [
    "Transport",
    "TransportError",
    "TransportResponse",
    "HttpxTransport",
]
