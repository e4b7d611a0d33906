"""
Retry and pagination engine.

Backoff calculation, the authenticated retry wrapper and the pagination
handler used by the dispatcher.
"""

from batchclient.engine.backoff import Backoff
from batchclient.engine.retry import AuthenticatedRequester, is_offline_error
from batchclient.engine.pagination import PaginationHandler

__all__ = [
    "Backoff",
    "AuthenticatedRequester",
    "is_offline_error",
    "PaginationHandler",
]
