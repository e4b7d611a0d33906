"""
Token acquisition.
"""

from batchclient.auth.token_provider import RefreshTokenProvider, TokenProvider

__all__ = [
    "RefreshTokenProvider",
    "TokenProvider",
]
