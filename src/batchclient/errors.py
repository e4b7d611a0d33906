"""
Exception hierarchy for the batch client.

``recoverable`` marks conditions that best-effort (partial) mode may degrade
into an error ledger entry instead of raising. Messages never include
credentials or request headers.
"""

from typing import Any, Optional


# Message prefix shared by all token exchange failures.
AUTH_ERROR_PREFIX = "OAuth token refresh"


class BatchClientError(Exception):
    """Base class for all batch client errors."""

    recoverable = False
    stage: Optional[str] = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(BatchClientError, ValueError):
    """Raised when the client is constructed with missing or invalid options."""


# ============================================================================
# Token acquisition
# ============================================================================

class AuthError(BatchClientError):
    """Base class for token exchange failures."""

    stage = "auth"


class AuthExchangeFailedError(AuthError):
    """Token endpoint answered with a non-2xx status."""

    def __init__(self, status: Any, response_text: str):
        super().__init__(f"{AUTH_ERROR_PREFIX} failed ({status}): {response_text}")
        self.status = status
        self.response_text = response_text


class AuthTokenMissingError(AuthError):
    """Token endpoint response carried no access token."""

    def __init__(self):
        super().__init__(f"{AUTH_ERROR_PREFIX} returned no access_token")


class AuthExpiryInvalidError(AuthError):
    """Token endpoint response carried a non-numeric expiry."""

    def __init__(self):
        super().__init__(f"{AUTH_ERROR_PREFIX} returned invalid expires_in")


# ============================================================================
# Single authenticated request
# ============================================================================

class OriginMismatchError(BatchClientError):
    """An absolute url points outside the configured service origin."""

    code = "ORIGIN_MISMATCH"

    def __init__(self, url: str, allowed_origin: Optional[str]):
        super().__init__(f"Request url origin mismatch (allowed {allowed_origin}): {url}")
        self.url = url
        self.allowed_origin = allowed_origin


class RequestFailedError(BatchClientError):
    """Non-retryable, non-2xx status for an authenticated request."""

    def __init__(self, status: int, response_text: str):
        super().__init__(f"Request failed ({status}): {response_text}")
        self.status = status
        self.response_text = response_text


class RequestExceededRetriesError(BatchClientError):
    """A retryable status persisted past the whole-call retry ceiling."""

    recoverable = True

    def __init__(self, status: int):
        super().__init__(f"Request exceeded retries (last status {status})")
        self.status = status


# ============================================================================
# Batch protocol
# ============================================================================

class SubrequestExceededRetriesError(BatchClientError):
    """One subrequest kept failing with a retryable status."""

    recoverable = True
    stage = "subrequest"

    def __init__(self, request_id: str, status: Any):
        super().__init__(f"Subrequest {request_id} exceeded retries (last status {status})")
        self.id = request_id
        self.status = status


class InvalidBatchResponseShapeError(BatchClientError):
    """The batch endpoint answered without a usable responses array."""

    stage = "batch"

    def __init__(self, detail: Optional[str] = None):
        message = "Invalid $batch response shape"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class BatchRequestSizeExceededError(BatchClientError):
    """A batch payload was built with more entries than the endpoint accepts."""

    def __init__(self, limit: int):
        super().__init__(f"Batch request size exceeds {limit}")
        self.max = limit


# ============================================================================
# Pagination
# ============================================================================

class PaginationError(BatchClientError):
    """Base class for pagination failures."""

    recoverable = True
    stage = "pagination"


class PaginationExceededMaxPagesError(PaginationError):
    def __init__(self, limit: int, request_id: str):
        super().__init__(f"Pagination exceeded max pages ({limit}) for {request_id}")
        self.max = limit
        self.id = request_id


class PaginationNonJsonError(PaginationError):
    def __init__(self, request_id: str):
        super().__init__(f"Pagination returned non-JSON for {request_id}")
        self.id = request_id


class PaginationExternalNextLinkError(PaginationError):
    """A next link points outside the service origin; it is never followed."""

    def __init__(self, request_id: str, next_link: str, allowed_origin: Optional[str]):
        super().__init__(
            f"Pagination nextLink origin mismatch for {request_id} (allowed {allowed_origin}): {next_link}"
        )
        self.id = request_id
        self.next_link = next_link
        self.allowed_origin = allowed_origin


class PaginationInvalidNextLinkError(PaginationError):
    """A next link that is not a string or cannot be parsed as a url."""

    def __init__(self, request_id: str, next_link: Any):
        super().__init__(f"Pagination nextLink is not a valid url for {request_id}")
        self.id = request_id
        self.next_link = next_link
