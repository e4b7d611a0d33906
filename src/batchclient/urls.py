"""
URL and header helpers shared by the dispatcher, retry wrapper and pagination.

Every url the engine touches goes through here, so this is where the
same-origin rule is enforced.
"""

import math
import time
from email.utils import parsedate_to_datetime
from datetime import timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar
from urllib.parse import urljoin, urlsplit

from batchclient.errors import OriginMismatchError

T = TypeVar("T")

DEFAULT_PORTS = {"http": 80, "https": 443}


def now_ms() -> float:
    """Wall clock in milliseconds."""
    return time.time() * 1000


def normalize_headers(headers: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Lower-case header names and drop headers without a value."""
    if not headers:
        return {}

    normalized = {}
    for key, value in headers.items():
        if value is None:
            continue
        normalized[str(key).lower()] = str(value)
    return normalized


def get_retry_after_ms(
    headers: Optional[Mapping[str, Any]],
    now: Callable[[], float] = now_ms,
) -> Optional[int]:
    """
    Parse a Retry-After header into a delay in milliseconds.

    Args:
        headers: Response headers (any casing)
        now: Clock used to turn an HTTP-date into a delay

    Returns:
        Delay in milliseconds (never negative), or None when the header is
        missing or unparseable
    """
    retry_after = normalize_headers(headers).get("retry-after")
    if not retry_after:
        return None

    try:
        seconds = float(retry_after)
    except ValueError:
        seconds = None

    if seconds is not None:
        if not math.isfinite(seconds):
            return None
        return max(0, math.floor(seconds * 1000))

    try:
        when = parsedate_to_datetime(retry_after)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    return max(0, math.floor(when.timestamp() * 1000 - now()))


def chunked(items: Sequence[T], size: int) -> List[List[T]]:
    """Split a sequence into consecutive lists of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def is_absolute_url(url: Any) -> bool:
    """True for urls with both a scheme and an authority (``mailto:x`` is not)."""
    parts = urlsplit(str(url))
    return bool(parts.scheme and parts.netloc)


def get_origin(url: Any) -> Optional[str]:
    """
    Return ``scheme://host[:port]`` for an absolute url.

    Scheme and host are lower-cased and default ports are dropped, so two
    spellings of the same origin compare equal.
    """
    parts = urlsplit(str(url))
    if not parts.scheme or not parts.netloc:
        return None

    scheme = parts.scheme.lower()
    host = parts.hostname
    if not host:
        return None

    try:
        port = parts.port
    except ValueError:
        return None

    if ":" in host:
        host = f"[{host}]"

    if port is None or DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def ensure_same_origin(url: Any, allowed_origin: Optional[str]) -> None:
    """
    Reject absolute urls outside ``allowed_origin``.

    Relative urls always pass; so does everything when no origin is configured.

    Raises:
        OriginMismatchError: If the url is absolute and its origin differs,
            or if the url cannot be parsed at all
    """
    if not allowed_origin:
        return
    try:
        absolute = is_absolute_url(url)
    except ValueError:
        raise OriginMismatchError(str(url), allowed_origin) from None
    if not absolute:
        return
    if get_origin(url) != allowed_origin:
        raise OriginMismatchError(str(url), allowed_origin)


def to_relative_batch_url(url: Any) -> str:
    """
    Convert a request url into the path-relative form the batch endpoint expects.

    Absolute urls lose their origin (path and query are kept); anything else
    gets a leading slash.
    """
    if not url:
        raise ValueError("Request url is required")

    text = str(url)
    if is_absolute_url(text):
        parts = urlsplit(text)
        path = parts.path or "/"
        return f"{path}?{parts.query}" if parts.query else path

    return text if text.startswith("/") else f"/{text}"


def to_full_url(base_url: str, url: Any, allowed_origin: Optional[str] = None) -> str:
    """
    Build the absolute url for an outbound call.

    Absolute urls are kept as-is after the same-origin check; relative ones
    are appended to ``base_url``.
    """
    text = str(url)
    if is_absolute_url(text):
        ensure_same_origin(text, allowed_origin)
        return text

    base = base_url.rstrip("/")
    path = text if text.startswith("/") else f"/{text}"
    return f"{base}{path}"


def resolve_next_link(link: str, origin: Optional[str]) -> str:
    """Resolve a pagination cursor; relative links are joined onto ``origin``."""
    if is_absolute_url(link):
        return link
    if origin:
        return urljoin(f"{origin}/", link)
    return link
