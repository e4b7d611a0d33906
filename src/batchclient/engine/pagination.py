"""
Pagination Handler - follows next-link cursors on list responses.

Aggregates the list field of every follow-up page into the first page's
subresponse body.
"""

from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

import structlog

from batchclient.core.request import Subresponse
from batchclient.core.result import BatchMode
from batchclient.errors import (
    BatchClientError,
    PaginationExceededMaxPagesError,
    PaginationExternalNextLinkError,
    PaginationInvalidNextLinkError,
    PaginationNonJsonError,
)
from batchclient.transport.interface import TransportError
from batchclient.urls import get_origin, is_absolute_url, resolve_next_link

logger = structlog.get_logger(__name__)

# Called with (error, request id, unresolved next link) in partial mode.
PaginationErrorCallback = Callable[[Exception, str, Any], None]


class PaginationHandler:
    """
    Follows next links for successful GET list responses.

    A response is eligible when its request was a GET, its status is 2xx,
    its body is an object whose list field is a list, and the body carries
    a next link. Absolute next links must stay on the service origin.
    """

    def __init__(
        self,
        get_page: Callable[[str], Awaitable[Any]],
        origin: Optional[str],
        max_pages: int,
        value_field: str = "value",
        next_link_field: str = "@odata.nextLink",
    ):
        """
        Initialize the handler.

        Args:
            get_page: Authenticated GET returning the decoded page body
            origin: Service origin; relative links are joined onto it
            max_pages: Maximum follow-up pages per response
            value_field: List field aggregated across pages
            next_link_field: Body field holding the next cursor
        """
        self._get_page = get_page
        self.origin = origin
        self.max_pages = max_pages
        self.value_field = value_field
        self.next_link_field = next_link_field

    def _is_eligible(self, response: Subresponse, request_meta: Dict[str, Dict[str, str]]) -> bool:
        meta = request_meta.get(str(response.id)) if request_meta else None
        if not meta or meta.get("method") != "GET":
            return False
        if not response.is_success:
            return False
        body = response.body
        if not isinstance(body, dict):
            return False
        if not isinstance(body.get(self.value_field), list):
            return False
        return bool(body.get(self.next_link_field))

    def _resolve(self, link: Any, request_id: str) -> str:
        if not isinstance(link, str):
            raise PaginationInvalidNextLinkError(request_id, link)
        try:
            resolved = resolve_next_link(link, self.origin)
            absolute = is_absolute_url(resolved)
        except ValueError:
            raise PaginationInvalidNextLinkError(request_id, link) from None
        # Scheme-relative links only show their host once resolved.
        if self.origin and absolute and get_origin(resolved) != self.origin:
            raise PaginationExternalNextLinkError(request_id, link, self.origin)
        return resolved

    async def paginate_in_place(
        self,
        responses: Iterable[Subresponse],
        request_meta: Dict[str, Dict[str, str]],
        mode: BatchMode = BatchMode.STRICT,
        on_error: Optional[PaginationErrorCallback] = None,
    ) -> None:
        """
        Aggregate all pages of every eligible response.

        Args:
            responses: Subresponses to update in place
            request_meta: Per-id request metadata (``{"method": "GET"}``)
            mode: Strict raises the first failure; partial reports it
            on_error: Partial-mode failure callback

        Raises:
            PaginationError: In strict mode, on the first pagination failure
            RequestFailedError: In strict mode, if a page request fails
        """
        mode = BatchMode(mode)

        for response in responses:
            if not self._is_eligible(response, request_meta):
                continue

            body = response.body
            aggregated = list(body[self.value_field])
            link: Any = body[self.next_link_field]
            page_count = 0

            try:
                while link:
                    page_count += 1
                    if page_count > self.max_pages:
                        raise PaginationExceededMaxPagesError(self.max_pages, response.id)

                    page = await self._get_page(self._resolve(link, response.id))
                    if not isinstance(page, dict):
                        raise PaginationNonJsonError(response.id)

                    values = page.get(self.value_field)
                    if isinstance(values, list):
                        aggregated.extend(values)
                    link = page.get(self.next_link_field) or None

                body[self.value_field] = aggregated
                body.pop(self.next_link_field, None)
                logger.debug("pagination_completed", id=response.id, pages=page_count, items=len(aggregated))

            except (BatchClientError, TransportError, OSError) as e:
                if mode != BatchMode.PARTIAL:
                    raise

                body[self.value_field] = aggregated
                body[self.next_link_field] = link
                logger.warning("pagination_failed", id=response.id, error=str(e))
                if on_error is not None:
                    on_error(e, response.id, link)
