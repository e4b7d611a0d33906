"""
Batch client - main dispatcher.

Splits request sets into chunks, runs each chunk through the batch
endpoint with whole-call and per-subrequest retry, follows pagination,
and assembles the final (possibly partial) result.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union
from urllib.parse import urlsplit

import structlog

from batchclient.auth.token_provider import RefreshTokenProvider, TokenProvider
from batchclient.config import BatchClientConfig, get_config
from batchclient.core.request import SYNTHETIC_STATUS, BatchRequest, Subresponse, decode_batch_response
from batchclient.core.result import BatchMode, BatchResult, ErrorStage, PartialError
from batchclient.engine.backoff import Backoff
from batchclient.engine.pagination import PaginationHandler
from batchclient.engine.retry import AuthenticatedRequester, default_sleep, is_offline_error
from batchclient.errors import (
    AUTH_ERROR_PREFIX,
    AuthError,
    BatchRequestSizeExceededError,
    ConfigurationError,
    OriginMismatchError,
    SubrequestExceededRetriesError,
)
from batchclient.transport.interface import Transport
from batchclient.urls import chunked, ensure_same_origin, get_retry_after_ms, now_ms

logger = structlog.get_logger(__name__)


@dataclass
class _ChunkOutcome:
    """Ordered responses and ledger of one chunk."""
    responses: List[Subresponse] = field(default_factory=list)
    partial: bool = False
    errors: List[PartialError] = field(default_factory=list)


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


class BatchClient:
    """
    Resilient executor for batched HTTP calls.

    Coordinates the engine components:
    - Token acquisition (cached, single-flight)
    - Chunking to the endpoint's subrequest limit
    - Whole-call retry and per-subrequest retry isolation
    - Same-origin enforcement for request urls and next links
    - Pagination of list responses
    - Partial-result aggregation

    Usage:
        ```python
        async with BatchClient(HttpxTransport(config), config=config) as client:
            result = await client.batch([
                {"id": "1", "url": "/me"},
                {"id": "2", "url": "/users"},
            ])
        ```
    """

    def __init__(
        self,
        transport: Transport,
        config: Optional[BatchClientConfig] = None,
        token_provider: Optional[TokenProvider] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        now: Optional[Callable[[], float]] = None,
        rng: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the client.

        Args:
            transport: HTTP transport used for every outbound call
            config: Client configuration. Uses global config if not provided.
            token_provider: Async callable returning a bearer token; built
                from the config's auth settings when omitted
            sleep: Async sleep taking milliseconds
            now: Clock in milliseconds
            rng: Random source for backoff jitter

        Raises:
            ConfigurationError: If no transport or no way to get a token is given
        """
        if transport is None:
            raise ConfigurationError("transport is required")

        self.config = config or get_config()
        self.transport = transport
        self._sleep = sleep or default_sleep
        self._now = now or now_ms

        if token_provider is not None:
            if not callable(token_provider):
                raise ConfigurationError("token_provider must be callable")
            self._get_token = token_provider
        elif self.config.has_refresh_token_auth:
            self._get_token = RefreshTokenProvider.from_config(transport, self.config, now=self._now)
        else:
            raise ConfigurationError("token_provider or auth settings are required")

        self.origin = self.config.origin
        token_url = getattr(self._get_token, "token_url", None)
        if not isinstance(token_url, str):
            token_url = self.config.token_url
        self._token_host = urlsplit(token_url).hostname

        self._backoff = Backoff.from_config(self.config, rng=rng)
        self._requester = AuthenticatedRequester(
            transport=transport,
            get_token=self._get_token,
            base_url=self.config.base_url,
            origin=self.origin,
            backoff=self._backoff,
            retryable_statuses=self.config.retryable_statuses,
            max_retries=self.config.max_batch_retries,
            sleep=self._sleep,
            now=self._now,
        )
        self._pagination = PaginationHandler(
            get_page=self._requester.get,
            origin=self.origin,
            max_pages=self.config.max_pagination_pages,
            value_field=self.config.value_field,
            next_link_field=self.config.next_link_field,
        )

    async def __aenter__(self) -> "BatchClient":
        await self.transport.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the transport."""
        await self.transport.disconnect()

    @property
    def requester(self) -> AuthenticatedRequester:
        """Authenticated request path shared by batch calls and pagination."""
        return self._requester

    # ========================================================================
    # Public API
    # ========================================================================

    async def batch(
        self,
        requests: Sequence[Union[BatchRequest, Mapping[str, Any]]],
        paginate: bool = True,
        mode: Union[BatchMode, str] = BatchMode.PARTIAL,
    ) -> BatchResult:
        """
        Execute requests through the batch endpoint.

        In partial mode (the default) retry exhaustion, pagination failures,
        off-origin subrequests and offline token/batch failures become 599
        responses and ``errors`` entries. In strict mode the first of them
        is raised and ``partial``/``errors`` stay None.

        Args:
            requests: BatchRequests or mappings with ``id``, ``url`` and
                optional ``method``, ``headers``, ``body``
            paginate: Follow next links on GET list responses
            mode: ``"partial"`` or ``"strict"``

        Returns:
            Responses keyed by id and ordered by first submission

        Raises:
            TypeError: If ``requests`` is not a list
            InvalidBatchResponseShapeError: If the endpoint breaks the protocol
            RequestFailedError: On a non-retryable failure of the batch call
        """
        if not isinstance(requests, (list, tuple)):
            raise TypeError("requests must be a list")

        mode = BatchMode(mode)
        result = BatchResult.empty(mode)
        if not requests:
            return result

        normalized = [self._coerce_request(r) for r in requests]
        chunks = chunked(normalized, self.config.max_requests_per_batch)
        logger.info("batch_started", requests=len(normalized), chunks=len(chunks), mode=mode.value)

        for chunk in chunks:
            outcome = await self._execute_chunk(chunk, paginate=paginate, mode=mode)
            for response in outcome.responses:
                result.responses[response.id] = response

            if mode == BatchMode.PARTIAL:
                result.partial = result.partial or outcome.partial
                result.errors.extend(outcome.errors)

        result.response_list = list(result.responses.values())

        logger.info(
            "batch_completed",
            responses=len(result.response_list),
            partial=result.partial,
            errors=len(result.errors) if result.errors is not None else None,
        )
        return result

    # ========================================================================
    # Chunk state machine
    # ========================================================================

    @staticmethod
    def _coerce_request(request: Union[BatchRequest, Mapping[str, Any]]) -> BatchRequest:
        if isinstance(request, BatchRequest):
            return request
        if isinstance(request, Mapping):
            return BatchRequest.from_dict(request)
        raise TypeError(f"unsupported request type: {type(request).__name__}")

    def _needs_retry(self, response: Optional[Subresponse]) -> bool:
        # A missing subresponse is retried like a transient failure.
        if response is None:
            return True
        return self._requester.is_retryable_status(response.status)

    async def _execute_chunk(
        self,
        chunk: List[BatchRequest],
        paginate: bool,
        mode: BatchMode,
    ) -> _ChunkOutcome:
        """Run one chunk from preflight to its ordered responses."""
        partial_mode = mode == BatchMode.PARTIAL
        outcome = _ChunkOutcome()
        responses_by_id: Dict[str, Subresponse] = {}

        # One slot per id: first occurrence fixes the position, last one is sent.
        unique: Dict[str, BatchRequest] = {}
        for request in chunk:
            unique[request.key] = request
        request_meta = {key: {"method": r.normalized_method} for key, r in unique.items()}

        def ordered() -> List[Subresponse]:
            return [responses_by_id[key] for key in unique if key in responses_by_id]

        # Preflight
        dispatchable: List[BatchRequest] = []
        for key, request in unique.items():
            try:
                ensure_same_origin(request.url, self.origin)
            except OriginMismatchError as e:
                if not partial_mode:
                    raise
                outcome.partial = True
                responses_by_id[key] = Subresponse.synthetic(
                    key, e.code, e.message, status=SYNTHETIC_STATUS,
                )
                outcome.errors.append(PartialError(
                    stage=ErrorStage.SUBREQUEST,
                    id=key,
                    type=type(e).__name__,
                    message=e.message,
                    code=e.code,
                    url=str(request.url),
                ))
                logger.warning("subrequest_origin_mismatch", id=key, url=str(request.url))
                continue
            dispatchable.append(request)

        if not dispatchable:
            outcome.responses = ordered()
            return outcome

        # Initial dispatch
        try:
            initial = await self._post_batch(dispatchable)
        except Exception as e:
            if not partial_mode or not is_offline_error(e):
                raise

            stage = self._classify_outage(e)
            error = self._format_outage(e, stage)
            outcome.partial = True
            outcome.errors.append(error)
            for key in unique:
                if key not in responses_by_id:
                    responses_by_id[key] = Subresponse.synthetic(
                        key, "BatchRequestFailed", error.message, stage=stage.value,
                    )
            logger.warning("chunk_offline", stage=stage.value, code=error.code, ids=list(unique))
            outcome.responses = ordered()
            return outcome

        for response in initial:
            responses_by_id[response.id] = response

        await self._retry_subrequests(dispatchable, responses_by_id, outcome, partial_mode)

        if paginate:
            def on_pagination_error(error: Exception, request_id: str, next_link: Any) -> None:
                outcome.partial = True
                outcome.errors.append(PartialError(
                    stage=ErrorStage.PAGINATION,
                    id=str(request_id),
                    type=type(error).__name__,
                    message=getattr(error, "message", None) or str(error),
                ))

            await self._pagination.paginate_in_place(
                ordered(),
                request_meta,
                mode=mode,
                on_error=on_pagination_error,
            )

        outcome.responses = ordered()
        return outcome

    async def _retry_subrequests(
        self,
        dispatched: List[BatchRequest],
        responses_by_id: Dict[str, Subresponse],
        outcome: _ChunkOutcome,
        partial_mode: bool,
    ) -> None:
        """Re-dispatch only the subrequests that came back retryable."""
        max_retries = self.config.max_subrequest_retries
        attempts: Dict[str, int] = {}

        pending = [r for r in dispatched if self._needs_retry(responses_by_id.get(r.key))]

        while pending:
            exhausted = [r for r in pending if attempts.get(r.key, 0) + 1 > max_retries]
            retry_list = [r for r in pending if attempts.get(r.key, 0) + 1 <= max_retries]

            if exhausted:
                if not partial_mode:
                    last = responses_by_id.get(exhausted[0].key)
                    raise SubrequestExceededRetriesError(
                        exhausted[0].key, last.status if last else "unknown",
                    )

                outcome.partial = True
                for request in exhausted:
                    last = responses_by_id.get(request.key)
                    status = last.status if last else "unknown"
                    error = SubrequestExceededRetriesError(request.key, status)
                    outcome.errors.append(PartialError(
                        stage=ErrorStage.SUBREQUEST,
                        id=request.key,
                        type=type(error).__name__,
                        message=error.message,
                        status=status,
                    ))
                    if last is None:
                        responses_by_id[request.key] = Subresponse.synthetic(
                            request.key, "SubrequestExceededRetries", error.message, status=status,
                        )
                    logger.warning("subrequest_retries_exhausted", id=request.key, status=status)

            if not retry_list:
                break

            # One shared delay: the largest Retry-After wins, else exponential backoff.
            delay_ms = None
            for request in retry_list:
                response = responses_by_id.get(request.key)
                retry_after = get_retry_after_ms(response.headers, self._now) if response else None
                if retry_after is not None:
                    delay_ms = retry_after if delay_ms is None else max(delay_ms, retry_after)

            if delay_ms is None:
                highest = max(attempts.get(r.key, 0) for r in retry_list)
                delay_ms = self._backoff.compute_delay_ms(highest + 1)

            logger.info(
                "subrequest_retry_scheduled",
                ids=[r.key for r in retry_list],
                delay_ms=delay_ms,
            )
            if delay_ms > 0:
                await self._sleep(delay_ms)

            for request in retry_list:
                attempts[request.key] = attempts.get(request.key, 0) + 1

            for response in await self._post_batch(retry_list):
                responses_by_id[response.id] = response

            pending = [r for r in retry_list if self._needs_retry(responses_by_id.get(r.key))]

    async def _post_batch(self, requests: List[BatchRequest]) -> List[Subresponse]:
        """
        Send one batch endpoint call.

        Raises:
            OriginMismatchError: If an entry is off-origin (``stage="subrequest"``)
            BatchRequestSizeExceededError: If there are too many entries
            InvalidBatchResponseShapeError: If the response has no responses array
        """
        for request in requests:
            try:
                ensure_same_origin(request.url, self.origin)
            except OriginMismatchError as e:
                e.stage = ErrorStage.SUBREQUEST.value
                raise

        limit = self.config.max_requests_per_batch
        if len(requests) > limit:
            raise BatchRequestSizeExceededError(limit)

        payload = {"requests": [r.to_payload() for r in requests]}
        logger.debug("batch_dispatched", size=len(requests))

        body = await self._requester.request("POST", self.config.batch_path, body=payload)
        return decode_batch_response(body)

    # ========================================================================
    # Outage classification
    # ========================================================================

    def _classify_outage(self, error: BaseException) -> ErrorStage:
        """Attribute an offline failure to token acquisition or to the batch call."""
        if isinstance(error, AuthError):
            return ErrorStage.AUTH

        message = _text(getattr(error, "message", None)) or str(error)
        url = _text(getattr(error, "url", None))

        if self._token_host and (self._token_host in url or self._token_host in message):
            return ErrorStage.AUTH
        if message.startswith(AUTH_ERROR_PREFIX):
            return ErrorStage.AUTH

        return ErrorStage.BATCH

    @staticmethod
    def _format_outage(error: BaseException, stage: ErrorStage) -> PartialError:
        code = getattr(error, "code", None)
        errno = getattr(error, "errno", None)
        return PartialError(
            stage=stage,
            type=type(error).__name__,
            message=_text(getattr(error, "message", None)) or str(error) or type(error).__name__,
            code=code if isinstance(code, str) else None,
            errno=errno if isinstance(errno, int) else None,
            syscall=_text(getattr(error, "syscall", None)) or None,
            hostname=_text(getattr(error, "hostname", None)) or None,
            url=_text(getattr(error, "url", None)) or None,
        )
