"""
Request and subresponse models.

BatchRequest is what callers submit; Subresponse is what comes back for
each id, either decoded from the batch endpoint or synthesized by the
engine when no real answer exists.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from batchclient.errors import InvalidBatchResponseShapeError
from batchclient.urls import normalize_headers, to_relative_batch_url

# Status used for responses the engine had to make up.
SYNTHETIC_STATUS = 599


@dataclass(frozen=True)
class BatchRequest:
    """
    A single logical request submitted to ``BatchClient.batch``.

    Attributes:
        id: Correlation key, unique within one call (compared as ``str(id)``)
        url: Absolute url on the service origin, or a path relative to the service root
        method: HTTP method, GET when omitted
        headers: Per-subrequest headers
        body: JSON body for the subrequest
    """

    id: Union[str, int]
    url: str
    method: str = "GET"
    headers: Optional[Dict[str, str]] = None
    body: Any = None

    @property
    def key(self) -> str:
        """Id as used for correlation."""
        return str(self.id)

    @property
    def normalized_method(self) -> str:
        return (self.method or "GET").upper()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BatchRequest":
        """Create a BatchRequest from a plain mapping."""
        if "id" not in data:
            raise ValueError("request id is required")
        return cls(
            id=data["id"],
            url=data.get("url"),
            method=data.get("method") or "GET",
            headers=data.get("headers"),
            body=data.get("body"),
        )

    def to_payload(self) -> dict:
        """Render the entry sent inside the batch payload."""
        payload = {
            "id": self.key,
            "method": self.normalized_method,
            "url": to_relative_batch_url(self.url),
        }
        if self.headers:
            payload["headers"] = self.headers
        if self.body:
            payload["body"] = self.body
        return payload


@dataclass
class Subresponse:
    """
    Outcome of one subrequest.

    ``body`` is mutated in place by pagination; nothing else changes a
    Subresponse once it has been stored.
    """

    id: str
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300

    @classmethod
    def synthetic(cls, request_id: str, code: str, message: str, **extra: Any) -> "Subresponse":
        """Build a 599 placeholder for an id that got no real answer."""
        body = {"error": {"code": code, "message": message}}
        body.update(extra)
        return cls(id=str(request_id), status=SYNTHETIC_STATUS, headers={}, body=body)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "headers": dict(self.headers),
            "body": self.body,
        }


# ============================================================================
# Wire decoding
# ============================================================================

class _SubresponsePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Union[str, int]
    status: int
    headers: Optional[Dict[str, Any]] = None
    body: Any = None


class _BatchResponsePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    responses: List[_SubresponsePayload]


def decode_batch_response(payload: Any) -> List[Subresponse]:
    """
    Decode a batch endpoint body into Subresponses with normalized headers.

    Raises:
        InvalidBatchResponseShapeError: If ``responses`` is missing or malformed
    """
    if not isinstance(payload, dict):
        raise InvalidBatchResponseShapeError()

    try:
        decoded = _BatchResponsePayload.model_validate(payload)
    except ValidationError as e:
        raise InvalidBatchResponseShapeError(f"{e.error_count()} invalid field(s)") from None

    return [
        Subresponse(
            id=str(item.id),
            status=item.status,
            headers=normalize_headers(item.headers),
            body=item.body,
        )
        for item in decoded.responses
    ]
