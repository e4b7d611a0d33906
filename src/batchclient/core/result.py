"""
Batch result model.

Holds the ordered responses of one ``batch()`` call and, in partial mode,
the ledger of what went wrong.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from batchclient.core.request import Subresponse


class BatchMode(str, Enum):
    """Failure policy for one batch call."""
    STRICT = "strict"             # First unrecoverable condition raises
    PARTIAL = "partial"           # Degrade into synthetic responses + error ledger


class ErrorStage(str, Enum):
    """Where a partial-mode failure happened."""
    SUBREQUEST = "subrequest"     # One subrequest exhausted retries or was off-origin
    PAGINATION = "pagination"     # Following a next link failed
    AUTH = "auth"                 # Token acquisition was offline
    BATCH = "batch"               # The batch call itself was offline


@dataclass
class PartialError:
    """
    One ledger entry reported in partial mode.

    Only ``stage``, ``type`` and ``message`` are always set; the rest depend
    on the stage.
    """

    stage: ErrorStage
    type: str
    message: str
    id: Optional[str] = None
    status: Optional[Any] = None
    code: Optional[str] = None
    errno: Optional[int] = None
    syscall: Optional[str] = None
    hostname: Optional[str] = None
    url: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.stage, str):
            self.stage = ErrorStage(self.stage)

    def to_dict(self) -> dict:
        """Convert to dictionary, omitting unset fields."""
        data = {k: v for k, v in asdict(self).items() if v is not None}
        data["stage"] = self.stage.value
        return data


@dataclass
class BatchResult:
    """
    Result of ``BatchClient.batch``.

    Attributes:
        responses: Subresponse per id (every submitted id is present)
        response_list: Subresponses in first-occurrence submission order
        partial: Whether anything degraded; None in strict mode
        errors: Partial-mode ledger; None in strict mode
    """

    responses: Dict[str, Subresponse] = field(default_factory=dict)
    response_list: List[Subresponse] = field(default_factory=list)
    partial: Optional[bool] = None
    errors: Optional[List[PartialError]] = None

    @classmethod
    def empty(cls, mode: BatchMode) -> "BatchResult":
        if mode == BatchMode.PARTIAL:
            return cls(partial=False, errors=[])
        return cls()

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        data: Dict[str, Any] = {
            "responses": {key: r.to_dict() for key, r in self.responses.items()},
            "response_list": [r.to_dict() for r in self.response_list],
        }
        if self.partial is not None:
            data["partial"] = self.partial
        if self.errors is not None:
            data["errors"] = [e.to_dict() for e in self.errors]
        return data
