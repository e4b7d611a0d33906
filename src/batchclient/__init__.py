"""
Resilient Batch Client

Executes batched HTTP calls against an API with a fixed subrequest limit per
call. Retries transient failures at both the whole-call and the subrequest
level, follows pagination cursors, and degrades into partial results instead
of failing the whole operation.
"""

__version__ = "0.1.0"

from batchclient.core.client import BatchClient
from batchclient.core.request import BatchRequest, Subresponse
from batchclient.core.result import BatchMode, BatchResult, ErrorStage, PartialError
from batchclient.log_config import setup_logging, setup_logging_from_config

__all__ = [
    "BatchClient",
    "BatchRequest",
    "Subresponse",
    "BatchMode",
    "BatchResult",
    "ErrorStage",
    "PartialError",
    "setup_logging",
    "setup_logging_from_config",
]
