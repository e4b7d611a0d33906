"""
Core batch client components.

This module contains the request/response models, the batch result and the
dispatcher that drives each chunk through its retry state machine.
"""

from batchclient.core.request import BatchRequest, Subresponse
from batchclient.core.result import BatchMode, BatchResult, ErrorStage, PartialError
from batchclient.core.client import BatchClient

__all__ = [
    "BatchRequest",
    "Subresponse",
    "BatchMode",
    "BatchResult",
    "ErrorStage",
    "PartialError",
    "BatchClient",
]
