"""httpkeep models package.

Defines the data contracts exchanged between controllers and the transport bridge:

  - response.py: ResponseParams, QueuedResponse, Outcome, TerminationReason, ABORT_STATUS
"""
from httpkeep.models.response import (
    ABORT_STATUS,
    Outcome,
    QueuedResponse,
    ResponseParams,
    TerminationReason,
)

__all__ = [
    "ABORT_STATUS",
    "Outcome",
    "QueuedResponse",
    "ResponseParams",
    "TerminationReason",
]
