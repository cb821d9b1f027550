"""Response and outcome contracts shared by controllers and the transport bridge.

  - ResponseParams    : what a controller's build step returns next to the body
  - QueuedResponse    : the response handed over to the transport for framing
  - Outcome           : continuation signal returned from every activation
  - TerminationReason : why a connection ended, passed to completion handling
  - ABORT_STATUS      : reserved status code: abort, send nothing
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# Reserved status value. A controller returning it ends the connection without
# any response; it never reaches the wire.
ABORT_STATUS: int = 0


class Outcome(str, Enum):
    """Continuation signal of a single activation."""

    CONTINUE = "continue"
    ABORT = "abort"


class TerminationReason(str, Enum):
    """Why the transport finished with a connection."""

    COMPLETED_OK = "completed_ok"
    WITH_ERROR = "with_error"
    TIMEOUT_REACHED = "timeout_reached"
    DAEMON_SHUTDOWN = "daemon_shutdown"
    CLIENT_ABORT = "client_abort"


@dataclass
class ResponseParams:
    """Describes one HTTP response; copied into the connection state when cached.

    status_code: HTTP status, or ABORT_STATUS to drop the connection.
    message:     Optional reason text. Informational only (logged, not framed).
    headers:     Ordered name/value pairs; duplicate names are preserved.
    """

    status_code: int = 200
    message: Optional[str] = None
    headers: list[tuple[str, str]] = field(default_factory=list)

    @property
    def is_abort(self) -> bool:
        return self.status_code == ABORT_STATUS


@dataclass(frozen=True)
class QueuedResponse:
    """A response queued on an activation's context for the transport to send."""

    status_code: int
    headers: tuple[tuple[str, str], ...] = ()
    body: bytes = b""
