"""Controller contract, per-connection state and the activation context.

A transport delivers one logical request as several activations (headers
first, then body chunks, then idle re-invocations). Each activation is a
RequestContext; state that must survive between activations lives in the
connection's ConnectionState, created lazily by the owning controller and
released exactly once when the transport reports completion.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional, Union

from httpkeep.config import BodyWaitPolicy
from httpkeep.models.response import Outcome, QueuedResponse, TerminationReason


@dataclass(eq=False)
class ConnectionState:
    """Per-connection accumulator, owned by exactly one connection.

    response_data is None until the controller's response has been built;
    an empty bytes object is a valid, cached, empty body.
    """

    controller: "Controller"
    request_data: bytearray = field(default_factory=bytearray)
    response_sent: bool = False
    response_status: int = 200
    response_headers: list[tuple[str, str]] = field(default_factory=list)
    response_data: Optional[bytes] = None
    wait_iterations: int = 0
    released: bool = False

    @property
    def has_response(self) -> bool:
        return self.response_data is not None

    def release(self) -> None:
        """Destroy the state: drop buffers and mark it released.

        Raises:
            RuntimeError: If the state was already released.
        """
        if self.released:
            raise RuntimeError("connection state released twice")
        self.released = True
        self.request_data = bytearray()
        self.response_headers = []
        self.response_data = None


@dataclass(eq=False)
class RequestContext:
    """One activation of a connection, as seen by the dispatcher and controllers.

    upload_data carries the bytes delivered with this activation only (None when
    the activation brought no body data); body_complete is True once the
    transport has seen the end of the request body.
    """

    connection_id: str
    method: str
    path: str
    version: str = "1.1"
    headers: list[tuple[str, str]] = field(default_factory=list)
    client: Optional[tuple[str, int]] = None
    upload_data: Optional[bytes] = None
    body_complete: bool = False
    body_wait: BodyWaitPolicy = field(default_factory=BodyWaitPolicy)
    state: Optional[ConnectionState] = None
    response: Optional[QueuedResponse] = None
    abort_reason: Optional[TerminationReason] = None
    waited: bool = False
    waiter: Optional[Callable[[float], Awaitable[bool]]] = field(default=None, repr=False)

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of request header ``name`` (case-insensitive)."""
        wanted = name.lower()
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return default

    def queue_response(
        self,
        status_code: int,
        body: Union[bytes, str] = b"",
        headers: Iterable[tuple[str, str]] = (),
    ) -> bool:
        """Queue the response for this activation.

        Returns False (and changes nothing) if a response is already queued.
        """
        if self.response is not None:
            return False
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.response = QueuedResponse(
            status_code=status_code,
            headers=tuple(headers),
            body=bytes(body),
        )
        return True

    async def wait_for_data(self, timeout: float) -> bool:
        """Suspend until the transport has new input for this connection or ``timeout`` passes.

        Returns True if input arrived. Without a transport-provided waiter this is
        a plain sleep.
        """
        self.waited = True
        if self.waiter is None:
            await asyncio.sleep(timeout)
            return False
        return await self.waiter(timeout)


class Controller(ABC):
    """Base controller: decides which requests it serves and how it responds.

    Registered once at server startup and shared read-only across connections;
    all per-connection data belongs in the ConnectionState.
    """

    @abstractmethod
    def valid_path(self, path: str, method: str) -> bool:
        """Check if the given path and method are handled by this controller."""

    @abstractmethod
    async def handle_request(self, ctx: RequestContext) -> Outcome:
        """Handle one activation. Queue a response on ``ctx`` to finish the request."""

    def handle_complete(self, state: ConnectionState, reason: TerminationReason) -> None:
        """Called once when the transport is done with the connection. Default: destroy state."""
        state.release()

    def create_state(self) -> ConnectionState:
        return ConnectionState(self)
