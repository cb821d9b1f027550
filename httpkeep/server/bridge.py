"""Transport bridge: turns one ASGI HTTP exchange into a sequence of activations.

The engine (uvicorn) hands every request to TransportBridge as an ASGI call.
The bridge replays it to the dispatcher the way a callback-driven transport
would:

  activation 1     headers only (upload_data=None, body_complete=False)
  activation 2..n  one per received body chunk; the final chunk sets body_complete
  idle activation  no new data, after a controller suspended in wait_for_data()
                   or after one body-wait interval passed with nothing received

The first activation that queues a response ends the exchange: the response
is framed by starlette and sent. Outcome.ABORT ends it without that response.
Whatever the ending, the connection's state is released from the registry and
handed to its controller's handle_complete() exactly once.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import structlog
from starlette.responses import Response
from starlette.types import Message, Receive, Scope, Send

from httpkeep.config import BodyWaitPolicy
from httpkeep.controller.base import RequestContext
from httpkeep.models.response import Outcome, QueuedResponse, TerminationReason
from httpkeep.server.dispatcher import Dispatcher
from httpkeep.server.registry import ConnectionRegistry
from httpkeep.utils.logger import get_logger
from httpkeep.utils.ulid import generate_ulid

logger = get_logger(__name__)

# Framing headers owned by the transport; controller values are dropped.
_TRANSPORT_HEADERS: frozenset[str] = frozenset({"content-length", "transfer-encoding"})


class ConnectionAborted(Exception):
    """Raised to make the engine drop a connection without the controller's response."""

    def __init__(self, connection_id: str, reason: TerminationReason) -> None:
        super().__init__(f"connection {connection_id} aborted: {reason.value}")
        self.connection_id = connection_id
        self.reason = reason


class _Inbox:
    """Receive-side buffer for one exchange, filled by a pump task."""

    def __init__(self, receive: Receive) -> None:
        self._receive = receive
        self._messages: asyncio.Queue[Message] = asyncio.Queue()
        self._arrived = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._pump())

    def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _pump(self) -> None:
        while True:
            message = await self._receive()
            self._messages.put_nowait(message)
            self._arrived.set()
            if message["type"] == "http.disconnect":
                return

    def pending(self) -> bool:
        return not self._messages.empty()

    def take(self) -> Message:
        return self._messages.get_nowait()

    async def wait(self, timeout: float) -> bool:
        """Wait up to ``timeout`` for an unread message. True if one is available."""
        if self.pending():
            return True
        self._arrived.clear()
        try:
            await asyncio.wait_for(self._arrived.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


class TransportBridge:
    """ASGI application registered with the engine.

    Args:
        dispatcher: Admission + routing for each activation.
        registry:   Connection id -> ConnectionState map, released on completion.
        body_wait:  Returns the current server-wide BodyWaitPolicy.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        registry: ConnectionRegistry,
        body_wait: Callable[[], BodyWaitPolicy],
    ) -> None:
        self.dispatcher = dispatcher
        self.registry = registry
        self._body_wait = body_wait

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self._lifespan(receive, send)
            return
        if scope["type"] != "http":
            logger.debug("Unsupported scope type: not served", scope_type=scope["type"])
            return

        connection_id = generate_ulid()
        structlog.contextvars.bind_contextvars(connection_id=connection_id)
        inbox = _Inbox(receive)
        inbox.start()
        reason = TerminationReason.WITH_ERROR
        try:
            reason = await self._serve(scope, receive, send, connection_id, inbox)
        except ConnectionAborted as exc:
            reason = exc.reason
            raise
        except asyncio.CancelledError:
            reason = TerminationReason.DAEMON_SHUTDOWN
            raise
        except Exception as exc:
            reason = TerminationReason.WITH_ERROR
            logger.error(
                "Activation failed",
                method=scope.get("method"),
                path=scope.get("path"),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            inbox.close()
            self._complete(connection_id, reason)
            structlog.contextvars.unbind_contextvars("connection_id")

    # ── Activation loop ───────────────────────────────────────────────────────

    async def _serve(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        connection_id: str,
        inbox: _Inbox,
    ) -> TerminationReason:
        method: str = scope["method"]
        path: str = scope["path"]
        version: str = scope.get("http_version", "1.1")
        headers = [
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in scope.get("headers", [])
        ]
        client = scope.get("client")

        upload: Optional[bytes] = None
        body_complete = False
        activations = 0

        while True:
            activations += 1
            ctx = RequestContext(
                connection_id=connection_id,
                method=method,
                path=path,
                version=version,
                headers=headers,
                client=tuple(client) if client else None,
                upload_data=upload,
                body_complete=body_complete,
                body_wait=self._body_wait(),
                state=self.registry.get(connection_id),
                waiter=inbox.wait,
            )
            try:
                outcome = await self.dispatcher.dispatch(ctx)
            finally:
                # a state created by a failing activation must still reach completion
                if ctx.state is not None and not ctx.state.released:
                    self.registry.attach(connection_id, ctx.state)

            if outcome is Outcome.ABORT:
                raise ConnectionAborted(
                    connection_id, ctx.abort_reason or TerminationReason.WITH_ERROR
                )

            if ctx.response is not None:
                await self._emit(ctx.response, scope, receive, send)
                logger.debug(
                    "Response sent",
                    method=method,
                    path=path,
                    status_code=ctx.response.status_code,
                    activations=activations,
                )
                return TerminationReason.COMPLETED_OK

            if inbox.pending():
                message = inbox.take()
            elif ctx.waited:
                upload = None
                continue
            elif body_complete:
                logger.error(
                    "Controller returned without a response after the request completed",
                    method=method,
                    path=path,
                )
                raise ConnectionAborted(connection_id, TerminationReason.WITH_ERROR)
            elif await inbox.wait(ctx.body_wait.interval):
                message = inbox.take()
            else:
                # nothing arrived within one interval: re-activate with no new data
                upload = None
                continue

            if message["type"] == "http.disconnect":
                logger.info("Client disconnected before a response", method=method, path=path)
                return TerminationReason.CLIENT_ABORT

            upload = message.get("body", b"") or None
            body_complete = not message.get("more_body", False)

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _emit(self, queued: QueuedResponse, scope: Scope, receive: Receive, send: Send) -> None:
        """Frame the queued response; the transport now owns its own copy."""
        response = Response(content=queued.body, status_code=queued.status_code)
        for name, value in queued.headers:
            if name.lower() in _TRANSPORT_HEADERS:
                continue
            response.headers.append(name, value)
        await response(scope, receive, send)

    def _complete(self, connection_id: str, reason: TerminationReason) -> None:
        state = self.registry.release(connection_id)
        logger.debug("Connection finished", reason=reason.value, had_state=state is not None)
        if state is None:
            return
        try:
            state.controller.handle_complete(state, reason)
        except Exception as exc:  # noqa: BLE001
            # completion runs in a finally block; raising here would mask the request's own error
            logger.error(
                "Completion handler failed",
                controller=type(state.controller).__name__,
                reason=reason.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def _lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message: Any = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return
