"""DynamicController: user-defined responses built once per connection.

Connection lifecycle as seen across activations:

    NEW ──► AWAITING_BODY ──► BUILDING ──► SENT
              │   (body-bearing method, body not complete yet)
              └─► ABORT (more than `ceiling` empty activations: timeout)

The response is built by create_response() exactly once per connection and
cached in the ConnectionState. Any later activation re-queues the cached
response unchanged, so a transport that calls back after the response is
logically complete always sees the same status, headers and body.
"""

from __future__ import annotations

import inspect
from abc import abstractmethod
from typing import Awaitable, Optional, Union

from httpkeep.config import BodyWaitPolicy
from httpkeep.controller.base import ConnectionState, Controller, RequestContext
from httpkeep.models.response import Outcome, ResponseParams, TerminationReason
from httpkeep.utils.logger import get_logger

logger = get_logger(__name__)

ResponseBody = Union[bytes, str]
BuildResult = tuple[ResponseParams, ResponseBody]


class DynamicController(Controller):
    """Controller for user-defined pages that may need several activations.

    Subclasses implement valid_path() and create_response(). create_response()
    may be a plain function or a coroutine function.

    Args:
        body_wait: Wait-for-body policy for this controller. None uses the
                   server-wide policy delivered on each RequestContext.
    """

    def __init__(self, body_wait: Optional[BodyWaitPolicy] = None) -> None:
        self.body_wait = body_wait

    @abstractmethod
    def valid_path(self, path: str, method: str) -> bool:
        ...

    @abstractmethod
    def create_response(
        self, ctx: RequestContext, state: ConnectionState
    ) -> Union[BuildResult, Awaitable[BuildResult]]:
        """User defined HTTP response.

        ``state.request_data`` holds the complete request body for body-bearing
        methods. Return ``(ResponseParams, body)``; a status of ABORT_STATUS drops
        the connection without responding.
        """

    async def handle_request(self, ctx: RequestContext) -> Outcome:
        # state is released by the transport's completion handling
        if ctx.state is None:
            ctx.state = self.create_state()
        state = ctx.state
        policy = self.body_wait or ctx.body_wait
        ctx.body_wait = policy

        if not state.has_response and ctx.method.upper() in policy.methods:
            if ctx.upload_data:
                state.request_data.extend(ctx.upload_data)

            if not ctx.body_complete:
                if ctx.upload_data:
                    return Outcome.CONTINUE

                state.wait_iterations += 1
                if state.wait_iterations > policy.ceiling:
                    logger.warning(
                        "Request body did not arrive: aborting connection",
                        method=ctx.method,
                        path=ctx.path,
                        wait_iterations=state.wait_iterations,
                        ceiling=policy.ceiling,
                    )
                    ctx.abort_reason = TerminationReason.TIMEOUT_REACHED
                    return Outcome.ABORT

                if policy.cooperative_yield:
                    await ctx.wait_for_data(policy.interval)
                return Outcome.CONTINUE

        if not state.has_response:
            result = self.create_response(ctx, state)
            if inspect.isawaitable(result):
                result = await result
            params, body = result

            if params.is_abort:
                logger.info("Controller aborted connection", method=ctx.method, path=ctx.path)
                ctx.abort_reason = TerminationReason.WITH_ERROR
                return Outcome.ABORT

            if isinstance(body, str):
                body = body.encode("utf-8")
            state.response_status = params.status_code
            state.response_headers = list(params.headers)
            state.response_data = bytes(body)
            if params.message:
                logger.debug(
                    "Response built",
                    status_code=params.status_code,
                    message=params.message,
                    size=len(state.response_data),
                )

        if ctx.queue_response(state.response_status, state.response_data, state.response_headers):
            state.response_sent = True
        return Outcome.CONTINUE
