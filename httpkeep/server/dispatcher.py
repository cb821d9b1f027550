"""Request dispatcher: admission, then first-match routing.

For every activation:
  1. The source allow-list is consulted; a denied client gets 403 with an
     empty body before any controller is looked at.
  2. Controllers are scanned in registration order; the first whose
     valid_path(path, method) is true handles the activation.
  3. No match: 404 with an empty body.
"""

from __future__ import annotations

from typing import Optional

from httpkeep.allowlist.loader import SourceAllowList
from httpkeep.allowlist.matcher import connection_ip
from httpkeep.controller.base import Controller, RequestContext
from httpkeep.models.response import Outcome
from httpkeep.utils.logger import get_logger

logger = get_logger(__name__)

HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404


class Dispatcher:
    """Routes activations to registered controllers.

    The controller list is appended to during setup only; connection handling
    reads it without locking.
    """

    def __init__(self, allowlist: SourceAllowList) -> None:
        self.allowlist = allowlist
        self._controllers: list[Controller] = []

    @property
    def controllers(self) -> tuple[Controller, ...]:
        return tuple(self._controllers)

    def add_controller(self, controller: Controller) -> None:
        self._controllers.append(controller)

    def match(self, path: str, method: str) -> Optional[Controller]:
        """First registered controller accepting ``(path, method)``, or None."""
        for controller in self._controllers:
            if controller is not None and controller.valid_path(path, method):
                return controller
        return None

    async def dispatch(self, ctx: RequestContext) -> Outcome:
        address = connection_ip(ctx.client)
        if not self.allowlist.is_allowed(address):
            logger.info(
                "Source address denied",
                client_host=address or None,
                method=ctx.method,
                path=ctx.path,
            )
            ctx.queue_response(HTTP_FORBIDDEN)
            return Outcome.CONTINUE

        controller = self.match(ctx.path, ctx.method)
        if controller is None:
            logger.debug("No controller matched", method=ctx.method, path=ctx.path)
            ctx.queue_response(HTTP_NOT_FOUND)
            return Outcome.CONTINUE

        return await controller.handle_request(ctx)
