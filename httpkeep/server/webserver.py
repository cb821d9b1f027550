"""WebServer: the embeddable entry point.

    server = WebServer(8080)
    server.add_controller(MyController())
    server.start()          # blocks until should_terminate() or stop()

start() brings the daemon up and then supervises it from the calling thread:
every supervise_interval it applies pending option updates, restarts the
daemon if the listening socket or engine died, and polls the termination
predicate. The loop has no time limit of its own.
"""

from __future__ import annotations

import dataclasses
import socket
import threading
import time
from typing import Any, Callable, Optional

from httpkeep.allowlist.loader import SourceAllowList
from httpkeep.config import ServerOptions, bind_target
from httpkeep.controller.base import Controller
from httpkeep.server.bridge import TransportBridge
from httpkeep.server.daemon import DaemonManager, SocketFactory
from httpkeep.server.dispatcher import Dispatcher
from httpkeep.server.engine import EngineFactory, UvicornEngine
from httpkeep.server.registry import ConnectionRegistry
from httpkeep.utils.health import DaemonHealthTracker
from httpkeep.utils.logger import get_logger

logger = get_logger(__name__)

# Option fields whose change requires a new socket/engine.
_RESTART_FIELDS: tuple[str, ...] = (
    "port",
    "bind_loopback",
    "bind_address",
    "bind_interface",
    "certificate",
)


class WebServer:
    """Controller registry, admission, daemon lifecycle and supervision.

    Args:
        port:    Listening port; overrides ``options.port`` when given.
        options: Server options (defaults when None).
        socket_factory, engine_factory, sleep:
                 Forwarded to the DaemonManager (replaced in tests).
    """

    def __init__(
        self,
        port: Optional[int] = None,
        options: Optional[ServerOptions] = None,
        *,
        socket_factory: SocketFactory = socket.socket,
        engine_factory: EngineFactory = UvicornEngine,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._options = options if options is not None else ServerOptions.defaults()
        if port is not None:
            self._options = dataclasses.replace(self._options, port=port)

        self.registry = ConnectionRegistry()
        self.allowlist = SourceAllowList(self._options.allowed_sources)
        self.dispatcher = Dispatcher(self.allowlist)
        self.app = TransportBridge(self.dispatcher, self.registry, lambda: self._options.body_wait)
        self.health_tracker = DaemonHealthTracker()
        self.daemon = DaemonManager(
            self.app,
            socket_factory=socket_factory,
            engine_factory=engine_factory,
            sleep=sleep,
            health=self.health_tracker,
        )

        self._pending: Optional[ServerOptions] = None
        self._pending_lock = threading.Lock()
        self._stop_event = threading.Event()

    # ── Setup ─────────────────────────────────────────────────────────────────

    @property
    def options(self) -> ServerOptions:
        return self._options

    def add_controller(self, controller: Controller) -> None:
        """Register a controller. Registration order is match priority."""
        self.dispatcher.add_controller(controller)

    def update_options(self, **changes: Any) -> None:
        """Schedule a reconfiguration, applied by the supervising loop on its next tick.

        Changing the port, bind settings or TLS certificate restarts the daemon;
        allow-list changes apply without a restart.

        Raises:
            TypeError:  On an unknown option name.
            ValueError: If the new bind address is not an IP literal.
        """
        with self._pending_lock:
            base = self._pending or self._options
            updated = dataclasses.replace(base, **changes)
            bind_target(updated)
            self._pending = updated
        logger.info("Options update scheduled", fields=sorted(changes))

    # ── Daemon control ────────────────────────────────────────────────────────

    def start_daemon(self) -> bool:
        return self.daemon.start_daemon(self._options)

    def stop_daemon(self) -> None:
        self.daemon.stop_daemon()

    def is_daemon_alive(self) -> bool:
        return self.daemon.is_daemon_alive()

    def stop(self) -> None:
        """Ask the supervising loop to end; safe to call from any thread."""
        self._stop_event.set()

    def start(self) -> bool:
        """Start the daemon and supervise it until terminated.

        Returns:
            True after a requested termination; False if the optional
            max_restart_cycles hard stop gave up on a daemon that would not start.

        Raises:
            ValueError: If the bind address in the options is not an IP literal.
        """
        bind_target(self._options)
        self._stop_event.clear()
        watcher_stop = self._start_allowlist_watcher()

        failed_cycles = 0 if self.start_daemon() else 1
        gave_up = False
        try:
            while not self._stop_event.wait(self._options.daemon.supervise_interval):
                if self._apply_pending():
                    failed_cycles = 0 if self.is_daemon_alive() else failed_cycles + 1
                elif not self.is_daemon_alive():
                    logger.warning("Daemon not alive: restarting", port=self._options.port)
                    self.health_tracker.record_restart()
                    failed_cycles = 0 if self.start_daemon() else failed_cycles + 1

                limit = self._options.daemon.max_restart_cycles
                if limit is not None and failed_cycles >= limit:
                    logger.error(
                        "Giving up on daemon: restart cycles exhausted",
                        failed_cycles=failed_cycles,
                        limit=limit,
                    )
                    gave_up = True
                    break

                if self._should_terminate():
                    logger.info("Termination requested")
                    break
        finally:
            self.stop_daemon()
            if watcher_stop is not None:
                watcher_stop.set()
        return not gave_up

    # ── Introspection ─────────────────────────────────────────────────────────

    def health(self) -> dict[str, Any]:
        snapshot = self.health_tracker.snapshot().as_dict()
        snapshot["active_connections"] = len(self.registry)
        snapshot["port"] = self._options.port
        snapshot["tls"] = self._options.tls_enabled
        return snapshot

    # ── Internals ─────────────────────────────────────────────────────────────

    def _should_terminate(self) -> bool:
        predicate = self._options.should_terminate
        return predicate is not None and bool(predicate())

    def _apply_pending(self) -> bool:
        """Swap in pending options. True if the daemon was restarted for them."""
        with self._pending_lock:
            pending, self._pending = self._pending, None
        if pending is None:
            return False

        previous = self._options
        self._options = pending
        if pending.allowed_sources != previous.allowed_sources:
            self.allowlist.replace(pending.allowed_sources)

        changed = [name for name in _RESTART_FIELDS if getattr(pending, name) != getattr(previous, name)]
        if not changed:
            logger.info("Options updated without restart")
            return False

        logger.info("Restarting daemon for new options", changed=changed)
        self.health_tracker.record_restart()
        self.start_daemon()
        return True

    def _start_allowlist_watcher(self) -> Optional[threading.Event]:
        path = self._options.allowlist_path
        if not path:
            return None
        self.allowlist.load(path)
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self.allowlist.watch,
            args=(path, stop_event),
            name="httpkeep-allowlist-watcher",
            daemon=True,
        )
        thread.start()
        return stop_event
