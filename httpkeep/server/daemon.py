"""Daemon lifecycle manager: one listening socket + one engine, kept alive.

start_daemon() sequence (per attempt, at most DaemonPolicy.bind_attempts):

  1. create a fresh socket            ─┐
  2. bind to a named interface (opt.)  │ any OSError: close the partial socket,
  3. bind the resolved address         │ back off, retry with a new socket
  4. listen(SOMAXCONN)                ─┘
  5. start the engine on the socket (TLS when a certificate is configured);
     EngineStartError: close the socket, back off, next attempt

Failed sockets are never reused. Only the supervising control thread calls
start_daemon()/stop_daemon(); request handling never touches the socket.
"""

from __future__ import annotations

import socket
import time
from typing import Callable, Optional

from starlette.types import ASGIApp

from httpkeep.config import ServerOptions, bind_target
from httpkeep.constants import LISTEN_BACKLOG
from httpkeep.server.engine import Engine, EngineFactory, EngineStartError, UvicornEngine
from httpkeep.utils.health import DaemonHealthTracker
from httpkeep.utils.logger import get_logger, log_duration

logger = get_logger(__name__)

SocketFactory = Callable[[socket.AddressFamily, socket.SocketKind], socket.socket]

# Linux value of SO_BINDTODEVICE; the socket module only exposes it on some builds.
_SO_BINDTODEVICE: Optional[int] = getattr(socket, "SO_BINDTODEVICE", 25 if hasattr(socket, "AF_PACKET") else None)


class DaemonManager:
    """Owns the listening socket and the engine serving it.

    Args:
        app:            ASGI application handed to every engine (the transport bridge).
        socket_factory: Creates sockets; ``socket.socket`` by default.
        engine_factory: Builds an engine for a listening socket.
        sleep:          Blocking sleep used for the retry backoff.
        health:         Tracker receiving attempt/failure counters.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        socket_factory: SocketFactory = socket.socket,
        engine_factory: EngineFactory = UvicornEngine,
        sleep: Callable[[float], None] = time.sleep,
        health: Optional[DaemonHealthTracker] = None,
    ) -> None:
        self.app = app
        self._socket_factory = socket_factory
        self._engine_factory = engine_factory
        self._sleep = sleep
        self.health = health or DaemonHealthTracker()
        self._sock: Optional[socket.socket] = None
        self._engine: Optional[Engine] = None

    @property
    def listening_socket(self) -> Optional[socket.socket]:
        return self._sock

    @property
    def bound_address(self) -> Optional[tuple]:
        """Address the listening socket is bound to (resolves port 0), or None."""
        sock = self._sock
        if sock is None:
            return None
        try:
            return sock.getsockname()
        except OSError:
            return None

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start_daemon(self, options: ServerOptions) -> bool:
        """Stop any running daemon, then bind, listen and start the engine.

        Returns:
            True once listening; False when every attempt failed.

        Raises:
            ValueError: If options.bind_address is not an IP literal.
        """
        self.stop_daemon()

        family, host = bind_target(options)
        policy = options.daemon

        with log_duration("daemon start", logger, warn_after_ms=policy.retry_backoff * 1000):
            for attempt in range(1, policy.bind_attempts + 1):
                self.health.record_attempt()

                sock = self._listen(family, host, options, attempt)
                if sock is None:
                    self._backoff(attempt, policy.bind_attempts, policy.retry_backoff)
                    continue

                engine = self._engine_factory(
                    sock, self.app, options.certificate, policy.engine_start_timeout
                )
                try:
                    engine.start()
                except EngineStartError as exc:
                    self.health.record_engine_failure(exc)
                    logger.warning(
                        "Engine start failed",
                        attempt=attempt,
                        tls=options.tls_enabled,
                        error=str(exc),
                    )
                    _close_quietly(sock)
                    self._backoff(attempt, policy.bind_attempts, policy.retry_backoff)
                    continue

                self._sock = sock
                self._engine = engine
                self.health.record_listening()
                logger.info(
                    "Daemon listening",
                    host=host,
                    port=options.port,
                    interface=options.bind_interface or None,
                    tls=options.tls_enabled,
                    attempt=attempt,
                )
                return True

        logger.error(
            "Daemon not listening: start attempts exhausted",
            attempts=policy.bind_attempts,
            host=host,
            port=options.port,
        )
        return False

    def stop_daemon(self) -> None:
        engine, sock = self._engine, self._sock
        self._engine = None
        self._sock = None
        if engine is not None:
            engine.stop()
        if sock is not None:
            _close_quietly(sock)
        if engine is not None or sock is not None:
            self.health.record_stopped()
            logger.info("Daemon stopped")

    def is_daemon_alive(self) -> bool:
        """True while the listening descriptor is open and queryable and the engine runs."""
        sock, engine = self._sock, self._engine
        if sock is None or engine is None:
            return False
        if sock.fileno() == -1:
            return False
        try:
            sock.getsockname()
        except OSError:
            return False
        return engine.is_running()

    # ── Internals ─────────────────────────────────────────────────────────────

    def _listen(
        self,
        family: socket.AddressFamily,
        host: str,
        options: ServerOptions,
        attempt: int,
    ) -> Optional[socket.socket]:
        """One socket → interface → bind → listen pass. None on any failure."""
        stage = "socket"
        try:
            sock = self._socket_factory(family, socket.SOCK_STREAM)
        except OSError as exc:
            self._record_bind_failure(exc, stage, attempt)
            return None

        try:
            stage = "setsockopt"
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if options.bind_interface:
                stage = "interface"
                _bind_to_interface(sock, options.bind_interface)
            stage = "bind"
            sock.bind((host, options.port))
            stage = "listen"
            sock.listen(LISTEN_BACKLOG)
        except OSError as exc:
            self._record_bind_failure(exc, stage, attempt)
            _close_quietly(sock)
            return None
        return sock

    def _record_bind_failure(self, exc: OSError, stage: str, attempt: int) -> None:
        self.health.record_bind_failure(exc)
        logger.warning("Listening socket setup failed", stage=stage, attempt=attempt, error=str(exc))

    def _backoff(self, attempt: int, attempts: int, delay: float) -> None:
        if attempt < attempts:
            self._sleep(delay)


def _bind_to_interface(sock: socket.socket, interface: str) -> None:
    if _SO_BINDTODEVICE is None:
        raise OSError(f"binding to interface {interface!r} is not supported on this platform")
    sock.setsockopt(socket.SOL_SOCKET, _SO_BINDTODEVICE, interface.encode())


def _close_quietly(sock: socket.socket) -> None:
    try:
        sock.close()
    except OSError as exc:
        logger.debug("Socket close failed", error=str(exc))
