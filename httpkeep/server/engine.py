"""Transport engine: uvicorn serving the transport bridge on a pre-bound socket.

The daemon lifecycle manager owns the listening socket; the engine only
accepts on it. Two flavours, selected by whether TLS material is configured:

  - plaintext: uvicorn.Config without SSL
  - TLS:       uvicorn.Config with ssl_keyfile/ssl_certfile pointing at
               private temporary copies of the in-memory PEMs; the files
               exist only while Config.load() builds the SSL context.

Hardened uvicorn settings:
  proxy_headers=False  the allow-list must see the real peer, never X-Forwarded-For
  lifespan="off"       the bridge has no startup/shutdown work
  log_config=None      logging stays under the embedding application's control
"""

from __future__ import annotations

import os
import socket
import tempfile
import threading
import time
from typing import Callable, Optional, Protocol

import uvicorn
from starlette.types import ASGIApp

from httpkeep.config import CertificatePair
from httpkeep.constants import ENGINE_START_TIMEOUT_S, ENGINE_STOP_TIMEOUT_S
from httpkeep.utils.logger import get_logger

logger = get_logger(__name__)

# Poll period while waiting for uvicorn to report it is serving.
_STARTUP_POLL_S: float = 0.01

# Uvicorn keep-alive timeout; short to limit idle connections per worker.
UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


class EngineStartError(RuntimeError):
    """The engine could not start serving on the given socket."""


class Engine(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...

    def is_running(self) -> bool: ...


EngineFactory = Callable[[socket.socket, ASGIApp, Optional[CertificatePair], float], Engine]


class UvicornEngine:
    """Runs ``uvicorn.Server`` for one listening socket on a background thread.

    Args:
        sock:          Bound, listening socket owned by the daemon manager.
        app:           ASGI application (the transport bridge).
        certificate:   In-memory TLS material, or None for plaintext.
        start_timeout: Seconds to wait for the server to report it started.
    """

    def __init__(
        self,
        sock: socket.socket,
        app: ASGIApp,
        certificate: Optional[CertificatePair] = None,
        start_timeout: float = ENGINE_START_TIMEOUT_S,
    ) -> None:
        self.sock = sock
        self.app = app
        self.certificate = certificate
        self.start_timeout = start_timeout
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Load the config (builds the SSL context) and start serving.

        Raises:
            EngineStartError: Malformed TLS material, or the server did not report
                              started within ``start_timeout``.
        """
        try:
            config = self._load_config()
        except (OSError, ValueError) as exc:
            raise EngineStartError(f"engine configuration failed: {exc}") from exc

        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(target=self._run, name="httpkeep-engine", daemon=True)
        self._thread.start()

        deadline = time.monotonic() + self.start_timeout
        while not self._server.started:
            if not self._thread.is_alive():
                raise EngineStartError("engine exited during startup")
            if time.monotonic() > deadline:
                self.stop()
                raise EngineStartError(f"engine did not start within {self.start_timeout}s")
            time.sleep(_STARTUP_POLL_S)

    def stop(self) -> None:
        server, thread = self._server, self._thread
        if server is None or thread is None:
            return
        server.should_exit = True
        thread.join(timeout=ENGINE_STOP_TIMEOUT_S)
        if thread.is_alive():
            logger.warning("Engine did not stop gracefully: forcing exit")
            server.force_exit = True
            thread.join(timeout=ENGINE_STOP_TIMEOUT_S)
        self._server = None
        self._thread = None

    def is_running(self) -> bool:
        server, thread = self._server, self._thread
        if server is None or thread is None:
            return False
        return thread.is_alive() and server.started and not server.should_exit

    # ── Internals ─────────────────────────────────────────────────────────────

    def _run(self) -> None:
        assert self._server is not None
        try:
            self._server.run(sockets=[self.sock])
        except Exception:  # noqa: BLE001
            # the thread dying is what the supervising loop detects and restarts
            logger.exception("Engine thread crashed")

    def _load_config(self) -> uvicorn.Config:
        common = dict(
            app=self.app,
            lifespan="off",
            log_config=None,
            proxy_headers=False,
            timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
        )
        if self.certificate is None:
            config = uvicorn.Config(**common)
            config.load()
            return config

        with tempfile.TemporaryDirectory(prefix="httpkeep-tls-") as tmp_dir:
            keyfile = _write_private(os.path.join(tmp_dir, "key.pem"), self.certificate.key)
            certfile = _write_private(os.path.join(tmp_dir, "cert.pem"), self.certificate.cert)
            config = uvicorn.Config(ssl_keyfile=keyfile, ssl_certfile=certfile, **common)
            config.load()
        return config


def _write_private(path: str, data: bytes) -> str:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(data)
    return path
