"""Daemon health tracking for httpkeep.

Provides:
  - DaemonHealth       : snapshot dataclass returned by WebServer.health()
  - DaemonHealthTracker: counters updated by the daemon lifecycle manager

The tracker is written by the supervising control thread and read from any
thread (e.g. an application controller that serves a status page), so all
access goes through a lock.
"""

from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Optional

# ─── Data Types ───────────────────────────────────────────────────────────────


@dataclass
class DaemonHealth:
    """Snapshot of the daemon lifecycle counters.

    Attributes:
        listening:        True while a listening socket and engine are up.
        start_attempts:   Socket/engine start attempts made since creation.
        bind_failures:    Attempts that failed at socket, interface, bind or listen.
        engine_failures:  Attempts whose engine failed to start.
        restarts:         Daemon restarts triggered by liveness loss or reconfiguration.
        last_error:       Text of the most recent failure, if any.
        listening_since:  Epoch seconds when the current daemon started listening.
    """

    listening: bool
    start_attempts: int
    bind_failures: int
    engine_failures: int
    restarts: int
    last_error: Optional[str]
    listening_since: Optional[float]

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


# ─── DaemonHealthTracker ──────────────────────────────────────────────────────


class DaemonHealthTracker:
    """Thread-safe counters describing the daemon's bind/start history.

    Usage::

        tracker = DaemonHealthTracker()
        tracker.record_attempt()
        tracker.record_bind_failure(exc)
        tracker.record_listening()
        snapshot = tracker.snapshot()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listening = False
        self._start_attempts = 0
        self._bind_failures = 0
        self._engine_failures = 0
        self._restarts = 0
        self._last_error: Optional[str] = None
        self._listening_since: Optional[float] = None

    # ── Mutation ──────────────────────────────────────────────────────────────

    def record_attempt(self) -> None:
        with self._lock:
            self._start_attempts += 1

    def record_bind_failure(self, error: BaseException) -> None:
        with self._lock:
            self._bind_failures += 1
            self._last_error = f"{type(error).__name__}: {error}"

    def record_engine_failure(self, error: BaseException) -> None:
        with self._lock:
            self._engine_failures += 1
            self._last_error = f"{type(error).__name__}: {error}"

    def record_listening(self) -> None:
        with self._lock:
            self._listening = True
            self._listening_since = time.time()

    def record_stopped(self) -> None:
        with self._lock:
            self._listening = False
            self._listening_since = None

    def record_restart(self) -> None:
        with self._lock:
            self._restarts += 1

    # ── Read ──────────────────────────────────────────────────────────────────

    def snapshot(self) -> DaemonHealth:
        """Return a consistent copy of all counters."""
        with self._lock:
            return DaemonHealth(
                listening=self._listening,
                start_attempts=self._start_attempts,
                bind_failures=self._bind_failures,
                engine_failures=self._engine_failures,
                restarts=self._restarts,
                last_error=self._last_error,
                listening_since=self._listening_since,
            )
