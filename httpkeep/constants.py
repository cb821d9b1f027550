"""Shared constants for httpkeep.

All tuning defaults used across modules are defined here and copied into
ServerOptions at construction time; nothing reads them as process-wide state.
"""

import socket

# ─── Body wait sub-protocol (DynamicController) ──────────────────────────────

# Suspension between activations while a body-bearing request has no body yet.
BODY_WAIT_INTERVAL_S: float = 0.010  # 10 ms

# Empty activations tolerated before the connection is aborted as a timeout.
# 300 × 10 ms ≈ 3 seconds.
BODY_WAIT_CEILING: int = 300

# Methods that carry a request body the controller must wait for.
BODY_METHODS: tuple[str, ...] = ("POST", "PUT", "PATCH")

# ─── Daemon lifecycle ────────────────────────────────────────────────────────

# Socket + engine start attempts per start_daemon() call.
BIND_ATTEMPTS: int = 12

# Fixed backoff after a failed socket/bind/listen/engine attempt.
BIND_RETRY_BACKOFF_S: float = 5.0

# Period of the supervising loop's liveness probe and termination poll.
SUPERVISE_INTERVAL_S: float = 1.0

# How long the engine may take to report it is serving on the socket.
ENGINE_START_TIMEOUT_S: float = 5.0

# Grace period for the engine thread to exit on stop.
ENGINE_STOP_TIMEOUT_S: float = 10.0

# Listen backlog handed to listen(); the largest the OS accepts.
LISTEN_BACKLOG: int = socket.SOMAXCONN

# ─── Binding ─────────────────────────────────────────────────────────────────

DEFAULT_PORT: int = 8080

LOOPBACK_V4: str = "127.0.0.1"
LOOPBACK_V6: str = "::1"
WILDCARD_V4: str = "0.0.0.0"

# ─── Admission ───────────────────────────────────────────────────────────────

# Allow-list tokens admitting every source address (exact, case-sensitive).
ALLOW_ALL_TOKENS: frozenset[str] = frozenset({"*", "all"})
