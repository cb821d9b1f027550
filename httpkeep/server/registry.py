"""Connection registry: connection_id -> ConnectionState.

Owned by the WebServer and shared with the transport bridge. The bridge
attaches a state after the activation that created it and releases it exactly
once on completion, so a state can never outlive or leak across connections.
"""

from __future__ import annotations

import threading
from typing import Optional

from httpkeep.controller.base import ConnectionState


class ConnectionRegistry:
    """Thread-safe map of live connections to their state.

    Activations of a single connection are sequential, so per-entry access needs
    no coordination; the lock protects the map itself, which the supervising
    thread reads for health reporting.
    """

    def __init__(self) -> None:
        self._states: dict[str, ConnectionState] = {}
        self._lock = threading.Lock()

    def get(self, connection_id: str) -> Optional[ConnectionState]:
        with self._lock:
            return self._states.get(connection_id)

    def attach(self, connection_id: str, state: ConnectionState) -> None:
        """Bind ``state`` to the connection.

        Re-attaching the same state is a no-op.

        Raises:
            RuntimeError: If a different state is already attached.
        """
        with self._lock:
            current = self._states.get(connection_id)
            if current is state:
                return
            if current is not None:
                raise RuntimeError(f"connection {connection_id} already has a state")
            self._states[connection_id] = state

    def release(self, connection_id: str) -> Optional[ConnectionState]:
        """Remove and return the connection's state (None if it never had one)."""
        with self._lock:
            return self._states.pop(connection_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._states
