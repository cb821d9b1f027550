"""Root test configuration for httpkeep.

Clears the HTTPKEEP_* environment variables for the whole suite so a developer's
shell (HTTPKEEP_PORT, HTTPKEEP_CONFIG) cannot leak into config tests. Tests that
exercise the overrides set them again with their own monkeypatch calls.

Also provides the fakes used to drive the daemon lifecycle without real
sockets, a real engine or real sleeps.
"""

from __future__ import annotations

import socket
from typing import Any, Callable, Optional

import pytest

from httpkeep.server.engine import EngineStartError


@pytest.fixture(autouse=True)
def clear_httpkeep_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove httpkeep environment overrides for every test."""
    monkeypatch.delenv("HTTPKEEP_PORT", raising=False)
    monkeypatch.delenv("HTTPKEEP_CONFIG", raising=False)


# ─── Daemon fakes ─────────────────────────────────────────────────────────────


class FakeSocket:
    """Stand-in for socket.socket that records calls and fails on demand.

    fail_at maps a stage ("bind", "listen", "setsockopt") to the exception raised there.
    """

    def __init__(self, family: Any, kind: Any, fail_at: Optional[dict[str, OSError]] = None) -> None:
        self.family = family
        self.kind = kind
        self.fail_at = fail_at or {}
        self.options: list[tuple[int, int, Any]] = []
        self.bound: Optional[tuple] = None
        self.backlog: Optional[int] = None
        self.closed = False
        self.broken = False

    def setsockopt(self, level: int, name: int, value: Any) -> None:
        if "setsockopt" in self.fail_at and name != socket.SO_REUSEADDR:
            raise self.fail_at["setsockopt"]
        self.options.append((level, name, value))

    def bind(self, address: tuple) -> None:
        if "bind" in self.fail_at:
            raise self.fail_at["bind"]
        self.bound = address

    def listen(self, backlog: int) -> None:
        if "listen" in self.fail_at:
            raise self.fail_at["listen"]
        self.backlog = backlog

    def fileno(self) -> int:
        return -1 if self.closed else 3

    def getsockname(self) -> tuple:
        if self.broken or self.bound is None:
            raise OSError(9, "Bad file descriptor")
        return self.bound

    def close(self) -> None:
        self.closed = True


class SocketFactory:
    """Callable socket factory; the first ``failures`` sockets fail at ``stage``."""

    def __init__(self, failures: int = 0, stage: str = "bind", error: Optional[OSError] = None) -> None:
        self.failures = failures
        self.stage = stage
        self.error = error or OSError(98, "Address already in use")
        self.created: list[FakeSocket] = []

    def __call__(self, family: Any, kind: Any) -> FakeSocket:
        fail_at = {self.stage: self.error} if len(self.created) < self.failures else {}
        sock = FakeSocket(family, kind, fail_at)
        self.created.append(sock)
        return sock


class FakeEngine:
    """Engine double: start() raises while ``fail`` is set; liveness is a flag."""

    def __init__(self, sock: Any, app: Any, certificate: Any, start_timeout: float, fail: bool = False) -> None:
        self.sock = sock
        self.app = app
        self.certificate = certificate
        self.start_timeout = start_timeout
        self.fail = fail
        self.running = False
        self.stopped = False

    def start(self) -> None:
        if self.fail:
            raise EngineStartError("engine refused to start")
        self.running = True

    def stop(self) -> None:
        self.running = False
        self.stopped = True

    def is_running(self) -> bool:
        return self.running


class EngineFactory:
    """Callable engine factory; the first ``failures`` engines fail to start."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.created: list[FakeEngine] = []

    def __call__(self, sock: Any, app: Any, certificate: Any, start_timeout: float) -> FakeEngine:
        engine = FakeEngine(sock, app, certificate, start_timeout, fail=len(self.created) < self.failures)
        self.created.append(engine)
        return engine


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeps() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_sockets() -> Callable[..., SocketFactory]:
    return SocketFactory


@pytest.fixture
def make_engines() -> Callable[..., EngineFactory]:
    return EngineFactory
