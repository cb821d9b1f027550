"""Integration tests for UvicornEngine and the daemon on real loopback sockets.

Binds 127.0.0.1 port 0 so tests never collide with a running service.
"""

from __future__ import annotations

import os
import socket
import stat

import httpx
import pytest

from httpkeep.config import CertificatePair, DaemonPolicy, ServerOptions
from httpkeep.controller.dynamic import DynamicController
from httpkeep.models.response import ResponseParams
from httpkeep.server.engine import EngineStartError, UvicornEngine, _write_private
from httpkeep.server.webserver import WebServer


class HelloController(DynamicController):
    def valid_path(self, path, method):
        return path == "/"

    def create_response(self, ctx, state):
        return ResponseParams(headers=[("X-Served-By", "httpkeep")]), "hello"


def _listening_socket() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("127.0.0.1", 0))
    sock.listen(socket.SOMAXCONN)
    return sock


@pytest.fixture
def server():
    options = ServerOptions(
        port=0,
        bind_loopback=True,
        daemon=DaemonPolicy(bind_attempts=1, engine_start_timeout=10.0),
    )
    web = WebServer(options=options)
    web.add_controller(HelloController())
    yield web
    web.stop_daemon()


class TestDaemonOverLoopback:
    def test_serves_requests(self, server):
        assert server.start_daemon() is True
        host, port = server.daemon.bound_address[:2]
        assert host == "127.0.0.1"
        assert port != 0

        response = httpx.get(f"http://127.0.0.1:{port}/", timeout=5.0, trust_env=False)
        assert response.status_code == 200
        assert response.text == "hello"
        assert response.headers["x-served-by"] == "httpkeep"

        missing = httpx.get(f"http://127.0.0.1:{port}/missing", timeout=5.0, trust_env=False)
        assert missing.status_code == 404
        assert missing.content == b""

    def test_alive_until_stopped(self, server):
        server.start_daemon()
        assert server.is_daemon_alive() is True
        server.stop_daemon()
        assert server.is_daemon_alive() is False
        assert server.health()["listening"] is False

    def test_loopback_peer_denied_by_allow_list(self, server):
        server.allowlist.replace(["10.0.0.1"])
        server.start_daemon()
        port = server.daemon.bound_address[1]
        response = httpx.get(f"http://127.0.0.1:{port}/", timeout=5.0, trust_env=False)
        assert response.status_code == 403


class TestUvicornEngine:
    def test_start_and_stop(self):
        sock = _listening_socket()
        engine = UvicornEngine(sock, WebServer().app, start_timeout=10.0)
        try:
            engine.start()
            assert engine.is_running() is True
        finally:
            engine.stop()
            sock.close()
        assert engine.is_running() is False

    def test_stop_before_start_is_noop(self):
        with socket.socket() as sock:
            engine = UvicornEngine(sock, WebServer().app)
            engine.stop()
            assert engine.is_running() is False

    def test_malformed_tls_material(self):
        sock = _listening_socket()
        bogus = CertificatePair(key=b"not a key", cert=b"not a certificate")
        engine = UvicornEngine(sock, WebServer().app, certificate=bogus)
        try:
            with pytest.raises(EngineStartError):
                engine.start()
            assert engine.is_running() is False
        finally:
            sock.close()

    def test_malformed_tls_consumes_daemon_attempts(self):
        options = ServerOptions(
            port=0,
            bind_loopback=True,
            certificate=CertificatePair(key=b"x", cert=b"y"),
            daemon=DaemonPolicy(bind_attempts=2, retry_backoff=0.0),
        )
        web = WebServer(options=options)
        assert web.start_daemon() is False
        assert web.health()["engine_failures"] == 2


class TestPrivateFiles:
    def test_written_owner_only(self, tmp_path):
        path = _write_private(os.path.join(tmp_path, "key.pem"), b"secret")
        mode = stat.S_IMODE(os.stat(path).st_mode)
        assert mode & 0o077 == 0
        with open(path, "rb") as fh:
            assert fh.read() == b"secret"

    def test_refuses_to_overwrite(self, tmp_path):
        path = os.path.join(tmp_path, "key.pem")
        _write_private(path, b"first")
        with pytest.raises(FileExistsError):
            _write_private(path, b"second")
