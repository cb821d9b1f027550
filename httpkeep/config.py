"""Configuration for httpkeep servers.

ServerOptions can be built programmatically or loaded from YAML.
Raises SystemExit on parse errors or a missing `version` field when loading.
If no config file is found, load_options() returns default values.

Config search order:
  1. `config_path` argument (explicit override, used by tests)
  2. HTTPKEEP_CONFIG environment variable (if set)
  3. `.httpkeep/config.yaml` (working directory)
  4. `~/.httpkeep/config.yaml` (home directory)

Environment variable overrides:
  HTTPKEEP_PORT  : overrides server.port (takes precedence over the file value)
  HTTPKEEP_CONFIG: sets an explicit config file path to try first

Example file::

    version: 1
    server:
      port: 8443
      bind_address: "::1"
      allowed_sources: ["127.0.0.1", "::1"]
      certificate:
        key_file: /etc/httpkeep/key.pem
        cert_file: /etc/httpkeep/cert.pem
    body_wait:
      interval_ms: 10
      ceiling: 300
    daemon:
      bind_attempts: 12
      retry_backoff_s: 5
"""

from __future__ import annotations

import ipaddress
import os
import socket
import sys
from dataclasses import dataclass, field
from typing import Callable, Optional

import yaml

from httpkeep.constants import (
    BIND_ATTEMPTS,
    BIND_RETRY_BACKOFF_S,
    BODY_METHODS,
    BODY_WAIT_CEILING,
    BODY_WAIT_INTERVAL_S,
    DEFAULT_PORT,
    ENGINE_START_TIMEOUT_S,
    LOOPBACK_V4,
    LOOPBACK_V6,
    SUPERVISE_INTERVAL_S,
    WILDCARD_V4,
)
from httpkeep.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

DEFAULT_CONFIG_PATHS = [
    ".httpkeep/config.yaml",
    os.path.expanduser("~/.httpkeep/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CertificatePair:
    """In-memory TLS material: PEM-encoded private key and certificate chain.

    Never file paths. A missing pair means the daemon serves plaintext only.
    """

    key: bytes
    cert: bytes

    def __repr__(self) -> str:
        # keep key material out of logs
        return f"CertificatePair(key=<{len(self.key)} bytes>, cert=<{len(self.cert)} bytes>)"


@dataclass
class BodyWaitPolicy:
    """Wait-for-body sub-protocol tuning used by DynamicController.

    interval:          suspension per empty activation (seconds)
    ceiling:           empty activations tolerated before a timeout abort
    cooperative_yield: suspend between empty activations (False: return at once)
    methods:           body-bearing methods that must wait for upload data
    """

    interval: float = BODY_WAIT_INTERVAL_S
    ceiling: int = BODY_WAIT_CEILING
    cooperative_yield: bool = True
    methods: tuple[str, ...] = BODY_METHODS


@dataclass
class DaemonPolicy:
    """Daemon lifecycle tuning.

    max_restart_cycles: consecutive failed start_daemon() cycles after which the
    supervising loop gives up. None retries forever.
    """

    bind_attempts: int = BIND_ATTEMPTS
    retry_backoff: float = BIND_RETRY_BACKOFF_S
    supervise_interval: float = SUPERVISE_INTERVAL_S
    engine_start_timeout: float = ENGINE_START_TIMEOUT_S
    max_restart_cycles: Optional[int] = None


@dataclass
class ServerOptions:
    """Root configuration of a WebServer.

    All fields have safe defaults; a server can start without any config file.
    """

    port: int = DEFAULT_PORT
    bind_loopback: bool = False
    bind_address: str = ""
    bind_interface: str = ""
    certificate: Optional[CertificatePair] = None
    allowed_sources: list[str] = field(default_factory=lambda: ["*"])
    should_terminate: Optional[Callable[[], bool]] = None
    allowlist_path: Optional[str] = None
    body_wait: BodyWaitPolicy = field(default_factory=BodyWaitPolicy)
    daemon: DaemonPolicy = field(default_factory=DaemonPolicy)
    path: Optional[str] = None  # Path to the loaded config file, if any

    @property
    def tls_enabled(self) -> bool:
        return self.certificate is not None

    @classmethod
    def defaults(cls) -> "ServerOptions":
        """Return fully-default options (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "ServerOptions":
        """Construct ServerOptions from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are ignored.
        Certificate files named in the mapping are read into memory here.

        Raises:
            SystemExit(1): On an unreadable certificate file, a certificate section
                           missing its key or cert, or an invalid bind address.
        """
        # ── Server ────────────────────────────────────────────────────────────
        server_raw = raw.get("server") or {}
        allowed = server_raw.get("allowed_sources", ["*"])
        if isinstance(allowed, str):
            allowed = [allowed]

        options = cls(
            port=server_raw.get("port", DEFAULT_PORT),
            bind_loopback=bool(server_raw.get("bind_loopback", False)),
            bind_address=server_raw.get("bind_address") or "",
            bind_interface=server_raw.get("bind_interface") or "",
            certificate=_certificate_from_dict(server_raw.get("certificate"), path),
            allowed_sources=list(allowed),
            allowlist_path=server_raw.get("allowlist_path"),
            path=path,
        )

        # ── Body wait ─────────────────────────────────────────────────────────
        wait_raw = raw.get("body_wait") or {}
        options.body_wait = BodyWaitPolicy(
            interval=wait_raw.get("interval_ms", BODY_WAIT_INTERVAL_S * 1000) / 1000.0,
            ceiling=wait_raw.get("ceiling", BODY_WAIT_CEILING),
            cooperative_yield=wait_raw.get("cooperative_yield", True),
            methods=tuple(m.upper() for m in wait_raw.get("methods", BODY_METHODS)),
        )

        # ── Daemon ────────────────────────────────────────────────────────────
        daemon_raw = raw.get("daemon") or {}
        options.daemon = DaemonPolicy(
            bind_attempts=daemon_raw.get("bind_attempts", BIND_ATTEMPTS),
            retry_backoff=daemon_raw.get("retry_backoff_s", BIND_RETRY_BACKOFF_S),
            supervise_interval=daemon_raw.get("supervise_interval_s", SUPERVISE_INTERVAL_S),
            engine_start_timeout=daemon_raw.get("engine_start_timeout_s", ENGINE_START_TIMEOUT_S),
            max_restart_cycles=daemon_raw.get("max_restart_cycles"),
        )

        try:
            bind_target(options)
        except ValueError as exc:
            print(f"CONFIG ERROR: {exc}", file=sys.stderr)
            raise SystemExit(1)

        return options


# ─── Binding ──────────────────────────────────────────────────────────────────


def bind_target(options: ServerOptions) -> tuple[socket.AddressFamily, str]:
    """Resolve the address family and host literal the listening socket binds to.

    Precedence: bind_loopback, then an explicit bind_address, then the IPv4
    wildcard. With bind_loopback and an IPv6 bind_address the IPv6 loopback is used.

    Raises:
        ValueError: If bind_address is not an IPv4 or IPv6 literal.
    """
    literal = None
    if options.bind_address:
        try:
            literal = ipaddress.ip_address(options.bind_address)
        except ValueError:
            raise ValueError(
                f"bind_address is not an IPv4/IPv6 literal: {options.bind_address!r}"
            ) from None

    if options.bind_loopback:
        if literal is not None and literal.version == 6:
            return socket.AF_INET6, LOOPBACK_V6
        return socket.AF_INET, LOOPBACK_V4

    if literal is not None:
        family = socket.AF_INET6 if literal.version == 6 else socket.AF_INET
        return family, str(literal)

    return socket.AF_INET, WILDCARD_V4


# ─── Config loading ───────────────────────────────────────────────────────────


def load_options(config_path: Optional[str] = None) -> ServerOptions:
    """Load and validate httpkeep server options.

    Search order:
      1. ``config_path`` argument
      2. ``HTTPKEEP_CONFIG`` environment variable
      3. ``.httpkeep/config.yaml``
      4. ``~/.httpkeep/config.yaml``

    If no file is found, returns default options (not an error). ``HTTPKEEP_PORT``
    is applied afterwards regardless of whether a file was found.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, unreadable certificate, invalid bind address or
                       invalid ``HTTPKEEP_PORT``.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("HTTPKEEP_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found: using defaults", searched=search_paths)
        options = ServerOptions.defaults()
        _apply_env_overrides(options)
        return options

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        msg = (
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "Check the YAML syntax and try again."
        )
        print(msg, file=sys.stderr)
        raise SystemExit(1)
    except OSError as exc:
        print(f"CONFIG ERROR: Could not read {found_path}: {exc}", file=sys.stderr)
        raise SystemExit(1)

    if not isinstance(raw, dict):
        if raw is None:
            msg = (
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        else:
            msg = (
                f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
                "The config file must be a YAML dictionary at the top level."
            )
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        msg = (
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    if version not in SUPPORTED_VERSIONS:
        msg = (
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    options = ServerOptions.from_dict(raw, path=found_path)

    _apply_env_overrides(options)

    # ── Security warnings ─────────────────────────────────────────────────────
    if not options.bind_loopback and not options.bind_address:
        logger.warning(
            "SECURITY WARNING: httpkeep is configured to bind on all interfaces. "
            "Set server.bind_loopback or server.bind_address to restrict exposure."
        )
    if any(entry in ("*", "all") for entry in options.allowed_sources):
        logger.info("Source allow-list admits every address", allowed_sources=options.allowed_sources)

    logger.info(
        "Config loaded",
        path=found_path,
        port=options.port,
        tls=options.tls_enabled,
        allowed_sources=len(options.allowed_sources),
    )
    return options


def _certificate_from_dict(raw: Optional[dict], config_path: Optional[str]) -> Optional[CertificatePair]:
    """Build a CertificatePair from a `certificate:` mapping.

    Accepts inline PEM text (``key_pem`` / ``cert_pem``) or file paths
    (``key_file`` / ``cert_file``, relative paths resolved against the config
    file's directory). Files are read once here; the daemon only ever sees bytes.
    """
    if not raw:
        return None

    base_dir = os.path.dirname(config_path) if config_path else os.getcwd()

    def _material(kind: str) -> Optional[bytes]:
        inline = raw.get(f"{kind}_pem")
        if inline:
            return inline.encode("ascii") if isinstance(inline, str) else bytes(inline)
        file_name = raw.get(f"{kind}_file")
        if not file_name:
            return None
        file_path = os.path.join(base_dir, os.path.expanduser(file_name))
        try:
            with open(file_path, "rb") as fh:
                return fh.read()
        except OSError as exc:
            print(f"CONFIG ERROR: Could not read certificate {kind} {file_path}: {exc}", file=sys.stderr)
            raise SystemExit(1)

    key = _material("key")
    cert = _material("cert")
    if key is None or cert is None:
        print(
            "CONFIG ERROR: server.certificate needs both a key (key_pem/key_file) "
            "and a certificate (cert_pem/cert_file).",
            file=sys.stderr,
        )
        raise SystemExit(1)
    return CertificatePair(key=key, cert=cert)


def _apply_env_overrides(options: ServerOptions) -> None:
    """Apply environment variable overrides to ServerOptions in-place.

    Raises:
        SystemExit(1): If HTTPKEEP_PORT is set but not a valid integer.
    """
    env_port = os.environ.get("HTTPKEEP_PORT")
    if env_port is not None:
        try:
            options.port = int(env_port)
        except ValueError:
            msg = (
                f"CONFIG ERROR: HTTPKEEP_PORT environment variable is not a valid "
                f"integer: '{env_port}'"
            )
            print(msg, file=sys.stderr)
            raise SystemExit(1)
