"""Source allow-list holder and loader for httpkeep.

Holds the ordered allow-list the dispatcher consults, seeded from
ServerOptions.allowed_sources. Optionally loads `allowed_sources:` from a YAML
file and hot-reloads it with watchfiles; changes apply to the next activation
of any connection without restarting the daemon.
"""

from __future__ import annotations

import threading
from typing import Iterable, Optional

import watchfiles
import yaml

from httpkeep.allowlist.matcher import canonical_ip, is_allowed
from httpkeep.constants import ALLOW_ALL_TOKENS
from httpkeep.utils.logger import get_logger

logger = get_logger(__name__)


# ─── SourceAllowList ─────────────────────────────────────────────────────────


class SourceAllowList:
    """Thread-safe, ordered allow-list of client addresses.

    Usage:
        allowlist = SourceAllowList(options.allowed_sources)
        allowlist.is_allowed("10.0.0.1")
        allowlist.load("/etc/httpkeep/allowlist.yaml")

    Thread-safety:
        Reads happen on the engine's event loop thread; reloads happen on the
        watcher thread. Both go through the same lock, and readers get a snapshot.
    """

    def __init__(self, entries: Optional[Iterable[str]] = None) -> None:
        self._entries: list[str] = _parse_entries(list(entries or []))
        self._lock = threading.Lock()

    # ── Public read API ───────────────────────────────────────────────────────

    def entries(self) -> list[str]:
        """Return a snapshot of the current entries (a copy)."""
        with self._lock:
            return list(self._entries)

    def is_allowed(self, address: str) -> bool:
        with self._lock:
            entries = self._entries
        return is_allowed(address, entries)

    @property
    def admits_all(self) -> bool:
        with self._lock:
            return any(entry in ALLOW_ALL_TOKENS for entry in self._entries)

    # ── Mutation ──────────────────────────────────────────────────────────────

    def replace(self, entries: Iterable[str]) -> int:
        """Atomically swap in a new entry list. Returns the number of entries kept."""
        parsed = _parse_entries(list(entries))
        with self._lock:
            self._entries = parsed
        return len(parsed)

    # ── Load from file ────────────────────────────────────────────────────────

    def load(self, path: str) -> int:
        """Load the allow-list from a YAML file.

        Returns the number of loaded entries (>= 0).
        Returns 0 if the file does not exist; the list becomes empty, which
        denies every client.
        Returns -1 on YAML parse / read error (prior entries unchanged).

        Never raises.
        """
        try:
            with open(path) as fh:
                raw = yaml.safe_load(fh)
        except FileNotFoundError:
            logger.warning("Allow-list file not found: denying all sources", path=path)
            with self._lock:
                self._entries = []
            return 0
        except yaml.YAMLError as exc:
            logger.error(
                "Allow-list reload failed: YAML parse error, keeping prior entries",
                path=path,
                error=str(exc),
            )
            return -1
        except OSError as exc:
            logger.error(
                "Allow-list reload failed: could not read file, keeping prior entries",
                path=path,
                error=str(exc),
            )
            return -1

        count = self.replace(_entries_from_raw(raw))
        logger.info("Allow-list loaded", count=count, path=path)
        return count

    # ── Hot-reload watcher ────────────────────────────────────────────────────

    def watch(self, path: str, stop_event: threading.Event) -> None:
        """Blocking watchfiles loop; reloads the allow-list whenever ``path`` changes.

        Meant to run on its own daemon thread. Returns once ``stop_event`` is set.
        Reload errors are logged by load() and keep the previous entries.
        """
        logger.info("Allow-list watcher started", path=path)
        for _changes in watchfiles.watch(path, stop_event=stop_event, raise_interrupt=False):
            self.load(path)
        logger.debug("Allow-list watcher stopped", path=path)


# ─── Parsing helpers ──────────────────────────────────────────────────────────


def _entries_from_raw(raw: object) -> list[object]:
    """Accept a bare YAML list or a mapping with an ``allowed_sources`` key."""
    if raw is None:
        return []
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict):
        entries = raw.get("allowed_sources", [])
        if entries is None:
            return []
        if isinstance(entries, list):
            return entries
        logger.warning(
            "allowed_sources key is not a list: ignoring",
            actual_type=type(entries).__name__,
        )
        return []
    logger.warning(
        "Allow-list YAML root is neither a list nor a mapping: empty allow-list",
        actual_type=type(raw).__name__,
    )
    return []


def _parse_entries(raw_list: list) -> list[str]:
    """Validate raw entries, preserving order.

    Non-string entries are skipped. Strings that are neither a wildcard token nor
    an IP literal are kept (they are compared verbatim) but can never match a
    real peer, so they are flagged. IP literals are stored in canonical form.
    """
    entries: list[str] = []
    for i, item in enumerate(raw_list):
        if not isinstance(item, str):
            logger.warning(
                "Allow-list entry is not a string: skipping",
                index=i,
                actual_type=type(item).__name__,
            )
            continue
        entry = item.strip()
        if entry not in ALLOW_ALL_TOKENS:
            canonical = canonical_ip(entry)
            if canonical is None:
                logger.warning(
                    "Allow-list entry is not an IP literal and will never match",
                    index=i,
                    entry=entry,
                )
            else:
                entry = canonical
        entries.append(entry)
    return entries
