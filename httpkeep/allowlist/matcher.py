"""Source-address admission for httpkeep.

is_allowed() is the ONLY admission check the dispatcher calls. It runs on every
activation of every connection, strictly before any controller is consulted.

Matching rules:
  - An entry of "*" or "all" (exact, case-sensitive) admits every address.
  - Otherwise an address is admitted only by an exact string match.
  - An empty address (peer extraction failed) is never admitted.
"""

from __future__ import annotations

import ipaddress
from typing import Iterable, Optional, Sequence

from httpkeep.constants import ALLOW_ALL_TOKENS


def is_allowed(address: str, entries: Iterable[str]) -> bool:
    """Return True if ``address`` may proceed under the ordered allow-list ``entries``.

    Args:
        address: Textual IPv4/IPv6 address of the client, or "" when unknown.
        entries: Configured allow-list entries (IP literals or wildcard tokens).
    """
    if not address:
        return False
    for entry in entries:
        if entry in ALLOW_ALL_TOKENS:
            return True
        if entry == address:
            return True
    return False


def connection_ip(peer: Optional[Sequence[object]]) -> str:
    """Extract the client's textual address from a transport peer descriptor.

    Accepts the ASGI ``client`` pair ``(host, port)`` as well as socket-style
    IPv6 tuples ``(host, port, flowinfo, scope_id)``. IPv6 zone suffixes
    (``fe80::1%eth0``) are dropped. Returns "" for anything that is neither an
    IPv4 nor an IPv6 literal (UNIX socket peers, test client names, None).
    """
    if not peer:
        return ""
    host = peer[0]
    if not isinstance(host, str) or not host:
        return ""
    return canonical_ip(host.split("%", 1)[0]) or ""


def canonical_ip(text: str) -> Optional[str]:
    """Return the canonical form of an IP literal, or None if ``text`` is not one.

    IPv6 is lowercased and compressed; IPv4-mapped IPv6 becomes plain IPv4.
    Peers and allow-list entries both go through here so they compare equal.
    """
    try:
        parsed = ipaddress.ip_address(text)
    except ValueError:
        return None
    if isinstance(parsed, ipaddress.IPv6Address) and parsed.ipv4_mapped is not None:
        # dual-stack listeners report IPv4 clients as ::ffff:a.b.c.d
        return str(parsed.ipv4_mapped)
    return str(parsed)
