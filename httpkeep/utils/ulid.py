"""ULID generation for httpkeep connection identifiers.

Every connection handled by the transport bridge gets a ULID (Universally Unique
Lexicographically Sortable Identifier). It is used as:
  - the key of the connection registry (connection_id -> ConnectionState)
  - the connection_id field in structured log entries

Uses the `python-ulid` library (see pyproject.toml).
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Returns:
        str: Crockford Base32 ULID, e.g. ``"01KJ0JRVHYA7KX32VPN5ZSCTMV"``.
    """
    return str(ULID())
