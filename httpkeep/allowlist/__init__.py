"""httpkeep source-address allow-list.

Public API:
    is_allowed     : pure admission check over an ordered entry list
    connection_ip  : textual client address from a transport peer descriptor
    SourceAllowList: thread-safe holder with YAML loading and hot-reload
"""
from httpkeep.allowlist.loader import SourceAllowList
from httpkeep.allowlist.matcher import connection_ip, is_allowed

__all__ = ["SourceAllowList", "connection_ip", "is_allowed"]
