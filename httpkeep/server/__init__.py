"""httpkeep server package.

  - dispatcher.py: admission (allow-list) + first-match routing
  - registry.py  : connection id -> ConnectionState map
  - bridge.py    : ASGI adapter replaying requests as activations
  - engine.py    : uvicorn engine on a pre-bound socket (plaintext or TLS)
  - daemon.py    : socket/bind/listen/engine start with bounded retries
  - webserver.py : WebServer facade and supervising loop
"""
from httpkeep.server.bridge import ConnectionAborted, TransportBridge
from httpkeep.server.daemon import DaemonManager
from httpkeep.server.dispatcher import Dispatcher
from httpkeep.server.engine import EngineStartError, UvicornEngine
from httpkeep.server.registry import ConnectionRegistry
from httpkeep.server.webserver import WebServer

__all__ = [
    "ConnectionAborted",
    "ConnectionRegistry",
    "DaemonManager",
    "Dispatcher",
    "EngineStartError",
    "TransportBridge",
    "UvicornEngine",
    "WebServer",
]
