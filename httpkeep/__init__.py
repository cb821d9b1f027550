"""httpkeep: embeddable HTTP server framework.

Applications register controllers on a WebServer; httpkeep keeps one listening
socket alive (bounded bind retries, liveness supervision, optional TLS from
in-memory PEMs), admits clients by source address, routes each request to the
first matching controller and drives that controller's per-connection state
across the transport's activations.
"""
from httpkeep.config import (
    BodyWaitPolicy,
    CertificatePair,
    DaemonPolicy,
    ServerOptions,
    load_options,
)
from httpkeep.controller import ConnectionState, Controller, DynamicController, RequestContext
from httpkeep.models import ABORT_STATUS, Outcome, ResponseParams, TerminationReason
from httpkeep.server import ConnectionAborted, WebServer

__version__ = "0.1.0"

__all__ = [
    "ABORT_STATUS",
    "BodyWaitPolicy",
    "CertificatePair",
    "ConnectionAborted",
    "ConnectionState",
    "Controller",
    "DaemonPolicy",
    "DynamicController",
    "Outcome",
    "RequestContext",
    "ResponseParams",
    "ServerOptions",
    "TerminationReason",
    "WebServer",
    "load_options",
]
