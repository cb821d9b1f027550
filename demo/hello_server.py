#!/usr/bin/env python3
"""Hello-world httpkeep server.

Serves the current time on GET / and echoes POST /echo bodies back.
Reads options from .httpkeep/config.yaml (or HTTPKEEP_CONFIG) when present.

Usage:
    python3 demo/hello_server.py
    HTTPKEEP_PORT=9090 python3 demo/hello_server.py
"""

import os
import time

from httpkeep import DynamicController, ResponseParams, WebServer, load_options
from httpkeep.utils.logger import configure_logging


class HelloController(DynamicController):
    def valid_path(self, path, method):
        return path == "/" and method == "GET"

    def create_response(self, ctx, state):
        now = time.localtime()
        body = (
            "<html><head><title>Hello World from httpkeep</title></head>"
            f"<body>Hello World at {now.tm_hour}:{now.tm_min:02d}:{now.tm_sec:02d}!</body></html>"
        )
        return ResponseParams(headers=[("Content-Type", "text/html; charset=utf-8")]), body


class EchoController(DynamicController):
    def valid_path(self, path, method):
        return path == "/echo" and method == "POST"

    def create_response(self, ctx, state):
        content_type = ctx.header("content-type", "application/octet-stream")
        return ResponseParams(headers=[("Content-Type", content_type)]), bytes(state.request_data)


def main() -> None:
    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        json_output=os.getenv("JSON_LOGS", "false").lower() == "true",
    )
    server = WebServer(options=load_options())
    server.add_controller(HelloController())
    server.add_controller(EchoController())
    server.start()


if __name__ == "__main__":
    main()
