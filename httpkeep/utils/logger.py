"""structlog setup for httpkeep.

The connection id is not tracked here: the transport bridge binds it with
structlog.contextvars for the duration of an exchange, and merge_contextvars
(first processor below) copies it onto every event logged meanwhile.
"""

import logging
import sys
import time
from contextlib import contextmanager
from typing import Iterator, Optional, TextIO

import structlog
from structlog.types import EventDict, Processor


def _epoch_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["timestamp"] = time.time()
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """Install the httpkeep processor chain.

    Args:
        log_level:   Minimum level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: One JSON object per line when True, coloured console output otherwise.
        stream:      Destination; stdout when None.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _epoch_timestamp,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "httpkeep") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def log_duration(
    operation: str,
    logger: Optional[structlog.stdlib.BoundLogger] = None,
    warn_after_ms: float = 1000.0,
) -> Iterator[None]:
    """Time a control-path operation such as a daemon start.

    Logs ``"<operation> completed"`` at debug, or at warning once it took longer
    than ``warn_after_ms``. A raised exception is logged as ``"<operation> failed"``
    and propagates.
    """
    log = logger or get_logger()
    started = time.perf_counter()
    try:
        yield
    except BaseException as exc:
        log.error(
            f"{operation} failed",
            operation=operation,
            duration_ms=(time.perf_counter() - started) * 1000,
            error=str(exc),
        )
        raise
    duration_ms = (time.perf_counter() - started) * 1000
    emit = log.warning if duration_ms > warn_after_ms else log.debug
    emit(f"{operation} completed", operation=operation, duration_ms=duration_ms)


# Embedding applications that already configured structlog keep their setup.
if not structlog.is_configured():
    configure_logging()
