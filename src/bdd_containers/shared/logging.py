"""Logging configuration for bdd-containers.

structlog renders every event, routed through the standard library so the
test runner's own handlers (pytest's log capture, a CI log file) receive it.

Scenarios run concurrently, so lifecycle events need to say which run and
which scenario they belong to. ``log_context()`` binds those ids through
structlog contextvars: each asyncio task, and each worker thread started with
``asyncio.to_thread``, carries its own copy, so one scenario's ids never show
up on another scenario's events.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog

# Third-party loggers that flood debug output with HTTP traffic to the daemon
QUIET_LOGGERS = ("docker", "urllib3")


def _processors(json_output: bool) -> list[structlog.types.Processor]:
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors.extend([structlog.processors.format_exc_info, structlog.processors.JSONRenderer()])
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def _handler(log_file: str | Path | None) -> logging.Handler:
    if log_file:
        return logging.FileHandler(str(log_file))
    return logging.StreamHandler(sys.stderr)


def configure_logging(
    level: str = "warning",
    log_file: str | Path | None = None,
    json_output: bool = False,
) -> None:
    """Configure logging for a test run.

    Call once, before the first scenario starts.

    Args:
        level: Log level (debug, info, warning, error, critical)
        log_file: Optional path to a log file instead of stderr
        json_output: If True, output JSON lines

    Usage:
        CI: configure_logging("info", log_file="containers.log", json_output=True)
        Local: configure_logging("debug")
    """
    log_level = getattr(logging, level.upper(), logging.WARNING)

    handler = _handler(log_file)
    handler.setLevel(log_level)
    logging.basicConfig(level=log_level, handlers=[handler], format="%(message)s", force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.INFO))

    structlog.configure(
        processors=_processors(json_output),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """Add ``values`` to every event logged by the current task inside the block."""
    with structlog.contextvars.bound_contextvars(**values):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
