"""Structured logging configuration.

Modules log snake_case events with key/value context:

    logger = get_logger(__name__)
    logger.info("db_file_opened", file="wallet.dat", create=True)
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import Processor


def _level_number(level: str) -> int:
    number = logging.getLevelName(level.upper())
    if not isinstance(number, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return number


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    stream: TextIO | None = None,
) -> None:
    """
    Set up structured logging with structlog.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
        stream: Output stream (default: stderr, keeping stdout for callers)

    Raises:
        ValueError: If the level is not a known log level
    """
    threshold = _level_number(level)
    output = stream or sys.stderr
    logging.basicConfig(format="%(message)s", stream=output, level=threshold)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer(sort_keys=True))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=output.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=output),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """
    Get a bound logger instance.

    The module name is bound as ``logger_name``. The returned proxy resolves
    the structlog configuration on each call, so module-level loggers
    follow a later ``setup_logging``.

    Args:
        name: Logger name (module name typically)
        **initial_context: Initial context to bind to the logger
    """
    if name:
        initial_context.setdefault("logger_name", name)
    return structlog.get_logger(name, **initial_context)
