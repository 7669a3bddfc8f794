"""
Structured logging infrastructure using structlog.

The shipper's own diagnostics are kept under the ``logshipper`` logger
namespace. That namespace gets a dedicated handler and does not propagate,
so an AmqpHandler attached to the root logger never receives (and ships)
the shipper's own records.
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

LOGGER_NAMESPACE = "logshipper"


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to log entries."""
    event_dict["app"] = LOGGER_NAMESPACE
    return event_dict


def is_internal_logger(name: Optional[str]) -> bool:
    """Check whether a logger name belongs to the shipper itself."""
    if not name:
        return False
    return name == LOGGER_NAMESPACE or name.startswith(LOGGER_NAMESPACE + ".")


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_output: str = "stderr",
) -> None:
    """
    Configure structured logging for the shipper's diagnostics.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_output: Output destination (stdout or stderr)
    """
    stream = sys.stdout if log_output == "stdout" else sys.stderr

    namespace_logger = logging.getLogger(LOGGER_NAMESPACE)
    for handler in list(namespace_logger.handlers):
        namespace_logger.removeHandler(handler)

    stream_handler = logging.StreamHandler(stream)
    stream_handler.setFormatter(logging.Formatter("%(message)s"))
    namespace_logger.addHandler(stream_handler)
    namespace_logger.setLevel(getattr(logging, log_level.upper()))
    namespace_logger.propagate = False

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        structlog logger
    """
    return structlog.get_logger(name)
