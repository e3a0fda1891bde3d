"""Structured logging module with JSON output and request ID support.

This module provides a centralized logging configuration using structlog for
structured JSON logging with automatic request ID injection. The request ID
context variable lives here so that both the HTTP middleware and the storage
layers can reach it without importing each other.
"""

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from structlog.types import EventDict, WrappedLogger

# Context variable to store request ID for current request
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")

# Marks the file handler installed by setup_logging so a reconfigure replaces it
_FILE_HANDLER_MARK = "_paystream_file_handler"


def get_request_id() -> str:
    """Get current request ID.

    Returns:
        Current request ID or empty string if not set.
    """
    return request_id_ctx.get()


def set_request_id(request_id: str) -> None:
    """Set request ID for current request.

    Args:
        request_id: Request ID to set.
    """
    request_id_ctx.set(request_id)


def add_request_id(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add request ID to log entries if available.

    Args:
        logger: The wrapped logger instance
        method_name: The name of the method being called
        event_dict: The event dictionary to modify

    Returns:
        Modified event dictionary with request_id if available
    """
    request_id = get_request_id()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    json_output: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output (in addition to console).
            Replaces the file handler installed by an earlier call.
        json_output: If True, output JSON format; if False, use human-readable format
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        stream=sys.stdout,
    )
    logging.getLogger().setLevel(numeric_level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        add_request_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        if getattr(handler, _FILE_HANDLER_MARK, False):
            root_logger.removeHandler(handler)
            handler.close()

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        setattr(file_handler, _FILE_HANDLER_MARK, True)
        root_logger.addHandler(file_handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


__all__ = [
    "add_request_id",
    "get_logger",
    "get_request_id",
    "request_id_ctx",
    "set_request_id",
    "setup_logging",
]
