"""Structured logging configuration using structlog."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from .settings import settings
from .utils import request_id_ctx

SERVICE_NAME = "cavens-assistant"
SERVICE_VERSION = "0.1.0"


def add_request_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Attach the current request ID, when one is set, to every log entry."""
    request_id = request_id_ctx.get("")
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["service"] = SERVICE_NAME
    event_dict["environment"] = settings.SENTRY_ENVIRONMENT
    event_dict["version"] = SERVICE_VERSION
    return event_dict


def configure_structlog(json_logs: bool = False) -> None:
    """
    Configure structlog for the application.

    Args:
        json_logs: If True, output JSON logs. If False, use human-readable console format.
                   Defaults to JSON outside DEBUG mode.
    """
    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        add_app_context,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
    ]
    if json_logs or not settings.DEBUG:
        processors: list[Processor] = [
            *shared,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.INFO,
    )

    # Outbound LLM and maps calls are logged by our own modules
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("chat_stream_opened", city=city)
    """
    return structlog.get_logger(name)


__all__ = ["configure_structlog", "get_logger", "SERVICE_NAME", "SERVICE_VERSION"]
