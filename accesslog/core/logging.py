"""
Structured logging configuration using structlog.
Covers the component's own diagnostics; access-log lines go to their sink.
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

from accesslog.core.config import Settings, get_settings


def add_app_context(
    logger: Any, method_name: str, event_dict: EventDict
) -> EventDict:
    """Tag every diagnostic entry with the emitting component."""
    event_dict["app"] = "accesslog"
    return event_dict


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog with JSON formatting for production.
    Falls back to pretty console output in other environments.
    """
    settings = settings or get_settings()
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_app_context,
    ]

    if settings.is_production:
        renderers: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=settings.is_development)]

    structlog.configure(
        processors=[*shared_processors, *renderers],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=settings.is_production,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
    )

    # The interceptor replaces the server's own access log
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
