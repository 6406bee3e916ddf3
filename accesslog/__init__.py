"""Templated access logging for ASGI applications."""

from accesslog.middleware.request_logger import (
    DEFAULT_FORMAT,
    DEFAULT_LOGGER_CONFIG,
    LoggerConfig,
    RequestLoggerMiddleware,
    request_logger,
    request_logger_with_config,
    skip_paths,
)
from accesslog.schemas.record import AccessLogRecord, LogField
from accesslog.services.template import LogFormatError, LogTemplate

__all__ = [
    "DEFAULT_FORMAT",
    "DEFAULT_LOGGER_CONFIG",
    "AccessLogRecord",
    "LogField",
    "LogFormatError",
    "LogTemplate",
    "LoggerConfig",
    "RequestLoggerMiddleware",
    "request_logger",
    "request_logger_with_config",
    "skip_paths",
]
