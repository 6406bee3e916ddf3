"""
Access-log middleware: renders one templated line per HTTP request.

The line is rendered after the wrapped application has finished, so status
and byte counts reflect what was actually sent. Implemented as pure ASGI
middleware so the response body can be measured as it streams.
"""

import dataclasses
import inspect
import sys
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional, TextIO

import structlog
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import Headers
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from accesslog.core.config import Settings
from accesslog.core.timefmt import format_duration, format_rfc3339, local_now
from accesslog.schemas.record import AccessLogRecord
from accesslog.services.buffer_pool import DEFAULT_POOL_SIZE, BufferPool
from accesslog.services.template import LogTemplate

logger = structlog.get_logger(__name__)

Skipper = Callable[[Request], bool]
ErrorHandler = Callable[[Request, Exception], Awaitable[Response]]

REQUEST_ID_HEADER = "x-request-id"

DEFAULT_FORMAT = (
    '{"time":"{{.time_rfc3339}}","remote_ip":"{{.remote_ip}}",'
    '"method":"{{.method}}","uri":"{{.uri}}","status":{{.status}},'
    '"latency":{{.latency}},"latency_human":"{{.latency_human}}",'
    '"bytes_in":{{.bytes_in}},"bytes_out":{{.bytes_out}}}'
    "\n"
)


def never_skip(request: Request) -> bool:
    return False


def skip_paths(*paths: str) -> Skipper:
    """Skipper that bypasses logging for the given exact paths."""
    skipped = frozenset(paths)

    def skipper(request: Request) -> bool:
        return request.url.path in skipped

    return skipper


async def host_error_handler(request: Request, exc: Exception) -> Response:
    """
    Build the response the host application would produce for ``exc``.

    Looks up the host's registered exception handlers by exception type
    (most specific first), then the 500 handler, and finally falls back to
    a plain ``500 Internal Server Error``.
    """
    handlers = getattr(request.scope.get("app"), "exception_handlers", None) or {}
    handler = next(
        (handlers[cls] for cls in type(exc).__mro__ if cls in handlers),
        handlers.get(500),
    )
    if handler is None:
        return PlainTextResponse("Internal Server Error", status_code=500)
    if inspect.iscoroutinefunction(handler):
        return await handler(request, exc)
    return await run_in_threadpool(handler, request, exc)


@dataclass(frozen=True)
class LoggerConfig:
    """
    Access-log configuration.

    Instances are immutable; the format is compiled on construction, so a
    malformed format raises :class:`LogFormatError` here rather than on the
    first request. Use :meth:`with_overrides` to derive a new configuration.
    """

    skipper: Skipper = never_skip
    format: str = DEFAULT_FORMAT
    # None writes to whatever sys.stdout is at write time
    output: Optional[TextIO] = None
    error_handler: ErrorHandler = host_error_handler
    clock: Callable[[], datetime] = local_now
    pool_size: int = DEFAULT_POOL_SIZE

    template: LogTemplate = field(init=False, repr=False, compare=False)
    buffer_pool: BufferPool = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.format:
            object.__setattr__(self, "format", DEFAULT_FORMAT)
        object.__setattr__(self, "template", LogTemplate.compile(self.format))
        object.__setattr__(self, "buffer_pool", BufferPool(self.pool_size))

    @property
    def sink(self) -> TextIO:
        return self.output if self.output is not None else sys.stdout

    def with_overrides(self, **changes) -> "LoggerConfig":
        """Copy of this configuration with ``changes`` applied and a fresh pool."""
        return dataclasses.replace(self, **changes)


DEFAULT_LOGGER_CONFIG = LoggerConfig()


class _Exchange:
    """Response state observed on the way out."""

    __slots__ = ("started", "status", "headers", "bytes_out")

    def __init__(self) -> None:
        self.started = False
        self.status = 0
        self.headers = Headers()
        self.bytes_out = 0


def real_ip(request: Request) -> str:
    """Client address, preferring proxy headers over the peer address."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real = request.headers.get("x-real-ip")
    if real:
        return real.strip()
    return request.client.host if request.client else ""


def request_uri(scope: Scope) -> str:
    """Request target as received: raw path plus query string."""
    raw_path = scope.get("raw_path")
    target = raw_path.decode("latin-1") if raw_path else scope.get("path", "")
    query = scope.get("query_string", b"").decode("latin-1")
    return f"{target}?{query}" if query else target


def build_record(
    request: Request, exchange: _Exchange, elapsed_ns: int, now: datetime
) -> AccessLogRecord:
    headers = request.headers
    return AccessLogRecord(
        time_rfc3339=format_rfc3339(now),
        id=headers.get(REQUEST_ID_HEADER) or exchange.headers.get(REQUEST_ID_HEADER, ""),
        remote_ip=real_ip(request),
        host=headers.get("host", ""),
        uri=request_uri(request.scope),
        method=request.method,
        path=request.scope.get("path") or "/",
        referer=headers.get("referer", ""),
        user_agent=headers.get("user-agent", ""),
        status=exchange.status,
        latency=elapsed_ns // 1000,
        latency_human=format_duration(elapsed_ns),
        bytes_in=headers.get("content-length") or "0",
        bytes_out=exchange.bytes_out,
    )


class RequestLoggerMiddleware:
    """
    ASGI middleware that writes one access-log line per HTTP request.

    Errors raised by the wrapped application are handed to the host's error
    handler (when no response has started yet), logged with the resulting
    status, and then re-raised unchanged.
    """

    def __init__(self, app: ASGIApp, config: Optional[LoggerConfig] = None) -> None:
        self.app = app
        self.config = config if config is not None else DEFAULT_LOGGER_CONFIG.with_overrides()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        if self.config.skipper(request):
            await self.app(scope, receive, send)
            return

        exchange = _Exchange()

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                exchange.started = True
                exchange.status = message["status"]
                exchange.headers = Headers(raw=message.get("headers") or [])
            elif message["type"] == "http.response.body":
                exchange.bytes_out += len(message.get("body", b""))
            await send(message)

        error: Optional[Exception] = None
        start = time.perf_counter_ns()
        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            error = exc
            if not exchange.started:
                await self._send_error_response(request, exc, send_wrapper)
        stop = time.perf_counter_ns()

        self._emit(request, exchange, stop - start)

        if error is not None:
            raise error

    async def _send_error_response(
        self, request: Request, exc: Exception, send: Send
    ) -> None:
        try:
            response = await self.config.error_handler(request, exc)
            await response(request.scope, request.receive, send)
        except Exception as handler_exc:
            logger.error(
                "Error handler failed",
                path=request.url.path,
                exc_type=type(handler_exc).__name__,
                exc_message=str(handler_exc),
            )

    def _emit(self, request: Request, exchange: _Exchange, elapsed_ns: int) -> None:
        config = self.config
        with config.buffer_pool.borrow() as buf:
            try:
                record = build_record(request, exchange, elapsed_ns, config.clock())
                config.template.render(record, buf)
            except Exception as exc:
                logger.warning(
                    "Access log line dropped",
                    reason="render_failed",
                    path=request.url.path,
                    exc_type=type(exc).__name__,
                    exc_message=str(exc),
                )
                return

            try:
                config.sink.write(buf.getvalue())
            except (OSError, ValueError) as exc:
                logger.warning(
                    "Access log line dropped",
                    reason="write_failed",
                    path=request.url.path,
                    exc_message=str(exc),
                )


def request_logger_with_config(config: LoggerConfig) -> Callable[[ASGIApp], ASGIApp]:
    """Interceptor factory: wraps an ASGI app with access logging."""

    def intercept(app: ASGIApp) -> ASGIApp:
        return RequestLoggerMiddleware(app, config=config)

    return intercept


def request_logger() -> Callable[[ASGIApp], ASGIApp]:
    """Interceptor factory using the default configuration."""
    return request_logger_with_config(DEFAULT_LOGGER_CONFIG.with_overrides())


class FileSink:
    """
    Append-only access-log file.

    The file is opened on the first write after construction or after
    :meth:`close`, so an application can be started and stopped repeatedly
    with the same configuration.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._handle: Optional[TextIO] = None
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._handle is None

    def write(self, text: str) -> int:
        with self._lock:
            if self._handle is None:
                self._handle = open(self.path, "a", buffering=1, encoding="utf-8")
            return self._handle.write(text)

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None


def open_output(target: str) -> Optional[TextIO]:
    """
    Resolve an output setting: ``stdout`` (None, i.e. the live stream),
    ``stderr``, or a file path written through a :class:`FileSink`.
    """
    if target in ("", "stdout", "-"):
        return None
    if target == "stderr":
        return sys.stderr
    return FileSink(target)


def config_from_settings(settings: Settings) -> LoggerConfig:
    overrides = {
        "format": settings.ACCESS_LOG_FORMAT,
        "pool_size": settings.ACCESS_LOG_POOL_SIZE,
    }
    if settings.ACCESS_LOG_SKIP_PATHS:
        overrides["skipper"] = skip_paths(*settings.ACCESS_LOG_SKIP_PATHS)

    # Compile before touching the output target
    config = DEFAULT_LOGGER_CONFIG.with_overrides(**overrides)
    output = open_output(settings.ACCESS_LOG_OUTPUT)
    if output is None:
        return config
    return config.with_overrides(output=output)
