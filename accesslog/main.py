from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from accesslog.core.config import Settings, get_settings
from accesslog.core.logging import configure_logging
from accesslog.middleware.request_logger import (
    FileSink,
    RequestLoggerMiddleware,
    config_from_settings,
)

logger = structlog.get_logger(__name__)


async def unhandled_error_response(request: Request, exc: Exception) -> JSONResponse:
    """
    Answer an unhandled exception raised by a route.

    Installed as the access-log error handler rather than as an
    ``Exception`` handler on the app, so it runs once per error.
    """
    logger.error(
        "Unhandled exception",
        exc_type=type(exc).__name__,
        exc_message=str(exc),
        path=str(request.url),
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An internal server error occurred.",
            "request_id": request.headers.get("X-Request-ID", "unknown"),
        },
    )


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    """
    FastAPI host with the access-log middleware installed from settings.

    The access-log configuration is built eagerly so a malformed
    ``ACCESS_LOG_FORMAT`` stops the application from being created.
    """
    settings = settings or get_settings()
    access_log_config = config_from_settings(settings).with_overrides(
        error_handler=unhandled_error_response,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        configure_logging(settings)
        logger.info(
            "Starting access-logged application",
            app_name=settings.APP_NAME,
            version=settings.APP_VERSION,
            environment=settings.APP_ENV,
            access_log_output=settings.ACCESS_LOG_OUTPUT,
            access_log_fields=[f.value for f in access_log_config.template.fields],
        )
        yield
        # Reopened on the next write if the app is started again
        if isinstance(access_log_config.output, FileSink):
            access_log_config.output.close()
        logger.info("Shutdown complete")

    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    application.add_middleware(RequestLoggerMiddleware, config=access_log_config)

    @application.get("/health", summary="Basic health check")
    async def health_check() -> dict:
        return {"status": "healthy", "version": settings.APP_VERSION}

    return application


app = create_application()
