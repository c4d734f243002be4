"""
Web Wiring
==========

FastAPI application for serving appframe Applications from a long-lived
worker process.

Each request gets its own Application, built around a
StarletteRequestAdapter, while the handle registry and the capability
slots are shared by the whole process.

Usage in a route:
    @app.get("/hello")
    def hello(application: Application = Depends(get_application)):
        template = application.get_template("hello.html")
        return HTMLResponse(template.render())
"""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncGenerator, AsyncIterator, Optional

import anyio
from fastapi import FastAPI, Request

from appframe import __version__
from appframe.app import Application
from appframe.config import AppConfig, Settings, get_settings
from appframe.core import RequestTerminated
from appframe.infrastructure.capabilities import get_capabilities
from appframe.infrastructure.database import get_handle_registry
from appframe.infrastructure.request import StarletteRequestAdapter
from appframe.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    request_terminated_handler,
)
from appframe.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@lru_cache()
def load_app_config() -> AppConfig:
    """The AppConfig named by APPFRAME_CONFIG_PATH, or an empty one."""
    settings = get_settings()
    if settings.config_path is None:
        return AppConfig()
    return AppConfig.from_yaml(settings.config_path)


async def get_application(request: Request) -> AsyncIterator[Application]:
    """
    FastAPI dependency: one Application per request.

    Applications share the process handle registry and collaborators, so
    only one is live at a time: the app-wide lock is held until the
    request is done. The config is copied so per-request defaults (myURL,
    ...) never leak into the next request.
    """
    async with request.app.state.application_lock:
        adapter = StarletteRequestAdapter(request)
        request.state.request_adapter = adapter
        yield Application(
            load_app_config().model_copy(deep=True),
            adapter,
            registry=get_handle_registry(),
            capabilities=get_capabilities(),
        )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        setup_logging(settings.log_level, settings.environment)
        logger.info("Starting appframe", extra={
            "version": __version__,
            "environment": settings.environment
        })
        yield
        logger.info("appframe shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.application_lock = anyio.Lock()

    app.add_middleware(CorrelationIDMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_exception_handler(RequestTerminated, request_terminated_handler)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check for load balancers."""
        return {
            "status": "healthy",
            "version": __version__,
            "environment": settings.environment,
            "database_handles": len(get_handle_registry()),
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level="info"
    )
