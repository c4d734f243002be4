"""
Shared API Middleware
======================

Middleware and exception handlers for the FastAPI wiring.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import HTMLResponse
from starlette.middleware.base import BaseHTTPMiddleware

from appframe.core import RequestTerminated
from appframe.shared.infrastructure.logging import get_context_logger, get_logger

logger = get_logger(__name__)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds correlation ID to requests for tracing.

    Correlation IDs link every log line written while serving a request.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))

        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs all requests and responses.

    Provides audit trail and debugging information.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = getattr(request.state, "correlation_id", "unknown")
        start_time = time.perf_counter()

        logger.info(
            "Request started",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "url": str(request.url),
                "client": request.client.host if request.client else None
            }
        )

        try:
            response = await call_next(request)

            response_time = time.perf_counter() - start_time
            logger.info(
                "Request completed",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "url": str(request.url),
                    "status_code": response.status_code,
                    "response_time_ms": int(response_time * 1000)
                }
            )

            return response

        except Exception as e:
            response_time = time.perf_counter() - start_time
            logger.error(
                "Request failed",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "url": str(request.url),
                    "error": str(e),
                    "response_time_ms": int(response_time * 1000)
                }
            )
            raise


async def request_terminated_handler(request: Request, exc: RequestTerminated) -> Response:
    """
    Turn a reported fatal error into the response the Application wrote.

    The request adapter, when there is one, holds the recorded status,
    headers and cookies; the body is the error page.
    """
    adapter = getattr(request.state, "request_adapter", None)
    status_code = exc.status_code
    headers = {}
    cookies = []
    if adapter is not None:
        status_code = adapter.status_code
        headers = {k: v for k, v in adapter.headers.items() if k != "Content-Type"}
        cookies = adapter.cookies

    request_logger = get_context_logger(__name__, getattr(request.state, "correlation_id", None))
    request_logger.info(
        "Request terminated by fatal error",
        extra={
            "kind": exc.kind,
            "error_message": exc.message,
        }
    )

    response = HTMLResponse(content=exc.body, status_code=status_code, headers=headers)
    for cookie in cookies:
        response.headers.append("Set-Cookie", cookie)
    return response
