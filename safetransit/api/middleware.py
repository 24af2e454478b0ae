"""Middleware for the Safe Transit API"""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from safetransit.api.models import ErrorResponse
from safetransit.metrics import ERROR_COUNT, REQUEST_COUNT, REQUEST_DURATION

logger = logging.getLogger(__name__)


def _endpoint_label(request: Request) -> str:
    """Route template for metrics, so report ids do not become labels."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request and records request metrics.

    Client addresses are not logged; reports must not be linkable to
    a submitter through the request log.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.time()

        logger.info(
            "Request started",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed_time = time.time() - start_time
            logger.error(
                "Request failed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error_type": type(e).__name__,
                    "response_time_ms": round(elapsed_time * 1000, 2)
                },
                exc_info=True
            )
            raise

        elapsed_time = time.time() - start_time
        endpoint = _endpoint_label(request)
        REQUEST_COUNT.labels(request.method, endpoint, response.status_code).inc()
        REQUEST_DURATION.labels(request.method, endpoint).observe(elapsed_time)

        logger.info(
            "Request completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": round(elapsed_time * 1000, 2)
            }
        )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_time:.3f}s"
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Last-resort error handling.

    Domain errors are turned into responses by the application's exception
    handlers; anything that escapes them ends up here as a generic 500. Internal
    messages are never returned.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except Exception as e:
            ERROR_COUNT.labels(error_type=type(e).__name__).inc()
            logger.error(f"Unhandled exception: {type(e).__name__}", exc_info=True)
            return self._create_error_response(
                status_code=500,
                error="InternalServerError",
                message="An unexpected error occurred",
                request=request
            )

    def _create_error_response(
        self,
        status_code: int,
        error: str,
        message: str,
        request: Request
    ) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        error_response = ErrorResponse(error=error, message=message, details={})

        return JSONResponse(
            status_code=status_code,
            content=error_response.model_dump(mode="json"),
            headers={"X-Request-ID": request_id}
        )

