"""Middleware for error handling and logging."""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import (
    ConfigurationError,
    ExecutionStateError,
    GraphReferenceError,
    PersistenceError,
    RunTriggerError,
    ValidationError,
    WorkflowCanvasError,
    create_error_response,
)
from .logging import get_logger, reset_logging_context, set_logging_context

logger = get_logger(__name__)


def status_code_for_error(error: WorkflowCanvasError) -> int:
    """Determine the HTTP status code for a workflow canvas error."""
    if isinstance(error, GraphReferenceError):
        return 404
    elif isinstance(error, ValidationError):
        return 400
    elif isinstance(error, ExecutionStateError):
        if "not found" in error.message.lower():
            return 404
        return 409
    elif isinstance(error, RunTriggerError):
        return 502
    elif isinstance(error, (PersistenceError, ConfigurationError)):
        return 500
    else:
        return 500


async def workflow_canvas_error_handler(request: Request, error: WorkflowCanvasError) -> JSONResponse:
    """Exception handler turning domain errors into structured JSON responses."""
    status_code = status_code_for_error(error)
    log = logger.warning if status_code < 500 else logger.error
    log(
        f"{error.error_code} on {request.method} {request.url.path}: {error.message}",
        extra={"error_details": error.to_dict()}
    )
    return JSONResponse(status_code=status_code, content=create_error_response(error))


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware for request tracing and last-resort error handling."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with error handling."""
        request_id = str(uuid.uuid4())
        start_time = time.time()

        context_token = set_logging_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown"
        )

        try:
            logger.info(f"Request started: {request.method} {request.url.path}")

            response = await call_next(request)

            duration = time.time() - start_time
            logger.info(
                f"Request completed: {request.method} {request.url.path} - "
                f"Status: {response.status_code} - Duration: {duration:.3f}s"
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except WorkflowCanvasError as e:
            duration = time.time() - start_time
            logger.warning(
                f"Workflow canvas error: {request.method} {request.url.path} - "
                f"Error: {e.error_code} - Duration: {duration:.3f}s",
                extra={"error_details": e.to_dict()}
            )
            return JSONResponse(
                status_code=status_code_for_error(e),
                content=create_error_response(e),
                headers={"X-Request-ID": request_id}
            )

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Unexpected error: {request.method} {request.url.path} - "
                f"Error: {str(e)} - Duration: {duration:.3f}s",
                exc_info=True
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalServerError",
                    "message": "An unexpected error occurred",
                    "details": {
                        "error_type": type(e).__name__,
                        "timestamp": datetime.now(timezone.utc).isoformat()
                    },
                    "request_id": request_id
                },
                headers={"X-Request-ID": request_id}
            )

        finally:
            reset_logging_context(context_token)


class PerformanceMonitoringMiddleware(BaseHTTPMiddleware):
    """Middleware flagging slow requests."""

    def __init__(self, app, slow_request_threshold: float = 5.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        if duration > self.slow_request_threshold:
            logger.warning(
                f"Slow request detected: {request.method} {request.url.path} - "
                f"Duration: {duration:.3f}s (threshold: {self.slow_request_threshold}s)"
            )

        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response
