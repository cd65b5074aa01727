"""Global exception handlers for consistent error responses.

Every failure leaving a route is mapped to the flat ``{"error": "<message>"}``
body the public API promises:

- AppError subclasses → their own HTTP status and public message
- Starlette HTTP errors (404, 405) → ``{"error": ...}`` with the same status
- Request validation errors → 400 ``Invalid request body``
- Unexpected Exception → generic 500 (safety net)

Internal details stay in the logs; clients only see the public message.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from keygate.core.errors import AppError
from keygate.core.logging import get_request_id

logger = logging.getLogger(__name__)

_HTTP_ERROR_MESSAGES = {
    404: "Not found",
    405: "Method not allowed",
}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Map a domain error to its status code and public message.

    Each error is logged once, under its class-level ``log_event``. Server-side
    failures are logged at error level with their internal code, so upstream
    and persistence failures stay distinguishable even though clients receive
    the same generic message.
    """
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        exc.log_event,
        extra={
            "error_code": exc.code,
            "error_class": type(exc).__name__,
            "error_message": exc.message,
            "status_code": exc.status_code,
            "details": exc.details or {},
            "request_path": request.url.path,
            "request_id": get_request_id(),
        },
        exc_info=exc if exc.status_code >= 500 and exc.__cause__ is not None else None,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.client_message},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render routing errors (unknown path, wrong method) in the API's error shape."""
    message = _HTTP_ERROR_MESSAGES.get(exc.status_code, str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info(
        "request_validation_failed",
        extra={"request_path": request.url.path, "error_count": len(exc.errors())},
    )
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (no stack traces to client)."""
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Order matters: specific handlers registered before the general fallback.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(StarletteHTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(general_exception_handler)
