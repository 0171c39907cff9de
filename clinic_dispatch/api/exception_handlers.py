"""
Exception handlers.

Every error leaves the API as `{"error": true, "message", "status_code"}`
plus the request's correlation id. Channel failures that escape a route
become 502 (provider side) or 503 (channel misconfigured) with the
channel's stable error code.
"""

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from clinic_dispatch.domains.messaging.application.ports import ChannelConfigurationError, ChannelError

logger = logging.getLogger(__name__)


def _error_body(request: Request, status_code: int, message: Any, **extra: Any) -> dict[str, Any]:
    return {
        "error": True,
        "message": message,
        "status_code": status_code,
        "correlation_id": getattr(request.state, "correlation_id", None),
        **extra,
    }


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    http_exc = exc if isinstance(exc, HTTPException) else HTTPException(status_code=500, detail=str(exc))
    return JSONResponse(
        status_code=http_exc.status_code,
        content=_error_body(request, http_exc.status_code, http_exc.detail),
        headers=http_exc.headers,
    )


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Request bodies and query parameters that fail validation."""
    code = status.HTTP_422_UNPROCESSABLE_ENTITY
    if not isinstance(exc, RequestValidationError | ValidationError):
        return JSONResponse(status_code=code, content=_error_body(request, code, str(exc)))

    details = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(f"Validation error on {request.url.path}: {details}")
    return JSONResponse(status_code=code, content=_error_body(request, code, "Validation error", details=details))


async def channel_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """A provider call failed outside a use case's own error mapping."""
    if not isinstance(exc, ChannelError):
        return await global_exception_handler(request, exc)

    if isinstance(exc, ChannelConfigurationError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_502_BAD_GATEWAY
    logger.warning(f"Channel error on {request.method} {request.url.path}: {exc.code} {exc.message}")
    return JSONResponse(
        status_code=code,
        content=_error_body(request, code, exc.message, code=exc.code, retryable=exc.retryable),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unhandled exceptions: full traceback in the log, generic message to the caller."""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc!s}", exc_info=True)
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(status_code=code, content=_error_body(request, code, "Internal server error"))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(ChannelError, channel_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    logger.info("Exception handlers registered")
