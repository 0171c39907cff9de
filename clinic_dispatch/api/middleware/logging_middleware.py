"""
Request logging middleware.

Every request is tagged with an `X-Correlation-ID` (the caller's, when sent)
that the webhook route copies into the activity log, so a provider delivery
can be followed from the access log to its background processing.
"""

import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
SIGNATURE_HEADER = "X-Hub-Signature-256"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and latency of operator and webhook calls."""

    # Load balancer health checks
    EXCLUDE_PATHS: tuple[str, ...] = ("/health", "/favicon.ico")

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex[:8]
        request.state.correlation_id = correlation_id
        path = request.url.path

        if path.startswith(self.EXCLUDE_PATHS):
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id
            return response

        started = time.perf_counter()
        logger.info(f"[{correlation_id}] --> {request.method} {path}{self._describe(request)}")

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.error(f"[{correlation_id}] <-- {request.method} {path} failed after {elapsed_ms:.1f}ms: {e}")
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(level, f"[{correlation_id}] <-- {request.method} {path} {response.status_code} ({elapsed_ms:.1f}ms)")

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
        return response

    @staticmethod
    def _describe(request: Request) -> str:
        """Provider deliveries log their size and whether they were signed."""
        if request.method != "POST" or not request.url.path.endswith("/webhook"):
            return f" from {_client_ip(request)}"
        signed = "signed" if request.headers.get(SIGNATURE_HEADER) else "unsigned"
        size = request.headers.get("content-length", "?")
        return f" ({signed}, {size} bytes) from {_client_ip(request)}"


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
