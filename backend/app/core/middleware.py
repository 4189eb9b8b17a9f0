"""HTTP middleware: security headers, request timeout, request body size limit."""

from __future__ import annotations

import asyncio
import logging
import re

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.core.errors import error_body

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUEST_BYTES = 5 * 1024 * 1024
_SIZE_UNITS = {"b": 1, "kb": 1024, "mb": 1024 ** 2, "gb": 1024 ** 3}
_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(b|kb|mb|gb)$")


def parse_size(size: str) -> int:
    """'5mb' -> 5242880. Unparseable values fall back to 5 MB."""
    match = _SIZE_RE.match(size.strip().lower())
    if not match:
        return DEFAULT_MAX_REQUEST_BYTES
    value, unit = match.groups()
    return int(float(value) * _SIZE_UNITS[unit])


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if getattr(settings, "enable_hsts", False):
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject bodies whose Content-Length exceeds the limit with 413."""

    def __init__(self, app, max_size: str = "5mb"):
        super().__init__(app)
        self.max_size = max_size
        self.max_bytes = parse_size(max_size)

    async def dispatch(self, request, call_next):
        try:
            content_length = int(request.headers.get("content-length") or 0)
        except ValueError:
            content_length = 0
        if content_length > self.max_bytes:
            return JSONResponse(
                status_code=413,
                content=error_body(
                    "Payload Too Large",
                    f"Request body exceeds maximum size of {self.max_size}",
                    413,
                ),
            )
        return await call_next(request)


class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """Answer 408 when the downstream handler runs longer than timeout seconds."""

    def __init__(self, app, timeout: float = 30.0):
        super().__init__(app)
        self.timeout = timeout

    async def dispatch(self, request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Request timed out after %ss: %s %s", self.timeout, request.method, request.url.path)
            return JSONResponse(
                status_code=408,
                content=error_body(
                    "Request Timeout",
                    "Request took too long to process. Please try again.",
                    408,
                ),
            )
