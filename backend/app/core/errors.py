"""
Error taxonomy and FastAPI exception handlers.
Every failure leaves the API as {"error", "message", "status"}.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings

logger = logging.getLogger(__name__)

INVALID_TOKEN_MESSAGE = "Invalid or expired token"


class AppError(Exception):
    status_code: int = 500
    error: str = "Server Error"

    def __init__(self, message: str, *, headers: dict[str, str] | None = None):
        super().__init__(message)
        self.message = message
        self.headers = headers


class ValidationError(AppError):
    status_code = 400
    error = "Validation Error"


class UnauthorizedError(AppError):
    status_code = 401
    error = "Authentication Error"


class InvalidTokenError(UnauthorizedError):
    """Token failed signature, expiry, type or store checks. Cause is never exposed."""

    def __init__(self, message: str = INVALID_TOKEN_MESSAGE):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class ForbiddenError(AppError):
    status_code = 403
    error = "Access Denied"


class NotFoundError(AppError):
    status_code = 404
    error = "Not Found"


class ConflictError(AppError):
    status_code = 409
    error = "Duplicate Error"


class UpstreamError(AppError):
    """External dependency (database, remote API) failed or timed out."""

    error = "Service Unavailable"

    def __init__(self, message: str, status_code: int = 503, retry_after: int | None = None):
        headers = {"Retry-After": str(retry_after)} if retry_after is not None else None
        super().__init__(message, headers=headers)
        self.status_code = status_code


def error_body(error: str, message: str, status: int) -> dict:
    return {"error": error, "message": message, "status": status}


def _log_request_error(request: Request, status: int, exc: BaseException) -> None:
    client_ip = request.client.host if request.client else None
    log = logger.error if status >= 500 else logger.info
    log(
        "%s %s -> %s %s: %s (ip=%s, ua=%s)",
        request.method,
        request.url.path,
        status,
        type(exc).__name__,
        exc,
        client_ip,
        request.headers.get("User-Agent"),
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    _log_request_error(request, exc.status_code, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.error, exc.message, exc.status_code),
        headers=exc.headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    message = "Validation failed: " + "; ".join(parts) if parts else "Validation failed"
    _log_request_error(request, 400, exc)
    return JSONResponse(status_code=400, content=error_body("Validation Error", message, 400))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        error, message = "Not Found", f"Route {request.method} {request.url.path} not found"
    else:
        error, message = "HTTP Error", str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(error, message, exc.status_code),
        headers=getattr(exc, "headers", None),
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    _log_request_error(request, 409, exc)
    return JSONResponse(status_code=409, content=error_body("Duplicate Error", "Resource already exists", 409))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = "Internal Server Error"
    if settings.debug:
        message += f": {type(exc).__name__}: {exc}"
    return JSONResponse(status_code=500, content=error_body("Server Error", message, 500))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
