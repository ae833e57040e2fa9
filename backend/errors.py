"""
Application error taxonomy and the JSON rendering shared by every handler.

Each error carries an HTTP status and a stable ``code`` the frontend can
branch on. Responses always look like::

    {"code": "...", "message": "...", "details": ..., "timestamp": "..."}
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    # Also used for resources that exist but belong to someone else.
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class InvalidTransitionError(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_TRANSITION"


class DuplicateAwardError(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "DUPLICATE_AWARD"


class InactiveUserError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "INACTIVE_USER"


class DependencyError(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "DEPENDENCY_ERROR"


class DatastoreUnavailableError(DependencyError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "DATABASE_UNAVAILABLE"


class InternalError(AppError):
    pass


_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    408: "REQUEST_TIMEOUT",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    429: "RATE_LIMIT_EXCEEDED",
}


def error_body(code: str, message: str, details: Any = None) -> dict:
    body = {
        "code": code,
        "message": message,
        "timestamp": datetime.utcnow().isoformat(),
    }
    if details is not None:
        body["details"] = details
    return body


def error_response(status_code: int, code: str, message: str, details: Any = None, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_body(code, message, details),
        headers=headers,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    else:
        logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
    message = exc.detail if isinstance(exc.detail, str) else code.replace("_", " ").capitalize()
    return error_response(exc.status_code, code, message, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        "Request validation failed",
        errors,
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    if isinstance(exc, OperationalError):
        return error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            DatastoreUnavailableError.code,
            "The database is unavailable. Please try again later.",
        )
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "DATABASE_ERROR",
        "A database error occurred. Please try again later.",
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unexpected error on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        InternalError.code,
        "An unexpected error occurred.",
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
