"""
API error hierarchy and the handlers that render it.

Every error leaves the API in one envelope:

    {"success": false, "error": "<summary>", "message": "<detail, development only>"}

Validation errors additionally carry `details`.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

# MySQL server and client codes raised when no usable connection exists:
# too many connections, access denied, unknown database, can't connect,
# unknown host, server gone away, lost connection, lost during reconnect.
MYSQL_CONNECTION_ERROR_CODES = frozenset({1040, 1045, 1049, 2002, 2003, 2005, 2006, 2013, 2055})
SQLITE_CONNECTION_ERROR_MESSAGES = ("unable to open database file",)


class CatalogError(Exception):
    """
    Base class for errors the API reports to clients.

    Attributes:
        error: Short client-facing summary.
        status_code: HTTP status code.
        details: Optional structured detail (validation problems).
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Internal server error"

    def __init__(self, message: str | None = None, details: Any = None) -> None:
        self.message = message or self.error
        self.details = details
        super().__init__(self.message)


class ValidationError(CatalogError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Validation error"


class NotFoundError(CatalogError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Resource not found"


class DatabaseUnavailableError(CatalogError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "Database error"


def is_connection_error(exc: SQLAlchemyError) -> bool:
    """
    True when `exc` means the database could not be reached, as opposed to a
    failing statement (unknown column, missing table, lock timeout).
    """
    if isinstance(exc, InterfaceError) or getattr(exc, "connection_invalidated", False):
        return True
    if not isinstance(exc, OperationalError):
        return False

    args = getattr(exc.orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0] in MYSQL_CONNECTION_ERROR_CODES
    message = str(exc.orig).lower()
    return any(m in message for m in SQLITE_CONNECTION_ERROR_MESSAGES)


def error_body(error: str, *, message: str | None = None, details: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "error": error}
    if message is not None:
        body["message"] = message
    if details is not None:
        body["details"] = details
    return body


def install_error_handlers(app: FastAPI, *, expose_messages: bool) -> None:
    """
    Register exception handlers on `app`.

    Args:
        expose_messages: Include exception text in `message` (development).
    """

    def _message(exc: Exception) -> str | None:
        return str(exc) if expose_messages else None

    @app.exception_handler(CatalogError)
    async def catalog_error_handler(request: Request, exc: CatalogError):
        logger.warning(
            "API_ERROR path=%s status=%d error=%s", request.url.path, exc.status_code, exc.message
        )
        # Validation and not-found messages are written for clients
        message = exc.message if exc.status_code < 500 or expose_messages else None
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.error, message=message, details=exc.details),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())),
                "message": err.get("msg"),
            }
            for err in exc.errors()
        ]
        logger.warning("API_VALIDATION_FAILED path=%s errors=%d", request.url.path, len(details))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(ValidationError.error, details=details),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            error = "Route not found"
        else:
            error = str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content=error_body(error))

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        if is_connection_error(exc):
            logger.error("API_DB_UNAVAILABLE path=%s error=%s", request.url.path, exc)
            return JSONResponse(
                status_code=DatabaseUnavailableError.status_code,
                content=error_body(DatabaseUnavailableError.error, message=_message(exc)),
            )

        logger.exception("API_DB_ERROR path=%s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(CatalogError.error, message=_message(exc)),
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("API_UNEXPECTED_ERROR path=%s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(CatalogError.error, message=_message(exc)),
        )
