"""
Application errors and the exception handlers that render them.

Every failure leaves the API as ``{"success": false, "error": ...}``.
"""
import logging
import traceback
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException

from onyx_api.core.config import settings

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Operational error carrying an HTTP status code."""

    def __init__(self, message: str, status_code: int = 500, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class NotFoundError(AppError):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


# Postgres SQLSTATE codes mapped to user-facing messages
_CONSTRAINT_MESSAGES = {
    "23505": "Duplicate field value entered",
    "23503": "Invalid reference to related resource",
    "23502": "Missing required field",
}

# SQLite reports constraint failures as text only
_SQLITE_MARKERS = {
    "UNIQUE constraint failed": "23505",
    "FOREIGN KEY constraint failed": "23503",
    "NOT NULL constraint failed": "23502",
}


def translate_integrity_error(exc: IntegrityError) -> str:
    """Map a relational constraint violation to a human-readable message."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is None:
        text = str(orig or exc)
        for marker, sqlstate in _SQLITE_MARKERS.items():
            if marker in text:
                code = sqlstate
                break
    return _CONSTRAINT_MESSAGES.get(code, "Database constraint violated")


def error_body(message: str, details: Optional[Any] = None, **extra: Any) -> dict:
    body = {"success": False, "error": message}
    if details is not None:
        body["details"] = details
    body.update(extra)
    return body


def _validation_message(error: dict) -> str:
    message = error.get("msg", "Invalid request")
    # pydantic prefixes messages raised from validators
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
    if location and error.get("type") in ("missing", "uuid_parsing", "int_parsing", "string_too_short", "string_too_long"):
        return f"{'.'.join(location)}: {message}"
    return message


def register_exception_handlers(app: FastAPI) -> None:
    """Install the envelope-rendering handlers on the application."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.details))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        # Routes may pass a full envelope as detail (e.g. quota denials)
        if isinstance(exc.detail, dict):
            content = {"success": False, **exc.detail}
        else:
            content = error_body(str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = _validation_message(errors[0]) if errors else "Invalid request"
        details = [
            {"field": ".".join(str(p) for p in e.get("loc", ())), "message": e.get("msg")}
            for e in errors
        ]
        return JSONResponse(status_code=400, content=error_body(message, details))

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        message = translate_integrity_error(exc)
        logger.warning(f"Constraint violation on {request.method} {request.url.path}: {message}")
        return JSONResponse(status_code=400, content=error_body(message))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        extra = {}
        if not settings.is_production:
            extra["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return JSONResponse(status_code=500, content=error_body("Internal Server Error", **extra))
