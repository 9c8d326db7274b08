"""Application error taxonomy and the FastAPI handlers that render it.

Every error leaves the API in the same envelope as a successful call::

    {"success": false, "message": "...", "technicalDetails": "..."}

``technicalDetails`` carries the traceback and is only included outside
production.
"""
from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from .config import get_settings

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map onto an HTTP status code."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Something went wrong on our end. Please try again."

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Access denied. Please log in first."


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "This information already exists. Please try with different details."


class InternalError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def _envelope(status_code: int, message: str, exc: BaseException, **extra: Any) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "message": message, **extra}
    if not get_settings().is_production:
        content["technicalDetails"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code, content=content)


def _field_name(loc: tuple) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path", "form")]
    return ".".join(parts) or "body"


def describe_validation_errors(errors: list[dict[str, Any]]) -> str:
    """Collapse pydantic errors into one message, naming missing fields first."""

    missing = [_field_name(err["loc"]) for err in errors if err.get("type") == "missing"]
    invalid = [f"{_field_name(err['loc'])}: {err['msg']}" for err in errors if err.get("type") != "missing"]
    parts = []
    if missing:
        parts.append(f"Missing required fields: {', '.join(missing)}")
    parts.extend(invalid)
    return "; ".join(parts) or "Validation failed"


async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Internal error: %s", exc.message)
    extra = {"errors": exc.details} if exc.details else {}
    return _envelope(exc.status_code, exc.message, exc, **extra)


async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return _envelope(status.HTTP_400_BAD_REQUEST, describe_validation_errors(list(exc.errors())), exc)


async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    response = _envelope(exc.status_code, str(exc.detail), exc)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def unhandled_exception_handler(_: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error")
    return _envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or AppError.default_message, exc)


def install_error_handlers(app: FastAPI) -> None:
    """Register the envelope-producing handlers on an app."""

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
