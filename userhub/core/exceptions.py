"""
Error taxonomy and global exception handlers.

Every error leaves the API in the same envelope::

    {"success": false, "message": "...", "errors": [{"field": ..., "message": ...}]}

Store and framework errors are translated to that shape here; unexpected
faults are logged and answered with a generic 500 (no stack-trace leakage).
"""

from __future__ import annotations

import logging
import re
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

# postgres: 'Key (email)=(a@b.c) already exists'; sqlite: 'UNIQUE constraint failed: users.email'
_PG_KEY_RE = re.compile(r"Key \((\w+)\)=")
_SQLITE_UNIQUE_RE = re.compile(r"UNIQUE constraint failed: \w+\.(\w+)")

_LOCATIONS = {"body", "query", "path", "header", "cookie"}
_CAMEL_BOUNDARY_RE = re.compile(r"(?<!^)(?=[A-Z])")


# ── Taxonomy ────────────────────────────────────────────────────────
class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        errors: list[dict[str, str]] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "validation error"


class DuplicateError(AppError):
    status_code = 409
    default_message = "Duplicate field error"


class Unauthorized(AppError):
    status_code = 401
    default_message = "Authentication required"


class Forbidden(AppError):
    status_code = 403
    default_message = "access denied"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class TooManyRequests(AppError):
    status_code = 429
    default_message = "Too many request from this IP, please try again later"


class InternalError(AppError):
    status_code = 500
    default_message = "Internal server error"


# ── Helpers ─────────────────────────────────────────────────────────
def error_body(message: str, errors: list[dict[str, str]] | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return body


def duplicate_field(exc: IntegrityError) -> str | None:
    """Best-effort extraction of the column behind a unique violation."""
    text = str(exc.orig)
    match = _PG_KEY_RE.search(text) or _SQLITE_UNIQUE_RE.search(text)
    return match.group(1) if match else None


def _label(field: str) -> str:
    """``currentPassword`` -> ``Current password``."""
    words = _CAMEL_BOUNDARY_RE.sub(" ", field.rsplit(".", 1)[-1]).lower()
    return words[:1].upper() + words[1:]


def _field_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        if len(loc) > 1 and loc[0] in _LOCATIONS:
            loc = loc[1:]
        field = ".".join(loc) or "body"
        kind = err.get("type", "")
        if kind == "missing":
            message = f"{_label(field)} is required"
        elif kind == "extra_forbidden":
            message = f"{field} is not allowed"
        else:
            message = str(err.get("msg", "Invalid value")).removeprefix("Value error, ")
        errors.append({"field": field, "message": message})
    return errors


# ── Handlers ────────────────────────────────────────────────────────
async def _app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Internal error: %s", exc.message, exc_info=exc.__cause__)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.errors))


async def _validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content=error_body("validation error", _field_errors(exc)))


async def _http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def _integrity_error_handler(_request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error("Database integrity error: %s", exc)
    field = duplicate_field(exc)
    if field is None:
        return JSONResponse(status_code=409, content=error_body("Database constraint violation"))
    return JSONResponse(
        status_code=409,
        content=error_body(
            "Duplicate field error",
            [{"field": field, "message": f"{field} already exists"}],
        ),
    )


async def _data_error_handler(_request: Request, exc: DataError) -> JSONResponse:
    logger.warning("Database rejected value: %s", exc)
    return JSONResponse(
        status_code=400,
        content=error_body("Invalid data format"),
    )


async def _sqlalchemy_error_handler(_request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error: %s", exc, exc_info=True)
    return JSONResponse(status_code=500, content=error_body("Internal server error"))


async def _generic_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(status_code=500, content=error_body("Internal server error"))


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(AppError, _app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _integrity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DataError, _data_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler)
