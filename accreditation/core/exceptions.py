"""
Error taxonomy and global exception handlers.

Handlers prevent stack-trace leakage to clients: internal error text is only
echoed back when running with ``ENVIRONMENT=development``.
"""

from __future__ import annotations

import enum
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from accreditation.core.config import settings

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    MALFORMED = "malformed"
    TAMPERED_OR_WRONG_KEY = "tampered_or_wrong_key"
    EXPIRED = "expired"
    NOT_AUTHORIZED = "not_authorized"
    INACTIVE_USER = "inactive_user"
    STORE_UNAVAILABLE = "store_unavailable"
    VALIDATION_FAILED = "validation_failed"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


class AccreditationError(Exception):
    """Base class for errors that carry an :class:`ErrorKind`."""

    kind: ErrorKind = ErrorKind.VALIDATION_FAILED
    status_code: int = 400

    def __init__(self, message: str, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class CredentialError(AccreditationError):
    """Raised by the credential codec when a token cannot be trusted."""

    kind = ErrorKind.MALFORMED


class StoreUnavailableError(AccreditationError):
    kind = ErrorKind.STORE_UNAVAILABLE
    status_code = 503


class NotFoundError(AccreditationError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ConflictError(AccreditationError):
    kind = ErrorKind.CONFLICT
    status_code = 409


def _error_body(message: str, kind: ErrorKind | str | None = None) -> dict:
    body: dict = {"success": False, "error": message}
    if kind is not None:
        body["kind"] = kind.value if isinstance(kind, ErrorKind) else kind
    return body


def _internal_message(default: str, exc: Exception) -> str:
    if settings.is_development:
        return f"{default}: {exc}"
    return default


async def _accreditation_error_handler(
    request: Request, exc: AccreditationError
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: %s", request.method, request.url.path, exc.message
        )
        message = _internal_message("Service temporarily unavailable", exc)
    else:
        message = exc.message
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(message, exc.kind),
    )


async def _http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, **_error_body(str(exc.detail))},
        headers=getattr(exc, "headers", None),
    )


async def _validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "detail": jsonable_errors(exc),
            **_error_body("Validation failed", ErrorKind.VALIDATION_FAILED),
        },
    )


async def _rate_limit_handler(_request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content=_error_body(f"Too many requests: {exc.detail}"),
    )


async def _integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error(
        "Database integrity error on %s %s: %s", request.method, request.url.path, exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=409,
        content=_error_body(
            _internal_message("Database constraint violation", exc), ErrorKind.CONFLICT
        ),
    )


async def _sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(
        "Database error on %s %s: %s", request.method, request.url.path, exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content=_error_body(_internal_message("Internal database error", exc)),
    )


async def _generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content=_error_body(_internal_message("Internal server error", exc)),
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Strip non-serialisable context (e.g. raised ValueErrors) from errors."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(AccreditationError, _accreditation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _integrity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler)
