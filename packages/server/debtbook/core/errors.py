"""
Domain error taxonomy and the HTTP envelope they are rendered into.

Services raise these; the API layer never has to translate them by hand.
Every error leaves the store untouched because the request session is
rolled back before the handler runs.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

log = structlog.get_logger()

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}
TRANSIENT_RETRY_AFTER_SECONDS = 2


class DebtbookError(Exception):
    """Base class for all domain errors."""

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DebtbookError):
    """Bad input. ``fields`` maps a field name to its own message."""

    status_code = 422
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, fields: Optional[dict[str, str]] = None):
        super().__init__(message)
        self.fields = fields or {}


class AuthorizationError(DebtbookError):
    status_code = 403
    code = "NOT_AUTHORIZED"


class ConflictError(DebtbookError):
    status_code = 409
    code = "CONFLICT"


class NotFoundError(DebtbookError):
    status_code = 404
    code = "NOT_FOUND"


class TransientError(DebtbookError):
    """Store or network unavailable. Only reads are safe to retry blindly."""

    status_code = 503
    code = "TEMPORARILY_UNAVAILABLE"


class LedgerIntegrityError(DebtbookError):
    """The transaction log holds data the ledger cannot interpret."""

    status_code = 500
    code = "LEDGER_INTEGRITY"


def error_body(exc: DebtbookError) -> dict:
    body = {
        "code": exc.code,
        "message": exc.message,
        "status": exc.status_code,
    }
    if isinstance(exc, ValidationError) and exc.fields:
        body["fields"] = exc.fields
    return {"error": body}


async def debtbook_error_handler(request: Request, exc: DebtbookError) -> JSONResponse:
    headers = {}
    if isinstance(exc, TransientError) and request.method in SAFE_METHODS:
        headers["Retry-After"] = str(TRANSIENT_RETRY_AFTER_SECONDS)
    if exc.status_code >= 500:
        log.error("request.failed", path=request.url.path, code=exc.code, message=exc.message)
    else:
        log.info("request.rejected", path=request.url.path, code=exc.code)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI body/query validation failures in the same envelope."""
    fields = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        fields[".".join(loc) or "request"] = err.get("msg", "Invalid value")
    return JSONResponse(
        status_code=422,
        content=error_body(ValidationError("Invalid request", fields=fields)),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DebtbookError, debtbook_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
