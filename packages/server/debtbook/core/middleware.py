"""
Security middleware: CSRF protection and security headers.
"""

from __future__ import annotations

import secrets

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from debtbook.core.errors import SAFE_METHODS, AuthorizationError, error_body

log = structlog.get_logger()

SESSION_COOKIE = "db_session"
CSRF_COOKIE = "db_csrf"
CSRF_HEADER = "X-CSRF-Token"

# ---------------------------------------------------------------------------
# Security Headers
# ---------------------------------------------------------------------------

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "0",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none';",
    "Strict-Transport-Security": "max-age=63072000; includeSubDomains; preload",
    "Cache-Control": "no-store",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach security headers to every response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers[header] = value
        return response


# ---------------------------------------------------------------------------
# CSRF Protection (Double-Submit Cookie)
# ---------------------------------------------------------------------------

class CSRFValidationError(AuthorizationError):
    code = "CSRF_VALIDATION_FAILED"


def _needs_csrf(request: Request) -> bool:
    """Only cookie-authenticated, state-changing requests are checked."""
    if request.method in SAFE_METHODS:
        return False
    if request.headers.get("Authorization"):
        return False
    return SESSION_COOKIE in request.cookies


class CSRFMiddleware(BaseHTTPMiddleware):
    """
    Double-submit cookie CSRF protection.

    The ``db_csrf`` cookie must be echoed in the ``X-CSRF-Token`` header.
    Bearer sessions from the mobile app carry no cookies and are exempt.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if not _needs_csrf(request):
            return await call_next(request)

        cookie_token = request.cookies.get(CSRF_COOKIE) or ""
        header_token = request.headers.get(CSRF_HEADER) or ""
        if not cookie_token or not secrets.compare_digest(cookie_token, header_token):
            log.warning("csrf.rejected", path=request.url.path)
            exc = CSRFValidationError("Invalid or missing CSRF token.")
            return JSONResponse(status_code=exc.status_code, content=error_body(exc))

        return await call_next(request)
