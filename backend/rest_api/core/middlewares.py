"""
HTTP middlewares: correlation id, security headers, JSON-only bodies.
"""

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from rest_api.core.exception_handlers import error_response
from shared.config.settings import settings
from shared.infrastructure.correlation import CorrelationIdMiddleware
from shared.utils.exceptions import ErrorKind


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """The API only serves JSON, so the policy forbids everything else."""

    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
        "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    }

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.update(self.HEADERS)
        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class ContentTypeValidationMiddleware(BaseHTTPMiddleware):
    """
    415 for POST/PUT/PATCH bodies that are not JSON. The payment webhook is
    exempt because its signature is checked against the raw body.
    """

    METHODS_WITH_BODY = frozenset({"POST", "PUT", "PATCH"})
    EXEMPT_PATHS = frozenset({"/api/payments/webhook", "/api/health"})

    async def dispatch(self, request: Request, call_next):
        content_type = request.headers.get("content-type", "")
        if (
            request.method in self.METHODS_WITH_BODY
            and request.url.path not in self.EXEMPT_PATHS
            and content_type
            and not content_type.startswith("application/json")
        ):
            return error_response(415, ErrorKind.VALIDATION, "Unsupported Media Type. Use application/json")
        return await call_next(request)


def register_middlewares(app: FastAPI) -> None:
    # Last added runs first: correlation id wraps everything
    app.add_middleware(ContentTypeValidationMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
