"""
Per-IP request limits (slowapi) for login and checkout.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from shared.config.logging import audit_rate_limit_event
from shared.config.settings import settings
from shared.utils.exceptions import ErrorKind

limiter = Limiter(key_func=get_remote_address)

LOGIN_RATE_LIMIT = f"{settings.login_rate_limit}/{settings.login_rate_window} seconds"
CHECKOUT_RATE_LIMIT = "20/minute"


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    client_ip = get_remote_address(request)
    audit_rate_limit_event(
        context=request.url.path,
        identifier=client_ip,
        limit=str(exc.detail),
        ip_address=client_ip,
    )
    error = {"code": ErrorKind.RATE_LIMITED.value, "message": f"Rate limit exceeded: {exc.detail}. Try again later."}
    return JSONResponse(status_code=429, content={"data": None, "error": error})
