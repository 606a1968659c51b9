"""
JWT access tokens and the request-level checks built on them.

One token type serves every signed-in user (HQ staff, licensee staff,
parents). Claims: sub (user id as a string), tenant_id, roles, email, plus
the registered iss/aud/iat/exp and a jti used only to correlate log lines.
"""

from __future__ import annotations

import hashlib
import time
import uuid
from typing import Any

import jwt
from fastapi import Header

from shared.config.constants import Roles
from shared.config.settings import (
    JWT_SECRET,
    JWT_ISSUER,
    JWT_AUDIENCE,
    settings,
)
from shared.config.logging import get_logger
from shared.utils.exceptions import (
    InsufficientRoleError,
    SessionExpiredError,
    TenantAccessError,
    UnauthorizedError,
)

logger = get_logger(__name__)

ALGORITHM = "HS256"
TOKEN_TYPE = "access"


def sign_jwt(payload: dict[str, Any], ttl_seconds: int | None = None) -> str:
    """Sign `payload`; the lifetime defaults to the configured access-token expiry."""
    if ttl_seconds is None:
        ttl_seconds = settings.jwt_access_token_expire_minutes * 60
    issued_at = int(time.time())
    claims = dict(payload)
    claims.update(
        iss=JWT_ISSUER,
        aud=JWT_AUDIENCE,
        iat=issued_at,
        exp=issued_at + ttl_seconds,
        type=TOKEN_TYPE,
        jti=uuid.uuid4().hex,
    )
    return jwt.encode(claims, JWT_SECRET, algorithm=ALGORITHM)


def _check_claims(claims: dict[str, Any]) -> None:
    if "sub" not in claims or "tenant_id" not in claims:
        raise UnauthorizedError("Invalid token: missing claims")
    if claims.get("type", TOKEN_TYPE) != TOKEN_TYPE:
        raise UnauthorizedError("Invalid token: wrong token type")
    if not str(claims["sub"]).isdigit() or not isinstance(claims["tenant_id"], int):
        raise UnauthorizedError("Invalid token: malformed claims")


def verify_jwt(token: str) -> dict[str, Any]:
    """
    Decode and validate a token.

    An expired token raises SessionExpiredError so clients can tell "log in
    again" apart from a forged or broken token (UnauthorizedError).
    """
    try:
        claims = jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[ALGORITHM],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
        )
    except jwt.ExpiredSignatureError:
        raise SessionExpiredError()
    except jwt.InvalidTokenError as e:
        # The client only sees a generic message
        logger.warning("JWT rejected", error=str(e))
        raise UnauthorizedError("Invalid token")

    _check_claims(claims)
    if claims.get("jti"):
        logger.debug("JWT verified", jti=hashlib.sha256(claims["jti"].encode()).hexdigest()[:8])
    return claims


def get_bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise UnauthorizedError("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token.strip():
        raise UnauthorizedError("Invalid Authorization header format. Expected: Bearer <token>")
    return token.strip()


def current_user_context(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict[str, Any]:
    """
    Dependency returning the verified claims of the caller:

        def list_camps(ctx: dict = Depends(current_user_context)):
            tenant_id = ctx["tenant_id"]
    """
    return verify_jwt(get_bearer_token(authorization))


def require_roles(ctx: dict[str, Any], allowed: list[str]) -> None:
    if set(ctx.get("roles", [])).isdisjoint(allowed):
        raise InsufficientRoleError(list(allowed), user_id=ctx.get("sub"))


def is_hq_admin(ctx: dict[str, Any]) -> bool:
    return Roles.HQ_ADMIN in ctx.get("roles", [])


def require_tenant_access(ctx: dict[str, Any], tenant_id: int) -> None:
    """HQ admins act across licensees; everyone else only inside their own."""
    if not is_hq_admin(ctx) and ctx.get("tenant_id") != tenant_id:
        raise TenantAccessError(tenant_id, user_id=ctx.get("sub"))
