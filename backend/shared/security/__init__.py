"""
Security: JWT access tokens, password hashing, request rate limits.
"""

from shared.security.auth import (
    sign_jwt,
    verify_jwt,
    get_bearer_token,
    current_user_context,
    require_roles,
    require_tenant_access,
    is_hq_admin,
)
from shared.security.password import hash_password, verify_password
from shared.security.rate_limit import (
    limiter,
    rate_limit_exceeded_handler,
    LOGIN_RATE_LIMIT,
    CHECKOUT_RATE_LIMIT,
)

__all__ = [
    "sign_jwt",
    "verify_jwt",
    "get_bearer_token",
    "current_user_context",
    "require_roles",
    "require_tenant_access",
    "is_hq_admin",
    "hash_password",
    "verify_password",
    "limiter",
    "rate_limit_exceeded_handler",
    "LOGIN_RATE_LIMIT",
    "CHECKOUT_RATE_LIMIT",
]
