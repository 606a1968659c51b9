"""
Authentication router.
Handles login and current-user info.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from rest_api.models import User, UserRole
from rest_api.routers._common import get_user_id
from shared.config.logging import audit_auth_event, auth_logger as logger, mask_email
from shared.config.settings import settings
from shared.infrastructure.db import get_db
from shared.security.auth import current_user_context, sign_jwt
from shared.security.password import verify_password
from shared.security.rate_limit import LOGIN_RATE_LIMIT, limiter
from shared.utils.exceptions import NotFoundError, UnauthorizedError
from shared.utils.schemas import LoginRequest, LoginResponse, UserInfo, ok

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _active_roles(db: Session, user: User) -> list[str]:
    return list(db.execute(
        select(UserRole.role).where(
            UserRole.user_id == user.id,
            UserRole.tenant_id == user.tenant_id,
            UserRole.is_active.is_(True),
        )
    ).scalars())


def _user_info(user: User, roles: list[str]) -> UserInfo:
    return UserInfo(
        id=user.id,
        email=user.email,
        tenant_id=user.tenant_id,
        first_name=user.first_name,
        last_name=user.last_name,
        roles=roles,
    )


@router.post("/login")
@limiter.limit(LOGIN_RATE_LIMIT)
def login(request: Request, body: LoginRequest, db: Session = Depends(get_db)) -> dict:
    """
    Authenticate a user and return an access token.

    The access token contains:
    - sub: user ID
    - tenant_id: licensee the user belongs to
    - roles: active roles within that tenant
    - email: user's email
    """
    client_ip = request.client.host if request.client else None
    candidates = db.execute(
        select(User).where(User.email == body.email.lower(), User.is_active.is_(True))
    ).scalars()
    # Email is unique per tenant, so the password picks the account.
    user = next((u for u in candidates if verify_password(body.password, u.password)), None)

    if not user:
        audit_auth_event(
            "LOGIN", email=body.email, success=False, reason="invalid_credentials", ip_address=client_ip
        )
        raise UnauthorizedError("Invalid email or password")

    roles = _active_roles(db, user)
    token = sign_jwt({
        "sub": str(user.id),
        "tenant_id": user.tenant_id,
        "roles": roles,
        "email": user.email,
    })
    audit_auth_event("LOGIN", user_id=user.id, email=user.email, ip_address=client_ip)
    logger.info("User logged in", user_id=user.id, email=mask_email(user.email))

    response = LoginResponse(
        access_token=token,
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        user=_user_info(user, roles),
    )
    return ok(response.model_dump())


@router.get("/me")
def me(db: Session = Depends(get_db), ctx: dict = Depends(current_user_context)) -> dict:
    """Return the signed-in user with roles re-read from the database."""
    user = db.scalar(select(User).where(User.id == get_user_id(ctx), User.is_active.is_(True)))
    if not user:
        raise NotFoundError("User", get_user_id(ctx))
    return ok(_user_info(user, _active_roles(db, user)).model_dump())
