"""
Shared Pydantic schemas used across the application.
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, EmailStr


T = TypeVar("T")


# =============================================================================
# Response envelope
# =============================================================================


class ErrorBody(BaseModel):
    """Typed error carried in every failed response."""

    code: str
    message: str


class Envelope(BaseModel, Generic[T]):
    """Uniform `{data, error}` response body."""

    data: T | None = None
    error: ErrorBody | None = None


def ok(data: Any) -> dict[str, Any]:
    """Wrap a successful payload in the response envelope."""
    return {"data": data, "error": None}


# =============================================================================
# Authentication Schemas
# =============================================================================


class LoginRequest(BaseModel):
    """Login request body."""

    email: EmailStr
    password: str


class UserInfo(BaseModel):
    """Basic user information included in auth responses."""

    id: int
    email: str
    tenant_id: int
    first_name: str | None = None
    last_name: str | None = None
    roles: list[str]


class LoginResponse(BaseModel):
    """Login response with JWT token."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int  # seconds
    user: UserInfo
