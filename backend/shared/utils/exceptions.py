"""
API exceptions.

Each exception class fixes an HTTP status and an ErrorKind; the exception
handlers render both into the `{"data": null, "error": {"code", "message"}}`
envelope. Exceptions are logged once, when raised, with whatever keyword
context the caller passes:

    raise NotFoundError("Camp", camp_id)
    raise ForbiddenError("unlock camps", user_id=user_id)
    raise InvalidTransitionError("Camp", camp.status, new_status)
"""

from enum import Enum
from typing import Any

from fastapi import HTTPException, status

from shared.config.logging import get_logger

logger = get_logger(__name__)


class ErrorKind(str, Enum):
    """Error codes exposed to API clients."""

    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    UNAUTHORIZED = "unauthorized"
    VALIDATION = "validation"
    INVALID_STATE = "invalid_state"
    INVALID_TRANSITION = "invalid_transition"
    CONFLICT = "conflict"
    SESSION_EXPIRED = "session_expired"
    PAYMENT_REQUIRED = "payment_required"
    EXTERNAL_SERVICE = "external_service"
    RATE_LIMITED = "rate_limited"
    INTERNAL = "internal"


_KIND_BY_STATUS = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.UNAUTHORIZED,
    402: ErrorKind.PAYMENT_REQUIRED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    405: ErrorKind.VALIDATION,
    409: ErrorKind.CONFLICT,
    422: ErrorKind.VALIDATION,
    429: ErrorKind.RATE_LIMITED,
    502: ErrorKind.EXTERNAL_SERVICE,
    503: ErrorKind.EXTERNAL_SERVICE,
}


def kind_for_status(status_code: int) -> ErrorKind:
    """Error kind for plain HTTPExceptions raised by FastAPI or Starlette."""
    return _KIND_BY_STATUS.get(status_code, ErrorKind.INTERNAL)


class AppException(HTTPException):
    """Base class for every error the API reports on purpose."""

    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: ErrorKind = ErrorKind.INTERNAL
    log_level: str = "warning"

    def __init__(
        self,
        detail: str,
        headers: dict[str, str] | None = None,
        status_code: int | None = None,
        **log_context: Any,
    ):
        status_code = status_code or self.http_status
        getattr(logger, self.log_level)(
            detail, status_code=status_code, error_code=self.code.value, **log_context
        )
        super().__init__(status_code=status_code, detail=detail, headers=headers)

    @property
    def message(self) -> str:
        return str(self.detail)


# 404


class NotFoundError(AppException):
    """
    Entity missing, or hidden from the caller.

        raise NotFoundError("Camp", 123)            -> "Camp with ID 123 not found"
        raise NotFoundError("Thread", detail="Thread not found or access denied")
    """

    http_status = status.HTTP_404_NOT_FOUND
    code = ErrorKind.NOT_FOUND

    def __init__(
        self,
        entity: str,
        entity_id: int | str | None = None,
        detail: str | None = None,
        **log_context: Any,
    ):
        if detail is None:
            detail = f"{entity} not found" if entity_id is None else f"{entity} with ID {entity_id} not found"
        super().__init__(detail, entity=entity, entity_id=entity_id, **log_context)


# 401 / 403


class UnauthorizedError(AppException):
    http_status = status.HTTP_401_UNAUTHORIZED
    code = ErrorKind.UNAUTHORIZED

    def __init__(self, detail: str = "Authentication required", **log_context: Any):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"}, **log_context)


class SessionExpiredError(UnauthorizedError):
    """Access token expired; the client has to log in again."""

    code = ErrorKind.SESSION_EXPIRED

    def __init__(self, **log_context: Any):
        super().__init__("Session expired. Please log in again.", **log_context)


class ForbiddenError(AppException):
    """
    Authenticated but not allowed. `action` completes "Not authorized to ...".
    """

    http_status = status.HTTP_403_FORBIDDEN
    code = ErrorKind.FORBIDDEN

    def __init__(self, action: str | None = None, **log_context: Any):
        detail = f"Not authorized to {action}" if action else "Access denied"
        super().__init__(detail, action=action, **log_context)


class TenantAccessError(ForbiddenError):
    """Resource belongs to another licensee."""

    def __init__(self, tenant_id: int | None = None, **log_context: Any):
        super().__init__("access this organization", tenant_id=tenant_id, **log_context)


class InsufficientRoleError(ForbiddenError):
    def __init__(self, required_roles: list[str], **log_context: Any):
        super().__init__(
            f"perform this action (requires role: {', '.join(required_roles)})",
            required_roles=required_roles,
            **log_context,
        )


# 400


class ValidationError(AppException):
    """Bad input, or an operation that does not fit the entity's current state."""

    http_status = status.HTTP_400_BAD_REQUEST
    code = ErrorKind.VALIDATION


class InvalidStateError(ValidationError):
    """
    Operation not allowed in the entity's current state.

    Without an explicit `detail` the message names the current state and,
    when given, the states that would have been accepted.
    """

    code = ErrorKind.INVALID_STATE

    def __init__(
        self,
        entity: str,
        current_state: str | None = None,
        expected_states: list[str] | None = None,
        detail: str | None = None,
        **log_context: Any,
    ):
        if detail is None and expected_states:
            detail = f"{entity} is '{current_state}', expected: {', '.join(expected_states)}"
        elif detail is None:
            detail = f"{entity} cannot be '{current_state}' for this operation"
        super().__init__(detail, entity=entity, current_state=current_state, **log_context)


class InvalidTransitionError(ValidationError):
    code = ErrorKind.INVALID_TRANSITION

    def __init__(self, entity: str, from_status: str, to_status: str, **log_context: Any):
        super().__init__(
            f"Cannot transition from {from_status} to {to_status}",
            entity=entity,
            from_status=from_status,
            to_status=to_status,
            **log_context,
        )


class DuplicateEntityError(ValidationError):
    code = ErrorKind.CONFLICT

    def __init__(self, entity: str, identifier: str | None = None, **log_context: Any):
        detail = f"{entity} with identifier '{identifier}' already exists" if identifier else f"{entity} already exists"
        super().__init__(detail, entity=entity, identifier=identifier, **log_context)


class PaymentAmountError(ValidationError):
    def __init__(self, amount: int, reason: str, **log_context: Any):
        super().__init__(f"Invalid payment amount ({amount}): {reason}", amount=amount, **log_context)


class WebhookSignatureError(ValidationError):
    """Webhook rejected before any state is touched."""

    def __init__(self, reason: str = "Invalid webhook signature", **log_context: Any):
        super().__init__(reason, **log_context)


# 409


class ConflictError(AppException):
    http_status = status.HTTP_409_CONFLICT
    code = ErrorKind.CONFLICT


class AlreadyPaidError(ConflictError):
    def __init__(self, registration_id: int, **log_context: Any):
        super().__init__(
            f"Registration {registration_id} is already paid",
            registration_id=registration_id,
            **log_context,
        )


# 502 / 503


class ExternalServiceError(AppException):
    """
    The payment processor or email provider failed.

    `is_unavailable` (an open circuit, an unconfigured provider) maps to 503
    with an optional Retry-After; anything else is a 502.
    """

    http_status = status.HTTP_502_BAD_GATEWAY
    code = ErrorKind.EXTERNAL_SERVICE
    log_level = "error"

    def __init__(
        self,
        service: str,
        is_unavailable: bool = False,
        retry_after: int | None = None,
        detail: str | None = None,
        **log_context: Any,
    ):
        if is_unavailable:
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            detail = detail or f"{service} service temporarily unavailable"
        else:
            status_code = self.http_status
            detail = detail or f"Error communicating with {service}"
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        super().__init__(detail, headers=headers, status_code=status_code, service=service, **log_context)
