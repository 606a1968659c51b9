"""
Utilities module: Exceptions, validators, schemas.
"""

from shared.utils.exceptions import (
    ErrorKind,
    AppException,
    NotFoundError,
    ForbiddenError,
    ValidationError,
    ConflictError,
)
from shared.utils.validators import (
    escape_like_pattern,
    sanitize_search_term,
    validate_quantity,
)
from shared.utils.schemas import ErrorBody, Envelope, ok

__all__ = [
    # exceptions
    "ErrorKind",
    "AppException",
    "NotFoundError",
    "ForbiddenError",
    "ValidationError",
    "ConflictError",
    # validators
    "escape_like_pattern",
    "sanitize_search_term",
    "validate_quantity",
    # schemas
    "ErrorBody",
    "Envelope",
    "ok",
]
