"""
Common utilities shared across routers.

Request schemas live in shared/utils (camp_schemas.py, admin_schemas.py)
so services never import from routers.
"""

from .base import (
    camp_scope,
    get_tenant_id,
    get_user_email,
    get_user_id,
    load_camp_day_for,
    load_camp_for,
    require_admin,
    require_camp_management,
    require_camp_ops,
    require_hq_admin,
    require_parent,
    scoped_tenant_id,
)
from .pagination import Pagination, get_pagination

__all__ = [
    # Caller helpers
    "get_user_id",
    "get_user_email",
    "get_tenant_id",
    "scoped_tenant_id",
    # Role dependencies
    "require_hq_admin",
    "require_admin",
    "require_camp_management",
    "require_camp_ops",
    "require_parent",
    # Resource scoping
    "camp_scope",
    "load_camp_for",
    "load_camp_day_for",
    # Pagination
    "Pagination",
    "get_pagination",
]
