"""
Royalty routers.

- admin: /api/admin/royalties (HQ)
- licensee: /api/licensee/royalties (own invoices)
"""

from .admin import router as admin_router
from .licensee import router as licensee_router

__all__ = ["admin_router", "licensee_router"]
