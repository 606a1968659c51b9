"""
Reporting routers: licensee quality and the director dashboard.
"""

from .routes import router

__all__ = ["router"]
