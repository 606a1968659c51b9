"""
User routers - /api/users/*
"""

from .routes import router

__all__ = ["router"]
