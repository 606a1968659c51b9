"""
Registration routers - /api/registrations/*
"""

from .routes import router

__all__ = ["router"]
