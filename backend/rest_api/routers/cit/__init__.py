"""
CIT routers - /api/cit/*
"""

from .routes import router

__all__ = ["router"]
