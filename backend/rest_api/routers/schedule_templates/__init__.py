"""
Schedule template routers - /api/schedule-templates/*
"""

from .routes import router

__all__ = ["router"]
