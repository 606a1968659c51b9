"""
Messaging routers - /api/messages/*
"""

from .routes import router

__all__ = ["router"]
