"""
Certification routers - /api/certifications/*
"""

from .routes import router

__all__ = ["router"]
