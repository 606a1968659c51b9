"""
Camp routers - /api/camps/*

- routes: camp setup (status, add-ons, groups, grouping, staff, compensation)
- schedule: per-day schedule blocks
- hq: daily operations and the conclusion workflow
"""

from fastapi import APIRouter

from .hq import router as hq_router
from .routes import router as camps_router
from .schedule import router as schedule_router

router = APIRouter()
router.include_router(camps_router)
router.include_router(schedule_router)
router.include_router(hq_router)

__all__ = ["router"]
