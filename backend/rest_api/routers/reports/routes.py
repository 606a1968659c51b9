"""
Reporting endpoints.

- /api/licensee/quality: quality and compliance report
- /api/director/dashboard: director's day-at-a-glance
"""

from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rest_api.routers._common import (
    get_user_id,
    require_admin,
    require_camp_management,
    scoped_tenant_id,
)
from rest_api.services.domain import DirectorDashboardService, QualityService
from shared.infrastructure.db import get_db
from shared.security.auth import is_hq_admin
from shared.utils.schemas import ok

router = APIRouter(tags=["reports"])


@router.get("/api/licensee/quality")
def quality_report(
    start_date: date | None = None,
    end_date: date | None = None,
    tenant_id: int | None = None,
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    """Defaults to the current season (March 1 through September 30)."""
    target = tenant_id if tenant_id is not None and is_hq_admin(user) else user["tenant_id"]
    return ok(QualityService(db).report(target, start=start_date, end=end_date))


@router.get("/api/director/dashboard")
def director_dashboard(
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    return ok(DirectorDashboardService(db).get_dashboard(get_user_id(user), scoped_tenant_id(user)))
