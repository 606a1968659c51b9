"""
Licensee Quality Domain Service.

Quality and compliance report for a licensee's camps:
customer satisfaction, complaint ratio and curriculum adherence.
Metrics are recomputed on every request.
"""

from datetime import date
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rest_api.models import (
    Camp,
    CampDay,
    CampDayRecap,
    CampGroup,
    CampIncident,
    Registration,
    SessionCompensation,
)
from shared.config.constants import CampStatus, IncidentCategory, RegistrationStatus
from shared.config.logging import get_logger

logger = get_logger(__name__)

EXCELLENT = "excellent"
GOOD = "good"
NEEDS_ATTENTION = "needs_attention"
CRITICAL = "critical"

CSAT_EXCELLENT = 4.5
CSAT_ACCEPTABLE = 4.0
COMPLAINTS_LOW = 1.0
COMPLAINTS_ACCEPTABLE = 3.0
CURRICULUM_HIGH = 90.0
CURRICULUM_ACCEPTABLE = 70.0

REPORTED_STATUSES = (CampStatus.COMPLETED, CampStatus.IN_PROGRESS)


def season_range(today: date | None = None) -> tuple[date, date]:
    """Camp season: March 1 through September 30 of the current year."""
    year = (today or date.today()).year
    return date(year, 3, 1), date(year, 9, 30)


def quality_status(csat: float | None, complaint_ratio: float, curriculum: float) -> str:
    csat_good = csat is None or csat >= CSAT_EXCELLENT
    csat_ok = csat is None or csat >= CSAT_ACCEPTABLE
    complaints_ok = complaint_ratio < COMPLAINTS_ACCEPTABLE

    if csat_good and complaint_ratio < COMPLAINTS_LOW and curriculum >= CURRICULUM_HIGH:
        return EXCELLENT
    if csat_ok and complaints_ok and curriculum >= CURRICULUM_ACCEPTABLE:
        return GOOD
    if not csat_ok or not complaints_ok:
        return CRITICAL
    return NEEDS_ATTENTION


def curriculum_adherence(total_days: int, days_with_recap: int, groups_used: bool) -> float:
    if total_days == 0:
        return 100.0
    return round(days_with_recap / total_days * 50 + (50 if groups_used else 0), 1)


class QualityService:
    """Builds licensee quality reports."""

    def __init__(self, db: Session):
        self._db = db

    def _counts_by_camp(self, query) -> dict[int, int]:
        return dict(self._db.execute(query).all())

    def report(
        self,
        tenant_id: int,
        start: date | None = None,
        end: date | None = None,
        today: date | None = None,
    ) -> dict[str, Any]:
        if start is None or end is None:
            start, end = season_range(today)

        camps = list(self._db.execute(
            select(Camp)
            .where(
                Camp.tenant_id == tenant_id,
                Camp.is_active.is_(True),
                Camp.status.in_(REPORTED_STATUSES),
                Camp.start_date >= start,
                Camp.start_date <= end,
            )
            .order_by(Camp.start_date.desc())
        ).scalars())
        camp_ids = [c.id for c in camps]

        campers = self._counts_by_camp(
            select(Registration.camp_id, func.count(Registration.id))
            .where(
                Registration.camp_id.in_(camp_ids),
                Registration.status == RegistrationStatus.CONFIRMED,
            )
            .group_by(Registration.camp_id)
        )
        complaints = self._counts_by_camp(
            select(CampIncident.camp_id, func.count(CampIncident.id))
            .where(
                CampIncident.camp_id.in_(camp_ids),
                CampIncident.category == IncidentCategory.COMPLAINT,
            )
            .group_by(CampIncident.camp_id)
        )
        day_totals = self._counts_by_camp(
            select(CampDay.camp_id, func.count(CampDay.id))
            .where(CampDay.camp_id.in_(camp_ids))
            .group_by(CampDay.camp_id)
        )
        recap_days = self._counts_by_camp(
            select(CampDay.camp_id, func.count(CampDayRecap.id))
            .join(CampDayRecap, CampDayRecap.camp_day_id == CampDay.id)
            .where(CampDay.camp_id.in_(camp_ids))
            .group_by(CampDay.camp_id)
        )
        completed_days = self._counts_by_camp(
            select(CampDay.camp_id, func.count(CampDay.id))
            .where(CampDay.camp_id.in_(camp_ids), CampDay.completed_at.is_not(None))
            .group_by(CampDay.camp_id)
        )
        group_counts = self._counts_by_camp(
            select(CampGroup.camp_id, func.count(CampGroup.id))
            .where(CampGroup.camp_id.in_(camp_ids), CampGroup.is_active.is_(True))
            .group_by(CampGroup.camp_id)
        )
        csat_scores: dict[int, list[float]] = {}
        for camp_id, score in self._db.execute(
            select(SessionCompensation.camp_id, SessionCompensation.csat_avg_score).where(
                SessionCompensation.camp_id.in_(camp_ids),
                SessionCompensation.csat_avg_score.is_not(None),
            )
        ).all():
            csat_scores.setdefault(camp_id, []).append(float(score))

        buckets = {EXCELLENT: 0, GOOD: 0, NEEDS_ATTENTION: 0, CRITICAL: 0}
        flagged: dict[str, list[str]] = {
            "csat_low": [],
            "complaints_high": [],
            "curriculum_low": [],
            "recaps_missing": [],
        }
        camp_rows = []
        total_campers = total_complaints = 0
        curriculum_total = 0.0

        for camp in camps:
            camper_count = campers.get(camp.id, 0)
            complaint_count = complaints.get(camp.id, 0)
            scores = csat_scores.get(camp.id, [])
            csat = round(sum(scores) / len(scores), 2) if scores else None
            ratio = round(complaint_count / camper_count * 100, 2) if camper_count else 0.0
            total_days = day_totals.get(camp.id, 0)
            finished = completed_days.get(camp.id, 0)
            groups_used = group_counts.get(camp.id, 0) > 0
            curriculum = curriculum_adherence(total_days, recap_days.get(camp.id, 0), groups_used)
            status = quality_status(csat, ratio, curriculum)

            buckets[status] += 1
            total_campers += camper_count
            total_complaints += complaint_count
            curriculum_total += curriculum

            if csat is not None and csat < CSAT_ACCEPTABLE:
                flagged["csat_low"].append(camp.name)
            if ratio > COMPLAINTS_ACCEPTABLE:
                flagged["complaints_high"].append(camp.name)
            if curriculum < CURRICULUM_ACCEPTABLE:
                flagged["curriculum_low"].append(camp.name)
            if total_days and finished < total_days:
                flagged["recaps_missing"].append(camp.name)

            camp_rows.append({
                "camp_id": camp.id,
                "camp_name": camp.name,
                "start_date": camp.start_date,
                "end_date": camp.end_date,
                "csat_score": csat,
                "csat_response_count": len(scores),
                "complaint_count": complaint_count,
                "camper_count": camper_count,
                "complaint_ratio": ratio,
                "curriculum_adherence": curriculum,
                "grouping_tool_used": groups_used,
                "daily_recaps_completed": finished,
                "total_days": total_days,
                "status": status,
            })

        all_scores = [s for scores in csat_scores.values() for s in scores]
        overall = {
            "avg_csat": round(sum(all_scores) / len(all_scores), 2) if all_scores else None,
            "total_responses": len(all_scores),
            "complaint_ratio": (
                round(total_complaints / total_campers * 100, 2) if total_campers else 0.0
            ),
            "curriculum_adherence": round(curriculum_total / len(camps), 1) if camps else 100.0,
            "camps_excellent": buckets[EXCELLENT],
            "camps_good": buckets[GOOD],
            "camps_attention": buckets[NEEDS_ATTENTION],
            "camps_critical": buckets[CRITICAL],
        }

        logger.debug("Quality report built", tenant_id=tenant_id, camps=len(camps))
        return {
            "overall": overall,
            "camps": camp_rows,
            "warnings": self._warnings(flagged),
            "period_start": start,
            "period_end": end,
        }

    @staticmethod
    def _warnings(flagged: dict[str, list[str]]) -> list[dict[str, Any]]:
        messages = {
            "csat_low": "{n} camp(s) have CSAT below 4.0",
            "complaints_high": "{n} camp(s) have high complaint ratios",
            "curriculum_low": "{n} camp(s) have low curriculum adherence",
            "recaps_missing": "{n} camp(s) have incomplete daily recaps",
        }
        warnings = []
        for kind, names in flagged.items():
            if not names:
                continue
            if kind == "csat_low":
                severity = "critical" if len(names) > 2 else "warning"
            elif kind == "complaints_high":
                severity = "critical"
            else:
                severity = "warning"
            warnings.append({
                "type": kind,
                "severity": severity,
                "message": messages[kind].format(n=len(names)),
                "affected_camps": names,
            })
        return warnings
