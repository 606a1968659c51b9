"""
Volunteer Certification Domain Service.

Staff upload certification documents, admins review them.
"""

from datetime import date
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rest_api.models import User, VolunteerCertification
from rest_api.models.base import utcnow
from shared.config.constants import CertificationStatus, Limits
from shared.config.logging import get_logger
from shared.infrastructure.db import safe_commit
from shared.utils.exceptions import InvalidStateError, NotFoundError, ValidationError

logger = get_logger(__name__)

REVIEW_OUTCOMES = (CertificationStatus.APPROVED, CertificationStatus.REJECTED)


class CertificationService:
    """Domain service for volunteer certifications."""

    def __init__(self, db: Session):
        self._db = db

    @staticmethod
    def to_output(cert: VolunteerCertification) -> dict[str, Any]:
        return {
            "id": cert.id,
            "user_id": cert.user_id,
            "tenant_id": cert.tenant_id,
            "certification_type": cert.certification_type,
            "document_url": cert.document_url,
            "document_name": cert.document_name,
            "notes": cert.notes,
            "status": cert.status,
            "submitted_at": cert.created_at,
            "expires_at": cert.expires_at,
            "reviewed_at": cert.reviewed_at,
            "reviewer_notes": cert.reviewer_notes,
        }

    def submit(
        self,
        user_id: int,
        tenant_id: int,
        certification_type: str,
        document_url: str | None = None,
        document_name: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        cert = VolunteerCertification(
            tenant_id=tenant_id,
            user_id=user_id,
            certification_type=certification_type,
            document_url=document_url,
            document_name=document_name,
            notes=notes,
            status=CertificationStatus.PENDING_REVIEW,
        )
        cert.set_created_by(user_id)
        self._db.add(cert)
        safe_commit(self._db)
        self._db.refresh(cert)
        logger.info("Certification submitted", certification_id=cert.id, user_id=user_id)
        return self.to_output(cert)

    def list_own(self, user_id: int) -> list[dict[str, Any]]:
        certs = self._db.execute(
            select(VolunteerCertification)
            .where(
                VolunteerCertification.user_id == user_id,
                VolunteerCertification.is_active.is_(True),
            )
            .order_by(VolunteerCertification.created_at.desc())
        ).scalars()
        return [self.to_output(c) for c in certs]

    def list_all(
        self,
        tenant_id: int | None = None,
        status: str | None = None,
        user_id: int | None = None,
        limit: int = Limits.DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        query = (
            select(VolunteerCertification, User)
            .join(User, User.id == VolunteerCertification.user_id)
            .where(VolunteerCertification.is_active.is_(True))
        )
        if tenant_id is not None:
            query = query.where(VolunteerCertification.tenant_id == tenant_id)
        if status:
            query = query.where(VolunteerCertification.status == status)
        if user_id is not None:
            query = query.where(VolunteerCertification.user_id == user_id)

        rows = self._db.execute(
            query.order_by(VolunteerCertification.created_at.desc())
            .limit(min(limit, Limits.MAX_PAGE_SIZE))
            .offset(offset)
        ).all()
        return [
            {**self.to_output(cert), "user_name": user.full_name, "user_email": user.email}
            for cert, user in rows
        ]

    def delete_own_pending(self, certification_id: int, user_id: int) -> dict[str, bool]:
        """Owners may withdraw a certification until it is reviewed."""
        cert = self._db.scalar(
            select(VolunteerCertification).where(
                VolunteerCertification.id == certification_id,
                VolunteerCertification.user_id == user_id,
                VolunteerCertification.is_active.is_(True),
            )
        )
        if not cert:
            raise NotFoundError("Certification", certification_id)
        if cert.status != CertificationStatus.PENDING_REVIEW:
            raise InvalidStateError(
                "Certification",
                cert.status,
                detail="Only pending certifications can be deleted",
            )
        cert.soft_delete(user_id)
        safe_commit(self._db)
        return {"deleted": True}

    def review(
        self,
        certification_id: int,
        reviewer_id: int,
        status: str,
        reviewer_notes: str | None = None,
        expires_at: date | None = None,
    ) -> dict[str, Any]:
        if status not in REVIEW_OUTCOMES:
            raise ValidationError(
                "Review status must be approved or rejected", status=status
            )
        cert = self._db.scalar(
            select(VolunteerCertification).where(
                VolunteerCertification.id == certification_id,
                VolunteerCertification.is_active.is_(True),
            )
        )
        if not cert:
            raise NotFoundError("Certification", certification_id)

        cert.status = status
        cert.reviewed_at = utcnow()
        cert.reviewed_by_id = reviewer_id
        cert.reviewer_notes = reviewer_notes
        cert.expires_at = expires_at if status == CertificationStatus.APPROVED else None
        cert.set_updated_by(reviewer_id)
        safe_commit(self._db)

        logger.info(
            "Certification reviewed",
            certification_id=certification_id,
            status=status,
            reviewer_id=reviewer_id,
        )
        return self.to_output(cert)

    def expire_past_due(self, today: date | None = None) -> dict[str, int]:
        """Approved certifications whose expiry date has passed become expired."""
        today = today or date.today()
        result = self._db.execute(
            update(VolunteerCertification)
            .where(
                VolunteerCertification.status == CertificationStatus.APPROVED,
                VolunteerCertification.expires_at.is_not(None),
                VolunteerCertification.expires_at < today,
            )
            .values(status=CertificationStatus.EXPIRED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        safe_commit(self._db)
        if result.rowcount:
            logger.info("Certifications expired", count=result.rowcount)
        return {"expired": result.rowcount}
