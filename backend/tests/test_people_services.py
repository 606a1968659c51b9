"""
Tests for the people-facing services: users and roles, volunteer
certifications and the CIT pipeline.
"""

from datetime import date

import pytest
from sqlalchemy import select

from rest_api.models import MessageParticipant, User, UserRole, VolunteerCertification
from rest_api.services.domain import (
    CertificationService,
    CitService,
    MessagingService,
    UserService,
)
from shared.config.constants import (
    CertificationStatus,
    CitApplicationStatus,
    CitProgressEventType,
    Roles,
)
from shared.utils.exceptions import (
    DuplicateEntityError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)


# =============================================================================
# Users
# =============================================================================


class TestUserService:

    def test_create_user_normalizes_email(self, db_session, seed_tenant):
        user = UserService(db_session).create_user(
            seed_tenant.id, "  New.Coach@Test.com ", "New", "Coach", role=Roles.COACH
        )
        assert user["email"] == "new.coach@test.com"
        assert user["roles"] == [Roles.COACH]
        assert user["full_name"] == "New Coach"

    def test_duplicate_email_in_tenant(self, db_session, seed_tenant, seed_parent_user):
        with pytest.raises(DuplicateEntityError):
            UserService(db_session).create_user(seed_tenant.id, "PARENT@test.com")

    def test_invalid_role(self, db_session, seed_tenant):
        with pytest.raises(ValidationError):
            UserService(db_session).create_user(seed_tenant.id, "x@test.com", role="janitor")

    def test_assign_role_is_idempotent(self, db_session, seed_tenant, seed_parent_user):
        service = UserService(db_session)
        assert service.assign_role(seed_parent_user.id, seed_tenant.id, Roles.COACH)["assigned"] is True
        again = service.assign_role(seed_parent_user.id, seed_tenant.id, Roles.COACH)
        assert again == {"assigned": False, "message": "User already has this role", "role": Roles.COACH}

    def test_update_role_replaces_active_roles(self, db_session, seed_tenant, seed_parent_user):
        service = UserService(db_session)
        service.assign_role(seed_parent_user.id, seed_tenant.id, Roles.COACH)
        service.update_role(seed_parent_user.id, seed_tenant.id, Roles.DIRECTOR)

        details = service.get_user_details(seed_parent_user.id)
        assert details["roles"] == [Roles.DIRECTOR]

    def test_list_users_by_role_and_search(self, db_session, seed_tenant, seed_parent_user, seed_director_user):
        service = UserService(db_session)
        directors = service.list_users(seed_tenant.id, role=Roles.DIRECTOR)
        assert [u["email"] for u in directors] == ["director@test.com"]

        found = service.list_users(seed_tenant.id, search="parent")
        assert [u["id"] for u in found] == [seed_parent_user.id]

    def test_remove_from_tenant(self, db_session, seed_tenant, seed_parent_user):
        result = UserService(db_session).remove_from_tenant(seed_parent_user.id, seed_tenant.id)
        assert result == {"removed": True, "deactivated": 1}
        roles = db_session.execute(select(UserRole).where(UserRole.user_id == seed_parent_user.id)).scalars().all()
        assert [r.is_active for r in roles] == [False]

    def test_delete_user_drops_roles_and_threads(
        self, db_session, seed_tenant, seed_parent_user, seed_director_user
    ):
        MessagingService(db_session).send_message(
            seed_director_user.id, "Hello", seed_tenant.id, to_user_id=seed_parent_user.id
        )

        assert UserService(db_session).delete_user(seed_parent_user.id, deleted_by_id=1) == {"deleted": True}

        db_session.expire_all()
        assert db_session.get(User, seed_parent_user.id).is_active is False
        assert db_session.scalar(select(UserRole).where(UserRole.user_id == seed_parent_user.id)) is None
        assert db_session.scalar(
            select(MessageParticipant).where(MessageParticipant.user_id == seed_parent_user.id)
        ) is None
        with pytest.raises(NotFoundError):
            UserService(db_session).get_user_details(seed_parent_user.id)

    def test_ensure_parent_role_never_replaces(self, db_session, seed_tenant, seed_director_user):
        service = UserService(db_session)
        assert service.ensure_parent_role(seed_director_user.id, seed_tenant.id) is True
        assert service.ensure_parent_role(seed_director_user.id, seed_tenant.id) is False
        assert service.get_user_details(seed_director_user.id)["roles"] == [Roles.DIRECTOR, Roles.PARENT]


# =============================================================================
# Certifications
# =============================================================================


class TestCertificationService:

    @pytest.fixture
    def cert(self, db_session, seed_tenant, seed_director_user):
        return CertificationService(db_session).submit(
            seed_director_user.id, seed_tenant.id, "cpr",
            document_url="https://files.test/cpr.pdf", document_name="cpr.pdf",
        )

    def test_submit_is_pending(self, cert):
        assert cert["status"] == CertificationStatus.PENDING_REVIEW
        assert cert["certification_type"] == "cpr"

    def test_list_own_and_all(self, db_session, cert, seed_director_user, seed_tenant):
        service = CertificationService(db_session)
        assert [c["id"] for c in service.list_own(seed_director_user.id)] == [cert["id"]]

        listing = service.list_all(tenant_id=seed_tenant.id, status=CertificationStatus.PENDING_REVIEW)
        assert listing[0]["user_email"] == "director@test.com"
        assert listing[0]["user_name"] == "Dana Director"

    def test_approve_sets_expiry(self, db_session, cert, seed_admin_user):
        reviewed = CertificationService(db_session).review(
            cert["id"], seed_admin_user.id, CertificationStatus.APPROVED, expires_at=date(2027, 1, 1)
        )
        assert reviewed["status"] == CertificationStatus.APPROVED
        assert reviewed["expires_at"] == date(2027, 1, 1)
        assert reviewed["reviewed_at"] is not None

    def test_reject_clears_expiry(self, db_session, cert, seed_admin_user):
        reviewed = CertificationService(db_session).review(
            cert["id"], seed_admin_user.id, CertificationStatus.REJECTED,
            reviewer_notes="Blurry scan", expires_at=date(2027, 1, 1),
        )
        assert reviewed["expires_at"] is None
        assert reviewed["reviewer_notes"] == "Blurry scan"

    def test_review_outcome_must_be_final(self, db_session, cert, seed_admin_user):
        with pytest.raises(ValidationError):
            CertificationService(db_session).review(cert["id"], seed_admin_user.id, CertificationStatus.EXPIRED)

    def test_withdraw_only_while_pending(self, db_session, cert, seed_director_user, seed_admin_user):
        service = CertificationService(db_session)
        service.review(cert["id"], seed_admin_user.id, CertificationStatus.APPROVED)
        with pytest.raises(InvalidStateError):
            service.delete_own_pending(cert["id"], seed_director_user.id)

    def test_withdraw_pending(self, db_session, cert, seed_director_user):
        service = CertificationService(db_session)
        assert service.delete_own_pending(cert["id"], seed_director_user.id) == {"deleted": True}
        assert service.list_own(seed_director_user.id) == []

    def test_other_user_cannot_withdraw(self, db_session, cert, seed_parent_user):
        with pytest.raises(NotFoundError):
            CertificationService(db_session).delete_own_pending(cert["id"], seed_parent_user.id)

    def test_expire_past_due(self, db_session, cert, seed_admin_user):
        service = CertificationService(db_session)
        service.review(cert["id"], seed_admin_user.id, CertificationStatus.APPROVED, expires_at=date(2026, 6, 30))

        assert service.expire_past_due(today=date(2026, 6, 30)) == {"expired": 0}
        assert service.expire_past_due(today=date(2026, 7, 1)) == {"expired": 1}
        db_session.expire_all()
        assert db_session.get(VolunteerCertification, cert["id"]).status == CertificationStatus.EXPIRED


# =============================================================================
# CIT pipeline
# =============================================================================


class TestCitService:

    @pytest.fixture
    def application(self, db_session, seed_tenant):
        return CitService(db_session).create_application(
            seed_tenant.id,
            {
                "first_name": "Jordan",
                "last_name": "Lee",
                "email": "jordan@test.com",
                "school_name": "Lincoln High",
                "grade": "10",
                "unknown_field": "ignored",
            },
        )

    def test_create_records_history(self, db_session, application):
        assert application["status"] == CitApplicationStatus.APPLIED
        assert "unknown_field" not in application

        detail = CitService(db_session).get_application(application["id"])
        assert [e["to_status"] for e in detail["events"]] == [CitApplicationStatus.APPLIED]
        assert detail["events"][0]["details"] == "Application submitted"

    def test_required_fields(self, db_session, seed_tenant):
        with pytest.raises(ValidationError):
            CitService(db_session).create_application(seed_tenant.id, {"first_name": "Solo"})

    def test_status_change_recorded(self, db_session, application):
        service = CitService(db_session)
        service.update_status(application["id"], CitApplicationStatus.UNDER_REVIEW, user_id=1)

        events = service.get_application(application["id"])["events"]
        assert events[-1]["from_status"] == CitApplicationStatus.APPLIED
        assert events[-1]["to_status"] == CitApplicationStatus.UNDER_REVIEW
        assert events[-1]["details"] == "Status changed from applied to under_review"

    def test_withdrawn_is_terminal(self, db_session, application):
        service = CitService(db_session)
        service.update_status(application["id"], CitApplicationStatus.WITHDRAWN)
        with pytest.raises(InvalidTransitionError):
            service.update_status(application["id"], CitApplicationStatus.APPLIED)

    def test_same_status_rejected(self, db_session, application):
        with pytest.raises(InvalidTransitionError):
            CitService(db_session).update_status(application["id"], CitApplicationStatus.APPLIED)

    def test_notes_and_events(self, db_session, application):
        service = CitService(db_session)
        assert service.update_notes(application["id"], "Strong interview")["internal_notes"] == "Strong interview"

        event = service.add_event(application["id"], CitProgressEventType.TRAINING_COMPLETED, "First aid done")
        assert event["event_type"] == CitProgressEventType.TRAINING_COMPLETED

        with pytest.raises(ValidationError):
            service.add_event(application["id"], "party")

    def test_assign_to_camp(self, db_session, application, seed_camp):
        service = CitService(db_session)
        assignment = service.assign_to_camp(application["id"], seed_camp.id, notes="Mornings only")
        assert assignment["assignment_status"] == "planned"
        assert assignment["role"] == "cit"

        detail = service.get_application(application["id"])
        assert detail["assignments"][0]["camp_id"] == seed_camp.id
        assert detail["events"][-1]["details"] == "Assigned to camp Summer Multi-Sport"

        with pytest.raises(NotFoundError):
            service.assign_to_camp(application["id"], 404)

    def test_list_and_counts(self, db_session, application, seed_tenant, other_tenant):
        service = CitService(db_session)
        assert service.list_applications(seed_tenant.id, search="lincoln")["total_count"] == 1
        assert service.list_applications(other_tenant.id)["total_count"] == 0

        counts = service.counts_by_status(seed_tenant.id)
        assert counts[CitApplicationStatus.APPLIED] == 1
        assert counts[CitApplicationStatus.APPROVED] == 0
        assert set(counts) == set(CitApplicationStatus.ALL)
