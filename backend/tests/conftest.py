"""
Pytest configuration and fixtures for backend tests.
"""

import os

# Settings are read at import time; point them at SQLite before anything loads
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")
os.environ.setdefault("OUTBOX_PROCESSOR_ENABLED", "false")
os.environ.setdefault("STRIPE_SECRET_KEY", "")
os.environ.setdefault("EMAIL_API_URL", "")

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rest_api.main import app
from rest_api.models import (
    Athlete,
    Base,
    Camp,
    CamperSessionData,
    Registration,
    Tenant,
    User,
    UserRole,
)
from shared.config.constants import CampStatus, PaymentStatus, RegistrationStatus, Roles
from shared.infrastructure.db import get_db
from shared.security.auth import sign_jwt
from shared.security.password import hash_password
from shared.security.rate_limit import limiter


# SQLite in-memory database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    Uses SQLite in-memory for isolation.
    """
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Rate limit counters are process-wide; start every test clean."""
    limiter.reset()
    yield


@pytest.fixture(scope="function")
def client(db_session):
    """
    Create a test client with database session override.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# =============================================================================
# Seed helpers
# =============================================================================


def make_user(db, tenant, email, roles, password="testpass123", first_name="Test", last_name="User"):
    """Create a user with active roles in the tenant."""
    user = User(
        tenant_id=tenant.id,
        email=email,
        password=hash_password(password),
        first_name=first_name,
        last_name=last_name,
    )
    db.add(user)
    db.flush()
    for role in roles:
        db.add(UserRole(user_id=user.id, tenant_id=tenant.id, role=role))
    db.commit()
    db.refresh(user)
    return user


def token_headers(user, roles):
    """Bearer headers for a user without going through the rate-limited login."""
    token = sign_jwt({
        "sub": str(user.id),
        "tenant_id": user.tenant_id,
        "roles": list(roles),
        "email": user.email,
    })
    return {"Authorization": f"Bearer {token}"}


def make_athlete(db, tenant, parent, first_name="Sam", last_name="Rivera", grade=None):
    athlete = Athlete(
        tenant_id=tenant.id,
        parent_id=parent.id,
        first_name=first_name,
        last_name=last_name,
        birth_date=date(2015, 6, 1),
        grade=grade,
    )
    db.add(athlete)
    db.commit()
    db.refresh(athlete)
    return athlete


def make_confirmed_registration(db, camp, athlete, total_price_cents=30000, addons_total_cents=0):
    """A paid registration plus its camper session row, as the webhook leaves them."""
    registration = Registration(
        tenant_id=camp.tenant_id,
        camp_id=camp.id,
        athlete_id=athlete.id,
        parent_id=athlete.parent_id,
        status=RegistrationStatus.CONFIRMED,
        payment_status=PaymentStatus.PAID,
        base_price_cents=total_price_cents - addons_total_cents,
        addons_total_cents=addons_total_cents,
        total_price_cents=total_price_cents,
    )
    db.add(registration)
    db.flush()
    db.add(CamperSessionData(
        tenant_id=camp.tenant_id,
        camp_id=camp.id,
        athlete_id=athlete.id,
        registration_id=registration.id,
    ))
    db.commit()
    db.refresh(registration)
    return registration


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def seed_tenant(db_session):
    """Create a test licensee."""
    tenant = Tenant(
        name="Test Sports Camps",
        slug="testcamps",
        contact_email="owner@test.com",
    )
    db_session.add(tenant)
    db_session.commit()
    db_session.refresh(tenant)
    return tenant


@pytest.fixture
def other_tenant(db_session):
    """A second licensee for isolation tests."""
    tenant = Tenant(name="Other Camps", slug="othercamps")
    db_session.add(tenant)
    db_session.commit()
    db_session.refresh(tenant)
    return tenant


@pytest.fixture
def seed_admin_user(db_session, seed_tenant):
    """HQ admin: operates across every licensee."""
    return make_user(db_session, seed_tenant, "admin@test.com", [Roles.HQ_ADMIN], first_name="Hq", last_name="Admin")


@pytest.fixture
def seed_owner_user(db_session, seed_tenant):
    return make_user(db_session, seed_tenant, "owner@test.com", [Roles.LICENSEE_OWNER], first_name="Lee", last_name="Owner")


@pytest.fixture
def seed_director_user(db_session, seed_tenant):
    return make_user(db_session, seed_tenant, "director@test.com", [Roles.DIRECTOR], first_name="Dana", last_name="Director")


@pytest.fixture
def seed_parent_user(db_session, seed_tenant):
    return make_user(db_session, seed_tenant, "parent@test.com", [Roles.PARENT], first_name="Pat", last_name="Parent")


@pytest.fixture
def auth_headers(seed_admin_user):
    """Authentication headers for HQ admin API calls."""
    return token_headers(seed_admin_user, [Roles.HQ_ADMIN])


@pytest.fixture
def owner_headers(seed_owner_user):
    return token_headers(seed_owner_user, [Roles.LICENSEE_OWNER])


@pytest.fixture
def director_headers(seed_director_user):
    return token_headers(seed_director_user, [Roles.DIRECTOR])


@pytest.fixture
def parent_headers(seed_parent_user):
    return token_headers(seed_parent_user, [Roles.PARENT])


@pytest.fixture
def seed_camp(db_session, seed_tenant):
    """A three-day camp in progress that started two days ago."""
    start = date.today() - timedelta(days=2)
    camp = Camp(
        tenant_id=seed_tenant.id,
        name="Summer Multi-Sport",
        slug="summer-multi-sport",
        location_name="Central Park Fields",
        start_date=start,
        end_date=start + timedelta(days=2),
        capacity=40,
        price_cents=30000,
        status=CampStatus.IN_PROGRESS,
    )
    db_session.add(camp)
    db_session.commit()
    db_session.refresh(camp)
    return camp


@pytest.fixture
def open_camp(db_session, seed_tenant):
    """A future camp accepting registrations."""
    start = date.today() + timedelta(days=30)
    camp = Camp(
        tenant_id=seed_tenant.id,
        name="Fall Soccer Week",
        start_date=start,
        end_date=start + timedelta(days=4),
        price_cents=25000,
        early_bird_price_cents=20000,
        early_bird_deadline=date.today() + timedelta(days=7),
        status=CampStatus.REGISTRATION_OPEN,
    )
    db_session.add(camp)
    db_session.commit()
    db_session.refresh(camp)
    return camp


@pytest.fixture
def seed_athletes(db_session, seed_tenant, seed_parent_user):
    """Two siblings owned by the test parent."""
    return [
        make_athlete(db_session, seed_tenant, seed_parent_user, "Sam", "Rivera"),
        make_athlete(db_session, seed_tenant, seed_parent_user, "Alex", "Rivera"),
    ]


@pytest.fixture
def confirmed_campers(db_session, seed_camp, seed_athletes):
    """Both siblings confirmed in the in-progress camp."""
    return [make_confirmed_registration(db_session, seed_camp, a) for a in seed_athletes]
