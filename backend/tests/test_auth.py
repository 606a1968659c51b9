"""
Tests for authentication: password hashing, tokens and the auth endpoints.
"""

import pytest

from shared.config.constants import Roles
from shared.security.auth import sign_jwt, verify_jwt
from shared.security.password import hash_password, verify_password
from shared.utils.exceptions import ErrorKind, SessionExpiredError, UnauthorizedError


class TestPasswordHashing:
    """Test password hashing utilities."""

    def test_hash_password_returns_bcrypt_hash(self):
        """Hash should return bcrypt format."""
        hashed = hash_password("mypassword")
        assert hashed.startswith("$2b$")

    def test_verify_password_correct(self):
        hashed = hash_password("mypassword")
        assert verify_password("mypassword", hashed) is True

    def test_verify_password_incorrect(self):
        hashed = hash_password("mypassword")
        assert verify_password("wrongpassword", hashed) is False

    def test_plain_text_never_verifies(self):
        """Stored plain text is treated as a broken hash, not a password."""
        assert verify_password("plaintext", "plaintext") is False

    def test_missing_hash(self):
        """Invited users have no password yet."""
        assert verify_password("anything", None) is False


class TestTokens:

    def test_round_trip_claims(self):
        token = sign_jwt({"sub": "7", "tenant_id": 3, "roles": [Roles.DIRECTOR], "email": "d@test.com"})
        claims = verify_jwt(token)
        assert claims["sub"] == "7"
        assert claims["tenant_id"] == 3
        assert claims["roles"] == [Roles.DIRECTOR]

    def test_expired_token(self):
        token = sign_jwt({"sub": "7", "tenant_id": 3}, ttl_seconds=-10)
        with pytest.raises(SessionExpiredError):
            verify_jwt(token)

    def test_garbage_token(self):
        with pytest.raises(UnauthorizedError):
            verify_jwt("not-a-jwt")

    def test_missing_tenant_claim(self):
        token = sign_jwt({"sub": "7"})
        with pytest.raises(UnauthorizedError):
            verify_jwt(token)


class TestAuthEndpoints:
    """Test authentication API endpoints."""

    def test_login_success(self, client, seed_admin_user):
        """Valid credentials should return a token inside the envelope."""
        response = client.post(
            "/api/auth/login",
            json={"email": "admin@test.com", "password": "testpass123"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["error"] is None
        data = body["data"]
        assert data["access_token"]
        assert data["token_type"] == "Bearer"
        assert data["expires_in"] > 0
        assert data["user"]["email"] == "admin@test.com"
        assert data["user"]["roles"] == [Roles.HQ_ADMIN]

    def test_login_email_is_case_insensitive(self, client, seed_parent_user):
        response = client.post(
            "/api/auth/login",
            json={"email": "Parent@Test.com", "password": "testpass123"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["user"]["id"] == seed_parent_user.id

    def test_login_token_works_for_me(self, client, seed_director_user):
        login = client.post(
            "/api/auth/login",
            json={"email": "director@test.com", "password": "testpass123"},
        )
        token = login.json()["data"]["access_token"]

        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json()["data"]["roles"] == [Roles.DIRECTOR]

    @pytest.mark.parametrize(
        "email, password",
        [("nonexistent@test.com", "testpass123"), ("admin@test.com", "wrongpassword")],
    )
    def test_login_invalid_credentials(self, client, seed_admin_user, email, password):
        response = client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 401
        assert response.json() == {
            "data": None,
            "error": {"code": ErrorKind.UNAUTHORIZED.value, "message": "Invalid email or password"},
        }

    def test_login_is_rate_limited(self, client, seed_admin_user):
        for _ in range(5):
            client.post("/api/auth/login", json={"email": "admin@test.com", "password": "nope"})

        response = client.post(
            "/api/auth/login",
            json={"email": "admin@test.com", "password": "testpass123"},
        )
        assert response.status_code == 429
        assert response.json()["error"]["code"] == ErrorKind.RATE_LIMITED.value

    def test_login_bad_body(self, client):
        response = client.post("/api/auth/login", json={"email": "not-an-email", "password": "x"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == ErrorKind.VALIDATION.value

    def test_me_authenticated(self, client, auth_headers):
        response = client.get("/api/auth/me", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["email"] == "admin@test.com"
        assert Roles.HQ_ADMIN in data["roles"]

    def test_me_unauthenticated(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == ErrorKind.UNAUTHORIZED.value

    def test_me_malformed_header(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Token abc"})
        assert response.status_code == 401
