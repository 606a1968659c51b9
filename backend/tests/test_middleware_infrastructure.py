"""
Tests for the HTTP middlewares, request correlation and session helpers.
"""

import logging
from unittest.mock import MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from rest_api.core.middlewares import (
    SecurityHeadersMiddleware,
    ContentTypeValidationMiddleware,
    register_middlewares,
)
from shared.infrastructure.correlation import (
    CorrelationIdMiddleware,
    CorrelationIdFilter,
    get_request_id,
    request_id_var,
    resolve_request_id,
)
from shared.infrastructure.db import get_db_context, safe_commit


@pytest.fixture
def bare_client():
    """A tiny app with the full middleware stack and no database."""
    app = FastAPI()
    register_middlewares(app)

    @app.get("/echo")
    def echo():
        return {"request_id": get_request_id()}

    @app.post("/echo")
    def echo_body(body: dict):
        return body

    @app.post("/api/payments/webhook")
    def webhook():
        return {"received": True}

    return TestClient(app)


class TestSecurityHeaders:
    """Every response carries the fixed header set."""

    @pytest.mark.parametrize("header,expected", [
        ("X-Content-Type-Options", "nosniff"),
        ("X-Frame-Options", "DENY"),
        ("Referrer-Policy", "strict-origin-when-cross-origin"),
        ("Permissions-Policy", "geolocation=(), microphone=(), camera=()"),
        ("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'"),
    ])
    def test_header_present(self, bare_client, header, expected):
        assert bare_client.get("/echo").headers[header] == expected

    @pytest.mark.parametrize("environment,has_hsts", [("production", True), ("development", False)])
    def test_hsts_only_in_production(self, bare_client, environment, has_hsts):
        with patch("rest_api.core.middlewares.settings") as fake_settings:
            fake_settings.environment = environment
            headers = bare_client.get("/echo").headers

        assert ("Strict-Transport-Security" in headers) is has_hsts
        if has_hsts:
            assert headers["Strict-Transport-Security"].startswith("max-age=31536000")


class TestJsonBodiesOnly:
    """Bodies must be JSON, except on the payment webhook."""

    def test_json_body_passes(self, bare_client):
        response = bare_client.post("/echo", json={"camp_id": 1})
        assert response.status_code == 200
        assert response.json() == {"camp_id": 1}

    def test_json_with_charset_passes(self, bare_client):
        response = bare_client.post(
            "/echo",
            content='{"camp_id": 2}',
            headers={"Content-Type": "application/json; charset=utf-8"},
        )
        assert response.status_code == 200

    @pytest.mark.parametrize("content_type", ["text/plain", "application/x-www-form-urlencoded"])
    def test_other_bodies_get_415_envelope(self, bare_client, content_type):
        response = bare_client.post("/echo", content="camp_id=1", headers={"Content-Type": content_type})

        assert response.status_code == 415
        body = response.json()
        assert body["data"] is None
        assert body["error"]["code"] == "validation"
        assert "Unsupported Media Type" in body["error"]["message"]

    def test_webhook_accepts_any_body(self, bare_client):
        response = bare_client.post(
            "/api/payments/webhook", content="t=1,v1=abc", headers={"Content-Type": "text/plain"}
        )
        assert response.status_code == 200

    def test_rejected_requests_still_get_a_request_id(self, bare_client):
        response = bare_client.post("/echo", content="x", headers={"Content-Type": "text/plain"})
        assert response.headers["X-Request-ID"]


class TestRequestCorrelation:

    def test_generated_id_is_a_uuid(self, bare_client):
        response = bare_client.get("/echo")

        request_id = response.headers["X-Request-ID"]
        assert len(request_id) == 36
        assert response.json()["request_id"] == request_id

    def test_caller_id_is_echoed(self, bare_client):
        response = bare_client.get("/echo", headers={"X-Request-ID": "checkin-batch-7"})

        assert response.headers["X-Request-ID"] == "checkin-batch-7"
        assert response.json()["request_id"] == "checkin-batch-7"

    @pytest.mark.parametrize("incoming", [None, "", "has spaces", "x" * 65, "line\nbreak"])
    def test_unusable_ids_are_replaced(self, incoming):
        resolved = resolve_request_id(incoming)
        assert resolved != incoming
        assert len(resolved) == 36

    def test_context_is_reset_after_request(self, bare_client):
        bare_client.get("/echo", headers={"X-Request-ID": "one-off"})
        assert get_request_id() == ""


class TestCorrelationIdFilter:

    def _record(self):
        return logging.LogRecord("camp_ops.test", logging.INFO, __file__, 1, "msg", None, None)

    def test_stamps_current_request_id(self):
        token = request_id_var.set("req-42")
        try:
            record = self._record()
            assert CorrelationIdFilter().filter(record) is True
            assert record.request_id == "req-42"
        finally:
            request_id_var.reset(token)

    def test_dash_outside_a_request(self):
        record = self._record()
        CorrelationIdFilter().filter(record)
        assert record.request_id == "-"


class TestSessionHelpers:

    def test_safe_commit_commits(self):
        db = MagicMock()
        safe_commit(db)
        db.commit.assert_called_once()
        db.rollback.assert_not_called()

    def test_safe_commit_rolls_back_and_reraises(self):
        db = MagicMock()
        db.commit.side_effect = RuntimeError("deadlock detected")

        with pytest.raises(RuntimeError, match="deadlock"):
            safe_commit(db)
        db.rollback.assert_called_once()

    def test_db_context_closes_session(self):
        fake = MagicMock()
        with patch("shared.infrastructure.db.SessionLocal", return_value=fake):
            with get_db_context() as db:
                assert db is fake
        fake.close.assert_called_once()


class TestApplicationWiring:

    def test_register_adds_the_three_middlewares(self):
        app = FastAPI()
        register_middlewares(app)

        registered = {m.cls for m in app.user_middleware}
        assert {SecurityHeadersMiddleware, ContentTypeValidationMiddleware, CorrelationIdMiddleware} <= registered

    def test_real_app_sets_headers(self, client):
        response = client.get("/api/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Request-ID"]

    def test_real_app_rejects_form_login(self, client):
        response = client.post("/api/auth/login", data={"email": "a@test.com", "password": "x"})
        assert response.status_code == 415
