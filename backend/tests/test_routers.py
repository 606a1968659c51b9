"""
HTTP-level tests for the API routers.

Covers:
- Response envelope on success and on every error kind
- Role checks and licensee isolation on camp routes
- Auto-grouping, day schedules and schedule templates
- Registration draft → demo checkout → signed webhook
- Camp HQ day start / check-in / end through the API
- Messaging, reports, certifications and CIT endpoints
"""

import json
import time
from datetime import date, timedelta

import pytest

from rest_api.services.payments import StripeClient, compute_signature
from shared.config.constants import CampDayStatus, CampStatus, RegistrationStatus, Roles
from shared.security.auth import sign_jwt
from shared.utils.exceptions import ErrorKind

from conftest import make_user, token_headers

WEBHOOK_SECRET = "whsec_test"


def _error(response):
    body = response.json()
    assert body["data"] is None
    return body["error"]


@pytest.fixture
def other_director_headers(db_session, other_tenant):
    director = make_user(db_session, other_tenant, "rival@test.com", [Roles.DIRECTOR])
    return token_headers(director, [Roles.DIRECTOR])


@pytest.fixture
def signed_webhooks(monkeypatch):
    """Route the webhook endpoint through a demo client that knows the test secret."""
    client = StripeClient(secret_key="", webhook_secret=WEBHOOK_SECRET)
    monkeypatch.setattr(
        "rest_api.services.payments.payment_service.get_stripe_client", lambda: client
    )

    def sign(event: dict):
        payload = json.dumps(event).encode()
        ts = int(time.time())
        return payload, f"t={ts},v1={compute_signature(payload, WEBHOOK_SECRET, ts)}"

    return sign


# =============================================================================
# Envelope and auth
# =============================================================================


class TestEnvelope:
    """Every response carries {data, error}."""

    def test_success_envelope(self, client, auth_headers, seed_camp):
        response = client.get(f"/api/camps/{seed_camp.id}", headers=auth_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["error"] is None
        assert body["data"]["name"] == "Summer Multi-Sport"

    def test_not_found_envelope(self, client, auth_headers):
        response = client.get("/api/camps/9999", headers=auth_headers)
        assert response.status_code == 404
        assert _error(response) == {
            "code": ErrorKind.NOT_FOUND.value,
            "message": "Camp with ID 9999 not found",
        }

    def test_missing_token(self, client, seed_camp):
        response = client.get(f"/api/camps/{seed_camp.id}")
        assert response.status_code == 401
        assert _error(response)["code"] == ErrorKind.UNAUTHORIZED.value

    def test_expired_token(self, client, seed_director_user):
        token = sign_jwt(
            {"sub": str(seed_director_user.id), "tenant_id": seed_director_user.tenant_id},
            ttl_seconds=-10,
        )
        response = client.get("/api/camps", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert _error(response)["code"] == ErrorKind.SESSION_EXPIRED.value

    def test_bad_body_is_validation(self, client, director_headers):
        response = client.post("/api/camps", headers=director_headers, json={"name": ""})
        assert response.status_code == 400
        assert _error(response)["code"] == ErrorKind.VALIDATION.value

    def test_unknown_route_is_enveloped(self, client):
        response = client.get("/api/does-not-exist")
        assert response.status_code == 404
        assert response.json()["data"] is None
        assert _error(response) == {"code": ErrorKind.NOT_FOUND.value, "message": "Not Found"}

    def test_wrong_method_is_enveloped(self, client):
        response = client.delete("/api/health")
        assert response.status_code == 405
        assert response.json()["data"] is None
        assert _error(response)["code"] == ErrorKind.VALIDATION.value
        assert "GET" in response.headers["allow"]


# =============================================================================
# Camps: roles and isolation
# =============================================================================


class TestCampRoutes:

    def test_director_creates_and_opens_camp(self, client, director_headers, seed_tenant):
        start = date.today() + timedelta(days=40)
        response = client.post(
            "/api/camps",
            headers=director_headers,
            json={
                "name": "Spring Hoops",
                "start_date": start.isoformat(),
                "end_date": (start + timedelta(days=4)).isoformat(),
                "price_cents": 19900,
            },
        )
        assert response.status_code == 201
        camp = response.json()["data"]
        assert camp["tenant_id"] == seed_tenant.id
        assert camp["status"] == CampStatus.DRAFT

        response = client.patch(
            f"/api/camps/{camp['id']}/status",
            headers=director_headers,
            json={"status": CampStatus.REGISTRATION_OPEN},
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == CampStatus.REGISTRATION_OPEN

    def test_illegal_status_change(self, client, director_headers, seed_camp):
        response = client.patch(
            f"/api/camps/{seed_camp.id}/status",
            headers=director_headers,
            json={"status": CampStatus.DRAFT},
        )
        assert response.status_code == 400
        assert _error(response)["code"] == ErrorKind.INVALID_TRANSITION.value

    def test_parent_cannot_create_camp(self, client, parent_headers):
        response = client.post(
            "/api/camps",
            headers=parent_headers,
            json={"name": "Nope", "start_date": "2026-07-01", "end_date": "2026-07-02"},
        )
        assert response.status_code == 403
        assert _error(response)["code"] == ErrorKind.FORBIDDEN.value

    def test_other_licensee_cannot_read_camp(self, client, other_director_headers, seed_camp):
        response = client.get(f"/api/camps/{seed_camp.id}", headers=other_director_headers)
        assert response.status_code == 403
        assert _error(response)["code"] == ErrorKind.FORBIDDEN.value

    def test_other_licensee_cannot_run_hq(self, client, other_director_headers, seed_camp):
        response = client.get(f"/api/camps/{seed_camp.id}/hq/days", headers=other_director_headers)
        assert response.status_code == 403

    def test_listing_is_scoped_to_licensee(self, client, other_director_headers, director_headers, seed_camp):
        own = client.get("/api/camps", headers=director_headers).json()["data"]
        assert [c["id"] for c in own] == [seed_camp.id]

        foreign = client.get("/api/camps", headers=other_director_headers).json()["data"]
        assert foreign == []

    def test_parent_cannot_see_campers(self, client, parent_headers, seed_camp):
        response = client.get(f"/api/camps/{seed_camp.id}/campers", headers=parent_headers)
        assert response.status_code == 403


# =============================================================================
# Grouping and schedules
# =============================================================================


class TestGroupingRoutes:

    def test_auto_group_finalize_unfinalize(self, client, director_headers, seed_camp, confirmed_campers):
        base = f"/api/camps/{seed_camp.id}/grouping"

        response = client.post(f"{base}/auto", headers=director_headers)
        assert response.status_code == 200
        state = response.json()["data"]
        assert len(state["groups"]) == 5
        assert state["ungrouped"] == []

        response = client.post(f"{base}/finalize", headers=director_headers)
        assert response.json()["data"]["is_finalized"] is True

        response = client.post(f"{base}/auto", headers=director_headers)
        assert response.status_code == 400
        assert _error(response)["code"] == ErrorKind.INVALID_STATE.value

        assert client.post(f"{base}/unfinalize", headers=director_headers).status_code == 200
        response = client.post(f"{base}/unfinalize", headers=director_headers)
        assert _error(response)["code"] == ErrorKind.INVALID_STATE.value

    def test_friend_requests(self, client, director_headers, seed_camp, confirmed_campers, seed_athletes):
        response = client.put(
            f"/api/camps/{seed_camp.id}/campers/{seed_athletes[0].id}/friend-requests",
            headers=director_headers,
            json={"friend_requests": "Alex Rivera"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["parsed"] == ["alex rivera"]

        state = client.get(f"/api/camps/{seed_camp.id}/grouping", headers=director_headers).json()["data"]
        assert state["friend_groups_count"] == 1

    def test_other_licensee_cannot_group(self, client, other_director_headers, seed_camp):
        response = client.post(f"/api/camps/{seed_camp.id}/grouping/auto", headers=other_director_headers)
        assert response.status_code == 403


class TestScheduleRoutes:

    def test_plan_day_and_build_schedule(self, client, director_headers, seed_camp):
        base = f"/api/camps/{seed_camp.id}/schedule"
        response = client.post(
            f"{base}/days", headers=director_headers, json={"date": seed_camp.start_date.isoformat()}
        )
        assert response.status_code == 201
        camp_day_id = response.json()["data"]["camp_day_id"]

        ids = []
        for label, start, end in [("Arrival", "09:00", "09:30"), ("Soccer", "09:30", "11:00")]:
            response = client.post(
                f"{base}/days/{camp_day_id}/blocks",
                headers=director_headers,
                json={"label": label, "start_time": start, "end_time": end},
            )
            assert response.status_code == 201
            ids.append(response.json()["data"]["id"])

        response = client.put(
            f"{base}/days/{camp_day_id}/order", headers=director_headers, json={"block_ids": ids[::-1]}
        )
        assert [b["label"] for b in response.json()["data"]] == ["Soccer", "Arrival"]

        schedule = client.get(base, headers=director_headers).json()["data"]
        assert [b["start_time"] for b in schedule[0]["blocks"]] == ["09:30", "09:00"]

    def test_end_before_start_is_validation(self, client, director_headers, seed_camp):
        base = f"/api/camps/{seed_camp.id}/schedule"
        camp_day_id = client.post(
            f"{base}/days", headers=director_headers, json={"date": seed_camp.start_date.isoformat()}
        ).json()["data"]["camp_day_id"]

        response = client.post(
            f"{base}/days/{camp_day_id}/blocks",
            headers=director_headers,
            json={"label": "Backwards", "start_time": "11:00", "end_time": "10:00"},
        )
        assert response.status_code == 400
        assert _error(response)["code"] == ErrorKind.VALIDATION.value

    def test_templates(self, client, director_headers, auth_headers, seed_camp):
        template = {
            "name": "Half Day",
            "blocks": [{"label": "Drills", "start_time": "09:00", "end_time": "12:00"}],
        }
        response = client.post("/api/schedule-templates", headers=director_headers, json={**template, "is_global": True})
        assert response.status_code == 403

        response = client.post("/api/schedule-templates", headers=auth_headers, json={**template, "is_global": True})
        assert response.status_code == 201
        template_id = response.json()["data"]["id"]

        listed = client.get("/api/schedule-templates", headers=director_headers).json()["data"]
        assert [t["id"] for t in listed] == [template_id]

        base = f"/api/camps/{seed_camp.id}/schedule"
        camp_day_id = client.post(
            f"{base}/days", headers=director_headers, json={"date": seed_camp.start_date.isoformat()}
        ).json()["data"]["camp_day_id"]
        response = client.post(
            f"{base}/days/{camp_day_id}/apply-template",
            headers=director_headers,
            json={"template_id": template_id},
        )
        assert [b["label"] for b in response.json()["data"]] == ["Drills"]


# =============================================================================
# Camp HQ
# =============================================================================


class TestCampHqRoutes:

    def test_day_flow(self, client, director_headers, seed_camp, confirmed_campers, seed_athletes):
        response = client.post(f"/api/camps/{seed_camp.id}/hq/day/start", headers=director_headers)
        assert response.status_code == 200
        started = response.json()["data"]
        assert started["initialized"] == 2
        day = started["day"]
        assert day["status"] == CampDayStatus.IN_PROGRESS

        base = f"/api/camps/{seed_camp.id}/hq/day/{day['id']}"
        response = client.post(f"{base}/check-in", headers=director_headers, json={"athlete_id": seed_athletes[0].id})
        assert response.status_code == 200

        response = client.post(
            f"{base}/end",
            headers=director_headers,
            json={"recap": {"word_of_the_day": "Grit"}, "send_emails": False},
        )
        assert response.status_code == 200
        ended = response.json()["data"]
        assert ended["checked_out"] == 1
        assert ended["marked_absent"] == 1
        assert ended["is_last_day"] is True

        response = client.get(base, headers=director_headers)
        assert response.json()["data"]["status"] == CampDayStatus.FINISHED

    def test_start_with_explicit_date(self, client, director_headers, seed_camp):
        response = client.post(
            f"/api/camps/{seed_camp.id}/hq/day/start",
            headers=director_headers,
            json={"date": seed_camp.start_date.isoformat()},
        )
        assert response.status_code == 200
        assert response.json()["data"]["day"]["day_number"] == 1

    def test_date_outside_camp(self, client, director_headers, seed_camp):
        response = client.post(
            f"/api/camps/{seed_camp.id}/hq/day/start",
            headers=director_headers,
            json={"date": (seed_camp.end_date + timedelta(days=5)).isoformat()},
        )
        assert response.status_code == 400

    def test_day_from_another_camp(self, client, director_headers, seed_camp, open_camp):
        day = client.post(f"/api/camps/{seed_camp.id}/hq/day/start", headers=director_headers).json()["data"]["day"]
        response = client.get(f"/api/camps/{open_camp.id}/hq/day/{day['id']}", headers=director_headers)
        assert response.status_code == 404


# =============================================================================
# Registration and payment
# =============================================================================


class TestRegistrationPaymentFlow:

    def _draft(self, client, headers, camp, athletes):
        response = client.post(
            "/api/registrations/draft",
            headers=headers,
            json={"camp_id": camp.id, "athlete_ids": [a.id for a in athletes]},
        )
        assert response.status_code == 201
        return response.json()["data"]

    def test_draft_checkout_and_webhook(
        self, client, parent_headers, open_camp, seed_athletes, signed_webhooks
    ):
        draft = self._draft(client, parent_headers, open_camp, seed_athletes)
        assert len(draft["registration_ids"]) == 2

        response = client.post(
            "/api/payments/checkout",
            headers=parent_headers,
            json={"registration_ids": draft["registration_ids"]},
        )
        assert response.status_code == 200
        checkout = response.json()["data"]
        assert checkout["mode"] == "demo"
        assert checkout["total_cents"] == draft["total_price_cents"]
        assert "/registration/confirmation?session_id=" in checkout["checkout_url"]

        payload, header = signed_webhooks({
            "id": "evt_flow",
            "type": "checkout.session.completed",
            "data": {"object": {
                "id": checkout["session_id"],
                "payment_intent": "pi_flow",
                "metadata": {"type": "registration"},
            }},
        })
        response = client.post(
            "/api/payments/webhook",
            content=payload,
            headers={"Stripe-Signature": header, "Content-Type": "application/json"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["confirmed"] == 2

        status = client.get(
            f"/api/payments/status/{draft['registration_ids'][0]}", headers=parent_headers
        ).json()["data"]
        assert status["registration_status"] == RegistrationStatus.CONFIRMED
        assert status["payment_intent_id"] == "pi_flow"

    def test_bad_webhook_signature(self, client, signed_webhooks):
        payload, _ = signed_webhooks({"type": "checkout.session.completed"})
        response = client.post(
            "/api/payments/webhook",
            content=payload,
            headers={"Stripe-Signature": "t=1,v1=deadbeef", "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert _error(response)["code"] == ErrorKind.VALIDATION.value

    def test_other_parent_cannot_see_status(self, client, db_session, seed_tenant, parent_headers, open_camp, seed_athletes):
        draft = self._draft(client, parent_headers, open_camp, seed_athletes)
        stranger = make_user(db_session, seed_tenant, "stranger@test.com", [Roles.PARENT])

        response = client.get(
            f"/api/payments/status/{draft['registration_ids'][0]}",
            headers=token_headers(stranger, [Roles.PARENT]),
        )
        assert response.status_code == 404

    def test_parent_cannot_refund(self, client, parent_headers, confirmed_campers):
        response = client.post(
            "/api/payments/refund",
            headers=parent_headers,
            json={"registration_id": confirmed_campers[0].id},
        )
        assert response.status_code == 403

    def test_staff_lists_camp_registrations(self, client, director_headers, seed_camp, confirmed_campers):
        response = client.get(f"/api/registrations?camp_id={seed_camp.id}", headers=director_headers)
        assert response.status_code == 200
        assert len(response.json()["data"]) == 2


# =============================================================================
# Messaging
# =============================================================================


class TestMessageRoutes:

    def test_send_and_read(self, client, director_headers, parent_headers, seed_parent_user):
        response = client.post(
            "/api/messages",
            headers=director_headers,
            json={"body": "Bring sunscreen tomorrow", "to_user_id": seed_parent_user.id},
        )
        assert response.status_code == 201

        assert client.get("/api/messages/unread", headers=parent_headers).json()["data"] == {"count": 1}

        threads = client.get("/api/messages/threads", headers=parent_headers).json()["data"]
        assert threads["total_count"] == 1
        thread_id = threads["threads"][0]["id"]

        thread = client.get(f"/api/messages/threads/{thread_id}", headers=parent_headers).json()["data"]
        assert [m["body"] for m in thread["messages"]] == ["Bring sunscreen tomorrow"]
        assert client.get("/api/messages/unread", headers=parent_headers).json()["data"] == {"count": 0}

    def test_outsider_cannot_read_thread(
        self, client, db_session, seed_tenant, director_headers, seed_parent_user
    ):
        sent = client.post(
            "/api/messages",
            headers=director_headers,
            json={"body": "Private", "to_user_id": seed_parent_user.id},
        ).json()["data"]
        outsider = make_user(db_session, seed_tenant, "coach@test.com", [Roles.COACH])

        response = client.get(
            f"/api/messages/threads/{sent['thread_id']}",
            headers=token_headers(outsider, [Roles.COACH]),
        )
        assert response.status_code == 404

    def test_empty_body_rejected(self, client, director_headers, seed_parent_user):
        response = client.post(
            "/api/messages",
            headers=director_headers,
            json={"body": "", "to_user_id": seed_parent_user.id},
        )
        assert response.status_code == 400


# =============================================================================
# Reports and people
# =============================================================================


class TestReportRoutes:

    def test_quality_report_for_owner(self, client, owner_headers, seed_camp, confirmed_campers):
        response = client.get(
            "/api/licensee/quality",
            headers=owner_headers,
            params={
                "start_date": (date.today() - timedelta(days=30)).isoformat(),
                "end_date": (date.today() + timedelta(days=30)).isoformat(),
            },
        )
        assert response.status_code == 200
        report = response.json()["data"]
        assert [c["camp_id"] for c in report["camps"]] == [seed_camp.id]

    def test_quality_report_requires_admin(self, client, director_headers):
        assert client.get("/api/licensee/quality", headers=director_headers).status_code == 403

    def test_director_dashboard(self, client, director_headers, seed_camp):
        response = client.get("/api/director/dashboard", headers=director_headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user"]["email"] == "director@test.com"
        assert data["today_camps"][0]["camp_id"] == seed_camp.id

    def test_parent_has_no_dashboard(self, client, parent_headers):
        assert client.get("/api/director/dashboard", headers=parent_headers).status_code == 403

    def test_royalties_are_hq_only(self, client, owner_headers, auth_headers):
        assert client.get("/api/admin/royalties", headers=owner_headers).status_code == 403
        assert client.get("/api/admin/royalties", headers=auth_headers).status_code == 200


class TestPeopleRoutes:

    def test_certification_submit_and_list(self, client, director_headers):
        response = client.post(
            "/api/certifications",
            headers=director_headers,
            json={"certification_type": "first_aid", "document_name": "first_aid.pdf"},
        )
        assert response.status_code == 201

        mine = client.get("/api/certifications/mine", headers=director_headers).json()["data"]
        assert [c["certification_type"] for c in mine] == ["first_aid"]

    def test_cit_application_and_counts(self, client, parent_headers, director_headers):
        response = client.post(
            "/api/cit/applications",
            headers=parent_headers,
            json={"first_name": "Jordan", "last_name": "Lee", "email": "jordan@test.com"},
        )
        assert response.status_code == 201
        assert response.json()["data"]["status"] == "applied"

        counts = client.get("/api/cit/applications/counts", headers=director_headers).json()["data"]
        assert counts["applied"] == 1

    def test_users_require_admin(self, client, director_headers, owner_headers):
        assert client.get("/api/users", headers=director_headers).status_code == 403
        assert client.get("/api/users", headers=owner_headers).status_code == 200
