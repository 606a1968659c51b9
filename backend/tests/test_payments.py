"""
Tests for the payment layer.

Covers:
- Largest-remainder refund allocation
- Webhook signature verification
- Checkout session creation (free, demo and processor modes)
- Webhook reconciliation (completed, failed, refunded)
- Refund requests
"""

import json
import time
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from rest_api.models import OutboxEvent, Registration
from rest_api.services.payments import (
    FREE_SESSION_ID,
    PaymentService,
    StripeClient,
    allocate_refund,
    compute_signature,
    distribute_proportionally,
    verify_webhook_signature,
)
from rest_api.services.payments.stripe_client import encode_form
from shared.config.constants import PaymentStatus, RegistrationStatus
from shared.infrastructure.events import PAYMENT_FAILED, REFUND_PROCESSED
from shared.utils.exceptions import (
    AlreadyPaidError,
    ExternalServiceError,
    InvalidStateError,
    NotFoundError,
    PaymentAmountError,
    ValidationError,
    WebhookSignatureError,
)

from conftest import make_user

WEBHOOK_SECRET = "whsec_test"


def _signed(event: dict, secret: str = WEBHOOK_SECRET, timestamp: int | None = None):
    payload = json.dumps(event).encode()
    ts = timestamp if timestamp is not None else int(time.time())
    return payload, f"t={ts},v1={compute_signature(payload, secret, ts)}"


def _pending(db, camp, athlete, total_cents=25000, **kwargs):
    registration = Registration(
        tenant_id=camp.tenant_id,
        camp_id=camp.id,
        athlete_id=athlete.id,
        parent_id=athlete.parent_id,
        status=RegistrationStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        base_price_cents=total_cents,
        total_price_cents=total_cents,
        **kwargs,
    )
    db.add(registration)
    db.commit()
    db.refresh(registration)
    return registration


@pytest.fixture
def demo_client():
    return StripeClient(secret_key="", webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def live_client():
    client = StripeClient(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET)
    client.create_checkout_session = AsyncMock(
        return_value={"id": "cs_test_abc", "url": "https://checkout.example/cs_test_abc"}
    )
    client.create_refund = AsyncMock(return_value={"id": "re_1", "status": "succeeded", "amount": 5000})
    client.retrieve_payment_intent = AsyncMock(return_value={"metadata": {}})
    return client


@pytest.fixture
def pending_batch(db_session, open_camp, seed_athletes):
    return [_pending(db_session, open_camp, a) for a in seed_athletes]


@pytest.fixture
def paid_batch(db_session, seed_camp, confirmed_campers):
    for registration in confirmed_campers:
        registration.payment_intent_id = "pi_batch"
    db_session.commit()
    return confirmed_campers


# =============================================================================
# Allocation
# =============================================================================


class TestAllocation:
    """distribute_proportionally / allocate_refund."""

    def test_even_split_gives_extra_cent_to_first(self):
        assert distribute_proportionally(100, [1, 1, 1]) == [34, 33, 33]

    def test_proportional_shares(self):
        assert distribute_proportionally(10000, [30000, 10000]) == [7500, 2500]

    def test_largest_remainder_wins(self):
        # 10 * 2/7 = 2.86, 10 * 5/7 = 7.14
        assert distribute_proportionally(10, [2, 5]) == [3, 7]

    def test_zero_weights_split_evenly(self):
        assert distribute_proportionally(5, [0, 0]) == [3, 2]

    def test_empty_weights(self):
        assert distribute_proportionally(100, []) == []

    def test_negative_inputs_rejected(self):
        with pytest.raises(ValueError):
            distribute_proportionally(-1, [1])
        with pytest.raises(ValueError):
            distribute_proportionally(10, [1, -1])

    def test_allocate_refund_by_id(self):
        assert allocate_refund(1000, {7: 30000, 9: 30000}) == {7: 500, 9: 500}


# =============================================================================
# Signatures
# =============================================================================


class TestWebhookSignature:

    def test_valid_signature_returns_event(self):
        payload, header = _signed({"id": "evt_1", "type": "ping"})
        assert verify_webhook_signature(payload, header, WEBHOOK_SECRET)["id"] == "evt_1"

    def test_any_matching_v1_is_accepted(self):
        payload, header = _signed({"type": "ping"})
        header = header.replace("v1=", "v1=deadbeef,v1=")
        assert verify_webhook_signature(payload, header, WEBHOOK_SECRET)["type"] == "ping"

    def test_stale_timestamp(self):
        payload, header = _signed({"type": "ping"}, timestamp=1_000_000)
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(payload, header, WEBHOOK_SECRET, now=1_000_301)

    def test_within_tolerance(self):
        payload, header = _signed({"type": "ping"}, timestamp=1_000_000)
        assert verify_webhook_signature(payload, header, WEBHOOK_SECRET, now=1_000_300)

    def test_wrong_secret(self):
        payload, header = _signed({"type": "ping"}, secret="whsec_other")
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(payload, header, WEBHOOK_SECRET)

    def test_tampered_body(self):
        _, header = _signed({"type": "ping"})
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(b'{"type": "pong"}', header, WEBHOOK_SECRET)

    @pytest.mark.parametrize("header", [None, "", "v1=abc", "t=abc,v1=abc", "t=123"])
    def test_malformed_header(self, header):
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(b"{}", header, WEBHOOK_SECRET)

    def test_missing_secret(self):
        payload, header = _signed({"type": "ping"})
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(payload, header, "")

    def test_signed_non_event_body(self):
        ts = int(time.time())
        payload = b"[1, 2]"
        header = f"t={ts},v1={compute_signature(payload, WEBHOOK_SECRET, ts)}"
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(payload, header, WEBHOOK_SECRET)


class TestFormEncoding:

    def test_nested_params(self):
        pairs = encode_form({
            "line_items": [{"quantity": 1, "price_data": {"unit_amount": 500}}],
            "metadata": {"type": "registration"},
            "customer_email": None,
        })
        assert pairs == [
            ("line_items[0][quantity]", "1"),
            ("line_items[0][price_data][unit_amount]", "500"),
            ("metadata[type]", "registration"),
        ]


# =============================================================================
# Checkout
# =============================================================================


class TestCheckout:

    @pytest.mark.asyncio
    async def test_demo_checkout(self, db_session, pending_batch, seed_parent_user, demo_client):
        service = PaymentService(db_session, client=demo_client)
        result = await service.create_checkout_session(
            [r.id for r in pending_batch], seed_parent_user.id,
            "https://app.test/success", "https://app.test/cancel",
        )

        assert result["mode"] == "demo"
        assert result["total_cents"] == 50000
        assert result["session_id"].startswith(f"demo_{pending_batch[0].id}_")
        assert result["checkout_url"] == (
            f"https://app.test/success?session_id={result['session_id']}&demo=true"
        )
        for registration in pending_batch:
            db_session.refresh(registration)
            assert registration.checkout_session_id == result["session_id"]
            assert registration.status == RegistrationStatus.PENDING

    @pytest.mark.asyncio
    async def test_free_checkout_confirms_immediately(
        self, db_session, open_camp, seed_athletes, seed_parent_user, demo_client
    ):
        registration = _pending(db_session, open_camp, seed_athletes[0], total_cents=0)

        result = await PaymentService(db_session, client=demo_client).create_checkout_session(
            [registration.id], seed_parent_user.id, "https://app.test/ok", "https://app.test/no"
        )

        assert result["mode"] == "free"
        assert result["session_id"] == FREE_SESSION_ID
        assert result["checkout_url"] == "https://app.test/ok?session_id=free_registration&free=true"
        db_session.refresh(registration)
        assert registration.status == RegistrationStatus.CONFIRMED
        assert registration.payment_status == PaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_processor_checkout(self, db_session, pending_batch, seed_parent_user, live_client):
        result = await PaymentService(db_session, client=live_client).create_checkout_session(
            [r.id for r in pending_batch], seed_parent_user.id, "https://app.test/s", "https://app.test/c"
        )

        assert result == {
            "session_id": "cs_test_abc",
            "checkout_url": "https://checkout.example/cs_test_abc",
            "mode": "processor",
            "total_cents": 50000,
        }
        kwargs = live_client.create_checkout_session.await_args.kwargs
        assert kwargs["success_url"] == "https://app.test/s?session_id={CHECKOUT_SESSION_ID}"
        assert kwargs["customer_email"] == "parent@test.com"
        assert kwargs["metadata"]["type"] == "registration"
        assert kwargs["metadata"]["registration_ids"] == ",".join(str(r.id) for r in pending_batch)
        assert len(kwargs["line_items"]) == 2

    @pytest.mark.asyncio
    async def test_empty_batch(self, db_session, seed_parent_user, demo_client):
        with pytest.raises(ValidationError):
            await PaymentService(db_session, client=demo_client).create_checkout_session(
                [], seed_parent_user.id, "s", "c"
            )

    @pytest.mark.asyncio
    async def test_foreign_registration(self, db_session, seed_tenant, pending_batch, demo_client):
        stranger = make_user(db_session, seed_tenant, "stranger@test.com", [])
        with pytest.raises(NotFoundError):
            await PaymentService(db_session, client=demo_client).create_checkout_session(
                [pending_batch[0].id], stranger.id, "s", "c"
            )

    @pytest.mark.asyncio
    async def test_already_paid(self, db_session, confirmed_campers, seed_parent_user, demo_client):
        with pytest.raises(AlreadyPaidError):
            await PaymentService(db_session, client=demo_client).create_checkout_session(
                [confirmed_campers[0].id], seed_parent_user.id, "s", "c"
            )

    @pytest.mark.asyncio
    async def test_cancelled_registration(self, db_session, pending_batch, seed_parent_user, demo_client):
        pending_batch[0].status = RegistrationStatus.CANCELLED
        db_session.commit()
        with pytest.raises(InvalidStateError):
            await PaymentService(db_session, client=demo_client).create_checkout_session(
                [pending_batch[0].id], seed_parent_user.id, "s", "c"
            )

    @pytest.mark.asyncio
    async def test_mixed_camps(
        self, db_session, seed_camp, open_camp, seed_athletes, seed_parent_user, demo_client
    ):
        first = _pending(db_session, open_camp, seed_athletes[0])
        second = _pending(db_session, seed_camp, seed_athletes[1])
        with pytest.raises(ValidationError):
            await PaymentService(db_session, client=demo_client).create_checkout_session(
                [first.id, second.id], seed_parent_user.id, "s", "c"
            )


# =============================================================================
# Webhooks
# =============================================================================


class TestWebhooks:

    @pytest.mark.asyncio
    async def test_checkout_completed_confirms_batch(self, db_session, pending_batch, demo_client):
        for registration in pending_batch:
            registration.checkout_session_id = "cs_live_1"
        db_session.commit()

        payload, header = _signed({
            "id": "evt_1",
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_live_1", "payment_intent": "pi_1", "metadata": {"type": "registration"}}},
        })
        result = await PaymentService(db_session, client=demo_client).handle_webhook(payload, header)

        assert result == {"status": "processed", "event_type": "checkout.session.completed", "confirmed": 2}
        for registration in pending_batch:
            db_session.refresh(registration)
            assert registration.status == RegistrationStatus.CONFIRMED
            assert registration.payment_intent_id == "pi_1"

    @pytest.mark.asyncio
    async def test_checkout_completed_twice_is_idempotent(self, db_session, pending_batch, demo_client):
        payload, header = _signed({
            "type": "checkout.session.completed",
            "data": {"object": {
                "id": "cs_live_2",
                "payment_intent": "pi_2",
                "metadata": {"registration_ids": ",".join(str(r.id) for r in pending_batch)},
            }},
        })
        service = PaymentService(db_session, client=demo_client)

        assert (await service.handle_webhook(payload, header))["confirmed"] == 2
        assert (await service.handle_webhook(payload, header))["confirmed"] == 0

    @pytest.mark.asyncio
    async def test_bad_signature_changes_nothing(self, db_session, pending_batch, demo_client):
        payload, _ = _signed({"type": "checkout.session.completed", "data": {"object": {}}})
        with pytest.raises(WebhookSignatureError):
            await PaymentService(db_session, client=demo_client).handle_webhook(payload, "t=1,v1=bad")

    @pytest.mark.asyncio
    async def test_unhandled_event_ignored(self, db_session, demo_client):
        payload, header = _signed({"type": "customer.created", "data": {"object": {}}})
        result = await PaymentService(db_session, client=demo_client).handle_webhook(payload, header)
        assert result == {"status": "ignored", "event_type": "customer.created"}

    @pytest.mark.asyncio
    async def test_non_registration_payment_ignored(self, db_session, pending_batch, demo_client):
        payload, header = _signed({
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_x", "metadata": {"type": "merchandise"}}},
        })
        result = await PaymentService(db_session, client=demo_client).handle_webhook(payload, header)
        assert result["status"] == "ignored"

    @pytest.mark.asyncio
    async def test_payment_failed(self, db_session, pending_batch, seed_parent_user, demo_client):
        for registration in pending_batch:
            registration.payment_intent_id = "pi_fail"
        db_session.commit()

        payload, header = _signed({
            "type": "payment_intent.payment_failed",
            "data": {"object": {"id": "pi_fail", "last_payment_error": {"message": "Card declined"}}},
        })
        result = await PaymentService(db_session, client=demo_client).handle_webhook(payload, header)

        assert result["failed"] == 2
        for registration in pending_batch:
            db_session.refresh(registration)
            assert registration.payment_status == PaymentStatus.FAILED
            assert registration.status == RegistrationStatus.PENDING

        event = db_session.scalar(select(OutboxEvent).where(OutboxEvent.event_type == PAYMENT_FAILED))
        payload = json.loads(event.payload)
        assert payload["recipients"][0]["user_id"] == seed_parent_user.id
        assert payload["data"]["error"] == "Card declined"

    @pytest.mark.asyncio
    async def test_full_refund(self, db_session, paid_batch, demo_client):
        payload, header = _signed({
            "type": "charge.refunded",
            "data": {"object": {"payment_intent": "pi_batch", "amount": 60000, "amount_refunded": 60000}},
        })
        result = await PaymentService(db_session, client=demo_client).handle_webhook(payload, header)

        assert result["refunded"] == 2
        assert result["full_refund"] is True
        for registration in paid_batch:
            db_session.refresh(registration)
            assert registration.refund_amount_cents == 30000
            assert registration.payment_status == PaymentStatus.REFUNDED
            assert registration.status == RegistrationStatus.REFUNDED
            assert registration.refunded_at is not None

    @pytest.mark.asyncio
    async def test_partial_refund_is_allocated(self, db_session, paid_batch, demo_client):
        payload, header = _signed({
            "type": "charge.refunded",
            "data": {"object": {"payment_intent": "pi_batch", "amount": 60000, "amount_refunded": 10001}},
        })
        result = await PaymentService(db_session, client=demo_client).handle_webhook(payload, header)

        assert result["full_refund"] is False
        db_session.expire_all()
        shares = [db_session.get(Registration, r.id).refund_amount_cents for r in paid_batch]
        assert shares == [5001, 5000]
        assert {db_session.get(Registration, r.id).payment_status for r in paid_batch} == {PaymentStatus.PARTIAL}
        assert {db_session.get(Registration, r.id).status for r in paid_batch} == {RegistrationStatus.CONFIRMED}

        event = db_session.scalar(select(OutboxEvent).where(OutboxEvent.event_type == REFUND_PROCESSED))
        assert json.loads(event.payload)["data"]["amount_refunded_cents"] == 10001

    @pytest.mark.asyncio
    async def test_refund_without_charge_amount(self, db_session, paid_batch, demo_client):
        payload, header = _signed({
            "type": "charge.refunded",
            "data": {"object": {"payment_intent": "pi_batch", "amount_refunded": 0}},
        })
        result = await PaymentService(db_session, client=demo_client).handle_webhook(payload, header)

        assert result["refunded"] == 0
        assert "full_refund" not in result
        for registration in paid_batch:
            db_session.refresh(registration)
            assert registration.status == RegistrationStatus.CONFIRMED
            assert registration.refunded_at is None

    @pytest.mark.asyncio
    async def test_full_refund_without_charge_amount(self, db_session, paid_batch, demo_client):
        payload, header = _signed({
            "type": "charge.refunded",
            "data": {"object": {"payment_intent": "pi_batch", "amount_refunded": 60000}},
        })
        result = await PaymentService(db_session, client=demo_client).handle_webhook(payload, header)

        assert result["full_refund"] is True

    @pytest.mark.asyncio
    async def test_refund_found_through_intent_metadata(self, db_session, confirmed_campers, live_client):
        live_client.retrieve_payment_intent.return_value = {
            "metadata": {"registration_ids": str(confirmed_campers[0].id)}
        }
        payload, header = _signed({
            "type": "charge.refunded",
            "data": {"object": {"payment_intent": "pi_unknown", "amount": 30000, "amount_refunded": 30000}},
        })
        result = await PaymentService(db_session, client=live_client).handle_webhook(payload, header)

        assert result["refunded"] == 1
        live_client.retrieve_payment_intent.assert_awaited_once_with("pi_unknown")
        db_session.refresh(confirmed_campers[0])
        assert confirmed_campers[0].payment_intent_id == "pi_unknown"

    @pytest.mark.asyncio
    async def test_refund_without_registrations(self, db_session, demo_client):
        payload, header = _signed({
            "type": "charge.refunded",
            "data": {"object": {"payment_intent": "pi_none", "amount": 100, "amount_refunded": 100}},
        })
        result = await PaymentService(db_session, client=demo_client).handle_webhook(payload, header)
        assert result["refunded"] == 0


# =============================================================================
# Refund requests and status
# =============================================================================


class TestRefundRequests:

    @pytest.mark.asyncio
    async def test_partial_refund_request(self, db_session, paid_batch, live_client):
        result = await PaymentService(db_session, client=live_client).process_refund(
            paid_batch[0].id, 5000, reason="Injury", requested_by_id=1
        )

        assert result == {"refund_id": "re_1", "status": "succeeded", "amount_cents": 5000}
        live_client.create_refund.assert_awaited_once()
        args, kwargs = live_client.create_refund.await_args
        assert args == ("pi_batch", 5000)
        assert kwargs["metadata"]["reason"] == "Injury"

    @pytest.mark.asyncio
    async def test_no_payment_intent(self, db_session, confirmed_campers, live_client):
        with pytest.raises(ValidationError):
            await PaymentService(db_session, client=live_client).process_refund(confirmed_campers[0].id)

    @pytest.mark.asyncio
    async def test_not_refundable(self, db_session, paid_batch, live_client):
        paid_batch[0].payment_status = PaymentStatus.REFUNDED
        db_session.commit()
        with pytest.raises(InvalidStateError):
            await PaymentService(db_session, client=live_client).process_refund(paid_batch[0].id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -100, 30001])
    async def test_bad_amount(self, db_session, paid_batch, live_client, amount):
        with pytest.raises(PaymentAmountError):
            await PaymentService(db_session, client=live_client).process_refund(paid_batch[0].id, amount)
        live_client.create_refund.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_processor_not_configured(self, db_session, paid_batch, demo_client):
        with pytest.raises(ExternalServiceError):
            await PaymentService(db_session, client=demo_client).process_refund(paid_batch[0].id)

    def test_payment_status(self, db_session, paid_batch, demo_client):
        status = PaymentService(db_session, client=demo_client).get_payment_status(paid_batch[0].id)
        assert status["status"] == PaymentStatus.PAID
        assert status["payment_intent_id"] == "pi_batch"
        assert status["amount_cents"] == 30000

    def test_payment_status_unknown(self, db_session, demo_client):
        with pytest.raises(NotFoundError):
            PaymentService(db_session, client=demo_client).get_payment_status(404)
