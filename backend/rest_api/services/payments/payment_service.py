"""
Payment Service: checkout sessions, webhook reconciliation and refunds.

The processor is the source of truth for money. Webhooks mirror its state
into registration rows; a checkout batch (siblings paid together) shares
one checkout session and one payment intent and is always updated as a
whole. Notifications are outbox rows written in the same transaction, so
a delivery problem can never undo a verified payment update.
"""

import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rest_api.models import Registration, User
from rest_api.services.domain.registration_service import RegistrationService
from rest_api.services.events.outbox_service import (
    recipient_from_user,
    write_notification_event,
)
from rest_api.services.payments.allocation import allocate_refund
from rest_api.services.payments.stripe_client import StripeClient, get_stripe_client
from shared.config.constants import PaymentStatus, RegistrationStatus
from shared.config.logging import payments_logger as logger
from shared.config.settings import settings
from shared.infrastructure.db import safe_commit
from shared.infrastructure.events import PAYMENT_FAILED, REFUND_PROCESSED
from shared.utils.exceptions import (
    AlreadyPaidError,
    ExternalServiceError,
    InvalidStateError,
    NotFoundError,
    PaymentAmountError,
    ValidationError,
)

FREE_SESSION_ID = "free_registration"
REGISTRATION_METADATA_TYPE = "registration"

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
CHARGE_REFUNDED = "charge.refunded"


def _metadata_registration_ids(metadata: dict[str, Any] | None) -> list[int]:
    """Parse the comma-joined `registration_ids` metadata value."""
    raw = (metadata or {}).get("registration_ids") or ""
    ids = []
    for part in str(raw).split(","):
        part = part.strip()
        if part.isdigit():
            ids.append(int(part))
    return ids


class PaymentService:
    """Registration payments through the processor client."""

    def __init__(self, db: Session, client: StripeClient | None = None):
        self._db = db
        self._client = client or get_stripe_client()
        self._registrations = RegistrationService(db)

    def _load(self, *criteria) -> list[Registration]:
        return list(
            self._db.execute(
                select(Registration)
                .options(selectinload(Registration.athlete), selectinload(Registration.camp))
                .where(Registration.is_active.is_(True), *criteria)
                .order_by(Registration.id)
                .with_for_update()
            ).scalars()
        )

    # =========================================================================
    # Checkout
    # =========================================================================

    async def create_checkout_session(
        self,
        registration_ids: list[int],
        parent_id: int,
        success_url: str,
        cancel_url: str,
    ) -> dict[str, Any]:
        """
        Start payment for a batch of pending registrations.

        Returns {"session_id", "checkout_url", "mode"} where mode is
        "free", "demo" or "processor".
        """
        if not registration_ids:
            raise ValidationError("No registrations to process")

        registrations = self._load(Registration.id.in_(set(registration_ids)))
        found = {r.id for r in registrations}
        for registration_id in registration_ids:
            if registration_id not in found:
                raise NotFoundError("Registration", registration_id)

        for registration in registrations:
            if registration.parent_id != parent_id:
                raise NotFoundError("Registration", registration.id)
            if registration.payment_status in (PaymentStatus.PAID, PaymentStatus.PARTIAL):
                raise AlreadyPaidError(registration.id)
            if registration.status != RegistrationStatus.PENDING:
                raise InvalidStateError(
                    "Registration",
                    registration.status,
                    [RegistrationStatus.PENDING],
                    registration_id=registration.id,
                )

        if len({r.camp_id for r in registrations}) > 1:
            raise ValidationError("All registrations in a checkout must be for the same camp")

        total_cents = sum(r.total_price_cents for r in registrations)
        primary = registrations[0]

        if total_cents <= 0:
            self._registrations.mark_registrations_paid(
                registrations, checkout_session_id=FREE_SESSION_ID
            )
            safe_commit(self._db)
            logger.info("Free registration confirmed", registration_ids=sorted(found))
            return {
                "session_id": FREE_SESSION_ID,
                "checkout_url": f"{success_url}?session_id={FREE_SESSION_ID}&free=true",
                "mode": "free",
                "total_cents": 0,
            }

        if not self._client.configured:
            session_id = f"demo_{primary.id}_{int(time.time() * 1000)}"
            checkout_url = f"{success_url}?session_id={session_id}&demo=true"
            mode = "demo"
            logger.info("Processor not configured, using demo checkout", session_id=session_id)
        else:
            parent = self._db.get(User, parent_id)
            metadata = {
                "type": REGISTRATION_METADATA_TYPE,
                "registration_ids": ",".join(str(r.id) for r in registrations),
                "camp_id": str(primary.camp_id),
                "tenant_id": str(primary.tenant_id),
            }
            session = await self._client.create_checkout_session(
                line_items=self._line_items(registrations),
                success_url=f"{success_url}?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=cancel_url,
                metadata=metadata,
                customer_email=parent.email if parent else None,
            )
            session_id = session["id"]
            checkout_url = session.get("url")
            mode = "processor"

        for registration in registrations:
            registration.checkout_session_id = session_id
        safe_commit(self._db)

        logger.info(
            "Checkout session created",
            session_id=session_id,
            registration_ids=sorted(found),
            total_cents=total_cents,
            mode=mode,
        )
        return {
            "session_id": session_id,
            "checkout_url": checkout_url,
            "mode": mode,
            "total_cents": total_cents,
        }

    @staticmethod
    def _line_items(registrations: list[Registration]) -> list[dict[str, Any]]:
        """One camp line and one add-on line per registration, plus a single tax line."""
        currency = settings.stripe_currency
        items = []
        tax_cents = 0
        for registration in registrations:
            athlete = registration.athlete.full_name if registration.athlete else "Athlete"
            camp_net = max(0, registration.base_price_cents - registration.discount_cents)
            addons_net = registration.total_price_cents - registration.tax_cents - camp_net
            if camp_net > 0:
                items.append({
                    "price_data": {
                        "currency": currency,
                        "product_data": {
                            "name": registration.camp.name,
                            "description": f"Camp registration for {athlete}",
                        },
                        "unit_amount": camp_net,
                    },
                    "quantity": 1,
                })
            if addons_net > 0:
                items.append({
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": f"Add-ons ({athlete})"},
                        "unit_amount": addons_net,
                    },
                    "quantity": 1,
                })
            tax_cents += registration.tax_cents

        if tax_cents > 0:
            items.append({
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": "Sales Tax"},
                    "unit_amount": tax_cents,
                },
                "quantity": 1,
            })
        return items

    # =========================================================================
    # Webhooks
    # =========================================================================

    async def handle_webhook(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        """
        Verify and apply one processor event.

        Raises:
            WebhookSignatureError: Verification failed; nothing is changed.
        """
        event = self._client.construct_event(payload, signature_header)
        event_type = event["type"]
        obj = (event.get("data") or {}).get("object") or {}

        handlers: dict[str, Callable[[dict[str, Any]], Any]] = {
            CHECKOUT_COMPLETED: self._on_checkout_completed,
            PAYMENT_INTENT_SUCCEEDED: self._on_payment_intent_succeeded,
            PAYMENT_INTENT_FAILED: self._on_payment_failed,
            CHARGE_REFUNDED: self._on_charge_refunded,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.info("Ignoring webhook event", event_type=event_type, event_id=event.get("id"))
            return {"status": "ignored", "event_type": event_type}

        metadata_type = (obj.get("metadata") or {}).get("type")
        if metadata_type and metadata_type != REGISTRATION_METADATA_TYPE:
            logger.info("Ignoring non-registration payment", event_type=event_type, type=metadata_type)
            return {"status": "ignored", "event_type": event_type}

        result = await handler(obj)
        logger.info("Webhook processed", event_type=event_type, event_id=event.get("id"), **result)
        return {"status": "processed", "event_type": event_type, **result}

    def _by_metadata(self, metadata: dict[str, Any] | None) -> list[Registration]:
        ids = _metadata_registration_ids(metadata)
        if not ids:
            return []
        return self._load(Registration.id.in_(ids))

    async def _on_checkout_completed(self, session: dict[str, Any]) -> dict[str, Any]:
        session_id = session.get("id")
        intent_id = session.get("payment_intent")

        registrations = self._load(Registration.checkout_session_id == session_id) if session_id else []
        if not registrations:
            registrations = self._by_metadata(session.get("metadata"))
        if not registrations:
            logger.warning("No registrations for completed checkout", session_id=session_id)
            return {"confirmed": 0}

        changed = self._registrations.mark_registrations_paid(
            registrations, checkout_session_id=session_id, payment_intent_id=intent_id
        )
        if not changed and intent_id:
            # Already confirmed through the intent event; keep both references
            for registration in registrations:
                registration.checkout_session_id = session_id
                registration.payment_intent_id = registration.payment_intent_id or intent_id
        safe_commit(self._db)
        return {"confirmed": len(changed)}

    async def _on_payment_intent_succeeded(self, intent: dict[str, Any]) -> dict[str, Any]:
        intent_id = intent.get("id")
        registrations = self._load(Registration.payment_intent_id == intent_id) if intent_id else []
        if not registrations:
            registrations = self._by_metadata(intent.get("metadata"))
        if not registrations:
            return {"confirmed": 0}

        changed = self._registrations.mark_registrations_paid(
            registrations, payment_intent_id=intent_id
        )
        safe_commit(self._db)
        return {"confirmed": len(changed)}

    async def _on_payment_failed(self, intent: dict[str, Any]) -> dict[str, Any]:
        intent_id = intent.get("id")
        registrations = self._load(Registration.payment_intent_id == intent_id) if intent_id else []
        if not registrations:
            registrations = self._by_metadata(intent.get("metadata"))

        failed = [r for r in registrations if r.payment_status == PaymentStatus.PENDING]
        for registration in failed:
            registration.payment_status = PaymentStatus.FAILED
            registration.payment_intent_id = registration.payment_intent_id or intent_id

        for parent_id, batch in self._group_by_parent(failed).items():
            parent = self._db.get(User, parent_id)
            if parent is None:
                continue
            write_notification_event(
                self._db,
                tenant_id=batch[0].tenant_id,
                event_type=PAYMENT_FAILED,
                aggregate_type="registration",
                aggregate_id=batch[0].id,
                recipients=[recipient_from_user(parent)],
                data={
                    "camp_name": batch[0].camp.name,
                    "registration_ids": [r.id for r in batch],
                    "error": (intent.get("last_payment_error") or {}).get("message"),
                },
            )
        safe_commit(self._db)
        return {"failed": len(failed)}

    async def _on_charge_refunded(self, charge: dict[str, Any]) -> dict[str, Any]:
        intent_id = charge.get("payment_intent")
        amount = int(charge.get("amount") or 0)
        amount_refunded = int(charge.get("amount_refunded") or 0)
        if amount_refunded <= 0:
            logger.warning("Refund event without a refunded amount", payment_intent_id=intent_id)
            return {"refunded": 0}

        registrations = self._load(Registration.payment_intent_id == intent_id) if intent_id else []
        if not registrations:
            metadata = charge.get("metadata") or {}
            if not _metadata_registration_ids(metadata) and intent_id and self._client.configured:
                intent = await self._client.retrieve_payment_intent(intent_id)
                metadata = intent.get("metadata") or {}
            registrations = self._by_metadata(metadata)
            for registration in registrations:
                registration.payment_intent_id = intent_id
        if not registrations:
            logger.warning("No registrations for refunded charge", payment_intent_id=intent_id)
            return {"refunded": 0}

        # Charges without an amount are measured against what was booked
        amount = amount or sum(r.total_price_cents for r in registrations)
        full_refund = amount > 0 and amount_refunded >= amount
        shares = allocate_refund(
            amount_refunded, {r.id: r.total_price_cents for r in registrations}
        )
        now = datetime.now(timezone.utc)
        for registration in registrations:
            registration.refund_amount_cents = shares[registration.id]
            registration.refunded_at = now
            if full_refund:
                registration.payment_status = PaymentStatus.REFUNDED
                registration.status = RegistrationStatus.REFUNDED
            else:
                registration.payment_status = PaymentStatus.PARTIAL

        for parent_id, batch in self._group_by_parent(registrations).items():
            parent = self._db.get(User, parent_id)
            if parent is None:
                continue
            write_notification_event(
                self._db,
                tenant_id=batch[0].tenant_id,
                event_type=REFUND_PROCESSED,
                aggregate_type="registration",
                aggregate_id=batch[0].id,
                recipients=[recipient_from_user(parent)],
                data={
                    "camp_name": batch[0].camp.name,
                    "registration_ids": [r.id for r in batch],
                    "amount_refunded_cents": sum(shares[r.id] for r in batch),
                    "full_refund": full_refund,
                },
            )
        safe_commit(self._db)
        return {
            "refunded": len(registrations),
            "amount_refunded_cents": amount_refunded,
            "full_refund": full_refund,
        }

    @staticmethod
    def _group_by_parent(registrations: list[Registration]) -> dict[int, list[Registration]]:
        groups: dict[int, list[Registration]] = defaultdict(list)
        for registration in registrations:
            groups[registration.parent_id].append(registration)
        return groups

    # =========================================================================
    # Refunds and status
    # =========================================================================

    async def process_refund(
        self,
        registration_id: int,
        amount_cents: int | None = None,
        reason: str | None = None,
        requested_by_id: int | None = None,
    ) -> dict[str, Any]:
        """
        Ask the processor to refund a registration's payment.

        Local state changes when the `charge.refunded` webhook arrives.
        """
        registration = self._registrations.get_registration(registration_id)

        if not registration.payment_intent_id:
            raise ValidationError("No payment to refund", registration_id=registration_id)
        if registration.payment_status not in PaymentStatus.REFUNDABLE:
            raise InvalidStateError(
                "Registration payment",
                registration.payment_status,
                PaymentStatus.REFUNDABLE,
                registration_id=registration_id,
            )

        refundable = registration.total_price_cents - registration.refund_amount_cents
        if amount_cents is not None:
            if amount_cents <= 0:
                raise PaymentAmountError(amount_cents, "must be positive")
            if amount_cents > refundable:
                raise PaymentAmountError(amount_cents, f"exceeds refundable amount {refundable}")

        if not self._client.configured:
            raise ExternalServiceError(
                "payments",
                is_unavailable=True,
                detail="Payment processor is not configured",
            )

        refund = await self._client.create_refund(
            registration.payment_intent_id,
            amount_cents,
            metadata={
                "registration_id": str(registration.id),
                "reason": reason or "",
                "requested_by": str(requested_by_id or ""),
            },
        )
        logger.info(
            "Refund requested",
            registration_id=registration_id,
            refund_id=refund.get("id"),
            amount_cents=amount_cents,
            full=amount_cents is None,
        )
        return {
            "refund_id": refund.get("id"),
            "status": refund.get("status"),
            "amount_cents": refund.get("amount", amount_cents if amount_cents is not None else refundable),
        }

    def get_payment_status(self, registration_id: int) -> dict[str, Any]:
        registration = self._registrations.get_registration(registration_id)
        return {
            "registration_id": registration.id,
            "payment_intent_id": registration.payment_intent_id,
            "checkout_session_id": registration.checkout_session_id,
            "amount_cents": registration.total_price_cents,
            "refund_amount_cents": registration.refund_amount_cents,
            "currency": settings.stripe_currency,
            "status": registration.payment_status,
            "registration_status": registration.status,
            "paid_at": registration.paid_at,
            "created_at": registration.created_at,
        }
