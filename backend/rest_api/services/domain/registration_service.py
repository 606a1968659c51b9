"""
Registration Domain Service.

Draft registrations with pricing (early bird, promo codes, sibling
discount, add-ons, tax), cancellation, and confirmation once a checkout
session is paid.
"""

from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Any, Iterable

from sqlalchemy import select, or_
from sqlalchemy.orm import Session, selectinload

from rest_api.models import (
    Athlete,
    Camp,
    CampAddon,
    CamperSessionData,
    PromoCode,
    Registration,
    RegistrationAddon,
    User,
)
from rest_api.services.events.outbox_service import (
    recipient_from_user,
    write_notification_event,
)
from rest_api.services.domain.user_service import UserService
from shared.config.constants import (
    CampStatus,
    Limits,
    PaymentStatus,
    PromoDiscountType,
    RegistrationStatus,
)
from shared.config.logging import get_logger
from shared.config.settings import settings
from shared.infrastructure.db import safe_commit
from shared.infrastructure.events import REGISTRATION_CONFIRMED
from shared.utils.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from shared.utils.money import apply_bps, format_cents, percent_of
from shared.utils.validators import normalize_promo_code, validate_quantity

logger = get_logger(__name__)

DEMO_SESSION_PREFIX = "demo_"


# =============================================================================
# Pricing
# =============================================================================


def current_base_price(camp: Camp, today: date) -> int:
    """Early-bird price on or before the deadline, otherwise the regular price."""
    if (
        camp.early_bird_price_cents is not None
        and camp.early_bird_deadline is not None
        and today <= camp.early_bird_deadline
    ):
        return camp.early_bird_price_cents
    return camp.price_cents


def promo_discount(promo: PromoCode | None, base_price_cents: int) -> int:
    """Discount one registration gets from a promo code, never more than the base."""
    if promo is None:
        return 0
    if promo.discount_type == PromoDiscountType.PERCENTAGE:
        discount = percent_of(base_price_cents, promo.discount_value)
    else:
        discount = promo.discount_value
    return max(0, min(discount, base_price_cents))


def sibling_discount(base_price_cents: int, position: int, percent: int) -> int:
    """Every athlete after the first in a basket gets `percent` off the base."""
    if position == 0:
        return 0
    return percent_of(base_price_cents, percent)


def registration_total(
    base_price_cents: int,
    discount_cents: int,
    addons_total_cents: int,
    tax_cents: int,
) -> int:
    return max(0, base_price_cents - discount_cents + addons_total_cents + tax_cents)


def confirmation_number(session_id: str) -> str:
    return f"EA-{session_id[-8:].upper()}"


def _format_date(value: date) -> str:
    return f"{value:%B} {value.day}, {value.year}"


class RegistrationService:
    """
    Domain service for camp registrations.

    Confirmation is shared with the payment webhook through
    `mark_registrations_paid`, which never commits on its own.
    """

    def __init__(self, db: Session):
        self._db = db

    # =========================================================================
    # Drafts
    # =========================================================================

    def find_valid_promo(self, tenant_id: int, code: str | None, today: date) -> PromoCode | None:
        """Active promo code inside its validity window and under max uses."""
        normalized = normalize_promo_code(code)
        if not normalized:
            return None

        promo = self._db.scalar(
            select(PromoCode).where(
                PromoCode.tenant_id == tenant_id,
                PromoCode.code == normalized,
                PromoCode.is_active.is_(True),
                or_(PromoCode.valid_from.is_(None), PromoCode.valid_from <= today),
                or_(PromoCode.valid_until.is_(None), PromoCode.valid_until >= today),
            )
        )
        if promo is None:
            logger.info("Promo code not applicable", tenant_id=tenant_id, code=normalized)
            return None
        if promo.max_uses is not None and promo.uses_count >= promo.max_uses:
            logger.info("Promo code exhausted", promo_code_id=promo.id)
            return None
        return promo

    def create_or_update_draft(
        self,
        parent_id: int,
        camp_id: int,
        athletes: list[int],
        promo_code: str | None = None,
        addons: Iterable[dict[str, int]] | None = None,
        today: date | None = None,
    ) -> dict[str, Any]:
        """
        Create or refresh pending registrations for a basket of athletes.

        `addons` entries are {"athlete_id", "addon_id", "quantity"}.
        Paid registrations are skipped; cancelled ones get a fresh row.

        Raises:
            NotFoundError: Unknown camp
            InvalidStateError: Camp is not open for registration
            ValidationError: Empty basket, foreign athlete, unknown add-on
        """
        if not athletes:
            raise ValidationError("At least one athlete is required")
        if len(athletes) > Limits.MAX_ATHLETES_PER_REGISTRATION:
            raise ValidationError(
                f"At most {Limits.MAX_ATHLETES_PER_REGISTRATION} athletes per registration"
            )
        if len(set(athletes)) != len(athletes):
            raise ValidationError("Each athlete can only be registered once")

        camp = self._db.scalar(select(Camp).where(Camp.id == camp_id, Camp.is_active.is_(True)))
        if not camp:
            raise NotFoundError("Camp", camp_id)
        if camp.status != CampStatus.REGISTRATION_OPEN:
            raise InvalidStateError(
                "Camp",
                camp.status,
                [CampStatus.REGISTRATION_OPEN],
                detail="Camp is not open for registration",
                camp_id=camp_id,
            )

        athlete_rows = {
            a.id: a
            for a in self._db.execute(
                select(Athlete).where(Athlete.id.in_(athletes), Athlete.is_active.is_(True))
            ).scalars()
        }
        for athlete_id in athletes:
            athlete = athlete_rows.get(athlete_id)
            if athlete is None:
                raise NotFoundError("Athlete", athlete_id)
            if athlete.parent_id != parent_id:
                raise ForbiddenError("register this athlete", athlete_id=athlete_id)

        addon_selection = self._resolve_addons(camp, athletes, addons or [])

        today = today or datetime.now(timezone.utc).date()
        base_price = current_base_price(camp, today)
        promo = self.find_valid_promo(camp.tenant_id, promo_code, today)

        existing = {
            r.athlete_id: r
            for r in self._db.execute(
                select(Registration)
                .options(selectinload(Registration.addons))
                .where(
                    Registration.camp_id == camp_id,
                    Registration.athlete_id.in_(athletes),
                    Registration.status != RegistrationStatus.CANCELLED,
                    Registration.is_active.is_(True),
                )
            ).scalars()
        }

        registration_ids: list[int] = []
        itemized: list[dict[str, Any]] = []
        total_price_cents = 0

        for position, athlete_id in enumerate(athletes):
            registration = existing.get(athlete_id)
            if registration is not None and registration.payment_status in (
                PaymentStatus.PAID,
                PaymentStatus.PARTIAL,
                PaymentStatus.REFUNDED,
            ):
                logger.info(
                    "Skipping already paid registration",
                    registration_id=registration.id,
                    athlete_id=athlete_id,
                )
                continue

            sibling = sibling_discount(base_price, position, settings.sibling_discount_percent)
            promo_cents = min(promo_discount(promo, base_price), base_price - sibling)
            selected = addon_selection.get(athlete_id, [])
            addons_total = sum(addon.price_cents * qty for addon, qty in selected)
            taxable = max(0, base_price - sibling - promo_cents + addons_total)
            tax = apply_bps(taxable, settings.sales_tax_bps)
            total = registration_total(base_price, sibling + promo_cents, addons_total, tax)

            if registration is None:
                registration = Registration(
                    tenant_id=camp.tenant_id,
                    camp_id=camp_id,
                    athlete_id=athlete_id,
                    parent_id=parent_id,
                    status=RegistrationStatus.PENDING,
                    payment_status=PaymentStatus.PENDING,
                )
                registration.set_created_by(parent_id)
                self._db.add(registration)
            else:
                registration.addons.clear()
                registration.set_updated_by(parent_id)

            registration.base_price_cents = base_price
            registration.discount_cents = sibling + promo_cents
            registration.sibling_discount_cents = sibling
            registration.promo_discount_cents = promo_cents
            registration.promo_code_id = promo.id if promo else None
            registration.addons_total_cents = addons_total
            registration.tax_cents = tax
            registration.total_price_cents = total
            # A new draft starts a new checkout
            registration.checkout_session_id = None
            registration.payment_status = PaymentStatus.PENDING
            for addon, qty in selected:
                registration.addons.append(
                    RegistrationAddon(addon_id=addon.id, quantity=qty, price_cents=addon.price_cents)
                )

            self._db.flush()
            registration_ids.append(registration.id)
            total_price_cents += total

            athlete = athlete_rows[athlete_id]
            itemized.append({
                "registration_id": registration.id,
                "athlete_id": athlete_id,
                "athlete_name": athlete.full_name,
                "base_price_cents": base_price,
                "discount_cents": sibling + promo_cents,
                "sibling_discount_cents": sibling,
                "promo_discount_cents": promo_cents,
                "addons_total_cents": addons_total,
                "tax_cents": tax,
                "total_cents": total,
            })

        safe_commit(self._db)

        logger.info(
            "Registration draft saved",
            camp_id=camp_id,
            parent_id=parent_id,
            registrations=len(registration_ids),
            total_price_cents=total_price_cents,
        )
        return {
            "registration_ids": registration_ids,
            "total_price_cents": total_price_cents,
            "itemized_prices": itemized,
            "promo_applied": promo is not None,
        }

    def _resolve_addons(
        self,
        camp: Camp,
        athletes: list[int],
        addons: Iterable[dict[str, int]],
    ) -> dict[int, list[tuple[CampAddon, int]]]:
        selections = list(addons)
        if not selections:
            return {}

        addon_ids = {s["addon_id"] for s in selections}
        camp_addons = {
            a.id: a
            for a in self._db.execute(
                select(CampAddon).where(
                    CampAddon.id.in_(addon_ids),
                    CampAddon.camp_id == camp.id,
                    CampAddon.is_active.is_(True),
                )
            ).scalars()
        }

        resolved: dict[int, list[tuple[CampAddon, int]]] = defaultdict(list)
        for selection in selections:
            athlete_id = selection.get("athlete_id", athletes[0])
            if athlete_id not in athletes:
                raise ValidationError("Add-on selected for an athlete not in this registration")
            addon = camp_addons.get(selection["addon_id"])
            if addon is None:
                raise NotFoundError("Add-on", selection["addon_id"])
            try:
                quantity = validate_quantity(selection.get("quantity", 1))
            except ValueError as e:
                raise ValidationError(str(e), addon_id=addon.id)
            resolved[athlete_id].append((addon, quantity))
        return resolved

    # =========================================================================
    # Queries
    # =========================================================================

    def get_registrations(
        self,
        parent_id: int | None = None,
        camp_id: int | None = None,
        include_cancelled: bool = False,
    ) -> list[dict[str, Any]]:
        if parent_id is None and camp_id is None:
            raise ValidationError("parent_id or camp_id is required")

        query = (
            select(Registration)
            .options(selectinload(Registration.athlete), selectinload(Registration.camp))
            .where(Registration.is_active.is_(True))
            .order_by(Registration.id)
        )
        if parent_id is not None:
            query = query.where(Registration.parent_id == parent_id)
        if camp_id is not None:
            query = query.where(Registration.camp_id == camp_id)
        if not include_cancelled:
            query = query.where(Registration.status != RegistrationStatus.CANCELLED)

        return [self.to_output(r) for r in self._db.execute(query).scalars()]

    def get_registration(self, registration_id: int) -> Registration:
        registration = self._db.scalar(
            select(Registration).where(
                Registration.id == registration_id,
                Registration.is_active.is_(True),
            )
        )
        if not registration:
            raise NotFoundError("Registration", registration_id)
        return registration

    @staticmethod
    def to_output(registration: Registration) -> dict[str, Any]:
        return {
            "id": registration.id,
            "camp_id": registration.camp_id,
            "camp_name": registration.camp.name if registration.camp else None,
            "athlete_id": registration.athlete_id,
            "athlete_name": registration.athlete.full_name if registration.athlete else None,
            "parent_id": registration.parent_id,
            "status": registration.status,
            "payment_status": registration.payment_status,
            "base_price_cents": registration.base_price_cents,
            "discount_cents": registration.discount_cents,
            "addons_total_cents": registration.addons_total_cents,
            "tax_cents": registration.tax_cents,
            "total_price_cents": registration.total_price_cents,
            "refund_amount_cents": registration.refund_amount_cents,
            "created_at": registration.created_at,
        }

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel_registration(
        self,
        registration_id: int,
        user_id: int,
        parent_id: int | None = None,
    ) -> dict[str, Any]:
        """
        Cancel an unpaid registration.

        When `parent_id` is given the registration must belong to that parent.
        """
        registration = self.get_registration(registration_id)
        if parent_id is not None and registration.parent_id != parent_id:
            raise NotFoundError("Registration", registration_id)

        if registration.payment_status in PaymentStatus.REFUNDABLE:
            raise InvalidStateError(
                "Registration",
                registration.payment_status,
                detail="Cannot cancel paid registration. Please request a refund.",
                registration_id=registration_id,
            )
        if registration.status in (RegistrationStatus.CANCELLED, RegistrationStatus.REFUNDED):
            raise InvalidStateError(
                "Registration",
                registration.status,
                [RegistrationStatus.PENDING, RegistrationStatus.CONFIRMED],
                registration_id=registration_id,
            )

        registration.status = RegistrationStatus.CANCELLED
        registration.cancelled_at = datetime.now(timezone.utc)
        registration.cancelled_by_id = user_id
        registration.set_updated_by(user_id)
        safe_commit(self._db)

        logger.info("Registration cancelled", registration_id=registration_id, user_id=user_id)
        return {"cancelled": True, "registration_id": registration_id}

    # =========================================================================
    # Confirmation
    # =========================================================================

    def mark_registrations_paid(
        self,
        registrations: list[Registration],
        checkout_session_id: str | None = None,
        payment_intent_id: str | None = None,
    ) -> list[Registration]:
        """
        Confirm a paid batch: status, payment fields, camper session data,
        promo usage, parent role and one confirmation event per parent.

        Registrations already paid are left alone. Does not commit.
        Returns the registrations that changed.
        """
        now = datetime.now(timezone.utc)
        changed = [
            r for r in registrations
            if r.payment_status not in (PaymentStatus.PAID, PaymentStatus.PARTIAL, PaymentStatus.REFUNDED)
            and r.status != RegistrationStatus.CANCELLED
        ]
        if not changed:
            return []

        users = UserService(self._db)
        for registration in changed:
            registration.status = RegistrationStatus.CONFIRMED
            registration.payment_status = PaymentStatus.PAID
            registration.paid_at = now
            registration.confirmed_at = now
            if checkout_session_id:
                registration.checkout_session_id = checkout_session_id
            if payment_intent_id:
                registration.payment_intent_id = payment_intent_id
            self._ensure_camper_session_data(registration)
            if registration.promo_code_id is not None:
                promo = self._db.get(PromoCode, registration.promo_code_id)
                if promo is not None:
                    promo.uses_count += 1

        for parent_id, tenant_id in {(r.parent_id, r.tenant_id) for r in changed}:
            users.ensure_parent_role(parent_id, tenant_id, commit=False)

        session_id = checkout_session_id or changed[0].checkout_session_id or str(changed[0].id)
        by_parent: dict[int, list[Registration]] = defaultdict(list)
        for registration in changed:
            by_parent[registration.parent_id].append(registration)

        for parent_id, batch in by_parent.items():
            parent = self._db.get(User, parent_id)
            if parent is None:
                continue
            camp = batch[0].camp
            write_notification_event(
                self._db,
                tenant_id=batch[0].tenant_id,
                event_type=REGISTRATION_CONFIRMED,
                aggregate_type="registration",
                aggregate_id=batch[0].id,
                recipients=[recipient_from_user(parent)],
                data={
                    "camp_id": camp.id,
                    "camp_name": camp.name,
                    "registration_ids": [r.id for r in batch],
                    "athlete_names": [r.athlete.full_name for r in batch],
                    "total_paid_cents": sum(r.total_price_cents for r in batch),
                    "confirmation_number": confirmation_number(session_id),
                },
            )

        logger.info(
            "Registrations confirmed",
            registration_ids=[r.id for r in changed],
            checkout_session_id=checkout_session_id,
            payment_intent_id=payment_intent_id,
        )
        return changed

    def _ensure_camper_session_data(self, registration: Registration) -> None:
        existing = self._db.scalar(
            select(CamperSessionData).where(
                CamperSessionData.camp_id == registration.camp_id,
                CamperSessionData.athlete_id == registration.athlete_id,
            )
        )
        if existing is not None:
            existing.registration_id = registration.id
            return
        self._db.add(
            CamperSessionData(
                tenant_id=registration.tenant_id,
                camp_id=registration.camp_id,
                athlete_id=registration.athlete_id,
                registration_id=registration.id,
            )
        )

    def confirm_registrations_from_payment(self, session_id: str) -> dict[str, Any]:
        """
        Confirm every registration on a checkout session (real or demo).

        Idempotent: a repeated call reports `confirmed: 0` and still returns
        the camp and athlete summary.
        """
        registrations = list(
            self._db.execute(
                select(Registration)
                .options(selectinload(Registration.athlete), selectinload(Registration.camp))
                .where(
                    Registration.checkout_session_id == session_id,
                    Registration.is_active.is_(True),
                )
                .order_by(Registration.id)
                .with_for_update()
            ).scalars()
        )
        if not registrations:
            logger.warning("No registrations for checkout session", session_id=session_id)
            return {"confirmed": 0}

        changed = self.mark_registrations_paid(registrations, checkout_session_id=session_id)
        if changed:
            safe_commit(self._db)

        summary_rows = changed or [
            r for r in registrations if r.status == RegistrationStatus.CONFIRMED
        ] or registrations
        camp = summary_rows[0].camp
        total_cents = sum(r.total_price_cents for r in summary_rows)

        return {
            "confirmed": len(changed),
            "is_demo": session_id.startswith(DEMO_SESSION_PREFIX),
            "camp_name": camp.name,
            "camp_dates": f"{_format_date(camp.start_date)} - {_format_date(camp.end_date)}",
            "location": camp.location_name or "",
            "athlete_names": [r.athlete.full_name for r in summary_rows],
            "total_paid_cents": total_cents,
            "total_paid": format_cents(total_cents),
            "confirmation_number": confirmation_number(session_id),
        }
