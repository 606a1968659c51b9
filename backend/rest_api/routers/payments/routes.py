"""
Payment endpoints - /api/payments/*

Checkout and refunds call the processor; the webhook is the only place
local payment state is reconciled.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from rest_api.routers._common import get_user_id, require_admin
from rest_api.services.domain import RegistrationService
from rest_api.services.payments import PaymentService
from shared.config.constants import ADMIN_ROLES
from shared.config.logging import payments_logger as logger
from shared.config.settings import settings
from shared.infrastructure.db import get_db
from shared.security.auth import current_user_context as current_user, require_tenant_access
from shared.security.rate_limit import CHECKOUT_RATE_LIMIT, limiter
from shared.utils.camp_schemas import CheckoutRequest, RefundRequest
from shared.utils.exceptions import NotFoundError
from shared.utils.schemas import ok

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post("/checkout")
@limiter.limit(CHECKOUT_RATE_LIMIT)
async def create_checkout(
    request: Request,
    body: CheckoutRequest,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    """
    Start a checkout for the caller's pending registrations.

    Free baskets are confirmed immediately; without processor credentials
    a demo session is returned.
    """
    base = settings.base_url.rstrip("/")
    result = await PaymentService(db).create_checkout_session(
        registration_ids=body.registration_ids,
        parent_id=get_user_id(user),
        success_url=body.success_url or f"{base}/registration/confirmation",
        cancel_url=body.cancel_url or f"{base}/registration/cancelled",
    )
    return ok(result)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
) -> dict:
    """
    Processor webhook. The signature is checked against the raw body
    before anything is parsed.
    """
    payload = await request.body()
    if not payload:
        logger.warning("Empty webhook payload")
    return ok(await PaymentService(db).handle_webhook(payload, stripe_signature))


@router.post("/refund")
async def refund(
    body: RefundRequest,
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    registration = RegistrationService(db).get_registration(body.registration_id)
    require_tenant_access(user, registration.tenant_id)
    result = await PaymentService(db).process_refund(
        registration_id=body.registration_id,
        amount_cents=body.amount_cents,
        reason=body.reason,
        requested_by_id=get_user_id(user),
    )
    return ok(result)


@router.get("/status/{registration_id}")
def payment_status(
    registration_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    registration = RegistrationService(db).get_registration(registration_id)
    if ADMIN_ROLES.intersection(user.get("roles", [])):
        require_tenant_access(user, registration.tenant_id)
    elif registration.parent_id != get_user_id(user):
        raise NotFoundError("Registration", registration_id)
    return ok(PaymentService(db).get_payment_status(registration_id))
