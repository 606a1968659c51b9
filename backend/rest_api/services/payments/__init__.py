"""
Payment Services - checkout, webhook reconciliation and refunds.

Provides:
- Largest-remainder refund allocation across a checkout batch
- Processor client with webhook signature verification
- PaymentService orchestrating both over registration rows
"""

from .allocation import allocate_refund, distribute_proportionally
from .stripe_client import (
    StripeClient,
    compute_signature,
    verify_webhook_signature,
    get_stripe_client,
    close_stripe_client,
)
from .payment_service import PaymentService, FREE_SESSION_ID

__all__ = [
    # Allocation
    "allocate_refund",
    "distribute_proportionally",
    # Processor client
    "StripeClient",
    "compute_signature",
    "verify_webhook_signature",
    "get_stripe_client",
    "close_stripe_client",
    # Service
    "PaymentService",
    "FREE_SESSION_ID",
]
