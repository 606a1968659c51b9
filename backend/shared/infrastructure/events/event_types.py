"""
Event type constants for outbox events and realtime notifications.
"""

from typing import Final

# Registrations and payments
REGISTRATION_CONFIRMED: Final[str] = "registration.confirmed"
PAYMENT_FAILED: Final[str] = "payment.failed"
REFUND_PROCESSED: Final[str] = "refund.processed"

# Camp day operations
CAMP_DAY_RECAP_EMAIL: Final[str] = "camp_day.recap_email"
CAMP_SESSION_RECAP_EMAIL: Final[str] = "camp_session.recap_email"
CAMP_CONCLUDED: Final[str] = "camp.concluded"

# Royalties
ROYALTY_INVOICE_CREATED: Final[str] = "royalty_invoice.created"
ROYALTY_INVOICE_STATUS_CHANGED: Final[str] = "royalty_invoice.status_changed"

# Messaging
MESSAGE_RECEIVED: Final[str] = "message.received"

# Delivery: one transactional email per recipient, retried independently
EMAIL_SEND: Final[str] = "email.send"

# Maximum serialized realtime event size (bytes)
MAX_EVENT_SIZE: Final[int] = 64 * 1024
