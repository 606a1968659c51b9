"""
Centralized constants for the backend application.
Avoids magic strings for roles, status values and transition tables.

Usage:
    from shared.config.constants import Roles, CampDayStatus, ROYALTY_INVOICE_MACHINE

    if status == CampDayStatus.IN_PROGRESS:
        ...

    if not ROYALTY_INVOICE_MACHINE.can_transition(invoice.status, new_status):
        ...
"""

from typing import Final


# =============================================================================
# User Roles
# =============================================================================


class Roles:
    """User role constants."""

    HQ_ADMIN: Final[str] = "hq_admin"
    LICENSEE_OWNER: Final[str] = "licensee_owner"
    DIRECTOR: Final[str] = "director"
    COACH: Final[str] = "coach"
    PARENT: Final[str] = "parent"
    CIT: Final[str] = "cit"

    ALL: Final[list[str]] = [HQ_ADMIN, LICENSEE_OWNER, DIRECTOR, COACH, PARENT, CIT]


# Role groups for common access patterns
ADMIN_ROLES: Final[frozenset[str]] = frozenset({Roles.HQ_ADMIN, Roles.LICENSEE_OWNER})
CAMP_OPS_ROLES: Final[frozenset[str]] = frozenset(
    {Roles.HQ_ADMIN, Roles.LICENSEE_OWNER, Roles.DIRECTOR, Roles.COACH}
)
CAMP_MANAGEMENT_ROLES: Final[frozenset[str]] = frozenset(
    {Roles.HQ_ADMIN, Roles.LICENSEE_OWNER, Roles.DIRECTOR}
)


class StaffRole:
    """Role of a staff member on a specific camp."""

    DIRECTOR: Final[str] = "director"
    COACH: Final[str] = "coach"
    ASSISTANT: Final[str] = "assistant"
    CIT: Final[str] = "cit"
    VOLUNTEER: Final[str] = "volunteer"

    ALL: Final[list[str]] = [DIRECTOR, COACH, ASSISTANT, CIT, VOLUNTEER]


# =============================================================================
# Entity Status Constants
# =============================================================================


class CampStatus:
    DRAFT: Final[str] = "draft"
    REGISTRATION_OPEN: Final[str] = "registration_open"
    IN_PROGRESS: Final[str] = "in_progress"
    COMPLETED: Final[str] = "completed"
    CANCELLED: Final[str] = "cancelled"

    ALL: Final[list[str]] = [DRAFT, REGISTRATION_OPEN, IN_PROGRESS, COMPLETED, CANCELLED]


class CampDayStatus:
    NOT_STARTED: Final[str] = "not_started"
    IN_PROGRESS: Final[str] = "in_progress"
    FINISHED: Final[str] = "finished"

    ALL: Final[list[str]] = [NOT_STARTED, IN_PROGRESS, FINISHED]


class AttendanceStatus:
    NOT_ARRIVED: Final[str] = "not_arrived"
    CHECKED_IN: Final[str] = "checked_in"
    CHECKED_OUT: Final[str] = "checked_out"
    ABSENT: Final[str] = "absent"

    ALL: Final[list[str]] = [NOT_ARRIVED, CHECKED_IN, CHECKED_OUT, ABSENT]
    ATTENDED: Final[list[str]] = [CHECKED_IN, CHECKED_OUT]


class CheckInMethod:
    QR: Final[str] = "qr"
    MANUAL: Final[str] = "manual"

    ALL: Final[list[str]] = [QR, MANUAL]


class GroupingStatus:
    NOT_STARTED: Final[str] = "not_started"
    AUTO_GROUPED: Final[str] = "auto_grouped"
    REVIEWED: Final[str] = "reviewed"  # edited by hand after an automatic run
    FINALIZED: Final[str] = "finalized"

    ALL: Final[list[str]] = [NOT_STARTED, AUTO_GROUPED, REVIEWED, FINALIZED]


class AssignmentType:
    AUTO: Final[str] = "auto"
    MANUAL: Final[str] = "manual"


class ScheduleBlockType:
    ARRIVAL: Final[str] = "arrival"
    ACTIVITY: Final[str] = "activity"
    CURRICULUM: Final[str] = "curriculum"
    BREAK: Final[str] = "break"
    MEAL: Final[str] = "meal"
    TRANSITION: Final[str] = "transition"
    SPECIAL: Final[str] = "special"
    DEPARTURE: Final[str] = "departure"

    ALL: Final[list[str]] = [
        ARRIVAL, ACTIVITY, CURRICULUM, BREAK, MEAL, TRANSITION, SPECIAL, DEPARTURE,
    ]


class RegistrationStatus:
    PENDING: Final[str] = "pending"
    CONFIRMED: Final[str] = "confirmed"
    CANCELLED: Final[str] = "cancelled"
    REFUNDED: Final[str] = "refunded"

    ALL: Final[list[str]] = [PENDING, CONFIRMED, CANCELLED, REFUNDED]


class PaymentStatus:
    PENDING: Final[str] = "pending"
    PAID: Final[str] = "paid"
    FAILED: Final[str] = "failed"
    REFUNDED: Final[str] = "refunded"
    PARTIAL: Final[str] = "partial"

    ALL: Final[list[str]] = [PENDING, PAID, FAILED, REFUNDED, PARTIAL]
    REFUNDABLE: Final[list[str]] = [PAID, PARTIAL]


class PromoDiscountType:
    PERCENTAGE: Final[str] = "percentage"
    FIXED: Final[str] = "fixed"

    ALL: Final[list[str]] = [PERCENTAGE, FIXED]


class IncidentSeverity:
    LOW: Final[str] = "low"
    MEDIUM: Final[str] = "medium"
    HIGH: Final[str] = "high"
    CRITICAL: Final[str] = "critical"

    ALL: Final[list[str]] = [LOW, MEDIUM, HIGH, CRITICAL]


class IncidentCategory:
    INJURY: Final[str] = "injury"
    BEHAVIOR: Final[str] = "behavior"
    COMPLAINT: Final[str] = "complaint"
    OTHER: Final[str] = "other"

    ALL: Final[list[str]] = [INJURY, BEHAVIOR, COMPLAINT, OTHER]


class RoyaltyInvoiceStatus:
    PENDING: Final[str] = "pending"
    INVOICED: Final[str] = "invoiced"
    PAID: Final[str] = "paid"
    OVERDUE: Final[str] = "overdue"
    DISPUTED: Final[str] = "disputed"
    WAIVED: Final[str] = "waived"

    ALL: Final[list[str]] = [PENDING, INVOICED, PAID, OVERDUE, DISPUTED, WAIVED]
    CLOSED: Final[list[str]] = [PAID, WAIVED]


class MessageThreadType:
    LICENSEE_DIRECTOR: Final[str] = "licensee_director"
    DIRECTOR_PARENT: Final[str] = "director_parent"
    DIRECTOR_STAFF: Final[str] = "director_staff"
    ADMIN_LICENSEE: Final[str] = "admin_licensee"
    SUPPORT: Final[str] = "support"
    GENERAL: Final[str] = "general"

    ALL: Final[list[str]] = [
        LICENSEE_DIRECTOR, DIRECTOR_PARENT, DIRECTOR_STAFF, ADMIN_LICENSEE, SUPPORT, GENERAL
    ]


class CertificationStatus:
    PENDING_REVIEW: Final[str] = "pending_review"
    APPROVED: Final[str] = "approved"
    REJECTED: Final[str] = "rejected"
    EXPIRED: Final[str] = "expired"

    ALL: Final[list[str]] = [PENDING_REVIEW, APPROVED, REJECTED, EXPIRED]


class CitApplicationStatus:
    APPLIED: Final[str] = "applied"
    UNDER_REVIEW: Final[str] = "under_review"
    INTERVIEW_SCHEDULED: Final[str] = "interview_scheduled"
    INTERVIEW_COMPLETED: Final[str] = "interview_completed"
    TRAINING_PENDING: Final[str] = "training_pending"
    TRAINING_COMPLETE: Final[str] = "training_complete"
    APPROVED: Final[str] = "approved"
    ASSIGNED_FIRST_CAMP: Final[str] = "assigned_first_camp"
    REJECTED: Final[str] = "rejected"
    ON_HOLD: Final[str] = "on_hold"
    WITHDRAWN: Final[str] = "withdrawn"

    ALL: Final[list[str]] = [
        APPLIED, UNDER_REVIEW, INTERVIEW_SCHEDULED, INTERVIEW_COMPLETED,
        TRAINING_PENDING, TRAINING_COMPLETE, APPROVED, ASSIGNED_FIRST_CAMP,
        REJECTED, ON_HOLD, WITHDRAWN,
    ]


class CitProgressEventType:
    STATUS_CHANGE: Final[str] = "status_change"
    NOTE_ADDED: Final[str] = "note_added"
    INTERVIEW_SCHEDULED: Final[str] = "interview_scheduled"
    TRAINING_COMPLETED: Final[str] = "training_completed"
    CAMP_ASSIGNED: Final[str] = "camp_assigned"

    ALL: Final[list[str]] = [
        STATUS_CHANGE, NOTE_ADDED, INTERVIEW_SCHEDULED, TRAINING_COMPLETED, CAMP_ASSIGNED
    ]


# =============================================================================
# Status transition tables
# =============================================================================


class StatusMachine:
    """
    Explicit finite-state machine over string statuses.

    Every legal edge is listed; anything not listed is rejected.
    Statuses without outgoing edges are terminal.
    """

    def __init__(
        self,
        name: str,
        transitions: dict[str, frozenset[str]],
        allow_same: bool = False,
    ):
        self.name = name
        self._transitions = transitions
        self._allow_same = allow_same

    @property
    def states(self) -> frozenset[str]:
        targets = set()
        for allowed in self._transitions.values():
            targets |= allowed
        return frozenset(self._transitions) | frozenset(targets)

    def allowed(self, current: str) -> frozenset[str]:
        return self._transitions.get(current, frozenset())

    def is_terminal(self, current: str) -> bool:
        return not self.allowed(current)

    def can_transition(self, current: str, new: str) -> bool:
        if current == new:
            return self._allow_same
        return new in self.allowed(current)


CAMP_MACHINE: Final[StatusMachine] = StatusMachine(
    "camp",
    {
        CampStatus.DRAFT: frozenset({CampStatus.REGISTRATION_OPEN, CampStatus.CANCELLED}),
        CampStatus.REGISTRATION_OPEN: frozenset(
            {CampStatus.DRAFT, CampStatus.IN_PROGRESS, CampStatus.CANCELLED}
        ),
        CampStatus.IN_PROGRESS: frozenset({CampStatus.COMPLETED, CampStatus.CANCELLED}),
        CampStatus.COMPLETED: frozenset(),
        CampStatus.CANCELLED: frozenset(),
    },
)

CAMP_DAY_MACHINE: Final[StatusMachine] = StatusMachine(
    "camp_day",
    {
        CampDayStatus.NOT_STARTED: frozenset({CampDayStatus.IN_PROGRESS}),
        CampDayStatus.IN_PROGRESS: frozenset({CampDayStatus.FINISHED}),
        CampDayStatus.FINISHED: frozenset(),
    },
)

ROYALTY_INVOICE_MACHINE: Final[StatusMachine] = StatusMachine(
    "royalty_invoice",
    {
        RoyaltyInvoiceStatus.PENDING: frozenset(
            {RoyaltyInvoiceStatus.INVOICED, RoyaltyInvoiceStatus.WAIVED}
        ),
        RoyaltyInvoiceStatus.INVOICED: frozenset({
            RoyaltyInvoiceStatus.PAID,
            RoyaltyInvoiceStatus.OVERDUE,
            RoyaltyInvoiceStatus.DISPUTED,
            RoyaltyInvoiceStatus.WAIVED,
        }),
        RoyaltyInvoiceStatus.OVERDUE: frozenset({
            RoyaltyInvoiceStatus.PAID,
            RoyaltyInvoiceStatus.DISPUTED,
            RoyaltyInvoiceStatus.WAIVED,
        }),
        RoyaltyInvoiceStatus.DISPUTED: frozenset({
            RoyaltyInvoiceStatus.INVOICED,
            RoyaltyInvoiceStatus.PAID,
            RoyaltyInvoiceStatus.WAIVED,
        }),
        RoyaltyInvoiceStatus.PAID: frozenset(),
        RoyaltyInvoiceStatus.WAIVED: frozenset(),
    },
    allow_same=True,
)

# CIT applicants move freely through the pipeline until they withdraw
CIT_APPLICATION_MACHINE: Final[StatusMachine] = StatusMachine(
    "cit_application",
    {
        status: frozenset(s for s in CitApplicationStatus.ALL if s != status)
        for status in CitApplicationStatus.ALL
        if status != CitApplicationStatus.WITHDRAWN
    } | {CitApplicationStatus.WITHDRAWN: frozenset()},
)


# =============================================================================
# Limits
# =============================================================================


class Limits:
    """Pagination and payload limits."""

    DEFAULT_PAGE_SIZE: Final[int] = 50
    MAX_PAGE_SIZE: Final[int] = 200
    MESSAGE_PREVIEW_CHARS: Final[int] = 100
    MAX_MESSAGE_LENGTH: Final[int] = 10_000
    MAX_ATHLETES_PER_REGISTRATION: Final[int] = 10
