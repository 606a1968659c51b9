"""
Request schemas for royalties, messaging, users, certifications and CIT.
"""

from datetime import date
from typing import Literal

from pydantic import BaseModel, EmailStr, Field

from shared.config.constants import Limits

RoyaltyStatusValue = Literal["pending", "invoiced", "paid", "overdue", "disputed", "waived"]
RoleValue = Literal["hq_admin", "licensee_owner", "director", "coach", "parent", "cit"]
ReviewOutcome = Literal["approved", "rejected"]
CitStatusValue = Literal[
    "applied",
    "under_review",
    "interview_scheduled",
    "interview_completed",
    "training_pending",
    "training_complete",
    "approved",
    "assigned_first_camp",
    "rejected",
    "on_hold",
    "withdrawn",
]
CitEventValue = Literal[
    "status_change", "note_added", "interview_scheduled", "training_completed", "camp_assigned"
]


# =============================================================================
# Royalties
# =============================================================================


class RoyaltyGenerateRequest(BaseModel):
    camp_id: int
    due_in_days: int | None = Field(default=None, ge=1, le=365)


class RoyaltyBulkGenerateRequest(BaseModel):
    camp_ids: list[int] = Field(min_length=1, max_length=100)
    due_in_days: int | None = Field(default=None, ge=1, le=365)


class RoyaltyStatusUpdate(BaseModel):
    status: RoyaltyStatusValue
    paid_amount_cents: int | None = Field(default=None, ge=0)
    payment_method: str | None = None
    payment_reference: str | None = None
    notes: str | None = None


class RoyaltyAdjustment(BaseModel):
    amount_cents: int  # negative for credits
    notes: str = Field(min_length=1)


# =============================================================================
# Messaging
# =============================================================================


class MessageSend(BaseModel):
    body: str = Field(min_length=1, max_length=Limits.MAX_MESSAGE_LENGTH)
    to_user_id: int | None = None
    thread_id: int | None = None
    subject: str | None = Field(default=None, max_length=200)
    thread_type: str = "general"


# =============================================================================
# Users
# =============================================================================


class UserCreate(BaseModel):
    email: EmailStr
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    password: str | None = Field(default=None, min_length=8)
    role: RoleValue = "parent"


class UserUpdate(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    avatar_url: str | None = None


class RoleAssignment(BaseModel):
    role: RoleValue


# =============================================================================
# Certifications
# =============================================================================


class CertificationSubmit(BaseModel):
    certification_type: str = Field(min_length=1, max_length=100)
    document_url: str | None = None
    document_name: str | None = None
    notes: str | None = None


class CertificationReview(BaseModel):
    status: ReviewOutcome
    reviewer_notes: str | None = None
    expires_at: date | None = None


# =============================================================================
# CIT
# =============================================================================


class CitApplicationCreate(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: EmailStr
    phone: str | None = None
    school_name: str | None = None
    grade: str | None = None
    parent_name: str | None = None
    parent_email: EmailStr | None = None
    why_interested: str | None = None


class CitStatusUpdate(BaseModel):
    status: CitStatusValue
    details: str | None = None
    internal_notes: str | None = None


class CitNotesUpdate(BaseModel):
    notes: str


class CitEventCreate(BaseModel):
    event_type: CitEventValue
    details: str | None = None


class CitAssignmentCreate(BaseModel):
    camp_id: int
    role: str = "cit"
    notes: str | None = None
