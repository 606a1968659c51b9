"""
Request schemas for camps, camp-day operations, schedules, registrations and payments.
"""

from datetime import date, time
from typing import Literal

from pydantic import BaseModel, Field

CampStatusValue = Literal["draft", "registration_open", "in_progress", "completed", "cancelled"]
CampDayStatusValue = Literal["not_started", "in_progress", "finished"]
CheckInMethodValue = Literal["qr", "manual"]
SeverityValue = Literal["low", "medium", "high", "critical"]
IncidentCategoryValue = Literal["injury", "behavior", "complaint", "other"]
StaffRoleValue = Literal["director", "coach", "assistant", "cit", "volunteer"]
ScheduleBlockTypeValue = Literal[
    "arrival", "activity", "curriculum", "break", "meal", "transition", "special", "departure"
]


# =============================================================================
# Camps
# =============================================================================


class CampCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    slug: str | None = None
    description: str | None = None
    location_name: str | None = None
    start_date: date
    end_date: date
    capacity: int | None = Field(default=None, ge=1)
    price_cents: int = Field(default=0, ge=0)
    early_bird_price_cents: int | None = Field(default=None, ge=0)
    early_bird_deadline: date | None = None
    tenant_id: int | None = None  # HQ admins may create camps for a licensee
    max_group_size: int = Field(default=12, ge=1, le=100)
    num_groups: int = Field(default=5, ge=1, le=50)
    max_grade_spread: int = Field(default=2, ge=0, le=13)


class CampUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    location_name: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    capacity: int | None = Field(default=None, ge=1)
    price_cents: int | None = Field(default=None, ge=0)
    early_bird_price_cents: int | None = Field(default=None, ge=0)
    early_bird_deadline: date | None = None
    max_group_size: int | None = Field(default=None, ge=1, le=100)
    num_groups: int | None = Field(default=None, ge=1, le=50)
    max_grade_spread: int | None = Field(default=None, ge=0, le=13)


class CampStatusUpdate(BaseModel):
    status: CampStatusValue


class AddonCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    price_cents: int = Field(ge=0)


class GroupCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    color: str | None = None
    sort_order: int = 0


class GroupAssignment(BaseModel):
    athlete_id: int
    group_id: int | None = None


class FriendRequestsUpdate(BaseModel):
    # Names as the parent wrote them, separated by commas, semicolons or newlines
    friend_requests: str | None = Field(default=None, max_length=1000)


class StaffAssignmentCreate(BaseModel):
    user_id: int
    role: StaffRoleValue


class CompensationUpsert(BaseModel):
    staff_user_id: int
    plan_name: str | None = None
    fixed_stipend_cents: int = Field(default=0, ge=0)
    enrollment_bonus_cents: int = Field(default=0, ge=0)
    csat_bonus_cents: int = Field(default=0, ge=0)
    budget_efficiency_bonus_cents: int = Field(default=0, ge=0)
    guest_speaker_bonus_cents: int = Field(default=0, ge=0)
    csat_avg_score: float | None = Field(default=None, ge=0, le=5)
    is_finalized: bool = False


# =============================================================================
# Camp HQ (daily operations)
# =============================================================================


class StartDayRequest(BaseModel):
    date: date


class DayRecapInput(BaseModel):
    word_of_the_day: str | None = None
    primary_sport: str | None = None
    secondary_sport: str | None = None
    guest_speaker: str | None = None
    notes: str | None = None


class EndDayRequest(BaseModel):
    recap: DayRecapInput | None = None
    auto_checkout_all: bool = True
    send_emails: bool = True
    force: bool = False


class DayNotesUpdate(BaseModel):
    notes: str | None = None


class DayStatusUpdate(BaseModel):
    status: CampDayStatusValue


class CheckInRequest(BaseModel):
    athlete_id: int
    method: CheckInMethodValue = "manual"


class CheckOutRequest(BaseModel):
    athlete_id: int


class AbsentRequest(BaseModel):
    athlete_id: int
    reason: str | None = None


class IncidentCreate(BaseModel):
    athlete_id: int | None = None
    severity: SeverityValue
    category: IncidentCategoryValue = "other"
    description: str = Field(min_length=1)
    action_taken: str | None = None


class ConcludeRequest(BaseModel):
    lock_camp: bool = True
    force: bool = False


class LockRequest(BaseModel):
    reason: str | None = None


# =============================================================================
# Schedules
# =============================================================================


class ScheduleBlockCreate(BaseModel):
    start_time: time
    end_time: time
    label: str = Field(min_length=1, max_length=200)
    description: str | None = None
    location: str | None = None
    staff_notes: str | None = None
    block_type: ScheduleBlockTypeValue = "activity"
    order_index: int | None = Field(default=None, ge=0)  # appended when omitted


class ScheduleBlockUpdate(BaseModel):
    start_time: time | None = None
    end_time: time | None = None
    label: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    location: str | None = None
    staff_notes: str | None = None
    block_type: ScheduleBlockTypeValue | None = None


class ScheduleReorder(BaseModel):
    block_ids: list[int]


class TemplateBlockInput(BaseModel):
    day_number: int = Field(default=1, ge=1)
    start_time: time
    end_time: time
    label: str = Field(min_length=1, max_length=200)
    description: str | None = None
    default_location: str | None = None
    block_type: ScheduleBlockTypeValue = "activity"


class ScheduleTemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    is_global: bool = False  # HQ admins only
    blocks: list[TemplateBlockInput] = Field(min_length=1)


class ApplyTemplateRequest(BaseModel):
    template_id: int
    # Template day to copy; defaults to the camp day's own number
    day_number: int | None = Field(default=None, ge=1)
    replace_existing: bool = False


# =============================================================================
# Registrations and payments
# =============================================================================


class AddonSelection(BaseModel):
    athlete_id: int | None = None
    addon_id: int
    quantity: int = Field(default=1, ge=1, le=99)


class RegistrationDraftRequest(BaseModel):
    camp_id: int
    athlete_ids: list[int] = Field(min_length=1)
    promo_code: str | None = None
    addons: list[AddonSelection] = []


class ConfirmRegistrationRequest(BaseModel):
    session_id: str = Field(min_length=1)


class CheckoutRequest(BaseModel):
    registration_ids: list[int] = Field(min_length=1)
    success_url: str | None = None
    cancel_url: str | None = None


class RefundRequest(BaseModel):
    registration_id: int
    amount_cents: int | None = Field(default=None, gt=0)
    reason: str | None = None
