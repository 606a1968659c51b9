"""
SQLAlchemy ORM Models Package.

All models are organized into domain-specific modules:
- base: Base class and AuditMixin
- tenant: Tenant
- user: User, UserRole
- athlete: Athlete
- camp: Camp, CampAddon, CampGroup, CamperSessionData, StaffAssignment, SessionCompensation
- camp_day: CampDay, CampAttendance, CampDayRecap, CampIncident
- schedule: ScheduleBlock, ScheduleTemplate, ScheduleTemplateBlock
- registration: Registration, RegistrationAddon, PromoCode
- royalty: RoyaltyInvoice, RoyaltyLineItem
- messaging: MessageThread, MessageParticipant, Message
- certification: VolunteerCertification
- cit: CitApplication, CitProgressEvent, CitAssignment
- notification: Notification
- outbox: OutboxEvent
"""

# Base classes
from .base import Base, AuditMixin

# Core tenant models
from .tenant import Tenant

# User and roles
from .user import User, UserRole

# Campers
from .athlete import Athlete

# Camps
from .camp import (
    Camp,
    CampAddon,
    CampGroup,
    CamperSessionData,
    StaffAssignment,
    SessionCompensation,
)

# Daily operations
from .camp_day import CampDay, CampAttendance, CampDayRecap, CampIncident
from .schedule import ScheduleBlock, ScheduleTemplate, ScheduleTemplateBlock

# Registrations and payments
from .registration import Registration, RegistrationAddon, PromoCode

# Royalties
from .royalty import RoyaltyInvoice, RoyaltyLineItem

# Messaging
from .messaging import MessageThread, MessageParticipant, Message

# Staff pipeline
from .certification import VolunteerCertification
from .cit import CitApplication, CitProgressEvent, CitAssignment

# Delivery
from .notification import Notification
from .outbox import OutboxEvent, OutboxStatus

__all__ = [
    "Base",
    "AuditMixin",
    "Tenant",
    "User",
    "UserRole",
    "Athlete",
    "Camp",
    "CampAddon",
    "CampGroup",
    "CamperSessionData",
    "StaffAssignment",
    "SessionCompensation",
    "CampDay",
    "CampAttendance",
    "CampDayRecap",
    "CampIncident",
    "ScheduleBlock",
    "ScheduleTemplate",
    "ScheduleTemplateBlock",
    "Registration",
    "RegistrationAddon",
    "PromoCode",
    "RoyaltyInvoice",
    "RoyaltyLineItem",
    "MessageThread",
    "MessageParticipant",
    "Message",
    "VolunteerCertification",
    "CitApplication",
    "CitProgressEvent",
    "CitAssignment",
    "Notification",
    "OutboxEvent",
    "OutboxStatus",
]
