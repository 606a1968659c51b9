"""
Domain Services - Application Layer.

Services contain business logic and orchestrate operations. Routers stay
thin: they resolve the caller, build the service and wrap its result.

Structure:
    Router (thin controller)
        ↓
    Service (business logic)  ← YOU ARE HERE
        ↓
    Model (entity)

Usage:
    from rest_api.services.domain import CampDayService

    # In router
    service = CampDayService(db)
    days = service.list_camp_days(camp_id)
"""

from .camp_service import CampService
from .camp_day_service import CampDayService
from .grouping_service import GroupingService
from .schedule_service import ScheduleService
from .attendance_service import AttendanceService
from .conclusion_service import CampConclusionService
from .registration_service import RegistrationService
from .royalty_service import RoyaltyService
from .messaging_service import MessagingService
from .user_service import UserService
from .certification_service import CertificationService
from .cit_service import CitService
from .quality_service import QualityService
from .director_dashboard_service import DirectorDashboardService

__all__ = [
    # Camp operations
    "CampService",
    "CampDayService",
    "GroupingService",
    "ScheduleService",
    "AttendanceService",
    "CampConclusionService",
    # Enrollment and money
    "RegistrationService",
    "RoyaltyService",
    # People and communication
    "MessagingService",
    "UserService",
    "CertificationService",
    "CitService",
    # Reporting
    "QualityService",
    "DirectorDashboardService",
]
