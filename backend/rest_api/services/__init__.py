"""
Services module for business logic.

ARCHITECTURE:
- domain/: Application services (camp days, attendance, conclusion,
  registrations, royalties, messaging, users, staff pipeline, reporting)
- payments/: Payment processor client, checkout and webhook reconciliation
- events/: Transactional outbox, notification dispatch, email delivery
- circuit_breaker.py: Fault tolerance for external HTTP services

Usage:
    from rest_api.services.domain import CampDayService
    service = CampDayService(db)
    day = service.start_camp_day(camp_id, date.today(), user_id)
"""
