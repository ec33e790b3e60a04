"""FastAPI dependencies: database session, calendar client and booking service."""

from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from core.config import settings
from db.session import get_db
from integrations.google_calendar import CalendarClient, GoogleCalendarClient
from services.booking_service import BookingService


# Singleton instance
_calendar_client_instance: Optional[CalendarClient] = None


def get_calendar_client() -> Optional[CalendarClient]:
    """Calendar collaborator, or None when no calendar token is configured."""
    global _calendar_client_instance
    if _calendar_client_instance is None and settings.calendar_enabled:
        _calendar_client_instance = GoogleCalendarClient()
    return _calendar_client_instance


def get_booking_service(
    db: Session = Depends(get_db),
    calendar: Optional[CalendarClient] = Depends(get_calendar_client),
) -> BookingService:
    """Booking service bound to the request's session."""
    return BookingService(db, calendar=calendar)


__all__ = ["get_db", "get_calendar_client", "get_booking_service"]
