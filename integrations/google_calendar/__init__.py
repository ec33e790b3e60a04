"""Google Calendar integration: the calendar the crew works from."""

from .client import (
    CalendarClient,
    CalendarError,
    GoogleCalendarClient,
    InMemoryCalendarClient,
    build_event_body,
)

__all__ = [
    "CalendarClient",
    "CalendarError",
    "GoogleCalendarClient",
    "InMemoryCalendarClient",
    "build_event_body",
]
