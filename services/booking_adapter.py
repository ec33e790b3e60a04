"""
Normalization of stored bookings and calendar events into ExistingBooking.

Both sources feed the same conflict check, so the adapter is total: a
malformed record degrades to safe defaults instead of raising. An empty
castle name never matches a candidate, and a missing date can never be
placed in time, so a broken historical record cannot block or crash a
validation run.
"""

import re
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, List, Mapping, Optional

import pytz

from core.utils_datetime import (
    TIMEZONE,
    DEFAULT_START_TIME,
    DEFAULT_END_TIME,
    MalformedInputError,
    get_current_datetime,
    parse_booking_date,
    parse_booking_time,
    split_iso_datetime,
)
from domain.enums import BookingStatus, BookingSource
from domain.models import ExistingBooking


logger = logging.getLogger(__name__)


# "Castle: Princess Castle (Overnight)" -> "Princess Castle"
CASTLE_MARKER_PATTERN = re.compile(r'Castle:\s*([^(\n]+)')
OVERNIGHT_MARKER = "(Overnight)"

# Calendar conventions for events already delivered and collected
COMPLETED_COLOR_ID = "11"
COMPLETED_GLYPH = "✅"


def extract_castle_name(description: Optional[str], summary: Optional[str] = "") -> str:
    """
    Find the castle a record refers to.

    Fallback order:
        1. a "Castle: <name>" marker in the description (name ends at "(" or newline)
        2. the summary/title, verbatim
        3. an empty string
    """
    if isinstance(description, str):
        match = CASTLE_MARKER_PATTERN.search(description)
        if match and match.group(1).strip():
            return match.group(1).strip()
    if isinstance(summary, str):
        return summary
    return ""


def is_overnight_marker(text: Optional[str]) -> bool:
    """Check for the "(Overnight)" marker written into notes and descriptions."""
    return isinstance(text, str) and OVERNIGHT_MARKER in text


def _field(record: Any, name: str, default: Any = None) -> Any:
    """Read a field from a mapping or an ORM object."""
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


def _safe_date(value: Any) -> Optional[date]:
    try:
        return parse_booking_date(value)
    except MalformedInputError:
        return None


def _safe_time(value: Any, default: time) -> time:
    if value is None or value == "":
        return default
    try:
        return parse_booking_time(value)
    except MalformedInputError:
        return default


def _safe_status(value: Any) -> BookingStatus:
    if isinstance(value, BookingStatus):
        return value
    try:
        return BookingStatus(str(value).strip().lower())
    except ValueError:
        # Unknown statuses stay active so they still block double-booking
        logger.debug(f"Unknown booking status {value!r}; treating as pending")
        return BookingStatus.PENDING


def _as_id(value: Any) -> str:
    return "" if value is None else str(value)


# ============================================================================
# Calendar events
# ============================================================================

def _event_end_instant(
    end_date: Optional[date],
    end_time: time,
    overnight: bool,
    tz: pytz.BaseTzInfo,
) -> Optional[datetime]:
    if end_date is None:
        return None
    if overnight:
        end_date = end_date + timedelta(days=1)
    return tz.localize(datetime.combine(end_date, end_time))


def from_calendar_event(
    event: Mapping[str, Any],
    now: Optional[datetime] = None,
    tz: pytz.BaseTzInfo = TIMEZONE,
) -> ExistingBooking:
    """
    Normalize a calendar event (Google Calendar shape) into an ExistingBooking.

    Args:
        event: Event mapping with id, summary, description, colorId, status,
            and start/end objects carrying either dateTime or date
        now: Reference instant for deciding whether the event has ended
        tz: Business timezone

    Returns:
        ExistingBooking with source=calendar
    """
    if not isinstance(event, Mapping):
        logger.debug(f"Ignoring non-mapping calendar record: {type(event).__name__}")
        return ExistingBooking(source=BookingSource.CALENDAR)

    now = now or get_current_datetime()
    summary = event.get("summary") if isinstance(event.get("summary"), str) else ""
    description = event.get("description") if isinstance(event.get("description"), str) else ""

    start = event.get("start") if isinstance(event.get("start"), Mapping) else {}
    end = event.get("end") if isinstance(event.get("end"), Mapping) else {}

    start_raw = start.get("dateTime") or start.get("date")
    end_raw = end.get("dateTime") or end.get("date")
    start_date_str, start_time_str = split_iso_datetime(start_raw if isinstance(start_raw, str) else None, tz)
    end_date_str, end_time_str = split_iso_datetime(end_raw if isinstance(end_raw, str) else None, tz)

    booking_date = _safe_date(start_date_str)
    last_date = _safe_date(end_date_str)
    overnight = is_overnight_marker(description)

    if start_time_str is not None:
        # Timed event
        start_time = _safe_time(start_time_str, DEFAULT_START_TIME)
        end_time = _safe_time(end_time_str, DEFAULT_END_TIME)
        if overnight and last_date is not None and booking_date is not None and last_date > booking_date:
            # The event already ends the morning after; the flag adds that day back
            last_date = last_date - timedelta(days=1)
    else:
        # All-day event: end.date is exclusive
        start_time, end_time = DEFAULT_START_TIME, DEFAULT_END_TIME
        if last_date is not None:
            last_date = last_date - timedelta(days=1)

    if booking_date is None or last_date is None or last_date <= booking_date:
        end_date = None
    else:
        end_date = last_date

    status = BookingStatus.CONFIRMED
    if str(event.get("status", "")).lower() == "cancelled":
        status = BookingStatus.CANCELLED
    elif str(event.get("colorId", "")) == COMPLETED_COLOR_ID or COMPLETED_GLYPH in summary:
        status = BookingStatus.COMPLETED
    else:
        event_end = _event_end_instant(end_date or booking_date, end_time, overnight, tz)
        if event_end is not None and event_end < now:
            status = BookingStatus.COMPLETED

    event_id = _as_id(event.get("id"))
    return ExistingBooking(
        id=event_id,
        date=booking_date,
        end_date=end_date,
        start_time=start_time,
        end_time=end_time,
        castle=extract_castle_name(description, summary),
        status=status,
        overnight=overnight,
        source=BookingSource.CALENDAR,
        calendar_event_id=event_id or None,
    )


# ============================================================================
# Database rows
# ============================================================================

def from_database_row(row: Any) -> ExistingBooking:
    """
    Normalize a stored booking (mapping or ORM object) into an ExistingBooking.

    Fields map directly; the castle falls back to the "Castle:" marker in
    the notes, and times fall back to the default all-day window.
    """
    if row is None:
        return ExistingBooking()

    notes = _field(row, "notes")
    castle = _field(row, "castle_name") or _field(row, "castle")
    if not isinstance(castle, str) or not castle.strip():
        castle = extract_castle_name(notes, "")

    booking_date = _safe_date(_field(row, "date"))
    end_date = _safe_date(_field(row, "end_date")) if _field(row, "end_date") else None
    if booking_date is None or (end_date is not None and end_date <= booking_date):
        end_date = None

    overnight = _field(row, "overnight")
    if not isinstance(overnight, bool):
        overnight = is_overnight_marker(notes)

    calendar_event_id = _field(row, "calendar_event_id")
    return ExistingBooking(
        id=_as_id(_field(row, "id")),
        date=booking_date,
        end_date=end_date,
        start_time=_safe_time(_field(row, "start_time"), DEFAULT_START_TIME),
        end_time=_safe_time(_field(row, "end_time"), DEFAULT_END_TIME),
        castle=castle.strip() if isinstance(castle, str) else "",
        status=_safe_status(_field(row, "status", BookingStatus.PENDING.value)),
        overnight=overnight,
        source=BookingSource.DATABASE,
        calendar_event_id=str(calendar_event_id) if calendar_event_id else None,
    )


def normalize_bookings(
    database_rows: Iterable[Any] = (),
    calendar_events: Iterable[Mapping[str, Any]] = (),
    now: Optional[datetime] = None,
    tz: pytz.BaseTzInfo = TIMEZONE,
) -> List[ExistingBooking]:
    """
    Merge both sources into one snapshot list.

    Calendar events that mirror a stored booking (matched through the
    stored calendar_event_id) are dropped in favour of the database row.
    """
    bookings = [from_database_row(row) for row in database_rows]
    mirrored = {b.calendar_event_id for b in bookings if b.calendar_event_id}

    for event in calendar_events:
        booking = from_calendar_event(event, now=now, tz=tz)
        if booking.calendar_event_id and booking.calendar_event_id in mirrored:
            continue
        bookings.append(booking)

    logger.debug(f"Normalized {len(bookings)} existing bookings")
    return bookings
