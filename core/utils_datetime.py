"""
DateTime utilities for booking dates and times.
Parses form/calendar date and time strings into comparable,
timezone-aware intervals in the business timezone.
"""
from datetime import datetime, timedelta, date, time
from typing import Optional, Tuple, Union
import re
import pytz

from core.config import settings


# Timezone configuration
TIMEZONE = pytz.timezone(settings.business_timezone)

# Window used when a booking or event carries a date but no times
DEFAULT_START_TIME = time(9, 0)
DEFAULT_END_TIME = time(18, 0)

ISO_DATE_PATTERN = re.compile(r'^(\d{4})-(\d{2})-(\d{2})$')
TIME_PATTERN = re.compile(r'^([01]?\d|2[0-3]):([0-5]\d)$')


class MalformedInputError(ValueError):
    """A date or time string could not be parsed."""

    def __init__(self, field: str, value: object, message: Optional[str] = None):
        self.field = field
        self.value = value
        super().__init__(message or f"Invalid {field}: {value!r}")


def get_current_datetime() -> datetime:
    """Get current datetime in the business timezone."""
    return datetime.now(TIMEZONE)


def localize(dt: datetime, tz: pytz.BaseTzInfo = TIMEZONE) -> datetime:
    """Attach the business timezone to a naive datetime, or convert an aware one."""
    if dt.tzinfo is None:
        return tz.localize(dt)
    return dt.astimezone(tz)


def parse_booking_date(value: Union[str, date, datetime, None], field: str = "date") -> date:
    """
    Parse a booking date.

    Accepts a date, a datetime, or an ISO "YYYY-MM-DD" string. A combined
    "YYYY-MM-DDTHH:MM..." string contributes only its date part.

    Raises:
        MalformedInputError: if the value is missing or not a real date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise MalformedInputError(field, value, f"{field} is required")

    date_part = value.strip().split('T', 1)[0]
    match = ISO_DATE_PATTERN.match(date_part)
    if not match:
        raise MalformedInputError(field, value, f"Invalid {field} format (expected YYYY-MM-DD)")

    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        raise MalformedInputError(field, value, f"Invalid {field}: {value}")


def parse_booking_time(value: Union[str, time, None], field: str = "time") -> time:
    """
    Parse a 24-hour "HH:MM" (or "H:MM") time of day.

    Raises:
        MalformedInputError: if the value is missing or malformed
    """
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if not isinstance(value, str) or not value.strip():
        raise MalformedInputError(field, value, f"{field} is required")

    match = TIME_PATTERN.match(value.strip())
    if not match:
        raise MalformedInputError(field, value, "Please enter a valid time (HH:MM)")

    return time(int(match.group(1)), int(match.group(2)))


def split_iso_datetime(
    value: Optional[str],
    tz: pytz.BaseTzInfo = TIMEZONE,
) -> Tuple[str, Optional[str]]:
    """
    Split a calendar date-time string into its business-local date and "HH:MM".

    Values with an offset are converted to `tz` first; values without one are
    taken as already local.

    "2024-06-01T10:00:00+01:00" -> ("2024-06-01", "10:00")   (Europe/London)
    "2024-06-01T09:00:00Z"      -> ("2024-06-01", "10:00")   (Europe/London)
    "2024-06-01"                -> ("2024-06-01", None)
    """
    if not value:
        return "", None
    value = value.strip()
    if 'T' not in value:
        return value, None

    iso = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        parsed = datetime.fromisoformat(iso)
    except ValueError:
        date_part, time_part = value.split('T', 1)
        return date_part, time_part[:5] or None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(tz)
    return parsed.date().isoformat(), format_time(parsed.time())


def booking_interval(
    booking_date: Union[str, date],
    start_time: Union[str, time, None] = None,
    end_time: Union[str, time, None] = None,
    overnight: bool = False,
    end_date: Union[str, date, None] = None,
    tz: pytz.BaseTzInfo = TIMEZONE,
    default_start: time = DEFAULT_START_TIME,
    default_end: time = DEFAULT_END_TIME,
) -> Tuple[datetime, datetime]:
    """
    Build the [start, end) instants of a booking.

    Args:
        booking_date: The booking's primary day
        start_time: Start time of day, or None for the default window
        end_time: End time of day, or None for the default window
        overnight: The castle stays out overnight, so the end falls on the
            calendar day after the last booked day
        end_date: Last day of a multi-day booking (defaults to booking_date)
        tz: Timezone the times are expressed in
        default_start: Start used for date-only bookings
        default_end: End used for date-only bookings

    Returns:
        Tuple of (start, end) timezone-aware datetimes

    Raises:
        MalformedInputError: if any part cannot be parsed
    """
    start_day = parse_booking_date(booking_date, "date")
    last_day = parse_booking_date(end_date, "end_date") if end_date else start_day

    start_t = parse_booking_time(start_time, "start_time") if start_time is not None else default_start
    end_t = parse_booking_time(end_time, "end_time") if end_time is not None else default_end

    if overnight:
        last_day = last_day + timedelta(days=1)

    start_dt = tz.localize(datetime.combine(start_day, start_t))
    end_dt = tz.localize(datetime.combine(last_day, end_t))
    return start_dt, end_dt


def intervals_overlap(
    first: Tuple[datetime, datetime],
    second: Tuple[datetime, datetime],
    buffer_minutes: int = 0,
) -> bool:
    """
    Half-open overlap test.

    A booking that ends exactly when another starts does not overlap it.
    A non-zero buffer widens the first interval on both sides.
    """
    buffer = timedelta(minutes=buffer_minutes)
    first_start, first_end = first[0] - buffer, first[1] + buffer
    second_start, second_end = second
    return first_start < second_end and second_start < first_end


def inclusive_day_count(start_date: Union[str, date], end_date: Union[str, date, None] = None) -> int:
    """Number of calendar days covered, counting both ends. Always at least 1."""
    start_day = parse_booking_date(start_date, "date")
    if not end_date:
        return 1
    last_day = parse_booking_date(end_date, "end_date")
    return max(1, (last_day - start_day).days + 1)


def format_time(value: time) -> str:
    """Format a time of day as "HH:MM"."""
    return f"{value.hour:02d}:{value.minute:02d}"
