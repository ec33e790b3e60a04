"""
Availability: alternative slots for a taken castle, free windows within a
day and per-day fleet summaries.

Uses the same half-open overlap test as the validator, so a suggested slot
always validates free of castle conflicts against the same snapshot.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

import pytz

from core.booking_config import BookingRules, get_business_config
from core.utils_datetime import MalformedInputError, booking_interval, format_time, parse_booking_date
from domain.enums import AvailabilityStatus
from domain.models import AvailabilitySlot, CandidateBooking, DayAvailabilityResponse, ExistingBooking
from services.booking_validation import (
    active_bookings,
    booking_overlaps,
    candidate_interval,
    castle_key,
    castles_match,
    parse_candidate,
)


logger = logging.getLogger(__name__)


def _castle_bookings(castle: Optional[str], bookings: List[ExistingBooking]) -> List[ExistingBooking]:
    return [b for b in bookings if castles_match(castle, b.castle)]


def suggest_alternatives(
    candidate: Union[CandidateBooking, Mapping[str, Any]],
    existing_bookings: Iterable[Any],
    search_window_days: int = 14,
    max_suggestions: int = 3,
    exclude_id: Optional[Any] = None,
    earliest_date: Optional[date] = None,
    setup_buffer_minutes: int = 0,
    rules: Optional[BookingRules] = None,
    tz: Optional[pytz.BaseTzInfo] = None,
) -> List[AvailabilitySlot]:
    """
    Nearby dates on which the same castle is free for the same window.

    Scans outward from the requested date one day at a time; at each
    distance the later date is tried before the earlier one. The
    time-of-day window, overnight flag and multi-day span are kept.

    Args:
        candidate: The booking that could not be placed
        existing_bookings: Snapshots the candidate was validated against
        search_window_days: Furthest distance in days to look
        max_suggestions: Stop after this many slots
        exclude_id: Booking being edited
        earliest_date: No slot may start before this date
        setup_buffer_minutes: Required gap between bookings of one castle
        rules: Booking rules (for the default all-day window)
        tz: Business timezone

    Returns:
        Slots ordered by distance from the requested date; empty when none
    """
    config = get_business_config()
    rules = rules or config.booking_rules
    tz = tz or config.tz

    if max_suggestions <= 0 or search_window_days <= 0:
        return []

    parsed, _ = parse_candidate(candidate)
    if not castle_key(parsed.castle):
        return []

    bookings = _castle_bookings(parsed.castle, active_bookings(existing_bookings, exclude_id))

    try:
        requested = parse_booking_date(parsed.date, "date")
        start, end = candidate_interval(parsed, rules, tz)
    except MalformedInputError:
        logger.debug("Cannot suggest alternatives for an unparseable candidate")
        return []

    span = timedelta(0)
    if parsed.end_date:
        span = parse_booking_date(parsed.end_date, "end_date") - requested

    if end <= start or span < timedelta(0):
        logger.debug("Cannot suggest alternatives for a candidate that ends before it starts")
        return []

    suggestions: List[AvailabilitySlot] = []
    for distance in range(1, search_window_days + 1):
        for offset in (distance, -distance):
            day = requested + timedelta(days=offset)
            if earliest_date is not None and day < earliest_date:
                continue

            interval = candidate_interval(parsed, rules, tz, day_offset=offset)
            if any(booking_overlaps(interval, b, tz, setup_buffer_minutes) for b in bookings):
                continue

            suggestions.append(AvailabilitySlot(
                date=day,
                start_time=format_time(interval[0].time()),
                end_time=format_time(interval[1].time()),
                end_date=day + span if span else None,
            ))
            if len(suggestions) >= max_suggestions:
                return suggestions

    return suggestions


def find_open_slots(
    day: Union[str, date],
    castle: str,
    existing_bookings: Iterable[Any],
    duration_hours: float = 4,
    opening: time = time(8, 0),
    closing: time = time(20, 0),
    step_minutes: int = 60,
    tz: Optional[pytz.BaseTzInfo] = None,
) -> List[AvailabilitySlot]:
    """
    Free same-day windows of the given length for one castle.

    Candidate windows start at opening and advance by step_minutes; a
    window must end by closing.
    """
    tz = tz or get_business_config().tz
    booking_day = parse_booking_date(day, "date")
    if duration_hours <= 0 or step_minutes <= 0:
        return []

    bookings = _castle_bookings(castle, active_bookings(existing_bookings))
    length = timedelta(hours=duration_hours)
    day_start, day_end = booking_interval(booking_day, opening, closing, tz=tz)

    slots = []
    start = day_start
    while start + length <= day_end:
        window = (start, start + length)
        if not any(booking_overlaps(window, b, tz) for b in bookings):
            slots.append(AvailabilitySlot(
                date=booking_day,
                start_time=format_time(window[0].time()),
                end_time=format_time(window[1].time()),
            ))
        start = tz.normalize(start + timedelta(minutes=step_minutes))
    return slots


def day_availability(
    day: Union[str, date],
    castles: Sequence[str],
    existing_bookings: Iterable[Any],
    tz: Optional[pytz.BaseTzInfo] = None,
) -> DayAvailabilityResponse:
    """
    Which castles are out on a given day.

    A castle counts as booked when any active booking of it overlaps the
    day at all, including multi-day and overnight bookings spilling in.
    """
    tz = tz or get_business_config().tz
    booking_day = parse_booking_date(day, "date")
    bookings = active_bookings(existing_bookings)

    day_start = tz.localize(datetime.combine(booking_day, time(0, 0)))
    day_end = tz.localize(datetime.combine(booking_day + timedelta(days=1), time(0, 0)))
    whole_day = (day_start, day_end)

    booked, available = [], []
    for castle in castles:
        taken = any(
            booking_overlaps(whole_day, b, tz)
            for b in _castle_bookings(castle, bookings)
        )
        (booked if taken else available).append(castle)

    if not booked:
        status = AvailabilityStatus.AVAILABLE
    elif not available:
        status = AvailabilityStatus.FULLY_BOOKED
    else:
        status = AvailabilityStatus.PARTIALLY_BOOKED

    return DayAvailabilityResponse(
        date=booking_day,
        status=status,
        available_castles=available,
        booked_castles=booked,
    )
