"""
Booking validation: field checks, same-castle conflict detection and
non-blocking advisories.

Validation is a pure function of (candidate, existing bookings, excluded id).
User-correctable problems come back as data in the ValidationResult; only
programmer errors (e.g. a non-iterable booking list) raise.
"""

import re
import math
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import pytz
from pydantic import ValidationError as PydanticValidationError

from core.booking_config import BookingRules, BusinessConfig, get_business_config
from core.utils_datetime import (
    MalformedInputError,
    booking_interval,
    format_time,
    localize,
    parse_booking_date,
    parse_booking_time,
)
from domain.enums import ConflictType
from domain.models import AvailabilitySlot, CandidateBooking, ExistingBooking
from services.booking_adapter import from_database_row


logger = logging.getLogger(__name__)

Interval = Tuple[datetime, datetime]

SCHEDULE_FIELDS = ("date", "end_date", "start_time", "end_time")


@dataclass
class BookingConflict:
    """A business-rule conflict with an existing booking."""
    type: ConflictType
    message: str
    booking: ExistingBooking

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "booking": {
                "id": self.booking.id,
                "castle": self.booking.castle,
                "date": self.booking.date.isoformat() if self.booking.date else None,
                "end_date": self.booking.end_date.isoformat() if self.booking.end_date else None,
                "start_time": format_time(self.booking.start_time),
                "end_time": format_time(self.booking.end_time),
                "source": self.booking.source.value,
            },
        }


@dataclass
class ValidationResult:
    """Outcome of validating one candidate booking."""
    errors: Dict[str, str] = field(default_factory=dict)
    conflicts: List[BookingConflict] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    suggestions: List[AvailabilitySlot] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """Valid only with no field errors and no conflicts."""
        return not self.errors and not self.conflicts

    @property
    def has_castle_conflict(self) -> bool:
        return any(c.type == ConflictType.SAME_CASTLE for c in self.conflicts)

    def add_error(self, field_name: str, message: str):
        """Record a field error; the first message for a field wins."""
        self.errors.setdefault(field_name, message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": dict(self.errors),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "warnings": list(self.warnings),
            "suggestions": [s.model_dump(mode="json") for s in self.suggestions],
        }


# ============================================================================
# Candidate Parsing
# ============================================================================

def _field_names_by_key() -> Dict[str, str]:
    names = {}
    for name, info in CandidateBooking.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name
    return names


def parse_candidate(
    candidate: Union[CandidateBooking, Mapping[str, Any]],
) -> Tuple[CandidateBooking, Dict[str, str]]:
    """
    Turn a raw submission into a CandidateBooking.

    Values the model rejects are dropped and reported per field, so a
    garbled payload still yields a candidate the remaining checks can run on.

    Returns:
        Tuple of (candidate, field errors)

    Raises:
        TypeError: if the candidate is neither a model nor a mapping
    """
    if isinstance(candidate, CandidateBooking):
        return candidate, {}
    if not isinstance(candidate, Mapping):
        raise TypeError(f"candidate must be a CandidateBooking or a mapping, got {type(candidate).__name__}")

    try:
        return CandidateBooking.model_validate(dict(candidate)), {}
    except PydanticValidationError as e:
        names = _field_names_by_key()
        errors: Dict[str, str] = {}
        rejected = set()
        for error in e.errors():
            key = str(error["loc"][0]) if error.get("loc") else ""
            name = names.get(key, key)
            rejected.add(name)
            errors.setdefault(name, f"Invalid {name.replace('_', ' ')}: {error['msg']}")

        # Error locations may use the alias or the field name
        cleaned = {k: v for k, v in candidate.items() if names.get(k, k) not in rejected}
        logger.debug(f"Dropped unparseable candidate fields: {sorted(errors)}")
        return CandidateBooking.model_validate(cleaned), errors


def castle_key(name: Optional[str]) -> str:
    """Comparison key for castle names: trimmed and case-folded."""
    return name.strip().casefold() if isinstance(name, str) else ""


def castles_match(first: Optional[str], second: Optional[str]) -> bool:
    """Same castle, where an empty name matches nothing."""
    first_key = castle_key(first)
    return bool(first_key) and first_key == castle_key(second)


def candidate_interval(
    candidate: CandidateBooking,
    rules: BookingRules,
    tz: pytz.BaseTzInfo,
    day_offset: int = 0,
) -> Interval:
    """
    Interval of a candidate, optionally shifted by whole days.

    Raises:
        MalformedInputError: if the date or times cannot be parsed
    """
    start_day = parse_booking_date(candidate.date, "date") + timedelta(days=day_offset)
    end_day = None
    if candidate.end_date:
        end_day = parse_booking_date(candidate.end_date, "end_date") + timedelta(days=day_offset)

    return booking_interval(
        start_day,
        candidate.start_time or None,
        candidate.end_time or None,
        overnight=candidate.overnight,
        end_date=end_day,
        tz=tz,
        default_start=rules.default_start_time,
        default_end=rules.default_end_time,
    )


def booking_overlaps(
    interval: Interval,
    booking: ExistingBooking,
    tz: pytz.BaseTzInfo,
    buffer_minutes: int = 0,
) -> bool:
    """Half-open overlap with an existing booking; undated bookings never overlap."""
    if booking.date is None:
        return False
    other_start, other_end = booking.interval(tz)
    buffer = timedelta(minutes=buffer_minutes)
    return interval[0] - buffer < other_end and other_start < interval[1] + buffer


def active_bookings(
    existing_bookings: Iterable[Any],
    exclude_id: Optional[Any] = None,
) -> List[ExistingBooking]:
    """
    Bookings that can still conflict: not cancelled, not expired, not excluded.

    Raises:
        TypeError: if existing_bookings is not iterable
    """
    try:
        snapshots = list(existing_bookings)
    except TypeError:
        raise TypeError("existing_bookings must be an iterable of ExistingBooking") from None

    excluded = str(exclude_id) if exclude_id is not None and str(exclude_id) != "" else None
    active = []
    for booking in snapshots:
        if not isinstance(booking, ExistingBooking):
            booking = from_database_row(booking)
        if not booking.is_active:
            continue
        if excluded is not None and booking.id == excluded:
            continue
        active.append(booking)
    return active


# ============================================================================
# Field Validation
# ============================================================================

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15


def validate_customer_fields(candidate: CandidateBooking, result: ValidationResult):
    """Customer and site details."""
    if not candidate.customer_name:
        result.add_error("customer_name", "Customer name is required")

    if not candidate.customer_email:
        result.add_error("customer_email", "Email address is required")
    elif not EMAIL_PATTERN.match(candidate.customer_email):
        result.add_error("customer_email", "Please enter a valid email address")

    if not candidate.customer_phone:
        result.add_error("customer_phone", "Phone number is required")
    else:
        digits = re.sub(r'\D', '', candidate.customer_phone)
        if not PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS:
            result.add_error("customer_phone", "Please enter a valid phone number")

    if not candidate.site_address:
        result.add_error("address", "Delivery address is required")

    if not castle_key(candidate.castle):
        result.add_error("castle", "Please select a castle")


def validate_schedule_fields(
    candidate: CandidateBooking,
    result: ValidationResult,
    rules: BookingRules,
    tz: pytz.BaseTzInfo,
    now: datetime,
) -> Optional[Interval]:
    """
    Date and time checks.

    A past date is reported but still yields an interval, so conflicts are
    scanned for it too.

    Returns:
        The candidate's interval, or None when it cannot be built
    """
    # Fields that already failed type coercion cannot be used either
    unusable = any(key in result.errors for key in SCHEDULE_FIELDS)

    start_day: Optional[date] = None
    end_day: Optional[date] = None
    try:
        start_day = parse_booking_date(candidate.date, "date")
    except MalformedInputError as e:
        result.add_error("date", str(e))
        unusable = True

    if candidate.end_date:
        try:
            end_day = parse_booking_date(candidate.end_date, "end_date")
        except MalformedInputError as e:
            result.add_error("end_date", str(e))
            unusable = True
        else:
            if start_day is not None and end_day < start_day:
                result.add_error("end_date", "End date cannot be before the start date")
                unusable = True

    for name in ("start_time", "end_time"):
        value = getattr(candidate, name)
        if value:
            try:
                parse_booking_time(value, name)
            except MalformedInputError as e:
                result.add_error(name, str(e))
                unusable = True

    if unusable:
        return None

    if start_day < now.date():
        result.add_error("date", "Booking date cannot be in the past")

    interval = candidate_interval(candidate, rules, tz)
    if interval[1] <= interval[0]:
        result.add_error("end_time", "End time must be after start time")
        return None

    if _is_single_day(candidate, start_day, end_day):
        hours = (interval[1] - interval[0]).total_seconds() / 3600
        if hours < rules.min_duration_hours:
            result.add_error("duration", f"Bookings must be at least {rules.min_duration_hours:g} hours")
        elif hours > rules.max_duration_hours:
            result.add_error("duration", f"Single-day bookings cannot exceed {rules.max_duration_hours:g} hours")

    return interval


def validate_price_fields(candidate: CandidateBooking, result: ValidationResult):
    """Optional totals supplied with the booking."""
    total = candidate.total_price
    deposit = candidate.deposit

    if total is not None and (not math.isfinite(total) or total < 0):
        result.add_error("total_price", "Total price must be a non-negative amount")
        total = None
    if deposit is not None and (not math.isfinite(deposit) or deposit < 0):
        result.add_error("deposit", "Deposit must be a non-negative amount")
        deposit = None

    if total is not None and deposit is not None and deposit > total:
        result.add_error("deposit", "Deposit cannot exceed the total price")


def _is_single_day(candidate: CandidateBooking, start_day: date, end_day: Optional[date]) -> bool:
    if candidate.overnight:
        return False
    return end_day is None or end_day == start_day


# ============================================================================
# Conflicts & Warnings
# ============================================================================

def find_conflicts(
    candidate: CandidateBooking,
    interval: Interval,
    bookings: List[ExistingBooking],
    result: ValidationResult,
    tz: pytz.BaseTzInfo,
    buffer_minutes: int = 0,
):
    """
    Scan active bookings for overlaps.

    Same castle is a conflict; another castle in the same window is only
    reported as a warning. Each existing booking is checked on its own.
    """
    for booking in bookings:
        if not booking_overlaps(interval, booking, tz, buffer_minutes):
            continue

        label = f"{booking.date.isoformat()} {booking.time_range}"
        if castles_match(candidate.castle, booking.castle):
            result.conflicts.append(BookingConflict(
                type=ConflictType.SAME_CASTLE,
                message=(
                    f"{booking.castle} is already booked on {label}"
                    f" (booking {booking.id or 'unknown'})"
                ),
                booking=booking,
            ))
        elif castle_key(booking.castle):
            result.warnings.append(f"{booking.castle} is also out on {label}")


def collect_warnings(
    candidate: CandidateBooking,
    interval: Interval,
    result: ValidationResult,
    rules: BookingRules,
    now: datetime,
):
    """Advisories that never block a booking."""
    start, end = interval

    notice = start - now
    if notice < timedelta(hours=rules.minimum_notice_hours):
        result.warnings.append(
            f"Short notice: booking starts within {rules.minimum_notice_hours} hours"
        )

    if (start.date() - now.date()).days > rules.maximum_advance_days:
        result.warnings.append(
            f"Booking is more than {rules.maximum_advance_days} days in advance"
        )

    if start.time() < time(rules.early_start_hour):
        result.warnings.append(f"Early start before {rules.early_start_hour:02d}:00")

    if not candidate.overnight and end.time() > time(rules.late_end_hour):
        result.warnings.append(f"Late finish after {rules.late_end_hour:02d}:00")

    if start.weekday() >= 5:
        result.warnings.append("Weekend booking")

    end_day = parse_booking_date(candidate.end_date, "end_date") if candidate.end_date else None
    if _is_single_day(candidate, parse_booking_date(candidate.date, "date"), end_day):
        hours = (end - start).total_seconds() / 3600
        if hours > rules.long_duration_hours:
            result.warnings.append(f"Long booking ({hours:g} hours)")

    total, deposit = candidate.total_price, candidate.deposit
    if total and deposit is not None and total > 0 and "deposit" not in result.errors:
        if deposit / total < rules.low_deposit_ratio:
            result.warnings.append(f"Deposit is below {rules.low_deposit_ratio:.0%} of the total")


# ============================================================================
# Complete Booking Validation
# ============================================================================

def validate_booking(
    candidate: Union[CandidateBooking, Mapping[str, Any]],
    existing_bookings: Iterable[Any],
    exclude_id: Optional[Any] = None,
    rules: Optional[BookingRules] = None,
    now: Optional[datetime] = None,
    tz: Optional[pytz.BaseTzInfo] = None,
) -> ValidationResult:
    """
    Validate a candidate booking against the current set of bookings.

    Args:
        candidate: CandidateBooking or raw form/API mapping
        existing_bookings: ExistingBooking snapshots (stored rows are adapted)
        exclude_id: Id of the booking being edited, so it does not conflict
            with its own prior version
        rules: Booking rules (defaults to business configuration)
        now: Reference instant for "today" and notice checks
        tz: Business timezone

    Returns:
        ValidationResult with errors, conflicts and warnings

    Raises:
        TypeError: for a non-iterable booking list or an unusable candidate
    """
    config = get_business_config()
    rules = rules or config.booking_rules
    tz = tz or config.tz
    now = localize(now, tz) if now else datetime.now(tz)

    active = active_bookings(existing_bookings, exclude_id)
    parsed, parse_errors = parse_candidate(candidate)

    result = ValidationResult()
    for name, message in parse_errors.items():
        result.add_error(name, message)

    # -------------------------------------------------------------------------
    # 1. Field validation
    # -------------------------------------------------------------------------
    validate_customer_fields(parsed, result)
    interval = validate_schedule_fields(parsed, result, rules, tz, now)
    validate_price_fields(parsed, result)

    if interval is None:
        return result

    # -------------------------------------------------------------------------
    # 2. Conflict scan
    # -------------------------------------------------------------------------
    find_conflicts(parsed, interval, active, result, tz, rules.setup_buffer_minutes)

    # -------------------------------------------------------------------------
    # 3. Warnings
    # -------------------------------------------------------------------------
    collect_warnings(parsed, interval, result, rules, now)

    if result.conflicts:
        logger.debug(f"Candidate for {parsed.castle} on {parsed.date}: {len(result.conflicts)} conflict(s)")
    return result


# ============================================================================
# Service-Layer Hooks
# ============================================================================

class BookingValidationService:
    """
    Service-layer interface for booking validation.
    Binds the business configuration and attaches alternative slots.
    """

    def __init__(self, config: Optional[BusinessConfig] = None):
        """Initialize the validation service."""
        self.config = config or get_business_config()

    @property
    def rules(self) -> BookingRules:
        return self.config.booking_rules

    def validate(
        self,
        candidate: Union[CandidateBooking, Mapping[str, Any]],
        existing_bookings: Iterable[Any],
        exclude_id: Optional[Any] = None,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """Validate without suggestions."""
        return validate_booking(
            candidate,
            existing_bookings,
            exclude_id=exclude_id,
            rules=self.rules,
            now=now,
            tz=self.config.tz,
        )

    def validate_with_suggestions(
        self,
        candidate: Union[CandidateBooking, Mapping[str, Any]],
        existing_bookings: Iterable[Any],
        exclude_id: Optional[Any] = None,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """
        Validate, and when the castle is taken, offer nearby free dates.

        Suggestions never fall before today.
        """
        from services.availability import suggest_alternatives

        snapshots = list(existing_bookings)
        now = localize(now, self.config.tz) if now else datetime.now(self.config.tz)
        result = self.validate(candidate, snapshots, exclude_id=exclude_id, now=now)

        if result.has_castle_conflict:
            result.suggestions = suggest_alternatives(
                candidate,
                snapshots,
                search_window_days=self.rules.suggestion_window_days,
                max_suggestions=self.rules.max_suggestions,
                exclude_id=exclude_id,
                earliest_date=now.date(),
                setup_buffer_minutes=self.rules.setup_buffer_minutes,
                rules=self.rules,
                tz=self.config.tz,
            )
            logger.debug(f"Offered {len(result.suggestions)} alternative slot(s)")

        return result


# Singleton instance
_validation_service_instance: Optional[BookingValidationService] = None


def get_validation_service() -> BookingValidationService:
    """Get or create the validation service singleton."""
    global _validation_service_instance
    if _validation_service_instance is None:
        _validation_service_instance = BookingValidationService()
    return _validation_service_instance
