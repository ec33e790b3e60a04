"""
Booking Service for managing castle hire bookings.
Handles booking creation, updates, cancellation, conflict checking, and audit logging.

The validator only answers "does this conflict with what I was shown";
the partial unique index on bookings is what finally settles two requests
racing for the same slot.
"""
import random
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.booking_config import BusinessConfig, get_business_config
from core.logging import LogContext
from core.utils_datetime import MalformedInputError, localize, parse_booking_date
from db.base import ACTIVE_STATUS_VALUES
from db.models_sqlalchemy import AuditLog, Booking, Castle
from domain.enums import AuditAction, BookingStatus, ConflictType, MaintenanceStatus
from domain.models import BookingUpdate, CandidateBooking, CastleCreate, CastleUpdate, ExistingBooking
from integrations.google_calendar import CalendarClient, CalendarError, build_event_body
from services.booking_adapter import from_database_row, normalize_bookings
from services.booking_validation import (
    BookingConflict,
    BookingValidationService,
    ValidationResult,
    castle_key,
    parse_candidate,
)
from services.pricing import quote_booking


logger = logging.getLogger(__name__)

BOOKING_REF_PREFIX = "TS"
BOOKING_REF_ATTEMPTS = 10


class BookingServiceError(Exception):
    """Base error for booking operations."""


class BookingValidationFailed(BookingServiceError):
    """The booking has field errors or conflicts."""

    def __init__(self, result: ValidationResult):
        self.result = result
        problems = len(result.errors) + len(result.conflicts)
        super().__init__(f"Booking failed validation with {problems} problem(s)")

    @property
    def has_conflicts(self) -> bool:
        return bool(self.result.conflicts)


class BookingNotFoundError(BookingServiceError):
    """No booking with the given id."""


class CastleNotFoundError(BookingServiceError):
    """No castle with the given id or name."""


def _requested_extras(candidate: Any) -> Any:
    """Additional costs as submitted, from a request model or a raw mapping."""
    if isinstance(candidate, Mapping):
        value = candidate.get("additional_costs", candidate.get("additionalCosts", 0))
    else:
        value = getattr(candidate, "additional_costs", 0)
    if value is None:
        return 0
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return value


class BookingService:
    """Service for managing castle hire bookings."""

    def __init__(
        self,
        db: Session,
        calendar: Optional[CalendarClient] = None,
        config: Optional[BusinessConfig] = None,
    ):
        """
        Initialize BookingService.

        Args:
            db: SQLAlchemy session
            calendar: Calendar collaborator; bookings are not mirrored without one
            config: Business configuration
        """
        self.db = db
        self.calendar = calendar
        self.config = config or get_business_config()
        self.validator = BookingValidationService(self.config)

    def _now(self, now: Optional[datetime] = None) -> datetime:
        return localize(now, self.config.tz) if now else datetime.now(self.config.tz)

    # ------------------------------------------------------------------
    # Existing bookings
    # ------------------------------------------------------------------

    def load_existing_bookings(
        self,
        around: date,
        span_days: int = 0,
        now: Optional[datetime] = None,
    ) -> List[ExistingBooking]:
        """
        Snapshot of bookings near a date, from the database and the calendar.

        The window covers the alternative-slot search on both sides. A
        calendar outage is logged and the stored bookings are used alone.

        Args:
            around: Requested booking date
            span_days: Extra days the booking itself covers
            now: Reference instant for deriving calendar event status

        Returns:
            Normalized ExistingBooking list
        """
        margin = timedelta(days=self.config.booking_rules.suggestion_window_days + 1)
        window_start = around - margin
        window_end = around + timedelta(days=span_days) + margin

        rows = self.db.scalars(
            select(Booking).where(
                Booking.date <= window_end,
                or_(Booking.date >= window_start, Booking.end_date >= window_start),
            )
        ).all()

        events: List[Dict[str, Any]] = []
        if self.calendar is not None:
            tz = self.config.tz
            try:
                events = self.calendar.list_events(
                    tz.localize(datetime.combine(window_start, time.min)),
                    tz.localize(datetime.combine(window_end + timedelta(days=1), time.min)),
                )
            except CalendarError as e:
                logger.error(f"Calendar unavailable, checking stored bookings only: {e}")

        return normalize_bookings(rows, events, now=self._now(now), tz=self.config.tz)

    def _snapshot_for(self, candidate: CandidateBooking, now: datetime) -> List[ExistingBooking]:
        try:
            around = parse_booking_date(candidate.date)
        except MalformedInputError:
            around = now.date()

        span_days = 0
        if candidate.end_date:
            try:
                span_days = max(0, (parse_booking_date(candidate.end_date, "end_date") - around).days)
            except MalformedInputError:
                span_days = 0
        return self.load_existing_bookings(around, span_days, now=now)

    # ------------------------------------------------------------------
    # Castles
    # ------------------------------------------------------------------

    def get_castle(self, castle_id: Optional[int] = None, name: Optional[str] = None) -> Castle:
        """
        Find a castle by id, or by case-insensitive name.

        Raises:
            CastleNotFoundError: if there is no such castle
        """
        castle = None
        if castle_id is not None:
            castle = self.db.get(Castle, castle_id)
        elif name and name.strip():
            castle = self.db.scalars(
                select(Castle).where(func.lower(Castle.name) == name.strip().lower())
            ).first()

        if castle is None:
            raise CastleNotFoundError(f"Castle not found: {castle_id if castle_id is not None else name}")
        return castle

    def list_castles(self, bookable_only: bool = False) -> List[Castle]:
        query = select(Castle).order_by(Castle.name)
        if bookable_only:
            query = query.where(Castle.maintenance_status == MaintenanceStatus.AVAILABLE.value)
        return list(self.db.scalars(query).all())

    def _ensure_name_free(self, name: str, castle_id: Optional[int] = None) -> None:
        query = select(Castle.id).where(func.lower(Castle.name) == name.strip().lower())
        if castle_id is not None:
            query = query.where(Castle.id != castle_id)
        if self.db.scalars(query).first() is not None:
            raise BookingServiceError(f"A castle named {name!r} already exists")

    def _log_castle_audit(self, action: AuditAction, castle: Castle, details: Optional[Dict[str, Any]] = None) -> None:
        self.db.add(AuditLog(
            action=action.value,
            entity_type="castle",
            entity_id=str(castle.id),
            details={"name": castle.name, **(details or {})},
        ))
        logger.info(f"Audit log: {action.value} for castle {castle.name}")

    def create_castle(self, data: CastleCreate) -> Castle:
        """
        Add a castle to the fleet, available for hire.

        Raises:
            BookingServiceError: if the name is already taken
        """
        self._ensure_name_free(data.name)

        castle = Castle(
            name=data.name,
            price=data.price,
            description=data.description,
            maintenance_status=MaintenanceStatus.AVAILABLE.value,
        )
        self.db.add(castle)
        self.db.flush()
        self._log_castle_audit(AuditAction.CASTLE_CREATED, castle, {"price": castle.price})
        self.db.commit()
        return castle

    def update_castle(self, castle_id: int, updates: CastleUpdate) -> Castle:
        """
        Change a castle's name, price or description.

        Existing bookings keep the price they were quoted; only new bookings
        use the new price.

        Raises:
            CastleNotFoundError: if there is no such castle
            BookingServiceError: if the new name is already taken
        """
        castle = self.get_castle(castle_id=castle_id)
        changes = updates.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return castle

        if "name" in changes:
            self._ensure_name_free(changes["name"], castle_id=castle.id)

        for key, value in changes.items():
            setattr(castle, key, value)
        self._log_castle_audit(AuditAction.CASTLE_UPDATED, castle, {"fields": sorted(changes)})
        self.db.commit()
        return castle

    def upcoming_bookings_for_castle(self, castle_id: int, now: Optional[datetime] = None) -> List[Booking]:
        """Active bookings of a castle from today on, soonest first."""
        today = self._now(now).date()
        return list(self.db.scalars(
            select(Booking).where(
                Booking.castle_id == castle_id,
                Booking.status.in_(ACTIVE_STATUS_VALUES),
                or_(Booking.date >= today, Booking.end_date >= today),
            ).order_by(Booking.date, Booking.start_time)
        ).all())

    def set_maintenance(
        self,
        castle_id: int,
        status: MaintenanceStatus,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Castle:
        """
        Take a castle out of service or return it to the fleet.

        A castle out of service cannot take new bookings. Bookings it already
        holds are left alone and logged so they can be moved by hand.

        Raises:
            CastleNotFoundError: if there is no such castle
        """
        castle = self.get_castle(castle_id=castle_id)
        status = MaintenanceStatus(status)
        previous = castle.maintenance_status
        if previous == status.value:
            return castle

        castle.maintenance_status = status.value
        details: Dict[str, Any] = {"from": previous, "to": status.value}
        if notes:
            details["notes"] = notes

        if status != MaintenanceStatus.AVAILABLE:
            held = self.upcoming_bookings_for_castle(castle.id, now)
            if held:
                details["upcoming_bookings"] = [b.booking_ref for b in held]
                logger.warning(
                    f"{castle.name} set to {status.value} with {len(held)} upcoming booking(s)",
                    extra={"castle": castle.name, "booking_refs": details["upcoming_bookings"]},
                )

        self._log_castle_audit(AuditAction.CASTLE_MAINTENANCE, castle, details)
        self.db.commit()
        return castle

    def _with_castle(self, candidate: CandidateBooking) -> CandidateBooking:
        """Fill in the castle name when only its id was submitted."""
        if candidate.castle_id is None or candidate.castle:
            return candidate
        try:
            castle = self.get_castle(castle_id=candidate.castle_id)
        except CastleNotFoundError:
            return candidate
        return candidate.model_copy(update={"castle": castle.name})

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def check_booking(
        self,
        candidate: Union[CandidateBooking, Mapping[str, Any]],
        exclude_id: Optional[Any] = None,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """
        Validate a booking against current bookings without saving it.

        Args:
            candidate: Booking form or API payload
            exclude_id: Booking being edited
            now: Reference instant

        Returns:
            ValidationResult, with alternative slots on a castle conflict
        """
        now = self._now(now)
        parsed, parse_errors = parse_candidate(candidate)
        parsed = self._with_castle(parsed)

        existing = self._snapshot_for(parsed, now)
        result = self.validator.validate_with_suggestions(parsed, existing, exclude_id=exclude_id, now=now)
        for name, message in parse_errors.items():
            result.add_error(name, message)
        return result

    # ------------------------------------------------------------------
    # Booking lifecycle
    # ------------------------------------------------------------------

    def _generate_booking_ref(self, now: datetime) -> str:
        """Generate unique booking reference: TS + yymmdd + 3 digits."""
        stamp = now.strftime('%y%m%d')
        for _ in range(BOOKING_REF_ATTEMPTS):
            ref = f"{BOOKING_REF_PREFIX}{stamp}{random.randint(0, 999):03d}"
            taken = self.db.scalars(select(Booking.id).where(Booking.booking_ref == ref)).first()
            if taken is None:
                return ref
        raise BookingServiceError(f"Could not allocate a booking reference for {stamp}")

    def _log_audit(
        self,
        action: AuditAction,
        booking: Booking,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log action to audit log.

        Args:
            action: Action performed
            booking: Affected booking
            details: Additional details about the action
        """
        self.db.add(AuditLog(
            action=action.value,
            entity_type="booking",
            entity_id=str(booking.id),
            details={"booking_ref": booking.booking_ref, **(details or {})},
        ))
        logger.info(f"Audit log: {action.value} for booking {booking.booking_ref}")

    def _slot_taken_result(self, castle_id: int, booking_date: date, start_time: str) -> ValidationResult:
        """Conflict for a slot another request claimed between check and insert."""
        row = self.db.scalars(
            select(Booking).where(
                Booking.castle_id == castle_id,
                Booking.date == booking_date,
                Booking.start_time == start_time,
                Booking.status.in_(ACTIVE_STATUS_VALUES),
            )
        ).first()
        existing = from_database_row(row) if row is not None else ExistingBooking(date=booking_date)

        result = ValidationResult()
        result.conflicts.append(BookingConflict(
            type=ConflictType.SAME_CASTLE,
            message=f"This castle was just booked for {booking_date.isoformat()} at {start_time}",
            booking=existing,
        ))
        return result

    def _sync_calendar(self, booking: Booking, action: str) -> None:
        """Mirror a booking into the calendar; failures leave the booking as stored."""
        if self.calendar is None:
            return
        try:
            if action == "delete":
                if booking.calendar_event_id:
                    self.calendar.delete_event(booking.calendar_event_id)
                    booking.calendar_event_id = None
            elif booking.calendar_event_id:
                self.calendar.update_event(
                    booking.calendar_event_id,
                    build_event_body(booking, self.config.timezone),
                )
            else:
                event = self.calendar.create_event(build_event_body(booking, self.config.timezone))
                booking.calendar_event_id = event.get("id")
        except CalendarError as e:
            logger.error(f"Calendar {action} failed for booking {booking.booking_ref}: {e}")

    def create_booking(
        self,
        candidate: Union[CandidateBooking, Mapping[str, Any]],
        additional_costs: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Price, validate and store a new booking.

        Args:
            candidate: Booking form or API payload
            additional_costs: Extras on top of the castle price (defaults to
                the request's own additional_costs)
            now: Reference instant

        Returns:
            The stored Booking (status pending)

        Raises:
            BookingValidationFailed: on field errors or conflicts
            CastleNotFoundError: if the castle does not exist
        """
        now = self._now(now)
        request, parse_errors = parse_candidate(candidate)

        if additional_costs is None:
            additional_costs = _requested_extras(candidate)
        if not isinstance(additional_costs, (int, float)) or additional_costs < 0:
            parse_errors.setdefault("additional_costs", "Additional costs must be a non-negative amount")
            additional_costs = 0

        if request.castle_id is None and not castle_key(request.castle):
            result = self.validator.validate(request, [], now=now)
            for name, message in parse_errors.items():
                result.add_error(name, message)
            raise BookingValidationFailed(result)

        castle = self.get_castle(castle_id=request.castle_id, name=request.castle)
        quote = quote_booking(
            castle.price,
            request.date or "",
            request.end_date,
            overnight=request.overnight,
            additional_costs=additional_costs,
            rules=self.config.booking_rules,
        )
        priced = request.model_copy(update={
            "castle": castle.name,
            "castle_id": castle.id,
            "total_price": quote.total_price,
            "deposit": float(quote.deposit),
        })

        result = self.validator.validate_with_suggestions(priced, self._snapshot_for(priced, now), now=now)
        for name, message in parse_errors.items():
            result.add_error(name, message)
        if not castle.is_bookable:
            result.add_error("castle", f"{castle.name} is not available for hire")

        if not result.is_valid:
            logger.warning(
                f"Booking rejected for {castle.name} on {priced.date}: "
                f"{len(result.errors)} error(s), {len(result.conflicts)} conflict(s)"
            )
            raise BookingValidationFailed(result)

        booking_date = parse_booking_date(priced.date)
        start_time = priced.start_time or self.config.booking_rules.default_start_time.strftime("%H:%M")
        end_time = priced.end_time or self.config.booking_rules.default_end_time.strftime("%H:%M")

        with LogContext(
            logger,
            expected=(BookingServiceError,),
            castle=castle.name,
            booking_date=booking_date.isoformat(),
            start_time=start_time,
        ) as ctx:
            booking = Booking(
                booking_ref=self._generate_booking_ref(now),
                customer_name=priced.customer_name,
                customer_email=priced.customer_email,
                customer_phone=priced.customer_phone,
                customer_address=priced.site_address,
                castle_id=castle.id,
                castle_name=castle.name,
                date=booking_date,
                end_date=parse_booking_date(priced.end_date, "end_date") if priced.end_date else None,
                start_time=start_time,
                end_time=end_time,
                overnight=priced.overnight,
                total_price=quote.total_price,
                additional_costs=quote.additional_costs,
                deposit=quote.deposit,
                payment_method=priced.payment_method,
                status=BookingStatus.PENDING.value,
                notes=priced.notes,
            )
            self.db.add(booking)
            try:
                self.db.flush()
            except IntegrityError:
                self.db.rollback()
                raise BookingValidationFailed(self._slot_taken_result(castle.id, booking_date, start_time))

            self._log_audit(AuditAction.BOOKING_CREATED, booking, {
                "castle": castle.name,
                "date": booking_date.isoformat(),
                "total_price": quote.total_price,
                "warnings": result.warnings,
            })
            self.db.commit()

            self._sync_calendar(booking, "create")
            self.db.commit()

            ctx.log("info", f"Created booking {booking.booking_ref} for {booking.customer_name}", booking_id=booking.id)
        return booking

    def get_booking(self, booking_id: int) -> Booking:
        """
        Get booking by ID.

        Raises:
            BookingNotFoundError: if there is no such booking
        """
        booking = self.db.get(Booking, booking_id)
        if booking is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found")
        return booking

    def get_booking_by_ref(self, booking_ref: str) -> Booking:
        booking = self.db.scalars(select(Booking).where(Booking.booking_ref == booking_ref)).first()
        if booking is None:
            raise BookingNotFoundError(f"Booking {booking_ref} not found")
        return booking

    def list_bookings(
        self,
        status: Optional[BookingStatus] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        castle_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[Booking]:
        """
        Find bookings by criteria, ordered by date and start time.

        Args:
            status: Filter by status
            date_from: Bookings on or after this date
            date_to: Bookings on or before this date
            castle_id: Filter by castle
            limit: Maximum rows returned
        """
        query = select(Booking)
        if status is not None:
            query = query.where(Booking.status == BookingStatus(status).value)
        if date_from is not None:
            query = query.where(Booking.date >= date_from)
        if date_to is not None:
            query = query.where(Booking.date <= date_to)
        if castle_id is not None:
            query = query.where(Booking.castle_id == castle_id)

        query = query.order_by(Booking.date, Booking.start_time).limit(limit)
        return list(self.db.scalars(query).all())

    def update_booking(
        self,
        booking_id: int,
        changes: Union[BookingUpdate, Mapping[str, Any]],
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Edit a booking, re-validating it without conflicting with itself.

        Price is recalculated when the castle, dates, overnight flag or
        extras change.

        Raises:
            BookingNotFoundError: if there is no such booking
            BookingValidationFailed: on field errors or conflicts
            BookingServiceError: if the booking is no longer active
        """
        now = self._now(now)
        booking = self.get_booking(booking_id)
        if not BookingStatus(booking.status).is_active:
            raise BookingServiceError(f"Booking {booking.booking_ref} is {booking.status} and cannot be edited")

        if isinstance(changes, Mapping):
            changes = BookingUpdate.model_validate(dict(changes))
        updates = changes.model_dump(exclude_unset=True)

        castle = booking.castle
        if "castle_id" in updates and updates["castle_id"] != booking.castle_id:
            castle = self.get_castle(castle_id=updates["castle_id"])

        additional_costs = updates.get("additional_costs", booking.additional_costs)
        merged = {
            "customer_name": updates.get("customer_name", booking.customer_name),
            "customer_email": updates.get("customer_email", booking.customer_email),
            "customer_phone": updates.get("customer_phone", booking.customer_phone),
            "address": updates.get("address", booking.customer_address),
            "castle": castle.name,
            "castle_id": castle.id,
            "date": updates.get("date", booking.date.isoformat()),
            "end_date": updates.get("end_date", booking.end_date.isoformat() if booking.end_date else None),
            "start_time": updates.get("start_time", booking.start_time),
            "end_time": updates.get("end_time", booking.end_time),
            "overnight": updates.get("overnight", booking.overnight),
            "payment_method": booking.payment_method,
            "notes": updates.get("notes", booking.notes),
        }

        repriced = bool({"castle_id", "date", "end_date", "overnight", "additional_costs"} & updates.keys())
        if repriced:
            quote = quote_booking(
                castle.price,
                merged["date"] or "",
                merged["end_date"],
                overnight=bool(merged["overnight"]),
                additional_costs=additional_costs,
                rules=self.config.booking_rules,
            )
            merged["total_price"], merged["deposit"] = quote.total_price, float(quote.deposit)
        else:
            merged["total_price"], merged["deposit"] = booking.total_price, float(booking.deposit)

        candidate = CandidateBooking.model_validate(merged)
        result = self.validator.validate_with_suggestions(
            candidate,
            self._snapshot_for(candidate, now),
            exclude_id=booking.id,
            now=now,
        )
        if not result.is_valid:
            logger.warning(f"Update rejected for booking {booking.booking_ref}")
            raise BookingValidationFailed(result)

        booking.customer_name = candidate.customer_name
        booking.customer_email = candidate.customer_email
        booking.customer_phone = candidate.customer_phone
        booking.customer_address = candidate.site_address
        booking.castle_id = castle.id
        booking.castle_name = castle.name
        booking.date = parse_booking_date(candidate.date)
        booking.end_date = parse_booking_date(candidate.end_date, "end_date") if candidate.end_date else None
        booking.start_time = candidate.start_time or booking.start_time
        booking.end_time = candidate.end_time or booking.end_time
        booking.overnight = candidate.overnight
        booking.notes = candidate.notes
        if repriced:
            booking.total_price = candidate.total_price
            booking.deposit = int(candidate.deposit)
            booking.additional_costs = float(additional_costs or 0)

        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise BookingValidationFailed(
                self._slot_taken_result(castle.id, parse_booking_date(candidate.date), candidate.start_time or merged["start_time"])
            )

        self._log_audit(AuditAction.BOOKING_UPDATED, booking, {"fields": sorted(updates)})
        self._sync_calendar(booking, "update")
        self.db.commit()

        logger.info(f"Updated booking {booking.booking_ref}")
        return booking

    def confirm_booking(self, booking_id: int) -> Booking:
        """
        Confirm a pending booking once the deposit is settled.

        Raises:
            BookingNotFoundError: if there is no such booking
            BookingServiceError: if the booking is not pending
        """
        booking = self.get_booking(booking_id)
        if booking.status != BookingStatus.PENDING.value:
            raise BookingServiceError(f"Booking {booking.booking_ref} is {booking.status}, not pending")

        booking.status = BookingStatus.CONFIRMED.value
        self._log_audit(AuditAction.BOOKING_CONFIRMED, booking)
        self._sync_calendar(booking, "update")
        self.db.commit()

        logger.info(f"Confirmed booking {booking.booking_ref}")
        return booking

    def cancel_booking(self, booking_id: int, reason: Optional[str] = None, now: Optional[datetime] = None) -> Booking:
        """
        Cancel a booking and release its slot.

        Args:
            booking_id: ID of booking to cancel
            reason: Optional cancellation reason

        Raises:
            BookingNotFoundError: if there is no such booking
            BookingServiceError: if the booking is already cancelled
        """
        booking = self.get_booking(booking_id)
        if booking.status == BookingStatus.CANCELLED.value:
            raise BookingServiceError(f"Booking {booking.booking_ref} is already cancelled")

        booking.status = BookingStatus.CANCELLED.value
        booking.cancelled_at = self._now(now)
        self._log_audit(AuditAction.BOOKING_CANCELLED, booking, {"reason": reason or "No reason provided"})
        self._sync_calendar(booking, "delete")
        self.db.commit()

        logger.info(f"Cancelled booking {booking.booking_ref}")
        return booking

    def get_stats(self) -> Dict[str, Any]:
        """Booking counts per status and revenue from bookings still held."""
        counts = dict(self.db.execute(
            select(Booking.status, func.count(Booking.id)).group_by(Booking.status)
        ).all())
        revenue = self.db.scalar(
            select(func.coalesce(func.sum(Booking.total_price), 0.0)).where(
                Booking.status.in_(ACTIVE_STATUS_VALUES)
            )
        )
        return {
            "total": sum(counts.values()),
            "by_status": {status.value: counts.get(status.value, 0) for status in BookingStatus},
            "revenue": round(float(revenue or 0), 2),
        }
