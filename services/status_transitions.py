"""
Automatic booking status transitions.

Confirmed bookings become completed once they have ended; pending bookings
whose date has passed without confirmation expire and stop holding the slot.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, time
from typing import Any, Dict, List, Optional

import pytz
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.booking_config import get_business_config
from core.utils_datetime import MalformedInputError, booking_interval, localize
from db.models_sqlalchemy import AuditLog, Booking
from domain.enums import AuditAction, BookingStatus


logger = logging.getLogger(__name__)

# Used when a booking's own end time cannot be read
ASSUMED_END_TIME = time(17, 0)


@dataclass
class StatusTransition:
    """One booking moved between statuses."""
    booking_id: int
    booking_ref: str
    previous_status: BookingStatus
    new_status: BookingStatus
    reason: str
    transitioned_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["previous_status"] = self.previous_status.value
        data["new_status"] = self.new_status.value
        data["transitioned_at"] = self.transitioned_at.isoformat()
        return data


@dataclass
class TransitionSummary:
    """Outcome of one transition run."""
    total_checked: int = 0
    transitions: List[StatusTransition] = field(default_factory=list)

    @property
    def transitions_completed(self) -> int:
        return len(self.transitions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_checked": self.total_checked,
            "transitions_completed": self.transitions_completed,
            "transitions": [t.to_dict() for t in self.transitions],
        }


def booking_end(booking: Booking, tz: pytz.BaseTzInfo) -> datetime:
    """End instant of a stored booking, assuming 17:00 when its end time is unreadable."""
    try:
        return booking_interval(
            booking.date,
            booking.start_time or None,
            booking.end_time or None,
            overnight=bool(booking.overnight),
            end_date=booking.end_date,
            tz=tz,
        )[1]
    except MalformedInputError:
        last_day = booking.end_date or booking.date
        return tz.localize(datetime.combine(last_day, ASSUMED_END_TIME))


def check_booking_for_completion(
    booking: Booking,
    now: datetime,
    tz: Optional[pytz.BaseTzInfo] = None,
) -> Optional[StatusTransition]:
    """
    Report a confirmed booking that has already ended.

    Returns:
        The transition to apply, or None
    """
    if booking.status != BookingStatus.CONFIRMED.value:
        return None

    tz = tz or get_business_config().tz
    ended_at = booking_end(booking, tz)
    if now <= ended_at:
        return None

    return StatusTransition(
        booking_id=booking.id,
        booking_ref=booking.booking_ref,
        previous_status=BookingStatus.CONFIRMED,
        new_status=BookingStatus.COMPLETED,
        reason=f"Booking ended at {ended_at.isoformat()}",
        transitioned_at=now,
    )


def _apply(db: Session, booking: Booking, transition: StatusTransition, action: AuditAction):
    booking.status = transition.new_status.value
    db.add(AuditLog(
        action=action.value,
        entity_type="booking",
        entity_id=str(booking.id),
        details={"booking_ref": booking.booking_ref, "reason": transition.reason},
    ))


def process_status_transitions(db: Session, now: Optional[datetime] = None) -> TransitionSummary:
    """
    Complete every confirmed booking that has ended.

    Args:
        db: SQLAlchemy session
        now: Reference instant (defaults to the current time)

    Returns:
        TransitionSummary of the run
    """
    tz = get_business_config().tz
    now = localize(now, tz) if now else datetime.now(tz)

    confirmed = db.scalars(
        select(Booking).where(Booking.status == BookingStatus.CONFIRMED.value)
    ).all()

    summary = TransitionSummary(total_checked=len(confirmed))
    for booking in confirmed:
        transition = check_booking_for_completion(booking, now, tz)
        if transition is None:
            continue
        _apply(db, booking, transition, AuditAction.BOOKING_COMPLETED)
        summary.transitions.append(transition)
        logger.info(f"Transitioned booking {booking.booking_ref} from confirmed to completed")

    db.commit()
    logger.info(
        f"Status transition check completed. "
        f"{summary.transitions_completed}/{summary.total_checked} bookings transitioned."
    )
    return summary


def expire_stale_pending(db: Session, now: Optional[datetime] = None) -> TransitionSummary:
    """
    Expire pending bookings whose date has passed without confirmation.

    Expired bookings no longer block their castle.
    """
    tz = get_business_config().tz
    now = localize(now, tz) if now else datetime.now(tz)

    stale = db.scalars(
        select(Booking).where(
            Booking.status == BookingStatus.PENDING.value,
            Booking.date < now.date(),
        )
    ).all()

    summary = TransitionSummary(total_checked=len(stale))
    for booking in stale:
        transition = StatusTransition(
            booking_id=booking.id,
            booking_ref=booking.booking_ref,
            previous_status=BookingStatus.PENDING,
            new_status=BookingStatus.EXPIRED,
            reason=f"Still pending after {booking.date.isoformat()}",
            transitioned_at=now,
        )
        _apply(db, booking, transition, AuditAction.BOOKING_EXPIRED)
        summary.transitions.append(transition)

    db.commit()
    if summary.transitions:
        logger.info(f"Expired {summary.transitions_completed} stale pending booking(s)")
    return summary
