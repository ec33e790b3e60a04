"""Domain enums for the castle hire booking system."""

from enum import Enum


class BookingStatus(str, Enum):
    """Booking status enumeration."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    EXPIRED = "expired"

    @property
    def is_active(self) -> bool:
        """Only active bookings can conflict with a new one."""
        return self not in (BookingStatus.CANCELLED, BookingStatus.EXPIRED)


class ConflictType(str, Enum):
    """Kinds of business-rule conflicts."""

    SAME_CASTLE = "same_castle"
    TIME_OVERLAP = "time_overlap"


class BookingSource(str, Enum):
    """Where an existing booking snapshot came from."""

    DATABASE = "database"
    CALENDAR = "calendar"


class AvailabilityStatus(str, Enum):
    """Availability of a single day."""

    AVAILABLE = "available"
    PARTIALLY_BOOKED = "partially_booked"
    FULLY_BOOKED = "fully_booked"


class MaintenanceStatus(str, Enum):
    """Fleet state of a castle."""

    AVAILABLE = "available"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"


class AuditAction(str, Enum):
    """Audit log action types."""

    BOOKING_CREATED = "booking_created"
    BOOKING_UPDATED = "booking_updated"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_EXPIRED = "booking_expired"
    CASTLE_CREATED = "castle_created"
    CASTLE_UPDATED = "castle_updated"
    CASTLE_MAINTENANCE = "castle_maintenance"
