"""Domain layer for the castle hire booking system."""

from .enums import (
    BookingStatus,
    ConflictType,
    BookingSource,
    AvailabilityStatus,
    MaintenanceStatus,
    AuditAction,
)
from .models import (
    ExistingBooking,
    CandidateBooking,
    BookingUpdate,
    BookingCancelRequest,
    BookingRecord,
    CastleRecord,
    CastleCreate,
    CastleUpdate,
    MaintenanceUpdate,
    AvailabilitySlot,
    DayAvailabilityResponse,
)

__all__ = [
    # Enums
    "BookingStatus",
    "ConflictType",
    "BookingSource",
    "AvailabilityStatus",
    "MaintenanceStatus",
    "AuditAction",
    # Models
    "ExistingBooking",
    "CandidateBooking",
    "BookingUpdate",
    "BookingCancelRequest",
    "BookingRecord",
    "CastleRecord",
    "CastleCreate",
    "CastleUpdate",
    "MaintenanceUpdate",
    "AvailabilitySlot",
    "DayAvailabilityResponse",
]
