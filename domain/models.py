"""Domain models using Pydantic v2 for the castle hire booking system."""

from datetime import date as date_type, time as time_type, datetime
from typing import Any, List, Optional, Tuple

import pytz
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from core.utils_datetime import (
    TIMEZONE,
    DEFAULT_START_TIME,
    DEFAULT_END_TIME,
    booking_interval,
    format_time,
)
from .enums import BookingStatus, BookingSource, AvailabilityStatus, MaintenanceStatus


class ExistingBooking(BaseModel):
    """
    Read-only snapshot of an accepted booking, used only for conflict checks.

    Built fresh for every validation run by the booking adapter. A snapshot
    without a date cannot be placed in time and so never conflicts.
    """

    id: str = ""
    date: Optional[date_type] = None
    end_date: Optional[date_type] = None
    start_time: time_type = DEFAULT_START_TIME
    end_time: time_type = DEFAULT_END_TIME
    castle: str = ""
    status: BookingStatus = BookingStatus.CONFIRMED
    overnight: bool = False
    source: BookingSource = BookingSource.DATABASE
    calendar_event_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def time_range(self) -> str:
        return f"{format_time(self.start_time)} - {format_time(self.end_time)}"

    def interval(self, tz: pytz.BaseTzInfo = TIMEZONE) -> Tuple[datetime, datetime]:
        """Start and end instants; only valid when date is set."""
        return booking_interval(
            self.date,
            self.start_time,
            self.end_time,
            overnight=self.overnight,
            end_date=self.end_date,
            tz=tz,
        )


class CandidateBooking(BaseModel):
    """
    A booking request as submitted by the booking form or an admin.

    Every field is optional at this level: the validator reports missing or
    malformed values as field errors instead of refusing to build the model.
    Accepts both snake_case and camelCase keys.
    """

    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    date: Optional[str] = None
    end_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    castle: Optional[str] = None
    castle_id: Optional[int] = None
    location: Optional[str] = None
    address: Optional[str] = None
    total_price: Optional[float] = None
    deposit: Optional[float] = None
    overnight: bool = False
    payment_method: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_validator("date", "end_date", mode="before")
    @classmethod
    def coerce_date(cls, v: Any) -> Any:
        """Allow date objects alongside ISO strings."""
        if isinstance(v, (date_type, datetime)):
            return v.isoformat()[:10]
        return v

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def coerce_time(cls, v: Any) -> Any:
        """Allow time objects alongside "HH:MM" strings."""
        if isinstance(v, time_type):
            return format_time(v)
        return v

    @property
    def site_address(self) -> Optional[str]:
        """The delivery address, falling back to the location field."""
        return self.address or self.location


class BookingUpdate(BaseModel):
    """Partial update of an existing booking."""

    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    date: Optional[str] = None
    end_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    castle_id: Optional[int] = None
    address: Optional[str] = None
    overnight: Optional[bool] = None
    additional_costs: Optional[float] = None
    notes: Optional[str] = None

    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class BookingCancelRequest(BaseModel):
    """Request to cancel a booking."""

    reason: Optional[str] = Field(None, max_length=500)

    model_config = ConfigDict(str_strip_whitespace=True)


class BookingRecord(BaseModel):
    """Complete booking record from the database."""

    id: int
    booking_ref: str
    customer_name: str
    customer_email: str
    customer_phone: str
    customer_address: str
    castle_id: int
    castle_name: str
    date: date_type
    end_date: Optional[date_type] = None
    start_time: str
    end_time: str
    overnight: bool
    total_price: float
    additional_costs: float = 0.0
    deposit: int
    payment_method: Optional[str] = None
    status: BookingStatus
    notes: Optional[str] = None
    calendar_event_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CastleRecord(BaseModel):
    """A castle in the hire fleet."""

    id: int
    name: str
    price: float
    description: Optional[str] = None
    maintenance_status: MaintenanceStatus

    model_config = ConfigDict(from_attributes=True)


class CastleCreate(BaseModel):
    """A castle joining the fleet."""

    name: str = Field(..., min_length=1, max_length=100)
    price: float = Field(..., gt=0, allow_inf_nan=False)
    description: Optional[str] = None

    model_config = ConfigDict(str_strip_whitespace=True)


class CastleUpdate(BaseModel):
    """Partial update of a castle's listing."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    price: Optional[float] = Field(None, gt=0, allow_inf_nan=False)
    description: Optional[str] = None

    model_config = ConfigDict(str_strip_whitespace=True)


class MaintenanceUpdate(BaseModel):
    """Take a castle out of service or bring it back."""

    status: MaintenanceStatus
    notes: Optional[str] = Field(None, max_length=500)

    model_config = ConfigDict(str_strip_whitespace=True)


class AvailabilitySlot(BaseModel):
    """A free window for one castle."""

    date: date_type
    start_time: str
    end_time: str
    end_date: Optional[date_type] = None


class DayAvailabilityResponse(BaseModel):
    """Availability of one day, optionally narrowed to one castle."""

    date: date_type
    status: AvailabilityStatus
    available_castles: List[str] = Field(default_factory=list)
    booked_castles: List[str] = Field(default_factory=list)
    open_slots: List[AvailabilitySlot] = Field(default_factory=list)
