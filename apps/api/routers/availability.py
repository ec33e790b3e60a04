"""Availability and fleet endpoints for the booking form and the admin calendar."""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from apps.api.deps import get_booking_service
from domain.models import CastleRecord, DayAvailabilityResponse
from services.availability import day_availability, find_open_slots
from services.booking_service import BookingService


router = APIRouter(tags=["availability"])


@router.get("/availability", response_model=DayAvailabilityResponse)
def get_availability(
    day: date = Query(..., alias="date", description="Day to check"),
    castle: Optional[str] = Query(None, description="Narrow to one castle by name"),
    duration_hours: float = Query(4, gt=0, le=12, description="Length of open slots to list"),
    service: BookingService = Depends(get_booking_service),
):
    """
    Which castles are free on a day.

    With a castle, the response also lists that castle's open same-day slots.
    """
    existing = service.load_existing_bookings(day)

    if castle:
        selected = service.get_castle(name=castle)
        summary = day_availability(day, [selected.name], existing, tz=service.config.tz)
        summary.open_slots = find_open_slots(
            day,
            selected.name,
            existing,
            duration_hours=duration_hours,
            tz=service.config.tz,
        )
        return summary

    castles = [c.name for c in service.list_castles(bookable_only=True)]
    return day_availability(day, castles, existing, tz=service.config.tz)


@router.get("/castles", response_model=List[CastleRecord])
def list_castles(
    bookable_only: bool = Query(True, description="Hide castles in maintenance or retired"),
    service: BookingService = Depends(get_booking_service),
):
    """The hire fleet, for the booking form's castle picker."""
    return service.list_castles(bookable_only=bookable_only)
