"""Booking endpoints: validate, create, edit, confirm and cancel."""

from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query

from apps.api.deps import get_booking_service
from domain.enums import BookingStatus
from domain.models import BookingCancelRequest, BookingRecord, BookingUpdate
from services.booking_service import BookingService


router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("/validate")
def validate_booking(
    payload: Dict[str, Any] = Body(..., description="Booking form fields (snake_case or camelCase)"),
    exclude_id: Optional[int] = Query(None, description="Booking being edited"),
    service: BookingService = Depends(get_booking_service),
):
    """
    Check a booking against current bookings without saving it.

    Always 200: problems are reported in the result body.
    """
    result = service.check_booking(payload, exclude_id=exclude_id)
    return result.to_dict()


@router.post("", response_model=BookingRecord, status_code=201)
def create_booking(
    payload: Dict[str, Any] = Body(..., description="Booking form fields (snake_case or camelCase)"),
    service: BookingService = Depends(get_booking_service),
):
    """
    Create a pending booking.

    Returns 400 for field errors and 409 when the castle is already booked.
    """
    return service.create_booking(payload)


@router.get("", response_model=List[BookingRecord])
def list_bookings(
    status: Optional[BookingStatus] = Query(None, description="Filter by booking status"),
    date_from: Optional[date] = Query(None, description="Bookings on or after this date"),
    date_to: Optional[date] = Query(None, description="Bookings on or before this date"),
    castle_id: Optional[int] = Query(None, description="Filter by castle"),
    limit: int = Query(100, ge=1, le=500, description="Number of bookings to return"),
    service: BookingService = Depends(get_booking_service),
):
    """List bookings ordered by date."""
    return service.list_bookings(
        status=status,
        date_from=date_from,
        date_to=date_to,
        castle_id=castle_id,
        limit=limit,
    )


@router.get("/{booking_id}", response_model=BookingRecord)
def get_booking(
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
):
    """Get a specific booking by ID."""
    return service.get_booking(booking_id)


@router.put("/{booking_id}", response_model=BookingRecord)
def update_booking(
    booking_id: int,
    changes: BookingUpdate,
    service: BookingService = Depends(get_booking_service),
):
    """Edit a booking; it is re-validated without conflicting with itself."""
    return service.update_booking(booking_id, changes)


@router.post("/{booking_id}/confirm", response_model=BookingRecord)
def confirm_booking(
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
):
    """Confirm a pending booking."""
    return service.confirm_booking(booking_id)


@router.post("/{booking_id}/cancel", response_model=BookingRecord)
def cancel_booking(
    booking_id: int,
    request: Optional[BookingCancelRequest] = None,
    service: BookingService = Depends(get_booking_service),
):
    """Cancel a booking and release its slot."""
    return service.cancel_booking(booking_id, reason=request.reason if request else None)
