"""Admin endpoints: fleet management, status housekeeping and booking statistics."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from apps.api.deps import get_booking_service, get_db
from domain.models import CastleCreate, CastleRecord, CastleUpdate, MaintenanceUpdate
from services.booking_service import BookingService
from services.status_transitions import expire_stale_pending, process_status_transitions


router = APIRouter(prefix="/admin", tags=["admin"])


# ============================================================================
# Fleet
# ============================================================================

@router.post("/fleet", response_model=CastleRecord, status_code=status.HTTP_201_CREATED)
def create_castle(data: CastleCreate, service: BookingService = Depends(get_booking_service)):
    """Add a castle to the fleet."""
    return service.create_castle(data)


@router.put("/fleet/{castle_id}", response_model=CastleRecord)
def update_castle(
    castle_id: int,
    updates: CastleUpdate,
    service: BookingService = Depends(get_booking_service),
):
    """Rename or reprice a castle."""
    return service.update_castle(castle_id, updates)


@router.put("/fleet/{castle_id}/maintenance", response_model=CastleRecord)
def set_maintenance(
    castle_id: int,
    update: MaintenanceUpdate,
    service: BookingService = Depends(get_booking_service),
):
    """
    Take a castle out of service or return it to the fleet.

    Bookings it already holds are kept; the audit log lists them.
    """
    return service.set_maintenance(castle_id, update.status, notes=update.notes)


# ============================================================================
# Housekeeping
# ============================================================================

@router.post("/status-transitions")
def run_status_transitions(db: Session = Depends(get_db)):
    """
    Complete confirmed bookings that have ended and expire stale pending ones.

    Returns:
        Summaries of both runs
    """
    completed = process_status_transitions(db)
    expired = expire_stale_pending(db)
    return {
        "completed": completed.to_dict(),
        "expired": expired.to_dict(),
    }


@router.get("/stats")
def get_stats(service: BookingService = Depends(get_booking_service)):
    """Booking counts per status and revenue."""
    return service.get_stats()
