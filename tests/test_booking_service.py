"""
Tests for BookingService: creation, conflicts, edits, cancellation and
calendar mirroring against an in-memory SQLite database.
"""

import re
from datetime import date

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from db.models_sqlalchemy import AuditLog, Booking
from domain.enums import AuditAction, BookingSource, BookingStatus, MaintenanceStatus
from domain.models import BookingUpdate, CastleCreate, CastleUpdate
from integrations.google_calendar import CalendarError, InMemoryCalendarClient, build_event_body
from services.booking_service import (
    BookingNotFoundError,
    BookingService,
    BookingServiceError,
    BookingValidationFailed,
    CastleNotFoundError,
)


class FailingCalendar:
    """Calendar collaborator whose every call fails."""

    def list_events(self, time_min, time_max):
        raise CalendarError("calendar unavailable", status_code=503)

    def create_event(self, event):
        raise CalendarError("calendar unavailable", status_code=503)

    def update_event(self, event_id, event):
        raise CalendarError("calendar unavailable", status_code=503)

    def delete_event(self, event_id):
        raise CalendarError("calendar unavailable", status_code=503)


# ============================================================================
# Creation
# ============================================================================

class TestCreateBooking:
    """Storing new bookings."""

    def test_creates_pending_booking(self, booking_service, candidate_data, now, db_session):
        booking = booking_service.create_booking(candidate_data, now=now)

        assert booking.id is not None
        assert re.match(r"^TS240501\d{3}$", booking.booking_ref)
        assert booking.status == BookingStatus.PENDING.value
        assert booking.castle_name == "Princess Castle"
        assert booking.date == date(2024, 6, 3)
        assert (booking.start_time, booking.end_time) == ("10:00", "16:00")
        assert booking.customer_address == "1 High Street, Leeds"
        assert booking.total_price == 120
        assert booking.deposit == 36

        stored = db_session.get(Booking, booking.id)
        assert stored.booking_ref == booking.booking_ref

    def test_mirrors_into_calendar(self, booking_service, candidate_data, now, calendar):
        booking = booking_service.create_booking(candidate_data, now=now)

        assert booking.calendar_event_id in calendar.events
        event = calendar.events[booking.calendar_event_id]
        assert "Castle: Princess Castle" in event["description"]
        assert booking.booking_ref in event["description"]

    def test_writes_audit_entry(self, booking_service, candidate_data, now, db_session):
        booking = booking_service.create_booking(candidate_data, now=now)

        entries = db_session.scalars(select(AuditLog)).all()
        assert [e.action for e in entries] == [AuditAction.BOOKING_CREATED.value]
        assert entries[0].entity_id == str(booking.id)
        assert entries[0].details["booking_ref"] == booking.booking_ref

    def test_extras_and_overnight_are_priced(self, booking_service, candidate_data, now):
        data = dict(candidate_data, start_time="18:00", end_time="10:00", overnight=True)
        booking = booking_service.create_booking(data, additional_costs=30, now=now)

        assert booking.overnight is True
        assert booking.total_price == 170
        assert booking.additional_costs == 30
        assert booking.deposit == 51

    def test_castle_by_id(self, booking_service, candidate_data, castles, now):
        data = dict(candidate_data, castle_id=castles["jungle"].id)
        del data["castle"]

        booking = booking_service.create_booking(data, now=now)
        assert booking.castle_name == "Jungle Adventure"
        assert booking.total_price == 150

    def test_castle_name_is_case_insensitive(self, booking_service, candidate_data, now):
        booking = booking_service.create_booking(dict(candidate_data, castle="pirate ship"), now=now)
        assert booking.castle_name == "Pirate Ship"

    def test_field_errors_are_rejected(self, booking_service, candidate_data, now, db_session):
        data = dict(candidate_data, customer_email="not-an-email")

        with pytest.raises(BookingValidationFailed) as exc_info:
            booking_service.create_booking(data, now=now)

        assert "customer_email" in exc_info.value.result.errors
        assert not exc_info.value.has_conflicts
        assert db_session.scalars(select(Booking)).all() == []

    def test_negative_extras_are_rejected(self, booking_service, candidate_data, now):
        with pytest.raises(BookingValidationFailed) as exc_info:
            booking_service.create_booking(dict(candidate_data, additional_costs=-10), now=now)
        assert "additional_costs" in exc_info.value.result.errors

    def test_missing_castle(self, booking_service, candidate_data, now):
        data = dict(candidate_data)
        del data["castle"]

        with pytest.raises(BookingValidationFailed) as exc_info:
            booking_service.create_booking(data, now=now)
        assert "castle" in exc_info.value.result.errors

    def test_unknown_castle(self, booking_service, candidate_data, now):
        with pytest.raises(CastleNotFoundError):
            booking_service.create_booking(dict(candidate_data, castle="Moon Bounce"), now=now)

    def test_castle_in_maintenance(self, booking_service, candidate_data, now):
        with pytest.raises(BookingValidationFailed) as exc_info:
            booking_service.create_booking(dict(candidate_data, castle="Dragon Lair"), now=now)
        assert "castle" in exc_info.value.result.errors


# ============================================================================
# Conflicts
# ============================================================================

class TestConflicts:
    """Double-booking prevention across both sources."""

    def test_second_booking_conflicts_with_suggestions(self, booking_service, candidate_data, now):
        booking_service.create_booking(candidate_data, now=now)

        with pytest.raises(BookingValidationFailed) as exc_info:
            booking_service.create_booking(dict(candidate_data, start_time="12:00", end_time="18:00"), now=now)

        result = exc_info.value.result
        assert exc_info.value.has_conflicts
        # The calendar mirror of the stored booking is not counted twice
        assert len(result.conflicts) == 1
        assert result.conflicts[0].booking.source == BookingSource.DATABASE
        assert [s.date for s in result.suggestions] == [date(2024, 6, 4), date(2024, 6, 2), date(2024, 6, 5)]

    def test_different_castle_same_day_is_allowed(self, booking_service, candidate_data, now):
        booking_service.create_booking(candidate_data, now=now)
        booking = booking_service.create_booking(dict(candidate_data, castle="Pirate Ship"), now=now)
        assert booking.castle_name == "Pirate Ship"

    def test_calendar_only_event_blocks(self, db_session, castles, business_config, candidate_data, now):
        calendar = InMemoryCalendarClient([build_event_body({
            "booking_ref": "TS240401001",
            "castle_name": "Princess Castle",
            "customer_name": "Carol",
            "date": "2024-06-03",
            "start_time": "09:00",
            "end_time": "12:00",
        }, "Europe/London")])
        service = BookingService(db_session, calendar=calendar, config=business_config)

        with pytest.raises(BookingValidationFailed) as exc_info:
            service.create_booking(candidate_data, now=now)

        conflict = exc_info.value.result.conflicts[0]
        assert conflict.booking.source == BookingSource.CALENDAR
        assert conflict.booking.id == "evt-1"

    def test_overnight_calendar_event_blocks_only_next_morning(
        self, db_session, castles, business_config, candidate_data, now,
    ):
        calendar = InMemoryCalendarClient([build_event_body({
            "castle_name": "Princess Castle",
            "date": "2024-06-02",
            "start_time": "18:00",
            "end_time": "10:00",
            "overnight": True,
        }, "Europe/London")])
        service = BookingService(db_session, calendar=calendar, config=business_config)

        booking = service.create_booking(dict(candidate_data, date="2024-06-04"), now=now)
        assert booking.date == date(2024, 6, 4)
        with pytest.raises(BookingValidationFailed):
            service.create_booking(dict(candidate_data, start_time="09:00", end_time="13:00"), now=now)

    def test_calendar_outage_falls_back_to_database(
        self, db_session, castles, business_config, candidate_data, now, add_booking,
    ):
        service = BookingService(db_session, calendar=FailingCalendar(), config=business_config)

        booking = service.create_booking(dict(candidate_data, date="2024-06-04"), now=now)
        assert booking.calendar_event_id is None

        add_booking(date=date(2024, 6, 5))
        with pytest.raises(BookingValidationFailed):
            service.create_booking(dict(candidate_data, date="2024-06-05"), now=now)

    def test_without_calendar(self, db_session, castles, business_config, candidate_data, now):
        service = BookingService(db_session, config=business_config)
        assert service.create_booking(candidate_data, now=now).calendar_event_id is None

    def test_race_is_settled_by_unique_index(self, booking_service, candidate_data, now, add_booking, monkeypatch):
        """A booking stored after the conflict check still cannot take the slot."""
        taken = add_booking(date=date(2024, 6, 3), start_time="10:00", end_time="16:00")
        monkeypatch.setattr(booking_service, "load_existing_bookings", lambda *args, **kwargs: [])

        with pytest.raises(BookingValidationFailed) as exc_info:
            booking_service.create_booking(candidate_data, now=now)

        conflicts = exc_info.value.result.conflicts
        assert len(conflicts) == 1
        assert conflicts[0].booking.id == str(taken.id)

    def test_check_booking_does_not_store(self, booking_service, candidate_data, now, db_session, add_booking):
        add_booking()
        result = booking_service.check_booking(candidate_data, now=now)

        assert result.has_castle_conflict
        assert result.suggestions
        assert len(db_session.scalars(select(Booking)).all()) == 1


# ============================================================================
# Edits, confirmation and cancellation
# ============================================================================

class TestUpdateBooking:
    """Editing stored bookings."""

    def test_edit_does_not_conflict_with_itself(self, booking_service, candidate_data, now, calendar):
        booking = booking_service.create_booking(candidate_data, now=now)

        updated = booking_service.update_booking(
            booking.id, BookingUpdate(start_time="11:00", notes="Gate code 1234"), now=now,
        )

        assert updated.start_time == "11:00"
        assert updated.notes == "Gate code 1234"
        assert updated.total_price == 120
        assert "Gate code 1234" in calendar.events[updated.calendar_event_id]["description"]

    def test_move_into_taken_slot(self, booking_service, candidate_data, now, add_booking):
        booking = booking_service.create_booking(candidate_data, now=now)
        add_booking(date=date(2024, 6, 5))

        with pytest.raises(BookingValidationFailed) as exc_info:
            booking_service.update_booking(booking.id, {"date": "2024-06-05"}, now=now)

        assert exc_info.value.has_conflicts
        assert booking_service.get_booking(booking.id).date == date(2024, 6, 3)

    def test_castle_change_reprices(self, booking_service, candidate_data, castles, now):
        booking = booking_service.create_booking(candidate_data, now=now)

        updated = booking_service.update_booking(booking.id, {"castle_id": castles["jungle"].id}, now=now)

        assert updated.castle_name == "Jungle Adventure"
        assert updated.total_price == 150
        assert updated.deposit == 45

    def test_cancelled_booking_cannot_be_edited(self, booking_service, candidate_data, now):
        booking = booking_service.create_booking(candidate_data, now=now)
        booking_service.cancel_booking(booking.id, now=now)

        with pytest.raises(BookingServiceError):
            booking_service.update_booking(booking.id, {"notes": "too late"}, now=now)

    def test_unknown_booking(self, booking_service, now):
        with pytest.raises(BookingNotFoundError):
            booking_service.update_booking(999, {"notes": "x"}, now=now)


class TestConfirmAndCancel:
    """Status changes made by staff."""

    def test_confirm_pending(self, booking_service, candidate_data, now, db_session):
        booking = booking_service.create_booking(candidate_data, now=now)

        confirmed = booking_service.confirm_booking(booking.id)

        assert confirmed.status == BookingStatus.CONFIRMED.value
        actions = [e.action for e in db_session.scalars(select(AuditLog)).all()]
        assert AuditAction.BOOKING_CONFIRMED.value in actions

    def test_confirm_twice(self, booking_service, candidate_data, now):
        booking = booking_service.create_booking(candidate_data, now=now)
        booking_service.confirm_booking(booking.id)

        with pytest.raises(BookingServiceError):
            booking_service.confirm_booking(booking.id)

    def test_cancel_frees_slot(self, booking_service, candidate_data, now, calendar):
        booking = booking_service.create_booking(candidate_data, now=now)
        event_id = booking.calendar_event_id

        cancelled = booking_service.cancel_booking(booking.id, reason="Rain", now=now)

        assert cancelled.status == BookingStatus.CANCELLED.value
        assert cancelled.cancelled_at is not None
        assert event_id not in calendar.events

        rebooked = booking_service.create_booking(candidate_data, now=now)
        assert rebooked.id != booking.id

    def test_cancel_twice(self, booking_service, candidate_data, now):
        booking = booking_service.create_booking(candidate_data, now=now)
        booking_service.cancel_booking(booking.id, now=now)

        with pytest.raises(BookingServiceError):
            booking_service.cancel_booking(booking.id, now=now)


# ============================================================================
# Fleet
# ============================================================================

class TestFleet:
    """Adding, editing and servicing castles."""

    def test_create_castle(self, booking_service, db_session):
        castle = booking_service.create_castle(CastleCreate(name="Unicorn Dream", price=140))

        assert castle.id is not None
        assert castle.is_bookable
        audit = db_session.scalars(select(AuditLog).where(AuditLog.entity_type == "castle")).one()
        assert audit.action == AuditAction.CASTLE_CREATED.value
        assert audit.entity_id == str(castle.id)

    def test_new_castle_takes_bookings(self, booking_service, candidate_data, now):
        booking_service.create_castle(CastleCreate(name="Unicorn Dream", price=140))
        booking = booking_service.create_booking(dict(candidate_data, castle="unicorn dream"), now=now)
        assert booking.total_price == 140

    def test_duplicate_name_is_rejected(self, booking_service):
        with pytest.raises(BookingServiceError):
            booking_service.create_castle(CastleCreate(name="  princess castle ", price=99))

    def test_price_must_be_positive(self):
        with pytest.raises(ValidationError):
            CastleCreate(name="Free Castle", price=0)

    def test_update_price_affects_new_bookings_only(self, booking_service, candidate_data, castles, now):
        first = booking_service.create_booking(candidate_data, now=now)
        booking_service.update_castle(castles["princess"].id, CastleUpdate(price=135))
        second = booking_service.create_booking(dict(candidate_data, date="2024-06-10"), now=now)

        assert first.total_price == 120
        assert second.total_price == 135

    def test_rename_to_taken_name(self, booking_service, castles):
        with pytest.raises(BookingServiceError):
            booking_service.update_castle(castles["pirate"].id, CastleUpdate(name="Jungle Adventure"))
        assert castles["pirate"].name == "Pirate Ship"

    def test_rename_keeps_own_name_free(self, booking_service, castles):
        castle = booking_service.update_castle(castles["pirate"].id, CastleUpdate(name="PIRATE SHIP"))
        assert castle.name == "PIRATE SHIP"

    def test_update_unknown_castle(self, booking_service):
        with pytest.raises(CastleNotFoundError):
            booking_service.update_castle(999, CastleUpdate(price=10))

    def test_maintenance_blocks_new_bookings(self, booking_service, candidate_data, castles, now):
        booking_service.set_maintenance(castles["princess"].id, MaintenanceStatus.MAINTENANCE, now=now)

        with pytest.raises(BookingValidationFailed) as exc_info:
            booking_service.create_booking(candidate_data, now=now)
        assert "castle" in exc_info.value.result.errors

    def test_back_in_service(self, booking_service, candidate_data, castles, now):
        castle = booking_service.set_maintenance(castles["dragon"].id, MaintenanceStatus.AVAILABLE, now=now)

        assert castle.is_bookable
        assert booking_service.create_booking(dict(candidate_data, castle="Dragon Lair"), now=now).id

    def test_held_bookings_are_recorded(self, booking_service, castles, add_booking, db_session, now):
        upcoming = add_booking(date=date(2024, 6, 3))
        add_booking(date=date(2024, 4, 20))
        add_booking(date=date(2024, 6, 5), status=BookingStatus.CANCELLED.value)

        booking_service.set_maintenance(
            castles["princess"].id, MaintenanceStatus.RETIRED, notes="Torn seam", now=now,
        )

        audit = db_session.scalars(
            select(AuditLog).where(AuditLog.action == AuditAction.CASTLE_MAINTENANCE.value)
        ).one()
        assert audit.details["upcoming_bookings"] == [upcoming.booking_ref]
        assert audit.details["notes"] == "Torn seam"
        assert db_session.get(Booking, upcoming.id).status == BookingStatus.CONFIRMED.value

    def test_unchanged_status_writes_nothing(self, booking_service, castles, db_session, now):
        booking_service.set_maintenance(castles["pirate"].id, MaintenanceStatus.AVAILABLE, now=now)
        assert db_session.scalars(select(AuditLog)).all() == []


# ============================================================================
# Queries
# ============================================================================

class TestQueries:
    """Lookups, listings and statistics."""

    def test_lookup_by_ref(self, booking_service, candidate_data, now):
        booking = booking_service.create_booking(candidate_data, now=now)
        assert booking_service.get_booking_by_ref(booking.booking_ref).id == booking.id

        with pytest.raises(BookingNotFoundError):
            booking_service.get_booking_by_ref("TS000000000")

    def test_list_filters(self, booking_service, add_booking, castles):
        add_booking(date=date(2024, 6, 3))
        add_booking("pirate", date=date(2024, 6, 10))
        add_booking(date=date(2024, 6, 12), status=BookingStatus.CANCELLED.value)

        assert len(booking_service.list_bookings()) == 3
        assert len(booking_service.list_bookings(status=BookingStatus.CONFIRMED)) == 2
        assert len(booking_service.list_bookings(date_from=date(2024, 6, 5))) == 2
        assert len(booking_service.list_bookings(castle_id=castles["pirate"].id)) == 1
        assert [b.date for b in booking_service.list_bookings(limit=1)] == [date(2024, 6, 3)]

    def test_list_castles(self, booking_service):
        assert len(booking_service.list_castles()) == 4
        assert "Dragon Lair" not in [c.name for c in booking_service.list_castles(bookable_only=True)]

    def test_stats(self, booking_service, add_booking):
        add_booking(date=date(2024, 6, 3))
        add_booking("pirate", date=date(2024, 6, 10), status=BookingStatus.PENDING.value)
        add_booking(date=date(2024, 6, 12), status=BookingStatus.CANCELLED.value)

        stats = booking_service.get_stats()

        assert stats["total"] == 3
        assert stats["by_status"]["confirmed"] == 1
        assert stats["by_status"]["expired"] == 0
        assert stats["revenue"] == 220
