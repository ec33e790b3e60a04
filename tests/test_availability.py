"""Tests for alternative slots and day availability."""

from datetime import date, time

import pytest

from core.booking_config import BookingRules
from core.utils_datetime import TIMEZONE
from domain.enums import AvailabilityStatus, BookingStatus
from services.availability import day_availability, find_open_slots, suggest_alternatives
from services.booking_validation import validate_booking


@pytest.fixture
def suggest():
    def _suggest(candidate, existing, **kwargs):
        kwargs.setdefault("rules", BookingRules())
        kwargs.setdefault("tz", TIMEZONE)
        return suggest_alternatives(candidate, existing, **kwargs)
    return _suggest


class TestSuggestAlternatives:
    """Nearby free dates for a taken castle."""

    def test_later_date_wins_at_equal_distance(self, suggest, candidate_data, make_existing):
        candidate = dict(candidate_data, date="2024-06-01")
        existing = [
            make_existing(id="1", date=date(2024, 6, 1)),
            make_existing(id="2", date=date(2024, 6, 2)),
        ]

        slots = suggest(candidate, existing)

        assert [s.date for s in slots] == [date(2024, 5, 31), date(2024, 6, 3), date(2024, 5, 30)]
        assert all((s.start_time, s.end_time) == ("10:00", "16:00") for s in slots)

    def test_suggested_slots_validate(self, suggest, candidate_data, make_existing, now):
        existing = [make_existing(), make_existing(id="2", date=date(2024, 6, 4))]

        for slot in suggest(candidate_data, existing):
            moved = dict(candidate_data, date=slot.date.isoformat())
            result = validate_booking(moved, existing, rules=BookingRules(), now=now, tz=TIMEZONE)
            assert not result.has_castle_conflict

    def test_other_castles_do_not_block(self, suggest, candidate_data, make_existing):
        existing = [make_existing(), make_existing(id="2", castle="Pirate Ship", date=date(2024, 6, 4))]
        assert suggest(candidate_data, existing, max_suggestions=1)[0].date == date(2024, 6, 4)

    def test_fully_booked_window_gives_nothing(self, suggest, candidate_data, make_existing):
        existing = [make_existing(date=date(2024, 6, 1), end_date=date(2024, 6, 5))]
        assert suggest(candidate_data, existing, search_window_days=2) == []

    def test_multi_day_span_is_kept(self, suggest, candidate_data, make_existing):
        candidate = dict(candidate_data, end_date="2024-06-04")
        slots = suggest(candidate, [make_existing()], max_suggestions=1)

        assert slots[0].date == date(2024, 6, 4)
        assert slots[0].end_date == date(2024, 6, 5)

    def test_earliest_date_is_respected(self, suggest, candidate_data, make_existing):
        slots = suggest(candidate_data, [make_existing()], earliest_date=date(2024, 6, 3))
        assert all(s.date >= date(2024, 6, 3) for s in slots)
        assert [s.date for s in slots] == [date(2024, 6, 4), date(2024, 6, 5), date(2024, 6, 6)]

    def test_buffer_applies_to_suggestions(self, suggest, candidate_data, make_existing):
        existing = [make_existing(date=date(2024, 6, 4), start_time=time(16, 30), end_time=time(18, 0))]
        slots = suggest(candidate_data, existing, max_suggestions=1, setup_buffer_minutes=60)
        assert slots[0].date == date(2024, 6, 2)

    def test_unparseable_candidate_gives_nothing(self, suggest, candidate_data, make_existing):
        assert suggest(dict(candidate_data, date="someday"), [make_existing()]) == []

    @pytest.mark.parametrize("changes", [
        {"start_time": "16:00", "end_time": "10:00"},
        {"start_time": "10:00", "end_time": "10:00"},
        {"end_date": "2024-06-01"},
    ])
    def test_backwards_candidate_gives_nothing(self, suggest, candidate_data, make_existing, changes):
        assert suggest(dict(candidate_data, **changes), [make_existing()]) == []

    def test_missing_castle_gives_nothing(self, suggest, candidate_data, make_existing):
        assert suggest(dict(candidate_data, castle="  "), [make_existing()]) == []

    def test_zero_limits(self, suggest, candidate_data):
        assert suggest(candidate_data, [], max_suggestions=0) == []
        assert suggest(candidate_data, [], search_window_days=0) == []


class TestFindOpenSlots:
    """Free windows within one day."""

    def test_windows_around_a_booking(self, make_existing):
        slots = find_open_slots(
            "2024-06-03", "Princess Castle", [make_existing()], duration_hours=2, tz=TIMEZONE,
        )
        assert [s.start_time for s in slots] == ["08:00", "16:00", "17:00", "18:00"]
        assert slots[-1].end_time == "20:00"

    def test_cancelled_booking_frees_the_day(self, make_existing):
        slots = find_open_slots(
            date(2024, 6, 3), "Princess Castle", [make_existing(status=BookingStatus.CANCELLED)],
            duration_hours=4, tz=TIMEZONE,
        )
        assert len(slots) == 9

    def test_nothing_fits(self, make_existing):
        existing = [make_existing(start_time=time(8, 0), end_time=time(20, 0))]
        assert find_open_slots("2024-06-03", "princess castle", existing, tz=TIMEZONE) == []


class TestDayAvailability:
    """Fleet summary for one day."""

    CASTLES = ["Princess Castle", "Jungle Adventure"]

    def test_all_available(self):
        summary = day_availability("2024-06-03", self.CASTLES, [], tz=TIMEZONE)
        assert summary.status == AvailabilityStatus.AVAILABLE
        assert summary.available_castles == self.CASTLES

    def test_partially_booked(self, make_existing):
        summary = day_availability("2024-06-03", self.CASTLES, [make_existing()], tz=TIMEZONE)

        assert summary.status == AvailabilityStatus.PARTIALLY_BOOKED
        assert summary.booked_castles == ["Princess Castle"]
        assert summary.available_castles == ["Jungle Adventure"]

    def test_fully_booked(self, make_existing):
        existing = [make_existing(), make_existing(id="2", castle="Jungle Adventure")]
        summary = day_availability("2024-06-03", self.CASTLES, existing, tz=TIMEZONE)
        assert summary.status == AvailabilityStatus.FULLY_BOOKED

    def test_overnight_spill_counts(self, make_existing):
        existing = [make_existing(date=date(2024, 6, 2), start_time=time(18, 0),
                                  end_time=time(10, 0), overnight=True)]
        summary = day_availability("2024-06-03", self.CASTLES, existing, tz=TIMEZONE)
        assert summary.booked_castles == ["Princess Castle"]
