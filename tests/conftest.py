"""Pytest configuration and fixtures for castle hire booking tests."""
import pytest
from datetime import date, datetime, time, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.booking_config import BookingRules, BusinessConfig
from core.utils_datetime import TIMEZONE
from db.base import Base
from db.models_sqlalchemy import Booking, Castle
from domain.enums import BookingStatus, MaintenanceStatus
from domain.models import ExistingBooking
from integrations.google_calendar import InMemoryCalendarClient
from services.booking_service import BookingService


@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Create a database session for testing."""
    SessionLocal = sessionmaker(bind=db_engine, expire_on_commit=False)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def castles(db_session):
    """Seed the hire fleet."""
    fleet = {
        "princess": Castle(name="Princess Castle", price=120.0, description="Pink turrets"),
        "jungle": Castle(name="Jungle Adventure", price=150.0),
        "pirate": Castle(name="Pirate Ship", price=100.0),
        "dragon": Castle(
            name="Dragon Lair",
            price=180.0,
            maintenance_status=MaintenanceStatus.MAINTENANCE.value,
        ),
    }
    db_session.add_all(fleet.values())
    db_session.commit()
    return fleet


@pytest.fixture(scope="function")
def calendar():
    """In-memory calendar collaborator."""
    return InMemoryCalendarClient()


@pytest.fixture(scope="function")
def business_config():
    """Business configuration independent of environment settings."""
    return BusinessConfig(
        name="Test Castles",
        timezone="Europe/London",
        booking_rules=BookingRules(),
    )


@pytest.fixture(scope="function")
def booking_service(db_session, calendar, business_config, castles):
    """Create a booking service instance for testing."""
    return BookingService(db_session, calendar=calendar, config=business_config)


@pytest.fixture(scope="function")
def now():
    """A fixed reference instant: Wednesday 1 May 2024, 09:00 London."""
    return TIMEZONE.localize(datetime(2024, 5, 1, 9, 0))


@pytest.fixture(scope="function")
def candidate_data():
    """A complete, valid booking form submission."""
    return {
        "customer_name": "Alice Smith",
        "customer_email": "alice@example.com",
        "customer_phone": "07123 456789",
        "address": "1 High Street, Leeds",
        "castle": "Princess Castle",
        "date": "2024-06-03",
        "start_time": "10:00",
        "end_time": "16:00",
    }


@pytest.fixture(scope="function")
def make_existing():
    """Factory for ExistingBooking snapshots."""
    def _make(**kwargs):
        data = {
            "id": "1",
            "date": date(2024, 6, 3),
            "start_time": time(10, 0),
            "end_time": time(16, 0),
            "castle": "Princess Castle",
            "status": BookingStatus.CONFIRMED,
        }
        data.update(kwargs)
        return ExistingBooking(**data)
    return _make


@pytest.fixture(scope="function")
def add_booking(db_session, castles):
    """Factory fixture to store a booking row directly."""
    counter = iter(range(100, 1000))

    def _add(castle_key="princess", **kwargs):
        castle = castles[castle_key]
        data = {
            "booking_ref": f"TS240401{next(counter)}",
            "customer_name": "Bob Jones",
            "customer_email": "bob@example.com",
            "customer_phone": "07000000000",
            "customer_address": "2 Low Road",
            "castle_id": castle.id,
            "castle_name": castle.name,
            "date": date(2024, 6, 3),
            "start_time": "10:00",
            "end_time": "16:00",
            "overnight": False,
            "total_price": castle.price,
            "deposit": int(castle.price * 0.3),
            "status": BookingStatus.CONFIRMED.value,
        }
        data.update(kwargs)
        booking = Booking(**data)
        db_session.add(booking)
        db_session.commit()
        return booking
    return _add


@pytest.fixture(scope="function")
def future_day():
    """A weekday far enough ahead to avoid notice warnings in API tests."""
    day = date.today() + timedelta(days=30)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day
