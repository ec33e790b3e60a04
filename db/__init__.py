"""Database layer for the castle hire booking system."""

from .base import Base, TimestampMixin
from .models_sqlalchemy import Castle, Booking, AuditLog
from .session import (
    engine,
    SessionLocal,
    create_engine,
    get_db,
    init_db,
    drop_db,
    close_db,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Models
    "Castle",
    "Booking",
    "AuditLog",
    # Session
    "engine",
    "SessionLocal",
    "create_engine",
    "get_db",
    "init_db",
    "drop_db",
    "close_db",
]
