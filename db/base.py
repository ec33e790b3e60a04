"""SQLAlchemy declarative base and shared column helpers for the booking tables."""

from datetime import datetime, timezone
from typing import List

from sqlalchemy import DateTime, MetaData, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.elements import TextClause

from domain.enums import BookingStatus


# Naming convention for constraints
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Stored status values that still hold a castle
ACTIVE_STATUS_VALUES: List[str] = [s.value for s in BookingStatus if s.is_active]


def active_status_clause(column: str = "status") -> TextClause:
    """SQL predicate for rows that still hold their slot, for partial indexes."""
    values = ", ".join(f"'{value}'" for value in ACTIVE_STATUS_VALUES)
    return text(f"{column} IN ({values})")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    # SQLite drops offsets, so timestamps are always written as UTC
    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class TimestampMixin:
    """Created/updated timestamps, set by the application in UTC."""

    created_at: Mapped[datetime] = mapped_column(
        default=utc_now,
        nullable=False,
        index=True,
    )

    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now,
        onupdate=utc_now,
        nullable=True,
    )
