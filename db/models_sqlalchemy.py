"""SQLAlchemy models for the castle hire booking database tables."""

from datetime import datetime, date as date_type
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, active_status_clause, utc_now
from domain.enums import BookingStatus, MaintenanceStatus


# Cancelled and expired rows free the slot
ACTIVE_SLOT_CLAUSE = active_status_clause()


class Castle(Base, TimestampMixin):
    """Castle table model: the hire fleet."""

    __tablename__ = "castles"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    price: Mapped[float] = mapped_column(
        Float,
        nullable=False,
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    maintenance_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=MaintenanceStatus.AVAILABLE.value,
        index=True,
    )

    bookings: Mapped[List["Booking"]] = relationship(back_populates="castle")

    @property
    def is_bookable(self) -> bool:
        return self.maintenance_status == MaintenanceStatus.AVAILABLE.value

    def __repr__(self) -> str:
        """String representation of Castle."""
        return f"<Castle(id={self.id}, name='{self.name}', price={self.price})>"


class Booking(Base, TimestampMixin):
    """Booking table model."""

    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    booking_ref: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
    )

    customer_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )

    customer_email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    customer_phone: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    customer_address: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    castle_id: Mapped[int] = mapped_column(
        ForeignKey("castles.id"),
        nullable=False,
    )

    # Denormalized so calendar text and reports survive castle renames
    castle_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    date: Mapped[date_type] = mapped_column(
        Date,
        nullable=False,
        index=True,
    )

    end_date: Mapped[Optional[date_type]] = mapped_column(
        Date,
        nullable=True,
    )

    start_time: Mapped[str] = mapped_column(
        String(5),
        nullable=False,
    )

    end_time: Mapped[str] = mapped_column(
        String(5),
        nullable=False,
    )

    overnight: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    total_price: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
    )

    additional_costs: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
    )

    deposit: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    payment_method: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=BookingStatus.PENDING.value,
        index=True,
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    calendar_event_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    castle: Mapped[Castle] = relationship(back_populates="bookings")

    __table_args__ = (
        Index("ix_bookings_castle_date", "castle_id", "date"),
        Index("ix_bookings_status_date", "status", "date"),
        # Last line of defence against two requests racing for one slot
        Index(
            "uq_bookings_active_slot",
            "castle_id",
            "date",
            "start_time",
            unique=True,
            sqlite_where=ACTIVE_SLOT_CLAUSE,
            postgresql_where=ACTIVE_SLOT_CLAUSE,
        ),
    )

    def __repr__(self) -> str:
        """String representation of Booking."""
        return (
            f"<Booking(id={self.id}, ref='{self.booking_ref}', "
            f"castle='{self.castle_name}', date={self.date}, "
            f"time={self.start_time}-{self.end_time}, status='{self.status}')>"
        )


class AuditLog(Base):
    """Audit log table for tracking all actions."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    action: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
    )

    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
    )

    entity_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )

    details: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        index=True,
    )

    __table_args__ = (
        Index("ix_audit_log_entity", "entity_type", "entity_id"),
        Index("ix_audit_log_action_created", "action", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation of AuditLog."""
        return (
            f"<AuditLog(id={self.id}, action='{self.action}', "
            f"entity_type='{self.entity_type}', entity_id='{self.entity_id}')>"
        )
