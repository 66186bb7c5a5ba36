"""
ORM models for the enrollment bot.

Domain overview
---------------
Event             — a gathering participants enroll in
  ├─ PickupLocation  — shuttle pickup point with a fixed seat capacity
  ├─ TransportBooking — a participant's own seat record (one per event)
  └─ Registration    — the submitted enrollment (linked to a Telegram User)

FlowSnapshot — key/value row backing the long-lived wizard-state tier.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from enrollbot.models.base import Base

# ─────────────────────────── Constants ────────────────────────────────────────

class Role:
    MONK      = "monk"
    VOLUNTEER = "volunteer"

    ALL = (MONK, VOLUNTEER)

    LABELS = {
        MONK:      "Monastic",
        VOLUNTEER: "Volunteer",
    }


class EventStatus:
    DRAFT  = "draft"   # Being configured
    OPEN   = "open"    # Accepting enrollments
    CLOSED = "closed"  # Enrollment finished


class RegistrationStatus:
    PENDING   = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    LABELS = {
        PENDING:   "Received",
        CONFIRMED: "Confirmed",
        CANCELLED: "Cancelled",
    }


# ─────────────────────────── Models ───────────────────────────────────────────

class User(Base):
    """Telegram user / potential participant."""
    __tablename__ = "users"

    id:          Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    telegram_id: Mapped[int]           = mapped_column(BigInteger, unique=True, index=True)
    username:    Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    first_name:  Mapped[str]           = mapped_column(String(255))
    last_name:   Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at:  Mapped[datetime]      = mapped_column(DateTime, default=func.now())

    registrations: Mapped[List["Registration"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        parts = [self.first_name]
        if self.last_name:
            parts.append(self.last_name)
        return " ".join(parts)


class Event(Base):
    """An event participants can enroll in."""
    __tablename__ = "events"

    id:          Mapped[int]                = mapped_column(Integer, primary_key=True, autoincrement=True)
    name:        Mapped[str]                = mapped_column(String(255))
    description: Mapped[Optional[str]]      = mapped_column(String(1000), nullable=True)
    venue:       Mapped[Optional[str]]      = mapped_column(String(255), nullable=True)
    starts_at:   Mapped[datetime]           = mapped_column(DateTime)
    deadline:    Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    status:      Mapped[str]                = mapped_column(String(20), default=EventStatus.OPEN)
    created_at:  Mapped[datetime]           = mapped_column(DateTime, default=func.now())

    locations: Mapped[List["PickupLocation"]] = relationship(
        back_populates="event", cascade="all, delete-orphan"
    )
    registrations: Mapped[List["Registration"]] = relationship(
        back_populates="event", cascade="all, delete-orphan"
    )

    @property
    def status_emoji(self) -> str:
        mapping = {
            EventStatus.DRAFT:  "📝",
            EventStatus.OPEN:   "📋",
            EventStatus.CLOSED: "🔒",
        }
        return mapping.get(self.status, "❓")


class PickupLocation(Base):
    """
    A shuttle pickup point.

    `capacity` is fixed at creation; `reserved_count` only moves through the
    conditional updates in seat_inventory.
    """
    __tablename__ = "pickup_locations"
    __table_args__ = (
        CheckConstraint("capacity >= 0", name="ck_pickup_capacity_non_negative"),
        CheckConstraint(
            "reserved_count >= 0 AND reserved_count <= capacity",
            name="ck_pickup_reserved_within_capacity",
        ),
    )

    id:             Mapped[int]             = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id:       Mapped[int]             = mapped_column(ForeignKey("events.id"), index=True)
    label:          Mapped[str]             = mapped_column(String(255))
    address:        Mapped[str]             = mapped_column(String(500), default="")
    pickup_time:    Mapped[datetime]        = mapped_column(DateTime)
    capacity:       Mapped[int]             = mapped_column(Integer)
    reserved_count: Mapped[int]             = mapped_column(Integer, default=0)
    latitude:       Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude:      Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    event: Mapped["Event"] = relationship(back_populates="locations")


class TransportBooking(Base):
    """
    The participant's own seat record for one event.
    `location_id` is the seat currently held (None = no seat held).
    """
    __tablename__ = "transport_bookings"
    __table_args__ = (
        UniqueConstraint("participant_ref", "event_id", name="uq_booking_participant_event"),
    )

    id:              Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_ref: Mapped[str]           = mapped_column(String(64), index=True)
    event_id:        Mapped[int]           = mapped_column(ForeignKey("events.id"))
    location_id:     Mapped[Optional[int]] = mapped_column(ForeignKey("pickup_locations.id"), nullable=True)
    required:        Mapped[bool]          = mapped_column(Boolean, default=False)
    updated_at:      Mapped[datetime]      = mapped_column(DateTime, default=func.now(), onupdate=func.now())


class Registration(Base):
    """A submitted enrollment."""
    __tablename__ = "registrations"

    id:                   Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id:             Mapped[int]           = mapped_column(ForeignKey("events.id"))
    user_id:              Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    participant_ref:      Mapped[str]           = mapped_column(String(64), index=True)
    role:                 Mapped[str]           = mapped_column(String(20))   # Role.*
    name:                 Mapped[str]           = mapped_column(String(100))
    id_number:            Mapped[str]           = mapped_column(String(10))
    birth_date:           Mapped[str]           = mapped_column(String(10))   # ISO date
    phone:                Mapped[str]           = mapped_column(String(20))
    dharma_name:          Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    temple_name:          Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    special_requirements: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    transport_required:   Mapped[bool]          = mapped_column(Boolean, default=False)
    location_id:          Mapped[Optional[int]] = mapped_column(ForeignKey("pickup_locations.id"), nullable=True)
    status:               Mapped[str]           = mapped_column(String(20), default=RegistrationStatus.PENDING)
    created_at:           Mapped[datetime]      = mapped_column(DateTime, default=func.now())

    user:     Mapped[Optional["User"]]           = relationship(back_populates="registrations")
    event:    Mapped["Event"]                    = relationship(back_populates="registrations")
    location: Mapped[Optional["PickupLocation"]] = relationship()

    @property
    def status_emoji(self) -> str:
        mapping = {
            RegistrationStatus.PENDING:   "⚪️",
            RegistrationStatus.CONFIRMED: "✅",
            RegistrationStatus.CANCELLED: "❌",
        }
        return mapping.get(self.status, "❓")


class FlowSnapshot(Base):
    """Serialized wizard state keyed by storage key (long-lived tier)."""
    __tablename__ = "flow_snapshots"

    key:        Mapped[str]      = mapped_column(String(255), primary_key=True)
    value:      Mapped[str]      = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())
