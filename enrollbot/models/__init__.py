from enrollbot.models.base import Base, engine, AsyncSessionFactory
from enrollbot.models.models import (
    User,
    Event,
    PickupLocation,
    TransportBooking,
    Registration,
    FlowSnapshot,
    Role,
    EventStatus,
    RegistrationStatus,
)

__all__ = [
    "Base",
    "engine",
    "AsyncSessionFactory",
    "User",
    "Event",
    "PickupLocation",
    "TransportBooking",
    "Registration",
    "FlowSnapshot",
    "Role",
    "EventStatus",
    "RegistrationStatus",
]
