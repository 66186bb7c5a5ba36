"""
Error taxonomy for the enrollment flow and the seat inventory.

Only ReservationConflict, ReservationNotFound and InventoryUnavailable carry
a message meant for the participant. The rest are logged and swallowed by
the component that detects them.
"""
from __future__ import annotations


class EnrollmentError(Exception):
    """Base class for all enrollment errors."""

    def __init__(self, message: str, user_visible: bool = False) -> None:
        self.message = message
        self.user_visible = user_visible
        super().__init__(message)


class StorageError(EnrollmentError):
    """Persisted wizard state could not be read, written or decoded."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NavigationGuardViolation(EnrollmentError):
    """Attempted jump to a locked step."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"step {target!r} is locked while on {current!r}")


class ExpiredSession(EnrollmentError):
    """Persisted record is older than the flow TTL."""

    def __init__(self, session_id: str, age_hours: float) -> None:
        self.session_id = session_id
        self.age_hours = age_hours
        super().__init__(f"session {session_id!r} expired ({age_hours:.1f} h old)")


class ReservationConflict(EnrollmentError):
    def __init__(self, message: str = "This pickup location is already full, please pick another.") -> None:
        super().__init__(message, user_visible=True)


class ReservationNotFound(EnrollmentError):
    def __init__(self, message: str = "This pickup location no longer exists, please reload the list.") -> None:
        super().__init__(message, user_visible=True)


class InventoryUnavailable(EnrollmentError):
    """The seat store did not answer in time or refused the connection."""

    def __init__(self, message: str = "Seat service is temporarily unavailable, please try again.") -> None:
        super().__init__(message, user_visible=True)


class InvalidFlowInput(EnrollmentError, ValueError):
    """A setter received a value outside its enumeration (programmer error)."""

    def __init__(self, field: str, value: object) -> None:
        self.field = field
        self.value = value
        super().__init__(f"invalid {field}: {value!r}")
