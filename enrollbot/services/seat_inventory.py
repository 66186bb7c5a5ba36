"""
Seat inventory — authoritative shuttle capacity tracking.

Every mutation is a single conditional UPDATE executed as the first
statement of its own transaction:

    reserve:  reserved_count = reserved_count + 1  WHERE reserved_count < capacity
    release:  reserved_count = reserved_count - 1  WHERE reserved_count > 0
                                                    AND the caller's booking holds the seat

Success is decided by the affected row count, so two participants racing
for the last seat can never both win. Reads are lock-free snapshots and
only advisory.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Dict, List, Optional, Sequence, TypeVar

from sqlalchemy import exists, select, update
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from enrollbot.config import settings
from enrollbot.errors import InventoryUnavailable, ReservationConflict, ReservationNotFound
from enrollbot.models.models import PickupLocation, TransportBooking

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Value objects ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SeatSnapshot:
    """Point-in-time copy of a PickupLocation row."""
    id:             int
    event_id:       int
    label:          str
    address:        str
    pickup_time:    datetime
    capacity:       int
    reserved_count: int
    latitude:       Optional[float] = None
    longitude:      Optional[float] = None

    @property
    def available_seats(self) -> int:
        return max(self.capacity - self.reserved_count, 0)

    @property
    def is_available(self) -> bool:
        return self.reserved_count < self.capacity

    def as_full(self) -> "SeatSnapshot":
        return replace(self, reserved_count=self.capacity)

    @classmethod
    def from_row(cls, row: PickupLocation) -> "SeatSnapshot":
        return cls(
            id=row.id,
            event_id=row.event_id,
            label=row.label,
            address=row.address,
            pickup_time=row.pickup_time,
            capacity=row.capacity,
            reserved_count=row.reserved_count,
            latitude=row.latitude,
            longitude=row.longitude,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "eventId": self.event_id,
            "label": self.label,
            "address": self.address,
            "pickupTime": self.pickup_time.isoformat(),
            "capacity": self.capacity,
            "reservedCount": self.reserved_count,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SeatSnapshot":
        return cls(
            id=int(data["id"]),
            event_id=int(data["eventId"]),
            label=data["label"],
            address=data.get("address", ""),
            pickup_time=datetime.fromisoformat(data["pickupTime"]),
            capacity=int(data["capacity"]),
            reserved_count=int(data["reservedCount"]),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
        )


class ReserveStatus:
    OK        = "ok"
    CONFLICT  = "conflict"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ReserveResult:
    status:   str
    resource: Optional[SeatSnapshot] = None

    @property
    def ok(self) -> bool:
        return self.status == ReserveStatus.OK

    def as_error(self) -> Optional[Exception]:
        if self.status == ReserveStatus.CONFLICT:
            return ReservationConflict()
        if self.status == ReserveStatus.NOT_FOUND:
            return ReservationNotFound()
        return None


@dataclass(frozen=True)
class TransferResult:
    status:   str
    resource: Optional[SeatSnapshot] = None
    released: bool = False
    notice:   Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ReserveStatus.OK


@dataclass(frozen=True)
class BookingSnapshot:
    participant_ref: str
    event_id:        int
    location_id:     Optional[int]
    required:        bool


# ── Inventory ─────────────────────────────────────────────────────────────────

class SeatInventory:
    """
    Seat operations for all pickup locations in the database.

    Parameters
    ----------
    session_factory : sessionmaker producing independent AsyncSessions;
                      every operation runs in its own short transaction
    timeout         : seconds before a store round trip is abandoned
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout: float = settings.INVENTORY_TIMEOUT_SECONDS,
    ) -> None:
        self._session_factory = session_factory
        self._timeout = timeout

    async def _run(self, op: str, coro: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(coro, self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Seat store timed out during %s", op)
            raise InventoryUnavailable() from exc
        except (OperationalError, DBAPIError) as exc:
            logger.error("Seat store failed during %s: %s", op, exc)
            raise InventoryUnavailable() from exc

    # ── Setup ────────────────────────────────────────────────────────────────

    async def create_location(
        self,
        event_id: int,
        label: str,
        pickup_time: datetime,
        capacity: int,
        address: str = "",
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> SeatSnapshot:
        if capacity < 0:
            raise ValueError(f"capacity must be >= 0, got {capacity}")

        async def _create() -> SeatSnapshot:
            async with self._session_factory() as session:
                row = PickupLocation(
                    event_id=event_id,
                    label=label,
                    address=address,
                    pickup_time=pickup_time,
                    capacity=capacity,
                    reserved_count=0,
                    latitude=latitude,
                    longitude=longitude,
                )
                session.add(row)
                await session.flush()
                snapshot = SeatSnapshot.from_row(row)
                await session.commit()
                return snapshot

        return await self._run("create_location", _create())

    # ── Reads (advisory) ─────────────────────────────────────────────────────

    async def list_resources(self, event_id: int) -> List[SeatSnapshot]:
        async def _list() -> List[SeatSnapshot]:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(PickupLocation)
                    .where(PickupLocation.event_id == event_id)
                    .order_by(PickupLocation.pickup_time, PickupLocation.id)
                )
                return [SeatSnapshot.from_row(r) for r in result.scalars().all()]

        return await self._run("list_resources", _list())

    async def get_resource(self, location_id: int) -> Optional[SeatSnapshot]:
        async def _get() -> Optional[SeatSnapshot]:
            async with self._session_factory() as session:
                row = await session.get(PickupLocation, location_id)
                return SeatSnapshot.from_row(row) if row else None

        return await self._run("get_resource", _get())

    async def check_availability(self, location_id: int) -> bool:
        """True if a seat is open right now. A later reserve() may still lose."""
        resource = await self.get_resource(location_id)
        return resource is not None and resource.is_available

    async def batch_refresh(self, location_ids: Sequence[int]) -> List[SeatSnapshot]:
        """Snapshots for several locations in one query, in request order."""
        if not location_ids:
            return []

        async def _batch() -> List[SeatSnapshot]:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(PickupLocation).where(PickupLocation.id.in_(list(location_ids)))
                )
                by_id = {r.id: SeatSnapshot.from_row(r) for r in result.scalars().all()}
            return [by_id[i] for i in location_ids if i in by_id]

        return await self._run("batch_refresh", _batch())

    async def booking_for(self, participant_ref: str, event_id: int) -> Optional[BookingSnapshot]:
        async def _booking() -> Optional[BookingSnapshot]:
            async with self._session_factory() as session:
                booking = await _get_booking(session, participant_ref, event_id)
                if booking is None:
                    return None
                return BookingSnapshot(
                    participant_ref=booking.participant_ref,
                    event_id=booking.event_id,
                    location_id=booking.location_id,
                    required=booking.required,
                )

        return await self._run("booking_for", _booking())

    # ── Mutations ────────────────────────────────────────────────────────────

    async def reserve(self, location_id: int, participant_ref: str) -> ReserveResult:
        """
        Take one seat for participant_ref.

        Re-reserving the seat already held is OK without a second increment.
        Holding a seat at another location of the same event raises
        ValueError: moving between locations goes through transfer().
        """
        return await self._run("reserve", self._reserve(location_id, participant_ref))

    async def _reserve(self, location_id: int, participant_ref: str) -> ReserveResult:
        async with self._session_factory() as session:
            result = await session.execute(
                update(PickupLocation)
                .where(
                    PickupLocation.id == location_id,
                    PickupLocation.reserved_count < PickupLocation.capacity,
                )
                .values(reserved_count=PickupLocation.reserved_count + 1)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount != 1:
                row = await session.get(PickupLocation, location_id)
                snapshot = SeatSnapshot.from_row(row) if row else None
                booking = (
                    await _get_booking(session, participant_ref, snapshot.event_id)
                    if snapshot else None
                )
                # rollback() expires ORM instances; read the booking first
                held_here = booking is not None and booking.location_id == location_id
                await session.rollback()
                if snapshot is None:
                    logger.info("Reserve on missing location id=%s by %s", location_id, participant_ref)
                    return ReserveResult(ReserveStatus.NOT_FOUND)
                if held_here:
                    # Full, but one of the seats is already this participant's
                    return ReserveResult(ReserveStatus.OK, snapshot)
                logger.info(
                    "Reserve conflict on location id=%s (%d/%d) for %s",
                    location_id, snapshot.reserved_count, snapshot.capacity, participant_ref,
                )
                return ReserveResult(ReserveStatus.CONFLICT, snapshot)

            row = await session.get(PickupLocation, location_id)
            snapshot = SeatSnapshot.from_row(row)
            booking = await _get_booking(session, participant_ref, snapshot.event_id)

            if booking is not None and booking.location_id == location_id:
                # Seat already held: undo this transaction's increment
                await session.rollback()
                return ReserveResult(
                    ReserveStatus.OK,
                    replace(snapshot, reserved_count=snapshot.reserved_count - 1),
                )

            if booking is not None and booking.location_id is not None:
                held = booking.location_id
                await session.rollback()
                raise ValueError(
                    f"{participant_ref} already holds a seat at location {held}; use transfer()"
                )

            if booking is None:
                session.add(
                    TransportBooking(
                        participant_ref=participant_ref,
                        event_id=snapshot.event_id,
                        location_id=location_id,
                        required=True,
                    )
                )
            else:
                booking.location_id = location_id
                booking.required = True
            await session.commit()

        logger.info(
            "Seat reserved at location id=%s (%d/%d) for %s",
            location_id, snapshot.reserved_count, snapshot.capacity, participant_ref,
        )
        return ReserveResult(ReserveStatus.OK, snapshot)

    async def release(self, location_id: int, participant_ref: str) -> bool:
        """
        Give back the seat participant_ref holds at location_id.
        Returns False when there was nothing to release (double release).
        """
        return await self._run("release", self._release(location_id, participant_ref))

    async def _release(self, location_id: int, participant_ref: str) -> bool:
        holds_seat = exists().where(
            TransportBooking.participant_ref == participant_ref,
            TransportBooking.location_id == location_id,
        )
        async with self._session_factory() as session:
            result = await session.execute(
                update(PickupLocation)
                .where(
                    PickupLocation.id == location_id,
                    PickupLocation.reserved_count > 0,
                    holds_seat,
                )
                .values(reserved_count=PickupLocation.reserved_count - 1)
                .execution_options(synchronize_session=False)
            )
            released = result.rowcount == 1
            await session.execute(
                update(TransportBooking)
                .where(
                    TransportBooking.participant_ref == participant_ref,
                    TransportBooking.location_id == location_id,
                )
                .values(location_id=None, required=False)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if released:
            logger.info("Seat released at location id=%s by %s", location_id, participant_ref)
        else:
            logger.debug("Nothing to release at location id=%s for %s", location_id, participant_ref)
        return released

    async def transfer(self, from_id: int, to_id: int, participant_ref: str) -> TransferResult:
        """
        Move participant_ref from one location to another.

        The source seat is released first. If the target is lost the
        participant is left without a seat and the result carries a notice;
        the source is never taken back without a fresh reserve().
        """
        if from_id == to_id:
            result = await self.reserve(to_id, participant_ref)
            return TransferResult(result.status, result.resource)

        released = await self.release(from_id, participant_ref)
        result = await self.reserve(to_id, participant_ref)
        if result.ok:
            return TransferResult(ReserveStatus.OK, result.resource, released=released)

        if result.status == ReserveStatus.CONFLICT:
            notice = (
                "Your previous seat was released, but the new pickup location "
                "filled up in the meantime. You currently have no shuttle seat."
            )
        else:
            notice = (
                "Your previous seat was released, but the new pickup location "
                "no longer exists. You currently have no shuttle seat."
            )
        logger.info(
            "Transfer %s -> %s lost for %s (%s); participant left unassigned",
            from_id, to_id, participant_ref, result.status,
        )
        return TransferResult(result.status, result.resource, released=released, notice=notice)


async def _get_booking(
    session: AsyncSession,
    participant_ref: str,
    event_id: int,
) -> Optional[TransportBooking]:
    result = await session.execute(
        select(TransportBooking).where(
            TransportBooking.participant_ref == participant_ref,
            TransportBooking.event_id == event_id,
        )
    )
    return result.scalar_one_or_none()
