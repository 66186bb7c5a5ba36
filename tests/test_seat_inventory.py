"""
Integration tests — SeatInventory against a file-backed SQLite database.

Coverage:
  - Listing order, single lookups, batch refresh
  - Conditional reserve: conflict on full, capacity 0, missing location
  - Idempotent re-reserve and release
  - Transfer, including the lost-race path that leaves the participant unassigned
  - Concurrent reserve race: never more winners than seats
  - Store failures surface as InventoryUnavailable
"""
from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from enrollbot.errors import InventoryUnavailable, ReservationConflict, ReservationNotFound
from enrollbot.models.base import make_engine, make_session_factory
from enrollbot.services.seat_inventory import ReserveStatus, SeatInventory, SeatSnapshot

EVENT_START = datetime(2026, 1, 15, 9, 0)


# ─────────────────────────── Reads ────────────────────────────────────────────

class TestReads:
    async def test_list_orders_by_pickup_time_then_id(self, make_location, inventory, event_id) -> None:
        late = await make_location(label="Late", minutes=30)
        early = await make_location(label="Early", minutes=0)
        same_time = await make_location(label="Same", minutes=30)

        listed = await inventory.list_resources(event_id)
        assert [r.id for r in listed] == [early.id, late.id, same_time.id]

    async def test_list_is_side_effect_free(self, make_location, inventory, event_id) -> None:
        loc = await make_location(capacity=5, reserved=2)
        await inventory.list_resources(event_id)
        await inventory.list_resources(event_id)
        assert (await inventory.get_resource(loc.id)).reserved_count == 2

    async def test_get_missing_resource_returns_none(self, inventory) -> None:
        assert await inventory.get_resource(9999) is None

    async def test_check_availability(self, make_location, inventory) -> None:
        open_loc = await make_location(capacity=2, reserved=1)
        full_loc = await make_location(capacity=1, reserved=1)
        assert await inventory.check_availability(open_loc.id) is True
        assert await inventory.check_availability(full_loc.id) is False
        assert await inventory.check_availability(9999) is False

    async def test_batch_refresh_keeps_request_order_and_drops_missing(self, make_location, inventory) -> None:
        a = await make_location()
        b = await make_location()
        c = await make_location()

        refreshed = await inventory.batch_refresh([c.id, 9999, a.id, b.id])
        assert [r.id for r in refreshed] == [c.id, a.id, b.id]

    async def test_batch_refresh_empty(self, inventory) -> None:
        assert await inventory.batch_refresh([]) == []

    async def test_snapshot_counts(self, make_location) -> None:
        loc = await make_location(capacity=45, reserved=3)
        assert loc.available_seats == 42
        assert loc.is_available
        assert loc.as_full().available_seats == 0
        assert not loc.as_full().is_available

    async def test_snapshot_dict_uses_camel_case(self, make_location) -> None:
        loc = await make_location(capacity=4)
        data = loc.to_dict()
        assert data["reservedCount"] == 0
        assert data["pickupTime"] == loc.pickup_time.isoformat()
        assert SeatSnapshot.from_dict(data) == loc


# ─────────────────────────── Setup ────────────────────────────────────────────

class TestCreateLocation:
    async def test_negative_capacity_rejected(self, inventory, event_id) -> None:
        with pytest.raises(ValueError):
            await inventory.create_location(event_id, "Bad", EVENT_START, capacity=-1)

    async def test_zero_capacity_is_listed_but_never_available(self, make_location, inventory, event_id) -> None:
        loc = await make_location(capacity=0)
        assert loc.id in [r.id for r in await inventory.list_resources(event_id)]
        assert not loc.is_available

        result = await inventory.reserve(loc.id, "p1")
        assert result.status == ReserveStatus.CONFLICT


# ─────────────────────────── Reserve ──────────────────────────────────────────

class TestReserve:
    async def test_reserve_full_location_conflicts_without_change(self, make_location, inventory) -> None:
        loc = await make_location(capacity=45, reserved=45)

        result = await inventory.reserve(loc.id, "p-late")

        assert result.status == ReserveStatus.CONFLICT
        assert isinstance(result.as_error(), ReservationConflict)
        assert result.resource.reserved_count == 45
        assert (await inventory.get_resource(loc.id)).reserved_count == 45

    async def test_sequential_reserve_last_seat(self, make_location, inventory) -> None:
        loc = await make_location(capacity=1)

        first = await inventory.reserve(loc.id, "p1")
        second = await inventory.reserve(loc.id, "p2")

        assert first.ok
        assert first.resource.reserved_count == 1
        assert second.status == ReserveStatus.CONFLICT
        assert (await inventory.get_resource(loc.id)).reserved_count == 1

    async def test_reserve_missing_location_is_not_found(self, inventory) -> None:
        result = await inventory.reserve(9999, "p1")
        assert result.status == ReserveStatus.NOT_FOUND
        assert result.resource is None
        assert isinstance(result.as_error(), ReservationNotFound)

    async def test_reserve_creates_booking(self, make_location, inventory, event_id) -> None:
        loc = await make_location()
        await inventory.reserve(loc.id, "p1")

        booking = await inventory.booking_for("p1", event_id)
        assert booking.location_id == loc.id
        assert booking.required is True

    async def test_re_reserve_same_location_does_not_double_count(self, make_location, inventory) -> None:
        loc = await make_location(capacity=3)

        await inventory.reserve(loc.id, "p1")
        again = await inventory.reserve(loc.id, "p1")

        assert again.ok
        assert again.resource.reserved_count == 1
        assert (await inventory.get_resource(loc.id)).reserved_count == 1

    async def test_re_reserve_own_seat_on_full_location_is_ok(self, make_location, inventory) -> None:
        loc = await make_location(capacity=1)
        await inventory.reserve(loc.id, "p1")

        again = await inventory.reserve(loc.id, "p1")

        assert again.ok
        assert (await inventory.get_resource(loc.id)).reserved_count == 1

    async def test_reserve_second_location_requires_transfer(self, make_location, inventory) -> None:
        a = await make_location()
        b = await make_location()
        await inventory.reserve(a.id, "p1")

        with pytest.raises(ValueError):
            await inventory.reserve(b.id, "p1")
        assert (await inventory.get_resource(b.id)).reserved_count == 0

    async def test_concurrent_reserve_never_oversells(self, make_location, inventory) -> None:
        loc = await make_location(capacity=3)

        results = await asyncio.gather(
            *(inventory.reserve(loc.id, f"racer-{i}") for i in range(8))
        )

        winners = [r for r in results if r.ok]
        losers = [r for r in results if r.status == ReserveStatus.CONFLICT]
        assert len(winners) == 3
        assert len(losers) == 5
        assert (await inventory.get_resource(loc.id)).reserved_count == 3


# ─────────────────────────── Release ──────────────────────────────────────────

class TestRelease:
    async def test_release_frees_seat_and_clears_booking(self, make_location, inventory, event_id) -> None:
        loc = await make_location(capacity=2)
        await inventory.reserve(loc.id, "p1")

        assert await inventory.release(loc.id, "p1") is True

        assert (await inventory.get_resource(loc.id)).reserved_count == 0
        booking = await inventory.booking_for("p1", event_id)
        assert booking.location_id is None
        assert booking.required is False

    async def test_double_release_is_noop(self, make_location, inventory) -> None:
        loc = await make_location(capacity=2)
        await inventory.reserve(loc.id, "p1")
        await inventory.reserve(loc.id, "p2")

        assert await inventory.release(loc.id, "p1") is True
        assert await inventory.release(loc.id, "p1") is False
        assert (await inventory.get_resource(loc.id)).reserved_count == 1

    async def test_release_without_booking_does_not_touch_others(self, make_location, inventory) -> None:
        loc = await make_location(capacity=2, reserved=1)

        assert await inventory.release(loc.id, "stranger") is False
        assert (await inventory.get_resource(loc.id)).reserved_count == 1

    async def test_release_then_reserve_again(self, make_location, inventory) -> None:
        loc = await make_location(capacity=1)
        await inventory.reserve(loc.id, "p1")
        await inventory.release(loc.id, "p1")

        assert (await inventory.reserve(loc.id, "p2")).ok

    async def test_conflict_after_own_release_keeps_participant_unassigned(
        self, make_location, inventory, event_id
    ) -> None:
        loc = await make_location(capacity=1)
        await inventory.reserve(loc.id, "p1")
        await inventory.release(loc.id, "p1")
        await inventory.reserve(loc.id, "p2")

        result = await inventory.reserve(loc.id, "p1")

        assert result.status == ReserveStatus.CONFLICT
        assert result.resource.reserved_count == 1
        assert (await inventory.booking_for("p1", event_id)).location_id is None


# ─────────────────────────── Transfer ─────────────────────────────────────────

class TestTransfer:
    async def test_transfer_moves_seat(self, make_location, inventory, event_id) -> None:
        a = await make_location(capacity=2)
        b = await make_location(capacity=2)
        await inventory.reserve(a.id, "p1")

        result = await inventory.transfer(a.id, b.id, "p1")

        assert result.ok
        assert result.released is True
        assert result.notice is None
        assert (await inventory.get_resource(a.id)).reserved_count == 0
        assert (await inventory.get_resource(b.id)).reserved_count == 1
        assert (await inventory.booking_for("p1", event_id)).location_id == b.id

    async def test_transfer_to_full_leaves_participant_unassigned(self, make_location, inventory, event_id) -> None:
        a = await make_location(capacity=2)
        b = await make_location(capacity=1, reserved=1)
        await inventory.reserve(a.id, "p1")

        result = await inventory.transfer(a.id, b.id, "p1")

        assert result.status == ReserveStatus.CONFLICT
        assert result.released is True
        assert result.notice
        assert (await inventory.get_resource(a.id)).reserved_count == 0
        assert (await inventory.get_resource(b.id)).reserved_count == 1

        booking = await inventory.booking_for("p1", event_id)
        assert booking.required is False
        assert booking.location_id is None

    async def test_transfer_to_missing_location(self, make_location, inventory) -> None:
        a = await make_location(capacity=2)
        await inventory.reserve(a.id, "p1")

        result = await inventory.transfer(a.id, 9999, "p1")

        assert result.status == ReserveStatus.NOT_FOUND
        assert "no longer exists" in result.notice

    async def test_transfer_to_same_location_is_reserve(self, make_location, inventory) -> None:
        a = await make_location(capacity=2)
        await inventory.reserve(a.id, "p1")

        result = await inventory.transfer(a.id, a.id, "p1")

        assert result.ok
        assert (await inventory.get_resource(a.id)).reserved_count == 1


# ─────────────────────────── Failures ─────────────────────────────────────────

class TestStoreFailures:
    async def test_timeout_becomes_unavailable(self, session_factory) -> None:
        inventory = SeatInventory(session_factory, timeout=0.01)

        async def _slow():
            await asyncio.sleep(1)

        with pytest.raises(InventoryUnavailable):
            await inventory._run("test", _slow())

    async def test_broken_database_becomes_unavailable(self, tmp_path) -> None:
        # Parent directory does not exist, so every connect fails
        engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'x.db'}")
        inventory = SeatInventory(make_session_factory(engine), timeout=5)
        try:
            with pytest.raises(InventoryUnavailable):
                await inventory.reserve(1, "p1")
        finally:
            await engine.dispose()

