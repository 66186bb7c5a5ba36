"""
Reservation client — the transport step's view of the seat inventory.

Keeps a snapshot of one event's pickup locations, refreshes it on start and
then every SEAT_POLL_INTERVAL seconds until stopped, and turns the
participant's choice into an atomic reserve()/transfer() on confirm.

The snapshot is for display only. Whether a seat is actually granted is
decided by SeatInventory.reserve(); a stale "available" here just means the
confirm call comes back as a conflict.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from enrollbot.config import settings
from enrollbot.errors import InventoryUnavailable, ReservationConflict, ReservationNotFound
from enrollbot.services.flow_controller import FlowController
from enrollbot.services.flow_state import Step, TransportSelection
from enrollbot.services.seat_inventory import ReserveStatus, SeatInventory, SeatSnapshot

logger = logging.getLogger(__name__)

# Selection sentinel distinct from "not chosen yet" (None)
NO_TRANSPORT = "no_transport"

Selection = Union[int, str, None]
UpdateCallback = Callable[[List[SeatSnapshot]], Awaitable[None]]


class OutcomeStatus:
    OK          = "ok"
    CONFLICT    = ReserveStatus.CONFLICT
    NOT_FOUND   = ReserveStatus.NOT_FOUND
    UNAVAILABLE = "unavailable"
    INVALID     = "invalid"


@dataclass
class SelectOutcome:
    accepted:  bool
    selection: Selection
    error:     Optional[str] = None


@dataclass
class ConfirmOutcome:
    status:       str
    selection:    Optional[TransportSelection] = None
    error:        Optional[str] = None
    notice:       Optional[str] = None
    alternatives: List[SeatSnapshot] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.OK


class ReservationClient:
    """
    Parameters
    ----------
    inventory        : seat inventory (explicitly injected)
    event_id         : event whose pickup locations are shown
    participant_ref  : the participant's own reference for bookings
    poll_interval    : seconds between background refreshes
    max_alternatives : how many open locations to suggest after a conflict
    on_update        : awaited with the fresh snapshot after each refresh
    """

    def __init__(
        self,
        inventory: SeatInventory,
        event_id: int,
        participant_ref: str,
        poll_interval: float = settings.SEAT_POLL_INTERVAL,
        max_alternatives: int = settings.MAX_ALTERNATIVES,
        on_update: Optional[UpdateCallback] = None,
    ) -> None:
        self._inventory = inventory
        self.event_id = event_id
        self.participant_ref = participant_ref
        self._poll_interval = poll_interval
        self._max_alternatives = max_alternatives
        self.on_update = on_update
        self._snapshot: Dict[int, SeatSnapshot] = {}
        self._poll_task: Optional[asyncio.Task] = None
        self.selection: Selection = None
        self.held_location: Optional[int] = None
        self.last_error: Optional[str] = None

    # ── Snapshot ─────────────────────────────────────────────────────────────

    @property
    def resources(self) -> List[SeatSnapshot]:
        return list(self._snapshot.values())

    def resource(self, location_id: int) -> Optional[SeatSnapshot]:
        return self._snapshot.get(location_id)

    async def refresh(self) -> List[SeatSnapshot]:
        """
        Full list on first load, one batch query afterwards.
        Failures keep the previous snapshot.
        """
        try:
            if not self._snapshot:
                fresh = await self._inventory.list_resources(self.event_id)
            else:
                fresh = await self._inventory.batch_refresh(list(self._snapshot))
        except InventoryUnavailable as exc:
            logger.warning("Seat refresh for event %s failed: %s", self.event_id, exc)
            return self.resources

        self._snapshot = {r.id: r for r in fresh}
        if self.on_update is not None:
            await self.on_update(self.resources)
        return self.resources

    async def refresh_one(self, location_id: int) -> Optional[SeatSnapshot]:
        try:
            fresh = await self._inventory.get_resource(location_id)
        except InventoryUnavailable as exc:
            logger.warning("Seat refresh for location %s failed: %s", location_id, exc)
            return self._snapshot.get(location_id)
        if fresh is None:
            self._snapshot.pop(location_id, None)
        else:
            self._snapshot[location_id] = fresh
        return fresh

    def alternatives(self, location_id: Optional[int] = None, limit: Optional[int] = None) -> List[SeatSnapshot]:
        limit = self._max_alternatives if limit is None else limit
        return [
            r for r in self._snapshot.values()
            if r.id != location_id and r.is_available
        ][:limit]

    # ── Polling ──────────────────────────────────────────────────────────────

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self) -> None:
        """Refresh now, then keep refreshing in the background."""
        await self.restore_selection()
        await self.refresh()
        if not self.is_polling:
            self._poll_task = asyncio.create_task(self._poll())

    async def restore_selection(self) -> Selection:
        """Pre-select the seat this participant already holds, if any."""
        try:
            self.held_location = await self._held_location()
        except InventoryUnavailable as exc:
            logger.warning("Booking lookup for %s failed: %s", self.participant_ref, exc)
            return self.selection
        if self.selection is None and self.held_location is not None:
            self.selection = self.held_location
        return self.selection

    async def stop(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @contextlib.asynccontextmanager
    async def active(self) -> AsyncIterator["ReservationClient"]:
        """Scope polling to a view: started on entry, cancelled on exit."""
        await self.start()
        try:
            yield self
        finally:
            await self.stop()

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                await self.refresh()
            except Exception:
                logger.exception("Seat polling for event %s failed", self.event_id)

    # ── Selection ────────────────────────────────────────────────────────────

    def select_no_transport(self) -> SelectOutcome:
        self.selection = NO_TRANSPORT
        self.last_error = None
        return SelectOutcome(True, self.selection)

    async def select(self, location_id: int) -> SelectOutcome:
        """
        Toggle location_id as the current choice.

        A location that looks full (locally, or in a fresh single-location
        check) is refused with an error and its entry is refreshed; the
        previous choice is kept and the caller decides what to do next.
        The location whose seat the participant already holds is always
        selectable, full or not.
        """
        if self.selection == location_id:
            self.selection = None
            self.last_error = None
            return SelectOutcome(True, None)

        if location_id == self.held_location:
            self.selection = location_id
            self.last_error = None
            return SelectOutcome(True, location_id)

        cached = self._snapshot.get(location_id)
        if cached is not None and not cached.is_available:
            return self._refuse(ReservationConflict().message)

        try:
            available = await self._inventory.check_availability(location_id)
        except InventoryUnavailable as exc:
            # Best effort only: reserve() on confirm is authoritative
            logger.warning("Availability check for location %s failed: %s", location_id, exc)
            available = True

        if not available:
            fresh = await self.refresh_one(location_id)
            message = ReservationConflict().message if fresh else ReservationNotFound().message
            return self._refuse(message)

        self.selection = location_id
        self.last_error = None
        return SelectOutcome(True, location_id)

    def _refuse(self, message: str) -> SelectOutcome:
        self.last_error = message
        return SelectOutcome(False, self.selection, message)

    # ── Confirm ──────────────────────────────────────────────────────────────

    async def confirm(self, flow: FlowController) -> ConfirmOutcome:
        """
        Turn the choice into a seat and complete the transport step.
        On any failure the wizard stays on the transport step.
        """
        if self.selection is None:
            return self._fail(flow, OutcomeStatus.INVALID, "Please pick a pickup location or choose no shuttle.")

        flow.set_loading(True)
        try:
            held = await self._held_location()
            if self.selection == NO_TRANSPORT:
                return await self._confirm_no_transport(flow, held)
            return await self._confirm_location(flow, int(self.selection), held)
        except InventoryUnavailable as exc:
            return self._fail(flow, OutcomeStatus.UNAVAILABLE, exc.message)
        finally:
            flow.set_loading(False)

    async def _held_location(self) -> Optional[int]:
        booking = await self._inventory.booking_for(self.participant_ref, self.event_id)
        return booking.location_id if booking else None

    async def _confirm_no_transport(self, flow: FlowController, held: Optional[int]) -> ConfirmOutcome:
        if held is not None:
            await self._inventory.release(held, self.participant_ref)
            await self.refresh_one(held)
        self.held_location = None
        selection = TransportSelection.no_transport()
        flow.set_transport(selection)
        flow.complete_step(Step.TRANSPORT)
        return ConfirmOutcome(OutcomeStatus.OK, selection)

    async def _confirm_location(
        self,
        flow: FlowController,
        location_id: int,
        held: Optional[int],
    ) -> ConfirmOutcome:
        if held is not None and held != location_id:
            result = await self._inventory.transfer(held, location_id, self.participant_ref)
            status, resource, notice = result.status, result.resource, result.notice
        else:
            result = await self._inventory.reserve(location_id, self.participant_ref)
            status, resource, notice = result.status, result.resource, None

        if status == ReserveStatus.OK:
            self._snapshot[location_id] = resource
            self.held_location = location_id
            selection = TransportSelection(location_id=location_id, resource=resource)
            flow.set_transport(selection)
            flow.complete_step(Step.TRANSPORT)
            return ConfirmOutcome(OutcomeStatus.OK, selection)

        self.selection = None
        if notice is not None:
            # Lost transfer: the old seat is gone, the participant is unassigned
            self.held_location = None
            flow.set_transport(TransportSelection.no_transport())

        if status == ReserveStatus.CONFLICT:
            cached = resource or self._snapshot.get(location_id)
            if cached is not None:
                self._snapshot[location_id] = cached.as_full()
            outcome = self._fail(flow, OutcomeStatus.CONFLICT, ReservationConflict().message)
            outcome.alternatives = self.alternatives(location_id)
        else:
            self._snapshot.pop(location_id, None)
            outcome = self._fail(flow, OutcomeStatus.NOT_FOUND, ReservationNotFound().message)
        outcome.notice = notice
        return outcome

    def _fail(self, flow: FlowController, status: str, message: str) -> ConfirmOutcome:
        self.last_error = message
        flow.set_error(message)
        return ConfirmOutcome(status, error=message)
