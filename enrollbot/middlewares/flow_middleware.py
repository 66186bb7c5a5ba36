"""
Per-participant wizard ownership.

FlowRegistry holds one FlowController per Telegram user and, while that user
is on the transport step, one ReservationClient. A controller is dropped once
its enrollment is submitted, or after it has been idle for the flow TTL.
FlowMiddleware injects `flow` (that user's controller) and `flows` (the
registry) into handler data.

Storage layout per user:
  session tier  in-process MemoryKeyValueStore, shared by all users
  shared tier   SQL flow_snapshots table, key "<FLOW_STORAGE_KEY>:<telegram id>"
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from enrollbot.config import settings
from enrollbot.errors import InventoryUnavailable
from enrollbot.models.base import AsyncSessionFactory
from enrollbot.services.flow_controller import FlowController
from enrollbot.services.flow_state import utcnow
from enrollbot.services.flow_storage import FlowStateStore, KeyValueStore, MemoryKeyValueStore, SqlKeyValueStore
from enrollbot.services.registration_service import has_active_registration
from enrollbot.services.reservation_client import ReservationClient, UpdateCallback
from enrollbot.services.seat_inventory import SeatInventory

logger = logging.getLogger(__name__)

# How often the middleware sweeps idle controllers
EVICTION_INTERVAL = timedelta(minutes=10)


def participant_ref(telegram_id: int) -> str:
    return f"tg:{telegram_id}"


class FlowRegistry:
    def __init__(
        self,
        inventory: SeatInventory,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionFactory,
        session_tier: Optional[KeyValueStore] = None,
        shared_tier: Optional[KeyValueStore] = None,
        idle_ttl: timedelta = timedelta(hours=settings.FLOW_TTL_HOURS),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.inventory = inventory
        self._session_factory = session_factory
        self._session_tier = session_tier if session_tier is not None else MemoryKeyValueStore()
        self._shared_tier = shared_tier if shared_tier is not None else SqlKeyValueStore(session_factory)
        self._idle_ttl = idle_ttl
        self._clock = clock
        self._flows: Dict[int, FlowController] = {}
        self._last_seen: Dict[int, datetime] = {}
        self._next_eviction: Optional[datetime] = None
        self._clients: Dict[int, ReservationClient] = {}

    def store_for(self, telegram_id: int) -> FlowStateStore:
        return FlowStateStore(
            session_tier=self._session_tier,
            shared_tier=self._shared_tier,
            shared_key=f"{settings.FLOW_STORAGE_KEY}:{telegram_id}",
        )

    def flow_for(self, telegram_id: int) -> FlowController:
        flow = self._flows.get(telegram_id)
        if flow is None:
            flow = FlowController(store=self.store_for(telegram_id))
            self._flows[telegram_id] = flow
        self._last_seen[telegram_id] = self._clock()
        return flow

    def __contains__(self, telegram_id: int) -> bool:
        return telegram_id in self._flows

    async def forget(self, telegram_id: int) -> None:
        """Drop the user's controller after flushing it; the next update starts fresh."""
        await self.close_client(telegram_id)
        self._last_seen.pop(telegram_id, None)
        flow = self._flows.pop(telegram_id, None)
        if flow is not None:
            await flow.flush()

    async def evict_idle(self) -> int:
        """
        Forget controllers untouched for longer than the flow TTL.
        Sweeps at most once per EVICTION_INTERVAL.
        """
        now = self._clock()
        if self._next_eviction is not None and now < self._next_eviction:
            return 0
        self._next_eviction = now + EVICTION_INTERVAL
        cutoff = now - self._idle_ttl
        idle = [tid for tid, seen in self._last_seen.items() if seen < cutoff]
        for telegram_id in idle:
            await self.forget(telegram_id)
        if idle:
            logger.info("Evicted %d idle enrollment flows", len(idle))
        return len(idle)

    # ── Seats held by the wizard ─────────────────────────────────────────────

    async def release_seat(self, telegram_id: int, event_id: int) -> bool:
        """
        Give back the seat the wizard holds for event_id. A seat that belongs
        to a submitted enrollment is left alone. Store outages are logged.
        """
        ref = participant_ref(telegram_id)
        try:
            booking = await self.inventory.booking_for(ref, event_id)
            if booking is None or booking.location_id is None:
                return False
            async with self._session_factory() as session:
                if await has_active_registration(session, ref, event_id):
                    return False
            return await self.inventory.release(booking.location_id, ref)
        except InventoryUnavailable as e:
            logger.warning("Could not release seat for %s on event %s: %s", ref, event_id, e)
            return False

    async def reset(self, telegram_id: int) -> FlowController:
        """Start the user's wizard over, giving back any seat it was holding."""
        flow = self.flow_for(telegram_id)
        await self.close_client(telegram_id)
        event_id = flow.state.selected_event_id
        if event_id is not None:
            await self.release_seat(telegram_id, event_id)
        flow.reset_flow()
        return flow

    # ── Transport view ───────────────────────────────────────────────────────

    def client_for(self, telegram_id: int) -> Optional[ReservationClient]:
        return self._clients.get(telegram_id)

    async def open_client(
        self,
        telegram_id: int,
        event_id: int,
        on_update: Optional[UpdateCallback] = None,
    ) -> ReservationClient:
        """Start (or reuse) the user's polling client for event_id."""
        client = self._clients.get(telegram_id)
        if client is not None and client.event_id == event_id and client.is_polling:
            if on_update is not None:
                client.on_update = on_update
            return client
        await self.close_client(telegram_id)

        client = ReservationClient(
            self.inventory,
            event_id=event_id,
            participant_ref=participant_ref(telegram_id),
            on_update=on_update,
        )
        self._clients[telegram_id] = client
        await client.start()
        logger.debug("Seat polling started for user %s, event %s", telegram_id, event_id)
        return client

    async def close_client(self, telegram_id: int) -> None:
        client = self._clients.pop(telegram_id, None)
        if client is not None:
            await client.stop()
            logger.debug("Seat polling stopped for user %s", telegram_id)

    async def shutdown(self) -> None:
        """Stop every poller and flush pending wizard saves."""
        for telegram_id in list(self._clients):
            await self.close_client(telegram_id)
        for flow in self._flows.values():
            await flow.flush()


class FlowMiddleware(BaseMiddleware):
    def __init__(self, registry: FlowRegistry) -> None:
        self.registry = registry

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        data["flows"] = self.registry
        await self.registry.evict_idle()
        user = data.get("event_from_user")
        if user is not None:
            data["flow"] = self.registry.flow_for(user.id)
        return await handler(event, data)
