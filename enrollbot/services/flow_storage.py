"""
Persisted wizard state — two storage tiers with a TTL.

Resume protocol
---------------
1. The session tier (key derived from session_id) is read first.
2. The shared tier (one fixed key per store) is read second.
3. The first hit wins; records are never merged.
4. A record older than the TTL is treated as absent and both keys are
   removed, so nobody resumes against stale seat availability.

Writes go to both tiers. Every storage failure is logged and swallowed:
the in-memory FlowState stays authoritative for the live session.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from enrollbot.config import settings
from enrollbot.errors import ExpiredSession, StorageError
from enrollbot.models.models import FlowSnapshot
from enrollbot.services.flow_state import (
    FlowState,
    decode_record,
    encode_state,
    state_from_record,
    utcnow,
)

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Process-lifetime store; the default session tier."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


class SqlKeyValueStore:
    """One flow_snapshots row per key; the long-lived tier."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, key: str) -> Optional[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(FlowSnapshot.value).where(FlowSnapshot.key == key)
            )
            return result.scalar_one_or_none()

    async def set(self, key: str, value: str) -> None:
        async with self._session_factory() as session:
            row = await session.get(FlowSnapshot, key)
            if row is None:
                session.add(FlowSnapshot(key=key, value=value))
            else:
                row.value = value
            await session.commit()

    async def remove(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(FlowSnapshot).where(FlowSnapshot.key == key))
            await session.commit()


class FlowStateStore:
    """
    Saves, resumes and clears FlowState across both tiers.

    Parameters
    ----------
    session_tier   : short-lived store, keyed by session id
    shared_tier    : long-lived store, one fixed key
    shared_key     : key used in the shared tier
    session_prefix : prefix of session-tier keys
    ttl            : maximum age of a resumable record
    clock          : returns the current aware UTC datetime
    """

    def __init__(
        self,
        session_tier: KeyValueStore,
        shared_tier: KeyValueStore,
        shared_key: str = settings.FLOW_STORAGE_KEY,
        session_prefix: str = settings.FLOW_SESSION_KEY_PREFIX,
        ttl: timedelta = timedelta(hours=settings.FLOW_TTL_HOURS),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_tier = session_tier
        self.shared_tier = shared_tier
        self.shared_key = shared_key
        self.session_prefix = session_prefix
        self.ttl = ttl
        self._clock = clock

    def session_key(self, session_id: str) -> str:
        return f"{self.session_prefix}:{session_id}"

    async def save(self, state: FlowState) -> bool:
        """Write state to both tiers. Returns False if any tier failed."""
        payload = encode_state(state)
        ok = True
        for tier, key in (
            (self.shared_tier, self.shared_key),
            (self.session_tier, self.session_key(state.session_id)),
        ):
            try:
                await tier.set(key, payload)
            except Exception as exc:
                ok = False
                logger.warning("%s", StorageError(f"failed to save flow under {key!r}: {exc}"))
        return ok

    async def load(self, session_id: str) -> Optional[FlowState]:
        """Return the resumable state, or None if absent, expired or corrupt."""
        raw = await self._read(self.session_tier, self.session_key(session_id))
        if raw is None:
            raw = await self._read(self.shared_tier, self.shared_key)
        if raw is None:
            return None

        try:
            state = state_from_record(decode_record(raw), fallback_session_id=session_id)
        except StorageError as exc:
            logger.warning("Discarding unreadable flow record: %s", exc)
            return None

        if state.last_saved_at is not None:
            age = self._clock() - state.last_saved_at
            if age > self.ttl:
                expired = ExpiredSession(state.session_id, age.total_seconds() / 3600)
                logger.info("Discarding saved flow: %s", expired)
                await self.clear(state.session_id)
                if state.session_id != session_id:
                    await self.clear(session_id)
                return None

        return state

    async def clear(self, session_id: str) -> None:
        for tier, key in (
            (self.shared_tier, self.shared_key),
            (self.session_tier, self.session_key(session_id)),
        ):
            try:
                await tier.remove(key)
            except Exception as exc:
                logger.warning("%s", StorageError(f"failed to clear flow key {key!r}: {exc}"))

    async def _read(self, tier: KeyValueStore, key: str) -> Optional[str]:
        try:
            return await tier.get(key)
        except Exception as exc:
            logger.warning("%s", StorageError(f"failed to read flow key {key!r}: {exc}"))
            return None
