"""
Shared pytest fixtures for the enrollment bot tests.

Sets required environment variables BEFORE any enrollbot module is imported so
that pydantic-settings and SQLAlchemy engine initialisation use safe test values.
"""
from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, Optional

# ── Set env vars before any enrollbot import ──────────────────────────────────
os.environ.setdefault("BOT_TOKEN", "test-token-for-pytest")
os.environ.setdefault("ADMIN_IDS", "123456789")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# ── Third-party ───────────────────────────────────────────────────────────────
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# ── Enrollbot imports (safe after env vars are set) ───────────────────────────
from enrollbot.models.base import Base, make_engine, make_session_factory
from enrollbot.services.registration_service import create_event
from enrollbot.services.seat_inventory import SeatInventory

EVENT_START = datetime(2026, 1, 15, 9, 0)


async def _fresh_schema(url: str) -> AsyncEngine:
    engine = make_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


# ── DB fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture
async def async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a fresh AsyncSession backed by an isolated in-memory SQLite database.
    Schema is created fresh for every test function; engine is always disposed
    on teardown, even if the test raises an exception.
    """
    engine = await _fresh_schema("sqlite+aiosqlite:///:memory:")
    factory = make_session_factory(engine)
    try:
        async with factory() as session:
            yield session
    finally:
        await engine.dispose()


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Sessionmaker over a file-backed SQLite database.

    Every session gets its own connection, so concurrent seat operations
    really contend for the database write lock.
    """
    engine = await _fresh_schema(f"sqlite+aiosqlite:///{tmp_path / 'enrollbot-test.db'}")
    try:
        yield make_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def inventory(session_factory) -> SeatInventory:
    return SeatInventory(session_factory, timeout=10.0)


@pytest.fixture
async def event_id(session_factory) -> int:
    async with session_factory() as session:
        event = await create_event(session, "Dharma Assembly", EVENT_START, venue="Main Hall")
        await session.commit()
        return event.id


@pytest.fixture
def make_location(inventory, event_id):
    """Factory fixture — creates a pickup location for the test event."""
    counter = {"n": 0}

    async def _make(capacity: int = 3, label: str = "", reserved: int = 0, minutes: int = 0):
        counter["n"] += 1
        location = await inventory.create_location(
            event_id=event_id,
            label=label or f"Stop {counter['n']}",
            pickup_time=EVENT_START - timedelta(hours=1) + timedelta(minutes=minutes),
            capacity=capacity,
            address="Station Rd 1",
        )
        for i in range(reserved):
            await inventory.reserve(location.id, f"filler-{location.id}-{i}")
        return await inventory.get_resource(location.id)

    return _make


# ── Clock helpers ─────────────────────────────────────────────────────────────

class FakeClock:
    """Settable aware-UTC clock for TTL tests."""

    def __init__(self, now: Optional[datetime] = None) -> None:
        self.now = now or datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return FakeClock()
