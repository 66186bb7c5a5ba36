"""
Unit tests — Settings parsing (config.py) and the admin flag middleware.
"""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from enrollbot.config import Settings
from enrollbot.middlewares import AdminMiddleware


def _settings(**kwargs) -> Settings:
    return Settings(BOT_TOKEN="test-token", **kwargs)


class TestDatabaseUrl:
    @pytest.mark.parametrize("raw", [
        "postgres://u:p@db:5432/enroll",
        "postgresql://u:p@db:5432/enroll",
    ])
    def test_plain_postgres_gets_asyncpg_driver(self, raw: str) -> None:
        assert _settings(DATABASE_URL=raw).async_database_url == "postgresql+asyncpg://u:p@db:5432/enroll"

    @pytest.mark.parametrize("raw", [
        "postgresql+asyncpg://u:p@db/enroll",
        "sqlite+aiosqlite:///./enrollbot.db",
    ])
    def test_async_urls_are_untouched(self, raw: str) -> None:
        assert _settings(DATABASE_URL=raw).async_database_url == raw


class TestAdminIds:
    def test_parses_and_skips_garbage(self) -> None:
        assert _settings(ADMIN_IDS="12, 34,,abc, 56 ").admin_ids == frozenset({12, 34, 56})

    def test_empty(self) -> None:
        assert _settings(ADMIN_IDS="").admin_ids == frozenset()


class TestTimingBounds:
    @pytest.mark.parametrize("field", ["SEAT_POLL_INTERVAL", "FLOW_TTL_HOURS", "INVENTORY_TIMEOUT_SECONDS"])
    def test_zero_is_rejected(self, field: str) -> None:
        with pytest.raises(ValidationError):
            _settings(**{field: 0})

    def test_defaults(self) -> None:
        s = _settings()
        assert s.FLOW_TTL_HOURS == 24
        assert s.SEAT_POLL_INTERVAL == 30
        assert s.MAX_ALTERNATIVES == 2


class TestAdminMiddleware:
    class _User:
        def __init__(self, user_id: int) -> None:
            self.id = user_id

    async def _flag(self, middleware: AdminMiddleware, user) -> bool:
        async def handler(event, data):
            return data["is_admin"]

        return await middleware(handler, object(), {"event_from_user": user})

    async def test_admin_and_participant(self) -> None:
        middleware = AdminMiddleware(admin_ids=[7])
        assert await self._flag(middleware, self._User(7)) is True
        assert await self._flag(middleware, self._User(8)) is False

    async def test_update_without_user(self) -> None:
        assert await self._flag(AdminMiddleware(admin_ids=[7]), None) is False
