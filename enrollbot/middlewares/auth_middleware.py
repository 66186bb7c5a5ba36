"""
Organizer access.

AdminMiddleware marks every update with `is_admin`; the IsAdmin filter is
attached to the organizer commands and tells everyone else they are not
allowed, so participants never fall through to the wizard handlers.
"""
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from aiogram import BaseMiddleware
from aiogram.filters import BaseFilter
from aiogram.types import CallbackQuery, Message, TelegramObject

from enrollbot.config import settings

DENIED_TEXT = "⛔️ Organizers only."


class AdminMiddleware(BaseMiddleware):
    def __init__(self, admin_ids: Optional[Iterable[int]] = None) -> None:
        self._admin_ids = frozenset(settings.admin_ids if admin_ids is None else admin_ids)

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        user = data.get("event_from_user")
        data["is_admin"] = user is not None and user.id in self._admin_ids
        return await handler(event, data)


class IsAdmin(BaseFilter):
    async def __call__(self, event: TelegramObject, is_admin: bool = False) -> bool:
        if is_admin:
            return True
        if isinstance(event, CallbackQuery):
            await event.answer(DENIED_TEXT, show_alert=True)
        elif isinstance(event, Message):
            await event.answer(DENIED_TEXT)
        return False
