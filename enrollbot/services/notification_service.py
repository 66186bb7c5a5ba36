"""
Participant notification service.

After a successful submission the participant receives a summary of the
enrollment, including the shuttle pickup details, directly in their chat.
"""
from __future__ import annotations

import logging
from typing import Optional

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError

from enrollbot.models.models import Event, Registration, Role
from enrollbot.services.seat_inventory import SeatSnapshot

logger = logging.getLogger(__name__)


def format_enrollment_summary(
    registration: Registration,
    event: Event,
    location: Optional[SeatSnapshot],
) -> str:
    role_label = Role.LABELS.get(registration.role, registration.role)
    if location is not None:
        transport_line = (
            f"🚌 Shuttle: *{location.label}*\n"
            f"📍 {location.address}\n"
            f"🕖 Pickup: `{location.pickup_time:%Y-%m-%d %H:%M}`"
        )
    else:
        transport_line = "🚶 Shuttle: not needed"

    return (
        f"━━━━━━━━━━━━━━━━━━━━━\n"
        f"🎉 *Enrollment received*\n"
        f"━━━━━━━━━━━━━━━━━━━━━\n\n"
        f"📅 *{event.name}*\n"
        f"🗓 `{event.starts_at:%Y-%m-%d %H:%M}`\n\n"
        f"👤 {registration.name} ({role_label})\n"
        f"{transport_line}\n\n"
        f"Reference: `#{registration.id}`"
    )


async def notify_enrollment_confirmed(
    bot: Bot,
    chat_id: int,
    registration: Registration,
    event: Event,
    location: Optional[SeatSnapshot] = None,
) -> bool:
    """
    Send the enrollment summary to the participant.
    Returns False if the message could not be delivered (user may have
    blocked the bot).
    """
    text = format_enrollment_summary(registration, event, location)
    try:
        await bot.send_message(chat_id=chat_id, text=text, parse_mode=ParseMode.MARKDOWN)
    except (TelegramForbiddenError, TelegramBadRequest) as e:
        logger.warning("Could not notify participant chat_id=%d: %s", chat_id, e)
        return False
    return True
