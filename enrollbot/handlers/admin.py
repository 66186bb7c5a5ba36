"""
Organizer commands: create an event with its shuttle stops, check seats.

/new_event → event line → stop lines → created ✅
/seats     → occupancy of every open event's pickup locations
"""
import logging
from datetime import datetime

from aiogram import Router
from aiogram.enums import ParseMode
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.types import Message
from sqlalchemy.ext.asyncio import AsyncSession

from enrollbot.errors import InventoryUnavailable
from enrollbot.keyboards import seat_label
from enrollbot.middlewares import FlowRegistry, IsAdmin
from enrollbot.services import list_event_registrations, list_open_events
from enrollbot.services.event_setup import (
    EventDraft,
    create_event_with_stops,
    parse_event_line,
    parse_stop_lines,
)
from enrollbot.states import AdminSeedStates

logger = logging.getLogger(__name__)
router = Router(name="admin")


# ── Event creation wizard ─────────────────────────────────────────────────────

@router.message(Command("new_event"), IsAdmin())
async def cmd_new_event(message: Message, state: FSMContext) -> None:
    await state.set_state(AdminSeedStates.enter_event)
    await message.answer(
        "🗓 *New event*\n\n"
        "Send one line:\n"
        "`Name | YYYY-MM-DD HH:MM | venue`",
        parse_mode=ParseMode.MARKDOWN,
    )


@router.message(AdminSeedStates.enter_event)
async def msg_event_line(message: Message, state: FSMContext) -> None:
    try:
        draft = parse_event_line(message.text or "")
    except ValueError as e:
        await message.answer(f"⚠️ {e}")
        return

    await state.update_data(
        name=draft.name,
        starts_at=draft.starts_at.isoformat(),
        venue=draft.venue,
    )
    await state.set_state(AdminSeedStates.enter_stops)
    await message.answer(
        f"✅ *{draft.name}* on `{draft.starts_at:%Y-%m-%d %H:%M}`\n\n"
        "Now the shuttle stops, one per line:\n"
        "`Label | HH:MM | capacity | address`",
        parse_mode=ParseMode.MARKDOWN,
    )


@router.message(AdminSeedStates.enter_stops)
async def msg_stop_lines(
    message: Message,
    state: FSMContext,
    session: AsyncSession,
    flows: FlowRegistry,
) -> None:
    try:
        stops = parse_stop_lines(message.text or "")
    except ValueError as e:
        await message.answer(f"⚠️ {e}")
        return

    data = await state.get_data()
    draft = EventDraft(
        name=data["name"],
        starts_at=datetime.fromisoformat(data["starts_at"]),
        venue=data.get("venue"),
    )
    try:
        event, locations = await create_event_with_stops(session, flows.inventory, draft, stops)
    except InventoryUnavailable as e:
        await message.answer(f"⚠️ {e.message}")
        return

    await state.clear()
    logger.info("Event %s created with %d pickup locations", event.id, len(locations))
    lines = [f"🎉 *{event.name}* is open for enrollment.\n"]
    lines += [f"• {seat_label(r)}" for r in locations]
    await message.answer("\n".join(lines), parse_mode=ParseMode.MARKDOWN)


# ── Occupancy ─────────────────────────────────────────────────────────────────

@router.message(Command("seats"), IsAdmin())
async def cmd_seats(message: Message, session: AsyncSession, flows: FlowRegistry) -> None:
    events = await list_open_events(session)
    if not events:
        await message.answer("📭 No open events.")
        return

    blocks = []
    for event in events:
        registrations = await list_event_registrations(session, event.id)
        try:
            resources = await flows.inventory.list_resources(event.id)
        except InventoryUnavailable as e:
            await message.answer(f"⚠️ {e.message}")
            return
        lines = [f"📅 *{event.name}* · {len(registrations)} enrolled"]
        lines += [f"  {seat_label(r)} ({r.reserved_count}/{r.capacity})" for r in resources]
        blocks.append("\n".join(lines))
    await message.answer("\n\n".join(blocks), parse_mode=ParseMode.MARKDOWN)
