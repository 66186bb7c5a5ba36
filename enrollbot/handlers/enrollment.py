"""
Enrollment wizard handlers.

Flow:
  role → event → personal details → shuttle → review → submitted ✅

The participant's FlowController (injected as `flow`) is the source of truth
for which step is shown; every button goes through its navigation guard.
Personal details are collected one question at a time with an aiogram
StatesGroup and stored on the controller once all answers are in.
The shuttle step owns a polling ReservationClient that is stopped as soon
as any other step is rendered.
"""
import logging
from datetime import date, datetime
from typing import Optional

from aiogram import Bot, F, Router
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from enrollbot.keyboards import (
    EventCb, InfoCb, LocationCb, NavCb, RoleCb,
    back_to_main, cancel_input_kb, confirmation_kb, event_list_kb,
    personal_info_review_kb, role_kb, seat_label, skip_kb, transport_kb,
)
from enrollbot.middlewares import FlowRegistry, participant_ref
from enrollbot.models.models import EventStatus, Role
from enrollbot.services import (
    FlowController, ReservationClient, Step,
    get_event, get_user, list_open_events, missing_steps,
    notify_enrollment_confirmed, submit_registration,
)
from enrollbot.states import PersonalInfoStates
from enrollbot.validators import (
    PersonalInfo,
    check_birth_date, check_dharma_name, check_id_number, check_name,
    check_phone, check_special_requirements, check_temple_name,
    format_phone_number, mask_id_number,
)

logger = logging.getLogger(__name__)
router = Router(name="enrollment")


# ── Rendering ─────────────────────────────────────────────────────────────────

def _header(flow: FlowController) -> str:
    step = flow.current_step
    number = Step.index(step) + 1
    return f"*Step {number}/{len(Step.ORDER)} · {Step.TITLES[step]}*  `{flow.progress()}%`\n\n"


async def _show(message: Message, text: str, kb, edit: bool) -> Message:
    """Edit the wizard message in place (button presses) or send a new one (typed answers)."""
    if edit:
        try:
            await message.edit_text(text, parse_mode=ParseMode.MARKDOWN, reply_markup=kb)
            return message
        except TelegramBadRequest as e:
            if "not modified" in str(e):
                return message
            logger.debug("Could not edit wizard message, sending a new one: %s", e)
    return await message.answer(text, parse_mode=ParseMode.MARKDOWN, reply_markup=kb)


async def render_step(
    message: Message,
    *,
    flow: FlowController,
    flows: FlowRegistry,
    session: AsyncSession,
    state: FSMContext,
    bot: Bot,
    user_id: int,
    edit: bool = True,
) -> None:
    """Show whatever step the participant's flow is currently on."""
    step = flow.current_step
    if step != Step.TRANSPORT:
        await flows.close_client(user_id)
    if step != Step.PERSONAL_INFO:
        await state.set_state(None)

    if step == Step.IDENTITY:
        await _show(
            message,
            _header(flow) + "Are you enrolling as a monastic or as a volunteer?",
            role_kb(flow.state.role),
            edit,
        )

    elif step == Step.EVENT:
        events = await list_open_events(session)
        if not events:
            await _show(message, "📭 No events are open for enrollment right now.", back_to_main(), edit)
            return
        await _show(
            message,
            _header(flow) + "📅 Pick the event you want to attend:",
            event_list_kb(events, flow.state.selected_event_id),
            edit,
        )

    elif step == Step.PERSONAL_INFO:
        info = flow.state.personal_info
        if info and info.get("role") == flow.state.role:
            await state.set_state(PersonalInfoStates.review)
            await _show(
                message,
                _header(flow) + _personal_summary(info) + "\n\nIs everything correct?",
                personal_info_review_kb(),
                edit,
            )
        else:
            await state.set_state(PersonalInfoStates.enter_name)
            await state.update_data(info={})
            await _show(message, _header(flow) + "👤 Please type your *full name*:", cancel_input_kb(), edit)

    elif step == Step.TRANSPORT:
        await _render_transport(message, flow, flows, bot, user_id, edit)

    elif step == Step.CONFIRMATION:
        await _render_confirmation(message, flow, session, edit)

    else:
        await _show(
            message,
            "🎉 Your enrollment has been submitted. See you there!",
            back_to_main(),
            edit,
        )


async def _render_transport(
    message: Message,
    flow: FlowController,
    flows: FlowRegistry,
    bot: Bot,
    user_id: int,
    edit: bool,
    note: str = "",
) -> None:
    event_id = flow.state.selected_event_id
    if event_id is None:
        flow.go_to_step(Step.EVENT)
        await _show(message, "Please pick an event first.", back_to_main(), edit)
        return

    client = await flows.open_client(user_id, event_id)
    text = _header(flow) + "🚌 Do you need a seat on the shuttle? Seat counts refresh automatically.\n"
    if note:
        text += f"\n{note}\n"
    shown = await _show(message, text, transport_kb(client.resources, client.selection), edit)
    client.on_update = _seat_updater(bot, shown.chat.id, shown.message_id, client)


def _seat_updater(bot: Bot, chat_id: int, message_id: int, client: ReservationClient):
    """Redraw the shuttle keyboard in place after every background refresh."""

    async def _update(resources) -> None:
        try:
            await bot.edit_message_reply_markup(
                chat_id=chat_id,
                message_id=message_id,
                reply_markup=transport_kb(resources, client.selection),
            )
        except TelegramBadRequest as e:
            logger.debug("Seat keyboard not updated: %s", e)

    return _update


async def _render_confirmation(
    message: Message,
    flow: FlowController,
    session: AsyncSession,
    edit: bool,
) -> None:
    s = flow.state
    event = await get_event(session, s.selected_event_id) if s.selected_event_id else None

    lines = [_header(flow) + "📝 *Please review your enrollment:*\n"]
    lines.append(f"🙏 Role: {Role.LABELS.get(s.role, '—')}")
    lines.append(f"📅 Event: {event.name if event else '—'}")
    if s.personal_info:
        lines.append("")
        lines.append(_personal_summary(s.personal_info))
    lines.append("")
    lines.append(_transport_line(flow))

    missing = missing_steps(s)
    if missing:
        lines.append("")
        lines.append("⚠️ Still missing: " + ", ".join(Step.TITLES[m] for m in missing))

    await _show(message, "\n".join(lines), confirmation_kb(), edit)


def _personal_summary(info: dict) -> str:
    lines = [f"👤 {info.get('name', '—')}"]
    if info.get("dharma_name"):
        lines.append(f"🪷 Dharma name: {info['dharma_name']}")
    if info.get("temple_name"):
        lines.append(f"🛕 Temple: {info['temple_name']}")
    lines.append(f"🪪 ID: `{mask_id_number(info.get('id_number', ''))}`")
    lines.append(f"🎂 Born: {info.get('birth_date', '—')}")
    lines.append(f"📞 {format_phone_number(info.get('phone', ''))}")
    if info.get("special_requirements"):
        lines.append(f"💬 {info['special_requirements']}")
    return "\n".join(lines)


def _transport_line(flow: FlowController) -> str:
    selection = flow.state.transport_selection
    if selection is None:
        return "🚌 Shuttle: not chosen yet"
    if not selection.required:
        return "🚶 Shuttle: not needed"
    if selection.resource is not None:
        return f"🚌 Shuttle: {selection.resource.label} at {selection.resource.pickup_time:%H:%M}"
    return f"🚌 Shuttle: pickup location #{selection.location_id}"


# ── Step 1: role ──────────────────────────────────────────────────────────────

@router.callback_query(RoleCb.filter())
async def cq_role(
    callback: CallbackQuery,
    callback_data: RoleCb,
    flow: FlowController,
    flows: FlowRegistry,
    session: AsyncSession,
    state: FSMContext,
    bot: Bot,
) -> None:
    if flow.current_step != Step.IDENTITY:
        await callback.answer()
        return
    flow.set_role(callback_data.role)
    flow.complete_step(Step.IDENTITY)
    flow.go_to_next_step()
    await render_step(
        callback.message, flow=flow, flows=flows, session=session,
        state=state, bot=bot, user_id=callback.from_user.id,
    )
    await callback.answer(f"✅ {Role.LABELS[callback_data.role]}")


# ── Step 2: event ─────────────────────────────────────────────────────────────

@router.callback_query(EventCb.filter())
async def cq_event(
    callback: CallbackQuery,
    callback_data: EventCb,
    flow: FlowController,
    flows: FlowRegistry,
    session: AsyncSession,
    state: FSMContext,
    bot: Bot,
) -> None:
    if flow.current_step != Step.EVENT:
        await callback.answer()
        return
    event = await get_event(session, callback_data.eid)
    if event is None or event.status != EventStatus.OPEN:
        await callback.answer("This event is no longer open.", show_alert=True)
        return

    previous = flow.state.selected_event_id
    if previous is not None and previous != event.id:
        await flows.release_seat(callback.from_user.id, previous)
        flow.set_transport(None)

    flow.set_event(event.id)
    flow.complete_step(Step.EVENT)
    flow.go_to_next_step()
    await render_step(
        callback.message, flow=flow, flows=flows, session=session,
        state=state, bot=bot, user_id=callback.from_user.id,
    )
    await callback.answer()


# ── Step 3: personal details ──────────────────────────────────────────────────

async def _ask(message: Message, state: FSMContext, next_state, prompt: str, kb=None) -> None:
    await state.set_state(next_state)
    await message.answer(prompt, parse_mode=ParseMode.MARKDOWN, reply_markup=kb or cancel_input_kb())


async def _remember(state: FSMContext, **values) -> None:
    data = await state.get_data()
    info = dict(data.get("info") or {})
    info.update(values)
    await state.update_data(info=info)


@router.message(PersonalInfoStates.enter_name)
async def msg_name(message: Message, state: FSMContext, flow: FlowController) -> None:
    try:
        name = check_name(message.text or "")
    except ValueError as e:
        await message.answer(f"⚠️ {e}. Please try again:", reply_markup=cancel_input_kb())
        return
    await _remember(state, name=name)
    if flow.state.role == Role.MONK:
        await _ask(message, state, PersonalInfoStates.enter_dharma_name, "🪷 Your *dharma name*:")
    else:
        await _ask(message, state, PersonalInfoStates.enter_id_number, "🪪 Your *national ID number* (e.g. `A123456789`):")


@router.message(PersonalInfoStates.enter_dharma_name)
async def msg_dharma_name(message: Message, state: FSMContext) -> None:
    try:
        dharma_name = check_dharma_name(message.text or "")
    except ValueError as e:
        await message.answer(f"⚠️ {e}. Please try again:", reply_markup=cancel_input_kb())
        return
    await _remember(state, dharma_name=dharma_name)
    await _ask(message, state, PersonalInfoStates.enter_temple_name, "🛕 Your *temple*:")


@router.message(PersonalInfoStates.enter_temple_name)
async def msg_temple_name(message: Message, state: FSMContext) -> None:
    try:
        temple_name = check_temple_name(message.text or "")
    except ValueError as e:
        await message.answer(f"⚠️ {e}. Please try again:", reply_markup=cancel_input_kb())
        return
    await _remember(state, temple_name=temple_name)
    await _ask(message, state, PersonalInfoStates.enter_id_number, "🪪 Your *national ID number* (e.g. `A123456789`):")


@router.message(PersonalInfoStates.enter_id_number)
async def msg_id_number(message: Message, state: FSMContext) -> None:
    try:
        id_number = check_id_number(message.text or "")
    except ValueError as e:
        await message.answer(f"⚠️ {e}. Please try again:", reply_markup=cancel_input_kb())
        return
    await _remember(state, id_number=id_number)
    await _ask(message, state, PersonalInfoStates.enter_birth_date, "🎂 Your *date of birth* (`YYYY-MM-DD`):")


def parse_birth_date(raw: str) -> date:
    raw = raw.strip()
    for fmt in ("%Y-%m-%d", "%Y/%m/%d", "%Y.%m.%d"):
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    raise ValueError("Please use the format YYYY-MM-DD")


@router.message(PersonalInfoStates.enter_birth_date)
async def msg_birth_date(message: Message, state: FSMContext) -> None:
    try:
        birth_date = check_birth_date(parse_birth_date(message.text or ""))
    except ValueError as e:
        await message.answer(f"⚠️ {e}. Please try again:", reply_markup=cancel_input_kb())
        return
    await _remember(state, birth_date=birth_date.isoformat())
    await _ask(message, state, PersonalInfoStates.enter_phone, "📞 Your *phone number*:")


@router.message(PersonalInfoStates.enter_phone)
async def msg_phone(message: Message, state: FSMContext) -> None:
    try:
        phone = check_phone(message.text or "")
    except ValueError as e:
        await message.answer(f"⚠️ {e}. Please try again:", reply_markup=cancel_input_kb())
        return
    await _remember(state, phone=phone)
    await _ask(
        message, state, PersonalInfoStates.enter_special_requirements,
        "💬 Any *special requirements* (diet, mobility, …)? Type them or press Skip.",
        skip_kb(),
    )


@router.message(PersonalInfoStates.enter_special_requirements)
async def msg_special_requirements(
    message: Message,
    state: FSMContext,
    flow: FlowController,
) -> None:
    try:
        special = check_special_requirements(message.text or "")
    except ValueError as e:
        await message.answer(f"⚠️ {e}. Please try again:", reply_markup=skip_kb())
        return
    await _remember(state, special_requirements=special)
    await _finish_personal_info(message, state, flow)


@router.callback_query(InfoCb.filter(F.action == "skip"), PersonalInfoStates.enter_special_requirements)
async def cq_skip_special_requirements(
    callback: CallbackQuery,
    state: FSMContext,
    flow: FlowController,
) -> None:
    await _remember(state, special_requirements=None)
    await _finish_personal_info(callback.message, state, flow)
    await callback.answer()


async def _finish_personal_info(message: Message, state: FSMContext, flow: FlowController) -> None:
    data = await state.get_data()
    try:
        info = PersonalInfo(role=flow.state.role, **data.get("info", {}))
    except ValidationError as e:
        logger.info("Personal details rejected: %s", e)
        await _ask(message, state, PersonalInfoStates.enter_name, "⚠️ Some answers were invalid. Let's start again: your *full name*:")
        await state.update_data(info={})
        return

    flow.set_personal_info(info)
    flow.complete_step(Step.PERSONAL_INFO)
    await state.set_state(PersonalInfoStates.review)
    await message.answer(
        _header(flow) + _personal_summary(flow.state.personal_info) + "\n\nIs everything correct?",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=personal_info_review_kb(),
    )


@router.callback_query(InfoCb.filter(F.action == "edit"))
async def cq_edit_personal_info(callback: CallbackQuery, state: FSMContext, flow: FlowController) -> None:
    if flow.current_step != Step.PERSONAL_INFO:
        await callback.answer()
        return
    await state.set_state(PersonalInfoStates.enter_name)
    await state.update_data(info={})
    await callback.message.edit_text(
        _header(flow) + "✏️ Let's redo it. Your *full name*:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=cancel_input_kb(),
    )
    await callback.answer()


@router.message(PersonalInfoStates.review)
async def msg_review_hint(message: Message) -> None:
    """Catch accidental text input while the summary is shown."""
    await message.answer(
        "👆 Please use the buttons above to continue or edit.",
        reply_markup=personal_info_review_kb(),
    )


# ── Step 4: shuttle ───────────────────────────────────────────────────────────

async def _client(flows: FlowRegistry, flow: FlowController, user_id: int) -> Optional[ReservationClient]:
    """The live client, reopened after a restart if the keyboard is still on screen."""
    if flow.current_step != Step.TRANSPORT or flow.state.selected_event_id is None:
        return None
    client = flows.client_for(user_id)
    if client is None or not client.is_polling:
        client = await flows.open_client(user_id, flow.state.selected_event_id)
    return client


async def _redraw_seats(callback: CallbackQuery, client: ReservationClient) -> None:
    try:
        await callback.message.edit_reply_markup(reply_markup=transport_kb(client.resources, client.selection))
    except TelegramBadRequest as e:
        logger.debug("Seat keyboard not redrawn: %s", e)


@router.callback_query(LocationCb.filter(F.action == "select"))
async def cq_select_location(
    callback: CallbackQuery,
    callback_data: LocationCb,
    flow: FlowController,
    flows: FlowRegistry,
) -> None:
    client = await _client(flows, flow, callback.from_user.id)
    if client is None:
        await callback.answer()
        return
    outcome = await client.select(callback_data.lid)
    await _redraw_seats(callback, client)
    if outcome.accepted:
        await callback.answer()
    else:
        await callback.answer(outcome.error, show_alert=True)


@router.callback_query(LocationCb.filter(F.action == "none"))
async def cq_no_transport(callback: CallbackQuery, flow: FlowController, flows: FlowRegistry) -> None:
    client = await _client(flows, flow, callback.from_user.id)
    if client is None:
        await callback.answer()
        return
    client.select_no_transport()
    await _redraw_seats(callback, client)
    await callback.answer()


@router.callback_query(LocationCb.filter(F.action == "refresh"))
async def cq_refresh_locations(callback: CallbackQuery, flow: FlowController, flows: FlowRegistry) -> None:
    client = await _client(flows, flow, callback.from_user.id)
    if client is None:
        await callback.answer()
        return
    await client.refresh()
    await _redraw_seats(callback, client)
    await callback.answer("🔄 Seat counts updated")


@router.callback_query(LocationCb.filter(F.action == "confirm"))
async def cq_confirm_transport(
    callback: CallbackQuery,
    flow: FlowController,
    flows: FlowRegistry,
    session: AsyncSession,
    state: FSMContext,
    bot: Bot,
) -> None:
    user_id = callback.from_user.id
    client = await _client(flows, flow, user_id)
    if client is None:
        await callback.answer()
        return

    outcome = await client.confirm(flow)
    if outcome.ok:
        flow.go_to_next_step()
        await render_step(
            callback.message, flow=flow, flows=flows, session=session,
            state=state, bot=bot, user_id=user_id,
        )
        await callback.answer("✅ Shuttle choice saved")
        return

    note = f"⚠️ {outcome.error}"
    if outcome.notice:
        note += f"\n{outcome.notice}"
    if outcome.alternatives:
        note += "\n\nStill open:\n" + "\n".join(f"• {seat_label(r)}" for r in outcome.alternatives)
    await _render_transport(callback.message, flow, flows, bot, user_id, edit=True, note=note)
    await callback.answer(outcome.error, show_alert=True)


# ── Step 5: review & submit ───────────────────────────────────────────────────

@router.callback_query(NavCb.filter(F.action == "submit"))
async def cq_submit(
    callback: CallbackQuery,
    flow: FlowController,
    flows: FlowRegistry,
    session: AsyncSession,
    state: FSMContext,
    bot: Bot,
) -> None:
    if flow.current_step != Step.CONFIRMATION:
        await callback.answer()
        return

    tg = callback.from_user
    user = await get_user(session, tg.id)
    registration, error = await submit_registration(
        session,
        flow.state,
        participant_ref=participant_ref(tg.id),
        user_id=user.id if user else None,
    )
    if error:
        flow.set_error(error)
        await callback.answer(error, show_alert=True)
        return

    event = await get_event(session, registration.event_id)
    selection = flow.state.transport_selection
    await session.commit()

    flow.complete_step(Step.CONFIRMATION)
    flow.go_to_step(Step.SUCCESS)
    flow.complete_step(Step.SUCCESS)
    await flow.clear_storage()
    await state.clear()
    logger.info("Enrollment #%d submitted for %s", registration.id, participant_ref(tg.id))

    await render_step(
        callback.message, flow=flow, flows=flows, session=session,
        state=state, bot=bot, user_id=tg.id,
    )
    await callback.answer("🎉 Submitted!")
    await flows.forget(tg.id)
    await notify_enrollment_confirmed(
        bot,
        chat_id=callback.message.chat.id,
        registration=registration,
        event=event,
        location=selection.resource if selection else None,
    )


# ── Navigation ────────────────────────────────────────────────────────────────

@router.callback_query(NavCb.filter(F.action.in_({"back", "next", "goto"})))
async def cq_navigate(
    callback: CallbackQuery,
    callback_data: NavCb,
    flow: FlowController,
    flows: FlowRegistry,
    session: AsyncSession,
    state: FSMContext,
    bot: Bot,
) -> None:
    if callback_data.action == "back":
        moved = flow.go_to_previous_step()
    elif callback_data.action == "next":
        moved = flow.go_to_next_step()
    else:
        moved = flow.go_to_step(callback_data.step)

    if not moved:
        await callback.answer("Please finish this step first.", show_alert=True)
        return

    await render_step(
        callback.message, flow=flow, flows=flows, session=session,
        state=state, bot=bot, user_id=callback.from_user.id,
    )
    await callback.answer()
