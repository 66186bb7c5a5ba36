"""
Participant self-service: list own enrollments, view one, cancel it.

Cancelling gives the shuttle seat back to the pickup location.
"""
import logging

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.types import CallbackQuery
from sqlalchemy.ext.asyncio import AsyncSession

from enrollbot.errors import InventoryUnavailable
from enrollbot.keyboards import (
    MainMenuCb,
    RegistrationCb,
    back_to_main,
    cancel_enrollment_confirm_kb,
    enrollment_card_kb,
    my_enrollments_kb,
)
from enrollbot.middlewares import FlowRegistry, participant_ref
from enrollbot.models.models import Registration, RegistrationStatus, Role
from enrollbot.services import can_cancel, cancel_registration, get_registration, list_user_registrations

logger = logging.getLogger(__name__)
router = Router(name="my_enrollments")


def _enrollment_card(reg: Registration) -> str:
    if reg.location is not None:
        shuttle = (
            f"🚌 Shuttle: *{reg.location.label}*\n"
            f"🕖 Pickup: `{reg.location.pickup_time:%Y-%m-%d %H:%M}`"
        )
    elif reg.transport_required:
        shuttle = "🚌 Shuttle: pickup location removed by the organizers"
    else:
        shuttle = "🚶 Shuttle: not needed"

    lines = [
        f"━━━━━━━━━━━━━━━━━━━━━",
        f"📅 *{reg.event.name}*",
        f"━━━━━━━━━━━━━━━━━━━━━",
        f"",
        f"🗓 `{reg.event.starts_at:%Y-%m-%d %H:%M}`",
        f"👤 {reg.name} ({Role.LABELS.get(reg.role, reg.role)})",
        shuttle,
        f"📋 Status: {reg.status_emoji} {RegistrationStatus.LABELS.get(reg.status, reg.status)}",
        f"",
        f"Reference: `#{reg.id}`",
    ]
    return "\n".join(lines)


async def _own_registration(callback: CallbackQuery, session: AsyncSession, rid: int):
    reg = await get_registration(session, rid)
    if reg is None or reg.participant_ref != participant_ref(callback.from_user.id):
        await callback.answer("Enrollment not found.", show_alert=True)
        return None
    return reg


# ── List ──────────────────────────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "mine"))
async def cq_my_enrollments(callback: CallbackQuery, session: AsyncSession) -> None:
    registrations = await list_user_registrations(session, participant_ref(callback.from_user.id))
    if not registrations:
        await callback.message.edit_text(
            "📋 *My enrollments*\n\n_You have not enrolled in any event yet._",
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=back_to_main(),
        )
    else:
        await callback.message.edit_text(
            "📋 *My enrollments*\n\nPick one to see the details:",
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=my_enrollments_kb(registrations),
        )
    await callback.answer()


# ── Card ──────────────────────────────────────────────────────────────────────

@router.callback_query(RegistrationCb.filter(F.action == "view"))
async def cq_enrollment_card(
    callback: CallbackQuery,
    callback_data: RegistrationCb,
    session: AsyncSession,
) -> None:
    reg = await _own_registration(callback, session, callback_data.rid)
    if reg is None:
        return
    await callback.message.edit_text(
        _enrollment_card(reg),
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=enrollment_card_kb(reg.id, can_cancel=can_cancel(reg)),
    )
    await callback.answer()


# ── Cancel ────────────────────────────────────────────────────────────────────

@router.callback_query(RegistrationCb.filter(F.action == "cancel"))
async def cq_cancel_prompt(
    callback: CallbackQuery,
    callback_data: RegistrationCb,
    session: AsyncSession,
) -> None:
    reg = await _own_registration(callback, session, callback_data.rid)
    if reg is None:
        return
    await callback.message.edit_text(
        f"❓ Cancel your enrollment in *{reg.event.name}*?\n\n"
        f"Your shuttle seat, if any, goes back to other participants.",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=cancel_enrollment_confirm_kb(reg.id),
    )
    await callback.answer()


@router.callback_query(RegistrationCb.filter(F.action == "cancel_confirm"))
async def cq_cancel_confirm(
    callback: CallbackQuery,
    callback_data: RegistrationCb,
    session: AsyncSession,
    flows: FlowRegistry,
) -> None:
    try:
        reg, error = await cancel_registration(
            session,
            flows.inventory,
            callback_data.rid,
            participant_ref(callback.from_user.id),
        )
    except InventoryUnavailable as e:
        logger.error("Seat release after cancelling #%d failed: %s", callback_data.rid, e)
        await callback.answer(
            "Your enrollment is cancelled, but the shuttle seat could not be released yet. "
            "Please contact the organizers.",
            show_alert=True,
        )
        return
    if error:
        await callback.answer(error, show_alert=True)
        return

    await callback.message.edit_text(
        f"🚫 *Enrollment cancelled.*\n\n"
        f"You can enroll in *{reg.event.name}* again while enrollment is open.",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=back_to_main(),
    )
    await callback.answer("Enrollment cancelled.")
