"""
Common handlers: /start (with resume), main menu, start over.
"""
import logging

from aiogram import Bot, F, Router
from aiogram.enums import ParseMode
from aiogram.filters import Command, CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message
from sqlalchemy.ext.asyncio import AsyncSession

from enrollbot.handlers.enrollment import render_step
from enrollbot.keyboards import MainMenuCb, participant_main_menu, reset_confirm_kb
from enrollbot.middlewares import FlowRegistry
from enrollbot.services import FlowController, Step, upsert_user

logger = logging.getLogger(__name__)
router = Router(name="common")


def _has_saved_flow(flow: FlowController) -> bool:
    return bool(flow.state.completed_steps) and flow.current_step != Step.SUCCESS


# ── /start ────────────────────────────────────────────────────────────────────

@router.message(CommandStart())
async def cmd_start(message: Message, session: AsyncSession, flow: FlowController) -> None:
    tg = message.from_user
    await upsert_user(
        session,
        telegram_id=tg.id,
        first_name=tg.first_name,
        last_name=tg.last_name,
        username=tg.username,
    )

    # Pending in-memory changes win over the stored copy
    await flow.flush()
    await flow.load_from_storage()

    if _has_saved_flow(flow):
        text = (
            f"🙏 Welcome back, {tg.first_name}!\n\n"
            f"You have an enrollment in progress "
            f"(step: *{Step.TITLES[flow.current_step]}*, `{flow.progress()}%`).\n\n"
            f"Continue where you left off, or start over?"
        )
    else:
        text = (
            f"🙏 Welcome, {tg.first_name}!\n\n"
            f"Here you can enroll in upcoming events and book a seat on the "
            f"shuttle bus to the venue.\n\n"
            f"Choose an action:"
        )
    await message.answer(
        text,
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=participant_main_menu(_has_saved_flow(flow)),
    )


@router.message(Command("reset"))
async def cmd_reset(message: Message) -> None:
    await message.answer(
        "🔄 Discard your enrollment in progress and start over?",
        reply_markup=reset_confirm_kb(),
    )


# ── Main menu callbacks ───────────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "main"))
async def cq_main_menu(
    callback: CallbackQuery,
    state: FSMContext,
    flow: FlowController,
    flows: FlowRegistry,
) -> None:
    await state.clear()
    await flows.close_client(callback.from_user.id)
    await callback.message.edit_text(
        "🏠 *Main menu*\n\nChoose an action:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=participant_main_menu(_has_saved_flow(flow)),
    )
    await callback.answer()


@router.callback_query(MainMenuCb.filter(F.action.in_({"enroll", "resume"})))
async def cq_enroll(
    callback: CallbackQuery,
    flow: FlowController,
    flows: FlowRegistry,
    session: AsyncSession,
    state: FSMContext,
    bot: Bot,
) -> None:
    if flow.current_step == Step.SUCCESS:
        flow.reset_flow()
    await render_step(
        callback.message, flow=flow, flows=flows, session=session,
        state=state, bot=bot, user_id=callback.from_user.id,
    )
    await callback.answer()


@router.callback_query(MainMenuCb.filter(F.action == "reset"))
async def cq_reset(callback: CallbackQuery) -> None:
    await callback.message.edit_text(
        "🔄 Discard your enrollment in progress and start over?",
        reply_markup=reset_confirm_kb(),
    )
    await callback.answer()


@router.callback_query(MainMenuCb.filter(F.action == "reset_confirm"))
async def cq_reset_confirm(
    callback: CallbackQuery,
    flow: FlowController,
    flows: FlowRegistry,
    session: AsyncSession,
    state: FSMContext,
    bot: Bot,
) -> None:
    user_id = callback.from_user.id
    await state.clear()
    logger.info("User %s reset enrollment flow %s", user_id, flow.session_id)
    flow = await flows.reset(user_id)
    await render_step(
        callback.message, flow=flow, flows=flows, session=session,
        state=state, bot=bot, user_id=user_id,
    )
    await callback.answer("Started over")


@router.callback_query(F.data == "noop")
async def cq_noop(callback: CallbackQuery) -> None:
    await callback.answer()
