"""
Global fallback handler — included LAST in the dispatcher.

Catches any callback query that no other router handled, e.g. a button
from a wizard message that is no longer current.
"""
import logging

from aiogram import Router
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message

from enrollbot.keyboards import participant_main_menu
from enrollbot.services import FlowController, Step

logger = logging.getLogger(__name__)
router = Router(name="fallback")


@router.callback_query()
async def cq_fallback(callback: CallbackQuery, state: FSMContext, flow: FlowController) -> None:
    await callback.answer("⚠️ This button is out of date.", show_alert=True)
    await state.clear()
    has_saved = bool(flow.state.completed_steps) and flow.current_step != Step.SUCCESS
    try:
        await callback.message.edit_text(
            "🔄 *That screen has expired.* Back to the main menu:",
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=participant_main_menu(has_saved),
        )
    except TelegramBadRequest as e:
        logger.debug("Fallback could not edit message: %s", e)


@router.message()
async def msg_fallback(message: Message) -> None:
    await message.answer("Send /start to open the enrollment menu.")
