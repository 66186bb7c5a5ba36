"""
Main menu keyboards — context-aware (fresh participant vs. saved enrollment).
"""
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from enrollbot.keyboards.callbacks import MainMenuCb


def participant_main_menu(has_saved_flow: bool = False) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    if has_saved_flow:
        builder.row(
            InlineKeyboardButton(text="▶️ Continue enrollment", callback_data=MainMenuCb(action="resume").pack()),
        )
        builder.row(
            InlineKeyboardButton(text="🔄 Start over",          callback_data=MainMenuCb(action="reset").pack()),
        )
    else:
        builder.row(
            InlineKeyboardButton(text="📝 Enroll in an event",  callback_data=MainMenuCb(action="enroll").pack()),
        )
    builder.row(
        InlineKeyboardButton(text="📋 My enrollments",      callback_data=MainMenuCb(action="mine").pack()),
    )
    return builder.as_markup()


def reset_confirm_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="✅ Yes, start over", callback_data=MainMenuCb(action="reset_confirm").pack()),
        InlineKeyboardButton(text="❌ No",               callback_data=MainMenuCb(action="main").pack()),
    )
    return builder.as_markup()


def back_to_main() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="🔙 Main menu", callback_data=MainMenuCb(action="main").pack()))
    return builder.as_markup()
