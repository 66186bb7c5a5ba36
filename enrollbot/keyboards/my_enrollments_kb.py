"""
Keyboards for the participant's own enrollments: list, card, cancel prompt.
"""
from typing import List

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from enrollbot.keyboards.callbacks import MainMenuCb, RegistrationCb


def my_enrollments_kb(registrations: List) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for reg in registrations:
        builder.row(
            InlineKeyboardButton(
                text=f"{reg.status_emoji} {reg.event.name} · {reg.event.starts_at:%d.%m.%Y}",
                callback_data=RegistrationCb(action="view", rid=reg.id).pack(),
            )
        )
    builder.row(InlineKeyboardButton(text="🔙 Main menu", callback_data=MainMenuCb(action="main").pack()))
    return builder.as_markup()


def enrollment_card_kb(rid: int, can_cancel: bool = True) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    if can_cancel:
        builder.row(
            InlineKeyboardButton(
                text="🚫 Cancel enrollment",
                callback_data=RegistrationCb(action="cancel", rid=rid).pack(),
            )
        )
    builder.row(InlineKeyboardButton(text="🔙 Back", callback_data=MainMenuCb(action="mine").pack()))
    return builder.as_markup()


def cancel_enrollment_confirm_kb(rid: int) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(
            text="✅ Yes, cancel",
            callback_data=RegistrationCb(action="cancel_confirm", rid=rid).pack(),
        ),
        InlineKeyboardButton(
            text="❌ No",
            callback_data=RegistrationCb(action="view", rid=rid).pack(),
        ),
    )
    return builder.as_markup()
