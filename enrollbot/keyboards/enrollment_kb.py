"""
Keyboards for the enrollment wizard steps.
"""
from typing import List, Optional, Union

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from enrollbot.keyboards.callbacks import EventCb, InfoCb, LocationCb, MainMenuCb, NavCb, RoleCb
from enrollbot.models.models import Event, Role
from enrollbot.services.reservation_client import NO_TRANSPORT
from enrollbot.services.seat_inventory import SeatSnapshot


def _nav_row(builder: InlineKeyboardBuilder, back: bool = True) -> None:
    buttons = []
    if back:
        buttons.append(InlineKeyboardButton(text="⬅️ Back", callback_data=NavCb(action="back").pack()))
    buttons.append(InlineKeyboardButton(text="❌ Cancel", callback_data=MainMenuCb(action="main").pack()))
    builder.row(*buttons)


def role_kb(current: Optional[str] = None) -> InlineKeyboardMarkup:
    """Identity step: monastic or volunteer."""
    builder = InlineKeyboardBuilder()
    for role in Role.ALL:
        mark = "✅ " if role == current else ""
        builder.row(
            InlineKeyboardButton(
                text=f"{mark}{Role.LABELS[role]}",
                callback_data=RoleCb(role=role).pack(),
            )
        )
    _nav_row(builder, back=False)
    return builder.as_markup()


def event_list_kb(events: List[Event], current: Optional[int] = None) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for e in events:
        mark = "✅ " if e.id == current else ""
        builder.row(
            InlineKeyboardButton(
                text=f"{mark}{e.status_emoji} {e.name}  ({e.starts_at:%m/%d})",
                callback_data=EventCb(eid=e.id).pack(),
            )
        )
    _nav_row(builder)
    return builder.as_markup()


def skip_kb() -> InlineKeyboardMarkup:
    """Optional question (special requirements)."""
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="⏭ Skip", callback_data=InfoCb(action="skip").pack()))
    _nav_row(builder)
    return builder.as_markup()


def cancel_input_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    _nav_row(builder)
    return builder.as_markup()


def personal_info_review_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="✅ Looks good", callback_data=NavCb(action="next").pack()),
        InlineKeyboardButton(text="✏️ Edit",       callback_data=InfoCb(action="edit").pack()),
    )
    _nav_row(builder)
    return builder.as_markup()


def seat_label(resource: SeatSnapshot) -> str:
    if not resource.is_available:
        return f"🔴 {resource.label} {resource.pickup_time:%H:%M} · full"
    dot = "🟡" if resource.available_seats <= 5 else "🟢"
    return f"{dot} {resource.label} {resource.pickup_time:%H:%M} · {resource.available_seats} left"


def transport_kb(
    resources: List[SeatSnapshot],
    selection: Union[int, str, None] = None,
) -> InlineKeyboardMarkup:
    """
    Pickup locations with live seat counts. Full locations stay visible
    but are not selectable; their button just refreshes the list.
    """
    builder = InlineKeyboardBuilder()
    for r in resources:
        mark = "✅ " if r.id == selection else ""
        action = "select" if r.is_available or r.id == selection else "refresh"
        builder.row(
            InlineKeyboardButton(
                text=f"{mark}{seat_label(r)}",
                callback_data=LocationCb(action=action, lid=r.id).pack(),
            )
        )
    mark = "✅ " if selection == NO_TRANSPORT else ""
    builder.row(
        InlineKeyboardButton(
            text=f"{mark}🚶 I don't need a shuttle",
            callback_data=LocationCb(action="none").pack(),
        )
    )
    builder.row(
        InlineKeyboardButton(text="🔄 Refresh", callback_data=LocationCb(action="refresh").pack()),
        InlineKeyboardButton(text="✅ Confirm", callback_data=LocationCb(action="confirm").pack()),
    )
    _nav_row(builder)
    return builder.as_markup()


def confirmation_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="📨 Submit enrollment", callback_data=NavCb(action="submit").pack()))
    builder.row(
        InlineKeyboardButton(text="✏️ Personal info", callback_data=NavCb(action="goto", step="personal-info").pack()),
        InlineKeyboardButton(text="🚌 Shuttle",        callback_data=NavCb(action="goto", step="transport").pack()),
    )
    _nav_row(builder)
    return builder.as_markup()
