from enrollbot.keyboards.callbacks import (
    MainMenuCb,
    RoleCb,
    EventCb,
    LocationCb,
    NavCb,
    InfoCb,
    RegistrationCb,
)
from enrollbot.keyboards.main_menu import participant_main_menu, reset_confirm_kb, back_to_main
from enrollbot.keyboards.enrollment_kb import (
    role_kb,
    event_list_kb,
    skip_kb,
    cancel_input_kb,
    personal_info_review_kb,
    seat_label,
    transport_kb,
    confirmation_kb,
)
from enrollbot.keyboards.my_enrollments_kb import (
    my_enrollments_kb,
    enrollment_card_kb,
    cancel_enrollment_confirm_kb,
)

__all__ = [
    # callbacks
    "MainMenuCb", "RoleCb", "EventCb", "LocationCb", "NavCb", "InfoCb", "RegistrationCb",
    # main menu
    "participant_main_menu", "reset_confirm_kb", "back_to_main",
    # enrollment
    "role_kb", "event_list_kb", "skip_kb", "cancel_input_kb",
    "personal_info_review_kb", "seat_label", "transport_kb", "confirmation_kb",
    # my enrollments
    "my_enrollments_kb", "enrollment_card_kb", "cancel_enrollment_confirm_kb",
]
