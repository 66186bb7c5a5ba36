"""
Centralized CallbackData factories.
Telegram limits callback_data to 64 bytes — all prefixes are kept short.
"""
from aiogram.filters.callback_data import CallbackData


class MainMenuCb(CallbackData, prefix="mm"):
    action: str           # main | enroll | resume | reset | reset_confirm | mine


class RoleCb(CallbackData, prefix="role"):
    role: str             # monk | volunteer


class EventCb(CallbackData, prefix="evt"):
    eid: int              # event id


class LocationCb(CallbackData, prefix="loc"):
    action: str           # select | none | confirm | refresh
    lid: int = 0          # pickup location id (0 = N/A)


class NavCb(CallbackData, prefix="nav"):
    action: str           # back | next | goto | submit
    step: str = ""


class InfoCb(CallbackData, prefix="inf"):
    action: str           # skip | edit


class RegistrationCb(CallbackData, prefix="reg"):
    action: str           # view | cancel | cancel_confirm
    rid: int = 0          # registration id
