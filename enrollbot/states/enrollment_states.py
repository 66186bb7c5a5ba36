from aiogram.fsm.state import State, StatesGroup


class PersonalInfoStates(StatesGroup):
    """FSM for the personal-info step (one question per message)."""
    enter_name                 = State()  # Lay name
    enter_dharma_name          = State()  # Monastics only
    enter_temple_name          = State()  # Monastics only
    enter_id_number            = State()  # National ID
    enter_birth_date           = State()  # YYYY-MM-DD
    enter_phone                = State()  # Mobile or landline
    enter_special_requirements = State()  # Optional, skippable
    review                     = State()  # Summary → continue or edit


class AdminSeedStates(StatesGroup):
    """FSM for creating an event from chat."""
    enter_event = State()   # "Name | YYYY-MM-DD HH:MM | venue"
    enter_stops = State()   # One "Label | HH:MM | capacity | address" per line
