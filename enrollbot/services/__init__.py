from enrollbot.services.seat_inventory import (
    SeatInventory, SeatSnapshot, ReserveStatus, ReserveResult, TransferResult, BookingSnapshot,
)
from enrollbot.services.flow_state import (
    Step, FlowState, TransportSelection, PersistedFlowRecord, encode_state, new_session_id,
)
from enrollbot.services.flow_storage import (
    KeyValueStore, MemoryKeyValueStore, SqlKeyValueStore, FlowStateStore,
)
from enrollbot.services.flow_controller import FlowController
from enrollbot.services.reservation_client import (
    ReservationClient, ConfirmOutcome, SelectOutcome, OutcomeStatus, NO_TRANSPORT,
)
from enrollbot.services.registration_service import (
    upsert_user, get_user,
    create_event, get_event, list_open_events,
    missing_steps, submit_registration, get_registration, list_event_registrations,
    has_active_registration, can_cancel, list_user_registrations, cancel_registration,
)
from enrollbot.services.event_setup import (
    EventDraft, StopDraft, parse_event_line, parse_stop_lines, create_event_with_stops,
)
from enrollbot.services.notification_service import (
    notify_enrollment_confirmed, format_enrollment_summary,
)

__all__ = [
    # seat inventory
    "SeatInventory", "SeatSnapshot", "ReserveStatus", "ReserveResult",
    "TransferResult", "BookingSnapshot",
    # flow state + persistence
    "Step", "FlowState", "TransportSelection", "PersistedFlowRecord",
    "encode_state", "new_session_id",
    "KeyValueStore", "MemoryKeyValueStore", "SqlKeyValueStore", "FlowStateStore",
    "FlowController",
    # reservation client
    "ReservationClient", "ConfirmOutcome", "SelectOutcome", "OutcomeStatus", "NO_TRANSPORT",
    # registration
    "upsert_user", "get_user",
    "create_event", "get_event", "list_open_events",
    "missing_steps", "submit_registration", "get_registration", "list_event_registrations",
    "has_active_registration", "can_cancel", "list_user_registrations", "cancel_registration",
    # event setup
    "EventDraft", "StopDraft", "parse_event_line", "parse_stop_lines", "create_event_with_stops",
    # notifications
    "notify_enrollment_confirmed", "format_enrollment_summary",
]
