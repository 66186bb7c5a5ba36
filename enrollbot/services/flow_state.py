"""
Wizard state value objects and their persisted record shape.

FlowState is the explicitly owned value the FlowController operates on.
PersistedFlowRecord is its wire form: camelCase keys, every field optional
and unknown keys ignored so records written by older or newer releases
still load.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from enrollbot.errors import StorageError
from enrollbot.services.seat_inventory import SeatSnapshot


class Step:
    IDENTITY      = "identity"
    EVENT         = "event"
    PERSONAL_INFO = "personal-info"
    TRANSPORT     = "transport"
    CONFIRMATION  = "confirmation"
    SUCCESS       = "success"     # terminal

    ORDER = (IDENTITY, EVENT, PERSONAL_INFO, TRANSPORT, CONFIRMATION, SUCCESS)

    TITLES = {
        IDENTITY:      "Role",
        EVENT:         "Event",
        PERSONAL_INFO: "Personal details",
        TRANSPORT:     "Shuttle",
        CONFIRMATION:  "Review",
        SUCCESS:       "Done",
    }

    @classmethod
    def index(cls, step: str) -> int:
        """Position in canonical order, -1 for unknown names."""
        try:
            return cls.ORDER.index(step)
        except ValueError:
            return -1

    @classmethod
    def is_valid(cls, step: str) -> bool:
        return step in cls.ORDER


def new_session_id() -> str:
    return f"reg_{uuid.uuid4().hex[:16]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TransportSelection:
    """
    Outcome of the transport step.

    location_id None means the participant explicitly needs no shuttle,
    which differs from FlowState.transport_selection being None (not chosen).
    """
    location_id: Optional[int] = None
    resource: Optional[SeatSnapshot] = None

    @property
    def required(self) -> bool:
        return self.location_id is not None

    @classmethod
    def no_transport(cls) -> "TransportSelection":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "locationId": self.location_id,
            "resource": self.resource.to_dict() if self.resource else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransportSelection":
        resource = data.get("resource")
        return cls(
            location_id=data.get("locationId"),
            resource=SeatSnapshot.from_dict(resource) if resource else None,
        )


@dataclass
class FlowState:
    session_id:          str                          = field(default_factory=new_session_id)
    current_step:        str                          = Step.IDENTITY
    completed_steps:     Set[str]                     = field(default_factory=set)
    role:                Optional[str]                = None
    selected_event_id:   Optional[int]                = None
    personal_info:       Optional[Dict[str, Any]]     = None
    transport_selection: Optional[TransportSelection] = None
    last_saved_at:       Optional[datetime]           = None

    # Transient UI flags, never persisted
    loading:    bool          = field(default=False, compare=False)
    last_error: Optional[str] = field(default=None, compare=False)

    def is_completed(self, step: str) -> bool:
        return step in self.completed_steps


class PersistedFlowRecord(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    current_step:        Optional[str]            = None
    completed_steps:     List[str]                = Field(default_factory=list)
    role:                Optional[str]            = None
    selected_event_id:   Optional[int]            = None
    personal_info:       Optional[Dict[str, Any]] = None
    transport_selection: Optional[Dict[str, Any]] = None
    session_id:          Optional[str]            = None
    last_saved_at:       Optional[datetime]       = None


def encode_state(state: FlowState) -> str:
    """Serialize the persistent part of a FlowState to JSON."""
    record = PersistedFlowRecord(
        current_step=state.current_step,
        completed_steps=[s for s in Step.ORDER if s in state.completed_steps],
        role=state.role,
        selected_event_id=state.selected_event_id,
        personal_info=state.personal_info,
        transport_selection=(
            state.transport_selection.to_dict() if state.transport_selection else None
        ),
        session_id=state.session_id,
        last_saved_at=state.last_saved_at,
    )
    return record.model_dump_json(by_alias=True)


def decode_record(raw: str) -> PersistedFlowRecord:
    try:
        return PersistedFlowRecord.model_validate_json(raw)
    except ValidationError as exc:
        raise StorageError(f"corrupt flow record: {exc.error_count()} error(s)") from exc


def state_from_record(record: PersistedFlowRecord, fallback_session_id: str) -> FlowState:
    current = record.current_step or Step.IDENTITY
    if not Step.is_valid(current):
        raise StorageError(f"unknown step in flow record: {current!r}")

    last_saved = record.last_saved_at
    if last_saved is not None and last_saved.tzinfo is None:
        last_saved = last_saved.replace(tzinfo=timezone.utc)

    try:
        transport = (
            TransportSelection.from_dict(record.transport_selection)
            if record.transport_selection is not None
            else None
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise StorageError(f"corrupt transport selection: {exc}") from exc

    return FlowState(
        session_id=record.session_id or fallback_session_id,
        current_step=current,
        completed_steps={s for s in record.completed_steps if Step.is_valid(s)},
        role=record.role,
        selected_event_id=record.selected_event_id,
        personal_info=record.personal_info,
        transport_selection=transport,
        last_saved_at=last_saved,
    )
