"""
Registration service — database operations for users, events and the
final enrollment submission.

Every function works inside the caller's AsyncSession and leaves the
commit to it (the DatabaseMiddleware commits once per update), except
cancel_registration, which commits before handing the seat back.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from enrollbot.models.models import (
    Event,
    EventStatus,
    Registration,
    RegistrationStatus,
    User,
)
from enrollbot.services.flow_state import FlowState, Step
from enrollbot.services.seat_inventory import SeatInventory
from enrollbot.validators import PersonalInfo

logger = logging.getLogger(__name__)

# Steps that must be completed before the enrollment can be submitted
REQUIRED_STEPS = (Step.IDENTITY, Step.EVENT, Step.PERSONAL_INFO, Step.TRANSPORT)


# ── User ──────────────────────────────────────────────────────────────────────

async def upsert_user(
    session: AsyncSession,
    telegram_id: int,
    first_name: str,
    last_name: Optional[str],
    username: Optional[str],
) -> User:
    """Create or update a Telegram user record."""
    result = await session.execute(
        select(User).where(User.telegram_id == telegram_id)
    )
    user = result.scalar_one_or_none()
    if user is None:
        user = User(
            telegram_id=telegram_id,
            first_name=first_name,
            last_name=last_name,
            username=username,
        )
        session.add(user)
        await session.flush()
    else:
        user.first_name = first_name
        user.last_name  = last_name
        user.username   = username
    return user


async def get_user(session: AsyncSession, telegram_id: int) -> Optional[User]:
    result = await session.execute(
        select(User).where(User.telegram_id == telegram_id)
    )
    return result.scalar_one_or_none()


# ── Events ────────────────────────────────────────────────────────────────────

async def create_event(
    session: AsyncSession,
    name: str,
    starts_at: datetime,
    venue: Optional[str] = None,
    description: Optional[str] = None,
    deadline: Optional[datetime] = None,
    status: str = EventStatus.OPEN,
) -> Event:
    event = Event(
        name=name,
        starts_at=starts_at,
        venue=venue,
        description=description,
        deadline=deadline,
        status=status,
    )
    session.add(event)
    await session.flush()
    return event


async def get_event(session: AsyncSession, event_id: int) -> Optional[Event]:
    return await session.get(Event, event_id)


async def list_open_events(session: AsyncSession) -> List[Event]:
    """Events visible to participants (enrollment open)."""
    result = await session.execute(
        select(Event)
        .where(Event.status == EventStatus.OPEN)
        .order_by(Event.starts_at, Event.id)
    )
    return list(result.scalars().all())


# ── Submission ────────────────────────────────────────────────────────────────

def missing_steps(state: FlowState) -> List[str]:
    """Steps (and payloads) still missing before submission is allowed."""
    missing = [s for s in REQUIRED_STEPS if s not in state.completed_steps]
    if state.role is None and Step.IDENTITY not in missing:
        missing.append(Step.IDENTITY)
    if state.selected_event_id is None and Step.EVENT not in missing:
        missing.append(Step.EVENT)
    if state.personal_info is None and Step.PERSONAL_INFO not in missing:
        missing.append(Step.PERSONAL_INFO)
    if state.transport_selection is None and Step.TRANSPORT not in missing:
        missing.append(Step.TRANSPORT)
    return missing


async def submit_registration(
    session: AsyncSession,
    state: FlowState,
    participant_ref: str,
    user_id: Optional[int] = None,
) -> Tuple[Optional[Registration], str]:
    """
    Persist the enrollment described by a completed FlowState.
    Returns (registration, error_message). error_message is empty on success.
    """
    missing = missing_steps(state)
    if missing:
        titles = ", ".join(Step.TITLES[s] for s in missing)
        return None, f"Enrollment is incomplete: {titles}."

    event = await get_event(session, state.selected_event_id)
    if event is None or event.status != EventStatus.OPEN:
        return None, "This event is no longer accepting enrollments."

    if await has_active_registration(session, participant_ref, event.id):
        return None, "You are already enrolled in this event."

    try:
        info = PersonalInfo.model_validate({**state.personal_info, "role": state.role})
    except ValidationError:
        return None, "Please review your personal details for the selected role."
    transport = state.transport_selection
    registration = Registration(
        event_id=event.id,
        user_id=user_id,
        participant_ref=participant_ref,
        role=state.role,
        name=info.name,
        id_number=info.id_number,
        birth_date=info.birth_date.isoformat(),
        phone=info.phone,
        dharma_name=info.dharma_name,
        temple_name=info.temple_name,
        special_requirements=info.special_requirements,
        transport_required=transport.required,
        location_id=transport.location_id,
    )
    session.add(registration)
    await session.flush()
    return registration, ""


async def get_registration(
    session: AsyncSession,
    registration_id: int,
) -> Optional[Registration]:
    result = await session.execute(
        select(Registration)
        .where(Registration.id == registration_id)
        .options(
            selectinload(Registration.user),
            selectinload(Registration.event),
            selectinload(Registration.location),
        )
    )
    return result.scalar_one_or_none()


async def list_event_registrations(
    session: AsyncSession,
    event_id: int,
    include_cancelled: bool = False,
) -> List[Registration]:
    q = (
        select(Registration)
        .where(Registration.event_id == event_id)
        .options(selectinload(Registration.location))
        .order_by(Registration.created_at, Registration.id)
    )
    if not include_cancelled:
        q = q.where(Registration.status != RegistrationStatus.CANCELLED)
    result = await session.execute(q)
    return list(result.scalars().all())



async def has_active_registration(session: AsyncSession, participant_ref: str, event_id: int) -> bool:
    result = await session.execute(
        select(Registration.id)
        .where(
            Registration.event_id == event_id,
            Registration.participant_ref == participant_ref,
            Registration.status != RegistrationStatus.CANCELLED,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


# ── Participant self-service ──────────────────────────────────────────────────

def can_cancel(registration: Registration, now: Optional[datetime] = None) -> bool:
    """True while the enrollment is active and its event is open and before the deadline."""
    event = registration.event
    if registration.status == RegistrationStatus.CANCELLED or event is None:
        return False
    if event.status != EventStatus.OPEN:
        return False
    return event.deadline is None or (now or datetime.now()) < event.deadline


async def list_user_registrations(
    session: AsyncSession,
    participant_ref: str,
    include_cancelled: bool = True,
) -> List[Registration]:
    """A participant's own enrollments, newest first."""
    q = (
        select(Registration)
        .where(Registration.participant_ref == participant_ref)
        .options(selectinload(Registration.event), selectinload(Registration.location))
        .order_by(Registration.created_at.desc(), Registration.id.desc())
    )
    if not include_cancelled:
        q = q.where(Registration.status != RegistrationStatus.CANCELLED)
    result = await session.execute(q)
    return list(result.scalars().all())


async def cancel_registration(
    session: AsyncSession,
    inventory: SeatInventory,
    registration_id: int,
    participant_ref: str,
    now: Optional[datetime] = None,
) -> Tuple[Optional[Registration], str]:
    """
    Cancel one of the participant's own enrollments and give back its
    shuttle seat. The status change is committed in `session` first; the
    seat is then released through the inventory's own transaction.
    Returns (registration, error_message). error_message is empty on success.
    """
    registration = await get_registration(session, registration_id)
    if registration is None or registration.participant_ref != participant_ref:
        return None, "Enrollment not found."
    if registration.status == RegistrationStatus.CANCELLED:
        return registration, "This enrollment is already cancelled."
    if not can_cancel(registration, now):
        return registration, "This enrollment can no longer be changed."

    registration.status = RegistrationStatus.CANCELLED
    event_id = registration.event_id
    await session.commit()

    booking = await inventory.booking_for(participant_ref, event_id)
    if booking is not None and booking.location_id is not None:
        await inventory.release(booking.location_id, participant_ref)
    logger.info("Enrollment #%d cancelled by %s", registration_id, participant_ref)
    return registration, ""
