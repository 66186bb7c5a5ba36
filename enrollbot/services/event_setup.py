"""
Organizer event setup — parsing the chat input used to create an event and
its shuttle pickup locations.

Event line:   Name | YYYY-MM-DD HH:MM | venue (optional)
Stop line:    Label | HH:MM | capacity | address (optional)

Pickup times are given as a clock time and placed on the event date.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from enrollbot.models.models import Event
from enrollbot.services.registration_service import create_event
from enrollbot.services.seat_inventory import SeatInventory, SeatSnapshot


@dataclass
class EventDraft:
    name:      str
    starts_at: datetime
    venue:     Optional[str] = None


@dataclass
class StopDraft:
    label:       str
    pickup_time: time
    capacity:    int
    address:     str = ""


def _split(line: str) -> List[str]:
    return [part.strip() for part in line.split("|")]


def parse_event_line(line: str) -> EventDraft:
    parts = _split(line)
    if len(parts) < 2 or not parts[0]:
        raise ValueError("Expected: Name | YYYY-MM-DD HH:MM | venue")
    try:
        starts_at = datetime.strptime(parts[1], "%Y-%m-%d %H:%M")
    except ValueError:
        raise ValueError(f"Bad start time {parts[1]!r}, expected YYYY-MM-DD HH:MM") from None
    venue = parts[2] if len(parts) > 2 and parts[2] else None
    return EventDraft(name=parts[0], starts_at=starts_at, venue=venue)


def parse_stop_lines(text: str) -> List[StopDraft]:
    stops: List[StopDraft] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        parts = _split(line)
        if len(parts) < 3 or not parts[0]:
            raise ValueError(f"Line {lineno}: expected Label | HH:MM | capacity | address")
        try:
            pickup = datetime.strptime(parts[1], "%H:%M").time()
        except ValueError:
            raise ValueError(f"Line {lineno}: bad pickup time {parts[1]!r}") from None
        if not parts[2].isdigit():
            raise ValueError(f"Line {lineno}: capacity must be a whole number >= 0")
        address = parts[3] if len(parts) > 3 else ""
        stops.append(StopDraft(parts[0], pickup, int(parts[2]), address))
    if not stops:
        raise ValueError("Add at least one pickup location")
    return stops


async def create_event_with_stops(
    session: AsyncSession,
    inventory: SeatInventory,
    draft: EventDraft,
    stops: List[StopDraft],
) -> Tuple[Event, List[SeatSnapshot]]:
    """
    Create the event in `session`, commit it, then register each stop with
    the inventory (which runs its own transactions).
    """
    event = await create_event(session, draft.name, draft.starts_at, venue=draft.venue)
    await session.commit()

    locations = []
    for stop in stops:
        locations.append(
            await inventory.create_location(
                event_id=event.id,
                label=stop.label,
                pickup_time=datetime.combine(draft.starts_at.date(), stop.pickup_time),
                capacity=stop.capacity,
                address=stop.address,
            )
        )
    return event, locations
