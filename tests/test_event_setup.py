"""
Tests — organizer event setup: chat input parsing and event creation.
"""
from __future__ import annotations

from datetime import datetime, time

import pytest

from enrollbot.services.event_setup import (
    EventDraft,
    StopDraft,
    create_event_with_stops,
    parse_event_line,
    parse_stop_lines,
)
from enrollbot.services.registration_service import list_open_events


# ─────────────────────────── Event line ───────────────────────────────────────

class TestParseEventLine:
    def test_full_line(self) -> None:
        draft = parse_event_line("Dharma Assembly | 2026-01-15 09:00 | Main Hall")
        assert draft == EventDraft("Dharma Assembly", datetime(2026, 1, 15, 9, 0), "Main Hall")

    def test_venue_is_optional(self) -> None:
        assert parse_event_line("Dharma Assembly | 2026-01-15 09:00").venue is None
        assert parse_event_line("Dharma Assembly | 2026-01-15 09:00 |  ").venue is None

    @pytest.mark.parametrize("line", [
        "Dharma Assembly",
        " | 2026-01-15 09:00",
        "Dharma Assembly | 15.01.2026 09:00",
        "Dharma Assembly | 2026-01-15",
    ])
    def test_bad_lines(self, line: str) -> None:
        with pytest.raises(ValueError):
            parse_event_line(line)


# ─────────────────────────── Stop lines ───────────────────────────────────────

class TestParseStopLines:
    def test_several_stops_with_blank_lines(self) -> None:
        stops = parse_stop_lines(
            "Changhua Station | 07:30 | 45 | Sanmin Rd 1\n"
            "\n"
            "Taichung HSR | 08:00 | 0\n"
        )
        assert stops == [
            StopDraft("Changhua Station", time(7, 30), 45, "Sanmin Rd 1"),
            StopDraft("Taichung HSR", time(8, 0), 0, ""),
        ]

    def test_error_names_the_line(self) -> None:
        with pytest.raises(ValueError, match="Line 2"):
            parse_stop_lines("A | 07:30 | 45\nB | 7.30 | 45")

    @pytest.mark.parametrize("capacity", ["-1", "ten", "4.5"])
    def test_capacity_must_be_whole_non_negative(self, capacity: str) -> None:
        with pytest.raises(ValueError, match="capacity"):
            parse_stop_lines(f"A | 07:30 | {capacity}")

    def test_missing_fields(self) -> None:
        with pytest.raises(ValueError):
            parse_stop_lines("A | 07:30")

    def test_empty_text(self) -> None:
        with pytest.raises(ValueError, match="at least one"):
            parse_stop_lines("  \n\n")


# ─────────────────────────── Creation ─────────────────────────────────────────

class TestCreateEventWithStops:
    async def test_event_and_locations_created(self, session_factory, inventory) -> None:
        draft = EventDraft("Dharma Assembly", datetime(2026, 1, 15, 9, 0), "Main Hall")
        stops = [
            StopDraft("Changhua Station", time(7, 30), 45, "Sanmin Rd 1"),
            StopDraft("Taichung HSR", time(8, 0), 30),
        ]

        async with session_factory() as session:
            event, locations = await create_event_with_stops(session, inventory, draft, stops)
            listed = await list_open_events(session)

        assert [e.id for e in listed] == [event.id]
        assert [loc.label for loc in locations] == ["Changhua Station", "Taichung HSR"]
        assert locations[0].pickup_time == datetime(2026, 1, 15, 7, 30)
        assert all(loc.reserved_count == 0 for loc in locations)

        stored = await inventory.list_resources(event.id)
        assert [loc.capacity for loc in stored] == [45, 30]
