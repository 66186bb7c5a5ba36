"""
Tests — FlowStateStore tiers, TTL expiry and the persisted record format.

Coverage:
  - Round trip through both tiers
  - Session tier wins over the shared tier; no merging
  - Records older than the TTL are discarded and removed
  - Corrupt / foreign records are rejected without raising
  - Forward compatibility: unknown fields ignored, missing fields defaulted
  - SqlKeyValueStore against the flow_snapshots table
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from enrollbot.models.models import Role
from enrollbot.services.flow_controller import FlowController
from enrollbot.services.flow_state import (
    FlowState,
    PersistedFlowRecord,
    Step,
    TransportSelection,
    encode_state,
)
from enrollbot.services.flow_storage import FlowStateStore, MemoryKeyValueStore, SqlKeyValueStore
from enrollbot.services.seat_inventory import SeatSnapshot


def _store(clock, session_tier=None, shared_tier=None) -> FlowStateStore:
    return FlowStateStore(
        session_tier if session_tier is not None else MemoryKeyValueStore(),
        shared_tier if shared_tier is not None else MemoryKeyValueStore(),
        clock=clock,
    )


def _state(clock, **kwargs) -> FlowState:
    defaults = dict(
        current_step=Step.EVENT,
        completed_steps={Step.IDENTITY},
        role=Role.VOLUNTEER,
        last_saved_at=clock(),
    )
    defaults.update(kwargs)
    return FlowState(**defaults)


# ─────────────────────────── Round trip ───────────────────────────────────────

class TestRoundTrip:
    async def test_save_then_load(self, clock) -> None:
        store = _store(clock)
        seat = SeatSnapshot(
            id=3, event_id=1, label="Changhua Station", address="Sanmin Rd 1",
            pickup_time=datetime(2026, 1, 15, 7, 30), capacity=45, reserved_count=32,
        )
        state = _state(
            clock,
            current_step=Step.CONFIRMATION,
            completed_steps={Step.IDENTITY, Step.EVENT, Step.PERSONAL_INFO, Step.TRANSPORT},
            selected_event_id=1,
            personal_info={"name": "Chen Mei", "phone": "0912345678"},
            transport_selection=TransportSelection(location_id=3, resource=seat),
        )

        assert await store.save(state) is True
        restored = await store.load(state.session_id)

        assert restored == state

    async def test_no_transport_selection_survives(self, clock) -> None:
        store = _store(clock)
        state = _state(clock, transport_selection=TransportSelection.no_transport())
        await store.save(state)

        restored = await store.load(state.session_id)
        assert restored.transport_selection is not None
        assert restored.transport_selection.required is False

    async def test_transient_flags_are_not_persisted(self, clock) -> None:
        store = _store(clock)
        state = _state(clock)
        state.loading = True
        state.last_error = "oops"
        await store.save(state)

        restored = await store.load(state.session_id)
        assert restored.loading is False
        assert restored.last_error is None

    async def test_load_missing_returns_none(self, clock) -> None:
        assert await _store(clock).load("reg_nothing") is None


# ─────────────────────────── Tiers ────────────────────────────────────────────

class TestTiers:
    async def test_save_writes_both_tiers(self, clock) -> None:
        store = _store(clock)
        state = _state(clock)
        await store.save(state)

        assert store.session_key(state.session_id) in store.session_tier
        assert store.shared_key in store.shared_tier
        assert store.session_key(state.session_id) == f"enrollment_flow:{state.session_id}"

    async def test_session_tier_wins_without_merging(self, clock) -> None:
        store = _store(clock)
        shared = _state(clock, session_id="reg_shared", role=Role.MONK, selected_event_id=9)
        session = _state(clock, session_id="reg_session", role=Role.VOLUNTEER)
        await store.shared_tier.set(store.shared_key, encode_state(shared))
        await store.session_tier.set(store.session_key("reg_session"), encode_state(session))

        restored = await store.load("reg_session")

        assert restored.role == Role.VOLUNTEER
        assert restored.selected_event_id is None

    async def test_falls_back_to_shared_tier(self, clock) -> None:
        store = _store(clock)
        state = _state(clock, session_id="reg_previous")
        await store.shared_tier.set(store.shared_key, encode_state(state))

        restored = await store.load("reg_new_tab")

        assert restored is not None
        assert restored.session_id == "reg_previous"

    async def test_clear_removes_both_keys(self, clock) -> None:
        store = _store(clock)
        state = _state(clock)
        await store.save(state)

        await store.clear(state.session_id)

        assert len(store.session_tier) == 0
        assert len(store.shared_tier) == 0

    async def test_failing_tier_is_reported_not_raised(self, clock, caplog) -> None:
        class Broken(MemoryKeyValueStore):
            async def get(self, key):
                raise OSError("quota exceeded")

            async def set(self, key, value):
                raise OSError("quota exceeded")

        store = _store(clock, session_tier=Broken())
        state = _state(clock)

        assert await store.save(state) is False
        # Shared tier still got the write and serves the load
        restored = await store.load(state.session_id)
        assert restored.session_id == state.session_id
        assert "quota exceeded" in caplog.text


# ─────────────────────────── TTL ──────────────────────────────────────────────

class TestExpiry:
    async def test_record_older_than_ttl_is_discarded_and_removed(self, clock) -> None:
        store = _store(clock)
        state = _state(clock, last_saved_at=clock() - timedelta(hours=25))
        await store.save(state)

        assert await store.load(state.session_id) is None
        assert store.session_key(state.session_id) not in store.session_tier
        assert store.shared_key not in store.shared_tier

    async def test_controller_reports_expired_session_as_not_loaded(self, clock) -> None:
        store = _store(clock)
        state = _state(clock)
        await store.save(state)
        clock.advance(hours=25)

        flow = FlowController(store=store, clock=clock)
        assert await flow.load_from_storage() is False
        assert flow.current_step == Step.IDENTITY
        assert len(store.shared_tier) == 0

    async def test_record_just_inside_ttl_is_kept(self, clock) -> None:
        store = _store(clock)
        state = _state(clock, last_saved_at=clock() - timedelta(hours=23, minutes=59))
        await store.save(state)

        assert await store.load(state.session_id) is not None

    async def test_record_without_timestamp_is_accepted(self, clock) -> None:
        store = _store(clock)
        raw = json.dumps({"currentStep": "event", "completedSteps": ["identity"], "sessionId": "reg_x"})
        await store.shared_tier.set(store.shared_key, raw)

        restored = await store.load("reg_other")
        assert restored.current_step == Step.EVENT
        assert restored.last_saved_at is None

    async def test_naive_timestamp_is_treated_as_utc(self, clock) -> None:
        store = _store(clock)
        naive = (clock() - timedelta(hours=30)).replace(tzinfo=None)
        raw = json.dumps({"currentStep": "event", "lastSavedAt": naive.isoformat()})
        await store.shared_tier.set(store.shared_key, raw)

        assert await store.load("reg_any") is None


# ─────────────────────────── Record format ────────────────────────────────────

class TestRecordFormat:
    def test_wire_keys_are_camel_case(self, clock) -> None:
        raw = json.loads(encode_state(_state(clock, selected_event_id=4)))
        assert set(raw) == {
            "currentStep", "completedSteps", "role", "selectedEventId",
            "personalInfo", "transportSelection", "sessionId", "lastSavedAt",
        }
        assert raw["completedSteps"] == ["identity"]

    def test_completed_steps_written_in_canonical_order(self, clock) -> None:
        state = _state(clock, completed_steps={Step.TRANSPORT, Step.IDENTITY, Step.EVENT})
        raw = json.loads(encode_state(state))
        assert raw["completedSteps"] == ["identity", "event", "transport"]

    async def test_unknown_fields_are_ignored(self, clock) -> None:
        store = _store(clock)
        raw = json.loads(encode_state(_state(clock)))
        raw["theme"] = "dark"
        raw["schemaVersion"] = 7
        await store.shared_tier.set(store.shared_key, json.dumps(raw))

        restored = await store.load("reg_any")
        assert restored.role == Role.VOLUNTEER

    async def test_unknown_completed_steps_are_dropped(self, clock) -> None:
        store = _store(clock)
        raw = json.dumps({"currentStep": "event", "completedSteps": ["identity", "payment"]})
        await store.shared_tier.set(store.shared_key, raw)

        restored = await store.load("reg_any")
        assert restored.completed_steps == {Step.IDENTITY}

    async def test_corrupt_json_is_rejected(self, clock) -> None:
        store = _store(clock)
        await store.shared_tier.set(store.shared_key, "{not json")
        assert await store.load("reg_any") is None

    async def test_unknown_current_step_is_rejected(self, clock) -> None:
        store = _store(clock)
        await store.shared_tier.set(store.shared_key, json.dumps({"currentStep": "payment"}))
        assert await store.load("reg_any") is None

    async def test_wrong_types_are_rejected(self, clock) -> None:
        store = _store(clock)
        await store.shared_tier.set(store.shared_key, json.dumps({"completedSteps": "identity,event"}))
        assert await store.load("reg_any") is None

    def test_record_accepts_python_names(self) -> None:
        record = PersistedFlowRecord(current_step="event", selected_event_id=2)
        assert record.model_dump(by_alias=True)["selectedEventId"] == 2


# ─────────────────────────── SQL tier ─────────────────────────────────────────

class TestSqlKeyValueStore:
    async def test_set_get_overwrite_remove(self, session_factory) -> None:
        kv = SqlKeyValueStore(session_factory)
        assert await kv.get("k") is None

        await kv.set("k", "one")
        assert await kv.get("k") == "one"

        await kv.set("k", "two")
        assert await kv.get("k") == "two"

        await kv.remove("k")
        assert await kv.get("k") is None
        await kv.remove("k")

    async def test_resume_from_sql_shared_tier(self, session_factory) -> None:
        now = datetime.now(timezone.utc)
        shared = SqlKeyValueStore(session_factory)

        first = FlowStateStore(MemoryKeyValueStore(), shared, shared_key="enrollment_flow:42")
        flow = FlowController(store=first)
        flow.set_role(Role.MONK)
        flow.complete_step(Step.IDENTITY)
        await flow.save_to_storage()

        # New process: empty session tier, same database
        second = FlowStateStore(MemoryKeyValueStore(), shared, shared_key="enrollment_flow:42")
        resumed = FlowController(store=second)
        assert await resumed.load_from_storage() is True
        assert resumed.state.role == Role.MONK
        assert resumed.state.last_saved_at >= now
        await flow.flush()
