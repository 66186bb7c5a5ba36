"""
Enrollment wizard controller.

Owns one FlowState and is passed explicitly to whoever drives the wizard.

Flow:
  identity → event → personal-info → transport → confirmation → success

Navigation rules (go_to_step):
  * staying on the current step is always allowed
  * any completed step can be revisited
  * the next step opens only once the current one is completed
Everything else is silently ignored. Navigation is synchronous and never
raises; persistence runs as a debounced background task on the event loop.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Set, Union

from enrollbot.config import settings
from enrollbot.errors import InvalidFlowInput, NavigationGuardViolation
from enrollbot.models.models import Role
from enrollbot.services.flow_state import FlowState, Step, TransportSelection, new_session_id, utcnow
from enrollbot.services.flow_storage import FlowStateStore
from enrollbot.validators import PersonalInfo

logger = logging.getLogger(__name__)


class FlowController:
    def __init__(
        self,
        store: Optional[FlowStateStore] = None,
        state: Optional[FlowState] = None,
        debounce: float = settings.FLOW_SAVE_DEBOUNCE_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._state = state if state is not None else FlowState()
        self._debounce = debounce
        self._clock = clock
        self._pending_save: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        # Writes and clears reach the store one at a time, in call order
        self._save_lock = asyncio.Lock()

    # ── Read access ──────────────────────────────────────────────────────────

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def current_step(self) -> str:
        return self._state.current_step

    @property
    def session_id(self) -> str:
        return self._state.session_id

    def can_go_to_step(self, step: str) -> bool:
        target = Step.index(step)
        if target < 0:
            return False
        current = Step.index(self._state.current_step)
        if target == current:
            return True
        if step in self._state.completed_steps:
            return True
        return target == current + 1 and self._state.current_step in self._state.completed_steps

    def progress(self) -> int:
        """Display-only percentage; never used for gating."""
        index = Step.index(self._state.current_step)
        return round(100 * (index + 1) / len(Step.ORDER))

    # ── Navigation ───────────────────────────────────────────────────────────

    def go_to_step(self, step: str) -> bool:
        """Move to step if the guard allows it. Returns whether it moved."""
        if not self.can_go_to_step(step):
            logger.debug("Navigation blocked: %s", NavigationGuardViolation(self._state.current_step, step))
            return False
        self._state.current_step = step
        self._state.last_error = None
        self._schedule_save()
        return True

    def go_to_next_step(self) -> bool:
        index = Step.index(self._state.current_step)
        if index >= len(Step.ORDER) - 1:
            return False
        return self.go_to_step(Step.ORDER[index + 1])

    def go_to_previous_step(self) -> bool:
        index = Step.index(self._state.current_step)
        if index <= 0:
            return False
        return self.go_to_step(Step.ORDER[index - 1])

    def complete_step(self, step: str) -> None:
        if not Step.is_valid(step):
            raise InvalidFlowInput("step", step)
        self._state.completed_steps.add(step)
        self._touch()

    # ── Step payloads ────────────────────────────────────────────────────────

    def set_role(self, role: str) -> None:
        if role not in Role.ALL:
            raise InvalidFlowInput("role", role)
        self._state.role = role
        self._touch()

    def set_event(self, event_id: int) -> None:
        if isinstance(event_id, bool) or not isinstance(event_id, int):
            raise InvalidFlowInput("event_id", event_id)
        self._state.selected_event_id = event_id
        self._touch()

    def set_personal_info(self, info: Union[PersonalInfo, Dict[str, Any]]) -> None:
        if isinstance(info, PersonalInfo):
            info = info.model_dump(mode="json", exclude_none=True)
        self._state.personal_info = dict(info)
        self._touch()

    def set_transport(self, selection: Optional[TransportSelection]) -> None:
        self._state.transport_selection = selection
        self._touch()

    def set_loading(self, loading: bool) -> None:
        self._state.loading = loading

    def set_error(self, message: Optional[str]) -> None:
        self._state.last_error = message
        self._state.loading = False

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def reset_flow(self) -> None:
        """Back to a blank wizard with a fresh session id; persisted copies are dropped."""
        previous = self._state.session_id
        self._cancel_pending_save()
        self._state = FlowState(session_id=new_session_id())
        self._spawn(self._clear_session(previous))

    async def save_to_storage(self) -> bool:
        if self._store is None:
            return False
        async with self._save_lock:
            self._state.last_saved_at = self._clock()
            return await self._store.save(self._state)

    async def load_from_storage(self) -> bool:
        """
        Resume a saved wizard. True if a valid, non-expired record was
        found; the caller then continues from state.current_step.
        """
        if self._store is None:
            return False
        restored = await self._store.load(self._state.session_id)
        if restored is None:
            return False
        self._cancel_pending_save()
        self._state = restored
        logger.info(
            "Resumed flow %s at step %s", restored.session_id, restored.current_step
        )
        return True

    async def clear_storage(self) -> None:
        self._cancel_pending_save()
        await self._clear_session(self._state.session_id)

    async def flush(self) -> None:
        """Write a pending debounced save now and wait for background work."""
        if self._pending_save is not None and not self._pending_save.done():
            self._cancel_pending_save()
            await self.save_to_storage()
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Internals ────────────────────────────────────────────────────────────

    def _touch(self) -> None:
        self._state.last_saved_at = self._clock()
        self._schedule_save()

    def _schedule_save(self) -> None:
        if self._store is None:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; flow %s not auto-saved", self._state.session_id)
            return
        self._cancel_pending_save()
        self._pending_save = self._spawn(self._debounced_save())

    async def _debounced_save(self) -> None:
        await asyncio.sleep(self._debounce)
        # Sleep is over: from here on the write is not cancelled
        if self._pending_save is asyncio.current_task():
            self._pending_save = None
        await self.save_to_storage()

    async def _clear_session(self, session_id: str) -> None:
        if self._store is not None:
            async with self._save_lock:
                await self._store.clear(session_id)

    def _cancel_pending_save(self) -> None:
        """Cancel a debounced save that is still waiting; a running write finishes."""
        if self._pending_save is not None and not self._pending_save.done():
            self._pending_save.cancel()
        self._pending_save = None

    def _spawn(self, coro) -> Optional[asyncio.Task]:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            return None
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
