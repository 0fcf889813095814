"""Session synchronization between the backend event stream and the local UI."""
from __future__ import annotations

import asyncio
import logging
import math
import time
from asyncio import QueueEmpty
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, List, Optional, TypeVar

from .answers import parse_answer_text
from .backend.http_client import CommandGateway
from .backend.models import (
    AutoRepeatConfigInput,
    AutoRepeatTick,
    AutoRepeatWaiting,
    BackendEvent,
    ClearScreen,
    CountdownTick,
    SessionComplete,
    SessionConfigInput,
    ShowNumber,
    StartSessionResponse,
    SubmitAnswerResponse,
    ValidationResult,
)
from .config import Settings, get_settings
from .errors import CommandFailed, FullscreenUnavailable, NoActiveSession, ValidationInputError
from .fullscreen import FullscreenCoordinator
from .presentation import render_state
from .state import ACTIVE_PHASES, AnswerMode, ControllerEvent, ControllerState, Phase, is_valid_transition

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], int]


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class SessionController:
    """Owns phase, session identity and auto-repeat reconciliation.

    Everything runs on one event loop. Event handlers never await a backend
    command; command responses are applied only while still relevant (the start
    epoch or the session id they were issued for is unchanged), so a cancel
    always wins over a late start response.
    """

    def __init__(
        self,
        *,
        gateway: CommandGateway,
        fullscreen: FullscreenCoordinator,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._gateway = gateway
        self._fullscreen = fullscreen
        self._clock = clock or _epoch_ms
        self._state = ControllerState()
        self._epoch = 0
        self._ui_subscribers: List[asyncio.Queue[ControllerEvent]] = []
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._bridge_task: Optional[asyncio.Task[None]] = None
        self._fullscreen_task: Optional[asyncio.Task[None]] = None
        self._fullscreen_target: Optional[bool] = None

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def gateway(self) -> CommandGateway:
        return self._gateway

    @property
    def fullscreen(self) -> FullscreenCoordinator:
        return self._fullscreen

    def snapshot(self) -> dict[str, Any]:
        return render_state(self._state)

    # ============================================================
    # UI subscribers
    # ============================================================

    def register_ui(self) -> asyncio.Queue[ControllerEvent]:
        queue: asyncio.Queue[ControllerEvent] = asyncio.Queue(maxsize=self.settings.performance.ui_event_queue_size)
        self._ui_subscribers.append(queue)
        queue.put_nowait(self._state_event())
        return queue

    def unregister_ui(self, queue: asyncio.Queue[ControllerEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    def _state_event(self) -> ControllerEvent:
        return ControllerEvent(
            type="state",
            data=render_state(self._state),
            phase=self._state.phase,
            error=self._state.last_error,
        )

    async def _publish(self) -> None:
        """Broadcast the current state; slow subscribers lose their oldest snapshot."""
        event = self._state_event()
        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast state to subscriber: %s", e)

    # ============================================================
    # User operations
    # ============================================================

    async def start(
        self,
        config: SessionConfigInput,
        auto_repeat: Optional[AutoRepeatConfigInput] = None,
    ) -> Optional[StartSessionResponse]:
        state = self._state
        if state.phase != Phase.IDLE:
            logger.info("Start ignored; phase is %s", state.phase.value)
            return None

        # Clean slate before anything is awaited so early events land on it.
        self._reset_session(clear_remaining=True)
        state.last_error = None
        state.effective_config = None
        state.effective_auto_repeat = None
        repeat = auto_repeat if auto_repeat is not None and auto_repeat.enabled else None
        state.auto_repeat.enabled = repeat is not None
        state.auto_repeat.repeats_remaining = repeat.repeats if repeat else 0

        self._epoch += 1
        epoch = self._epoch
        self._transition(Phase.STARTING, cause="start")
        await self._publish()

        try:
            await self._fullscreen.enter_and_confirm()
        except FullscreenUnavailable as exc:
            if epoch == self._epoch:
                await self._abort_start(exc.user_message)
            return None

        if epoch != self._epoch:
            logger.info("Start cancelled during fullscreen handshake")
            if state.phase == Phase.IDLE:
                await self._leave_fullscreen()
            return None

        try:
            response = await self._gateway.start_session(config, repeat)
        except CommandFailed as exc:
            if epoch == self._epoch:
                await self._abort_start(exc.user_message)
            else:
                logger.info("Start failure after cancellation ignored: %s", exc.user_message)
            return None
        except Exception as exc:
            logger.exception("Unexpected error while starting a session: %s", exc)
            if epoch == self._epoch:
                await self._abort_start("Unable to start session")
            return None

        if epoch != self._epoch:
            logger.warning("Discarding start response for session %s; cancelled while in flight", response.session_id)
            if state.phase == Phase.IDLE:
                self._send_stop()
            return None

        if state.session_id is None:
            state.session_id = response.session_id
        elif state.session_id != response.session_id:
            logger.info(
                "Start response names session %s but events already track %s; keeping the event id",
                response.session_id,
                state.session_id,
            )
        state.effective_config = response.effective_config
        state.effective_auto_repeat = response.effective_auto_repeat
        effective_repeat = response.effective_auto_repeat
        if effective_repeat is not None and effective_repeat.enabled:
            state.auto_repeat.enabled = True
            state.auto_repeat.repeats_remaining = effective_repeat.repeats
        else:
            state.auto_repeat.enabled = False
            state.auto_repeat.repeats_remaining = 0
        logger.info("Session %s started (%s)", response.session_id, response.effective_config)
        await self._publish()
        return response

    async def _abort_start(self, message: str) -> None:
        logger.error("Start failed: %s", message)
        self._enter_idle(cause="start_failed")
        self._state.last_error = message
        await self._publish()
        await self._leave_fullscreen()

    async def stop(self) -> None:
        """Cancel the running session; no-op outside starting/countdown/flashing."""
        phase = self._state.phase
        if phase not in ACTIVE_PHASES:
            logger.debug("Stop ignored; phase is %s", phase.value)
            return

        logger.info("Stopping session %s during %s", self._state.session_id, phase.value)
        self._epoch += 1
        self._enter_idle(cause="stop")
        self._send_stop()
        await self._publish()
        await self._leave_fullscreen()

    async def go_home(self) -> None:
        """Leave the answer screen; also cancels any pending backend auto-repeat."""
        if self._state.phase != Phase.COMPLETE:
            logger.debug("Home ignored; phase is %s", self._state.phase.value)
            return

        self._epoch += 1
        self._enter_idle(cause="home")
        self._send_stop()
        await self._publish()
        await self._leave_fullscreen()

    async def cancel_auto_repeat(self) -> None:
        schedule = self._state.auto_repeat
        schedule.enabled = False
        schedule.repeats_remaining = 0
        schedule.clear_countdown()
        self._cancel_bridge()
        await self._publish()
        try:
            await self._gateway.cancel_auto_repeat()
        except CommandFailed as exc:
            logger.error("Cancel auto-repeat failed: %s", exc.user_message)
            self._state.last_error = exc.user_message
            await self._publish()

    async def set_answer_mode(self, mode: AnswerMode) -> bool:
        if self._state.phase != Phase.IDLE:
            logger.info("Answer mode change ignored; phase is %s", self._state.phase.value)
            return False
        self._state.answer_mode = mode
        await self._publish()
        return True

    async def submit_answer(self, provided: int) -> Optional[ValidationResult]:
        session_id = await self._require_session()
        return await self._submit(session_id, lambda: self._gateway.submit_answer(session_id, provided))

    async def submit_answer_text(self, raw_text: str) -> Optional[ValidationResult]:
        self._state.typed_answer = raw_text
        session_id = await self._require_session()
        try:
            parse_answer_text(raw_text)
        except ValidationInputError as exc:
            self._state.validation_message = exc.user_message
            await self._publish()
            raise
        return await self._submit(session_id, lambda: self._gateway.submit_answer_text(session_id, raw_text))

    async def acknowledge_complete(self) -> Optional[AutoRepeatWaiting]:
        """Reveal mode: the user asked to see the answer."""
        session_id = await self._require_session()
        self._state.show_answer = True
        self._state.has_validated = True
        await self._publish()
        return await self._notify_observed(session_id, self._gateway.acknowledge_complete)

    async def mark_validated(self) -> Optional[AutoRepeatWaiting]:
        session_id = await self._require_session()
        self._state.has_validated = True
        await self._publish()
        return await self._notify_observed(session_id, self._gateway.mark_validated)

    async def _require_session(self) -> int:
        session_id = self._state.session_id
        if session_id is None:
            error = NoActiveSession()
            self._state.validation_message = error.user_message
            await self._publish()
            raise error
        return session_id

    async def _submit(
        self,
        session_id: int,
        call: Callable[[], Awaitable[SubmitAnswerResponse]],
    ) -> Optional[ValidationResult]:
        try:
            response = await call()
        except CommandFailed as exc:
            if self._state.session_id == session_id:
                self._state.validation_message = exc.user_message
                await self._publish()
            return None

        if self._state.session_id != session_id:
            logger.warning("Discarding validation for session %s; no longer current", session_id)
            return None

        state = self._state
        state.has_validated = True
        state.validation = response.validation
        state.validation_message = ""
        if response.auto_repeat_waiting is not None:
            self._apply_waiting(response.auto_repeat_waiting)
        await self._publish()
        return response.validation

    async def _notify_observed(
        self,
        session_id: int,
        command: Callable[[int], Awaitable[Optional[AutoRepeatWaiting]]],
    ) -> Optional[AutoRepeatWaiting]:
        try:
            waiting = await command(session_id)
        except CommandFailed as exc:
            logger.warning("Round acknowledgement for session %s failed: %s", session_id, exc.user_message)
            return None
        if waiting is None or self._state.session_id != session_id:
            return waiting
        if self._apply_waiting(waiting):
            await self._publish()
        return waiting

    # ============================================================
    # Backend events
    # ============================================================

    async def handle_event(self, event: BackendEvent) -> None:
        if isinstance(event, CountdownTick):
            changed = self._on_countdown_tick(event)
        elif isinstance(event, ShowNumber):
            changed = self._on_show_number(event)
        elif isinstance(event, ClearScreen):
            changed = self._on_clear_screen(event)
        elif isinstance(event, SessionComplete):
            changed = self._on_session_complete(event)
        elif isinstance(event, AutoRepeatWaiting):
            changed = self._on_auto_repeat_waiting(event)
        elif isinstance(event, AutoRepeatTick):
            changed = self._on_auto_repeat_tick(event)
        else:
            logger.warning("Unhandled backend event %r", event)
            return
        if changed:
            await self._publish()

    def _on_countdown_tick(self, event: CountdownTick) -> bool:
        state = self._state
        if state.phase == Phase.COMPLETE:
            self._reset_for_incoming_session()
        if not self._transition(Phase.COUNTDOWN, cause="countdown_tick"):
            return False
        state.display_text = event.value
        state.countdown_tick_id += 1
        self._request_fullscreen(True)
        return True

    def _on_show_number(self, event: ShowNumber) -> bool:
        state = self._state
        if not is_valid_transition(state.phase, Phase.FLASHING):
            self._log_violation("show_number", Phase.FLASHING)
            return False
        if state.phase == Phase.COMPLETE:
            self._reset_for_incoming_session()

        if state.session_id is not None and event.session_id != state.session_id:
            logger.info("Session %s superseded by %s; starting a fresh capture", state.session_id, event.session_id)
            state.reset_capture()
        state.session_id = event.session_id
        self._transition(Phase.FLASHING, cause="show_number")
        state.numbers.append(event.value)
        state.running_sum += event.value
        state.display_text = str(event.value)
        logger.debug("Number %d/%d for session %s", event.index, event.total, event.session_id)
        self._request_fullscreen(True)
        return True

    def _on_clear_screen(self, event: ClearScreen) -> bool:
        if not self._state.display_text:
            return False
        self._state.display_text = ""
        return True

    def _on_session_complete(self, event: SessionComplete) -> bool:
        state = self._state
        if state.phase == Phase.COMPLETE:
            logger.debug("Duplicate completion for session %s ignored", event.session_id)
            return False
        if state.session_id is not None and event.session_id < state.session_id:
            logger.warning("Stale completion for session %s while tracking %s", event.session_id, state.session_id)
            return False
        if not self._transition(Phase.COMPLETE, cause="session_complete"):
            return False

        if state.numbers != event.numbers:
            logger.info("Local capture %s replaced by backend record %s", state.numbers, event.numbers)
        state.session_id = event.session_id
        state.numbers = list(event.numbers)
        state.running_sum = event.sum
        state.expected_sum = event.sum
        state.display_text = ""
        state.reset_answer()
        state.auto_repeat.clear_countdown()
        self._cancel_bridge()
        self._request_fullscreen(False)
        return True

    def _on_auto_repeat_waiting(self, event: AutoRepeatWaiting) -> bool:
        if event.session_id != self._state.session_id:
            logger.debug("auto_repeat_waiting for session %s ignored; tracking %s", event.session_id, self._state.session_id)
            return False
        return self._apply_waiting(event)

    def _on_auto_repeat_tick(self, event: AutoRepeatTick) -> bool:
        schedule = self._state.auto_repeat
        if not schedule.enabled:
            logger.debug("auto_repeat_tick ignored; auto-repeat disabled")
            return False
        if event.session_id != self._state.session_id:
            logger.debug("auto_repeat_tick for session %s ignored; tracking %s", event.session_id, self._state.session_id)
            return False

        self._cancel_bridge()
        schedule.anchor_session_id = event.session_id
        schedule.tick_session_id = event.session_id
        schedule.seconds_left = event.seconds_left
        schedule.repeats_remaining = event.remaining
        return True

    # ============================================================
    # Auto-repeat bridge
    # ============================================================

    def _apply_waiting(self, payload: AutoRepeatWaiting) -> bool:
        schedule = self._state.auto_repeat
        if not schedule.enabled:
            logger.debug("auto_repeat_waiting ignored; auto-repeat disabled")
            return False

        if schedule.anchor_session_id != payload.session_id:
            self._cancel_bridge()
            schedule.tick_session_id = None
        schedule.anchor_session_id = payload.session_id
        schedule.repeats_remaining = payload.remaining
        schedule.next_start_at_ms = payload.next_start_at_ms

        if schedule.tick_session_id == payload.session_id:
            return True
        if payload.next_start_at_ms is not None:
            schedule.seconds_left = self._seconds_until(payload.next_start_at_ms)
            if schedule.seconds_left > 0:
                self._start_bridge(payload.session_id)
        return True

    def _seconds_until(self, deadline_ms: int) -> int:
        return max(0, math.ceil((deadline_ms - self._clock()) / 1000))

    def _start_bridge(self, anchor: int) -> None:
        if self._bridge_task and not self._bridge_task.done():
            return
        self._bridge_task = asyncio.create_task(self._run_bridge(anchor), name="auto-repeat-bridge")

    def _cancel_bridge(self) -> None:
        if self._bridge_task and not self._bridge_task.done():
            self._bridge_task.cancel()
        self._bridge_task = None

    async def _run_bridge(self, anchor: int) -> None:
        interval = self.settings.auto_repeat.bridge_interval_seconds
        while True:
            await asyncio.sleep(interval)
            schedule = self._state.auto_repeat
            if (
                not schedule.enabled
                or schedule.anchor_session_id != anchor
                or schedule.tick_session_id == anchor
                or schedule.next_start_at_ms is None
            ):
                return
            seconds_left = self._seconds_until(schedule.next_start_at_ms)
            if seconds_left != schedule.seconds_left:
                schedule.seconds_left = seconds_left
                await self._publish()
            if seconds_left == 0:
                return

    # ============================================================
    # Internals
    # ============================================================

    def _transition(self, target: Phase, *, cause: str) -> bool:
        current = self._state.phase
        if current == target:
            return True
        if not is_valid_transition(current, target):
            self._log_violation(cause, target)
            return False
        logger.info("Phase %s → %s (%s)", current.value, target.value, cause)
        self._state.phase = target
        return True

    def _log_violation(self, cause: str, target: Phase) -> None:
        logger.warning(
            "Protocol violation: %s implies %s → %s; ignored",
            cause,
            self._state.phase.value,
            target.value,
        )

    def _reset_session(self, *, clear_remaining: bool) -> None:
        state = self._state
        state.session_id = None
        state.reset_capture()
        state.reset_answer()
        state.display_text = ""
        state.auto_repeat.clear_countdown()
        if clear_remaining:
            state.auto_repeat.repeats_remaining = 0
        self._cancel_bridge()

    def _reset_for_incoming_session(self) -> None:
        """Rollover: clear the answer screen but keep the session id for comparison."""
        state = self._state
        state.reset_answer()
        state.reset_capture()
        state.auto_repeat.clear_countdown()
        self._cancel_bridge()

    def _enter_idle(self, *, cause: str) -> None:
        self._reset_session(clear_remaining=True)
        if not self._transition(Phase.IDLE, cause=cause):
            # Recovery must always be possible.
            self._state.phase = Phase.IDLE

    def _spawn(self, coro: Coroutine[Any, Any, T], name: str) -> asyncio.Task[T]:
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    def _send_stop(self) -> None:
        self._spawn(self._fire("stop_session", self._gateway.stop_session), name="stop-session")

    async def _fire(self, command: str, call: Callable[[], Awaitable[Any]]) -> None:
        try:
            await call()
        except CommandFailed as exc:
            logger.warning("backend.%s failed (ignored): %s", command, exc.user_message)

    def _request_fullscreen(self, enabled: bool) -> None:
        if self._fullscreen_task is not None and not self._fullscreen_task.done():
            if self._fullscreen_target == enabled:
                return
            self._fullscreen_task.cancel()
        self._fullscreen_target = enabled
        self._fullscreen_task = self._spawn(self._fullscreen.ensure(enabled), name="fullscreen-ensure")

    async def _leave_fullscreen(self) -> None:
        # A queued enter request must not win over an explicit exit.
        if self._fullscreen_task is not None and not self._fullscreen_task.done():
            self._fullscreen_task.cancel()
        self._fullscreen_task = None
        self._fullscreen_target = False
        await self._fullscreen.ensure(False)

    async def aclose(self) -> None:
        """Stop the bridge and let fire-and-forget commands finish."""
        self._cancel_bridge()
        pending = list(self._background_tasks)
        if pending:
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                    logger.warning("Background task failed during shutdown: %s", result)
        self._ui_subscribers.clear()


__all__ = ["SessionController"]
