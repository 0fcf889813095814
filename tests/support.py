"""Fakes and drivers shared by the controller tests."""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from flashsum.backend.models import (
    AutoRepeatConfigInput,
    AutoRepeatEffective,
    AutoRepeatWaiting,
    CountdownTick,
    SessionComplete,
    SessionConfigEffective,
    SessionConfigInput,
    ShowNumber,
    StartSessionResponse,
    SubmitAnswerResponse,
    ValidationResult,
)
from flashsum.session_controller import SessionController


EFFECTIVE_CONFIG = SessionConfigEffective(
    digits_per_number=2,
    number_duration_seconds=0.5,
    delay_between_numbers_seconds=0.0,
    total_numbers=3,
    allow_negative_numbers=True,
)


def session_config() -> SessionConfigInput:
    return SessionConfigInput(
        digits_per_number=2,
        number_duration_seconds=0.5,
        delay_between_numbers_seconds=0.0,
        total_numbers=3,
        allow_negative_numbers=True,
    )


def auto_repeat_config(repeats: int = 3) -> AutoRepeatConfigInput:
    return AutoRepeatConfigInput(enabled=True, repeats=repeats, delay_seconds=5)


def start_response(session_id: int = 1, *, repeats: Optional[int] = None) -> StartSessionResponse:
    effective_auto_repeat = (
        AutoRepeatEffective(enabled=True, repeats=repeats, delay_seconds=5.0) if repeats is not None else None
    )
    return StartSessionResponse(
        session_id=session_id,
        effective_config=EFFECTIVE_CONFIG,
        effective_auto_repeat=effective_auto_repeat,
    )


class FakeGateway:
    """Records commands; each response or error is configurable per test."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.start_response = start_response()
        self.start_error: Optional[Exception] = None
        self.start_gate: Optional[asyncio.Event] = None
        self.submit_response: Optional[SubmitAnswerResponse] = None
        self.submit_error: Optional[Exception] = None
        self.submit_gate: Optional[asyncio.Event] = None
        self.observed_response: Optional[AutoRepeatWaiting] = None
        self.observed_error: Optional[Exception] = None
        self.cancel_error: Optional[Exception] = None
        self.closed = False

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def start_session(self, config, auto_repeat=None):
        self.calls.append(("start_session", config, auto_repeat))
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.start_error is not None:
            raise self.start_error
        return self.start_response

    async def stop_session(self) -> None:
        self.calls.append(("stop_session",))

    async def cancel_auto_repeat(self) -> None:
        self.calls.append(("cancel_auto_repeat",))
        if self.cancel_error is not None:
            raise self.cancel_error

    async def _submit(self, name: str, session_id: int, value: Any) -> SubmitAnswerResponse:
        self.calls.append((name, session_id, value))
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        if self.submit_error is not None:
            raise self.submit_error
        if self.submit_response is not None:
            return self.submit_response
        return SubmitAnswerResponse(validation=ValidationResult.from_sums(10, int(value)))

    async def submit_answer(self, session_id: int, provided_sum: int) -> SubmitAnswerResponse:
        return await self._submit("submit_answer", session_id, provided_sum)

    async def submit_answer_text(self, session_id: int, provided_text: str) -> SubmitAnswerResponse:
        return await self._submit("submit_answer_text", session_id, provided_text.replace(",", "").strip())

    async def mark_validated(self, session_id: int) -> Optional[AutoRepeatWaiting]:
        self.calls.append(("mark_validated", session_id))
        if self.observed_error is not None:
            raise self.observed_error
        return self.observed_response

    async def acknowledge_complete(self, session_id: int) -> Optional[AutoRepeatWaiting]:
        self.calls.append(("acknowledge_complete", session_id))
        if self.observed_error is not None:
            raise self.observed_error
        return self.observed_response

    async def aclose(self) -> None:
        self.closed = True


class FakeWindow:
    def __init__(self) -> None:
        self.fullscreen = False
        self.refuse = False
        self.fail_query = False
        self.set_calls: list[bool] = []

    async def is_fullscreen(self) -> bool:
        if self.fail_query:
            raise RuntimeError("window query failed")
        return self.fullscreen

    async def set_fullscreen(self, enabled: bool) -> None:
        self.set_calls.append(enabled)
        if self.refuse:
            raise RuntimeError("window manager refused")
        self.fullscreen = enabled

    async def aclose(self) -> None:
        return None


class FakeClock:
    def __init__(self, now_ms: int = 1_700_000_000_000) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


async def drive_to_complete(
    controller: SessionController,
    gateway: FakeGateway,
    *,
    session_id: int,
    numbers: list[int],
    auto_repeat: Optional[AutoRepeatConfigInput] = None,
) -> None:
    """Run a full start → countdown → flashing → complete cycle."""
    gateway.start_response = start_response(session_id, repeats=auto_repeat.repeats if auto_repeat else None)
    await controller.start(session_config(), auto_repeat)
    for value in ("3", "2", "1"):
        await controller.handle_event(CountdownTick(value=value))
    running = 0
    for index, value in enumerate(numbers, start=1):
        running += value
        await controller.handle_event(
            ShowNumber(session_id=session_id, index=index, total=len(numbers), value=value, running_sum=running)
        )
    await controller.handle_event(SessionComplete(session_id=session_id, numbers=numbers, sum=sum(numbers)))
