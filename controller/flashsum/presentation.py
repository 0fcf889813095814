"""Projection of controller state into what the foreground surface draws."""
from __future__ import annotations

from typing import Any, Dict, Optional

from .backend.models import ValidationResult
from .state import ACTIVE_PHASES, ControllerState, Phase


def format_validation_summary(result: ValidationResult) -> str:
    lines = [
        "Correct ✅" if result.correct else "Incorrect",
        f"Expected answer: {result.expected_sum}",
        f"You entered: {result.provided_sum}",
    ]
    if not result.correct:
        lines.append(f"Difference: {result.delta:+d}")
    return "\n".join(lines)


def auto_repeat_status(state: ControllerState) -> Optional[str]:
    """'Next question in Ns · R remaining' once a validated round armed auto-repeat."""
    schedule = state.auto_repeat
    if not (schedule.enabled and state.has_validated and state.phase == Phase.COMPLETE):
        return None
    if schedule.next_start_at_ms is None and schedule.seconds_left is None:
        return None
    return f"Next question in {schedule.seconds_left or 0}s · {schedule.repeats_remaining} remaining"


def render_state(state: ControllerState) -> Dict[str, Any]:
    if state.validation_message:
        summary = state.validation_message
    elif state.validation is not None:
        summary = format_validation_summary(state.validation)
    else:
        summary = ""

    negative = state.display_text.startswith("-")
    return {
        "phase": state.phase.value,
        "is_running": state.phase in ACTIVE_PHASES,
        "session_id": state.session_id,
        "display_text": state.display_text,
        "display_magnitude": state.display_text[1:] if negative else state.display_text,
        "display_negative": negative,
        "countdown_parity": "a" if state.countdown_tick_id % 2 == 0 else "b",
        "numbers": list(state.numbers),
        "answer_text": "\n".join(str(n) for n in state.numbers) if state.phase == Phase.COMPLETE else "",
        "answer_sum": state.expected_sum,
        "answer_mode": state.answer_mode.value,
        "show_answer": state.show_answer,
        "typed_answer": state.typed_answer,
        "has_validated": state.has_validated,
        "validation": state.validation.model_dump() if state.validation else None,
        "validation_summary": summary,
        "auto_repeat": {
            "enabled": state.auto_repeat.enabled,
            "remaining": state.auto_repeat.repeats_remaining,
            "seconds_left": state.auto_repeat.seconds_left,
            "status": auto_repeat_status(state),
        },
        "error": state.last_error,
        "effective_config": state.effective_config.model_dump() if state.effective_config else None,
        "effective_auto_repeat": (
            state.effective_auto_repeat.model_dump() if state.effective_auto_repeat else None
        ),
    }


__all__ = ["auto_repeat_status", "format_validation_summary", "render_state"]
