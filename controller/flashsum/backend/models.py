"""Wire payloads exchanged with the trainer backend."""
from __future__ import annotations

import logging
import math
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


def _clamp_int(value: object, minimum: int, maximum: int) -> int:
    """Lenient integer clamp used for form inputs (garbage falls back to ``minimum``)."""
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return minimum
    if not math.isfinite(number):
        return minimum
    return max(minimum, min(maximum, int(number)))


# ============================================================
# Commands
# ============================================================

class SessionConfigInput(BaseModel):
    """Session configuration requested by the user."""

    digits_per_number: int = Field(..., gt=0)
    number_duration_seconds: float = Field(..., gt=0, allow_inf_nan=False)
    delay_between_numbers_seconds: float = Field(0.0, ge=0, allow_inf_nan=False)
    total_numbers: int = Field(..., gt=0)
    allow_negative_numbers: bool = False


class AutoRepeatConfigInput(BaseModel):
    enabled: bool = True
    repeats: int = 5
    delay_seconds: int = 5

    @field_validator("repeats", mode="before")
    @classmethod
    def _clamp_repeats(cls, value: object) -> int:
        return _clamp_int(value, 1, 20)

    @field_validator("delay_seconds", mode="before")
    @classmethod
    def _clamp_delay(cls, value: object) -> int:
        return _clamp_int(value, 5, 120)


class SessionConfigEffective(BaseModel):
    """Configuration after backend clamping; authoritative for display."""

    model_config = ConfigDict(extra="ignore")

    digits_per_number: int
    number_duration_seconds: float
    delay_between_numbers_seconds: float
    total_numbers: int
    allow_negative_numbers: bool


class AutoRepeatEffective(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool
    repeats: int
    delay_seconds: float


class StartSessionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: int
    effective_config: SessionConfigEffective
    effective_auto_repeat: Optional[AutoRepeatEffective] = None


class ValidationResult(BaseModel):
    """Outcome of one submitted answer.

    ``delta`` is always ``provided_sum - expected_sum`` and ``correct`` holds
    exactly when the delta is zero. Both are derived from the two sums, so a
    backend delta saturated at the int64 bounds never disagrees with them.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    expected_sum: int
    provided_sum: int
    correct: bool
    delta: int

    @model_validator(mode="before")
    @classmethod
    def _derive_outcome(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        expected, provided = data.get("expected_sum"), data.get("provided_sum")
        if isinstance(expected, int) and isinstance(provided, int):
            delta = provided - expected
            if data.get("delta") != delta:
                logger.debug("Backend delta %s replaced by %s", data.get("delta"), delta)
            data = {**data, "delta": delta, "correct": delta == 0}
        return data

    @classmethod
    def from_sums(cls, expected_sum: int, provided_sum: int) -> "ValidationResult":
        delta = provided_sum - expected_sum
        return cls(expected_sum=expected_sum, provided_sum=provided_sum, correct=delta == 0, delta=delta)


# ============================================================
# Push events
# ============================================================

class CountdownTick(BaseModel):
    value: str

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, value: object) -> str:
        return "" if value is None else str(value)


class ShowNumber(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: int
    index: int
    total: int
    value: int = Field(..., ge=INT64_MIN, le=INT64_MAX)
    running_sum: int
    emitted_at_ms: Optional[int] = None


class ClearScreen(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: Optional[int] = None
    index: Optional[int] = None
    emitted_at_ms: Optional[int] = None


class AutoRepeatWaiting(BaseModel):
    """Auto-repeat armed; ``next_start_at_ms`` is an epoch deadline when known."""

    model_config = ConfigDict(extra="ignore")

    session_id: int
    next_start_at_ms: Optional[int] = None
    remaining: int = Field(..., ge=0)


class AutoRepeatTick(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: int
    seconds_left: int = Field(..., ge=0)
    remaining: int = Field(..., ge=0)


class SessionComplete(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: int
    numbers: List[int]
    sum: int


class SubmitAnswerResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    validation: ValidationResult
    auto_repeat_waiting: Optional[AutoRepeatWaiting] = None


BackendEvent = Union[CountdownTick, ShowNumber, ClearScreen, AutoRepeatWaiting, AutoRepeatTick, SessionComplete]

EVENT_MODELS = {
    "countdown_tick": CountdownTick,
    "show_number": ShowNumber,
    "clear_screen": ClearScreen,
    "auto_repeat_waiting": AutoRepeatWaiting,
    "auto_repeat_tick": AutoRepeatTick,
    "session_complete": SessionComplete,
}


__all__ = [
    "AutoRepeatConfigInput",
    "AutoRepeatEffective",
    "AutoRepeatTick",
    "AutoRepeatWaiting",
    "BackendEvent",
    "ClearScreen",
    "CountdownTick",
    "EVENT_MODELS",
    "SessionComplete",
    "SessionConfigEffective",
    "SessionConfigInput",
    "ShowNumber",
    "StartSessionResponse",
    "SubmitAnswerResponse",
    "ValidationResult",
]
