"""Shared controller state definitions for the flashsum trainer."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from .backend.models import AutoRepeatEffective, SessionConfigEffective, ValidationResult


class Phase(str, enum.Enum):
    """
    Controller phases in chronological order:

    1. IDLE       - Configuration form, no session
    2. STARTING   - Fullscreen handshake and start command in flight
    3. COUNTDOWN  - Backend counting down (3, 2, 1)
    4. FLASHING   - Numbers being flashed
    5. COMPLETE   - Answer screen → IDLE (or rollover into the next session)
    """
    IDLE = "idle"
    STARTING = "starting"
    COUNTDOWN = "countdown"
    FLASHING = "flashing"
    COMPLETE = "complete"


class AnswerMode(str, enum.Enum):
    REVEAL = "reveal"
    TYPE = "type"


ACTIVE_PHASES: FrozenSet[Phase] = frozenset({Phase.STARTING, Phase.COUNTDOWN, Phase.FLASHING})

FORWARD_TRANSITIONS: FrozenSet[Tuple[Phase, Phase]] = frozenset(
    {
        (Phase.IDLE, Phase.STARTING),
        (Phase.STARTING, Phase.COUNTDOWN),
        (Phase.COUNTDOWN, Phase.FLASHING),
        (Phase.FLASHING, Phase.COMPLETE),
        (Phase.COMPLETE, Phase.IDLE),
    }
)
CANCEL_TRANSITIONS: FrozenSet[Tuple[Phase, Phase]] = frozenset((phase, Phase.IDLE) for phase in ACTIVE_PHASES)
# Auto-repeat: the backend starts the next session while the answer screen is up.
ROLLOVER_TRANSITIONS: FrozenSet[Tuple[Phase, Phase]] = frozenset(
    {
        (Phase.COMPLETE, Phase.COUNTDOWN),
        (Phase.COMPLETE, Phase.FLASHING),
    }
)
ALLOWED_TRANSITIONS = FORWARD_TRANSITIONS | CANCEL_TRANSITIONS | ROLLOVER_TRANSITIONS


def is_valid_transition(current: Phase, target: Phase) -> bool:
    """Staying in the current phase is always allowed."""
    return current == target or (current, target) in ALLOWED_TRANSITIONS


@dataclass
class AutoRepeatSchedule:
    enabled: bool = False
    repeats_remaining: int = 0
    seconds_left: Optional[int] = None
    next_start_at_ms: Optional[int] = None
    anchor_session_id: Optional[int] = None
    tick_session_id: Optional[int] = None

    def clear_countdown(self) -> None:
        self.seconds_left = None
        self.next_start_at_ms = None
        self.anchor_session_id = None
        self.tick_session_id = None


@dataclass
class ControllerState:
    """The single state record owned by ``SessionController``."""

    phase: Phase = Phase.IDLE
    session_id: Optional[int] = None
    numbers: List[int] = field(default_factory=list)
    running_sum: int = 0
    expected_sum: Optional[int] = None
    display_text: str = ""
    countdown_tick_id: int = 0
    typed_answer: str = ""
    validation: Optional[ValidationResult] = None
    validation_message: str = ""
    has_validated: bool = False
    show_answer: bool = False
    answer_mode: AnswerMode = AnswerMode.REVEAL
    auto_repeat: AutoRepeatSchedule = field(default_factory=AutoRepeatSchedule)
    last_error: Optional[str] = None
    effective_config: Optional[SessionConfigEffective] = None
    effective_auto_repeat: Optional[AutoRepeatEffective] = None

    def reset_answer(self) -> None:
        self.typed_answer = ""
        self.validation = None
        self.validation_message = ""
        self.has_validated = False
        self.show_answer = False

    def reset_capture(self) -> None:
        self.numbers = []
        self.running_sum = 0
        self.expected_sum = None


@dataclass
class ControllerEvent:
    """Event payload distributed to UI clients over the local WebSocket."""

    type: str
    data: Dict[str, Any]
    phase: Phase
    error: Optional[str] = None


__all__ = [
    "ACTIVE_PHASES",
    "ALLOWED_TRANSITIONS",
    "AnswerMode",
    "AutoRepeatSchedule",
    "ControllerEvent",
    "ControllerState",
    "Phase",
    "is_valid_transition",
]
