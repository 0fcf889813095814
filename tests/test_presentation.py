from __future__ import annotations

from flashsum.backend.models import ValidationResult
from flashsum.presentation import auto_repeat_status, format_validation_summary, render_state
from flashsum.state import ControllerState, Phase


def test_summary_for_correct_answer() -> None:
    summary = format_validation_summary(ValidationResult.from_sums(10, 10))
    assert summary.splitlines() == ["Correct ✅", "Expected answer: 10", "You entered: 10"]


def test_summary_for_wrong_answer_shows_signed_difference() -> None:
    summary = format_validation_summary(ValidationResult.from_sums(10, 7))
    assert summary.splitlines()[0] == "Incorrect"
    assert summary.splitlines()[-1] == "Difference: -3"


def test_negative_numbers_split_sign_from_magnitude() -> None:
    view = render_state(ControllerState(phase=Phase.FLASHING, display_text="-42"))
    assert view["display_negative"] is True
    assert view["display_magnitude"] == "42"
    assert view["is_running"] is True


def test_answer_list_only_on_complete() -> None:
    flashing = render_state(ControllerState(phase=Phase.FLASHING, numbers=[3, -1]))
    complete = render_state(ControllerState(phase=Phase.COMPLETE, numbers=[3, -1], expected_sum=2))

    assert flashing["answer_text"] == ""
    assert complete["answer_text"] == "3\n-1"
    assert complete["answer_sum"] == 2
    assert complete["is_running"] is False


def test_message_takes_priority_over_result() -> None:
    state = ControllerState(validation=ValidationResult.from_sums(1, 1), validation_message="Backend is unreachable")
    assert render_state(state)["validation_summary"] == "Backend is unreachable"


def test_auto_repeat_status_needs_validated_complete_round() -> None:
    state = ControllerState(phase=Phase.COMPLETE)
    state.auto_repeat.enabled = True
    state.auto_repeat.repeats_remaining = 2
    state.auto_repeat.seconds_left = 4
    assert auto_repeat_status(state) is None

    state.has_validated = True
    assert auto_repeat_status(state) == "Next question in 4s · 2 remaining"

    state.auto_repeat.enabled = False
    assert auto_repeat_status(state) is None
