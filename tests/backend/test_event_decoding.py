from __future__ import annotations

import pytest

from flashsum.backend.models import (
    AutoRepeatTick,
    AutoRepeatWaiting,
    ClearScreen,
    CountdownTick,
    SessionComplete,
    ShowNumber,
)
from flashsum.backend.ws_client import EventSubscriber, decode_event


@pytest.mark.parametrize(
    ("message", "expected_type"),
    [
        ({"event": "countdown_tick", "payload": "3"}, CountdownTick),
        ({"event": "countdown_tick", "payload": 2}, CountdownTick),
        ({"event": "countdown_tick", "payload": {"value": "1"}}, CountdownTick),
        (
            {"event": "show_number", "payload": {"session_id": 1, "index": 1, "total": 5, "value": -7, "running_sum": -7}},
            ShowNumber,
        ),
        ({"event": "clear_screen", "payload": None}, ClearScreen),
        ({"event": "clear_screen", "payload": {"session_id": 1, "index": 2}}, ClearScreen),
        ({"event": "auto_repeat_waiting", "payload": {"session_id": 1, "remaining": 2}}, AutoRepeatWaiting),
        ({"event": "auto_repeat_tick", "payload": {"session_id": 1, "seconds_left": 3, "remaining": 2}}, AutoRepeatTick),
        ({"event": "session_complete", "payload": {"session_id": 1, "numbers": [1, 2], "sum": 3}}, SessionComplete),
    ],
)
def test_decode_known_events(message, expected_type) -> None:
    assert isinstance(decode_event(message), expected_type)


def test_countdown_scalar_payload_becomes_value() -> None:
    event = decode_event({"event": "countdown_tick", "payload": 2})
    assert event == CountdownTick(value="2")


@pytest.mark.parametrize(
    "message",
    [
        {"event": "mystery", "payload": {}},
        {"payload": {}},
        {"event": 7},
        {"event": "show_number", "payload": {"session_id": 1}},
        {"event": "session_complete", "payload": "done"},
        {"event": "auto_repeat_tick", "payload": {"session_id": 1, "seconds_left": -1, "remaining": 0}},
    ],
)
def test_decode_rejects_unknown_or_malformed(message) -> None:
    assert decode_event(message) is None


@pytest.mark.asyncio
async def test_dispatch_forwards_events_and_survives_handler_errors(settings) -> None:
    subscriber = EventSubscriber(settings)
    received = []

    async def handler(event) -> None:
        received.append(event)
        raise RuntimeError("handler blew up")

    subscriber._handler = handler
    await subscriber.dispatch({"event": "countdown_tick", "payload": "3"})
    await subscriber.dispatch({"event": "unknown", "payload": None})
    await subscriber.dispatch({"event": "clear_screen"})

    assert [type(event) for event in received] == [CountdownTick, ClearScreen]


@pytest.mark.asyncio
async def test_ping_without_connection_is_harmless(settings) -> None:
    subscriber = EventSubscriber(settings)

    await subscriber.dispatch({"type": "ping"})

    assert subscriber.connected is False


@pytest.mark.asyncio
async def test_disconnect_without_connect(settings) -> None:
    subscriber = EventSubscriber(settings)
    await subscriber.disconnect()
    assert subscriber.connected is False
