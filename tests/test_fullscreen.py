from __future__ import annotations

import json

import httpx
import pytest

from flashsum.config import FullscreenSettings
from flashsum.errors import FullscreenUnavailable
from flashsum.fullscreen import FullscreenCoordinator, HeadlessWindow, ShellWindow
from support import FakeWindow

FAST = FullscreenSettings(poll_interval_ms=1, poll_attempts=3)


class LaggingWindow(FakeWindow):
    """Reports fullscreen only after a few queries."""

    def __init__(self, lag: int) -> None:
        super().__init__()
        self.lag = lag
        self.queries = 0

    async def is_fullscreen(self) -> bool:
        self.queries += 1
        return self.fullscreen and self.queries > self.lag


@pytest.mark.asyncio
async def test_enter_and_confirm_succeeds_once_window_reports_fullscreen() -> None:
    window = LaggingWindow(lag=2)

    await FullscreenCoordinator(window, FAST).enter_and_confirm()

    assert window.queries == 3
    assert window.set_calls == [True]


@pytest.mark.asyncio
async def test_enter_and_confirm_gives_up_after_bounded_polls() -> None:
    window = LaggingWindow(lag=10)

    with pytest.raises(FullscreenUnavailable):
        await FullscreenCoordinator(window, FAST).enter_and_confirm()

    assert window.queries == FAST.poll_attempts


@pytest.mark.asyncio
async def test_refused_request_still_passes_if_already_fullscreen() -> None:
    window = FakeWindow()
    window.fullscreen = True
    window.refuse = True

    await FullscreenCoordinator(window, FAST).enter_and_confirm()


@pytest.mark.asyncio
async def test_query_failure_is_unavailable() -> None:
    window = FakeWindow()
    window.fail_query = True

    with pytest.raises(FullscreenUnavailable) as excinfo:
        await FullscreenCoordinator(window, FAST).enter_and_confirm()
    assert excinfo.value.user_message == "Unable to enter fullscreen"


@pytest.mark.asyncio
async def test_ensure_only_toggles_on_change_and_swallows_errors() -> None:
    window = FakeWindow()
    coordinator = FullscreenCoordinator(window, FAST)

    await coordinator.ensure(False)
    assert window.set_calls == []

    await coordinator.ensure(True)
    assert window.fullscreen is True

    window.fail_query = True
    await coordinator.ensure(False)
    assert window.fullscreen is True


@pytest.mark.asyncio
async def test_headless_window_round_trip() -> None:
    window = HeadlessWindow()
    await FullscreenCoordinator(window, FAST).enter_and_confirm()
    assert window.fullscreen is True


@pytest.mark.asyncio
async def test_shell_window_uses_window_api(settings) -> None:
    seen = []
    current = {"fullscreen": False}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        if request.method == "PUT":
            current["fullscreen"] = json.loads(request.content)["enabled"]
            return httpx.Response(204)
        return httpx.Response(200, json=current)

    window = ShellWindow(settings, transport=httpx.MockTransport(handler))
    try:
        await FullscreenCoordinator(window, FAST).enter_and_confirm()
    finally:
        await window.aclose()

    assert seen == [("PUT", "/window/fullscreen"), ("GET", "/window/fullscreen")]
    assert current["fullscreen"] is True


@pytest.mark.asyncio
async def test_shell_window_http_error_counts_as_unavailable(settings) -> None:
    window = ShellWindow(settings, transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    try:
        with pytest.raises(FullscreenUnavailable):
            await FullscreenCoordinator(window, FAST).enter_and_confirm()
    finally:
        await window.aclose()
