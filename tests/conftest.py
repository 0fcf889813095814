from __future__ import annotations

import pytest

from flashsum.config import AutoRepeatSettings, FullscreenSettings, Settings
from flashsum.fullscreen import FullscreenCoordinator
from flashsum.session_controller import SessionController
from support import FakeClock, FakeGateway, FakeWindow


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        log_directory=tmp_path,
        window_mode="headless",
        fullscreen=FullscreenSettings(poll_interval_ms=1, poll_attempts=3),
        auto_repeat=AutoRepeatSettings(bridge_interval_seconds=0.01),
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def window() -> FakeWindow:
    return FakeWindow()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def controller(settings, gateway, window, clock) -> SessionController:
    return SessionController(
        gateway=gateway,
        fullscreen=FullscreenCoordinator(window, settings.fullscreen),
        settings=settings,
        clock=clock,
    )
