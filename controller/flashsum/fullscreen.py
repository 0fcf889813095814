"""Fullscreen enforcement over the host window."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

import httpx

from .config import FullscreenSettings, Settings
from .errors import FullscreenUnavailable

logger = logging.getLogger(__name__)


class WindowHandle(Protocol):
    """Native window capability; implementations may raise on any call."""

    async def is_fullscreen(self) -> bool: ...

    async def set_fullscreen(self, enabled: bool) -> None: ...


class ShellWindow:
    """Window API exposed by the host shell (``/window/fullscreen``)."""

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._client = httpx.AsyncClient(base_url=settings.shell_api_url, timeout=2.0, transport=transport)

    async def is_fullscreen(self) -> bool:
        response = await self._client.get("/window/fullscreen")
        response.raise_for_status()
        return bool(response.json().get("fullscreen"))

    async def set_fullscreen(self, enabled: bool) -> None:
        response = await self._client.put("/window/fullscreen", json={"enabled": enabled})
        response.raise_for_status()

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing shell window client: %s", e)


class HeadlessWindow:
    """In-memory window for kiosks where the browser already runs fullscreen."""

    def __init__(self, fullscreen: bool = False) -> None:
        self.fullscreen = fullscreen

    async def is_fullscreen(self) -> bool:
        return self.fullscreen

    async def set_fullscreen(self, enabled: bool) -> None:
        self.fullscreen = enabled

    async def aclose(self) -> None:
        return None


class FullscreenCoordinator:
    """Best-effort toggling, plus a strict confirm step before flashing starts."""

    def __init__(self, window: WindowHandle, settings: Optional[FullscreenSettings] = None) -> None:
        self.window = window
        self.settings = settings or FullscreenSettings()

    async def ensure(self, enabled: bool) -> None:
        # Platforms and window managers may refuse; leaving fullscreen is cosmetic.
        try:
            if await self.window.is_fullscreen() != enabled:
                await self.window.set_fullscreen(enabled)
        except Exception as exc:
            logger.debug("Fullscreen %s ignored: %s", "enter" if enabled else "exit", exc)

    async def enter_and_confirm(self) -> None:
        try:
            await self.window.set_fullscreen(True)
        except Exception as exc:
            logger.debug("Fullscreen request refused, verifying state anyway: %s", exc)

        interval = self.settings.poll_interval_ms / 1000
        for attempt in range(self.settings.poll_attempts):
            try:
                if await self.window.is_fullscreen():
                    logger.debug("Fullscreen confirmed after %d queries", attempt + 1)
                    return
            except Exception as exc:
                logger.warning("Fullscreen state query failed: %s", exc)
                raise FullscreenUnavailable() from exc
            await asyncio.sleep(interval)

        logger.warning("Fullscreen not confirmed after %d queries", self.settings.poll_attempts)
        raise FullscreenUnavailable()


__all__ = ["FullscreenCoordinator", "HeadlessWindow", "ShellWindow", "WindowHandle"]
