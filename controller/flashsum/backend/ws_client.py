"""Backend push-channel subscriber."""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import websockets
from pydantic import ValidationError

from ..config import Settings
from .models import EVENT_MODELS, BackendEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[BackendEvent], Awaitable[None]]


def decode_event(message: dict[str, Any]) -> Optional[BackendEvent]:
    """Turn one ``{"event": kind, "payload": ...}`` frame into a typed event.

    Unknown kinds and payloads that fail validation are logged and yield None.
    """
    kind = message.get("event")
    model = EVENT_MODELS.get(kind) if isinstance(kind, str) else None
    if model is None:
        logger.warning("Unknown backend event kind: %r", kind)
        return None

    payload = message.get("payload")
    if kind == "countdown_tick" and not isinstance(payload, dict):
        payload = {"value": payload}
    elif kind == "clear_screen" and payload is None:
        payload = {}

    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Malformed %s payload %r: %s", kind, payload, exc)
        return None


class EventSubscriber:
    """Keeps the backend event websocket attached and forwards typed events.

    Owns no session state; reconnects after ``event_reconnect_seconds`` when the
    channel drops until ``disconnect`` is called.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._conn: Optional[Any] = None
        self._listener_task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._handler: Optional[EventHandler] = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    async def connect(self, handler: EventHandler) -> None:
        await self.disconnect()
        self._stop_event.clear()
        self._handler = handler
        self._listener_task = asyncio.create_task(self._run(), name="backend-event-listener")

    async def disconnect(self) -> None:
        try:
            self._stop_event.set()
            if self._listener_task:
                self._listener_task.cancel()
                try:
                    await self._listener_task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.warning("Error during listener task cleanup: %s", e)
            self._listener_task = None
            if self._conn:
                try:
                    await self._conn.close()
                except Exception as e:
                    logger.warning("Error closing websocket connection: %s", e)
                self._conn = None
            self._handler = None
        except Exception as e:
            logger.warning("Error during disconnect: %s", e)

    async def dispatch(self, message: dict[str, Any]) -> None:
        """Decode a raw frame and forward it; handler errors never kill the listener."""
        if message.get("type") == "ping":
            await self._send({"type": "pong"})
            return

        event = decode_event(message)
        if event is None or self._handler is None:
            return
        try:
            await self._handler(event)
        except Exception as e:
            logger.exception("Error in backend event handler: %s", e)

    async def _run(self) -> None:
        uri = self.settings.backend_ws_url
        while not self._stop_event.is_set():
            try:
                logger.info("Connecting to backend event channel %s", uri)
                self._conn = await websockets.connect(uri, ping_interval=None, ping_timeout=None)
                await self._listen()
            except asyncio.CancelledError:  # cooperative cancel
                raise
            except OSError as exc:
                logger.warning("Backend event channel unavailable: %s", exc)
            except Exception:
                logger.exception("Backend event listener crashed")
            finally:
                if self._conn:
                    try:
                        await self._conn.close()
                    except Exception as e:
                        logger.debug("Error closing websocket after listener exit: %s", e)
                    self._conn = None

            if self._stop_event.is_set():
                break
            await asyncio.sleep(self.settings.event_reconnect_seconds)

    async def _listen(self) -> None:
        assert self._conn is not None
        try:
            async for raw in self._conn:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from backend: %s", raw)
                    continue
                if not isinstance(message, dict):
                    logger.warning("Unexpected backend frame: %s", raw)
                    continue
                await self.dispatch(message)
        except websockets.ConnectionClosedOK:
            logger.info("Backend event channel closed cleanly")
        except websockets.ConnectionClosedError as exc:
            logger.warning("Backend event channel closed: %s", exc)

    async def _send(self, message: dict[str, Any]) -> None:
        if not self._conn:
            logger.warning("Cannot send message - backend event channel not connected")
            return
        try:
            await self._conn.send(json.dumps(message))
        except websockets.ConnectionClosed:
            logger.warning("Cannot send message - websocket connection closed")
