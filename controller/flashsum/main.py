"""FastAPI entry-point for the flashsum controller."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Union

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from .backend.http_client import CommandGateway
from .backend.models import AutoRepeatConfigInput, SessionConfigInput
from .backend.ws_client import EventSubscriber, decode_event
from .config import Settings, get_settings
from .errors import ControllerError, NoActiveSession, ValidationInputError
from .fullscreen import FullscreenCoordinator, HeadlessWindow, ShellWindow
from .logging_config import configure_logging
from .session_controller import SessionController
from .state import AnswerMode

logger = logging.getLogger(__name__)


class StartRequest(BaseModel):
    config: SessionConfigInput
    auto_repeat: Optional[AutoRepeatConfigInput] = None


class AnswerRequest(BaseModel):
    provided: Optional[int] = None
    text: Optional[str] = None


class AnswerModeRequest(BaseModel):
    mode: AnswerMode


class DebugEventRequest(BaseModel):
    event: str
    payload: Any = None


def build_controller(settings: Settings) -> SessionController:
    window: Union[ShellWindow, HeadlessWindow]
    if settings.window_mode == "headless":
        window = HeadlessWindow()
    else:
        window = ShellWindow(settings)
    return SessionController(
        gateway=CommandGateway(settings),
        fullscreen=FullscreenCoordinator(window, settings.fullscreen),
        settings=settings,
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    controller: Optional[SessionController] = None,
    subscriber: Optional[EventSubscriber] = None,
    subscribe: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    manager = controller or build_controller(settings)
    events = subscriber or EventSubscriber(settings)

    app = FastAPI(title="flashsum-controller", version="0.1.0")
    app.state.controller = manager
    app.state.subscriber = events

    @app.exception_handler(NoActiveSession)
    async def no_session_handler(request: Request, exc: NoActiveSession) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"error": exc.user_message})

    @app.exception_handler(ValidationInputError)
    async def input_error_handler(request: Request, exc: ValidationInputError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"error": exc.user_message})

    @app.exception_handler(ControllerError)
    async def controller_error_handler(request: Request, exc: ControllerError) -> JSONResponse:
        logger.warning("Controller error in %s: %s", request.url.path, exc.user_message)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": exc.user_message})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning(f"Validation error in {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        logger.exception(f"Unhandled exception in {request.url.path}: {exc}")
        return PlainTextResponse(
            f"Internal server error: {str(exc)}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def on_startup() -> None:
        if not subscribe:
            return
        try:
            await events.connect(manager.handle_event)
            logger.info("Controller started; listening on %s", settings.backend_ws_url)
        except Exception as e:
            logger.exception(f"Failed to attach to backend events: {e}")
            # Degraded mode: commands still work, the listener retries on its own.

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            await events.disconnect()
            await manager.aclose()
            await manager.gateway.aclose()
            window = manager.fullscreen.window
            if hasattr(window, "aclose"):
                await window.aclose()
            logger.info("Controller shutdown complete")
        except Exception as e:
            logger.exception(f"Error during shutdown: {e}")

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", "phase": manager.phase.value, "event_channel": events.connected})

    @app.get("/state")
    async def current_state() -> JSONResponse:
        return JSONResponse(manager.snapshot())

    @app.post("/session/start")
    async def start_session(payload: StartRequest) -> JSONResponse:
        response = await manager.start(payload.config, payload.auto_repeat)
        return JSONResponse({"started": response is not None, "state": manager.snapshot()})

    @app.post("/session/stop")
    async def stop_session() -> JSONResponse:
        await manager.stop()
        return JSONResponse(manager.snapshot())

    @app.post("/session/home")
    async def go_home() -> JSONResponse:
        await manager.go_home()
        return JSONResponse(manager.snapshot())

    @app.post("/session/answer")
    async def submit_answer(payload: AnswerRequest) -> JSONResponse:
        if payload.text is not None:
            result = await manager.submit_answer_text(payload.text)
        elif payload.provided is not None:
            result = await manager.submit_answer(payload.provided)
        else:
            return JSONResponse(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                content={"error": "Provide either 'text' or 'provided'"},
            )
        return JSONResponse(
            {"validation": result.model_dump() if result else None, "state": manager.snapshot()}
        )

    @app.post("/session/acknowledge")
    async def acknowledge_complete() -> JSONResponse:
        await manager.acknowledge_complete()
        return JSONResponse(manager.snapshot())

    @app.post("/session/mark-validated")
    async def mark_validated() -> JSONResponse:
        await manager.mark_validated()
        return JSONResponse(manager.snapshot())

    @app.post("/auto-repeat/cancel")
    async def cancel_auto_repeat() -> JSONResponse:
        await manager.cancel_auto_repeat()
        return JSONResponse(manager.snapshot())

    @app.get("/settings/defaults")
    async def session_defaults() -> JSONResponse:
        return JSONResponse(settings.defaults.model_dump())

    @app.post("/settings/answer-mode")
    async def set_answer_mode(payload: AnswerModeRequest) -> JSONResponse:
        applied = await manager.set_answer_mode(payload.mode)
        return JSONResponse({"applied": applied, "state": manager.snapshot()})

    @app.post("/debug/event")
    async def debug_event(payload: DebugEventRequest) -> JSONResponse:
        """Inject a backend push event for testing the flow without a backend."""
        event = decode_event({"event": payload.event, "payload": payload.payload})
        if event is None:
            return JSONResponse(
                {"status": "error", "message": f"Invalid event: {payload.event}"},
                status_code=400,
            )
        await manager.handle_event(event)
        logger.info(f"🔧 Debug event injected: {payload.event}")
        return JSONResponse({"status": "ok", "state": manager.snapshot()})

    @app.websocket("/ws/ui")
    async def ui_socket(ws: WebSocket) -> None:
        await ws.accept()
        queue = manager.register_ui()
        try:
            while True:
                try:
                    event = await queue.get()
                except asyncio.CancelledError:
                    break  # Clean shutdown

                message = {
                    "type": event.type,
                    "phase": event.phase.value,
                    "data": event.data,
                }
                if event.error:
                    message["error"] = event.error

                try:
                    await ws.send_json(message)
                except Exception as e:
                    logger.debug(f"WebSocket send failed (client disconnected): {e}")
                    break
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"Unexpected error in UI websocket: {e}")
        finally:
            manager.unregister_ui(queue)
            try:
                await ws.close()
            except Exception:
                pass

    return app


settings: Settings = get_settings()
configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)
app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.controller_host, port=settings.controller_port, log_config=None)
