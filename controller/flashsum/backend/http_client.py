"""HTTP command gateway for the trainer backend."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import CommandFailed
from .models import (
    AutoRepeatConfigInput,
    AutoRepeatWaiting,
    SessionConfigInput,
    StartSessionResponse,
    SubmitAnswerResponse,
)

logger = logging.getLogger(__name__)


class CommandGateway:
    """Thin typed wrapper around the backend command endpoints.

    Every command is a single ``POST /commands/<name>`` returning JSON. Transport
    errors, non-2xx answers and malformed bodies all surface as ``CommandFailed``
    carrying plain text suitable for the user.
    """

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=self.settings.backend_api_url,
            timeout=self.settings.command_timeout_seconds,
            transport=transport,
        )

    async def start_session(
        self,
        config: SessionConfigInput,
        auto_repeat: Optional[AutoRepeatConfigInput] = None,
    ) -> StartSessionResponse:
        payload = {
            "config": config.model_dump(),
            "auto_repeat": auto_repeat.model_dump() if auto_repeat else None,
        }
        data = await self._invoke("start_session", payload)
        return self._parse("start_session", StartSessionResponse, data)

    async def stop_session(self) -> None:
        await self._invoke("stop_session", {})

    async def cancel_auto_repeat(self) -> None:
        await self._invoke("cancel_auto_repeat", {})

    async def submit_answer(self, session_id: int, provided_sum: int) -> SubmitAnswerResponse:
        data = await self._invoke("submit_answer", {"session_id": session_id, "provided_sum": provided_sum})
        return self._parse("submit_answer", SubmitAnswerResponse, data)

    async def submit_answer_text(self, session_id: int, provided_text: str) -> SubmitAnswerResponse:
        data = await self._invoke(
            "submit_answer_text", {"session_id": session_id, "provided_text": provided_text}
        )
        return self._parse("submit_answer_text", SubmitAnswerResponse, data)

    async def mark_validated(self, session_id: int) -> Optional[AutoRepeatWaiting]:
        data = await self._invoke("mark_validated", {"session_id": session_id})
        return self._parse_optional_waiting("mark_validated", data)

    async def acknowledge_complete(self, session_id: int) -> Optional[AutoRepeatWaiting]:
        data = await self._invoke("acknowledge_complete", {"session_id": session_id})
        return self._parse_optional_waiting("acknowledge_complete", data)

    async def _invoke(self, command: str, payload: Dict[str, Any]) -> Any:
        try:
            logger.debug("backend.%s: %s", command, payload)
            response = await self._client.post(f"/commands/{command}", json=payload)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.error("backend.%s: request timeout", command)
            raise CommandFailed(command, "Backend did not respond in time") from e
        except httpx.NetworkError as e:
            logger.error("backend.%s: network error - %s", command, e)
            raise CommandFailed(command, "Backend is unreachable") from e
        except httpx.HTTPStatusError as e:
            message = self._error_text(e.response)
            logger.error("backend.%s: HTTP %d - %s", command, e.response.status_code, message)
            raise CommandFailed(command, message) from e
        except httpx.HTTPError as e:
            logger.error("backend.%s: transport error - %s", command, e)
            raise CommandFailed(command, str(e) or "Backend request failed") from e
        except (TypeError, ValueError) as e:
            # Payload could not be encoded (e.g. non-finite floats).
            logger.error("backend.%s: request could not be built - %s", command, e)
            raise CommandFailed(command, "Request could not be sent to the backend") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.error("backend.%s: response is not JSON", command)
            raise CommandFailed(command, "Backend returned an unreadable response") from e

    @staticmethod
    def _parse(command: str, model: Any, data: Any) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error("backend.%s: malformed response %s (%s)", command, data, e)
            raise CommandFailed(command, "Backend returned a malformed response") from e

    def _parse_optional_waiting(self, command: str, data: Any) -> Optional[AutoRepeatWaiting]:
        if data is None:
            return None
        return self._parse(command, AutoRepeatWaiting, data)

    @staticmethod
    def _error_text(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        if isinstance(body, str) and body:
            return body
        return response.text.strip() or f"Backend rejected the request (HTTP {response.status_code})"

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)
