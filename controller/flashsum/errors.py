"""Error taxonomy shared by the controller and its collaborators."""
from __future__ import annotations


class ControllerError(RuntimeError):
    """Base class for failures the surface turns into user-visible text."""

    def __init__(self, user_message: str) -> None:
        super().__init__(user_message)
        self.user_message = user_message


class ValidationInputError(ControllerError):
    """Typed answer is malformed; never sent to the backend."""


class NoActiveSession(ControllerError):
    """An answer or acknowledgement was attempted with no session id."""

    def __init__(self, user_message: str = "No active session id to validate.") -> None:
        super().__init__(user_message)


class CommandFailed(ControllerError):
    """Backend rejected a command or the transport failed."""

    def __init__(self, command: str, user_message: str) -> None:
        super().__init__(user_message)
        self.command = command


class FullscreenUnavailable(ControllerError):
    """Fullscreen could not be confirmed before starting a session."""

    def __init__(self, user_message: str = "Unable to enter fullscreen") -> None:
        super().__init__(user_message)


__all__ = [
    "CommandFailed",
    "ControllerError",
    "FullscreenUnavailable",
    "NoActiveSession",
    "ValidationInputError",
]
