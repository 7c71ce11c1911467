"""Error taxonomy raised by the punch clock client.

``str(error)`` is always a human-readable cause suitable for showing to the
person pressing the punch button.
"""

from __future__ import annotations

from typing import Optional


class PunchClockError(RuntimeError):
    """Base class for every error surfaced to the presentation layer."""

    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)


class NotAuthenticated(PunchClockError):
    default_message = "User not authenticated"


class LoginFailed(PunchClockError):
    default_message = "Login failed"


class LocationDenied(PunchClockError):
    default_message = "Permission to access location was denied"


class LocationUnavailable(PunchClockError):
    default_message = "Current location is unavailable"


class NetworkFailure(PunchClockError):
    """Transport failure, timeout, or a non-2xx reply from a query endpoint."""

    default_message = "Could not reach the attendance service"

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class PunchRejected(PunchClockError):
    """The attendance service refused a clock-in or clock-out."""

    default_message = "The attendance service rejected the punch"

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class MalformedResponse(PunchClockError):
    default_message = "The attendance service returned an unexpected response"


class PunchInProgress(PunchClockError):
    default_message = "Another punch is still being processed"


class InvalidTransition(PunchClockError):
    default_message = "That punch is not allowed in the current state"


class EngineNotReady(PunchClockError):
    default_message = "Session engine is not initialized"
