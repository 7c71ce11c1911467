"""Attendance punch clock client with a location-gated session engine."""

from .app import PunchClockApp
from .auth import AuthContext
from .client import AttendanceClient
from .engine import SessionEngine
from .models import EngineState, Identity, LocationReading, PunchDirection, SessionRecord

__all__ = [
    "AttendanceClient",
    "AuthContext",
    "EngineState",
    "Identity",
    "LocationReading",
    "PunchClockApp",
    "PunchDirection",
    "SessionEngine",
    "SessionRecord",
]
