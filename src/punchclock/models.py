"""Value objects shared by the session engine and the attendance client."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Identity:
    """The authenticated employee. Immutable once set."""

    id: str
    name: str
    email: str
    company_id: str

    def to_record(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "companyId": self.company_id,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Identity":
        try:
            employee_id = record["id"]
            company_id = record["companyId"]
        except KeyError as exc:
            raise ValueError(f"User record missing field: {exc.args[0]}") from exc
        if employee_id in (None, "") or company_id in (None, ""):
            raise ValueError("User record must include non-empty 'id' and 'companyId'")
        return cls(
            id=str(employee_id),
            name=str(record.get("name") or ""),
            email=str(record.get("email") or ""),
            company_id=str(company_id),
        )


@dataclass(frozen=True)
class SessionRecord:
    """One open-or-closed work interval."""

    id: str
    punch_in_at: datetime
    punch_out_at: Optional[datetime] = None

    def close(self, at: datetime) -> "SessionRecord":
        return replace(self, punch_out_at=at)

    def duration(self, now: Optional[datetime] = None) -> timedelta:
        end = self.punch_out_at or now or datetime.now(tz=self.punch_in_at.tzinfo)
        return end - self.punch_in_at


@dataclass(frozen=True)
class LocationReading:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    timestamp: Optional[datetime] = None


class PunchDirection(str, enum.Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"

    @property
    def label(self) -> str:
        return "punch in" if self is PunchDirection.CLOCK_IN else "punch out"


class EngineState(str, enum.Enum):
    IDLE = "idle"
    PUNCHING = "punching"
    OPEN = "open"
    CLOSING_OUT = "closing_out"


@dataclass(frozen=True)
class StatusReport:
    """Remote clock status as reported by ``GET /attendance/status``."""

    clocked_in: bool
    message: str = ""
    status: Optional[int] = None
    # Returned by some deployments; not replayed into the local session.
    clock_in_time: Optional[datetime] = None


@dataclass(frozen=True)
class PunchReceipt:
    direction: PunchDirection
    message: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EntryLocation:
    latitude: float
    longitude: float
    distance_km: float = 0.0
    type: str = ""


@dataclass(frozen=True)
class AttendanceEntry:
    """A remote attendance record with the fields the history view displays."""

    id: str
    clock_in: datetime
    clock_out: Optional[datetime] = None
    date: Optional[str] = None
    status: str = ""
    standing: str = ""
    working_hours: float = 0.0
    clock_in_shift_status: str = ""
    clock_out_shift_status: str = ""
    clock_in_shift_time_difference_minutes: Optional[int] = None
    clock_out_shift_time_difference_minutes: Optional[int] = None
    location: Optional[EntryLocation] = None
    clock_out_location: Optional[EntryLocation] = None

    def to_session(self) -> SessionRecord:
        return SessionRecord(id=self.id, punch_in_at=self.clock_in, punch_out_at=self.clock_out)
