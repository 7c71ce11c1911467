"""Session engine: keeps the local work session consistent with the remote service.

The engine is a small state machine::

    IDLE --punch_in--> PUNCHING --accepted--> OPEN
    OPEN --punch_out--> CLOSING_OUT --accepted--> IDLE

A punch requested while another punch or a status check is outstanding is
rejected with :class:`PunchInProgress`; status checks queue behind punches.
Failed punches leave ``current_session`` exactly as it was before the call.
A request that completes after :meth:`SessionEngine.close` does not touch local
state; the caller gets :class:`EngineNotReady`.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Protocol, Tuple

from .auth import AuthContext
from .errors import EngineNotReady, InvalidTransition, NotAuthenticated, PunchInProgress
from .location import GeolocationProvider, acquire_location
from .logger import get_logger, step, success
from .models import (
    AttendanceEntry,
    EngineState,
    Identity,
    LocationReading,
    PunchDirection,
    PunchReceipt,
    SessionRecord,
    StatusReport,
)

log = get_logger(__name__)


class AttendanceBackend(Protocol):
    async def get_status(self, employee_id: str) -> StatusReport: ...

    async def get_history(self, employee_id: str) -> List[AttendanceEntry]: ...

    async def submit_punch(
        self,
        employee_id: str,
        company_id: str,
        direction: PunchDirection,
        location: LocationReading,
    ) -> PunchReceipt: ...


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class SessionEngine:
    """Owns ``current_session`` and ``history`` for one signed-in identity."""

    def __init__(
        self,
        auth: AuthContext,
        client: AttendanceBackend,
        location: GeolocationProvider,
        *,
        clock: Callable[[], datetime] = _utcnow,
        location_timeout: Optional[float] = None,
    ) -> None:
        self._auth = auth
        self._client = client
        self._location = location
        self._clock = clock
        self._location_timeout = location_timeout

        self._current: Optional[SessionRecord] = None
        self._history: List[SessionRecord] = []
        self._entries: List[AttendanceEntry] = []
        self._transition: Optional[EngineState] = None
        self._lock = asyncio.Lock()
        self._last_id = 0
        self._ready = False
        self._closed = False

    # ------------------------------------------------------------------
    # State

    @property
    def current_session(self) -> Optional[SessionRecord]:
        return self._current

    @property
    def history(self) -> Tuple[SessionRecord, ...]:
        """Closed sessions, most recent first."""
        return tuple(self._history)

    @property
    def entries(self) -> Tuple[AttendanceEntry, ...]:
        """Remote records from the last :meth:`fetch_history`, with display details."""
        return tuple(self._entries)

    @property
    def state(self) -> EngineState:
        if self._transition is not None:
            return self._transition
        return EngineState.OPEN if self._current is not None else EngineState.IDLE

    @property
    def is_ready(self) -> bool:
        return self._ready and not self._closed

    def elapsed(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        if self._current is None:
            return None
        return self._current.duration(now or self._clock())

    # ------------------------------------------------------------------
    # Lifecycle

    async def initialize(self) -> None:
        """Rehydrate the identity once; operations are refused until this ran."""
        if self._closed:
            raise EngineNotReady("Session engine has been closed")
        if self._ready:
            return
        await self._auth.rehydrate()
        self._ready = True
        identity = self._auth.identity
        log.debug("Session engine ready for user %s", identity.id if identity else None)

    def close(self) -> None:
        self._closed = True
        self._ready = False
        self._current = None
        self._history = []
        self._entries = []

    def _require_ready(self) -> None:
        if not self.is_ready:
            raise EngineNotReady()

    def _ensure_open_after(self, action: str) -> None:
        if self._closed:
            log.warning(
                "%s completed after the session engine was closed; local state left cleared",
                action,
            )
            raise EngineNotReady("Session engine was closed while the request was in flight")

    def _identity(self) -> Identity:
        identity = self._auth.identity
        if identity is None:
            raise NotAuthenticated()
        return identity

    def _next_id(self, at: datetime) -> str:
        token = int(at.timestamp() * 1000)
        if token <= self._last_id:
            token = self._last_id + 1
        self._last_id = token
        return str(token)

    # ------------------------------------------------------------------
    # Operations

    async def check_status(self) -> Optional[SessionRecord]:
        """Derive ``current_session`` from the remote clock status.

        Any failure clears the session before the error propagates.
        """
        self._require_ready()
        async with self._lock:
            try:
                identity = self._identity()
                report = await self._client.get_status(identity.id)
            except Exception:
                self._current = None
                log.warning("Status check failed; treating user as not clocked in")
                raise
            self._ensure_open_after("Status check")

            if not report.clocked_in:
                self._current = None
                log.info("User is not clocked in, session cleared")
            elif self._current is None:
                # The remote start time is not replayed; the session starts now.
                now = self._clock()
                self._current = SessionRecord(id=self._next_id(now), punch_in_at=now)
                log.info("User is currently clocked in, session set")
            return self._current

    async def punch_in(self) -> SessionRecord:
        self._require_ready()
        if self._lock.locked():
            raise PunchInProgress()

        async with self._lock:
            if self._current is not None:
                raise InvalidTransition("Already clocked in; punch out first")
            self._transition = EngineState.PUNCHING
            try:
                await self._submit(PunchDirection.CLOCK_IN)
                self._ensure_open_after("Clock-in")
                now = self._clock()
                self._current = SessionRecord(id=self._next_id(now), punch_in_at=now)
            finally:
                self._transition = None

        success(f"Punched in at {self._current.punch_in_at:%H:%M:%S}")
        return self._current

    async def punch_out(self) -> Optional[SessionRecord]:
        """Close the open session and prepend it to ``history``.

        Punching out with no local session is still sent to the service, which
        is authoritative. If the service accepts it there is nothing local to
        close and ``None`` is returned.
        """
        self._require_ready()
        if self._lock.locked():
            raise PunchInProgress()

        async with self._lock:
            self._transition = EngineState.CLOSING_OUT
            try:
                await self._submit(PunchDirection.CLOCK_OUT)
                self._ensure_open_after("Clock-out")
                now = self._clock()
                if self._current is None:
                    log.warning(
                        "Clock-out accepted by the service but no session was open locally; "
                        "history not updated until the next refresh"
                    )
                    return None
                closed = self._current.close(now)
                self._history.insert(0, closed)
                self._current = None
            finally:
                self._transition = None

        success(f"Punched out at {closed.punch_out_at:%H:%M:%S}")
        return closed

    async def _submit(self, direction: PunchDirection) -> PunchReceipt:
        step(f"Attempting to {direction.label}")
        reading = await acquire_location(self._location, self._location_timeout)
        self._ensure_open_after("Location fix")
        identity = self._identity()
        receipt = await self._client.submit_punch(
            identity.id, identity.company_id, direction, reading
        )
        log.debug("Punch %s accepted for user %s", direction.value, identity.id)
        return receipt

    async def fetch_history(self) -> List[AttendanceEntry]:
        """Replace local history with the service's records."""
        self._require_ready()
        identity = self._identity()
        entries = await self._client.get_history(identity.id)
        self._ensure_open_after("History fetch")
        self._entries = list(entries)
        self._history = [entry.to_session() for entry in entries]
        log.info("History fetched: %d entries", len(self._history))
        return list(entries)
