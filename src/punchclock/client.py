"""Thin HTTP boundary to the remote attendance service.

No retries and no caching happen here: every call maps to exactly one request,
and every failure is translated into the :mod:`punchclock.errors` taxonomy.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from .errors import LoginFailed, MalformedResponse, NetworkFailure, PunchRejected
from .logger import debug_detail, get_logger
from .models import (
    AttendanceEntry,
    EntryLocation,
    Identity,
    LocationReading,
    PunchDirection,
    PunchReceipt,
    StatusReport,
)

log = get_logger(__name__)

# Legacy status contract: the only clocked-in signal older deployments send.
CLOCKED_IN_MESSAGE = "Employee is currently clocked in"
_STRUCTURED_STATUS_KEYS = ("clocked_in", "clockedIn", "is_clocked_in")

_DEFAULT_TIMEOUT = 15.0


class AttendanceClient:
    """Async client for the attendance and login endpoints."""

    def __init__(
        self,
        api_url: str,
        auth_url: Optional[str] = None,
        *,
        timeout: float = _DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._auth_url = (auth_url or api_url).rstrip("/")
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "AttendanceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers={"Accept": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Any]:
        """Perform one request and return ``(status, decoded_json_or_None)``."""
        debug_detail(f"{method} {url} params={params}")
        try:
            async with self._get_session().request(
                method, url, params=params, json=json_body
            ) as response:
                text = await response.text()
                status = response.status
        except asyncio.TimeoutError as exc:
            raise NetworkFailure(f"Request to {url} timed out") from exc
        except aiohttp.ClientError as exc:
            raise NetworkFailure(f"Request to {url} failed: {exc}") from exc

        if not text.strip():
            return status, None
        try:
            return status, json.loads(text)
        except ValueError:
            debug_detail(f"Non-JSON body from {url} (HTTP {status}): {text[:200]!r}")
            return status, None

    async def get_status(self, employee_id: str) -> StatusReport:
        url = f"{self._api_url}/attendance/status"
        status, data = await self._request("GET", url, params={"employee_id": employee_id})
        if not 200 <= status < 300:
            raise NetworkFailure(
                _message_from(data) or f"Status check failed with HTTP {status}", status=status
            )
        if not isinstance(data, dict):
            raise MalformedResponse("Attendance status response was not a JSON object")
        return parse_status(data)

    async def get_history(self, employee_id: str) -> List[AttendanceEntry]:
        url = f"{self._api_url}/attendance/history"
        status, data = await self._request("GET", url, params={"employee_id": employee_id})
        if not 200 <= status < 300:
            raise NetworkFailure(
                _message_from(data) or "Failed to fetch attendance history", status=status
            )
        return parse_history(data)

    async def submit_punch(
        self,
        employee_id: str,
        company_id: str,
        direction: PunchDirection,
        location: LocationReading,
    ) -> PunchReceipt:
        body = {
            "employee_id": employee_id,
            "companyId": company_id,
            "type": direction.value,
            "clock_in": direction is PunchDirection.CLOCK_IN,
            "latitude": location.latitude,
            "longitude": location.longitude,
        }
        url = f"{self._api_url}/attendance"
        status, data = await self._request("POST", url, json_body=body)
        if not 200 <= status < 300:
            message = _message_from(data) or f"Failed to {direction.label}"
            log.warning("Attendance service rejected %s (HTTP %s): %s", direction.value, status, message)
            raise PunchRejected(message, status=status)
        payload = data if isinstance(data, dict) else {}
        return PunchReceipt(direction=direction, message=_message_from(payload) or "", payload=payload)

    async def login(self, email: str, password: str, company_id: str) -> Identity:
        url = f"{self._auth_url}/employee/login"
        body = {"email": email, "password": password, "companyId": company_id}
        status, data = await self._request("POST", url, json_body=body)
        if status != 200:
            log.error("Login failed with status: %s", status)
            raise LoginFailed(_message_from(data) or "Login failed")
        record = data.get("data") if isinstance(data, dict) else None
        if not isinstance(record, dict):
            raise LoginFailed("Login response did not include user data")
        try:
            return Identity.from_record(record)
        except ValueError as exc:
            raise LoginFailed(str(exc)) from exc


def _message_from(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        message = data.get("message")
        if isinstance(message, str) and message.strip():
            return message
    return None


def parse_status(data: Dict[str, Any]) -> StatusReport:
    """Interpret a status body, preferring a structured boolean when present."""
    message = data.get("message") if isinstance(data.get("message"), str) else ""
    body_status = data.get("status")
    body_status = body_status if isinstance(body_status, int) else None
    clock_in_time = parse_timestamp(data.get("clock_in_time") or data.get("clock_in"))

    for key in _STRUCTURED_STATUS_KEYS:
        if isinstance(data.get(key), bool):
            return StatusReport(
                clocked_in=data[key], message=message, status=body_status, clock_in_time=clock_in_time
            )

    debug_detail("Status body has no structured flag; matching on the message text")
    clocked_in = body_status == 200 and message == CLOCKED_IN_MESSAGE
    return StatusReport(
        clocked_in=clocked_in, message=message, status=body_status, clock_in_time=clock_in_time
    )


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings (``Z`` allowed) or epoch milliseconds."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _parse_location(raw: Any) -> Optional[EntryLocation]:
    if not isinstance(raw, dict):
        return None
    try:
        return EntryLocation(
            latitude=float(raw["latitude"]),
            longitude=float(raw["longitude"]),
            distance_km=float(raw.get("distance_km") or 0.0),
            type=str(raw.get("type") or ""),
        )
    except (KeyError, TypeError, ValueError):
        return None


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_entry(raw: Dict[str, Any], index: int = 0) -> AttendanceEntry:
    clock_in = parse_timestamp(raw.get("clock_in_time") or raw.get("clock_in"))
    if clock_in is None:
        raise MalformedResponse("History entry is missing a clock-in time")
    clock_out = parse_timestamp(raw.get("clock_out_time") or raw.get("clock_out"))

    entry_id = raw.get("id") or raw.get("_id") or raw.get("timestamp")
    if entry_id in (None, ""):
        entry_id = f"{int(clock_in.timestamp() * 1000)}-{index}"

    try:
        working_hours = float(raw.get("working_hours") or 0.0)
    except (TypeError, ValueError):
        working_hours = 0.0

    return AttendanceEntry(
        id=str(entry_id),
        clock_in=clock_in,
        clock_out=clock_out,
        date=raw.get("date") if isinstance(raw.get("date"), str) else None,
        status=str(raw.get("status") or ""),
        standing=str(raw.get("standing") or ""),
        working_hours=working_hours,
        clock_in_shift_status=str(raw.get("clock_in_shift_status") or ""),
        clock_out_shift_status=str(raw.get("clock_out_shift_status") or ""),
        clock_in_shift_time_difference_minutes=_optional_int(
            raw.get("clock_in_shift_time_difference_minutes")
        ),
        clock_out_shift_time_difference_minutes=_optional_int(
            raw.get("clock_out_shift_time_difference_minutes")
        ),
        location=_parse_location(raw.get("location")),
        clock_out_location=_parse_location(raw.get("clock_out_location")),
    )


def parse_history(data: Any) -> List[AttendanceEntry]:
    """Accept ``{"history": [...]}``, ``{"data": [...]}`` or a bare array."""
    if isinstance(data, dict):
        for key in ("history", "data"):
            if isinstance(data.get(key), list):
                data = data[key]
                break
    if not isinstance(data, list):
        raise MalformedResponse("Attendance history response has an unexpected shape")

    entries = []
    for index, raw in enumerate(data):
        if not isinstance(raw, dict):
            raise MalformedResponse("History entry must be a JSON object")
        entries.append(parse_entry(raw, index))
    return entries
