"""Formatting helpers for rendering sessions and history entries."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from .models import EntryLocation

_UNITS = (
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
    ("second", 1),
)


def format_duration(delta: timedelta) -> str:
    """Largest whole unit of ``delta``, e.g. ``"3 hours"`` or ``"1 minute"``."""
    seconds = max(int(delta.total_seconds()), 0)
    for name, size in _UNITS:
        count = seconds // size
        if count >= 1 or size == 1:
            return f"{count} {name}" + ("" if count == 1 else "s")
    return "0 seconds"


def format_clock(moment: Optional[datetime]) -> str:
    if moment is None:
        return "--:--:--"
    return moment.astimezone().strftime("%H:%M:%S")


def format_day(moment: datetime) -> str:
    local = moment.astimezone()
    return f"{local:%A}, {local:%B} {local.day}"


def format_shift_status(status: Optional[str]) -> str:
    if not status:
        return ""
    if status == "NO_SHIFT_FOR_DAY":
        return "No Shift"
    return status[0] + status[1:].lower()


def format_offset_minutes(minutes: Optional[int]) -> str:
    if not minutes:
        return ""
    hours, rest = divmod(abs(minutes), 60)
    sign = "-" if minutes < 0 else ""
    return f"({sign}{hours}h {rest}m)"


def format_location(location: Optional[EntryLocation]) -> str:
    if location is None:
        return ""
    text = f"{location.latitude:.6f}, {location.longitude:.6f}"
    if location.distance_km > 0:
        text += f" {location.distance_km:.2f} km from office"
    return text
