"""Environment-driven settings.

Values come from the process environment, with defaults filled from a ``.env``
file (existing variables are never overridden).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .logger import get_logger

log = get_logger(__name__)

DEFAULT_API_URL = "https://api.peppypresence.com:5003/api"
DEFAULT_AUTH_URL = "http://localhost:5002/api"
DEFAULT_GEOIP_URL = "http://ip-api.com/json"
DEFAULT_CREDENTIALS_FILE = "~/.punchclock/user.json"
LOCATION_MODES = ("fixed", "ip", "deny")


@dataclass(frozen=True)
class Settings:
    api_url: str = DEFAULT_API_URL
    auth_url: str = DEFAULT_AUTH_URL
    http_timeout: float = 15.0
    credentials_file: Path = Path(DEFAULT_CREDENTIALS_FILE).expanduser()
    location_mode: str = "fixed"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geoip_url: str = DEFAULT_GEOIP_URL
    location_timeout: float = 10.0
    email: Optional[str] = None
    company_id: Optional[str] = None


def _env_seconds(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        value = 0.0
    if value <= 0:
        # Network and location waits must stay bounded.
        log.warning("Ignoring invalid %s=%r; using %s", name, raw, default)
        return default
    return value


def _env_coordinate(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError:
        log.warning("Ignoring invalid %s=%r", name, raw)
        return None


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = (os.getenv(name) or "").strip()
    return value or default


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build :class:`Settings` from ``.env`` defaults plus the environment."""
    load_dotenv(env_file or os.getenv("ENV_FILE", ".env"), override=False)

    mode = (_env_str("PUNCHCLOCK_LOCATION", "fixed") or "fixed").lower()
    if mode not in LOCATION_MODES:
        log.warning("Unknown PUNCHCLOCK_LOCATION=%r; falling back to 'fixed'", mode)
        mode = "fixed"

    return Settings(
        api_url=_env_str("PUNCHCLOCK_API_URL", DEFAULT_API_URL).rstrip("/"),
        auth_url=_env_str("PUNCHCLOCK_AUTH_URL", DEFAULT_AUTH_URL).rstrip("/"),
        http_timeout=_env_seconds("PUNCHCLOCK_HTTP_TIMEOUT", 15.0),
        credentials_file=Path(
            _env_str("PUNCHCLOCK_CREDENTIALS_FILE", DEFAULT_CREDENTIALS_FILE)
        ).expanduser(),
        location_mode=mode,
        latitude=_env_coordinate("PUNCHCLOCK_LATITUDE"),
        longitude=_env_coordinate("PUNCHCLOCK_LONGITUDE"),
        geoip_url=_env_str("PUNCHCLOCK_GEOIP_URL", DEFAULT_GEOIP_URL),
        location_timeout=_env_seconds("PUNCHCLOCK_LOCATION_TIMEOUT", 10.0),
        email=_env_str("PUNCHCLOCK_EMAIL"),
        company_id=_env_str("PUNCHCLOCK_COMPANY_ID"),
    )
