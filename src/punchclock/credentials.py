"""Key/value stores for the persisted user record."""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Dict, Optional, Protocol

from .logger import get_logger

log = get_logger(__name__)

USER_KEY = "user"


class CredentialStore(Protocol):
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""

    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""

    async def remove(self, key: str) -> None:
        """Delete ``key``; missing keys are ignored."""


class MemoryCredentialStore:
    """Process-local store; nothing survives a restart."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def remove(self, key: str) -> None:
        self._values.pop(key, None)


class FileCredentialStore:
    """JSON file on disk, readable by the owning user only where supported.

    This is a plain file, not an OS keychain: anyone with access to the
    account can read it. It plays the role of the weaker browser-storage
    fallback and should be treated accordingly.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log.warning("Ignoring unreadable credential file %s: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            log.warning("Ignoring credential file %s: expected a JSON object", self._path)
            return {}
        return {str(k): str(v) for k, v in payload.items()}

    def _save(self, values: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(values, indent=2), encoding="utf-8")
        try:
            os.chmod(tmp_path, 0o600)
        except OSError:
            log.debug("Could not restrict permissions on %s", tmp_path)
        os.replace(tmp_path, self._path)

    async def get(self, key: str) -> Optional[str]:
        values = await asyncio.to_thread(self._load)
        return values.get(key)

    async def set(self, key: str, value: str) -> None:
        def _write() -> None:
            values = self._load()
            values[key] = value
            self._save(values)

        await asyncio.to_thread(_write)

    async def remove(self, key: str) -> None:
        def _delete() -> None:
            values = self._load()
            if values.pop(key, None) is not None:
                self._save(values)

        await asyncio.to_thread(_delete)
