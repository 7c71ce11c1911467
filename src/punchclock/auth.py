"""Authenticated identity and its persistence."""

from __future__ import annotations

import json
from typing import Optional, Protocol

from .credentials import USER_KEY, CredentialStore
from .logger import get_logger, success
from .models import Identity

log = get_logger(__name__)


class LoginBackend(Protocol):
    async def login(self, email: str, password: str, company_id: str) -> Identity:
        """Exchange credentials for an identity or raise LoginFailed."""


class AuthContext:
    """Owns the authenticated identity; everything else only reads it."""

    def __init__(self, backend: LoginBackend, store: CredentialStore) -> None:
        self._backend = backend
        self._store = store
        self._identity: Optional[Identity] = None

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        return self._identity is not None

    async def rehydrate(self) -> Optional[Identity]:
        """Restore the identity persisted by a previous login, if any."""
        if self._identity is not None:
            return self._identity
        raw = await self._store.get(USER_KEY)
        if not raw:
            log.debug("No stored user record")
            return None
        try:
            identity = Identity.from_record(json.loads(raw))
        except (ValueError, TypeError) as exc:
            log.warning("Discarding corrupt stored user record: %s", exc)
            await self._store.remove(USER_KEY)
            return None
        self._identity = identity
        log.debug("Restored user %s from storage", identity.id)
        return identity

    async def login(self, email: str, password: str, company_id: str) -> Identity:
        log.info("Attempting to log in as %s", email)
        identity = await self._backend.login(email, password, company_id)
        await self._store.set(USER_KEY, json.dumps(identity.to_record()))
        self._identity = identity
        success(f"Logged in as {identity.name or identity.email}")
        return identity

    async def logout(self) -> None:
        log.info("Logging out user")
        await self._store.remove(USER_KEY)
        self._identity = None
