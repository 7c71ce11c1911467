"""Composition root tying the engine's lifetime to login and logout."""

from __future__ import annotations

from typing import Optional

from .auth import AuthContext
from .client import AttendanceClient
from .config import Settings
from .credentials import CredentialStore, FileCredentialStore
from .engine import SessionEngine
from .errors import NotAuthenticated
from .location import GeolocationProvider, build_location_provider
from .logger import get_logger
from .models import Identity

log = get_logger(__name__)


class PunchClockApp:
    """Owns the client, the auth context and the current session engine.

    A new engine is built for every identity and torn down on logout, so no
    session state outlives the user it belongs to.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[AttendanceClient] = None,
        store: Optional[CredentialStore] = None,
        location: Optional[GeolocationProvider] = None,
    ) -> None:
        self.settings = settings
        self.client = client or AttendanceClient(
            settings.api_url, settings.auth_url, timeout=settings.http_timeout
        )
        self.store = store or FileCredentialStore(settings.credentials_file)
        self.location = location or build_location_provider(settings)
        self.auth = AuthContext(self.client, self.store)
        self._engine: Optional[SessionEngine] = None

    async def __aenter__(self) -> "PunchClockApp":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @property
    def engine(self) -> SessionEngine:
        if self._engine is None:
            raise NotAuthenticated()
        return self._engine

    async def start(self) -> None:
        identity = await self.auth.rehydrate()
        if identity is not None:
            await self._build_engine()

    async def login(self, email: str, password: str, company_id: str) -> Identity:
        identity = await self.auth.login(email, password, company_id)
        self._teardown_engine()
        await self._build_engine()
        return identity

    async def logout(self) -> None:
        self._teardown_engine()
        await self.auth.logout()

    async def aclose(self) -> None:
        self._teardown_engine()
        await self.client.close()

    async def _build_engine(self) -> None:
        engine = SessionEngine(
            self.auth,
            self.client,
            self.location,
            location_timeout=self.settings.location_timeout,
        )
        await engine.initialize()
        self._engine = engine

    def _teardown_engine(self) -> None:
        if self._engine is not None:
            self._engine.close()
            log.debug("Session engine torn down")
            self._engine = None
