"""
Collaborator capability registry.

Each optional collaborator is probed once at startup. Handlers and the
classifier consult the registry instead of probing on every call, and tests
flip entries directly.
"""

import logging

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from securewatch.config import settings

logger = logging.getLogger(__name__)

NOTIFICATION = "notification"
SMS = "sms"
IDENTITY = "identity"
INCIDENT_STORE = "incident_store"
TEXT_CLASSIFIER = "text_classifier"

ALL_CAPABILITIES = (NOTIFICATION, SMS, IDENTITY, INCIDENT_STORE, TEXT_CLASSIFIER)


class CapabilityRegistry:
    def __init__(self):
        self._state: dict[str, bool] = {}

    def is_available(self, name: str) -> bool:
        # Unprobed capabilities are assumed present; the call itself will fail loudly if not.
        return self._state.get(name, True)

    def set(self, name: str, available: bool) -> None:
        self._state[name] = available

    def reset(self) -> None:
        self._state.clear()

    def snapshot(self) -> dict[str, bool]:
        return {name: self.is_available(name) for name in ALL_CAPABILITIES}

    async def probe(self, session: AsyncSession) -> dict[str, bool]:
        """Probe every collaborator once and remember the result."""
        self.set(INCIDENT_STORE, await self._probe_incident_store(session))
        self.set(NOTIFICATION, await self._probe_http(settings.notification_url, "/health"))
        self.set(SMS, await self._probe_http(settings.sms_gateway_url, "/health"))
        self.set(IDENTITY, await self._probe_http(settings.identity_url, "/health"))
        if settings.llm_enabled:
            self.set(TEXT_CLASSIFIER, await self._probe_http(settings.ollama_url, "/api/tags"))
        else:
            self.set(TEXT_CLASSIFIER, False)

        snapshot = self.snapshot()
        unavailable = [name for name, ok in snapshot.items() if not ok]
        if unavailable:
            logger.warning("Collaborators unavailable at startup: %s", ", ".join(unavailable))
        else:
            logger.info("All collaborators available")
        return snapshot

    @staticmethod
    async def _probe_incident_store(session: AsyncSession) -> bool:
        from securewatch.models import Incident

        try:
            await session.execute(select(Incident.id).limit(1))
            return True
        except SQLAlchemyError as exc:
            logger.warning("Incident store unavailable: %s", exc)
            await session.rollback()
            return False

    @staticmethod
    async def _probe_http(base_url: str, path: str) -> bool:
        if not base_url:
            return False
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{base_url.rstrip('/')}{path}")
                return resp.status_code < 500
        except httpx.HTTPError as exc:
            logger.warning("Probe of %s failed: %s", base_url, exc)
            return False


capabilities = CapabilityRegistry()
