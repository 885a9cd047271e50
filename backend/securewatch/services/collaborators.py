"""
Clients for the external systems the enforcement pipeline talks to.

Every HTTP call carries an explicit timeout; transport errors, timeouts and
non-2xx responses all surface as CollaboratorError so the caller can turn them
into a failed action or a skipped classifier stage.
"""

import logging
from dataclasses import dataclass, field
from uuid import uuid4

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from securewatch.config import settings
from securewatch.exceptions import CollaboratorError, CollaboratorUnavailable
from securewatch.models import Employee

logger = logging.getLogger(__name__)


class _HTTPCollaborator:
    name = "collaborator"

    def __init__(self, base_url: str, timeout: float, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/") if base_url else ""
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    async def _post(self, path: str, payload: dict) -> dict:
        if not self.configured:
            raise CollaboratorUnavailable(self.name, "not configured")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(f"{self.base_url}{path}", json=payload)
        except httpx.TimeoutException as exc:
            raise CollaboratorError(self.name, f"timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise CollaboratorError(self.name, f"unreachable: {exc}") from exc

        if resp.status_code >= 400:
            raise CollaboratorError(
                self.name,
                f"HTTP {resp.status_code}",
                {"body": resp.text[:500]},
            )
        try:
            return resp.json()
        except ValueError:
            return {}


class NotificationClient(_HTTPCollaborator):
    """Email delivery service."""

    name = "notification"

    def __init__(self, base_url: str | None = None, timeout: float | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(
            settings.notification_url if base_url is None else base_url,
            settings.notification_timeout_seconds if timeout is None else timeout,
            transport,
        )

    async def send(self, recipients: list[str], subject: str, body: str) -> dict:
        recipients = [r.strip() for r in recipients if r and r.strip()]
        if not recipients:
            raise CollaboratorError(self.name, "no recipients")
        invalid = [r for r in recipients if "@" not in r]
        if invalid:
            raise CollaboratorError(self.name, "invalid recipients", {"invalid": invalid})

        data = await self._post("/send", {"to": recipients, "subject": subject, "body": body})
        message_id = data.get("message_id") or data.get("messageId") or f"msg-{uuid4().hex[:16]}"
        logger.info("Notification sent to %d recipient(s): %s", len(recipients), message_id)
        return {"message_id": message_id}


class SMSClient(_HTTPCollaborator):
    name = "sms"

    def __init__(self, base_url: str | None = None, timeout: float | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(
            settings.sms_gateway_url if base_url is None else base_url,
            settings.notification_timeout_seconds if timeout is None else timeout,
            transport,
        )

    async def send_sms(self, numbers: list[str], text: str) -> dict:
        numbers = [n for n in numbers if n]
        if not numbers:
            raise CollaboratorError(self.name, "no phone numbers")
        data = await self._post("/messages", {"to": numbers, "text": text[:480]})
        return {"message_id": data.get("message_id") or f"sms-{uuid4().hex[:16]}"}


class IdentityClient(_HTTPCollaborator):
    """External identity provider used to revoke access."""

    name = "identity"

    def __init__(self, base_url: str | None = None, timeout: float | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(
            settings.identity_url if base_url is None else base_url,
            settings.identity_timeout_seconds if timeout is None else timeout,
            transport,
        )

    async def revoke_access(self, employee_id: int, access_type: str, reason: str,
                            duration_hours: int | None = None) -> dict:
        data = await self._post(
            "/access/revoke",
            {
                "employee_id": employee_id,
                "access_type": access_type,
                "reason": reason,
                "duration_hours": duration_hours,
            },
        )
        return {"reference": data.get("reference") or data.get("id")}


class EmployeeDirectory:
    """Read-only view over the employee directory mirror."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, employee_id: int) -> Employee | None:
        return await self.session.get(Employee, employee_id)

    async def get_by_email(self, email: str) -> Employee | None:
        result = await self.session.execute(
            select(Employee).where(Employee.email == email.strip().lower())
        )
        return result.scalar_one_or_none()


@dataclass
class Collaborators:
    """The external clients handed to action handlers."""
    notification: NotificationClient = field(default_factory=NotificationClient)
    sms: SMSClient = field(default_factory=SMSClient)
    identity: IdentityClient = field(default_factory=IdentityClient)
