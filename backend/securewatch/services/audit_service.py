"""
Audit Service

Append-only, hash-chained trail of enforcement activity. Each entry stores
the SHA-256 of its own content together with the previous entry's hash, so
editing or deleting any row breaks verification from that row on.

Writers: the violation recorder, the action executor (finished and replayed
executions), the policies API and the log_detailed_activity handler.
"""

import hashlib
import json
from uuid import uuid4

from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from securewatch.models import AuditLog

HASHED_FIELDS = ("event_type", "actor", "action", "resource_type", "resource_id", "details")

# Arbitrary key for pg_advisory_xact_lock; serialises appends across workers
CHAIN_LOCK_KEY = 0x5EC0A7


def chain_hash(content: dict, previous_hash: str | None) -> str:
    raw = json.dumps({"content": content, "previous_hash": previous_hash or ""}, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode()).hexdigest()


def hashed_content(entry: AuditLog) -> dict:
    return {name: getattr(entry, name) for name in HASHED_FIELDS}


class AuditService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _lock_chain(self) -> None:
        # Two concurrent appends reading the same tail hash would fork the chain
        if self.session.get_bind().dialect.name == "postgresql":
            await self.session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": CHAIN_LOCK_KEY})

    async def _tail_hash(self) -> str | None:
        return await self.session.scalar(
            select(AuditLog.current_hash).order_by(AuditLog.id.desc()).limit(1)
        )

    async def log_event(
        self,
        event_type: str,
        actor: str,
        action: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        details: dict | None = None,
    ) -> AuditLog:
        """Append one entry to the chain and flush it.

        `details` is normalised through JSON first (datetimes become strings)
        so the hash computed now matches the one recomputed from the stored row.
        """
        await self._lock_chain()
        previous_hash = await self._tail_hash()

        entry = AuditLog(
            event_id=str(uuid4()),
            event_type=event_type,
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=json.loads(json.dumps(details or {}, default=str)),
            previous_hash=previous_hash,
        )
        entry.current_hash = chain_hash(hashed_content(entry), previous_hash)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def log_violation_recorded(self, violation_id: int, employee_id: int, severity: str,
                                     risk_score: int, category: str) -> AuditLog:
        return await self.log_event(
            "violation_recorded",
            actor="risk_classifier",
            action=f"{severity} violation ({category}, score {risk_score}) for employee {employee_id}",
            resource_type="violation",
            resource_id=str(violation_id),
            details={"employee_id": employee_id, "severity": severity,
                     "risk_score": risk_score, "category": category},
        )

    async def log_execution_finished(self, execution_id: int, policy_id: int, status: str,
                                     actor: str, details: dict | None = None) -> AuditLog:
        return await self.log_event(
            "execution_finished",
            actor=actor,
            action=f"Policy {policy_id} execution {execution_id} → {status}",
            resource_type="execution",
            resource_id=str(execution_id),
            details={"policy_id": policy_id, "status": status, **(details or {})},
        )

    async def log_policy_changed(self, policy_id: int, changes: dict, actor: str = "operator") -> AuditLog:
        return await self.log_event(
            "policy_changed",
            actor=actor,
            action=f"Policy {policy_id} updated",
            resource_type="policy",
            resource_id=str(policy_id),
            details=changes,
        )

    async def verify_chain_integrity(self) -> dict:
        """Recompute every hash in insertion order; report the first broken link."""
        checked = 0
        expected_previous = None
        entries = await self.session.scalars(select(AuditLog).order_by(AuditLog.id.asc()))
        for entry in entries:
            checked += 1
            if entry.previous_hash != expected_previous:
                reason = "previous_hash mismatch"
            elif entry.current_hash != chain_hash(hashed_content(entry), entry.previous_hash):
                reason = "current_hash mismatch (data tampered)"
            else:
                expected_previous = entry.current_hash
                continue
            return {"valid": False, "entries_checked": checked, "first_invalid": entry.event_id, "reason": reason}

        return {"valid": True, "entries_checked": checked, "first_invalid": None}

    @staticmethod
    def _filters(event_type: str | None, resource_type: str | None, resource_id: str | None) -> list:
        filters = []
        if event_type:
            filters.append(AuditLog.event_type == event_type)
        if resource_type:
            filters.append(AuditLog.resource_type == resource_type)
        if resource_id:
            filters.append(AuditLog.resource_id == resource_id)
        return filters

    async def get_entries(
        self,
        event_type: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLog]:
        """Newest first."""
        result = await self.session.execute(
            select(AuditLog)
            .where(*self._filters(event_type, resource_type, resource_id))
            .order_by(AuditLog.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars())

    async def get_entry_count(
        self,
        event_type: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> int:
        return await self.session.scalar(
            select(func.count(AuditLog.id)).where(*self._filters(event_type, resource_type, resource_id))
        ) or 0
