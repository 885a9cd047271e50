"""Tests for the hash-chained audit trail."""

from datetime import datetime

import pytest
from sqlalchemy import update

from securewatch.models import AuditLog
from securewatch.services.audit_service import AuditService, chain_hash


async def seed_chain(session) -> list[AuditLog]:
    service = AuditService(session)
    entries = [
        await service.log_violation_recorded(1, 7, "High", 75, "pci_dss"),
        await service.log_policy_changed(3, {"is_active": False}),
        await service.log_execution_finished(
            11, 3, "success", actor="worker-a", details={"finished_at": datetime(2026, 10, 14, 21, 30)},
        ),
    ]
    await session.commit()
    return entries


@pytest.mark.asyncio
class TestChain:
    async def test_entries_link_to_predecessor(self, db_session):
        first, second, third = await seed_chain(db_session)

        assert first.previous_hash is None
        assert second.previous_hash == first.current_hash
        assert third.previous_hash == second.current_hash
        assert first.current_hash == chain_hash(
            {
                "event_type": "violation_recorded",
                "actor": "risk_classifier",
                "action": first.action,
                "resource_type": "violation",
                "resource_id": "1",
                "details": {"employee_id": 7, "severity": "High", "risk_score": 75, "category": "pci_dss"},
            },
            None,
        )

    async def test_details_normalised_before_hashing(self, db_session):
        *_, finished = await seed_chain(db_session)
        assert finished.details["finished_at"] == "2026-10-14 21:30:00"

    async def test_intact_chain_verifies(self, session_factory):
        async with session_factory() as session:
            await seed_chain(session)
        async with session_factory() as session:
            result = await AuditService(session).verify_chain_integrity()

        assert result == {"valid": True, "entries_checked": 3, "first_invalid": None}

    async def test_empty_trail_is_valid(self, db_session):
        result = await AuditService(db_session).verify_chain_integrity()
        assert result["valid"] is True
        assert result["entries_checked"] == 0

    async def test_edited_row_detected(self, session_factory):
        async with session_factory() as session:
            _, second, _ = await seed_chain(session)
            await session.execute(
                update(AuditLog).where(AuditLog.id == second.id).values(action="Policy 3 untouched")
            )
            await session.commit()

        async with session_factory() as session:
            result = await AuditService(session).verify_chain_integrity()

        assert result["valid"] is False
        assert result["first_invalid"] == second.event_id
        assert result["entries_checked"] == 2
        assert "tampered" in result["reason"]

    async def test_relinked_row_detected(self, session_factory):
        async with session_factory() as session:
            first, second, third = await seed_chain(session)
            await session.execute(
                update(AuditLog).where(AuditLog.id == third.id).values(previous_hash=first.current_hash)
            )
            await session.commit()

        async with session_factory() as session:
            result = await AuditService(session).verify_chain_integrity()

        assert result["valid"] is False
        assert result["first_invalid"] == third.event_id
        assert result["reason"] == "previous_hash mismatch"


@pytest.mark.asyncio
class TestQueries:
    async def test_newest_first_with_paging(self, db_session):
        first, second, third = await seed_chain(db_session)
        service = AuditService(db_session)

        assert [e.id for e in await service.get_entries()] == [third.id, second.id, first.id]
        assert [e.id for e in await service.get_entries(limit=1, offset=1)] == [second.id]

    async def test_filters_apply_to_count(self, db_session):
        await seed_chain(db_session)
        service = AuditService(db_session)

        assert await service.get_entry_count() == 3
        assert await service.get_entry_count(event_type="policy_changed") == 1
        assert await service.get_entry_count(resource_type="execution", resource_id="11") == 1
        assert await service.get_entry_count(resource_type="execution", resource_id="12") == 0
        entries = await service.get_entries(resource_type="violation")
        assert [e.event_type for e in entries] == ["violation_recorded"]
