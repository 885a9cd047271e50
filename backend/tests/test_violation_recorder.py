"""Tests for violation recording: thresholds, severity bands and idempotence."""

import pytest
from sqlalchemy import func, select

from securewatch.models import AuditLog, Violation
from securewatch.schemas.schemas import ClassificationResult, Communication
from securewatch.services.violation_recorder import ViolationRecorder, severity_for_score
from tests.conftest import make_employee


def message(message_id="msg-1") -> Communication:
    return Communication(
        message_id=message_id,
        sender="dana.whitfield@company.com",
        recipients=("orders@vendor-example.net",),
        subject="Renewal",
        body="card number 4111 1111 1111 1111",
    )


def classification(score: int, mandatory: bool = False) -> ClassificationResult:
    findings = {"PCI_DSS": [{"regulation": "PCI_DSS", "score": 40, "mandatory_report": mandatory}]} if mandatory else {}
    return ClassificationResult(
        risk_score=score,
        security_risk_score=min(score, 35),
        compliance_risk_score=max(score - 35, 0),
        category="pci_dss" if mandatory else "general",
        risk_factors=["External recipients detected"],
        compliance_findings=findings,
        mandatory_report=mandatory,
        external_recipients=True,
    )


class TestSeverityBands:
    @pytest.mark.parametrize("score,severity", [
        (100, "Critical"), (90, "Critical"), (89, "High"), (70, "High"),
        (69, "Medium"), (40, "Medium"), (39, "Low"), (0, "Low"),
    ])
    def test_bands(self, score, severity):
        assert severity_for_score(score) == severity


@pytest.mark.asyncio
class TestViolationRecorder:
    async def test_below_threshold_not_recorded(self, db_session):
        employee = await make_employee(db_session)
        violation, created = await ViolationRecorder(db_session).record(message(), employee.id, classification(69))
        assert violation is None
        assert created is False

    async def test_at_threshold_recorded(self, db_session):
        employee = await make_employee(db_session)
        violation, created = await ViolationRecorder(db_session).record(message(), employee.id, classification(70))
        assert created is True
        assert violation.severity == "High"
        assert violation.status == "Active"
        assert violation.details["risk_score"] == 70
        assert violation.details["security_risk_score"] == 35
        assert violation.details["compliance_risk_score"] == 35
        assert violation.details["external_recipients"] is True

    async def test_mandatory_report_below_threshold(self, db_session):
        employee = await make_employee(db_session)
        violation, created = await ViolationRecorder(db_session).record(
            message(), employee.id, classification(45, mandatory=True),
        )
        assert created is True
        assert violation.severity == "Medium"
        assert violation.type == "pci_dss"
        assert violation.details["regulations"] == ["PCI_DSS"]
        assert violation.details["mandatory_report"] is True

    async def test_reprocessing_is_idempotent(self, db_session):
        employee = await make_employee(db_session)
        recorder = ViolationRecorder(db_session)
        first, created_first = await recorder.record(message("dup"), employee.id, classification(80))
        second, created_second = await recorder.record(message("dup"), employee.id, classification(95))

        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        assert second.severity == "High"
        count = await db_session.scalar(select(func.count(Violation.id)))
        assert count == 1

    async def test_recording_writes_audit_entry(self, db_session):
        employee = await make_employee(db_session)
        violation, _ = await ViolationRecorder(db_session).record(message(), employee.id, classification(91))
        entry = (await db_session.execute(
            select(AuditLog).where(AuditLog.event_type == "violation_recorded")
        )).scalar_one()
        assert entry.resource_id == str(violation.id)
        assert entry.details["severity"] == "Critical"

    async def test_custom_threshold(self, db_session):
        employee = await make_employee(db_session)
        violation, created = await ViolationRecorder(db_session, threshold=50).record(
            message(), employee.id, classification(55),
        )
        assert created is True
        assert violation.severity == "Medium"
