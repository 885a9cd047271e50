"""
Violation Recorder

Turns a classification into at most one Violation per source message.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from securewatch.config import settings
from securewatch.middleware.metrics import violations_recorded_total
from securewatch.models import Violation
from securewatch.schemas.schemas import ClassificationResult, Communication
from securewatch.services.audit_service import AuditService

logger = logging.getLogger(__name__)


def severity_for_score(score: int) -> str:
    if score >= 90:
        return "Critical"
    if score >= 70:
        return "High"
    if score >= 40:
        return "Medium"
    return "Low"


class ViolationRecorder:
    def __init__(self, session: AsyncSession, threshold: int | None = None):
        self.session = session
        self.threshold = settings.violation_threshold if threshold is None else threshold

    def should_record(self, result: ClassificationResult) -> bool:
        return result.risk_score >= self.threshold or result.mandatory_report

    async def get_by_message_id(self, source_message_id: str) -> Violation | None:
        result = await self.session.execute(
            select(Violation).where(Violation.source_message_id == source_message_id)
        )
        return result.scalar_one_or_none()

    async def record(
        self,
        communication: Communication,
        employee_id: int,
        result: ClassificationResult,
    ) -> tuple[Violation | None, bool]:
        """Persist a Violation if the classification warrants one.

        Returns (violation, created). Re-processing a message that already has
        a violation returns the existing row with created=False.
        """
        if not self.should_record(result):
            return None, False

        existing = await self.get_by_message_id(communication.message_id)
        if existing is not None:
            return existing, False

        severity = severity_for_score(result.risk_score)
        violation = Violation(
            employee_id=employee_id,
            source_message_id=communication.message_id,
            type=result.category,
            severity=severity,
            description=self._describe(communication, result),
            source="risk_classifier",
            details={
                "risk_score": result.risk_score,
                "security_risk_score": result.security_risk_score,
                "compliance_risk_score": result.compliance_risk_score,
                "detection_method": result.detection_method,
                "risk_factors": result.risk_factors,
                "compliance_findings": result.compliance_findings,
                "regulations": sorted(result.compliance_findings),
                "mandatory_report": result.mandatory_report,
                "external_recipients": result.external_recipients,
                "channel": communication.channel,
                "sender": communication.sender,
                "recipient_count": len(communication.recipients),
                "sent_at": communication.sent_at.isoformat() if communication.sent_at else None,
            },
        )

        try:
            async with self.session.begin_nested():
                self.session.add(violation)
        except IntegrityError:
            existing = await self.get_by_message_id(communication.message_id)
            if existing is None:
                # Not a duplicate (e.g. unknown employee_id)
                raise
            logger.info("Violation for message %s already recorded concurrently", communication.message_id)
            return existing, False

        await AuditService(self.session).log_violation_recorded(
            violation.id, employee_id, severity, result.risk_score, result.category,
        )
        violations_recorded_total.labels(severity=severity).inc()
        logger.info(
            "Violation %d recorded: %s %s (score %d) for employee %d",
            violation.id, severity, result.category, result.risk_score, employee_id,
        )
        return violation, True

    @staticmethod
    def _describe(communication: Communication, result: ClassificationResult) -> str:
        subject = (communication.subject or "(no subject)")[:120]
        top = "; ".join(result.risk_factors[:5]) or "no individual factors"
        return (
            f"{result.category} risk {result.risk_score}/100 in {communication.channel} "
            f"'{subject}': {top}"
        )[:2000]
