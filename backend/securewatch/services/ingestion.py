"""
Ingestion boundary: Communication → Risk Classifier → Violation Recorder →
Policy Evaluation Engine, all in the caller's session.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from securewatch.models import Violation
from securewatch.schemas.schemas import ClassificationResult, Communication
from securewatch.services.collaborators import EmployeeDirectory
from securewatch.services.policy_engine import PolicyEvaluationEngine
from securewatch.services.risk_classifier import RiskClassifier
from securewatch.services.violation_recorder import ViolationRecorder

logger = logging.getLogger(__name__)


@dataclass
class IngestionOutcome:
    classification: ClassificationResult
    violation: Violation | None = None
    violation_created: bool = False
    executions_created: int = 0


class IngestionService:
    def __init__(self, session: AsyncSession, text_classifier=None, classifier: RiskClassifier | None = None):
        self.session = session
        self.classifier = classifier or RiskClassifier(session, text_classifier=text_classifier)
        self.recorder = ViolationRecorder(session)
        self.engine = PolicyEvaluationEngine(session)
        self.directory = EmployeeDirectory(session)

    async def process(self, communication: Communication, employee_id: int) -> IngestionOutcome:
        employee = await self.directory.get_by_id(employee_id)
        if employee is None:
            logger.warning("Employee %d not in directory; classifying without profile", employee_id)

        classification = await self.classifier.classify(communication, employee)
        outcome = IngestionOutcome(classification=classification)

        violation, created = await self.recorder.record(communication, employee_id, classification)
        outcome.violation = violation
        outcome.violation_created = created

        # Only a newly recorded violation triggers evaluation; a re-processed
        # message keeps the executions it already has.
        if violation is not None and created:
            outcome.executions_created = await self.engine.evaluate_violation(violation.id, employee_id)
        return outcome
