"""
Risk Classifier

Cascading analysis of one communication, cheapest stage first:

  1. rules       keyword / regex pre-filter (may short-circuit obviously safe mail)
  2. compliance  regulation rules discovered from securewatch.rules.compliance
  3. context     recipients, timing, attachments, behavioural baseline, monitoring flag
  4. llm         optional text classifier, only for the ambiguous score band

Scoring:
  security   = clamp(rules + context) × monitoring weight, clamped to [0, 100]
  compliance = clamp(sum of regulation scores)
  risk_score = clamp(round(security + compliance))

A stage that raises contributes zero and is recorded as skipped; it never
aborts the analysis.
"""

import asyncio
import importlib
import logging
import pkgutil
import time
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from securewatch.config import settings
from securewatch.database import utcnow
from securewatch.exceptions import ClassifierStageError
from securewatch.middleware.metrics import (
    classification_duration_seconds,
    classifier_stage_errors_total,
    communications_classified_total,
)
from securewatch.models import Employee, MonitoringFlag
from securewatch.rules import patterns
from securewatch.rules.base import ComplianceRule, RuleEvaluation, ScreeningInput
from securewatch.schemas.schemas import ClassificationResult, Communication
from securewatch.services.capabilities import TEXT_CLASSIFIER, capabilities

logger = logging.getLogger(__name__)

COMPLIANCE_PACKAGE = "securewatch.rules.compliance"


def clamp_score(value: float) -> int:
    """Round and clamp to the integer range the store accepts."""
    return int(max(0, min(100, round(value))))


def load_compliance_rules() -> list[ComplianceRule]:
    """Discover every ComplianceRule implementation in the compliance package."""
    rules: list[ComplianceRule] = []
    package = importlib.import_module(COMPLIANCE_PACKAGE)
    for _importer, modname, _ispkg in pkgutil.iter_modules(package.__path__):
        module = importlib.import_module(f"{COMPLIANCE_PACKAGE}.{modname}")
        for attr_name in dir(module):
            attr = getattr(module, attr_name)
            if (
                isinstance(attr, type)
                and issubclass(attr, ComplianceRule)
                and attr is not ComplianceRule
                and hasattr(attr, "regulation")
            ):
                rules.append(attr())
    return sorted(rules, key=lambda r: r.regulation)


def is_external(address: str, internal_domains: list[str]) -> bool:
    domain = address.rsplit("@", 1)[-1].strip().lower() if "@" in address else ""
    if not domain:
        return True
    return not any(domain == d or domain.endswith("." + d) for d in internal_domains)


@dataclass
class StageOutcome:
    score: int = 0
    factors: list[str] = field(default_factory=list)
    data: dict = field(default_factory=dict)


class RiskClassifier:
    """Scores a communication for security and compliance risk."""

    def __init__(self, session: AsyncSession | None = None, text_classifier=None,
                 rules: list[ComplianceRule] | None = None):
        self.session = session
        self.text_classifier = text_classifier
        self.rules = rules if rules is not None else load_compliance_rules()
        self.internal_domains = settings.internal_domain_list

    async def classify(self, communication: Communication, employee: Employee | None = None) -> ClassificationResult:
        start = time.perf_counter()
        try:
            result = await self._classify(communication, employee)
        finally:
            classification_duration_seconds.observe(time.perf_counter() - start)
        communications_classified_total.labels(method=result.detection_method).inc()
        logger.debug(
            "Classified %s: score=%d category=%s method=%s",
            communication.message_id, result.risk_score, result.category, result.detection_method,
        )
        return result

    async def _classify(self, communication: Communication, employee: Employee | None) -> ClassificationResult:
        factors: list[str] = []
        stages_run: list[str] = []
        external = self._has_external_recipients(communication)

        if self._is_obviously_safe(communication, external):
            return ClassificationResult(
                risk_score=0,
                detection_method="rules_safe",
                stages_run=["rules"],
                risk_factors=["Routine internal message"],
                external_recipients=False,
            )

        rules_outcome = await self._run_stage("rules", self._stage_rules, communication)
        stages_run.append("rules")
        factors.extend(rules_outcome.factors)

        compliance_outcome = await self._run_stage("compliance", self._stage_compliance, communication, employee, external)
        stages_run.append("compliance")
        factors.extend(compliance_outcome.factors)

        context_outcome = await self._run_stage("context", self._stage_context, communication, employee, external)
        stages_run.append("context")
        factors.extend(context_outcome.factors)

        security = clamp_score(rules_outcome.score + context_outcome.score)
        monitoring = await self._run_stage("monitoring", self._stage_monitoring, employee)
        factors.extend(monitoring.factors)
        weight = monitoring.data.get("weight", 1.0)
        if weight > 1.0 and security > 0:
            security = clamp_score(security * weight)
            factors.append(f"Elevated monitoring (x{weight:g})")
        compliance = clamp_score(compliance_outcome.score)
        risk_score = clamp_score(security + compliance)

        findings: dict[str, list[dict]] = compliance_outcome.data.get("findings", {})
        mandatory = any(f.get("mandatory_report") for items in findings.values() for f in items)
        category = self._pick_category(findings, rules_outcome.data.get("categories", {}))
        method = "rules"

        if not (security <= 20 and compliance <= 30) and settings.llm_band_low <= risk_score <= settings.llm_band_high:
            if self.text_classifier is not None and capabilities.is_available(TEXT_CLASSIFIER):
                stages_run.append("llm")
                refined = await self._stage_llm(communication)
                if refined is None:
                    method = "llm_fallback"
                    factors.append("Text classifier unavailable; rule-based score kept")
                else:
                    method = "llm_escalation"
                    if refined["score"] > risk_score:
                        factors.append(f"Text classifier raised score to {refined['score']}")
                        risk_score = clamp_score(refined["score"])
                        if not findings and refined.get("category"):
                            category = refined["category"]

        return ClassificationResult(
            risk_score=risk_score,
            security_risk_score=security,
            compliance_risk_score=compliance,
            category=category,
            risk_factors=factors,
            compliance_findings=findings,
            detection_method=method,
            stages_run=stages_run,
            mandatory_report=mandatory,
            external_recipients=external,
        )

    async def _run_stage(self, name: str, fn, *args) -> StageOutcome:
        try:
            return await fn(*args)
        except Exception as exc:
            err = ClassifierStageError(name, str(exc)[:200])
            logger.warning("Classifier %s", err)
            classifier_stage_errors_total.labels(stage=name).inc()
            return StageOutcome(factors=[f"Stage {name} skipped: {type(exc).__name__}"])

    # ------------------------------------------------------------------
    # Stage 1: rule pre-filter
    # ------------------------------------------------------------------

    def _is_obviously_safe(self, communication: Communication, external: bool) -> bool:
        if external:
            return False
        content = f"{communication.subject or ''} {communication.body or ''}".strip()
        if len(content) >= patterns.SAFE_MAX_LENGTH or communication.attachments:
            return False
        return any(p.search(content) for p in patterns.SAFE_PATTERNS)

    async def _stage_rules(self, communication: Communication) -> StageOutcome:
        text = f"{communication.subject or ''} {communication.body or ''}"
        outcome = StageOutcome()
        for pat in patterns.SECURITY_PATTERNS:
            if pat.pattern.search(text):
                outcome.score += pat.score
                outcome.factors.append(pat.factor)

        categories = patterns.match_keyword_categories(text.lower())
        for category, hit in categories.items():
            outcome.score += round(hit["score"] * patterns.CATEGORY_WEIGHT)
            outcome.factors.append(f"Keyword category {category}: {', '.join(hit['keywords'])}")
        outcome.data["categories"] = categories
        return outcome

    # ------------------------------------------------------------------
    # Stage 2: compliance pre-screen
    # ------------------------------------------------------------------

    async def _stage_compliance(self, communication: Communication, employee: Employee | None,
                                external: bool) -> StageOutcome:
        screening = ScreeningInput.build(
            communication.subject,
            communication.body,
            has_external_recipients=external,
            department=employee.department if employee else None,
            role=employee.role if employee else None,
        )
        outcome = StageOutcome(data={"findings": {}})
        for rule in self.rules:
            evaluation: RuleEvaluation = await rule.evaluate(screening)
            if not evaluation.triggered:
                continue
            outcome.score += evaluation.score
            outcome.factors.append(f"{evaluation.regulation}: {evaluation.description}")
            outcome.data["findings"].setdefault(evaluation.regulation, []).append(evaluation.to_finding())
        return outcome

    # ------------------------------------------------------------------
    # Stage 3: contextual analysis
    # ------------------------------------------------------------------

    def _has_external_recipients(self, communication: Communication) -> bool:
        return any(is_external(r, self.internal_domains) for r in communication.recipients)

    async def _stage_context(self, communication: Communication, employee: Employee | None,
                             external: bool) -> StageOutcome:
        outcome = StageOutcome()
        recipients = communication.recipients

        if external:
            outcome.score += 20
            outcome.factors.append("External recipients detected")
        if len(recipients) > 10:
            outcome.score += 15
            outcome.factors.append("Large recipient list")

        attachments = communication.attachments
        if attachments:
            outcome.score += 10
            outcome.factors.append(f"{len(attachments)} attachment(s)")
            if any(a.filename.lower().endswith(patterns.RISKY_EXTENSIONS) for a in attachments):
                outcome.score += 20
                outcome.factors.append("High-risk file types detected")
            if any(a.size_bytes > patterns.LARGE_ATTACHMENT_BYTES for a in attachments):
                outcome.score += 15
                outcome.factors.append("Large attachment (>10 MB)")

        sent_at = communication.sent_at
        if sent_at is not None and (sent_at.hour >= 18 or sent_at.hour < 8 or sent_at.weekday() >= 5):
            outcome.score += 15
            outcome.factors.append("Sent outside business hours")

        if employee is not None and employee.baseline:
            deviation = self._baseline_deviation(communication, employee.baseline)
            if deviation:
                outcome.score += 20
                outcome.factors.append(deviation)
        return outcome

    def _baseline_deviation(self, communication: Communication, baseline: dict) -> str | None:
        typical = baseline.get("typical_hours")
        if communication.sent_at is not None and typical and len(typical) == 2:
            start, end = int(typical[0]), int(typical[1])
            if not (start <= communication.sent_at.hour < end):
                return "Sent outside sender's typical hours"

        avg_ratio = baseline.get("avg_external_ratio")
        if avg_ratio and communication.recipients:
            external = sum(1 for r in communication.recipients if is_external(r, self.internal_domains))
            ratio = external / len(communication.recipients)
            if ratio > 2 * float(avg_ratio):
                return "External share well above sender's baseline"
        return None

    async def _stage_monitoring(self, employee: Employee | None) -> StageOutcome:
        return StageOutcome(data={"weight": await self._monitoring_weight(employee)})

    async def _monitoring_weight(self, employee: Employee | None) -> float:
        if employee is None or self.session is None:
            return 1.0
        result = await self.session.execute(
            select(MonitoringFlag.weight)
            .where(MonitoringFlag.employee_id == employee.id)
            .where(MonitoringFlag.expires_at > utcnow())
        )
        weight = result.scalar_one_or_none()
        return float(weight) if weight else 1.0

    # ------------------------------------------------------------------
    # Stage 4: text classifier escalation
    # ------------------------------------------------------------------

    async def _stage_llm(self, communication: Communication) -> dict | None:
        text = f"Subject: {communication.subject or ''}\n\n{communication.body or ''}"
        try:
            return await asyncio.wait_for(
                self.text_classifier.classify(text),
                timeout=settings.llm_timeout_seconds,
            )
        except Exception as exc:
            logger.warning("Text classifier failed, keeping rule-based score: %s", exc)
            classifier_stage_errors_total.labels(stage="llm").inc()
            return None

    @staticmethod
    def _pick_category(findings: dict[str, list[dict]], categories: dict[str, dict]) -> str:
        if findings:
            best = max(
                (f for items in findings.values() for f in items),
                key=lambda f: f.get("score", 0),
            )
            return best["regulation"].lower()
        if categories:
            return max(categories.items(), key=lambda kv: kv[1]["score"])[0]
        return "general"
