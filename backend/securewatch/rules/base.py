"""
Base rule class for all regulatory compliance rules.

Every rule implements `evaluate()` which takes a ScreeningInput built from a
communication and returns a RuleEvaluation result.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class ScreeningInput:
    """What a compliance rule gets to look at."""
    text: str                     # subject + body, original case
    content: str                  # subject + body, lower-cased
    has_external_recipients: bool
    department: str | None = None
    role: str | None = None

    @classmethod
    def build(cls, subject: str | None, body: str | None, *, has_external_recipients: bool,
              department: str | None = None, role: str | None = None) -> "ScreeningInput":
        text = f"{subject or ''} {body or ''}"
        return cls(
            text=text,
            content=text.lower(),
            has_external_recipients=has_external_recipients,
            department=department,
            role=role,
        )


@dataclass
class RuleEvaluation:
    """Result of evaluating a single regulation against a single communication."""
    regulation: str
    triggered: bool
    score: int = 0
    severity: str = "Low"
    category: str = ""
    description: str = ""
    mandatory_report: bool = False
    evidence: dict = field(default_factory=dict)

    def to_finding(self) -> dict:
        return {
            "regulation": self.regulation,
            "category": self.category,
            "severity": self.severity,
            "description": self.description,
            "score": self.score,
            "mandatory_report": self.mandatory_report,
            "evidence": self.evidence,
        }


class ComplianceRule(ABC):
    """Abstract base class for all regulation screening rules."""

    regulation: str           # "GDPR" | "PCI_DSS" | "SOX" | "HIPAA"
    category: str
    severity: str             # "Low" | "Medium" | "High" | "Critical"
    default_score: int
    description: str

    @abstractmethod
    async def evaluate(self, screening: ScreeningInput) -> RuleEvaluation:
        """
        Screen one communication against this regulation.

        Args:
            screening: normalized text plus recipient/employee context

        Returns:
            RuleEvaluation with triggered, score, severity, evidence
        """
        pass

    def _not_triggered(self) -> RuleEvaluation:
        """Helper for rules that don't fire."""
        return RuleEvaluation(regulation=self.regulation, triggered=False)

    def _triggered(self, evidence: dict, *, mandatory_report: bool = False,
                   description: str | None = None) -> RuleEvaluation:
        """Helper for rules that fire."""
        return RuleEvaluation(
            regulation=self.regulation,
            triggered=True,
            score=self.default_score,
            severity=self.severity,
            category=self.category,
            description=description or self.description,
            mandatory_report=mandatory_report,
            evidence=evidence,
        )

    @staticmethod
    def matched(patterns, text: str) -> list[str]:
        """Return the source of every pattern that matches `text`."""
        return [p.pattern for p in patterns if p.search(text)]
