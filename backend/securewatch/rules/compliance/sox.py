"""
SOX: financial reporting controls.

Only relevant for Finance and Accounting staff sending SOX-sensitive material
outside the organization.
"""

import re

from securewatch.rules.base import ComplianceRule, RuleEvaluation, ScreeningInput

SOX_PATTERNS = [
    re.compile(r"financial\s+report"),
    re.compile(r"audit\s+trail"),
    re.compile(r"internal\s+control"),
    re.compile(r"financial\s+statement"),
    re.compile(r"earnings"),
    re.compile(r"revenue\s+recognition"),
    re.compile(r"sec\s+filing"),
    re.compile(r"quarterly\s+results"),
]

SOX_DEPARTMENTS = {"finance", "accounting"}


class SOXRule(ComplianceRule):
    regulation = "SOX"
    category = "financial_controls"
    severity = "High"
    default_score = 35
    description = "Potential financial reporting control violation"

    async def evaluate(self, screening: ScreeningInput) -> RuleEvaluation:
        if (screening.department or "").strip().lower() not in SOX_DEPARTMENTS:
            return self._not_triggered()
        if not screening.has_external_recipients:
            return self._not_triggered()

        keywords = self.matched(SOX_PATTERNS, screening.content)
        if not keywords:
            return self._not_triggered()

        return self._triggered({"keywords": keywords, "department": screening.department})
