"""
GDPR: personal data handling.

Data-protection vocabulary alone is common in routine mail; the rule fires only
when it co-occurs with a personal identifier or leaves the organization.
"""

import re

from securewatch.rules.base import ComplianceRule, RuleEvaluation, ScreeningInput
from securewatch.rules.patterns import has_personal_identifiers

GDPR_PATTERNS = [
    re.compile(r"personal\s+data"),
    re.compile(r"data\s+subject"),
    re.compile(r"privacy\s+policy"),
    re.compile(r"consent"),
    re.compile(r"data\s+processing"),
    re.compile(r"right\s+to\s+be\s+forgotten"),
    re.compile(r"data\s+portability"),
    re.compile(r"lawful\s+basis"),
]


class GDPRRule(ComplianceRule):
    regulation = "GDPR"
    category = "data_protection"
    severity = "Medium"
    default_score = 30
    description = "Potential GDPR data handling issue detected"

    async def evaluate(self, screening: ScreeningInput) -> RuleEvaluation:
        keywords = self.matched(GDPR_PATTERNS, screening.content)
        if not keywords:
            return self._not_triggered()

        identifiers = has_personal_identifiers(screening.text)
        if not (identifiers or screening.has_external_recipients):
            return self._not_triggered()

        return self._triggered({
            "keywords": keywords,
            "personal_identifiers": identifiers,
            "external_recipients": screening.has_external_recipients,
        })
