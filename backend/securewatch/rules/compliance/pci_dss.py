"""
PCI DSS: payment card data.

A card-number-shaped sequence is reportable on its own; card vocabulary
without a number still raises the compliance score.
"""

import re

from securewatch.rules.base import ComplianceRule, RuleEvaluation, ScreeningInput

CARD_NUMBER_PATTERNS = [
    re.compile(r"\b4\d{3}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),  # Visa
    re.compile(r"\b5[1-5]\d{2}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),  # MasterCard
    re.compile(r"\b3[47]\d{2}[\s-]?\d{6}[\s-]?\d{5}\b"),  # American Express
]

CARD_TERM_PATTERNS = [
    re.compile(r"\bcvv\b"),
    re.compile(r"\bexpir"),
    re.compile(r"card\s+number"),
    re.compile(r"payment\s+card"),
    re.compile(r"cardholder"),
]


class PCIDSSRule(ComplianceRule):
    regulation = "PCI_DSS"
    category = "payment_data"
    severity = "High"
    default_score = 40
    description = "Potential payment card data exposure"

    async def evaluate(self, screening: ScreeningInput) -> RuleEvaluation:
        numbers = [m.group(0) for p in CARD_NUMBER_PATTERNS for m in p.finditer(screening.text)]
        terms = self.matched(CARD_TERM_PATTERNS, screening.content)
        if not numbers and not terms:
            return self._not_triggered()

        # Never persist the PAN itself, only its last four digits
        masked = sorted({"****" + re.sub(r"\D", "", n)[-4:] for n in numbers})
        return self._triggered(
            {"card_numbers": masked, "terms": terms},
            mandatory_report=bool(numbers),
        )
