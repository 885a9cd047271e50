"""
HIPAA: protected health information.

Medical terms are a strong PHI signal. Appointment details (name, date and
time) are only flagged when the message is not a generic booking template.
"""

import re

from securewatch.rules.base import ComplianceRule, RuleEvaluation, ScreeningInput

MEDICAL_PATTERNS = [
    re.compile(r"medical\s+record"),
    re.compile(r"patient\s+data"),
    re.compile(r"health\s+information"),
    re.compile(r"diagnosis"),
    re.compile(r"treatment"),
    re.compile(r"prescription"),
    re.compile(r"hipaa"),
    re.compile(r"icd-?10"),
    re.compile(r"cpt\s*code"),
    re.compile(r"\bssn\b"),
    re.compile(r"social\s+security"),
    re.compile(r"date\s+of\s+birth"),
    re.compile(r"\bdob\b"),
]

BOOKING_TEMPLATE_MARKERS = [
    re.compile(r"powered\s+by\s+microsoft\s+bookings"),
    re.compile(r"bookingsdatetime\.png"),
    re.compile(r"via\s+microsoft\s+teams"),
    re.compile(r"join\s+your\s+appointment"),
]

APPOINTMENT_KEYWORD = re.compile(r"(appointment|booking|consult|hour\s+meeting|follow[-\s]?up)")
DATE_WORD = re.compile(
    r"\b(january|february|march|april|may|june|july|august|september|october|november|december"
    r"|mon|tue|wed|thu|fri|sat|sun)\b"
)
TIME_BLOCK = re.compile(r"\b\d{1,2}:\d{2}\s?(am|pm)\b")
PERSON_NAME = re.compile(r"\b[A-Z][a-z]{2,}\b")


class HIPAARule(ComplianceRule):
    regulation = "HIPAA"
    category = "health_information"
    severity = "Critical"
    default_score = 45
    description = "Potential protected health information exposure"

    async def evaluate(self, screening: ScreeningInput) -> RuleEvaluation:
        content = screening.content
        medical = self.matched(MEDICAL_PATTERNS, content)

        if not medical and any(p.search(content) for p in BOOKING_TEMPLATE_MARKERS):
            return self._not_triggered()

        if medical:
            return self._triggered({"medical_terms": medical}, mandatory_report=True)

        appointment = (
            APPOINTMENT_KEYWORD.search(content)
            and DATE_WORD.search(content)
            and TIME_BLOCK.search(content)
            and PERSON_NAME.search(screening.text)
        )
        if not appointment:
            return self._not_triggered()

        return self._triggered(
            {"appointment_context": True},
            description="Appointment details that may reveal protected health information",
        )
