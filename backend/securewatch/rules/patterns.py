"""
Keyword and regex tables for the fast rule pre-filter.

Each pattern carries the score it contributes and the risk factor recorded
when it matches. Scores are additive; the classifier clamps the total.
"""

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class SecurityPattern:
    pattern: re.Pattern
    score: int
    factor: str

    @property
    def severity(self) -> str:
        if self.score >= 20:
            return "high"
        if self.score >= 10:
            return "medium"
        return "low"


def _p(regex: str) -> re.Pattern:
    return re.compile(regex, re.IGNORECASE)


HIGH_RISK_PATTERNS = [
    SecurityPattern(_p(r"\b(password|credential|login|secret|api[_\s]?key)\b"), 25, "Sensitive credentials mentioned"),
    SecurityPattern(_p(r"\b(confidential|proprietary|classified|nda)\b"), 20, "Confidential content markers"),
    SecurityPattern(_p(r"\b(competitor|rival|competing)\b"), 15, "Competitor references"),
    SecurityPattern(_p(r"\b(resignation|quit|leaving|terminate)\b"), 20, "Employment termination indicators"),
    SecurityPattern(_p(r"\b(download|backup|copy|export|extract)\b.*\b(database|data|file)\b"), 30, "Data extraction activity"),
]

MEDIUM_RISK_PATTERNS = [
    SecurityPattern(_p(r"\b(urgent|immediate|asap|emergency)\b"), 10, "Urgency pressure"),
    SecurityPattern(_p(r"\b(offer|opportunity|deal|proposal)\b"), 8, "Business opportunity"),
    SecurityPattern(_p(r"\b(meeting|call|discussion)\b.*\b(external|outside|client)\b"), 12, "External communications"),
]

SECURITY_PATTERNS = HIGH_RISK_PATTERNS + MEDIUM_RISK_PATTERNS

# Keyword categories: {category: {keyword: weight}}. A category's score is the
# sum of matched weights, capped, then weighted into the pre-filter score.
KEYWORD_CATEGORIES: dict[str, dict[str, int]] = {
    "data_exfiltration": {
        "personal email": 15,
        "gmail.com": 10,
        "usb drive": 15,
        "dropbox": 10,
        "wetransfer": 15,
        "send to my home": 20,
        "customer list": 20,
        "source code": 15,
    },
    "financial": {
        "wire transfer": 15,
        "bank account": 15,
        "insider": 20,
        "stock tip": 20,
        "off the books": 25,
    },
    "policy": {
        "don't tell": 15,
        "off the record": 15,
        "delete this email": 20,
        "keep this between us": 20,
    },
    "security_bypass": {
        "disable antivirus": 25,
        "bypass": 15,
        "turn off logging": 25,
        "share my password": 25,
        "personal vpn": 10,
    },
}
CATEGORY_SCORE_CAP = 75
CATEGORY_WEIGHT = 0.3

# Short internal messages matching one of these skip the whole pipeline.
SAFE_PATTERNS = [
    _p(r"^(re:|fwd:|meeting|calendar|invitation)"),
    _p(r"\b(newsletter|update|notification|reminder)\b"),
    _p(r"\b(thank you|thanks|congratulations|welcome)\b"),
]
SAFE_MAX_LENGTH = 100

PERSONAL_IDENTIFIER_PATTERNS = [
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),  # SSN
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),  # email address
    re.compile(r"\b\d{3}[\s-]?\d{3}[\s-]?\d{4}\b"),  # phone number
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b"),  # possible date of birth
]

RISKY_EXTENSIONS = (".zip", ".rar", ".exe", ".bat", ".sql", ".csv")
LARGE_ATTACHMENT_BYTES = 10 * 1024 * 1024


def has_personal_identifiers(text: str) -> bool:
    return any(p.search(text) for p in PERSONAL_IDENTIFIER_PATTERNS)


def match_keyword_categories(content: str) -> dict[str, dict]:
    """Return {category: {"score": int, "keywords": [...]}} for categories with hits.

    `content` must already be lower-cased.
    """
    matches = {}
    for category, keywords in KEYWORD_CATEGORIES.items():
        hit = [k for k in keywords if k in content]
        if hit:
            score = min(sum(keywords[k] for k in hit), CATEGORY_SCORE_CAP)
            matches[category] = {"score": score, "keywords": hit}
    return matches
