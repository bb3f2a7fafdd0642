"""
Content precheck run before anything is stored.

Detects PII (redacting low-risk types, blocking high-risk ones), rejects
oversized content and content carrying script/eval payloads, and flags
sensitive keywords.
"""

import logging
import re
from typing import List, Optional, Pattern, Tuple

from context_memory.models import PrecheckResult

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 50_000

# Order matters: redaction runs in this order over the content
PII_PATTERNS: List[Tuple[str, Pattern]] = [
    ("email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
    ("phone", re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")),
    ("ssn", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    ("credit_card", re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b")),
]

HIGH_RISK_PII = {"ssn", "credit_card"}

# Reported alongside PII types but not PII itself
SENSITIVE_KEYWORDS_FLAG = "sensitive_keywords"

SENSITIVE_KEYWORDS = (
    "password",
    "secret",
    "token",
    "credential",
    "api key",
    "social security",
    "credit card",
    "bank account",
)

SUSPICIOUS_PATTERNS: List[Pattern] = [
    re.compile(r"eval\s*\(", re.IGNORECASE),
    re.compile(r"exec\s*\(", re.IGNORECASE),
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
]


class ContentPrecheck:
    """
    Rule-based content safety check.

    Decisions:
    - "allow": nothing found (sensitive keywords are only flagged)
    - "redact": email/phone found, ``redacted_content`` holds the cleaned text
    - "block": SSN/credit card, oversized or potentially malicious content

    Example:
        >>> precheck = ContentPrecheck()
        >>> result = precheck.check("Reach me at jane@example.com")
        >>> result.decision, result.redacted_content
        ('redact', 'Reach me at [REDACTED_EMAIL]')
    """

    def __init__(self, max_content_length: int = MAX_CONTENT_LENGTH):
        self.max_content_length = max_content_length

    def check(self, content: str) -> PrecheckResult:
        pii_types: List[str] = []
        reasons: List[str] = []
        redacted = content

        for pii_type, pattern in PII_PATTERNS:
            if pattern.search(content):
                pii_types.append(pii_type)
                redacted = pattern.sub(f"[REDACTED_{pii_type.upper()}]", redacted)

        lowered = content.lower()
        if any(keyword in lowered for keyword in SENSITIVE_KEYWORDS):
            pii_types.append(SENSITIVE_KEYWORDS_FLAG)
            reasons.append("Sensitive keywords present")

        decision = "allow"
        if HIGH_RISK_PII.intersection(pii_types):
            decision = "block"
            reasons.append("High-risk PII detected")
        elif set(pii_types) - {SENSITIVE_KEYWORDS_FLAG}:
            decision = "redact"
            reasons.append("PII detected and redacted")

        if len(content) > self.max_content_length:
            decision = "block"
            reasons.append("Content too long")

        if any(pattern.search(content) for pattern in SUSPICIOUS_PATTERNS):
            decision = "block"
            reasons.append("Potentially malicious content detected")

        if decision != "allow":
            logger.info(f"Precheck decision={decision} pii={pii_types} reasons={reasons}")

        redacted_content: Optional[str] = redacted if decision == "redact" else None
        return PrecheckResult(
            decision=decision,
            redacted_content=redacted_content,
            pii_types=pii_types,
            reasons=reasons,
        )
