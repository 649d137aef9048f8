from __future__ import annotations

from dataclasses import dataclass, field
import re


# Order matters: IBAN runs before card/phone patterns to avoid partial matches.
PII_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("email", re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}")),
    (
        "iban",
        re.compile(
            r"\b[A-Z]{2}\d{2}\s?[\dA-Z]{4}\s?(?:[\dA-Z]{4}\s?){1,7}[\dA-Z]{1,4}\b",
            re.IGNORECASE,
        ),
    ),
    ("credit_card", re.compile(r"\b\d{4}[\s\-]?\d{4}[\s\-]?\d{4}[\s\-]?\d{1,7}\b")),
    ("national_id", re.compile(r"\b[12]\d{9}\b")),
    ("national_id", re.compile(r"\b\d{3}[\s\-]\d{2}[\s\-]\d{4}\b")),
    ("phone", re.compile(r"\+\d{1,4}[\s\-.]?\(?\d{2,4}\)?[\s\-.]?\d{3,4}[\s\-.]?\d{3,4}")),
]


@dataclass(frozen=True)
class PiiRedactionResult:
    redacted_text: str
    redacted: bool
    # Match types only; values are never returned.
    matches: list[str] = field(default_factory=list)


def redact_pii(text: str | None) -> PiiRedactionResult:
    if not text:
        return PiiRedactionResult(redacted_text=text or "", redacted=False)

    result = text
    match_types: list[str] = []
    for pii_type, pattern in PII_PATTERNS:
        replaced = pattern.sub(f"[REDACTED_{pii_type.upper()}]", result)
        if replaced != result:
            if pii_type not in match_types:
                match_types.append(pii_type)
            result = replaced
    return PiiRedactionResult(redacted_text=result, redacted=bool(match_types), matches=match_types)


def safe_summarize(text: str | None) -> dict[str, object]:
    # Describe text for logs without including any of it.
    if not text:
        return {"length": 0, "has_pii": False, "pii_types": []}
    redaction = redact_pii(text)
    return {"length": len(text), "has_pii": redaction.redacted, "pii_types": redaction.matches}
