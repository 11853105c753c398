"""High-recall regex library for Swiss/EU structured PII.

These run alongside the NER model and are near-zero cost.  They catch
the deterministic stuff: AVS numbers, IBANs, emails, phones, VAT and
payment references, postal codes with city, streets, dates, amounts.

Priorities resolve overlaps between rules: lower wins.
"""

from __future__ import annotations
import re
from dataclasses import dataclass

MIN_MATCH_LENGTH = 3
DEFAULT_RULE_CONFIDENCE = 0.7

_DE_MONTHS = "Januar|Jänner|Februar|März|April|Mai|Juni|Juli|August|September|Oktober|November|Dezember"
_FR_MONTHS = "janvier|février|mars|avril|mai|juin|juillet|août|septembre|octobre|novembre|décembre"
_EN_MONTHS = "January|February|March|April|May|June|July|August|September|October|November|December"
_DAY = r"(?:0?[1-9]|[12]\d|3[01])"
_SEP = r"[\s./-]"

# Each pattern: (entity_type, compiled_regex, priority)
_PATTERNS: list[tuple[str, re.Pattern, int]] = [
    # ── Priority 1: high-confidence identifiers ──

    # Swiss AVS (756.XXXX.XXXX.XX, dots optional)
    ("SWISS_AVS", re.compile(
        r"(?<!\d)756[.\s]?\d{4}[.\s]?\d{4}[.\s]?\d{2}(?!\d)"
    ), 1),

    # IBAN (CH, DE, FR, AT, IT, ...), optionally grouped by four
    ("IBAN", re.compile(
        r"\b[A-Z]{2}\d{2}\s?(?:[A-Z0-9]{4}\s?){3,7}[A-Z0-9]{1,4}\b"
    ), 1),

    ("EMAIL", re.compile(
        r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b"
    ), 1),

    # ── Priority 2: semi-structured identifiers ──

    # International phones (CH, DE, FR, IT, AT)
    ("PHONE", re.compile(
        r"(?<![\d+])(?:\+|00)?(?:41|49|33|39|43)" + _SEP + r"?"
        r"(?:\(?\d{1,4}\)?" + _SEP + r"?)?"
        r"\d{2,4}" + _SEP + r"?\d{2,4}" + _SEP + r"?\d{2,4}(?!\d)"
    ), 2),

    # Swiss national format: 0xx xxx xx xx
    ("PHONE", re.compile(
        r"(?<![\d+])0\d{2}" + _SEP + r"?\d{3}" + _SEP + r"?\d{2}" + _SEP + r"?\d{2}(?!\d)"
    ), 2),

    # Swiss UID / VAT, optionally tagged MWST / TVA / IVA
    ("VAT_NUMBER", re.compile(
        r"\bCHE[-\s]?\d{3}[.\s]?\d{3}[.\s]?\d{3}(?:\s*(?:MWST|TVA|IVA))?\b",
        re.IGNORECASE,
    ), 2),

    ("VAT_NUMBER", re.compile(
        r"\b(?:DE|FR|IT|AT)\s?U?\d{8,11}\b"
    ), 2),

    # Swiss QR reference (27 digits, usually grouped)
    ("PAYMENT_REF", re.compile(
        r"\b\d{2}\s?\d{5}\s?\d{5}\s?\d{5}\s?\d{5}\s?\d{5,6}\b"
    ), 2),

    # ISO 11649 creditor reference
    ("PAYMENT_REF", re.compile(
        r"\bRF\d{2}(?:\s?[A-Z0-9]{1,4}){1,6}\b"
    ), 2),

    # ── Priority 3: addresses ──

    # Swiss postal code + city
    ("SWISS_ADDRESS", re.compile(
        r"\b(?:CH[-\s]?)?[1-9]\d{3}[^\S\n]+[A-ZÄÖÜÉÈ][a-zäöüéèàç]+(?:[-\s][A-ZÄÖÜ][a-zäöüéèàç]+)*"
    ), 3),

    # German / Austrian postal code + city
    ("EU_ADDRESS", re.compile(
        r"\b(?:D[-\s]?|A[-\s]?)?\d{5}[^\S\n]+[A-ZÄÖÜ][a-zäöüß]+(?:[-\s][A-ZÄÖÜ][a-zäöüß]+)*"
    ), 3),

    # French postal code + city
    ("EU_ADDRESS", re.compile(
        r"\b(?:F[-\s]?)?\d{5}[^\S\n]+[A-ZÀÂÆÉÈÊËÏÎÔŒÙÛÜ][a-zàâæéèêëïîôœùûüÿç]+"
        r"(?:[-\s][A-ZÀÂÆÉÈÊËÏÎÔŒÙÛÜ][a-zàâæéèêëïîôœùûüÿç]+)*"
    ), 3),

    # German street + number
    ("ADDRESS", re.compile(
        r"\b[A-ZÄÖÜ][a-zäöüß]+(?:straße|strasse|gasse|weg|platz|allee)[^\S\n]+\d+[a-z]?\b",
        re.IGNORECASE,
    ), 3),

    # French street + number
    ("ADDRESS", re.compile(
        r"\b(?:rue|avenue|boulevard|chemin|route|place|allée)[^\S\n]+"
        r"(?:de[^\S\n]+(?:la[^\S\n]+)?|du[^\S\n]+|des[^\S\n]+)?"
        r"[A-ZÀ-Ÿ][a-zà-ÿ]+(?:(?:[^\S\n]|-)[A-Za-zà-ÿ]+)*[^\S\n]+\d+[a-z]?\b",
        re.IGNORECASE,
    ), 3),

    # ── Priority 4: dates ──

    ("DATE", re.compile(
        r"\b" + _DAY + r"[./-](?:0?[1-9]|1[0-2])[./-](?:19|20)?\d{2}\b"
    ), 4),

    ("DATE", re.compile(
        r"\b(?:19|20)\d{2}-(?:0[1-9]|1[0-2])-(?:0[1-9]|[12]\d|3[01])\b"
    ), 4),

    ("DATE", re.compile(
        r"\b" + _DAY + r"\.?\s*(?:" + _DE_MONTHS + r")\s*(?:19|20)\d{2}\b",
        re.IGNORECASE,
    ), 4),

    ("DATE", re.compile(
        r"\b" + _DAY + r"(?:er)?\s*(?:" + _FR_MONTHS + r")\s*(?:19|20)\d{2}\b",
        re.IGNORECASE,
    ), 4),

    ("DATE", re.compile(
        r"\b(?:" + _DAY + r"(?:st|nd|rd|th)?\s+(?:" + _EN_MONTHS + r"),?\s+"
        r"|(?:" + _EN_MONTHS + r")\s+" + _DAY + r"(?:st|nd|rd|th)?,?\s+)(?:19|20)\d{2}\b",
        re.IGNORECASE,
    ), 4),

    # ── Priority 5: amounts ──

    ("AMOUNT", re.compile(
        r"(?<!\w)(?:CHF|EUR|€|Fr\.?)\s*\d{1,3}(?:['’\s.,]\d{3})*(?:[.,]\d{2}|\.-)?(?!\d)",
        re.IGNORECASE,
    ), 5),
]


@dataclass(frozen=True, slots=True)
class RuleMatch:
    """A single regex hit."""
    entity_type: str
    start: int
    end: int
    text: str
    priority: int


def scan_rules(text: str, min_length: int = MIN_MATCH_LENGTH) -> list[RuleMatch]:
    """Run all rule patterns against text.  Returns non-overlapping matches."""
    matches: list[RuleMatch] = []
    for entity_type, pattern, priority in _PATTERNS:
        for m in pattern.finditer(text):
            if len(m.group()) < min_length:
                continue
            matches.append(RuleMatch(
                entity_type=entity_type,
                start=m.start(),
                end=m.end(),
                text=m.group(),
                priority=priority,
            ))
    return _deduplicate(matches)


def _deduplicate(matches: list[RuleMatch]) -> list[RuleMatch]:
    """Remove overlapping matches, keeping higher-priority (then longer) ones."""
    if not matches:
        return matches
    ranked = sorted(matches, key=lambda m: (m.priority, -(m.end - m.start), m.start))
    taken: list[RuleMatch] = []
    used_ranges: list[tuple[int, int]] = []
    for m in ranked:
        if not any(m.start < e and m.end > s for s, e in used_ranges):
            taken.append(m)
            used_ranges.append((m.start, m.end))
    return sorted(taken, key=lambda m: m.start)
