"""Document-type specific extraction rules.

``InvoiceRules`` and ``LetterRules`` add entities that only make sense
once the document type is known (invoice numbers, salutation names,
signatures, ...).  ``RuleEngine`` picks the rule set for a
classification, then applies per-type thresholds and position boosts.
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Callable

from stdnum import iban as stdnum_iban

from .document_classifier import DocumentClassification
from .types import Entity, SOURCE_RULE

logger = logging.getLogger(__name__)

IdFactory = Callable[[], str]

HEADER_RATIO = 0.2
FOOTER_RATIO = 0.8


def _merge_new(existing: list[Entity], new: list[Entity]) -> list[Entity]:
    """Add *new* to *existing*; on overlap the higher confidence wins."""
    result = list(existing)
    for ent in new:
        idx = next((i for i, e in enumerate(result) if e.overlaps(ent)), None)
        if idx is None:
            result.append(ent)
        elif ent.confidence > result[idx].confidence:
            result[idx] = ent
    return sorted(result, key=lambda e: e.start)


def _boost(entity: Entity, amount: float, **metadata: object) -> Entity:
    return replace(
        entity,
        confidence=min(entity.confidence + amount, 1.0),
        metadata={**entity.metadata, **metadata},
    )


# ── Invoices ─────────────────────────────────────────────────────────

_INVOICE_NUMBER_PATTERNS = [
    re.compile(r"(?i:invoice|inv|bill)[^\S\n]*(?i:no\.?|nr\.?|#|number|:)[^\S\n]*([A-Z0-9][\w-]{2,20})"),
    re.compile(r"(?i:rechnung|rech)[^\S\n]*(?i:nr\.?|nummer|:)[^\S\n]*([A-Z0-9][\w-]{2,20})"),
    re.compile(r"(?i:facture|fact|fac)[^\S\n]*(?i:n[°o]\.?|numéro|:)[^\S\n]*([A-Z0-9][\w-]{2,20})"),
    re.compile(r"(?i:ref|reference|réf)[^\S\n]*(?i:no\.?|nr\.?|#|:)?[^\S\n]*([A-Z0-9][\w-]{4,20})"),
]

_AMOUNT_PATTERNS = [
    re.compile(r"(?i:chf|sfr|eur|€|usd|\$|gbp|£)[^\S\n]*\d[\d'’.,]*\d"),
    re.compile(r"\d[\d'’.,]*\d[^\S\n]*(?i:chf|sfr|eur|€|usd)\b"),
]

_SWISS_VAT = re.compile(r"\bCHE[-\s]?\d{3}[.\s]?\d{3}[.\s]?\d{3}(?:\s*(?:MWST|TVA|IVA))?\b", re.I)

_EU_VAT_PATTERNS = {
    "AT": re.compile(r"\bATU\d{8}\b"),
    "BE": re.compile(r"\bBE0?\d{9,10}\b"),
    "DE": re.compile(r"\bDE\d{9}\b"),
    "FR": re.compile(r"\bFR[A-Z0-9]{2}\d{9}\b"),
    "IT": re.compile(r"\bIT\d{11}\b"),
    "NL": re.compile(r"\bNL\d{9}B\d{2}\b"),
    "ES": re.compile(r"\bES[A-Z0-9]\d{7}[A-Z0-9]\b"),
    "LU": re.compile(r"\bLU\d{8}\b"),
}

_IBAN = re.compile(r"\b[A-Z]{2}\d{2} ?(?:[A-Z0-9]{4} ?){2,7}[A-Z0-9]{1,4}\b")

_QR_REFERENCE_PATTERNS = [
    re.compile(r"\b\d{26,27}\b"),
    re.compile(r"\b\d{2}(?: \d{5}){5}\b"),
]
_RF_REFERENCE = re.compile(r"\bRF\d{2}[A-Z0-9]{1,21}\b")


def parse_amount(text: str) -> tuple[str, float] | None:
    """Currency and value of an amount string like "CHF 1'234.50"."""
    currency = "UNKNOWN"
    lowered = text.lower()
    for code, markers in (("CHF", ("chf", "sfr")), ("EUR", ("eur", "€")), ("USD", ("usd", "$")), ("GBP", ("gbp", "£"))):
        if any(m in lowered for m in markers):
            currency = code
            break
    numeric = re.sub(r"[^\d.,'’]", "", text)
    if "'" in numeric or "’" in numeric:
        normalized = re.sub(r"['’]", "", numeric).replace(",", ".")
    elif re.search(r"\d+\.\d{3},\d{2}$", numeric):
        normalized = numeric.replace(".", "").replace(",", ".")
    else:
        normalized = numeric.replace(",", "")
    try:
        return currency, float(normalized)
    except ValueError:
        return None


@dataclass
class InvoiceRules:
    extract_amounts: bool = False
    extract_vat_numbers: bool = True
    extract_payment_refs: bool = True
    header_confidence_boost: float = 0.2

    def apply(self, text: str, existing: list[Entity], new_id: IdFactory) -> list[Entity]:
        found: list[Entity] = []
        found.extend(self._invoice_numbers(text, new_id))
        if self.extract_amounts:
            found.extend(self._amounts(text, new_id))
        if self.extract_vat_numbers:
            found.extend(self._vat_numbers(text, new_id))
        if self.extract_payment_refs:
            found.extend(self._payment_refs(text, new_id))

        header_end = int(len(text) * HEADER_RATIO)
        found = [
            _boost(e, self.header_confidence_boost, position_boost="header") if e.start < header_end else e
            for e in found
        ]
        return _merge_new(existing, found)

    def _invoice_numbers(self, text: str, new_id: IdFactory) -> list[Entity]:
        out: list[Entity] = []
        seen: set[tuple[int, int]] = set()
        for pattern in _INVOICE_NUMBER_PATTERNS:
            for m in pattern.finditer(text):
                number = m.group(1)
                span = m.span(1)
                if span in seen or not any(ch.isdigit() for ch in number):
                    continue
                seen.add(span)
                out.append(Entity(
                    id=new_id(), type="INVOICE_NUMBER", text=number,
                    start=span[0], end=span[1], confidence=0.85, source=SOURCE_RULE,
                    metadata={"rule_type": "invoice_number", "label": m.group()[: m.start(1) - m.start()].strip()},
                ))
        return out

    def _amounts(self, text: str, new_id: IdFactory) -> list[Entity]:
        out: list[Entity] = []
        seen: set[tuple[int, int]] = set()
        for pattern in _AMOUNT_PATTERNS:
            for m in pattern.finditer(text):
                if m.span() in seen:
                    continue
                seen.add(m.span())
                parsed = parse_amount(m.group())
                if parsed is None or parsed[1] < 10:
                    continue
                out.append(Entity(
                    id=new_id(), type="AMOUNT", text=m.group(),
                    start=m.start(), end=m.end(), confidence=0.75, source=SOURCE_RULE,
                    metadata={"rule_type": "amount", "currency": parsed[0], "value": parsed[1]},
                ))
        return out

    def _vat_numbers(self, text: str, new_id: IdFactory) -> list[Entity]:
        out: list[Entity] = []
        seen: set[tuple[int, int]] = set()
        for m in _SWISS_VAT.finditer(text):
            seen.add(m.span())
            out.append(Entity(
                id=new_id(), type="VAT_NUMBER", text=m.group(),
                start=m.start(), end=m.end(), confidence=0.95, source=SOURCE_RULE,
                metadata={"rule_type": "swiss_vat", "country": "CH"},
            ))
        for country, pattern in _EU_VAT_PATTERNS.items():
            for m in pattern.finditer(text):
                if m.span() in seen:
                    continue
                seen.add(m.span())
                out.append(Entity(
                    id=new_id(), type="VAT_NUMBER", text=m.group(),
                    start=m.start(), end=m.end(), confidence=0.9, source=SOURCE_RULE,
                    metadata={"rule_type": "eu_vat", "country": country},
                ))
        return out

    def _payment_refs(self, text: str, new_id: IdFactory) -> list[Entity]:
        out: list[Entity] = []
        seen: set[tuple[int, int]] = set()
        for m in _IBAN.finditer(text):
            compact = m.group().replace(" ", "")
            if not stdnum_iban.is_valid(compact):
                continue
            seen.add(m.span())
            out.append(Entity(
                id=new_id(), type="IBAN", text=m.group(),
                start=m.start(), end=m.end(), confidence=0.95, source=SOURCE_RULE,
                metadata={"rule_type": "iban", "country": compact[:2]},
            ))
        for pattern in _QR_REFERENCE_PATTERNS:
            for m in pattern.finditer(text):
                compact = m.group().replace(" ", "")
                if m.span() in seen or not 20 <= len(compact) <= 27:
                    continue
                seen.add(m.span())
                out.append(Entity(
                    id=new_id(), type="QR_REFERENCE", text=m.group(),
                    start=m.start(), end=m.end(), confidence=0.85, source=SOURCE_RULE,
                    metadata={"rule_type": "qr_reference", "reference_type": "QR"},
                ))
        for m in _RF_REFERENCE.finditer(text):
            if m.span() in seen:
                continue
            seen.add(m.span())
            out.append(Entity(
                id=new_id(), type="PAYMENT_REF", text=m.group(),
                start=m.start(), end=m.end(), confidence=0.85, source=SOURCE_RULE,
                metadata={"rule_type": "qr_reference", "reference_type": "ISO11649"},
            ))
        return out


# ── Letters ──────────────────────────────────────────────────────────

_NAME = r"([A-ZÀ-ÖØ-Þ][\w'’-]+(?:[^\S\n]+[A-ZÀ-ÖØ-Þ][\w'’-]+)*)"
_SP = r"[^\S\n]+"
_TITLE = r"(?:(?:Dr|Prof)\.?" + _SP + r")?"

SALUTATION_PATTERNS: dict[str, list[re.Pattern]] = {
    "en": [
        re.compile(r"\b(?i:dear|to)" + _SP + r"(?:(?:Mr|Mrs|Ms|Miss|Dr|Prof)\.?" + _SP + r")?" + _NAME),
    ],
    "fr": [
        re.compile(r"\b(?i:cher|chère)" + _SP + r"(?:Monsieur|Madame|M\.|Mme\.?)" + _SP + _NAME),
        re.compile(r"\b(?:Monsieur|Madame)" + _SP + _NAME),
    ],
    "de": [
        re.compile(r"\b(?i:sehr" + _SP + r"geehrter?)" + _SP + r"(?:Herr|Frau)" + _SP + _TITLE + _NAME),
        re.compile(r"\b(?i:lieber?)" + _SP + r"(?:(?:Herr|Frau)" + _SP + r")?" + _NAME),
        re.compile(r"\b(?:Herr|Frau)" + _SP + _TITLE + _NAME),
    ],
    "it": [
        re.compile(r"\b(?i:gentile|egregio)" + _SP + r"(?:Signora|Signor|Sig\.(?:ra)?)" + _SP + _NAME),
        re.compile(r"\b(?i:caro|cara)" + _SP + r"([A-ZÀ-ÖØ-Þ][\w'’-]+)"),
    ],
}

_NOT_A_NAME = re.compile(r"^(?:Madame|Monsieur|Sir|Madam|Herr|Frau|Signor|Signora)$", re.I)

_CLOSINGS = (
    r"sincerely|regards|yours\s+truly|yours\s+faithfully|best\s+wishes"
    r"|cordialement|salutations|bien\s+à\s+vous|amicalement"
    r"|mit\s+freundlichen\s+gr(?:ü|ue)(?:ß|ss)en|freundliche\s+gr(?:ü|ue)(?:ß|ss)e|hochachtungsvoll"
    r"|beste\s+gr(?:ü|ue)(?:ß|ss)e|cordiali\s+saluti|distinti\s+saluti|cordialmente"
)
_CLOSING_PATTERNS = [
    re.compile(r"(?i:" + _CLOSINGS + r")[^\S\n]*,?[^\S\n]*\n+\s*" + _NAME),
    re.compile(r"(?i:veuillez\s+agréer|je\s+vous\s+prie\s+d'agréer)[^\n]*\n+\s*" + _NAME),
]

_RECIPIENT_BLOCK = re.compile(
    r"(?:^|\n)(?i:to|attention|attn|à|destinataire|an|z\.?\s*hd\.?)"
    r"(?:[:.][^\S\n]*\n?|[^\S\n]*\n)((?:[^\n]+\n){1,5})"
)

_LETTER_DATE_PATTERNS = [
    re.compile(
        r"\b(?:January|February|March|April|May|June|July|August|September|October|November|December"
        r"|Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\.?\s+\d{1,2},?\s+\d{4}\b",
        re.I,
    ),
    re.compile(
        r"\b\d{1,2}\.?\s+(?:January|February|March|April|May|June|July|August|September|October"
        r"|November|December|janvier|février|mars|avril|mai|juin|juillet|août|septembre|octobre"
        r"|novembre|décembre|Januar|Februar|März|April|Mai|Juni|Juli|August|September|Oktober"
        r"|November|Dezember)\s+\d{4}\b",
        re.I,
    ),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    re.compile(r"\b\d{1,2}[./]\d{1,2}[./]\d{4}\b"),
]

_REFERENCE_LINE = re.compile(
    r"^(?i:re|ref|reference|subject|betreff|betr|objet|concerne)[:.][^\S\n]*([^\n]{5,100})$",
    re.M,
)


@dataclass
class LetterRules:
    header_ratio: float = HEADER_RATIO
    detect_recipient: bool = True
    extract_salutation_names: bool = True
    detect_signature: bool = True
    position_boost: float = 0.15

    def apply(
        self,
        text: str,
        existing: list[Entity],
        new_id: IdFactory,
        language: str = "en",
    ) -> list[Entity]:
        header_end = int(len(text) * self.header_ratio)
        signature_region = int(len(text) * 0.7)
        found: list[Entity] = []

        salutation_start = None
        if self.extract_salutation_names:
            salutations = self._salutation_names(text, language, new_id)
            found.extend(salutations)
            if salutations:
                salutation_start = min(e.start for e in salutations)
        if self.detect_recipient:
            found.extend(self._recipient_blocks(text, new_id))
        if self.detect_signature:
            found.extend(self._signatures(text, new_id))
        found.extend(self._letter_dates(text, header_end, new_id))
        found.extend(self._reference_lines(text, new_id))

        boosted: list[Entity] = []
        for e in found:
            if e.type == "SENDER" and e.start < header_end:
                e = _boost(e, self.position_boost, position_boost="header")
            elif e.type == "SIGNATURE" and e.start > signature_region:
                e = _boost(e, self.position_boost, position_boost="footer")
            elif (
                e.type == "SALUTATION_NAME"
                and salutation_start is not None
                and abs(e.start - salutation_start) < 100
            ):
                e = _boost(e, self.position_boost * 0.5)
            boosted.append(e)
        return _merge_new(existing, boosted)

    def _salutation_names(self, text: str, language: str, new_id: IdFactory) -> list[Entity]:
        out: list[Entity] = []
        seen: set[tuple[int, int]] = set()
        for pattern in SALUTATION_PATTERNS.get(language, SALUTATION_PATTERNS["en"]):
            for m in pattern.finditer(text):
                name = m.group(1)
                if len(name) < 2 or _NOT_A_NAME.match(name) or m.span(1) in seen:
                    continue
                seen.add(m.span(1))
                out.append(Entity(
                    id=new_id(), type="SALUTATION_NAME", text=name,
                    start=m.start(1), end=m.end(1), confidence=0.85, source=SOURCE_RULE,
                    metadata={"rule_type": "salutation", "language": language},
                ))
        return out

    def _recipient_blocks(self, text: str, new_id: IdFactory) -> list[Entity]:
        out: list[Entity] = []
        for m in _RECIPIENT_BLOCK.finditer(text):
            block = m.group(1)
            content = block.strip()
            if len(content) < 10:
                continue
            start = m.start(1) + (len(block) - len(block.lstrip()))
            out.append(Entity(
                id=new_id(), type="RECIPIENT", text=content,
                start=start, end=start + len(content), confidence=0.8, source=SOURCE_RULE,
                metadata={"rule_type": "recipient_block"},
            ))
        return out

    def _signatures(self, text: str, new_id: IdFactory) -> list[Entity]:
        out: list[Entity] = []
        seen: set[tuple[int, int]] = set()
        for pattern in _CLOSING_PATTERNS:
            for m in pattern.finditer(text):
                name = m.group(1)
                if len(name) < 2 or m.span(1) in seen:
                    continue
                seen.add(m.span(1))
                out.append(Entity(
                    id=new_id(), type="SIGNATURE", text=name,
                    start=m.start(1), end=m.end(1), confidence=0.9, source=SOURCE_RULE,
                    metadata={"rule_type": "signature"},
                ))
        return out

    def _letter_dates(self, text: str, header_end: int, new_id: IdFactory) -> list[Entity]:
        out: list[Entity] = []
        seen: set[tuple[int, int]] = set()
        for pattern in _LETTER_DATE_PATTERNS:
            for m in pattern.finditer(text):
                if m.span() in seen:
                    continue
                seen.add(m.span())
                in_header = m.start() < header_end
                out.append(Entity(
                    id=new_id(), type="LETTER_DATE", text=m.group(),
                    start=m.start(), end=m.end(), confidence=0.85 if in_header else 0.7,
                    source=SOURCE_RULE, metadata={"rule_type": "letter_date", "in_header": in_header},
                ))
                # the first header date is the letter date
                if in_header:
                    break
        return out

    def _reference_lines(self, text: str, new_id: IdFactory) -> list[Entity]:
        out: list[Entity] = []
        for m in _REFERENCE_LINE.finditer(text):
            content = m.group(1).strip()
            if len(content) < 5:
                continue
            start = m.start(1) + (len(m.group(1)) - len(m.group(1).lstrip()))
            out.append(Entity(
                id=new_id(), type="REFERENCE_LINE", text=content,
                start=start, end=start + len(content), confidence=0.75, source=SOURCE_RULE,
                metadata={"rule_type": "reference_line"},
            ))
        return out


# ── Engine ───────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class Thresholds:
    auto_anonymize: float
    flag_for_review: float
    min_confidence: float


@dataclass(frozen=True)
class DocumentTypeRules:
    enabled: bool = True
    header_boost: float = 0.0
    signature_area_boost: float = 0.0
    thresholds: Thresholds = Thresholds(0.8, 0.6, 0.4)


DEFAULT_TYPE_RULES: dict[str, DocumentTypeRules] = {
    "INVOICE": DocumentTypeRules(header_boost=0.2, thresholds=Thresholds(0.85, 0.6, 0.4)),
    "LETTER": DocumentTypeRules(header_boost=0.15, signature_area_boost=0.25, thresholds=Thresholds(0.8, 0.55, 0.35)),
    "FORM": DocumentTypeRules(thresholds=Thresholds(0.75, 0.5, 0.3)),
    "CONTRACT": DocumentTypeRules(thresholds=Thresholds(0.85, 0.6, 0.4)),
    "REPORT": DocumentTypeRules(thresholds=Thresholds(0.8, 0.55, 0.35)),
    "UNKNOWN": DocumentTypeRules(thresholds=Thresholds(0.8, 0.6, 0.4)),
}


@dataclass
class RuleEngine:
    """Apply the rule set matching a document classification."""
    type_rules: dict[str, DocumentTypeRules] = field(default_factory=lambda: dict(DEFAULT_TYPE_RULES))
    invoice_rules: InvoiceRules = field(default_factory=InvoiceRules)
    letter_rules: LetterRules = field(default_factory=LetterRules)

    def apply_rules(
        self,
        text: str,
        classification: DocumentClassification,
        entities: list[Entity],
        new_id: IdFactory,
    ) -> list[Entity]:
        rules = self.type_rules.get(classification.type)
        if rules is None or not rules.enabled:
            return list(entities)

        result = list(entities)
        if classification.type == "INVOICE":
            result = self.invoice_rules.apply(text, result, new_id)
        elif classification.type == "LETTER":
            result = self.letter_rules.apply(text, result, new_id, classification.language)

        result = self._apply_thresholds(result, rules.thresholds)
        return self._apply_position_boosts(result, rules, len(text))

    def _apply_thresholds(self, entities: list[Entity], t: Thresholds) -> list[Entity]:
        out: list[Entity] = []
        for e in entities:
            if e.confidence < t.min_confidence:
                logger.debug("dropping low-confidence %s (%.2f)", e.type, e.confidence)
                continue
            if e.confidence < t.flag_for_review:
                e = replace(e, flagged_for_review=True)
            elif e.confidence >= t.auto_anonymize:
                e = replace(e, metadata={**e.metadata, "auto_anonymize": True})
            out.append(e)
        return out

    def _apply_position_boosts(
        self,
        entities: list[Entity],
        rules: DocumentTypeRules,
        length: int,
    ) -> list[Entity]:
        header_end = int(length * HEADER_RATIO)
        footer_start = int(length * FOOTER_RATIO)
        out: list[Entity] = []
        for e in entities:
            boost = 0.0
            if rules.header_boost and e.start < header_end:
                boost += rules.header_boost
            if rules.signature_area_boost and e.start > footer_start:
                boost += rules.signature_area_boost
            if boost > 0:
                e = _boost(e, boost, type_boost_applied=boost)
            out.append(e)
        return out
