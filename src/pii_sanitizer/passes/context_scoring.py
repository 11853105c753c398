"""Pass 3 (order 30): adjust confidence from the surrounding text.

Four weighted factors (label keywords, related entity types nearby,
position in the document, repetition) give a context score in [0, 1];
confidence is scaled by ``0.7 + 0.6 * score``.  Caller-supplied runtime
context adds a bounded boost before the scaling.
"""

from __future__ import annotations
import logging
import re
from collections import Counter
from dataclasses import replace

from ..context import PipelineContext, RuntimeContext
from ..types import ContextFactor, ContextInfo, Entity

logger = logging.getLogger(__name__)

LABEL_WEIGHT = 0.25
RELATED_WEIGHT = 0.30
POSITION_WEIGHT = 0.15
REPETITION_WEIGHT = 0.20

MAX_RUNTIME_BOOST = 0.5
REGION_HINT_BOOST = 0.2
CONTEXT_WORD_BOOST = 0.1

LABEL_KEYWORDS: dict[str, tuple[str, ...]] = {
    "PERSON": ("name", "nom", "vorname", "nachname", "herr", "frau", "mr", "mrs", "ms", "dr", "prof",
               "monsieur", "madame"),
    "ORGANIZATION": ("firma", "company", "société", "gmbh", "ag", "sa", "sàrl", "ltd", "inc", "corp"),
    "LOCATION": ("ort", "location", "lieu", "city", "ville", "stadt"),
    "ADDRESS": ("adresse", "address", "anschrift", "wohnort", "domicile", "strasse", "rue", "street"),
    "SWISS_ADDRESS": ("adresse", "address", "anschrift", "wohnort", "domicile", "schweiz", "suisse"),
    "EU_ADDRESS": ("adresse", "address", "anschrift", "deutschland", "france", "österreich"),
    "SWISS_AVS": ("avs", "ahv", "sozialversicherung", "assurance", "versicherungsnummer", "numéro avs"),
    "IBAN": ("iban", "konto", "compte", "account", "bankverbindung", "coordonnées bancaires"),
    "PHONE": ("tel", "telefon", "téléphone", "phone", "mobile", "handy", "natel", "portable", "fax"),
    "EMAIL": ("email", "e-mail", "mail", "courriel"),
    "DATE": ("datum", "date", "geboren", "geburtsdatum", "né", "née", "naissance", "born", "birthday"),
    "AMOUNT": ("betrag", "montant", "amount", "total", "summe", "prix", "price", "chf", "eur"),
    "VAT_NUMBER": ("mwst", "tva", "iva", "vat", "ust", "uid", "steuer"),
    "INVOICE_NUMBER": ("rechnung", "facture", "invoice", "rechnungsnummer", "numéro", "ref", "beleg"),
    "PAYMENT_REF": ("referenz", "référence", "reference", "zahlungsreferenz", "qr"),
    "QR_REFERENCE": ("qr", "referenz", "référence", "reference"),
    "SENDER": ("absender", "expéditeur", "sender", "from", "von"),
    "RECIPIENT": ("empfänger", "destinataire", "recipient", "to", "an", "à"),
    "SALUTATION_NAME": ("dear", "cher", "chère", "sehr geehrte", "sehr geehrter", "liebe", "lieber"),
    "SIGNATURE": ("unterschrift", "signature", "signatur", "signed", "signé"),
    "LETTER_DATE": ("datum", "date", "le"),
    "REFERENCE_LINE": ("betreff", "objet", "re", "subject", "betrifft"),
    "PARTY": ("partei", "partie", "party", "vertragspartner"),
    "AUTHOR": ("autor", "auteur", "author", "verfasser"),
    "VENDOR_NAME": ("lieferant", "fournisseur", "vendor", "supplier"),
}

RELATED_TYPES: dict[str, frozenset[str]] = {
    "PERSON": frozenset({"PHONE", "EMAIL", "ADDRESS", "SWISS_ADDRESS", "DATE"}),
    "ORGANIZATION": frozenset({"PHONE", "EMAIL", "ADDRESS", "VAT_NUMBER", "IBAN"}),
    "LOCATION": frozenset({"ADDRESS", "SWISS_ADDRESS", "EU_ADDRESS"}),
    "ADDRESS": frozenset({"PERSON", "ORGANIZATION", "PHONE"}),
    "SWISS_ADDRESS": frozenset({"PERSON", "ORGANIZATION", "PHONE", "SWISS_AVS"}),
    "EU_ADDRESS": frozenset({"PERSON", "ORGANIZATION", "PHONE"}),
    "SWISS_AVS": frozenset({"PERSON", "DATE", "SWISS_ADDRESS"}),
    "IBAN": frozenset({"PERSON", "ORGANIZATION", "AMOUNT"}),
    "PHONE": frozenset({"PERSON", "ORGANIZATION", "ADDRESS", "EMAIL"}),
    "EMAIL": frozenset({"PERSON", "ORGANIZATION", "PHONE"}),
    "DATE": frozenset({"PERSON", "INVOICE_NUMBER", "AMOUNT"}),
    "AMOUNT": frozenset({"DATE", "INVOICE_NUMBER", "IBAN", "VAT_NUMBER"}),
    "VAT_NUMBER": frozenset({"ORGANIZATION", "AMOUNT", "INVOICE_NUMBER"}),
    "INVOICE_NUMBER": frozenset({"DATE", "AMOUNT", "ORGANIZATION"}),
    "PAYMENT_REF": frozenset({"AMOUNT", "IBAN"}),
    "QR_REFERENCE": frozenset({"AMOUNT", "IBAN", "PAYMENT_REF"}),
    "SENDER": frozenset({"ADDRESS", "PHONE", "EMAIL", "ORGANIZATION"}),
    "RECIPIENT": frozenset({"ADDRESS", "PERSON", "SALUTATION_NAME"}),
    "SALUTATION_NAME": frozenset({"RECIPIENT", "PERSON"}),
    "SIGNATURE": frozenset({"PERSON", "LETTER_DATE"}),
    "LETTER_DATE": frozenset({"SIGNATURE", "REFERENCE_LINE"}),
    "REFERENCE_LINE": frozenset({"LETTER_DATE", "RECIPIENT"}),
    "PARTY": frozenset({"SIGNATURE", "ORGANIZATION", "PERSON"}),
    "AUTHOR": frozenset({"PERSON", "ORGANIZATION"}),
    "VENDOR_NAME": frozenset({"ORGANIZATION", "VAT_NUMBER", "IBAN"}),
}

BODY_TYPES = frozenset({"SWISS_AVS", "IBAN", "PAYMENT_REF"})
HEADER_TYPES = frozenset({"ADDRESS", "SWISS_ADDRESS", "EU_ADDRESS", "PHONE", "EMAIL"})


def _word_regex(word: str) -> re.Pattern:
    return re.compile(rf"(?<!\w){re.escape(word.lower())}(?!\w)")


_LABEL_REGEXES: dict[str, list[tuple[str, re.Pattern]]] = {
    etype: [(kw, _word_regex(kw)) for kw in kws] for etype, kws in LABEL_KEYWORDS.items()
}


def context_score(factors: list[ContextFactor] | tuple[ContextFactor, ...]) -> float:
    total = sum(f.weight for f in factors)
    if total == 0:
        return 0.5
    return sum(f.weight for f in factors if f.matched) / total


class ContextScoringPass:
    name = "context_scoring"
    order = 30

    def __init__(self, window_size: int | None = None, review_threshold: float | None = None) -> None:
        self.enabled = True
        self.window_size = window_size
        self.review_threshold = review_threshold

    async def execute(
        self,
        text: str,
        entities: list[Entity],
        context: PipelineContext,
    ) -> list[Entity]:
        window = self.window_size or context.config.context_window_size
        threshold = self.review_threshold if self.review_threshold is not None else context.config.review_threshold
        runtime = context.config.runtime
        use_runtime = context.config.enable_quality_filters and not runtime.is_empty

        lowered = text.lower()
        occurrences = Counter((e.type, e.text) for e in entities)
        boosted: Counter[str] = Counter()
        out: list[Entity] = []
        for e in entities:
            factors = (
                self._label_keywords(e, lowered, window),
                self._related_entities(e, entities, window),
                self._document_position(e, len(text)),
                self._repetition(e, occurrences),
            )
            score = context_score(factors)

            boost = 0.0
            if use_runtime:
                boost = runtime_boost(e, text, lowered, window, runtime)
                if boost > 0:
                    boosted[e.type] += 1

            confidence = min(1.0, (e.confidence + boost) * (0.7 + 0.6 * score))
            metadata = e.metadata
            if boost > 0:
                metadata = {**metadata, "runtime_boost": round(boost, 3)}
            out.append(replace(
                e,
                confidence=confidence,
                context=ContextInfo(score, factors),
                flagged_for_review=confidence < threshold,
                metadata=metadata,
            ))

        if use_runtime:
            context.metadata["context_boosted"] = dict(boosted)
        return out

    # ------------------------------------------------------------------
    # Factors
    # ------------------------------------------------------------------

    def _label_keywords(self, entity: Entity, lowered: str, window: int) -> ContextFactor:
        regexes = _LABEL_REGEXES.get(entity.type)
        if not regexes:
            return ContextFactor("label_keywords", LABEL_WEIGHT, False, "no label keywords for type")
        before = lowered[max(0, entity.start - window):entity.start]
        hit = next((kw for kw, rx in regexes if rx.search(before)), None)
        if hit is None:
            return ContextFactor("label_keywords", LABEL_WEIGHT, False, "no label keyword nearby")
        return ContextFactor("label_keywords", LABEL_WEIGHT, True, f"keyword {hit!r} nearby")

    def _related_entities(self, entity: Entity, entities: list[Entity], window: int) -> ContextFactor:
        related = RELATED_TYPES.get(entity.type)
        if not related:
            return ContextFactor("related_entities", RELATED_WEIGHT, False, "no related types")
        nearby = [
            o.type for o in entities
            if o.id != entity.id
            and o.type in related
            and min(abs(o.start - entity.end), abs(entity.start - o.end)) <= window
        ]
        if not nearby:
            return ContextFactor("related_entities", RELATED_WEIGHT, False, "no related entities nearby")
        return ContextFactor(
            "related_entities", RELATED_WEIGHT, True,
            f"{len(nearby)} related nearby ({', '.join(sorted(set(nearby)))})",
        )

    def _document_position(self, entity: Entity, length: int) -> ContextFactor:
        ratio = entity.start / length if length else 0.0
        header, footer = ratio < 0.1, ratio > 0.9
        if entity.type in BODY_TYPES and (header or footer):
            where = "header" if header else "footer"
            return ContextFactor("document_position", POSITION_WEIGHT, False, f"{entity.type} in {where}")
        if entity.type in HEADER_TYPES and header:
            return ContextFactor("document_position", POSITION_WEIGHT, True, f"{entity.type} in header")
        return ContextFactor("document_position", POSITION_WEIGHT, True, "position neutral")

    def _repetition(self, entity: Entity, occurrences: Counter) -> ContextFactor:
        count = occurrences[(entity.type, entity.text)]
        if count > 1:
            return ContextFactor("repetition", REPETITION_WEIGHT, True, f"repeated {count} times")
        return ContextFactor("repetition", REPETITION_WEIGHT, False, "appears once")


def runtime_boost(
    entity: Entity,
    text: str,
    lowered: str,
    window: int,
    runtime: RuntimeContext,
) -> float:
    """Additive boost from caller-supplied hints, capped at 0.5."""
    boost = 0.0

    if runtime.column_headers:
        line_start = text.rfind("\n", 0, entity.start) + 1
        line_end = text.find("\n", entity.end)
        line = lowered[line_start:line_end if line_end != -1 else len(text)]
        for column in runtime.column_headers:
            if column.entity_type == entity.type and column.column.lower() in line:
                boost += column.confidence_boost

    words = list(runtime.context_words.get(entity.type, ()))
    for hint in runtime.region_hints:
        if hint.start <= entity.start and entity.end <= hint.end:
            if hint.expected_entity_type in (None, entity.type):
                boost += REGION_HINT_BOOST
                words.extend(hint.context_words)

    if words:
        before = lowered[max(0, entity.start - window):entity.start]
        boost += CONTEXT_WORD_BOOST * sum(1 for w in words if _word_regex(w).search(before))

    return min(boost, MAX_RUNTIME_BOOST)
