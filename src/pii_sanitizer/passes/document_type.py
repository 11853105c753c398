"""Pass 0 (order 5): classify the document and apply type-specific rules."""

from __future__ import annotations
import logging
from dataclasses import replace

from ..context import PipelineContext
from ..document_classifier import DocumentClassification, DocumentClassifier
from ..rules import FOOTER_RATIO, HEADER_RATIO, RuleEngine
from ..types import Entity

logger = logging.getLogger(__name__)

MIN_RULE_CONFIDENCE = 0.4


def position_zone(start: int, length: int) -> str:
    ratio = start / length if length else 0.0
    if ratio < HEADER_RATIO:
        return "header"
    if ratio > FOOTER_RATIO:
        return "footer"
    return "body"


def zone_adjustment(entity: Entity, doc_type: str, zone: str) -> float:
    """Confidence nudge for an entity type found in a given zone."""
    etype = entity.type
    adjustment = 0.0
    if doc_type == "INVOICE":
        if etype == "INVOICE_NUMBER" and zone == "header":
            adjustment += 0.1
        if etype == "AMOUNT" and zone == "body":
            adjustment += 0.05
        if etype in ("IBAN", "PAYMENT_REF") and zone == "footer":
            adjustment += 0.1
    elif doc_type == "LETTER":
        if etype == "SENDER" and zone == "header":
            adjustment += 0.15
        if etype == "SIGNATURE" and zone == "footer":
            adjustment += 0.15
        if etype == "SALUTATION_NAME" and zone != "footer":
            adjustment += 0.1
    elif doc_type == "CONTRACT":
        if etype == "PARTY" and zone == "header":
            adjustment += 0.1
        if etype == "SIGNATURE" and zone == "footer":
            adjustment += 0.15
    elif doc_type == "FORM":
        if entity.metadata.get("labeled_field"):
            adjustment += 0.1
    elif doc_type == "REPORT":
        if etype == "AUTHOR" and zone == "header":
            adjustment += 0.15
    return adjustment


class DocumentTypePass:
    name = "document_type"
    order = 5

    def __init__(
        self,
        *,
        classifier: DocumentClassifier | None = None,
        rule_engine: RuleEngine | None = None,
        min_rule_confidence: float = MIN_RULE_CONFIDENCE,
        apply_type_rules: bool = True,
    ) -> None:
        self.enabled = True
        self.classifier = classifier or DocumentClassifier()
        self.rule_engine = rule_engine or RuleEngine()
        self.min_rule_confidence = min_rule_confidence
        self.apply_type_rules = apply_type_rules

    async def execute(
        self,
        text: str,
        entities: list[Entity],
        context: PipelineContext,
    ) -> list[Entity]:
        classification = self.classify(text, context)
        context.metadata["document_classification"] = classification
        context.metadata["document_type"] = classification.type
        context.metadata["document_language"] = classification.language
        if context.config.debug:
            logger.debug(
                "document classified as %s (%.2f, %s)",
                classification.type, classification.confidence, classification.language,
            )

        result = list(entities)
        if self.apply_type_rules and classification.confidence >= self.min_rule_confidence:
            result = self.rule_engine.apply_rules(text, classification, result, context.new_entity_id)
        return self._enrich(result, classification, len(text))

    def classify(self, text: str, context: PipelineContext) -> DocumentClassification:
        classification = self.classifier.classify(text)
        hinted = context.config.runtime.document_hints.document_type
        if hinted and hinted != classification.type:
            logger.info("document type hint %s overrides classifier (%s)", hinted, classification.type)
            classification = replace(classification, type=hinted, confidence=max(classification.confidence, 0.5))
        return classification

    def _enrich(
        self,
        entities: list[Entity],
        classification: DocumentClassification,
        length: int,
    ) -> list[Entity]:
        out: list[Entity] = []
        for e in entities:
            zone = position_zone(e.start, length)
            adjusted = min(max(e.confidence + zone_adjustment(e, classification.type, zone), 0.0), 1.0)
            out.append(replace(
                e,
                confidence=adjusted,
                metadata={
                    **e.metadata,
                    "position_zone": zone,
                    "document_type": classification.type,
                    "document_confidence": round(classification.confidence, 2),
                },
            ))
        return out
