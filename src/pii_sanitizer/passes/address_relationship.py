"""Pass 4 (order 40): group address components into address entities."""

from __future__ import annotations
import logging

from ..addresses import (
    AddressClassifier,
    AddressLinker,
    AddressScorer,
    ScoredAddress,
    address_entity_type,
)
from ..context import PipelineContext
from ..types import ADDRESS_TYPES, Entity, SOURCE_RULE, Validation

logger = logging.getLogger(__name__)

SUBSUMED_TYPES = ADDRESS_TYPES | {"LOCATION"}


class AddressRelationshipPass:
    name = "address_relationship"
    order = 40

    def __init__(
        self,
        *,
        max_component_distance: int = 50,
        min_components: int = 2,
        review_threshold: float = 0.6,
        auto_anonymize_threshold: float = 0.8,
    ) -> None:
        self.enabled = True
        self.classifier = AddressClassifier()
        self.linker = AddressLinker(
            proximity_threshold=max_component_distance,
            newline_threshold=max_component_distance * 2,
            min_components=min_components,
        )
        self.scorer = AddressScorer(
            review_threshold=review_threshold,
            auto_anonymize_threshold=auto_anonymize_threshold,
        )

    async def execute(
        self,
        text: str,
        entities: list[Entity],
        context: PipelineContext,
    ) -> list[Entity]:
        components = self.classifier.classify_components(text)
        if not components:
            return entities

        grouped = self.linker.link_components(text, components)
        scored = self.scorer.score_addresses(grouped)
        addresses = [self._to_entity(s, context) for s in scored]
        if context.config.debug:
            logger.debug("%d components, %d grouped addresses", len(components), len(addresses))
        return merge_addresses(entities, addresses)

    def _to_entity(self, scored: ScoredAddress, context: PipelineContext) -> Entity:
        address = scored.address
        return Entity(
            id=context.new_entity_id(),
            type=address_entity_type(scored),
            text=address.text,
            start=address.start,
            end=address.end,
            confidence=scored.final_confidence,
            source=SOURCE_RULE,
            components=address.components,
            breakdown=address.breakdown,
            validation=Validation("valid", f"{address.pattern_matched} address pattern", "address_linker")
            if address.validation_status == "valid" else None,
            flagged_for_review=scored.flagged_for_review,
            metadata={
                "grouped_address": True,
                "pattern_matched": address.pattern_matched,
                "component_count": len(address.components),
                "scoring_factors": [f.name for f in scored.scoring_factors if f.matched],
                "auto_anonymize": scored.auto_anonymize,
            },
        )


def merge_addresses(existing: list[Entity], addresses: list[Entity]) -> list[Entity]:
    """Add grouped addresses; drop address-like entities they subsume."""
    result = list(addresses)
    for e in existing:
        covered = any(e.overlaps(a) for a in addresses)
        if covered and e.type in SUBSUMED_TYPES:
            continue
        result.append(e)
    return sorted(result, key=lambda e: e.start)
