"""Pass 1 (order 10): cast a wide net with the NER model and the rule library.

Recall over precision: later passes lower the confidence of doubtful
candidates instead of dropping them.  ML and rule hits on the same span
are fused into a single ``BOTH`` entity.
"""

from __future__ import annotations
import logging
from collections import Counter
from dataclasses import replace

from ..context import PipelineContext
from ..deny_list import DenyList
from ..ml.adapter import MLAdapter
from ..patterns import DEFAULT_RULE_CONFIDENCE, MIN_MATCH_LENGTH, scan_rules
from ..types import Entity, SOURCE_BOTH, SOURCE_ML, SOURCE_RULE

logger = logging.getLogger(__name__)


class HighRecallPass:
    name = "high_recall"
    order = 10

    def __init__(
        self,
        ml: MLAdapter | None = None,
        *,
        deny_list: DenyList | None = None,
        min_match_length: int = MIN_MATCH_LENGTH,
    ) -> None:
        self.enabled = True
        self.ml = ml
        self.deny_list = deny_list if deny_list is not None else DenyList()
        self.min_match_length = min_match_length

    async def execute(
        self,
        text: str,
        entities: list[Entity],
        context: PipelineContext,
    ) -> list[Entity]:
        found = list(entities)
        if self.ml is not None:
            try:
                found.extend(await self._ml_entities(text, context))
            except (TypeError, ValueError) as exc:
                logger.warning("ML detection failed, continuing with rules only: %s", exc)
        found.extend(self._rule_entities(text, context))

        merged = merge_entities(found, text)

        if context.config.enable_quality_filters:
            merged = self._apply_deny_list(merged, context)
        return merged

    async def _ml_entities(self, text: str, context: PipelineContext) -> list[Entity]:
        threshold = context.config.ml_confidence_threshold
        out: list[Entity] = []
        for m in await self.ml.predict(text):
            if m.confidence < threshold:
                continue
            out.append(Entity(
                id=context.new_entity_id(),
                type=m.type,
                text=m.text,
                start=m.start,
                end=m.end,
                confidence=m.confidence,
                source=SOURCE_ML,
                metadata={"ml_score": m.confidence, "model": self.ml.model_name},
            ))
        return out

    def _rule_entities(self, text: str, context: PipelineContext) -> list[Entity]:
        return [
            Entity(
                id=context.new_entity_id(),
                type=m.entity_type,
                text=m.text,
                start=m.start,
                end=m.end,
                confidence=DEFAULT_RULE_CONFIDENCE,
                source=SOURCE_RULE,
                metadata={"pattern_priority": m.priority},
            )
            for m in scan_rules(text, self.min_match_length)
        ]

    def _apply_deny_list(self, entities: list[Entity], context: PipelineContext) -> list[Entity]:
        filtered: Counter[str] = Counter()
        kept: list[Entity] = []
        for e in entities:
            if self.deny_list.is_denied(e.text, e.type, context.language):
                filtered[e.type] += 1
            else:
                kept.append(e)
        context.metadata["deny_list_filtered"] = dict(filtered)
        if filtered and context.config.debug:
            logger.debug("deny-list filtered %d entities", sum(filtered.values()))
        return kept


def merge_entities(entities: list[Entity], text: str) -> list[Entity]:
    """Fuse overlapping entities.

    Different sources: union span, max confidence, source BOTH; the rule
    side's type wins as it is the more specific one.  Same source: the
    higher-confidence entity is kept.
    """
    merged: list[Entity] = []
    for e in sorted(entities, key=lambda x: (x.start, -x.length)):
        idx = next((i for i, m in enumerate(merged) if m.overlaps(e)), None)
        if idx is None:
            merged.append(e)
            continue
        current = merged[idx]
        if current.source != e.source:
            start = min(current.start, e.start)
            end = max(current.end, e.end)
            rule_side = e if e.source == SOURCE_RULE else current
            merged[idx] = replace(
                current,
                type=rule_side.type,
                text=text[start:end],
                start=start,
                end=end,
                confidence=max(current.confidence, e.confidence),
                source=SOURCE_BOTH,
                metadata={**e.metadata, **current.metadata, "merged_from": [current.id, e.id]},
            )
        elif e.confidence > current.confidence:
            merged[idx] = e
    return sorted(merged, key=lambda x: x.start)
