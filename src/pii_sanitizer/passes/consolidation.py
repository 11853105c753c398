"""Pass 5 (order 50): resolve overlaps, merge loose address pieces, link repeats.

Runs last.  Overlaps are settled by type priority times confidence (then
span length); address-family entities that were not grouped by the
address pass but sit next to each other are merged; repeated mentions of
the same value get a shared ``logical_id`` such as ``PERSON_1``.
"""

from __future__ import annotations
import logging
import re
import time
from collections import defaultdict
from dataclasses import dataclass, field, replace

from ..context import PipelineContext
from ..types import ADDRESS_TYPES, AddressComponent, Entity, SOURCE_CONSOLIDATED

logger = logging.getLogger(__name__)

ENTITY_PRIORITY: dict[str, int] = {
    "SWISS_AVS": 100,
    "IBAN": 95,
    "QR_REFERENCE": 90,
    "VAT_NUMBER": 85,
    "EMAIL": 80,
    "PHONE": 75,
    "PAYMENT_REF": 70,
    "INVOICE_NUMBER": 65,
    "SWISS_ADDRESS": 60,
    "EU_ADDRESS": 58,
    "ADDRESS": 55,
    "PERSON": 48,
    "ORGANIZATION": 45,
    "VENDOR_NAME": 43,
    "SENDER": 40,
    "RECIPIENT": 38,
    "SALUTATION_NAME": 35,
    "SIGNATURE": 33,
    "AUTHOR": 30,
    "PARTY": 28,
    "REFERENCE_LINE": 25,
    "LETTER_DATE": 22,
    "DATE": 20,
    "AMOUNT": 18,
    "LOCATION": 15,
    "UNKNOWN": 0,
}

TITLE_VARIATIONS: dict[str, tuple[str, ...]] = {
    "mr": ("mr", "mr.", "herr", "m.", "monsieur", "mister"),
    "mrs": ("mrs", "mrs.", "frau", "mme", "mme.", "madame"),
    "ms": ("ms", "ms.", "fräulein", "mlle", "mademoiselle"),
    "dr": ("dr", "dr.", "doktor", "docteur"),
    "prof": ("prof", "prof.", "professor", "professeur"),
}
_TITLE_PREFIX = re.compile(
    r"^(?:(?:" + "|".join(re.escape(t) for v in TITLE_VARIATIONS.values() for t in v) + r")\s+)+",
    re.IGNORECASE,
)
_WS = re.compile(r"\s+")

# loose address entity type → component type
_COMPONENT_OF = {"ADDRESS": "STREET_NAME", "SWISS_ADDRESS": "POSTAL_CODE", "EU_ADDRESS": "POSTAL_CODE"}


@dataclass
class ConsolidationConfig:
    address_max_gap: int = 50
    enable_overlap_resolution: bool = True
    enable_address_consolidation: bool = True
    enable_entity_linking: bool = True
    overlap_strategy: str = "confidence-weighted"   # or "priority-only"
    linking_strategy: str = "normalized"            # exact | normalized | fuzzy
    min_consolidation_confidence: float = 0.5
    min_address_components: int = 2
    entity_priority: dict[str, int] = field(default_factory=lambda: dict(ENTITY_PRIORITY))


def base_type(entity_type: str) -> str:
    return "ADDRESS" if entity_type in ADDRESS_TYPES else entity_type


class ConsolidationPass:
    name = "consolidation"
    order = 50

    def __init__(self, config: ConsolidationConfig | None = None) -> None:
        self.enabled = True
        self.config = config or ConsolidationConfig()

    async def execute(
        self,
        text: str,
        entities: list[Entity],
        context: PipelineContext,
    ) -> list[Entity]:
        t0 = time.perf_counter()
        original_count = len(entities)
        result = sorted(entities, key=lambda e: (e.start, -e.length))

        overlaps = addresses = linked = 0
        if self.config.enable_overlap_resolution:
            resolved = self.resolve_overlaps(result)
            overlaps = len(result) - len(resolved)
            result = resolved
        if self.config.enable_address_consolidation:
            result, addresses = self.consolidate_addresses(result, text, context)
        if self.config.enable_entity_linking:
            result, linked = self.link_entities(result)

        context.metadata["consolidation"] = {
            "overlaps_resolved": overlaps,
            "addresses_consolidated": addresses,
            "entities_linked": linked,
            "original_entity_count": original_count,
            "duration_ms": (time.perf_counter() - t0) * 1000,
        }
        return result

    # ------------------------------------------------------------------
    # Overlaps
    # ------------------------------------------------------------------

    def _score(self, entity: Entity) -> tuple[float, int]:
        priority = self.config.entity_priority.get(entity.type, 0)
        if self.config.overlap_strategy == "priority-only":
            return float(priority), entity.length
        return priority * entity.confidence, entity.length

    def resolve_overlaps(self, entities: list[Entity]) -> list[Entity]:
        """Keep the best-scoring entities; nothing kept overlaps anything else kept."""
        ranked = sorted(
            enumerate(entities),
            key=lambda pair: (*self._score(pair[1]), -pair[1].start, -pair[0]),
            reverse=True,
        )
        kept: list[Entity] = []
        for _, e in ranked:
            if not any(e.overlaps(k) for k in kept):
                kept.append(e)
        return sorted(kept, key=lambda e: e.start)

    # ------------------------------------------------------------------
    # Loose address components
    # ------------------------------------------------------------------

    def _is_loose_component(self, entity: Entity) -> bool:
        if entity.components:
            return False
        return entity.type in ADDRESS_TYPES or "component_type" in entity.metadata

    def consolidate_addresses(
        self,
        entities: list[Entity],
        text: str,
        context: PipelineContext,
    ) -> tuple[list[Entity], int]:
        loose = [e for e in entities if self._is_loose_component(e)]
        if len(loose) < self.config.min_address_components:
            return entities, 0

        used: set[str] = set()
        merged: list[Entity] = []
        for group in self._group(loose, text):
            if len(group) < self.config.min_address_components:
                continue
            avg = sum(e.confidence for e in group) / len(group)
            if avg < self.config.min_consolidation_confidence:
                continue
            start, end = group[0].start, max(e.end for e in group)
            members = {e.id for e in group}
            if any(e.start < end and e.end > start for e in entities if e.id not in members):
                continue
            components = tuple(
                AddressComponent(
                    e.metadata.get("component_type", _COMPONENT_OF.get(e.type, "STREET_NAME")),
                    e.text, e.start, e.end, linked=True,
                )
                for e in group
            )
            merged.append(Entity(
                id=context.new_entity_id(),
                type=_address_type(group),
                text=text[start:end],
                start=start,
                end=end,
                confidence=avg,
                source=SOURCE_CONSOLIDATED,
                components=components,
                metadata={
                    "consolidated_from": [e.id for e in group],
                    "component_count": len(group),
                    "original_spans": [(e.start, e.end, e.type) for e in group],
                },
            ))
            used.update(e.id for e in group)

        if not merged:
            return entities, 0
        kept = [e for e in entities if e.id not in used]
        return sorted(kept + merged, key=lambda e: e.start), len(merged)

    def _group(self, loose: list[Entity], text: str) -> list[list[Entity]]:
        ordered = sorted(loose, key=lambda e: e.start)
        groups: list[list[Entity]] = [[ordered[0]]]
        for prev, cur in zip(ordered, ordered[1:]):
            gap = cur.start - prev.end
            limit = self.config.address_max_gap * (2 if "\n" in text[prev.end:cur.start] else 1)
            if 0 <= gap <= limit:
                groups[-1].append(cur)
            else:
                groups.append([cur])
        return groups

    # ------------------------------------------------------------------
    # Logical ids
    # ------------------------------------------------------------------

    def group_key(self, entity: Entity) -> str:
        strategy = self.config.linking_strategy
        value = entity.text
        if strategy in ("normalized", "fuzzy"):
            value = _WS.sub(" ", value.lower()).strip()
        if strategy == "fuzzy":
            value = _TITLE_PREFIX.sub("", value).strip()
        return f"{base_type(entity.type)}:{value}"

    def link_entities(self, entities: list[Entity]) -> tuple[list[Entity], int]:
        """Give repeated mentions a shared ``TYPE_n`` logical id, numbered in reading order."""
        groups: dict[str, list[int]] = defaultdict(list)
        for i, e in enumerate(entities):
            groups[self.group_key(e)].append(i)

        counters: dict[str, int] = defaultdict(int)
        ids: dict[str, str] = {}
        result: list[Entity] = []
        for e in entities:
            key = self.group_key(e)
            if len(groups[key]) < 2:
                result.append(e)
                continue
            if key not in ids:
                btype = base_type(e.type)
                counters[btype] += 1
                ids[key] = f"{btype}_{counters[btype]}"
            result.append(replace(e, logical_id=ids[key]))
        return result, len(ids)


def _address_type(group: list[Entity]) -> str:
    types = {e.type for e in group}
    if "SWISS_ADDRESS" in types:
        return "SWISS_ADDRESS"
    if "EU_ADDRESS" in types:
        return "EU_ADDRESS"
    return "ADDRESS"
