"""Session — per-document pseudonym state.

Design goals:
  - Isolated: one session per document, never shared, so pseudonyms
    cannot leak from one file into another
  - Deterministic: counters start at 1 per prefix, in first-seen order
  - Range-aware: remembers which spans are already replaced so grouped
    addresses are not replaced a second time piece by piece
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

from .types import AddressBreakdown, Entity

PSEUDONYM_PREFIXES = {
    "PERSON": "PER",
    "ORGANIZATION": "ORG",
    "LOCATION": "LOC",
}


def pseudonym_prefix(entity_type: str) -> str:
    return PSEUDONYM_PREFIXES.get(entity_type, entity_type)


@dataclass
class AddressEntry:
    """A replaced grouped address with its structured breakdown."""
    pseudonym: str
    original_text: str
    type: str
    breakdown: AddressBreakdown
    confidence: float
    pattern_matched: str | None = None
    span: tuple[int, int] | None = None

    def to_dict(self) -> dict[str, Any]:
        b = self.breakdown
        return {
            "pseudonym": self.pseudonym,
            "original_text": self.original_text,
            "type": self.type,
            "components": {
                "street": b.street,
                "number": b.number,
                "postal": b.postal,
                "city": b.city,
                "country": b.country,
            },
            "confidence": round(self.confidence, 4),
            "pattern_matched": self.pattern_matched,
            "span": list(self.span) if self.span else None,
        }


class Session:
    """Pseudonym allocator and bookkeeping for one document."""

    __slots__ = (
        "link_logical_ids",
        "_text_to_pseudonym",
        "_logical_to_pseudonym",
        "_address_to_pseudonym",
        "_counters",
        "_addresses",
        "_ranges",
    )

    def __init__(self, *, link_logical_ids: bool = True) -> None:
        self.link_logical_ids = link_logical_ids
        self._text_to_pseudonym: dict[str, str] = {}      # "Hans Muster" → PER_1
        self._logical_to_pseudonym: dict[str, str] = {}   # PERSON_1 → PER_1
        self._address_to_pseudonym: dict[str, str] = {}
        self._counters: dict[str, int] = defaultdict(int)
        self._addresses: list[AddressEntry] = []
        self._ranges: list[tuple[int, int]] = []

    # ------------------------------------------------------------------
    # Pseudonyms
    # ------------------------------------------------------------------

    def _next(self, entity_type: str) -> str:
        prefix = pseudonym_prefix(entity_type)
        self._counters[prefix] += 1
        return f"{prefix}_{self._counters[prefix]}"

    def get_or_create_pseudonym(
        self,
        text: str,
        entity_type: str,
        logical_id: str | None = None,
    ) -> str:
        """Return the pseudonym for *text*, allocating ``PREFIX_n`` if new."""
        if text in self._text_to_pseudonym:
            return self._text_to_pseudonym[text]
        if self.link_logical_ids and logical_id and logical_id in self._logical_to_pseudonym:
            pseudonym = self._logical_to_pseudonym[logical_id]
        else:
            pseudonym = self._next(entity_type)
            if self.link_logical_ids and logical_id:
                self._logical_to_pseudonym[logical_id] = pseudonym
        self._text_to_pseudonym[text] = pseudonym
        return pseudonym

    def lookup(self, text: str) -> str | None:
        return self._text_to_pseudonym.get(text)

    # ------------------------------------------------------------------
    # Grouped addresses
    # ------------------------------------------------------------------

    def register_grouped_address(self, entity: Entity) -> str:
        """Allocate ``[PREFIX_n]`` for a grouped address and mark its range."""
        pseudonym = self._address_to_pseudonym.get(entity.text)
        if pseudonym is None:
            pseudonym = self._next(entity.type)
            self._address_to_pseudonym[entity.text] = pseudonym
            self._addresses.append(AddressEntry(
                pseudonym=pseudonym,
                original_text=entity.text,
                type=entity.type,
                breakdown=entity.breakdown or AddressBreakdown(),
                confidence=entity.confidence,
                pattern_matched=entity.metadata.get("pattern_matched"),
                span=entity.original_span or (entity.start, entity.end),
            ))
        start, end = entity.original_span or (entity.start, entity.end)
        self.mark_range_anonymized(start, end)
        return f"[{pseudonym}]"

    # ------------------------------------------------------------------
    # Ranges
    # ------------------------------------------------------------------

    def mark_range_anonymized(self, start: int, end: int) -> None:
        self._ranges.append((start, end))

    def is_range_anonymized(self, start: int, end: int) -> bool:
        return any(start < e and end > s for s, e in self._ranges)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        return len(self._text_to_pseudonym) + len(self._addresses)

    def mapping(self) -> dict[str, str]:
        """Copy of the text → pseudonym map, in allocation order."""
        return dict(self._text_to_pseudonym)

    def addresses(self) -> list[AddressEntry]:
        return list(self._addresses)

    def pseudonyms(self) -> set[str]:
        return set(self._text_to_pseudonym.values()) | {a.pseudonym for a in self._addresses}
