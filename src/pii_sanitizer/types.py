"""Core types."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any


ENTITY_TYPES = frozenset({
    "PERSON", "ORGANIZATION", "LOCATION",
    "ADDRESS", "SWISS_ADDRESS", "EU_ADDRESS",
    "SWISS_AVS", "IBAN", "PHONE", "EMAIL", "DATE", "AMOUNT",
    "VAT_NUMBER", "INVOICE_NUMBER", "PAYMENT_REF", "QR_REFERENCE",
    "SENDER", "RECIPIENT", "SALUTATION_NAME", "SIGNATURE",
    "LETTER_DATE", "REFERENCE_LINE", "PARTY", "AUTHOR", "VENDOR_NAME",
    "UNKNOWN",
})

ADDRESS_TYPES = frozenset({"ADDRESS", "SWISS_ADDRESS", "EU_ADDRESS"})

# Entity source tags
SOURCE_ML = "ML"
SOURCE_RULE = "RULE"
SOURCE_BOTH = "BOTH"
SOURCE_CONSOLIDATED = "CONSOLIDATED"
SOURCE_MANUAL = "MANUAL"


@dataclass(frozen=True, slots=True)
class AddressComponent:
    """One piece of a postal address (street, number, postal code, ...)."""
    type: str              # STREET_NAME | STREET_NUMBER | POSTAL_CODE | CITY | COUNTRY
    text: str
    start: int
    end: int
    linked: bool = False


@dataclass(frozen=True, slots=True)
class AddressBreakdown:
    street: str | None = None
    number: str | None = None
    postal: str | None = None
    city: str | None = None
    country: str | None = None


@dataclass(frozen=True, slots=True)
class Validation:
    status: str            # "valid" | "invalid" | "unchecked"
    reason: str | None = None
    checked_by: str | None = None


@dataclass(frozen=True, slots=True)
class ContextFactor:
    name: str
    weight: float
    matched: bool
    description: str = ""


@dataclass(frozen=True, slots=True)
class ContextInfo:
    score: float
    factors: tuple[ContextFactor, ...] = ()


@dataclass(frozen=True, slots=True)
class Entity:
    """A single detected PII candidate.

    Spans are half-open offsets into the *normalized* document; the
    pipeline fills ``original_span`` with the raw-input coordinates once
    all passes have run.  Entities are immutable: passes derive new ones
    with ``dataclasses.replace``.
    """
    id: str
    type: str
    text: str
    start: int
    end: int
    confidence: float
    source: str = SOURCE_RULE
    logical_id: str | None = None
    components: tuple[AddressComponent, ...] = ()
    breakdown: AddressBreakdown | None = None
    validation: Validation | None = None
    context: ContextInfo | None = None
    flagged_for_review: bool = False
    original_span: tuple[int, int] | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        if self.start < 0 or self.end <= self.start:
            raise ValueError(f"invalid span [{self.start}, {self.end}) for {self.type}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence {self.confidence!r} out of range for {self.type}")

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, other: Entity) -> bool:
        return self.start < other.end and self.end > other.start
