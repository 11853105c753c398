"""Pipeline configuration, runtime hints and the pass contract."""

from __future__ import annotations
import itertools
from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol, runtime_checkable

from .normalizer import NormalizerOptions
from .types import Entity


PASS_NAMES = (
    "document_type",
    "high_recall",
    "format_validation",
    "context_scoring",
    "address_relationship",
    "consolidation",
)


# ------------------------------------------------------------------
# Runtime context (caller-supplied hints)
# ------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ColumnContext:
    """Spreadsheet-style column header hinting at an entity type."""
    column: str
    entity_type: str
    confidence_boost: float = 0.2

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence_boost <= 0.5:
            raise ValueError(f"confidence_boost must be within [0, 0.5], got {self.confidence_boost}")


@dataclass(frozen=True, slots=True)
class RegionHint:
    start: int
    end: int
    expected_entity_type: str | None = None
    context_words: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class DocumentHints:
    document_type: str | None = None
    languages: tuple[str, ...] = ()
    ocr_confidence: float | None = None


@dataclass
class RuntimeContext:
    context_words: dict[str, list[str]] = field(default_factory=dict)   # entity type → extra labels
    column_headers: list[ColumnContext] = field(default_factory=list)
    region_hints: list[RegionHint] = field(default_factory=list)
    document_hints: DocumentHints = field(default_factory=DocumentHints)

    @property
    def is_empty(self) -> bool:
        return not (self.context_words or self.column_headers or self.region_hints)


# ------------------------------------------------------------------
# Pipeline configuration
# ------------------------------------------------------------------

@dataclass
class PipelineConfig:
    """Configuration for the DetectionPipeline."""
    ml_confidence_threshold: float = 0.3
    context_window_size: int = 50
    auto_anonymize_threshold: float = 0.6
    review_threshold: float = 0.4        # context scoring flags below this
    enabled_passes: dict[str, bool] = field(
        default_factory=lambda: {name: True for name in PASS_NAMES}
    )
    debug: bool = False
    enable_quality_filters: bool = True  # deny-list + runtime context boosts
    enable_normalization: bool = True
    normalizer_options: NormalizerOptions = field(default_factory=NormalizerOptions)
    runtime: RuntimeContext = field(default_factory=RuntimeContext)

    def is_pass_enabled(self, name: str) -> bool:
        return self.enabled_passes.get(name, True)


# ------------------------------------------------------------------
# Per-document context shared by all passes
# ------------------------------------------------------------------

class PipelineContext:
    """Mutable state for one document run.

    ``metadata`` is the side channel passes use to publish document type,
    filter counts and the like; everything else is read-only.
    """

    def __init__(
        self,
        config: PipelineConfig,
        language: str = "de",
        original_text: str = "",
    ) -> None:
        self.config = config
        self.language = language
        self.original_text = original_text
        self.metadata: dict[str, Any] = {}
        self._ids: Iterator[int] = itertools.count(1)

    def new_entity_id(self) -> str:
        """Allocate a run-unique entity id (deterministic across runs)."""
        return f"e{next(self._ids)}"

    @property
    def document_type(self) -> str:
        return self.metadata.get("document_type", "UNKNOWN")


@dataclass(slots=True)
class PassResult:
    pass_name: str
    entities_added: int
    entities_removed: int
    entities_modified: int
    duration_ms: float
    error: str | None = None


@runtime_checkable
class DetectionPass(Protocol):
    """A single stage of the detection pipeline.

    Passes receive the normalized text plus the entities produced so far
    and return the new entity list.  They must not mutate their input.
    """
    name: str
    order: int
    enabled: bool

    async def execute(
        self,
        text: str,
        entities: list[Entity],
        context: PipelineContext,
    ) -> list[Entity]:
        ...
