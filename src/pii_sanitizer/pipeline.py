"""DetectionPipeline — runs the detection passes over one document.

Usage:
    from pii_sanitizer import create_pipeline

    pipeline = create_pipeline()                  # rule-only
    result = await pipeline.process("Kontakt: hans.muster@example.ch")
    for e in result.entities:
        print(e.type, e.original_span)

The pipeline normalizes the text, runs every enabled pass in ascending
``order`` over the normalized text, maps the surviving spans back to the
raw input and settles any overlap that is left.
"""

from __future__ import annotations
import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any

from .context import DetectionPass, PassResult, PipelineConfig, PipelineContext
from .deny_list import DenyList
from .ml.adapter import MLAdapter, TokenClassifier
from .normalizer import NormalizationResult, normalize
from .passes import default_passes
from .types import Entity

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "de"

_LANGUAGE_MARKERS: dict[str, frozenset[str]] = {
    "de": frozenset({"der", "die", "das", "und", "ist", "nicht", "mit", "für", "sehr", "geehrte",
                     "geehrter", "ihre", "wir", "bitte"}),
    "fr": frozenset({"le", "la", "les", "et", "est", "pas", "avec", "pour", "vous", "nous",
                     "madame", "monsieur", "une", "des"}),
    "en": frozenset({"the", "and", "is", "are", "with", "for", "you", "dear", "your", "please",
                     "this", "that"}),
}
_WORD = re.compile(r"[^\W\d_]+")


def detect_language(text: str) -> str:
    """de, fr or en by marker words; de when nothing stands out."""
    counts: Counter[str] = Counter()
    for word in _WORD.findall(text.lower()):
        for lang, markers in _LANGUAGE_MARKERS.items():
            if word in markers:
                counts[lang] += 1
    if not counts:
        return DEFAULT_LANGUAGE
    ranked = counts.most_common()
    if len(ranked) > 1 and ranked[0][1] == ranked[1][1]:
        return DEFAULT_LANGUAGE
    return ranked[0][0]


@dataclass
class PipelineResult:
    entities: list[Entity]
    document_type: str
    language: str
    normalization: NormalizationResult
    passes_run: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def flagged(self) -> list[Entity]:
        return [e for e in self.entities if e.flagged_for_review]


class DetectionPipeline:
    """Multi-pass PII detector.  One instance can process many documents;
    all per-document state lives in the ``PipelineContext``."""

    def __init__(
        self,
        config: PipelineConfig | None = None,
        passes: list[DetectionPass] | None = None,
        token_classifier: TokenClassifier | None = None,
        *,
        ml: MLAdapter | None = None,
        deny_list: DenyList | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        if ml is None and token_classifier is not None:
            ml = MLAdapter(token_classifier)
        self.ml = ml
        self._passes: list[DetectionPass] = []
        for p in passes if passes is not None else default_passes(ml, deny_list):
            self.register_pass(p)

    # ------------------------------------------------------------------
    # Pass registry
    # ------------------------------------------------------------------

    def register_pass(self, detection_pass: DetectionPass) -> None:
        self._passes.append(detection_pass)
        self._passes.sort(key=lambda p: p.order)

    def remove_pass(self, name: str) -> bool:
        before = len(self._passes)
        self._passes = [p for p in self._passes if p.name != name]
        return len(self._passes) < before

    @property
    def passes(self) -> list[DetectionPass]:
        return list(self._passes)

    @property
    def model_name(self) -> str | None:
        return self.ml.model_name if self.ml is not None else None

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process(self, text: str, language: str | None = None) -> PipelineResult:
        t0 = time.perf_counter()
        config = self.config

        if config.enable_normalization:
            normalization = normalize(text, config.normalizer_options)
        else:
            normalization = NormalizationResult(normalized_text=text)
        normalized = normalization.normalized_text

        if language is None:
            hinted = config.runtime.document_hints.languages
            language = hinted[0] if hinted else detect_language(normalized)
        context = PipelineContext(config, language=language, original_text=text)

        entities: list[Entity] = []
        pass_results: list[PassResult] = []
        passes_run: list[str] = []
        for p in self._passes:
            if not p.enabled or not config.is_pass_enabled(p.name):
                continue
            entities, result = await self._run_pass(p, normalized, entities, context)
            pass_results.append(result)
            passes_run.append(p.name)

        entities = _within_bounds(entities, len(normalized))
        entities = [replace(e, original_span=normalization.map_span(e.start, e.end)) for e in entities]
        entities = _dedupe_overlaps(entities)
        entities = [
            replace(e, flagged_for_review=True)
            if e.confidence < config.auto_anonymize_threshold and not e.flagged_for_review else e
            for e in entities
        ]

        metadata: dict[str, Any] = {
            "total_duration_ms": (time.perf_counter() - t0) * 1000,
            "pass_results": pass_results,
            "pass_timings": {r.pass_name: r.duration_ms for r in pass_results},
            "entity_counts": dict(Counter(e.type for e in entities)),
            "flagged_count": sum(1 for e in entities if e.flagged_for_review),
            "normalization_steps": list(normalization.applied_steps),
        }
        if "consolidation" in context.metadata:
            metadata["consolidation"] = context.metadata["consolidation"]
        if config.enable_quality_filters:
            metadata["quality_filters"] = {
                "deny_list_filtered": context.metadata.get("deny_list_filtered", {}),
                "context_boosted": context.metadata.get("context_boosted", {}),
            }

        logger.info(
            "detected %d entities (%d flagged) in %.1f ms",
            len(entities), metadata["flagged_count"], metadata["total_duration_ms"],
        )
        return PipelineResult(
            entities=entities,
            document_type=context.document_type,
            language=language,
            normalization=normalization,
            passes_run=passes_run,
            metadata=metadata,
        )

    async def _run_pass(
        self,
        detection_pass: DetectionPass,
        text: str,
        entities: list[Entity],
        context: PipelineContext,
    ) -> tuple[list[Entity], PassResult]:
        t0 = time.perf_counter()
        try:
            output = await detection_pass.execute(text, entities, context)
        except Exception as exc:
            logger.error("pass %s failed, skipping: %s", detection_pass.name, exc, exc_info=True)
            return entities, PassResult(
                detection_pass.name, 0, 0, 0, (time.perf_counter() - t0) * 1000, error=str(exc),
            )

        before = {e.id: e for e in entities}
        after_ids = {e.id for e in output}
        added = sum(1 for e in output if e.id not in before)
        removed = sum(1 for eid in before if eid not in after_ids)
        modified = sum(1 for e in output if e.id in before and before[e.id] != e)
        result = PassResult(
            detection_pass.name, added, removed, modified, (time.perf_counter() - t0) * 1000,
        )
        if context.config.debug:
            logger.debug(
                "pass %s: +%d -%d ~%d (%.1f ms)",
                result.pass_name, added, removed, modified, result.duration_ms,
            )
        return output, result


def _within_bounds(entities: list[Entity], length: int) -> list[Entity]:
    kept = [e for e in entities if e.end <= length]
    if len(kept) != len(entities):
        logger.warning("dropped %d entities with spans past the end of the text", len(entities) - len(kept))
    return kept


def _dedupe_overlaps(entities: list[Entity]) -> list[Entity]:
    """Remove overlapping entities, keeping the most confident (then longest)."""
    if not entities:
        return entities
    ranked = sorted(entities, key=lambda e: (-e.confidence, -e.length, e.start))
    taken: list[Entity] = []
    used: list[tuple[int, int]] = []
    for e in ranked:
        if not any(e.start < end and e.end > start for start, end in used):
            taken.append(e)
            used.append((e.start, e.end))
    return sorted(taken, key=lambda e: e.start)


def create_pipeline(
    config: PipelineConfig | None = None,
    token_classifier: TokenClassifier | None = None,
    *,
    deny_list: DenyList | None = None,
) -> DetectionPipeline:
    """Pipeline with the default pass set; rule-only without a classifier."""
    return DetectionPipeline(config, token_classifier=token_classifier, deny_list=deny_list)
