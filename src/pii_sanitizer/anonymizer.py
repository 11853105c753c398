"""Anonymizer — the main API.  Detection first, then pseudonym replacement.

Usage:
    from pii_sanitizer import Anonymizer, create_pipeline

    anonymizer = Anonymizer(create_pipeline())     # reusable
    result = await anonymizer.process_document("Contact: jean.dupont@mail.ch")
    print(result.text)                  # "Contact: EMAIL_1"
    print(result.mapping.entities)      # {"jean.dupont@mail.ch": "EMAIL_1"}

Every call gets a fresh Session, so pseudonyms never carry over from one
document to the next.
"""

from __future__ import annotations
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import regex

from .pipeline import DetectionPipeline, PipelineResult, create_pipeline
from .safe_regex import FuzzyPattern, MAX_COMPLEXITY, analyze_pattern_complexity, build_fuzzy_pattern, safe_replace
from .session import AddressEntry, Session
from .types import ADDRESS_TYPES, Entity

logger = logging.getLogger(__name__)

MAPPING_VERSION = "3.2"
COMBINED_TIMEOUT_MS = 500
FALLBACK_TIMEOUT_MS = 100

_FENCED_CODE = re.compile(r"^(```|~~~)[^\n]*\n.*?^\1[ \t]*$", re.MULTILINE | re.DOTALL)
_INLINE_CODE = re.compile(r"`[^`\n]+`")


@dataclass
class AnonymizerConfig:
    """Configuration for the Anonymizer."""
    protect_code: bool = True           # keep markdown code out of detection
    link_logical_ids: bool = True       # mentions of one person share a pseudonym
    combined_timeout_ms: float = COMBINED_TIMEOUT_MS
    fallback_timeout_ms: float = FALLBACK_TIMEOUT_MS
    max_input_length: int = 1_000_000
    # Entity types to always skip (e.g. don't replace dates)
    skip_types: set[str] = field(default_factory=set)
    # Allow-list: values that should NEVER be replaced
    allow_list: set[str] = field(default_factory=set)


@dataclass
class MappingFile:
    """The per-document mapping artifact (original text → pseudonym)."""
    model: str
    document_type: str
    detection_methods: list[str]
    entities: dict[str, str]
    addresses: list[AddressEntry] = field(default_factory=list)
    version: str = MAPPING_VERSION
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "model": self.model,
            "document_type": self.document_type,
            "detection_methods": list(self.detection_methods),
            "entities": dict(self.entities),
            "addresses": [a.to_dict() for a in self.addresses],
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)


@dataclass
class AnonymizationResult:
    text: str
    mapping: MappingFile
    entities: list[Entity]
    detection: PipelineResult


# ── Code protection ───────────────────────────────────────────────

def protect_code(text: str) -> tuple[str, dict[str, str]]:
    """Swap fenced and inline markdown code for placeholders."""
    blocks: dict[str, str] = {}

    def fenced(m: re.Match) -> str:
        key = f"<<<CODE_BLOCK_{len(blocks)}>>>"
        blocks[key] = m.group(0)
        return key

    text = _FENCED_CODE.sub(fenced, text)
    inline_count = 0

    def inline(m: re.Match) -> str:
        nonlocal inline_count
        key = f"<<<INLINE_{inline_count}>>>"
        inline_count += 1
        blocks[key] = m.group(0)
        return key

    return _INLINE_CODE.sub(inline, text), blocks


def restore_code(text: str, blocks: dict[str, str]) -> str:
    for key, original in blocks.items():
        text = text.replace(key, original)
    return text


# ── Anonymizer ────────────────────────────────────────────────────

class Anonymizer:
    """Replace detected PII with session-scoped pseudonyms.

    Order of substitution:
      1. grouped addresses, by exact span, last one first
      2. de-obfuscated entities, by exact span (their normalized text no
         longer occurs verbatim in the input)
      3. everything else, by one combined fuzzy alternation so that every
         occurrence of a value is replaced, with a per-entity fallback
         when the combined pass runs out of time
    """

    def __init__(
        self,
        pipeline: DetectionPipeline | None = None,
        config: AnonymizerConfig | None = None,
    ) -> None:
        self.pipeline = pipeline or create_pipeline()
        self.config = config or AnonymizerConfig()

    async def process_document(self, text: str, language: str | None = None) -> AnonymizationResult:
        cfg = self.config
        session = Session(link_logical_ids=cfg.link_logical_ids)

        if cfg.protect_code:
            protected, blocks = protect_code(text)
        else:
            protected, blocks = text, {}

        detection = await self.pipeline.process(protected, language)
        entities = [
            e for e in detection.entities
            if e.type not in cfg.skip_types and e.text not in cfg.allow_list
        ]

        addresses = [e for e in entities if e.type in ADDRESS_TYPES and e.components]
        # Reading order decides address numbering; substitution runs back to front.
        spans: list[tuple[int, int, str]] = []
        for e in sorted(addresses, key=lambda e: _span(e)[0]):
            start, end = _span(e)
            spans.append((start, end, session.register_grouped_address(e)))

        fuzzy: list[tuple[FuzzyPattern, str]] = []
        for e in sorted(entities, key=lambda e: _span(e)[0]):
            if e.type in ADDRESS_TYPES and e.components:
                continue
            start, end = _span(e)
            if session.is_range_anonymized(start, end):
                continue
            if protected[start:end] != e.text:
                pseudonym = session.get_or_create_pseudonym(e.text, e.type, e.logical_id)
                session.mark_range_anonymized(start, end)
                spans.append((start, end, pseudonym))
                continue
            pattern = build_fuzzy_pattern(e.text)
            if pattern is None:
                logger.debug("no safe pattern for %s entity %s, leaving it", e.type, e.id)
                continue
            fuzzy.append((pattern, session.get_or_create_pseudonym(e.text, e.type, e.logical_id)))

        out = protected
        for start, end, replacement in sorted(spans, key=lambda s: s[0], reverse=True):
            out = out[:start] + replacement + out[end:]

        if fuzzy:
            keep = [r for _, _, r in spans] + list(blocks)
            out = self._replace_all(out, fuzzy, keep)

        out = restore_code(out, blocks)
        mapping = MappingFile(
            model=self.pipeline.model_name or "rules-only",
            document_type=detection.document_type,
            detection_methods=detection.passes_run,
            entities=session.mapping(),
            addresses=session.addresses(),
        )
        logger.info(
            "anonymized %d entities, %d addresses, %d pseudonyms",
            len(entities), len(addresses), len(session.pseudonyms()),
        )
        return AnonymizationResult(text=out, mapping=mapping, entities=entities, detection=detection)

    # ------------------------------------------------------------------
    # Pattern replacement
    # ------------------------------------------------------------------

    def _replace_all(self, text: str, fuzzy: list[tuple[FuzzyPattern, str]], keep: list[str]) -> str:
        """Replace every occurrence of every candidate in one pass."""
        by_source: dict[str, str] = {}
        for pattern, pseudonym in fuzzy:
            by_source.setdefault(pattern.source, pseudonym)
        ordered = sorted(by_source, key=len, reverse=True)

        parts = []
        if keep:
            parts.append("(?P<keep>" + "|".join(regex.escape(k) for k in sorted(keep, key=len, reverse=True)) + ")")
        names: dict[str, str] = {}
        for i, source in enumerate(ordered):
            names[f"e{i}"] = by_source[source]
            parts.append(f"(?P<e{i}>{_bounded(source)})")
        combined = "|".join(parts)

        complexity = analyze_pattern_complexity(combined)
        if complexity > MAX_COMPLEXITY:
            logger.warning("combined pattern complexity %.0f exceeds %d", complexity, MAX_COMPLEXITY)

        def substitute(m: regex.Match) -> str:
            if m.lastgroup == "keep":
                return m.group(0)
            return names[m.lastgroup]

        result = safe_replace(
            combined, text, substitute,
            timeout_ms=self.config.combined_timeout_ms,
            flags=regex.IGNORECASE,
            max_input_length=self.config.max_input_length,
        )
        if result.success:
            return result.value
        logger.warning("combined replacement failed (%s), falling back to per-entity", result.error)
        return self._replace_each(text, [(source, by_source[source]) for source in ordered])

    def _replace_each(self, text: str, items: list[tuple[str, str]]) -> str:
        for source, pseudonym in items:
            result = safe_replace(
                _bounded(source), text, pseudonym,
                timeout_ms=self.config.fallback_timeout_ms,
                flags=regex.IGNORECASE,
                max_input_length=self.config.max_input_length,
            )
            if result.success:
                text = result.value
            else:
                logger.warning("replacement for %s failed: %s", pseudonym, result.error)
        return text


def _span(entity: Entity) -> tuple[int, int]:
    return entity.original_span or (entity.start, entity.end)


def _bounded(source: str) -> str:
    return f"(?<![A-Za-z0-9])(?:{source})(?![A-Za-z0-9])"


async def anonymize(
    text: str,
    pipeline: DetectionPipeline | None = None,
    *,
    language: str | None = None,
    config: AnonymizerConfig | None = None,
) -> AnonymizationResult:
    """One-shot helper: ``Anonymizer(pipeline, config).process_document(text)``."""
    return await Anonymizer(pipeline, config).process_document(text, language)
