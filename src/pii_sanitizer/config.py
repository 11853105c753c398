"""YAML/dict config loader for pii-sanitizer.

Supports loading from a YAML file or a plain dict (for embedding in a
larger application config).

Example YAML:

    pii_sanitizer:
      thresholds:
        ml_confidence: 0.3
        auto_anonymize: 0.6
        review: 0.4
      context_window_size: 50
      passes:
        address_relationship: false
      normalizer:
        unicode_form: NFKC
        deobfuscate_phone: false
      runtime:
        context_words:
          PERSON: [mitarbeiter, employé]
        column_headers:
          - {column: Name, entity_type: PERSON, confidence_boost: 0.3}
        region_hints:
          - {start: 0, end: 400, expected_entity_type: SENDER}
        document:
          type: INVOICE
          languages: [de]
      deny_list:
        global: [Total, Montant]
        by_entity_type:
          PERSON: [{type: regex, pattern: "^Abteilung\\\\b", flags: i}]
      ml:
        backend: presidio        # "none", "presidio" or "transformers"
        language: de
        score_threshold: 0.35
      anonymizer:
        skip_types: [DATE]
        allow_list: [info@example.ch]
"""

from __future__ import annotations
import logging
from pathlib import Path
from typing import Any

import yaml

from .anonymizer import Anonymizer, AnonymizerConfig
from .context import (
    PASS_NAMES,
    ColumnContext,
    DocumentHints,
    PipelineConfig,
    RegionHint,
    RuntimeContext,
)
from .deny_list import DenyList
from .errors import ConfigError
from .ml.adapter import MLAdapter, TokenClassifier
from .normalizer import NormalizerOptions
from .pipeline import DetectionPipeline

logger = logging.getLogger(__name__)

ML_BACKENDS = ("none", "presidio", "transformers")
UNICODE_FORMS = ("NFC", "NFKC", "NFD", "NFKD")


def _section(data: dict[str, Any]) -> dict[str, Any]:
    # Support nested under "pii_sanitizer" key or flat
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config must be a mapping, got {type(data).__name__}")
    if "pii_sanitizer" in data:
        data = data["pii_sanitizer"] or {}
    return data


def _threshold(value: Any, name: str) -> float:
    try:
        f = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc
    if not 0.0 <= f <= 1.0:
        raise ConfigError(f"{name} must be within [0, 1], got {f}")
    return f


def load_config(data: dict[str, Any]) -> PipelineConfig:
    """Normalize a config dict (from YAML or inline) into a PipelineConfig."""
    data = _section(data)
    defaults = PipelineConfig()
    thresholds = data.get("thresholds") or {}

    passes = dict(defaults.enabled_passes)
    for name, enabled in (data.get("passes") or {}).items():
        if name not in PASS_NAMES:
            raise ConfigError(f"unknown pass {name!r} (known: {', '.join(PASS_NAMES)})")
        passes[name] = bool(enabled)

    window = data.get("context_window_size", defaults.context_window_size)
    if not isinstance(window, int) or window <= 0:
        raise ConfigError(f"context_window_size must be a positive integer, got {window!r}")

    normalizer = data.get("normalizer") or {}
    return PipelineConfig(
        ml_confidence_threshold=_threshold(
            thresholds.get("ml_confidence", defaults.ml_confidence_threshold), "thresholds.ml_confidence"),
        auto_anonymize_threshold=_threshold(
            thresholds.get("auto_anonymize", defaults.auto_anonymize_threshold), "thresholds.auto_anonymize"),
        review_threshold=_threshold(
            thresholds.get("review", defaults.review_threshold), "thresholds.review"),
        context_window_size=window,
        enabled_passes=passes,
        debug=bool(data.get("debug", False)),
        enable_quality_filters=bool(data.get("enable_quality_filters", True)),
        enable_normalization=bool(normalizer.get("enabled", True)),
        normalizer_options=_normalizer_options(normalizer),
        runtime=_runtime_context(data.get("runtime") or {}),
    )


def _normalizer_options(data: dict[str, Any]) -> NormalizerOptions:
    form = data.get("unicode_form", "NFKC")
    if form is not None and form not in UNICODE_FORMS:
        raise ConfigError(f"normalizer.unicode_form must be one of {UNICODE_FORMS} or null, got {form!r}")
    return NormalizerOptions(
        unicode_form=form,
        remove_invisible=bool(data.get("remove_invisible", True)),
        deobfuscate_email=bool(data.get("deobfuscate_email", True)),
        deobfuscate_phone=bool(data.get("deobfuscate_phone", True)),
    )


def _runtime_context(data: dict[str, Any]) -> RuntimeContext:
    try:
        columns = [
            ColumnContext(
                column=str(c["column"]),
                entity_type=str(c["entity_type"]),
                confidence_boost=float(c.get("confidence_boost", 0.2)),
            )
            for c in data.get("column_headers") or []
        ]
        regions = [
            RegionHint(
                start=int(r["start"]),
                end=int(r["end"]),
                expected_entity_type=r.get("expected_entity_type"),
                context_words=tuple(r.get("context_words") or ()),
            )
            for r in data.get("region_hints") or []
        ]
    except KeyError as exc:
        raise ConfigError(f"runtime hint is missing {exc.args[0]!r}") from exc
    except ValueError as exc:
        raise ConfigError(f"invalid runtime hint: {exc}") from exc

    for r in regions:
        if r.start < 0 or r.end < r.start:
            raise ConfigError(f"invalid region hint span ({r.start}, {r.end})")

    doc = data.get("document") or {}
    ocr = doc.get("ocr_confidence")
    return RuntimeContext(
        context_words={k: list(v) for k, v in (data.get("context_words") or {}).items()},
        column_headers=columns,
        region_hints=regions,
        document_hints=DocumentHints(
            document_type=doc.get("type"),
            languages=tuple(doc.get("languages") or ()),
            ocr_confidence=_threshold(ocr, "runtime.document.ocr_confidence") if ocr is not None else None,
        ),
    )


def load_deny_list(data: dict[str, Any]) -> DenyList | None:
    """Deny-list with the configured additions, or None for the defaults."""
    section = _section(data).get("deny_list")
    if not section:
        return None
    try:
        return DenyList.from_config(section, defaults=section.get("defaults", True))
    except (KeyError, ValueError) as exc:
        raise ConfigError(f"invalid deny_list entry: {exc}") from exc


def load_token_classifier(data: dict[str, Any]) -> TokenClassifier | None:
    """Instantiate the configured ML backend (None for rule-only runs)."""
    ml = _section(data).get("ml") or {}
    backend = ml.get("backend", "none")
    if backend not in ML_BACKENDS:
        raise ConfigError(f"ml.backend must be one of {ML_BACKENDS}, got {backend!r}")
    if backend == "none":
        return None
    if backend == "presidio":
        from .ml.presidio_layer import PresidioTokenClassifier
        return PresidioTokenClassifier(
            ml.get("language", "de"),
            entities=ml.get("entities"),
            score_threshold=_threshold(ml.get("score_threshold", 0.35), "ml.score_threshold"),
        )
    from .ml.hf_layer import DEFAULT_MODEL, TransformersTokenClassifier
    return TransformersTokenClassifier(ml.get("model", DEFAULT_MODEL))


def load_anonymizer_config(data: dict[str, Any]) -> AnonymizerConfig:
    section = _section(data).get("anonymizer") or {}
    return AnonymizerConfig(
        protect_code=bool(section.get("protect_code", True)),
        link_logical_ids=bool(section.get("link_logical_ids", True)),
        skip_types=set(section.get("skip_types", [])),
        allow_list=set(section.get("allow_list", [])),
    )


def read_yaml(path: str | Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"cannot parse {path}: {exc}") from exc


def load_from_yaml(path: str | Path) -> PipelineConfig:
    """Load a PipelineConfig from a YAML file."""
    return load_config(read_yaml(path))


def create_pipeline_from_config(data: dict[str, Any]) -> DetectionPipeline:
    """Create a fully configured pipeline from a config dict."""
    config = load_config(data)
    classifier = load_token_classifier(data)
    ml = None
    if classifier is not None:
        ml = MLAdapter(classifier)
        logger.info("ML backend: %s", ml.model_name)
    return DetectionPipeline(config, ml=ml, deny_list=load_deny_list(data))


def create_anonymizer(data: dict[str, Any]) -> Anonymizer:
    """Create a fully configured anonymizer from a config dict."""
    return Anonymizer(create_pipeline_from_config(data), load_anonymizer_config(data))
