"""Presidio NER backend exposed as a BIO token classifier.

Presidio returns whole-entity spans; they are re-emitted per word as
``B-``/``I-`` tokens so that every backend goes through the same merge
step.  Uses spaCy under the hood.
"""

from __future__ import annotations
import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from presidio_analyzer import AnalyzerEngine

# Lazy cache, spaCy is not loaded until first use
_engines: dict[str, AnalyzerEngine] = {}

_SPACY_MODELS = {
    "en": "en_core_web_sm",
    "de": "de_core_news_sm",
    "fr": "fr_core_news_sm",
    "it": "it_core_news_sm",
}

# Presidio entity → BIO label
_LABELS = {
    "PERSON": "PER",
    "ORGANIZATION": "ORG",
    "LOCATION": "LOC",
}

DEFAULT_ENTITIES = list(_LABELS)

_WORD = re.compile(r"\S+")


def _get_engine(language: str = "de") -> AnalyzerEngine:
    """Lazy-init the Presidio analyzer engine for *language*."""
    engine = _engines.get(language)
    if engine is None:
        from presidio_analyzer import AnalyzerEngine
        from presidio_analyzer.nlp_engine import NlpEngineProvider

        model = _SPACY_MODELS.get(language, f"{language}_core_news_sm")
        provider = NlpEngineProvider(nlp_configuration={
            "nlp_engine_name": "spacy",
            "models": [{"lang_code": language, "model_name": model}],
        })
        engine = AnalyzerEngine(nlp_engine=provider.create_engine(), supported_languages=[language])
        _engines[language] = engine
    return engine


class PresidioTokenClassifier:
    """Callable ``text -> list[dict]`` producing word-level BIO predictions."""

    def __init__(
        self,
        language: str = "de",
        *,
        entities: list[str] | None = None,
        score_threshold: float = 0.35,
    ) -> None:
        self.language = language
        self.entities = entities or DEFAULT_ENTITIES
        self.score_threshold = score_threshold

    @property
    def model_name(self) -> str:
        return f"presidio/{_SPACY_MODELS.get(self.language, self.language)}"

    def __call__(self, text: str) -> list[dict[str, Any]]:
        engine = _get_engine(self.language)
        results = engine.analyze(
            text=text,
            language=self.language,
            entities=self.entities,
            score_threshold=self.score_threshold,
        )
        tokens: list[dict[str, Any]] = []
        for r in sorted(results, key=lambda r: r.start):
            label = _LABELS.get(r.entity_type)
            if label is None:
                continue
            for i, m in enumerate(_WORD.finditer(text, r.start, r.end)):
                tokens.append({
                    "word": m.group(),
                    "entity": f"{'B' if i == 0 else 'I'}-{label}",
                    "score": float(r.score),
                    "start": m.start(),
                    "end": m.end(),
                })
        return tokens
