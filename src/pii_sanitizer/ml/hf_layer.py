"""Hugging Face token-classification backend (optional ``ml`` extra)."""

from __future__ import annotations
import logging
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "Davlan/distilbert-base-multilingual-cased-ner-hrl"

# Model id → loaded pipeline; read-only once created
_pipelines: dict[str, Any] = {}


def _load_pipeline(model_id: str):
    """Lazy-load a Hugging Face token-classification pipeline."""
    pipe = _pipelines.get(model_id)
    if pipe is not None:
        return pipe

    from transformers import pipeline as hf_pipeline

    logger.info("Loading HF NER model '%s'", model_id)
    pipe = hf_pipeline("ner", model=model_id, aggregation_strategy="none", device=-1)
    _pipelines[model_id] = pipe
    logger.info("HF model '%s' loaded", model_id)
    return pipe


class TransformersTokenClassifier:
    """Callable ``text -> list[dict]`` returning raw sub-word BIO tokens."""

    def __init__(self, model_id: str = DEFAULT_MODEL) -> None:
        self.model_id = model_id

    @property
    def model_name(self) -> str:
        return self.model_id

    def __call__(self, text: str) -> list[dict[str, Any]]:
        pipe = _load_pipeline(self.model_id)
        return [
            {
                "word": r.get("word", ""),
                "entity": r.get("entity") or r.get("entity_group", ""),
                "score": float(r.get("score", 0.0)),
                "start": r.get("start"),
                "end": r.get("end"),
            }
            for r in pipe(text)
        ]
