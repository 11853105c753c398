"""Run a token classifier over a whole document.

validate → chunk → per-chunk inference with retry → shift & dedupe →
BIO merge → label mapping.  Any token classifier works as long as it is
a callable ``text -> list[dict]`` (sync or async) whose dicts carry
``word``, ``entity`` or ``entity_group``, ``score``, ``start`` and
``end``.
"""

from __future__ import annotations
import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from .chunker import Chunk, chunk_text, merge_chunk_predictions, DEFAULT_MAX_TOKENS, DEFAULT_OVERLAP_TOKENS
from .input_validator import validate_ml_input
from .metrics import InferenceMetrics, MetricsCollector
from .retry import RetryPolicy, call_with_retry
from .tokens import ML_ENTITY_MAPPING, TokenPrediction, merge_bio_tokens, normalize_predictions

logger = logging.getLogger(__name__)

TokenClassifier = Callable[[str], Union[list[dict[str, Any]], Awaitable[list[dict[str, Any]]]]]


@dataclass(frozen=True, slots=True)
class MLEntity:
    type: str
    text: str
    start: int
    end: int
    confidence: float


class MLAdapter:
    """Document-level wrapper around a token classifier."""

    def __init__(
        self,
        classifier: TokenClassifier,
        *,
        model_name: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
        retry_policy: RetryPolicy | None = None,
        metrics: MetricsCollector | None = None,
        min_length: int = 3,
        weighted_confidence: bool = False,
    ) -> None:
        self.classifier = classifier
        self.model_name = model_name or getattr(classifier, "model_name", type(classifier).__name__)
        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens
        self.retry_policy = retry_policy or RetryPolicy()
        self.metrics = metrics or MetricsCollector()
        self.min_length = min_length
        self.weighted_confidence = weighted_confidence

    async def _infer(self, text: str) -> list[dict[str, Any]]:
        result = self.classifier(text)
        if inspect.isawaitable(result):
            result = await result
        return list(result or [])

    async def predict(self, text: str) -> list[MLEntity]:
        t0 = time.perf_counter()
        check = validate_ml_input(text)
        if not check.valid:
            logger.info("skipping ML inference: %s", check.error)
            return []

        chunks = chunk_text(check.text, self.max_tokens, self.overlap_tokens)
        results: list[tuple[Chunk, list[TokenPrediction]]] = []
        retries = 0
        failed = False
        for chunk in chunks:
            outcome = await call_with_retry(
                lambda c=chunk: self._infer(c.text),
                self.retry_policy,
                label=f"chunk {chunk.index}",
            )
            retries += outcome.retries
            if not outcome.ok:
                failed = True
                continue
            results.append((chunk, normalize_predictions(outcome.value, len(chunk.text))))
            # let other tasks run between chunks
            await asyncio.sleep(0)

        predictions = merge_chunk_predictions(results)
        merged = merge_bio_tokens(
            predictions,
            text,
            weighted=self.weighted_confidence,
            min_length=self.min_length,
        )

        entities: list[MLEntity] = []
        for m in merged:
            etype = ML_ENTITY_MAPPING.get(m.label.upper(), "UNKNOWN")
            if etype == "UNKNOWN":
                continue
            entities.append(MLEntity(
                type=etype,
                text=m.word,
                start=m.start,
                end=m.end,
                confidence=m.confidence,
            ))

        self.metrics.record(InferenceMetrics(
            duration_ms=(time.perf_counter() - t0) * 1000,
            text_length=len(text),
            chunk_count=len(chunks),
            entity_count=len(entities),
            retry_attempts=retries,
            failed=failed,
            model_name=self.model_name,
        ))
        return entities
