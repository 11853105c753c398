"""Inference metrics, collected per detection pass."""

from __future__ import annotations
import math
from collections import deque
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class InferenceMetrics:
    duration_ms: float
    text_length: int
    chunk_count: int
    entity_count: int
    retry_attempts: int = 0
    failed: bool = False
    model_name: str = ""


def _percentile(sorted_values: list[float], pct: float) -> float:
    if not sorted_values:
        return 0.0
    idx = max(0, math.ceil(pct / 100 * len(sorted_values)) - 1)
    return sorted_values[idx]


class MetricsCollector:
    """Bounded in-memory record of recent inference calls."""

    def __init__(self, max_entries: int = 1000) -> None:
        self._entries: deque[InferenceMetrics] = deque(maxlen=max_entries)

    def record(self, metrics: InferenceMetrics) -> None:
        self._entries.append(metrics)

    @property
    def entries(self) -> list[InferenceMetrics]:
        return list(self._entries)

    def summary(self) -> dict[str, float]:
        n = len(self._entries)
        if n == 0:
            return {"count": 0}
        durations = sorted(m.duration_ms for m in self._entries)
        return {
            "count": n,
            "failures": sum(1 for m in self._entries if m.failed),
            "avg_duration_ms": sum(durations) / n,
            "p50_ms": _percentile(durations, 50),
            "p95_ms": _percentile(durations, 95),
            "p99_ms": _percentile(durations, 99),
            "avg_entities": sum(m.entity_count for m in self._entries) / n,
            "avg_chunks": sum(m.chunk_count for m in self._entries) / n,
            "total_retries": sum(m.retry_attempts for m in self._entries),
        }

    def clear(self) -> None:
        self._entries.clear()
