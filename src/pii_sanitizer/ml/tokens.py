"""Token-level NER predictions and BIO merging into entity spans."""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Iterable

logger = logging.getLogger(__name__)

DEFAULT_MAX_GAP = 5

# NER label → entity type.  Labels mapped to UNKNOWN are dropped.
ML_ENTITY_MAPPING: dict[str, str] = {
    "PER": "PERSON",
    "PERSON": "PERSON",
    "ORG": "ORGANIZATION",
    "ORGANIZATION": "ORGANIZATION",
    "LOC": "LOCATION",
    "LOCATION": "LOCATION",
    "GPE": "LOCATION",
    "DATE": "DATE",
    "DATE_TIME": "DATE",
    "PHONE": "PHONE",
    "PHONE_NUMBER": "PHONE",
    "EMAIL": "EMAIL",
    "EMAIL_ADDRESS": "EMAIL",
    "ADDRESS": "ADDRESS",
    "MISC": "UNKNOWN",
}


@dataclass(frozen=True, slots=True)
class TokenPrediction:
    word: str
    entity: str        # BIO label, e.g. "B-PER"
    score: float
    start: int
    end: int

    def shifted(self, offset: int) -> TokenPrediction:
        return TokenPrediction(self.word, self.entity, self.score, self.start + offset, self.end + offset)


@dataclass(frozen=True, slots=True)
class MergedEntity:
    label: str         # label without BIO prefix, e.g. "PER"
    word: str
    start: int
    end: int
    confidence: float


def split_label(label: str) -> tuple[str, str]:
    """"B-PER" → ("B", "PER"); a bare "PER" is treated as a beginning."""
    if len(label) > 2 and label[1] == "-" and label[0] in "BIES":
        return label[0], label[2:]
    return "B", label


def normalize_predictions(raw: Iterable[Any], length: int | None = None) -> list[TokenPrediction]:
    """Accept both ``entity`` and ``entity_group`` keyed model output.

    Items that are not mappings, lack a usable span or score, or point
    outside ``length`` characters are skipped.
    """
    out: list[TokenPrediction] = []
    skipped = 0
    for r in raw:
        if not isinstance(r, dict):
            skipped += 1
            continue
        label = r.get("entity") or r.get("entity_group") or ""
        try:
            start, end = int(r["start"]), int(r["end"])
            score = float(r.get("score", 0.0))
        except (KeyError, TypeError, ValueError):
            skipped += 1
            continue
        if start < 0 or end <= start or (length is not None and end > length):
            skipped += 1
            continue
        out.append(TokenPrediction(
            word=str(r.get("word", "")),
            entity=str(label),
            score=min(1.0, max(0.0, score)),
            start=start,
            end=end,
        ))
    if skipped:
        logger.warning("dropped %d malformed token predictions", skipped)
    return out


def _confidence(scores: list[float], weighted: bool) -> float:
    if not weighted:
        return sum(scores) / len(scores)
    weights = [1 / (i + 1) for i in range(len(scores))]
    return sum(s * w for s, w in zip(scores, weights)) / sum(weights)


def merge_bio_tokens(
    predictions: list[TokenPrediction],
    text: str,
    *,
    max_gap: int = DEFAULT_MAX_GAP,
    weighted: bool = False,
    min_length: int = 1,
) -> list[MergedEntity]:
    """Merge B-/I- token runs into entity spans over *text*."""
    tokens = sorted(
        (p for p in predictions if p.entity and p.entity != "O"),
        key=lambda p: p.start,
    )
    merged: list[MergedEntity] = []
    cur_label: str | None = None
    cur_start = cur_end = 0
    scores: list[float] = []

    def flush() -> None:
        if cur_label is None:
            return
        word = text[cur_start:cur_end]
        if len(word.strip()) >= min_length:
            merged.append(MergedEntity(
                label=cur_label,
                word=word,
                start=cur_start,
                end=cur_end,
                confidence=min(1.0, _confidence(scores, weighted)),
            ))

    for tok in tokens:
        prefix, label = split_label(tok.entity)
        if (
            cur_label is not None
            and prefix == "I"
            and label == cur_label
            and tok.start - cur_end <= max_gap
        ):
            cur_end = max(cur_end, tok.end)
            scores.append(tok.score)
            continue
        flush()
        cur_label, cur_start, cur_end, scores = label, tok.start, tok.end, [tok.score]
    flush()
    return merged
