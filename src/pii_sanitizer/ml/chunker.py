"""Split long documents into overlapping, sentence-aligned chunks.

Token counts are estimated (no tokenizer dependency): the larger of
``ceil(chars / 4)`` and the word count.  Chunks are cut on sentence
boundaries where possible and between words otherwise, so every chunk
respects ``max_tokens``.
"""

from __future__ import annotations
import math
import re
from dataclasses import dataclass

from .tokens import TokenPrediction

DEFAULT_MAX_TOKENS = 512
DEFAULT_OVERLAP_TOKENS = 50

_ABBREVIATIONS = re.compile(
    r"(?:^|[\s(])(?:Mr|Mrs|Ms|Dr|Prof|Sr|Jr|vs|etc|e\.g|i\.e|Inc|Ltd|Corp|Co)$"
)
_SENTENCE_END = re.compile(r"[.!?]")
_WORD = re.compile(r"\S+")


@dataclass(frozen=True, slots=True)
class Chunk:
    text: str
    start: int      # offset of text[0] in the document
    end: int
    index: int


def estimate_token_count(text: str) -> int:
    if not text:
        return 0
    return max(math.ceil(len(text) / 4), len(text.split()))


def split_sentences(text: str) -> list[tuple[int, int]]:
    """Return (start, end) spans of sentences, whitespace trimmed."""
    spans: list[tuple[int, int]] = []
    start = 0
    n = len(text)
    for m in _SENTENCE_END.finditer(text):
        pos = m.end()
        nxt = text[pos] if pos < n else ""
        if pos < n:
            after = text[pos + 1] if pos + 1 < n else ""
            ends = nxt == "\n" or (nxt.isspace() and after.isupper())
            if not ends:
                continue
        if _ABBREVIATIONS.search(text[start:m.start()]):
            continue
        spans.append((start, pos))
        start = pos
    spans.append((start, n))

    trimmed: list[tuple[int, int]] = []
    for s, e in spans:
        while s < e and text[s].isspace():
            s += 1
        while e > s and text[e - 1].isspace():
            e -= 1
        if s < e:
            trimmed.append((s, e))
    return trimmed


def _span_tokens(start: int, end: int, words: int) -> int:
    return max(math.ceil((end - start) / 4), words)


def chunk_text(
    text: str,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
) -> list[Chunk]:
    """Chunk *text*; consecutive chunks share about ``overlap_tokens``.

    A chunk ends on a sentence boundary when one falls in its second half,
    otherwise between two words.  The next chunk starts ``overlap_tokens``
    before that cut, moved forward to a sentence start if one lies inside
    the overlap, so a name cut by the boundary is seen whole at least once.
    """
    if not text:
        return []
    if estimate_token_count(text) <= max_tokens:
        return [Chunk(text=text, start=0, end=len(text), index=0)]

    words = [(m.start(), m.end()) for m in _WORD.finditer(text)]
    index_of = {s: i for i, (s, _) in enumerate(words)}
    sentence_starts = {index_of[s] for s, _ in split_sentences(text) if s in index_of}
    n = len(words)

    chunks: list[Chunk] = []
    i = 0
    while i < n:
        j = i
        while j + 1 < n and _span_tokens(words[i][0], words[j + 1][1], j + 2 - i) <= max_tokens:
            j += 1
        if j + 1 < n:
            for k in range(j, i + (j - i) // 2, -1):
                if k + 1 in sentence_starts:
                    j = k
                    break

        start, end = words[i][0], words[j][1]
        chunks.append(Chunk(text=text[start:end], start=start, end=end, index=len(chunks)))
        if j + 1 >= n:
            break

        s = j + 1
        while s - 1 > i and _span_tokens(words[s - 1][0], end, j + 2 - s) <= overlap_tokens:
            s -= 1
        for k in range(s, j + 1):
            if k in sentence_starts:
                s = k
                break
        i = s
    return chunks


def merge_chunk_predictions(
    results: list[tuple[Chunk, list[TokenPrediction]]],
) -> list[TokenPrediction]:
    """Shift chunk-local predictions to document offsets and drop duplicates.

    A prediction from an overlap region is reported by both chunks; when two
    predictions share a label and overlap by more than half of the shorter
    one, keep the higher score over the union span.
    """
    shifted: list[TokenPrediction] = []
    for chunk, predictions in results:
        for p in predictions:
            shifted.append(p.shifted(chunk.start))
    shifted.sort(key=lambda p: (p.start, p.end))

    kept: list[TokenPrediction] = []
    for p in shifted:
        for idx, k in enumerate(kept):
            if k.entity != p.entity:
                continue
            overlap = min(k.end, p.end) - max(k.start, p.start)
            shorter = min(k.end - k.start, p.end - p.start)
            if shorter > 0 and overlap > 0.5 * shorter:
                best = p if p.score > k.score else k
                kept[idx] = TokenPrediction(
                    word=best.word,
                    entity=best.entity,
                    score=best.score,
                    start=min(k.start, p.start),
                    end=max(k.end, p.end),
                )
                break
        else:
            kept.append(p)
    kept.sort(key=lambda p: (p.start, p.end))
    return kept
