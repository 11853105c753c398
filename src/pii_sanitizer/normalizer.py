"""Text normalization with an exact offset map back to the raw input.

Every step rewrites the text *and* records, for each output character,
the region of the previous text that produced it.  Composing those
regions gives ``index_map`` / ``end_map`` so that any span detected in
the normalized text can be mapped onto the document the user sent.

Steps (each can be switched off in ``NormalizerOptions``):

  unicode    NFKC per grapheme cluster (base char + combining marks)
  invisible  drop zero-width characters, turn NBSP-like spaces into " "
  email      "(at)" / "[dot]" / "{Punkt}" ... → "@" / "."  (bracketed only)
  phone      "+41 (0) 79 ..." → "+41 79 ..."
"""

from __future__ import annotations
import re
import unicodedata
from dataclasses import dataclass, field


ZERO_WIDTH = frozenset("\u200b\u200c\u200d\u2060\ufeff")
SPACE_LIKE = frozenset("\u00a0\u2007\u202f")

_AT_WORDS = ("at", "arobase", "klammeraffe")
_DOT_WORDS = ("dot", "point", "punkt")


def _bracketed(words: tuple[str, ...]) -> re.Pattern:
    alt = "|".join(words)
    return re.compile(
        rf"\s*(?:\(\s*(?:{alt})\s*\)|\[\s*(?:{alt})\s*\]|\{{\s*(?:{alt})\s*\}})\s*",
        re.IGNORECASE,
    )


_EMAIL_RULES: list[tuple[re.Pattern, str]] = [
    (_bracketed(_AT_WORDS), "@"),
    (_bracketed(_DOT_WORDS), "."),
]

_PHONE_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"(\+\d{1,3})\s*\(0\)\s*"), r"\1 "),
]


@dataclass
class NormalizerOptions:
    unicode_form: str | None = "NFKC"
    remove_invisible: bool = True
    deobfuscate_email: bool = True
    deobfuscate_phone: bool = True


@dataclass
class NormalizationResult:
    """Normalized text plus its offset maps into the original text.

    ``index_map[i]`` is the original offset of ``normalized_text[i]``;
    ``end_map[i]`` is the exclusive original end of the region that
    produced it.
    """
    normalized_text: str
    index_map: list[int] = field(default_factory=list)
    end_map: list[int] = field(default_factory=list)
    applied_steps: list[str] = field(default_factory=list)

    def map_span(self, start: int, end: int) -> tuple[int, int]:
        return map_span(start, end, self.index_map, self.end_map)


def map_span(
    start: int,
    end: int,
    index_map: list[int],
    end_map: list[int] | None = None,
) -> tuple[int, int]:
    """Translate a normalized-text span to original-text coordinates."""
    if not index_map:
        return start, end
    last = len(index_map) - 1
    s = index_map[min(max(start, 0), last)]
    e_idx = min(max(end - 1, 0), last)
    if end_map:
        e = end_map[e_idx]
    else:
        e = index_map[e_idx] + 1
    return s, max(e, s + 1)


# Each step returns the new text and, per output char, (src_start, src_end)
# into the text it was given.
_Regions = list[tuple[int, int]]


def _unicode_step(text: str, form: str) -> tuple[str, _Regions]:
    out: list[str] = []
    regions: _Regions = []
    i = 0
    n = len(text)
    while i < n:
        j = i + 1
        while j < n and unicodedata.combining(text[j]):
            j += 1
        for ch in unicodedata.normalize(form, text[i:j]):
            out.append(ch)
            regions.append((i, j))
        i = j
    return "".join(out), regions


def _invisible_step(text: str) -> tuple[str, _Regions]:
    out: list[str] = []
    regions: _Regions = []
    for i, ch in enumerate(text):
        if ch in ZERO_WIDTH:
            continue
        out.append(" " if ch in SPACE_LIKE else ch)
        regions.append((i, i + 1))
    return "".join(out), regions


def _regex_step(text: str, rules: list[tuple[re.Pattern, str]]) -> tuple[str, _Regions]:
    regions: _Regions = [(i, i + 1) for i in range(len(text))]
    for pattern, template in rules:
        out: list[str] = []
        new_regions: _Regions = []
        pos = 0
        for m in pattern.finditer(text):
            out.append(text[pos:m.start()])
            new_regions.extend(regions[pos:m.start()])
            replacement = m.expand(template)
            src = (regions[m.start()][0], regions[m.end() - 1][1])
            out.append(replacement)
            new_regions.extend([src] * len(replacement))
            pos = m.end()
        out.append(text[pos:])
        new_regions.extend(regions[pos:])
        text = "".join(out)
        regions = new_regions
    return text, regions


def _compose(
    index_map: list[int],
    end_map: list[int],
    regions: _Regions,
) -> tuple[list[int], list[int]]:
    return (
        [index_map[s] for s, _ in regions],
        [end_map[e - 1] for _, e in regions],
    )


def normalize(raw: str, options: NormalizerOptions | None = None) -> NormalizationResult:
    """Normalize *raw* and return the text with its offset maps."""
    opts = options or NormalizerOptions()
    if not raw:
        return NormalizationResult(normalized_text="")

    text = raw
    index_map = list(range(len(raw)))
    end_map = [i + 1 for i in range(len(raw))]
    applied: list[str] = []

    steps = []
    if opts.unicode_form:
        steps.append(("unicode", lambda t: _unicode_step(t, opts.unicode_form)))
    if opts.remove_invisible:
        steps.append(("invisible", _invisible_step))
    if opts.deobfuscate_email:
        steps.append(("email", lambda t: _regex_step(t, _EMAIL_RULES)))
    if opts.deobfuscate_phone:
        steps.append(("phone", lambda t: _regex_step(t, _PHONE_RULES)))

    for name, step in steps:
        new_text, regions = step(text)
        if new_text == text:
            continue
        index_map, end_map = _compose(index_map, end_map, regions)
        text = new_text
        applied.append(name)

    return NormalizationResult(
        normalized_text=text,
        index_map=index_map,
        end_map=end_map,
        applied_steps=applied,
    )


class TextNormalizer:
    """Reusable normalizer bound to a set of options."""

    def __init__(self, options: NormalizerOptions | None = None) -> None:
        self.options = options or NormalizerOptions()

    def normalize(self, raw: str) -> NormalizationResult:
        return normalize(raw, self.options)
