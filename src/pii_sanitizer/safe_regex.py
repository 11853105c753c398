"""Time-boxed regex helpers for patterns built from untrusted text.

Entity text comes from the document, so every pattern derived from it is
escaped, length-capped and run with a wall-clock budget.  The budget is
enforced by the ``regex`` engine itself (``timeout=``), which polls
elapsed time while matching and raises ``TimeoutError``; callers get a
``RegexResult`` instead of an exception.
"""

from __future__ import annotations
import logging
import re as _re
import time
from dataclasses import dataclass
from typing import Any, Callable

import regex

logger = logging.getLogger(__name__)

MAX_CANDIDATE_LENGTH = 50
MIN_CLEANED_LENGTH = 3
MAX_CLEANED_LENGTH = 30
MAX_INPUT_LENGTH = 100_000
DEFAULT_TIMEOUT_MS = 100
MAX_COMPLEXITY = 100

# Gap allowed between two characters of a candidate: up to two non-alphanumerics
_FUZZY_GAP = "[^a-zA-Z0-9]{0,2}?"

_NESTED_QUANT = _re.compile(r"\((?:[^()\\]|\\.)*[*+](?:[^()\\]|\\.)*\)[*+{]")
_UNBOUNDED = _re.compile(r"(?<!\\)[*+]")
_CLASS_QUANT = _re.compile(r"\][*+?{]")


@dataclass(frozen=True, slots=True)
class FuzzyPattern:
    candidate: str
    source: str
    compiled: regex.Pattern


@dataclass(slots=True)
class RegexResult:
    success: bool
    value: Any = None
    timed_out: bool = False
    duration_ms: float = 0.0
    error: str | None = None


# ------------------------------------------------------------------
# Pattern construction
# ------------------------------------------------------------------

def build_fuzzy_pattern(candidate: str) -> FuzzyPattern | None:
    """Build a tolerant matcher for *candidate*, or None if unsafe.

    "Jean Dupont" also matches "Jean-Dupont" or "Jean  Dupont": each
    character is escaped and adjacent characters may be separated by up
    to two non-alphanumeric characters.
    """
    if not candidate or len(candidate) > MAX_CANDIDATE_LENGTH:
        return None
    cleaned = "".join(ch for ch in candidate if ch.isalnum() or ch == "_")
    if len(cleaned) < MIN_CLEANED_LENGTH or len(cleaned) > MAX_CLEANED_LENGTH:
        return None
    source = _FUZZY_GAP.join(regex.escape(ch) for ch in cleaned)
    try:
        compiled = regex.compile(source, regex.IGNORECASE)
    except regex.error as exc:
        logger.debug("fuzzy pattern rejected: %s", exc)
        return None
    return FuzzyPattern(candidate=candidate, source=source, compiled=compiled)


def analyze_pattern_complexity(source: str) -> float:
    """Rough backtracking-risk score for a pattern source."""
    score = 0.0
    score += 10 * len(_NESTED_QUANT.findall(source))
    score += 5 * len(_UNBOUNDED.findall(source))
    if _CLASS_QUANT.search(source):
        score += 3
    score += 2 * source.count("|")
    score += len(source) / 50
    return score


def is_pattern_dangerous(source: str, max_complexity: float = MAX_COMPLEXITY) -> bool:
    return analyze_pattern_complexity(source) > max_complexity


# ------------------------------------------------------------------
# Time-boxed execution
# ------------------------------------------------------------------

def _compile(pattern: str | regex.Pattern, flags: int = 0) -> regex.Pattern:
    if isinstance(pattern, str):
        return regex.compile(pattern, flags)
    return pattern


def _run(
    op: Callable[[regex.Pattern], Any],
    pattern: str | regex.Pattern,
    text: str,
    *,
    flags: int,
    max_input_length: int,
) -> RegexResult:
    if len(text) > max_input_length:
        return RegexResult(
            success=False,
            error=f"input length {len(text)} exceeds {max_input_length}",
        )
    t0 = time.perf_counter()
    try:
        value = op(_compile(pattern, flags))
    except TimeoutError:
        elapsed = (time.perf_counter() - t0) * 1000
        logger.warning("regex timed out after %.1f ms", elapsed)
        return RegexResult(success=False, timed_out=True, duration_ms=elapsed, error="timeout")
    except regex.error as exc:
        return RegexResult(
            success=False,
            duration_ms=(time.perf_counter() - t0) * 1000,
            error=str(exc),
        )
    return RegexResult(success=True, value=value, duration_ms=(time.perf_counter() - t0) * 1000)


def safe_replace(
    pattern: str | regex.Pattern,
    text: str,
    replacement: str | Callable[[regex.Match], str],
    *,
    timeout_ms: float = DEFAULT_TIMEOUT_MS,
    flags: int = 0,
    max_input_length: int = MAX_INPUT_LENGTH,
) -> RegexResult:
    """``pattern.sub`` with a wall-clock budget.  ``value`` is the new text."""
    return _run(
        lambda p: p.sub(replacement, text, timeout=timeout_ms / 1000),
        pattern, text, flags=flags, max_input_length=max_input_length,
    )


def safe_search(
    pattern: str | regex.Pattern,
    text: str,
    *,
    timeout_ms: float = DEFAULT_TIMEOUT_MS,
    flags: int = 0,
    max_input_length: int = MAX_INPUT_LENGTH,
) -> RegexResult:
    """``pattern.search`` with a wall-clock budget.  ``value`` is the match or None."""
    return _run(
        lambda p: p.search(text, timeout=timeout_ms / 1000),
        pattern, text, flags=flags, max_input_length=max_input_length,
    )


def safe_finditer(
    pattern: str | regex.Pattern,
    text: str,
    *,
    timeout_ms: float = DEFAULT_TIMEOUT_MS,
    flags: int = 0,
    max_input_length: int = MAX_INPUT_LENGTH,
) -> RegexResult:
    """All matches, materialized under one budget.  ``value`` is a list."""
    return _run(
        lambda p: list(p.finditer(text, timeout=timeout_ms / 1000)),
        pattern, text, flags=flags, max_input_length=max_input_length,
    )
