"""Tests for the text normalizer and its offset map."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from pii_sanitizer.normalizer import NormalizerOptions, TextNormalizer, map_span, normalize


# ── Steps ────────────────────────────────────────────────────────────

def test_zero_width_removed_and_mapped():
    raw = "Ha\u200bns Muster"
    result = normalize(raw)
    assert result.normalized_text == "Hans Muster"
    assert "invisible" in result.applied_steps
    assert result.map_span(0, 4) == (0, 5)
    assert raw[slice(*result.map_span(5, 11))] == "Muster"


def test_nbsp_becomes_space():
    result = normalize("CHF\u00a0100")
    assert result.normalized_text == "CHF 100"
    assert len(result.index_map) == len(result.normalized_text)


def test_email_deobfuscation():
    raw = "jean (at) mail (dot) ch"
    result = normalize(raw)
    assert result.normalized_text == "jean@mail.ch"
    assert result.map_span(0, len(result.normalized_text)) == (0, len(raw))


def test_email_deobfuscation_brackets_and_languages():
    assert normalize("anna[at]firma{punkt}ch").normalized_text == "anna@firma.ch"
    assert normalize("marc (arobase) exemple (point) fr").normalized_text == "marc@exemple.fr"


def test_bare_words_are_not_deobfuscated():
    text = "Meet me at the point where we dot the i"
    assert normalize(text).normalized_text == text


def test_phone_trunk_prefix_removed():
    raw = "Tel. +41 (0) 79 123 45 67"
    result = normalize(raw)
    assert result.normalized_text == "Tel. +41 79 123 45 67"
    start = result.normalized_text.index("79")
    s, e = result.map_span(start, start + 2)
    assert raw[s:e] == "79"


def test_nfkc_fullwidth():
    raw = "\uff23\uff2893 0076"
    result = normalize(raw)
    assert result.normalized_text == "CH93 0076"
    assert result.map_span(0, 4) == (0, 4)


def test_combining_marks_map_to_whole_cluster():
    raw = "Ze\u0301nith"          # e + combining acute
    result = normalize(raw)
    assert result.normalized_text == "Z\u00e9nith"
    assert result.map_span(0, 6) == (0, 7)


def test_options_disable_steps():
    raw = "jean (at) mail (dot) ch\u200b"
    opts = NormalizerOptions(unicode_form=None, remove_invisible=False, deobfuscate_email=False)
    result = TextNormalizer(opts).normalize(raw)
    assert result.normalized_text == raw
    assert result.applied_steps == []


def test_empty_text():
    result = normalize("")
    assert result.normalized_text == ""
    assert result.map_span(0, 1) == (0, 1)


# ── Offset map ───────────────────────────────────────────────────────

def test_untouched_characters_map_to_themselves():
    raw = "Kontakt: hans\u200b (at) example (dot) ch, Tel. +41 (0) 44 123 45 67"
    result = normalize(raw)
    text = result.normalized_text
    for i, ch in enumerate(text):
        s, e = result.map_span(i, i + 1)
        if e - s == 1:
            assert raw[s] == ch


def test_map_span_is_monotonic():
    result = normalize("a\u200bb (at) c (dot) de \u00a0 f")
    starts = [result.map_span(i, i + 1)[0] for i in range(len(result.normalized_text))]
    assert starts == sorted(starts)


def test_map_span_without_end_map():
    assert map_span(1, 3, [0, 2, 4, 6]) == (2, 5)
    assert map_span(2, 5, []) == (2, 5)
