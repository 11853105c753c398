"""Tests for the ML adapter plumbing: chunking, BIO merging, retry, metrics."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from pii_sanitizer.ml import (
    Chunk,
    MetricsCollector,
    MLAdapter,
    RetryPolicy,
    TokenPrediction,
    call_with_retry,
    chunk_text,
    estimate_token_count,
    is_fatal,
    merge_bio_tokens,
    merge_chunk_predictions,
    split_sentences,
)
from pii_sanitizer.ml.input_validator import validate_ml_input
from pii_sanitizer.ml.metrics import InferenceMetrics
from pii_sanitizer.ml.tokens import normalize_predictions

FILLER = "Plain filler text keeps going here."
SIGNED = "Hans Muster signed the forms today."


def _long_document():
    sentences = [FILLER] * 67
    sentences[53] = SIGNED
    return " ".join(sentences)


LONG_SENTENCE = "Die Unterlagen wurden " + "heute " * 65 + "von Hans Muster geprüft."
NEXT_SENTENCE = "Danach " + "wurde alles " * 40 + "abgelegt."


def _long_trailing_sentence_document():
    return " ".join([FILLER] * 40 + [LONG_SENTENCE, NEXT_SENTENCE] + [FILLER] * 10)


# ── Chunking ─────────────────────────────────────────────────────────

def test_estimate_token_count():
    assert estimate_token_count("") == 0
    assert estimate_token_count("abcd efgh") == 3
    assert estimate_token_count("a b c d e") == 5


def test_split_sentences_skips_abbreviations():
    text = "Dr. Meier kam. Dann ging er."
    assert split_sentences(text) == [(0, 14), (15, 28)]


def test_short_text_is_one_chunk():
    [chunk] = chunk_text("Hans Muster wohnt in Bern.")
    assert chunk.start == 0
    assert chunk.index == 0


def test_long_document_chunks_overlap():
    text = _long_document()
    assert estimate_token_count(text) > 512
    chunks = chunk_text(text)
    assert len(chunks) == 2
    assert chunks[1].start < chunks[0].end
    signed_at = text.index(SIGNED)
    assert all(c.start <= signed_at < c.end for c in chunks)
    for c in chunks:
        assert text[c.start:c.end] == c.text
        assert estimate_token_count(c.text) <= 512


def test_overlong_sentence_is_split_into_word_windows():
    text = "word " * 1000
    chunks = chunk_text(text, max_tokens=100, overlap_tokens=10)
    assert len(chunks) > 1
    for c in chunks:
        assert text[c.start:c.end] == c.text
        assert estimate_token_count(c.text) <= 100
    for prev, nxt in zip(chunks, chunks[1:]):
        assert prev.start < nxt.start < prev.end
    assert chunks[-1].end == len(text.rstrip())


def test_chunk_ends_on_sentence_boundary_when_possible():
    chunks = chunk_text(_long_document())
    assert chunks[0].text.endswith(".")
    assert chunks[1].text.startswith("Plain")


def test_merge_chunk_predictions_dedupes_overlap():
    first = Chunk("Hans Muster", 0, 11, 0)
    second = Chunk("Muster", 5, 11, 1)
    results = [
        (first, [TokenPrediction("Muster", "I-PER", 0.8, 5, 11)]),
        (second, [TokenPrediction("Muster", "I-PER", 0.9, 0, 6)]),
    ]
    [merged] = merge_chunk_predictions(results)
    assert (merged.start, merged.end) == (5, 11)
    assert merged.score == 0.9


# ── Token merging ────────────────────────────────────────────────────

def test_merge_bio_tokens():
    text = "Hans Muster lives in Bern"
    predictions = [
        TokenPrediction("Hans", "B-PER", 0.9, 0, 4),
        TokenPrediction("Muster", "I-PER", 0.8, 5, 11),
        TokenPrediction("lives", "O", 0.99, 12, 17),
        TokenPrediction("Bern", "B-LOC", 0.99, 21, 25),
    ]
    merged = merge_bio_tokens(predictions, text)
    assert [(m.label, m.word) for m in merged] == [("PER", "Hans Muster"), ("LOC", "Bern")]
    assert merged[0].confidence == pytest.approx(0.85)


def test_merge_bio_weighted_confidence():
    text = "Hans Muster"
    predictions = [
        TokenPrediction("Hans", "B-PER", 0.9, 0, 4),
        TokenPrediction("Muster", "I-PER", 0.6, 5, 11),
    ]
    [merged] = merge_bio_tokens(predictions, text, weighted=True)
    assert merged.confidence == pytest.approx(0.8)


def test_label_change_starts_new_entity():
    text = "Hans Bern"
    predictions = [
        TokenPrediction("Hans", "B-PER", 0.9, 0, 4),
        TokenPrediction("Bern", "I-LOC", 0.9, 5, 9),
    ]
    assert [m.label for m in merge_bio_tokens(predictions, text)] == ["PER", "LOC"]


def test_normalize_predictions_accepts_grouped_output():
    raw = [
        {"word": "Bern", "entity_group": "LOC", "score": 0.9, "start": 0, "end": 4},
        {"word": "bad", "entity": "B-PER", "score": 0.9, "start": 5, "end": 5},
        {"word": "none", "entity": "B-PER", "score": 0.9},
    ]
    [p] = normalize_predictions(raw)
    assert p.entity == "LOC"


def test_normalize_predictions_skips_malformed_items(caplog):
    raw = [
        "B-PER",
        {"word": "Hans", "entity": "B-PER", "score": 0.9, "end": 4},
        {"word": "Hans", "entity": "B-PER", "score": None, "start": 0, "end": 4},
        {"word": "Hans", "entity": "B-PER", "score": 0.9, "start": 8, "end": 40},
        {"word": "Hans", "entity": "B-PER", "score": 1.7, "start": 0, "end": 4},
    ]
    with caplog.at_level("WARNING", logger="pii_sanitizer.ml.tokens"):
        [p] = normalize_predictions(raw, length=12)
    assert (p.start, p.end, p.score) == (0, 4, 1.0)
    assert "dropped 4 malformed" in caplog.text


# ── Input validation ─────────────────────────────────────────────────

def test_validate_ml_input():
    assert not validate_ml_input(None).valid
    assert not validate_ml_input(123).valid
    assert not validate_ml_input("   ").valid
    assert "exceeds" in validate_ml_input("abcdefgh", max_length=5).error


def test_nfc_only_when_length_is_preserved():
    same_length = validate_ml_input("\u212b")        # angstrom sign
    assert same_length.text == "\u00c5"
    assert same_length.warnings
    shifting = validate_ml_input("Ze\u0301nith")
    assert shifting.text == "Ze\u0301nith"
    assert "shift" in shifting.warnings[0]


# ── Retry ────────────────────────────────────────────────────────────

def test_is_fatal():
    assert is_fatal(ValueError("bad"))
    assert is_fatal(FileNotFoundError("model.bin"))
    assert is_fatal(RuntimeError("HTTP 404 from model hub"))
    assert not is_fatal(RuntimeError("connection reset"))


def test_backoff_delay():
    policy = RetryPolicy()
    assert policy.delay_ms(1) == 100
    assert policy.delay_ms(2) == 200
    assert policy.delay_ms(10) == 5000


@pytest.mark.asyncio
async def test_transient_errors_are_retried():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("connection reset")
        return "ok"

    outcome = await call_with_retry(flaky, RetryPolicy(initial_delay_ms=1))
    assert outcome.ok
    assert outcome.value == "ok"
    assert outcome.retries == 2


@pytest.mark.asyncio
async def test_fatal_errors_are_not_retried():
    calls = []

    async def broken():
        calls.append(1)
        raise ValueError("invalid input")

    outcome = await call_with_retry(broken, RetryPolicy(initial_delay_ms=1))
    assert not outcome.ok
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_retries_run_out():
    async def down():
        raise RuntimeError("service unavailable")

    outcome = await call_with_retry(down, RetryPolicy(max_retries=2, initial_delay_ms=1))
    assert not outcome.ok
    assert outcome.attempts == 3


# ── Adapter ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_adapter_finds_entity_in_chunk_overlap(ner):
    adapter = MLAdapter(ner({"Hans Muster": "PER"}))
    entities = await adapter.predict(_long_document())
    assert [(e.type, e.text) for e in entities] == [("PERSON", "Hans Muster")]
    [entry] = adapter.metrics.entries
    assert entry.chunk_count == 2


@pytest.mark.asyncio
async def test_name_cut_between_word_windows_is_found_once(ner):
    text = "filler " * 292 + "Hans Muster " + "filler " * 306
    name_at = text.index("Hans Muster")
    # no sentence boundary, so the first chunk ends inside the name
    assert any(name_at < c.end < name_at + len("Hans Muster") for c in chunk_text(text))
    entities = await MLAdapter(ner({"Hans Muster": "PER"})).predict(text)
    assert [(e.type, e.text, e.start) for e in entities] == [("PERSON", "Hans Muster", name_at)]


@pytest.mark.asyncio
async def test_long_trailing_sentence_is_carried_as_overlap(ner):
    text = _long_trailing_sentence_document()
    chunks = chunk_text(text)
    sentence_at = text.index(LONG_SENTENCE)
    assert chunks[0].end == sentence_at + len(LONG_SENTENCE)
    assert sentence_at < chunks[1].start < chunks[0].end
    entities = await MLAdapter(ner({"Hans Muster": "PER"})).predict(text)
    assert [(e.type, e.text) for e in entities] == [("PERSON", "Hans Muster")]


@pytest.mark.asyncio
async def test_adapter_maps_labels_and_drops_misc(ner):
    adapter = MLAdapter(ner({"Bern": "LOC", "Acme": "ORG", "Zeug": "MISC"}))
    entities = await adapter.predict("Acme liefert Zeug nach Bern.")
    assert {(e.type, e.text) for e in entities} == {("ORGANIZATION", "Acme"), ("LOCATION", "Bern")}


@pytest.mark.asyncio
async def test_adapter_accepts_async_classifier(ner):
    sync = ner({"Anna Meier": "PER"})

    async def classify(text):
        return sync(text)

    entities = await MLAdapter(classify).predict("Grüsse von Anna Meier")
    assert [e.text for e in entities] == ["Anna Meier"]


@pytest.mark.asyncio
async def test_adapter_survives_failing_model():
    def broken(text):
        raise FileNotFoundError("weights missing")

    adapter = MLAdapter(broken, retry_policy=RetryPolicy(initial_delay_ms=1))
    assert await adapter.predict("Hans Muster") == []
    assert adapter.metrics.entries[0].failed


@pytest.mark.asyncio
async def test_adapter_ignores_malformed_model_output():
    def classifier(text):
        return [
            {"word": "Hans", "entity": "B-PER", "score": None, "start": 0, "end": 4},
            {"word": "Muster", "entity": "B-PER", "score": 0.9, "start": 0, "end": 999},
            None,
        ]

    assert await MLAdapter(classifier).predict("Hans Muster schreibt.") == []


@pytest.mark.asyncio
async def test_adapter_empty_input(ner):
    adapter = MLAdapter(ner({"x": "PER"}))
    assert await adapter.predict("   ") == []
    assert adapter.metrics.entries == []


# ── Metrics ──────────────────────────────────────────────────────────

def test_metrics_summary():
    collector = MetricsCollector()
    assert collector.summary() == {"count": 0}
    for d in (10.0, 20.0, 30.0):
        collector.record(InferenceMetrics(duration_ms=d, text_length=100, chunk_count=1, entity_count=2))
    summary = collector.summary()
    assert summary["count"] == 3
    assert summary["avg_duration_ms"] == pytest.approx(20.0)
    assert summary["p50_ms"] == 20.0
    assert summary["p95_ms"] == 30.0
    assert summary["avg_entities"] == 2
