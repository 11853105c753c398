"""Tests for the individual detection passes."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from pii_sanitizer.context import (
    ColumnContext,
    DocumentHints,
    PipelineConfig,
    PipelineContext,
    RegionHint,
    RuntimeContext,
)
from pii_sanitizer.ml import MLAdapter
from pii_sanitizer.passes import (
    AddressRelationshipPass,
    ConsolidationPass,
    ContextScoringPass,
    DocumentTypePass,
    FormatValidationPass,
    HighRecallPass,
    default_passes,
)
from pii_sanitizer.passes.high_recall import merge_entities
from pii_sanitizer.types import SOURCE_BOTH, SOURCE_CONSOLIDATED, SOURCE_ML, Entity
from pii_sanitizer.validators import ValidationResult


def _ctx(config=None, language="de"):
    return PipelineContext(config or PipelineConfig(), language=language)


def _entity(eid, etype, text, start, conf=0.7, **kw):
    return Entity(eid, etype, text, start, start + len(text), conf, **kw)


def test_default_pass_order():
    passes = default_passes()
    assert [p.name for p in passes] == [
        "document_type", "high_recall", "format_validation",
        "context_scoring", "address_relationship", "consolidation",
    ]
    assert [p.order for p in passes] == [5, 10, 20, 30, 40, 50]


# ── High recall ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_ml_and_rule_hits_fuse_into_both(ner):
    text = "Mail: hans.muster@example.ch"
    ml = MLAdapter(ner({"hans.muster@example.ch": "EMAIL"}))
    [email] = await HighRecallPass(ml).execute(text, [], _ctx())
    assert email.type == "EMAIL"
    assert email.source == SOURCE_BOTH
    assert email.confidence == pytest.approx(0.95)
    assert len(email.metadata["merged_from"]) == 2


def test_merge_prefers_rule_type_and_unions_span():
    text = "Bahnhofstrasse 10 Zürich"
    ml = _entity("e1", "LOCATION", "Bahnhofstrasse", 0, 0.9, source=SOURCE_ML)
    rule = _entity("e2", "ADDRESS", "Bahnhofstrasse 10", 0, 0.7)
    [merged] = merge_entities([ml, rule], text)
    assert merged.type == "ADDRESS"
    assert (merged.start, merged.end) == (0, 17)
    assert merged.confidence == 0.9


def test_merge_same_source_keeps_stronger():
    weak = _entity("e1", "PHONE", "044 123 45 67", 0, 0.5)
    strong = _entity("e2", "PHONE", "044 123 45 67", 0, 0.8)
    assert merge_entities([weak, strong], "044 123 45 67") == [strong]


@pytest.mark.asyncio
async def test_deny_list_filters_table_headers(ner):
    ml = MLAdapter(ner({"Montant": "PER"}))
    ctx = _ctx(language="fr")
    assert await HighRecallPass(ml).execute("Montant: 1200", [], ctx) == []
    assert ctx.metadata["deny_list_filtered"] == {"PERSON": 1}


@pytest.mark.asyncio
async def test_deny_list_off_without_quality_filters(ner):
    ml = MLAdapter(ner({"Montant": "PER"}))
    ctx = _ctx(PipelineConfig(enable_quality_filters=False))
    [kept] = await HighRecallPass(ml).execute("Montant: 1200", [], ctx)
    assert kept.type == "PERSON"
    assert "deny_list_filtered" not in ctx.metadata


@pytest.mark.asyncio
async def test_low_ml_scores_are_dropped(ner):
    ml = MLAdapter(ner({"Hans Muster": "PER"}, score=0.2))
    assert await HighRecallPass(ml).execute("Hans Muster", [], _ctx()) == []


# ── Format validation ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_format_validation():
    entities = [
        _entity("e1", "IBAN", "CH93 0076 2011 6238 5295 7", 0),
        _entity("e2", "SWISS_AVS", "756.1234.5678.90", 30),
        _entity("e3", "PERSON", "Hans Muster", 50),
    ]
    iban, avs, person = await FormatValidationPass().execute("", entities, _ctx())
    assert iban.validation.status == "valid"
    assert iban.confidence == pytest.approx(0.84)
    assert avs.validation.status == "invalid"
    assert avs.confidence == pytest.approx(0.4)
    assert person.validation.status == "unchecked"
    assert person.confidence == 0.7


@pytest.mark.asyncio
async def test_format_validation_is_idempotent():
    entities = [
        _entity("e1", "IBAN", "CH93 0076 2011 6238 5295 7", 0),
        _entity("e2", "EMAIL", "nope@", 30),
    ]
    validation = FormatValidationPass()
    once = await validation.execute("", entities, _ctx())
    twice = await validation.execute("", once, _ctx())
    assert twice == once


@pytest.mark.asyncio
async def test_custom_validator():
    def employee_id(text):
        return ValidationResult(text.startswith("EMP-"), 0.3, "prefix")

    validation = FormatValidationPass()
    validation.add_validator("EMPLOYEE_ID", employee_id)
    good, bad = await validation.execute("", [
        _entity("e1", "EMPLOYEE_ID", "EMP-001", 0, conf=0.5),
        _entity("e2", "EMPLOYEE_ID", "XYZ-001", 10, conf=0.5),
    ], _ctx())
    assert good.validation.status == "valid"
    assert good.validation.checked_by == "employee_id"
    assert good.confidence == pytest.approx(0.6)
    assert bad.validation.status == "invalid"
    assert bad.confidence == pytest.approx(0.3)


# ── Context scoring ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_label_keyword_raises_confidence():
    labelled = "Telefon: 044 123 45 67"
    plain = "Nummern: 044 123 45 67"
    [a] = await ContextScoringPass().execute(labelled, [_entity("e1", "PHONE", "044 123 45 67", 9)], _ctx())
    [b] = await ContextScoringPass().execute(plain, [_entity("e1", "PHONE", "044 123 45 67", 9)], _ctx())
    assert a.confidence > b.confidence
    factors = {f.name: f for f in a.context.factors}
    assert factors["label_keywords"].matched
    assert not factors["repetition"].matched


@pytest.mark.asyncio
async def test_weak_entities_are_flagged():
    [e] = await ContextScoringPass().execute("x" * 100, [_entity("e1", "PERSON", "xxxxx", 50, 0.3)], _ctx())
    assert e.flagged_for_review
    assert e.confidence < 0.3


@pytest.mark.asyncio
async def test_column_header_boost():
    text = "Kunde | Hans Muster"
    runtime = RuntimeContext(column_headers=[ColumnContext("Kunde", "PERSON", 0.3)])
    boosted_ctx = _ctx(PipelineConfig(runtime=runtime))
    [boosted] = await ContextScoringPass().execute(text, [_entity("e1", "PERSON", "Hans Muster", 8)], boosted_ctx)
    [plain] = await ContextScoringPass().execute(text, [_entity("e1", "PERSON", "Hans Muster", 8)], _ctx())
    assert boosted.metadata["runtime_boost"] == pytest.approx(0.3)
    assert boosted.confidence > plain.confidence
    assert boosted_ctx.metadata["context_boosted"] == {"PERSON": 1}


@pytest.mark.asyncio
async def test_runtime_boost_is_capped():
    text = "Feld: Hans Muster"
    runtime = RuntimeContext(
        context_words={"PERSON": ["feld"]},
        column_headers=[ColumnContext("Feld", "PERSON", 0.5)],
        region_hints=[RegionHint(0, 40)],
    )
    [e] = await ContextScoringPass().execute(
        text, [_entity("e1", "PERSON", "Hans Muster", 6)], _ctx(PipelineConfig(runtime=runtime)),
    )
    assert e.metadata["runtime_boost"] == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_untyped_region_hint_boosts_any_entity():
    runtime = RuntimeContext(region_hints=[RegionHint(0, 40), RegionHint(0, 40, expected_entity_type="IBAN")])
    [e] = await ContextScoringPass().execute(
        "Feld: Hans Muster", [_entity("e1", "PERSON", "Hans Muster", 6)], _ctx(PipelineConfig(runtime=runtime)),
    )
    assert e.metadata["runtime_boost"] == pytest.approx(0.2)


def test_column_boost_is_bounded():
    with pytest.raises(ValueError):
        ColumnContext("Kunde", "PERSON", 0.6)


# ── Address relationships ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_grouped_address_subsumes_location():
    text = "Adresse: Rue de Lausanne 12, 1000 Lausanne"
    location = _entity("e1", "LOCATION", "Lausanne", text.rindex("Lausanne"), source=SOURCE_ML)
    ctx = _ctx()
    [address] = await AddressRelationshipPass().execute(text, [location], ctx)
    assert address.type == "SWISS_ADDRESS"
    assert address.text == "Rue de Lausanne 12, 1000 Lausanne"
    assert address.breakdown.street == "Rue de Lausanne"
    assert address.breakdown.number == "12"
    assert address.breakdown.postal == "1000"
    assert address.breakdown.city == "Lausanne"
    assert len(address.components) == 4
    assert address.metadata["pattern_matched"] == "SWISS"
    assert address.validation.status == "valid"


@pytest.mark.asyncio
async def test_unrelated_entities_survive_address_pass():
    text = "Mail hans@example.ch\nBahnhofstrasse 10, 8001 Zürich"
    email = _entity("e1", "EMAIL", "hans@example.ch", 5)
    result = await AddressRelationshipPass().execute(text, [email], _ctx())
    assert [e.type for e in result] == ["EMAIL", "SWISS_ADDRESS"]


@pytest.mark.asyncio
async def test_address_pass_without_components_is_a_no_op():
    entities = [_entity("e1", "PERSON", "Hans", 0)]
    assert await AddressRelationshipPass().execute("Hans sagt hallo", entities, _ctx()) == entities


# ── Consolidation ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_overlap_resolved_by_priority_and_confidence():
    iban = _entity("e1", "IBAN", "CH93 0076 2011 6238 5295 7", 0, 0.9)
    person = _entity("e2", "PERSON", "0076", 5, 0.9)
    ctx = _ctx()
    result = await ConsolidationPass().execute("", [iban, person], ctx)
    assert result == [iban]
    assert ctx.metadata["consolidation"]["overlaps_resolved"] == 1


@pytest.mark.asyncio
async def test_chained_overlaps_leave_no_overlap():
    first = _entity("e1", "PERSON", "x" * 10, 0, 0.9)
    middle = _entity("e2", "EMAIL", "y" * 12, 8, 0.9)
    last = _entity("e3", "PERSON", "z" * 12, 18, 0.9)
    apart = _entity("e4", "PHONE", "044 123 45 67", 40, 0.8)
    result = await ConsolidationPass().execute("", [first, middle, last, apart], _ctx())
    assert result == [middle, apart]
    for a, b in zip(result, result[1:]):
        assert a.end <= b.start


@pytest.mark.asyncio
async def test_repeated_mentions_share_logical_id():
    entities = [
        _entity("e1", "PERSON", "Hans Muster", 0),
        _entity("e2", "PERSON", "Anna Meier", 20),
        _entity("e3", "PERSON", "hans  muster", 40),
    ]
    result = await ConsolidationPass().execute("", entities, _ctx())
    ids = {e.id: e.logical_id for e in result}
    assert ids == {"e1": "PERSON_1", "e2": None, "e3": "PERSON_1"}


@pytest.mark.asyncio
async def test_loose_address_pieces_are_consolidated():
    text = "Bahnhofstrasse 10, 8001 Zürich"
    street = _entity("e1", "ADDRESS", "Bahnhofstrasse 10", 0)
    city = _entity("e2", "SWISS_ADDRESS", "8001 Zürich", 19)
    ctx = _ctx()
    [address] = await ConsolidationPass().execute(text, [street, city], ctx)
    assert address.type == "SWISS_ADDRESS"
    assert address.source == SOURCE_CONSOLIDATED
    assert address.text == text
    assert address.confidence == pytest.approx(0.7)
    assert [c.type for c in address.components] == ["STREET_NAME", "POSTAL_CODE"]
    assert ctx.metadata["consolidation"]["addresses_consolidated"] == 1


# ── Document type ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_document_type_pass_applies_invoice_rules():
    text = (
        "Rechnung Nr. 2024-0815\n"
        "Rechnungsdatum: 15.03.2024\n"
        "Vielen Dank für die Bestellung. Bitte überweisen Sie den Betrag bis zum Fälligkeitsdatum.\n"
        "Betrag: CHF 1'250.00\n"
        "Gesamtbetrag: CHF 1'351.25\n"
        "Zahlbar innert 30 Tagen."
    )
    ctx = _ctx()
    result = await DocumentTypePass().execute(text, [], ctx)
    assert ctx.document_type == "INVOICE"
    [number] = [e for e in result if e.type == "INVOICE_NUMBER"]
    assert number.text == "2024-0815"
    assert number.metadata["position_zone"] == "header"
    assert number.metadata["document_type"] == "INVOICE"


@pytest.mark.asyncio
async def test_document_type_hint_overrides_classifier():
    config = PipelineConfig(runtime=RuntimeContext(document_hints=DocumentHints(document_type="LETTER")))
    ctx = _ctx(config)
    await DocumentTypePass().execute("Kurze Notiz ohne Merkmale.", [], ctx)
    assert ctx.document_type == "LETTER"
    assert ctx.metadata["document_classification"].confidence >= 0.5
