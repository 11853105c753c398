"""Tests for document classification and document-type rules."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import itertools

import pytest

from pii_sanitizer.document_classifier import DocumentClassification, DocumentClassifier, detect_language
from pii_sanitizer.rules import InvoiceRules, LetterRules, RuleEngine, parse_amount
from pii_sanitizer.types import Entity

INVOICE = (
    "Rechnung Nr. 2024-0815\n"
    "Vielen Dank für die Bestellung. Bitte überweisen Sie den Betrag bis zum Fälligkeitsdatum.\n"
    "Betrag: CHF 1'250.00\n"
    "MwSt: CHF 101.25\n"
    "Gesamtbetrag: CHF 1'351.25\n"
    "Zahlbar innert 30 Tagen."
)

LETTER = (
    "Sehr geehrter Herr Müller\n\n"
    "wir danken Ihnen für Ihre Anfrage und senden Ihnen anbei die Unterlagen.\n\n"
    "Mit freundlichen Grüssen\n\n"
    "Anna Schmidt"
)


def _ids():
    counter = itertools.count(1)
    return lambda: f"e{next(counter)}"


def _by_type(entities):
    return {e.type: e for e in entities}


# ── Classification ───────────────────────────────────────────────────

def test_classify_invoice():
    result = DocumentClassifier().classify(INVOICE)
    assert result.type == "INVOICE"
    assert result.language == "de"
    assert 0.25 <= result.confidence <= 1.0
    assert any(f.name.startswith("keyword:") for f in result.features)


def test_classify_letter():
    result = DocumentClassifier().classify(LETTER)
    assert result.type == "LETTER"
    assert result.language == "de"


def test_classify_empty_is_unknown():
    result = DocumentClassifier().classify("")
    assert result.type == "UNKNOWN"
    assert result.confidence == 0.0
    assert not DocumentClassifier().is_type("", "INVOICE")


def test_detect_language():
    assert detect_language("The report is ready and the team has reviewed this.") == "en"
    assert detect_language("Nous vous envoyons la facture et les documents pour votre dossier.") == "fr"
    assert detect_language("") == "en"


# ── Invoice rules ────────────────────────────────────────────────────

def test_invoice_number():
    found = InvoiceRules().apply(INVOICE, [], _ids())
    numbers = [e for e in found if e.type == "INVOICE_NUMBER"]
    assert [e.text for e in numbers] == ["2024-0815"]
    assert INVOICE[numbers[0].start:numbers[0].end] == "2024-0815"
    # header position boost
    assert numbers[0].confidence > 0.85
    assert numbers[0].metadata["position_boost"] == "header"


def test_invoice_payment_references():
    text = (
        "Zahlungsinformationen folgen weiter unten im Dokument, bitte sorgfältig lesen.\n"
        "IBAN CH93 0076 2011 6238 5295 7\n"
        "Referenz 21 00000 00003 13947 14300 09017\n"
        "Creditor RF18539007547034\n"
    )
    found = _by_type(InvoiceRules().apply(text, [], _ids()))
    assert found["IBAN"].text == "CH93 0076 2011 6238 5295 7"
    assert found["QR_REFERENCE"].text == "21 00000 00003 13947 14300 09017"
    assert found["PAYMENT_REF"].text == "RF18539007547034"


def test_invoice_vat_and_amounts():
    text = "Lieferant ACME, UID CHE-123.456.789 MWST. Total: CHF 1'250.00"
    found = _by_type(InvoiceRules(extract_amounts=True).apply(text, [], _ids()))
    assert found["VAT_NUMBER"].metadata["country"] == "CH"
    assert found["AMOUNT"].metadata["value"] == 1250.0
    assert found["AMOUNT"].metadata["currency"] == "CHF"


def test_amounts_off_by_default():
    found = InvoiceRules().apply("Total: CHF 1'250.00", [], _ids())
    assert not any(e.type == "AMOUNT" for e in found)


def test_parse_amount():
    assert parse_amount("CHF 1'234.50") == ("CHF", 1234.5)
    assert parse_amount("EUR 1.234,50") == ("EUR", 1234.5)
    assert parse_amount("abc") is None


# ── Letter rules ─────────────────────────────────────────────────────

def test_letter_salutation_and_signature():
    found = _by_type(LetterRules().apply(LETTER, [], _ids(), language="de"))
    assert found["SALUTATION_NAME"].text == "Müller"
    assert found["SIGNATURE"].text == "Anna Schmidt"
    assert found["SIGNATURE"].metadata["position_boost"] == "footer"
    assert LETTER[found["SIGNATURE"].start:found["SIGNATURE"].end] == "Anna Schmidt"


def test_letter_date_and_reference_line():
    text = (
        "Zürich, 12. März 2024\n\n"
        "Betreff: Ihre Anfrage vom Mai\n\n"
        "Sehr geehrte Frau Dr. Meier,\n\n"
        "wir bestätigen den Eingang Ihrer Unterlagen und melden uns in Kürze wieder bei Ihnen."
    )
    found = _by_type(LetterRules().apply(text, [], _ids(), language="de"))
    assert found["LETTER_DATE"].text == "12. März 2024"
    assert found["LETTER_DATE"].metadata["in_header"]
    assert found["REFERENCE_LINE"].text == "Ihre Anfrage vom Mai"
    assert found["SALUTATION_NAME"].text == "Meier"


def test_letter_rules_keep_existing_stronger_entity():
    existing = [Entity("e99", "PERSON", "Anna Schmidt", LETTER.index("Anna"), len(LETTER), 1.0)]
    found = LetterRules().apply(LETTER, existing, _ids(), language="de")
    at_end = [e for e in found if e.end == len(LETTER)]
    assert len(at_end) == 1
    assert at_end[0].id == "e99"


# ── Engine ───────────────────────────────────────────────────────────

def _filler_entity(eid, conf, start=40):
    return Entity(eid, "PERSON", "xxxxx", start, start + 5, conf)


def test_engine_thresholds():
    text = "x " * 50
    classification = DocumentClassification("INVOICE", 0.9, language="de")
    entities = [_filler_entity("a", 0.3), _filler_entity("b", 0.5, 50), _filler_entity("c", 0.9, 60)]
    result = {e.id: e for e in RuleEngine().apply_rules(text, classification, entities, _ids())}
    assert "a" not in result
    assert result["b"].flagged_for_review
    assert result["c"].metadata["auto_anonymize"] is True
    assert not result["c"].flagged_for_review


def test_engine_header_boost():
    text = "x " * 50
    classification = DocumentClassification("INVOICE", 0.9, language="de")
    [boosted] = RuleEngine().apply_rules(text, classification, [_filler_entity("a", 0.5, 0)], _ids())
    assert boosted.confidence == pytest.approx(0.7)
    assert boosted.metadata["type_boost_applied"] == pytest.approx(0.2)


def test_engine_letter_rules():
    classification = DocumentClassification("LETTER", 0.8, language="de")
    result = _by_type(RuleEngine().apply_rules(LETTER, classification, [], _ids()))
    assert "SALUTATION_NAME" in result
    assert result["SIGNATURE"].confidence == 1.0


def test_engine_unknown_type_passes_through():
    classification = DocumentClassification("SPREADSHEET", 0.9)
    entities = [_filler_entity("a", 0.1)]
    assert RuleEngine().apply_rules("x " * 50, classification, entities, _ids()) == entities
