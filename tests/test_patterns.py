"""Tests for the high-recall rule library and the deny-list."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import re
import time

import pytest
import regex

from pii_sanitizer.deny_list import DenyList, parse_pattern_entry
from pii_sanitizer.patterns import scan_rules


def _types(text):
    return {m.entity_type: m.text for m in scan_rules(text)}


# ── Rule library ─────────────────────────────────────────────────────

def test_avs_detection():
    found = _types("AHV-Nr. 756.1234.5678.97")
    assert found["SWISS_AVS"] == "756.1234.5678.97"


def test_iban_detection():
    found = _types("IBAN: CH93 0076 2011 6238 5295 7")
    assert found["IBAN"] == "CH93 0076 2011 6238 5295 7"


def test_email_detection():
    matches = scan_rules("Contact me at hans.muster@example.ch please")
    assert len(matches) == 1
    assert matches[0].entity_type == "EMAIL"
    assert matches[0].text == "hans.muster@example.ch"
    assert matches[0].priority == 1


def test_phone_detection():
    assert _types("Tel. +41 79 123 45 67")["PHONE"] == "+41 79 123 45 67"
    assert _types("Tel. 044 123 45 67")["PHONE"] == "044 123 45 67"
    assert _types("Tel. 044/123/45/67")["PHONE"] == "044/123/45/67"


def test_vat_detection():
    assert _types("UID CHE-123.456.789 MWST")["VAT_NUMBER"] == "CHE-123.456.789 MWST"


def test_address_detection():
    found = _types("Bahnhofstrasse 10\n8001 Zürich")
    assert found["ADDRESS"] == "Bahnhofstrasse 10"
    assert found["SWISS_ADDRESS"] == "8001 Zürich"


def test_date_detection():
    assert _types("geboren am 15.03.1985")["DATE"] == "15.03.1985"
    assert _types("le 3 mars 2021")["DATE"] == "3 mars 2021"


def test_amount_detection():
    assert _types("Total CHF 1'250.00")["AMOUNT"] == "CHF 1'250.00"


def test_matches_do_not_overlap():
    matches = scan_rules("AHV 756.1234.5678.97, IBAN CH93 0076 2011 6238 5295 7, Tel 044 123 45 67")
    spans = [(m.start, m.end) for m in matches]
    for i, (s1, e1) in enumerate(spans):
        for s2, e2 in spans[i + 1:]:
            assert e1 <= s2 or e2 <= s1


def test_no_false_positive_on_clean_text():
    assert scan_rules("Das Wetter ist heute schön in der Stadt.") == []


# ── Deny-list ────────────────────────────────────────────────────────

def test_default_deny_list():
    deny = DenyList()
    assert deny.is_denied("Montant", "PERSON")
    assert deny.is_denied("  total ", "ORGANIZATION")
    assert deny.is_denied("ACME AG", "PERSON")
    assert deny.is_denied("Rue", "PERSON")
    assert not deny.is_denied("Hans Muster", "PERSON")


def test_type_scoped_patterns_only_apply_to_their_type():
    deny = DenyList()
    assert deny.is_denied("ABC", "PERSON")
    assert not deny.is_denied("ABC", "ORGANIZATION")


def test_language_scope():
    deny = DenyList(defaults=False)
    deny.add_language_pattern("Objet", "fr")
    assert deny.is_denied("Objet", "PERSON", "fr")
    assert not deny.is_denied("Objet", "PERSON", "de")


def test_from_config():
    deny = DenyList.from_config({
        "global": ["Kundennummer"],
        "by_entity_type": {"PERSON": [{"type": "regex", "pattern": "^Abteilung\\b", "flags": "i"}]},
        "by_language": {"de": ["Seite"]},
    }, defaults=False)
    assert deny.is_denied("kundennummer", "PHONE")
    assert deny.is_denied("abteilung Einkauf", "PERSON")
    assert deny.is_denied("Seite", "PERSON", "de")
    assert not deny.is_denied("Montant", "PERSON")


def test_parse_pattern_entry():
    assert parse_pattern_entry("Total") == "Total"
    compiled = parse_pattern_entry({"type": "regex", "pattern": "^x", "flags": "im"})
    assert isinstance(compiled, regex.Pattern)
    assert compiled.flags & regex.IGNORECASE
    with pytest.raises(ValueError):
        parse_pattern_entry({"type": "regex", "pattern": "x", "flags": "q"})
    with pytest.raises(ValueError):
        parse_pattern_entry({"type": "regex", "pattern": "(unclosed"})


def test_configured_pattern_is_time_boxed():
    deny = DenyList.from_config({"global": [{"type": "regex", "pattern": "^(a+)+$"}]}, defaults=False)
    started = time.perf_counter()
    assert not deny.is_denied("a" * 40 + "b", "PERSON")
    assert time.perf_counter() - started < 5
    assert deny.is_denied("aaaa", "PERSON")


def test_get_patterns():
    deny = DenyList(defaults=False)
    deny.add_pattern("Foo")
    deny.add_pattern(re.compile("^bar$"), "PERSON")
    assert "foo" in deny.get_patterns()
    assert len(deny.get_patterns("PERSON")) == 1
    assert deny.get_patterns("EMAIL") == []
