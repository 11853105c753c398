"""Tests for the per-type format validators."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from datetime import date

from pii_sanitizer.validators import (
    get_validator,
    parse_date,
    validate_date,
    validate_email,
    validate_iban,
    validate_payment_ref,
    validate_phone,
    validate_swiss_address,
    validate_swiss_avs,
    validate_vat,
)


# ── Identifiers ──────────────────────────────────────────────────────

def test_avs_checksum():
    assert validate_swiss_avs("756.1234.5678.97").valid
    bad = validate_swiss_avs("756.1234.5678.90")
    assert not bad.valid
    assert bad.confidence == 0.4


def test_avs_wrong_prefix_or_length():
    assert not validate_swiss_avs("123.1234.5678.97").valid
    assert not validate_swiss_avs("756.1234.5678").valid


def test_iban():
    assert validate_iban("CH93 0076 2011 6238 5295 7").valid
    assert not validate_iban("CH93 0076 2011 6238 5295 8").valid
    assert not validate_iban("CH93 0076").valid


def test_email():
    assert validate_email("hans.muster@example.ch").valid
    assert not validate_email("hans..muster@example.ch").valid
    assert not validate_email(".hans@example.ch").valid
    assert not validate_email("not-an-email").valid


def test_phone():
    mobile = validate_phone("+41 79 123 45 67")
    assert mobile.valid
    assert mobile.confidence == 0.9
    assert not validate_phone("12345").valid
    assert not validate_phone("+41 79 123 45 67 89 10 11 12").valid


def test_vat():
    assert validate_vat("DE123456789").valid
    assert not validate_vat("XX123").valid


def test_payment_ref():
    assert validate_payment_ref("RF18 5390 0754 7034").valid
    assert not validate_payment_ref("RF19 5390 0754 7034").valid
    assert not validate_payment_ref("hello").valid


# ── Dates ────────────────────────────────────────────────────────────

def test_parse_date_formats():
    assert parse_date("15.03.2023") == date(2023, 3, 15)
    assert parse_date("2023-03-15") == date(2023, 3, 15)
    assert parse_date("15. März 2023") == date(2023, 3, 15)
    assert parse_date("15 mars 2023") == date(2023, 3, 15)
    assert parse_date("March 15, 2023") == date(2023, 3, 15)
    assert parse_date("15.03.23") == date(2023, 3, 15)


def test_impossible_dates():
    assert parse_date("31.02.2023") is None
    assert not validate_date("31.02.2023").valid
    assert validate_date("01.01.2020").valid
    assert not validate_date("01.01.1850").valid


# ── Addresses ────────────────────────────────────────────────────────

def test_swiss_address_postal_code():
    assert validate_swiss_address("8001 Zürich").valid
    assert not validate_swiss_address("9800 Somewhere").valid


def test_year_followed_by_month_is_not_an_address():
    result = validate_swiss_address("2019 Januar")
    assert not result.valid
    assert result.confidence == 0.2


def test_get_validator():
    assert get_validator("IBAN") is validate_iban
    assert get_validator("QR_REFERENCE") is validate_payment_ref
    assert get_validator("PERSON") is None
