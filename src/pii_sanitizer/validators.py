"""Per-type format validators.

Each validator takes the matched text and returns a ``ValidationResult``.
For an invalid value, ``confidence`` is the ceiling the format-validation
pass lowers the entity to; for a valid one it is informational.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from datetime import date
from typing import Callable

import phonenumbers
from stdnum import iban as stdnum_iban
from stdnum import iso11649
from stdnum.ch import esr, ssn, uid
from stdnum.eu import vat as eu_vat
from stdnum.exceptions import InvalidChecksum, ValidationError

# Confidence levels
CHECKSUM_VALID = 0.95
FORMAT_VALID = 0.9
STANDARD = 0.85
KNOWN_VALID = 0.82
MODERATE = 0.75
WEAK = 0.5
INVALID_FORMAT = 0.4
FAILED = 0.3
FALSE_POSITIVE = 0.2


@dataclass(frozen=True, slots=True)
class ValidationResult:
    valid: bool
    confidence: float
    reason: str | None = None


Validator = Callable[[str], ValidationResult]

_NON_DIGIT = re.compile(r"\D")


# ── Identifiers ──────────────────────────────────────────────────────

def validate_swiss_avs(text: str) -> ValidationResult:
    digits = _NON_DIGIT.sub("", text)
    if len(digits) != 13:
        return ValidationResult(False, FAILED, f"expected 13 digits, got {len(digits)}")
    if not digits.startswith("756"):
        return ValidationResult(False, FAILED, "AVS numbers start with 756")
    try:
        ssn.validate(digits)
    except InvalidChecksum:
        return ValidationResult(False, INVALID_FORMAT, "EAN-13 checksum mismatch")
    except ValidationError as exc:
        return ValidationResult(False, FAILED, str(exc))
    return ValidationResult(True, CHECKSUM_VALID)


def validate_iban(text: str) -> ValidationResult:
    compact = re.sub(r"[\s-]", "", text).upper()
    if len(compact) > 34:
        return ValidationResult(False, FAILED, "IBAN longer than 34 characters")
    if len(compact) < 15:
        return ValidationResult(False, FAILED, "IBAN too short")
    try:
        stdnum_iban.validate(compact)
    except ValidationError as exc:
        return ValidationResult(False, INVALID_FORMAT, str(exc))
    return ValidationResult(True, CHECKSUM_VALID)


_EMAIL = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(?:\.[A-Za-z0-9\-]+)*\.([A-Za-z]{2,})$")


def validate_email(text: str) -> ValidationResult:
    value = text.strip()
    if ".." in value:
        return ValidationResult(False, INVALID_FORMAT, "consecutive dots")
    m = _EMAIL.match(value)
    if m is None:
        return ValidationResult(False, INVALID_FORMAT, "not an email address")
    local = value.split("@", 1)[0]
    if local.startswith(".") or local.endswith("."):
        return ValidationResult(False, INVALID_FORMAT, "local part starts or ends with a dot")
    return ValidationResult(True, FORMAT_VALID)


def validate_phone(text: str, region: str = "CH") -> ValidationResult:
    value = text.strip()
    if len(value) > 20:
        return ValidationResult(False, FAILED, "too long for a phone number")
    digits = _NON_DIGIT.sub("", value)
    if not 9 <= len(digits) <= 15:
        return ValidationResult(False, INVALID_FORMAT, f"{len(digits)} digits")
    if value.startswith("00"):
        value = "+" + value[2:]
    try:
        number = phonenumbers.parse(value, region)
    except phonenumbers.NumberParseException as exc:
        return ValidationResult(False, INVALID_FORMAT, str(exc))
    if not phonenumbers.is_valid_number(number):
        return ValidationResult(False, INVALID_FORMAT, "not a valid number")
    national = str(number.national_number)
    if number.country_code == 41 and national[:2] in ("75", "76", "77", "78", "79"):
        return ValidationResult(True, FORMAT_VALID, "swiss mobile")
    if value.startswith("+"):
        return ValidationResult(True, MODERATE)
    return ValidationResult(True, WEAK, "no country code")


_VAT_SUFFIX = re.compile(r"\s*(?:MWST|TVA|IVA)\s*$", re.IGNORECASE)
_EU_VAT_SHAPE = re.compile(r"^(?:DE\d{9}|FR[0-9A-Z]{2}\d{9}|IT\d{11}|ATU\d{8})$")


def validate_vat(text: str) -> ValidationResult:
    value = _VAT_SUFFIX.sub("", text.strip()).upper()
    compact = re.sub(r"[\s.\-]", "", value)
    if compact.startswith("CHE"):
        try:
            uid.validate(compact)
        except InvalidChecksum:
            return ValidationResult(False, WEAK, "UID checksum mismatch")
        except ValidationError as exc:
            return ValidationResult(False, INVALID_FORMAT, str(exc))
        return ValidationResult(True, FORMAT_VALID)
    if eu_vat.is_valid(compact) or _EU_VAT_SHAPE.match(compact):
        return ValidationResult(True, MODERATE)
    return ValidationResult(False, INVALID_FORMAT, "unknown VAT format")


def validate_payment_ref(text: str) -> ValidationResult:
    compact = re.sub(r"\s", "", text).upper()
    if compact.startswith("RF"):
        if iso11649.is_valid(compact):
            return ValidationResult(True, CHECKSUM_VALID)
        return ValidationResult(False, INVALID_FORMAT, "ISO 11649 checksum mismatch")
    if compact.isdigit() and len(compact) == 27:
        if esr.is_valid(compact):
            return ValidationResult(True, CHECKSUM_VALID)
        return ValidationResult(False, INVALID_FORMAT, "QR reference checksum mismatch")
    if compact.isdigit() and len(compact) == 26:
        return ValidationResult(True, MODERATE, "unchecked 26-digit reference")
    return ValidationResult(False, INVALID_FORMAT, "unknown reference format")


# ── Dates ────────────────────────────────────────────────────────────

_MONTH_NAMES = (
    ("januar", "februar", "märz", "april", "mai", "juni", "juli",
     "august", "september", "oktober", "november", "dezember"),
    ("janvier", "février", "mars", "avril", "mai", "juin", "juillet",
     "août", "septembre", "octobre", "novembre", "décembre"),
    ("january", "february", "march", "april", "may", "june", "july",
     "august", "september", "october", "november", "december"),
)

MONTHS: dict[str, int] = {
    name: i + 1 for names in _MONTH_NAMES for i, name in enumerate(names)
}
MONTHS["jänner"] = 1

_NUMERIC_DATE = re.compile(r"^(\d{1,2})[./\-\s](\d{1,2})[./\-\s](\d{2}|\d{4})$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_NAMED_DATE = re.compile(r"^(\d{1,2})(?:st|nd|rd|th|er)?\.?\s*([^\W\d_]+),?\s*(\d{2,4})$", re.IGNORECASE)
_NAMED_DATE_US = re.compile(r"^([^\W\d_]+)\s+(\d{1,2})(?:st|nd|rd|th)?,?\s*(\d{4})$", re.IGNORECASE)

YEAR_PIVOT = 30


def _expand_year(y: str) -> int:
    year = int(y)
    if len(y) == 2:
        year += 2000 if year < YEAR_PIVOT else 1900
    return year


def parse_date(text: str) -> date | None:
    """Parse the date formats the rule library emits; None if impossible."""
    value = text.strip()
    day = month = year = None
    iso = _ISO_DATE.match(value)
    numeric = _NUMERIC_DATE.match(value)
    named = _NAMED_DATE.match(value)
    named_us = _NAMED_DATE_US.match(value)
    if iso:
        year, month, day = int(iso.group(1)), int(iso.group(2)), int(iso.group(3))
    elif numeric:
        day, month, year = int(numeric.group(1)), int(numeric.group(2)), _expand_year(numeric.group(3))
    elif named:
        month = MONTHS.get(named.group(2).lower())
        day, year = int(named.group(1)), _expand_year(named.group(3))
    elif named_us:
        month = MONTHS.get(named_us.group(1).lower())
        day, year = int(named_us.group(2)), int(named_us.group(3))
    if day is None or month is None or year is None:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def validate_date(text: str) -> ValidationResult:
    parsed = parse_date(text)
    if parsed is None:
        return ValidationResult(False, INVALID_FORMAT, "not a calendar date")
    if not 1900 <= parsed.year <= 2100:
        return ValidationResult(False, WEAK, f"year {parsed.year} out of range")
    return ValidationResult(True, STANDARD)


# ── Addresses ────────────────────────────────────────────────────────

_POSTAL = re.compile(r"(?:CH[-\s]?)?\b(\d{4})\b\s*([^\W\d_]+)?")
_NON_CITY_WORDS = frozenset({
    "total", "summe", "montant", "betrag", "rechnung", "facture", "invoice",
    "page", "seite", "jahre", "jahr", "ans", "années", "years", "year",
    "bis", "und", "et", "and", "à", "au", "to",
})


def validate_swiss_address(text: str) -> ValidationResult:
    m = _POSTAL.search(text)
    if m is None:
        return ValidationResult(False, INVALID_FORMAT, "no postal code")
    code = int(m.group(1))
    word = (m.group(2) or "").lower()
    if 1900 <= code <= 2099 and (word in MONTHS or word in _NON_CITY_WORDS):
        return ValidationResult(False, FALSE_POSITIVE, "year followed by a non-city word")
    if not 1000 <= code <= 9699:
        return ValidationResult(False, INVALID_FORMAT, f"postal code {code} outside Swiss range")
    return ValidationResult(True, STANDARD)


VALIDATORS: dict[str, Validator] = {
    "SWISS_AVS": validate_swiss_avs,
    "IBAN": validate_iban,
    "EMAIL": validate_email,
    "PHONE": validate_phone,
    "VAT_NUMBER": validate_vat,
    "DATE": validate_date,
    "SWISS_ADDRESS": validate_swiss_address,
    "PAYMENT_REF": validate_payment_ref,
    "QR_REFERENCE": validate_payment_ref,
}


def get_validator(entity_type: str) -> Validator | None:
    return VALIDATORS.get(entity_type)
