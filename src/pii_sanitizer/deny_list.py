"""Deny-list of known false positives (table headers, month names, ...).

Strings are compared case-insensitively after trimming; regexes are
searched.  Each pipeline owns its own ``DenyList``; there is no
process-wide state.

Config format (dict / YAML)::

    global:
      - Montant
      - {pattern: "^Total\\b", type: regex, flags: i}
    by_entity_type:
      PERSON: [...]
    by_language:
      fr: [...]
"""

from __future__ import annotations
import re
from typing import Any, Union

import regex

from .safe_regex import safe_search

Pattern = Union[str, re.Pattern, regex.Pattern]

# Budget for one configured pattern against one entity text
PATTERN_TIMEOUT_MS = 50

DEFAULT_GLOBAL: tuple[str, ...] = (
    # French table headers / invoice terms
    "Montant", "Libellé", "Description", "Quantité", "Prix", "Total",
    "Sous-total", "TVA", "Rabais", "Réduction", "Référence", "Numéro",
    "Facture", "Client", "Fournisseur", "Désignation", "Unité", "Remise",
    "HT", "TTC",
    # German table headers / invoice terms
    "Beschreibung", "Betrag", "Menge", "Preis", "Summe", "MwSt",
    "Zwischensumme", "Rabatt", "Referenz", "Nummer", "Rechnung", "Kunde",
    "Lieferant", "Bezeichnung", "Einheit", "Netto", "Brutto",
    # English table headers / invoice terms
    "Amount", "Quantity", "Price", "Subtotal", "Tax", "Discount",
    "Reference", "Number", "Invoice", "Customer", "Supplier", "Unit",
    "Net", "Gross",
    # Date labels
    "Date", "Datum",
)

DEFAULT_BY_TYPE: dict[str, tuple[Pattern, ...]] = {
    "PERSON": (
        # acronyms and bare numbers are not names
        re.compile(r"^[A-Z]{2,4}$"),
        re.compile(r"^\d+$"),
        # month / day abbreviations (en, fr, de)
        re.compile(r"^(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)$", re.IGNORECASE),
        re.compile(r"^(Mon|Tue|Wed|Thu|Fri|Sat|Sun)$", re.IGNORECASE),
        re.compile(r"^(Janv|Févr|Mars|Avr|Mai|Juin|Juil|Août|Sept|Oct|Nov|Déc)$", re.IGNORECASE),
        re.compile(r"^(Jan|Feb|Mär|Apr|Mai|Jun|Jul|Aug|Sep|Okt|Nov|Dez)$", re.IGNORECASE),
        # company legal suffixes
        re.compile(r"\b(Ltd|AG|SA|GmbH|Inc|Corp|LLC|Sàrl|SARL|Cie|KG|OHG|SE|NV|BV|Plc)\.?$", re.IGNORECASE),
        # street prefixes
        re.compile(
            r"^(Via|Viale|Piazza|Corso|Vicolo|Largo|Rue|Avenue|Boulevard|Chemin|Route|Place|"
            r"Allée|Strasse|Straße|Gasse|Weg|Platz|Allee)\b",
            re.IGNORECASE,
        ),
        # company / service words
        re.compile(
            r"\b(Holding|Group|Technologies|Services|Solutions|Systems|Consulting|Partners|"
            r"Associates|Foundation|Institute|Bank)\s*$",
            re.IGNORECASE,
        ),
        # capitalized product / service phrases
        re.compile(r"^(Case|Notre|Votre|Services|Gestion|Module|Données|Coordonnées)\s", re.IGNORECASE),
    ),
}

_FLAG_CHARS = {"i": regex.IGNORECASE, "m": regex.MULTILINE, "s": regex.DOTALL, "x": regex.VERBOSE}


def parse_pattern_entry(entry: str | dict[str, Any]) -> Pattern:
    """Turn a config entry into a string or a compiled ``regex`` pattern.

    Configured patterns are matched under a time budget, so they are
    compiled with ``regex`` rather than ``re``.
    """
    if isinstance(entry, str):
        return entry
    if entry.get("type", "string") == "regex":
        flags = 0
        for ch in entry.get("flags", ""):
            if ch not in _FLAG_CHARS:
                raise ValueError(f"unsupported regex flag {ch!r} in deny-list entry")
            flags |= _FLAG_CHARS[ch]
        try:
            return regex.compile(entry["pattern"], flags)
        except regex.error as exc:
            raise ValueError(f"invalid deny-list regex {entry['pattern']!r}: {exc}") from exc
    return str(entry["pattern"])


def _search(pattern: re.Pattern | regex.Pattern, text: str) -> bool:
    if isinstance(pattern, re.Pattern):
        return pattern.search(text) is not None
    # configured pattern: a timeout counts as no match
    result = safe_search(pattern, text, timeout_ms=PATTERN_TIMEOUT_MS)
    return result.success and result.value is not None


class _Bucket:
    __slots__ = ("strings", "regexes")

    def __init__(self) -> None:
        self.strings: set[str] = set()
        self.regexes: list[re.Pattern | regex.Pattern] = []

    def add(self, pattern: Pattern) -> None:
        if isinstance(pattern, str):
            self.strings.add(pattern.strip().lower())
        else:
            self.regexes.append(pattern)

    def matches(self, stripped: str) -> bool:
        if stripped.lower() in self.strings:
            return True
        return any(_search(r, stripped) for r in self.regexes)

    def patterns(self) -> list[Pattern]:
        return sorted(self.strings) + list(self.regexes)


class DenyList:
    """Known non-PII values, scoped globally, per entity type or per language."""

    def __init__(self, *, defaults: bool = True) -> None:
        self._global = _Bucket()
        self._by_type: dict[str, _Bucket] = {}
        self._by_language: dict[str, _Bucket] = {}
        if defaults:
            for s in DEFAULT_GLOBAL:
                self._global.add(s)
            for etype, patterns in DEFAULT_BY_TYPE.items():
                for p in patterns:
                    self.add_pattern(p, etype)

    @classmethod
    def from_config(cls, data: dict[str, Any], *, defaults: bool = True) -> DenyList:
        deny = cls(defaults=defaults)
        for entry in data.get("global", []):
            deny.add_pattern(parse_pattern_entry(entry))
        for etype, entries in (data.get("by_entity_type") or {}).items():
            for entry in entries:
                deny.add_pattern(parse_pattern_entry(entry), etype)
        for lang, entries in (data.get("by_language") or {}).items():
            for entry in entries:
                deny.add_language_pattern(parse_pattern_entry(entry), lang)
        return deny

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_pattern(self, pattern: Pattern, scope: str = "global") -> None:
        """Add to the global list, or to an entity type's list."""
        if scope == "global":
            self._global.add(pattern)
        else:
            self._by_type.setdefault(scope, _Bucket()).add(pattern)

    def add_language_pattern(self, pattern: Pattern, language: str) -> None:
        self._by_language.setdefault(language, _Bucket()).add(pattern)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def is_denied(self, text: str, entity_type: str, language: str | None = None) -> bool:
        stripped = text.strip()
        if self._global.matches(stripped):
            return True
        bucket = self._by_type.get(entity_type)
        if bucket is not None and bucket.matches(stripped):
            return True
        if language:
            bucket = self._by_language.get(language)
            if bucket is not None and bucket.matches(stripped):
                return True
        return False

    def get_patterns(self, scope: str = "global") -> list[Pattern]:
        if scope == "global":
            return self._global.patterns()
        bucket = self._by_type.get(scope)
        return bucket.patterns() if bucket else []
