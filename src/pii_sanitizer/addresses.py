"""Address modelling: component classification, proximity linking, scoring.

An address is a cluster of components (street, number, postal code, city,
country) rather than a single token.  ``AddressClassifier`` finds the
components, ``AddressLinker`` groups neighbours into ``GroupedAddress``
candidates and ``AddressScorer`` turns each candidate into a
``ScoredAddress`` with an explainable confidence.
"""

from __future__ import annotations
import re
import unicodedata
from dataclasses import dataclass, replace

from .types import AddressBreakdown, AddressComponent
from .validators import validate_swiss_address

STREET_NAME = "STREET_NAME"
STREET_NUMBER = "STREET_NUMBER"
POSTAL_CODE = "POSTAL_CODE"
CITY = "CITY"
COUNTRY = "COUNTRY"

# Pattern tags
SWISS = "SWISS"
EU = "EU"
ALTERNATIVE = "ALTERNATIVE"
PARTIAL = "PARTIAL"
NONE = "NONE"

SWISS_POSTAL_RANGES: tuple[tuple[int, int, str], ...] = (
    (1000, 1299, "VD"),
    (1300, 1399, "VD/VS"),
    (1400, 1499, "VD"),
    (1500, 1699, "FR/VD"),
    (1700, 1799, "FR"),
    (1800, 1899, "VD/VS"),
    (1900, 1999, "VS"),
    (2000, 2299, "NE"),
    (2300, 2499, "NE/BE"),
    (2500, 2599, "BE"),
    (2600, 2699, "BE/SO"),
    (2700, 2799, "BE/JU"),
    (2800, 2999, "JU"),
    (3000, 3999, "BE"),
    (4000, 4999, "BS/BL/SO/AG"),
    (5000, 5999, "AG/SO"),
    (6000, 6999, "LU/ZG/SZ/NW/OW/UR/TI"),
    (7000, 7999, "GR"),
    (8000, 8999, "ZH/SH/TG/SG"),
    (9000, 9699, "SG/AR/AI/TG/SH"),
)

SWISS_CITIES: dict[str, tuple[str, ...]] = {
    "zurich": ("zürich", "zurich", "zurigo"),
    "geneva": ("genève", "geneva", "genf", "ginevra"),
    "basel": ("basel", "bâle", "basilea"),
    "bern": ("bern", "berne", "berna"),
    "lausanne": ("lausanne", "losanna"),
    "winterthur": ("winterthur", "winterthour"),
    "lucerne": ("luzern", "lucerne", "lucerna"),
    "stgallen": ("st. gallen", "st.gallen", "saint-gall", "san gallo"),
    "lugano": ("lugano",),
    "biel": ("biel", "bienne"),
    "thun": ("thun", "thoune"),
    "fribourg": ("fribourg", "freiburg", "friburgo"),
    "neuchatel": ("neuchâtel", "neuchatel", "neuenburg"),
    "sion": ("sion", "sitten"),
    "chur": ("chur", "coire", "coira"),
    "montreux": ("montreux",),
    "zug": ("zug", "zoug"),
}

COUNTRIES: dict[str, tuple[str, ...]] = {
    "switzerland": ("switzerland", "suisse", "schweiz", "svizzera"),
    "germany": ("germany", "allemagne", "deutschland", "germania"),
    "france": ("france", "frankreich", "francia"),
    "italy": ("italy", "italie", "italien", "italia"),
    "austria": ("austria", "autriche", "österreich"),
    "liechtenstein": ("liechtenstein",),
    "belgium": ("belgium", "belgique", "belgien", "belgio"),
    "netherlands": ("netherlands", "pays-bas", "niederlande", "paesi bassi"),
    "luxembourg": ("luxembourg", "luxemburg", "lussemburgo"),
}
COUNTRY_CODES = ("CH", "DE", "FR", "IT", "AT", "LI", "BE", "NL", "LU")

_UPPER = "A-ZÄÖÜÀ-ÖØ-Þ"
_LOWER = "a-zäöüßà-öø-ÿ"

_STREET_PATTERNS = [
    # Bahnhofstrasse, Hauptstr., Seeweg
    re.compile(
        rf"(?<!\w)[{_UPPER}][{_LOWER}]+(?:strasse|straße|str\.|gasse|weg|platz|allee|ring|damm)(?!\w)"
    ),
    # Rue de Lausanne, Avenue des Alpes, Via Roma, Chemin d'Arzillier
    re.compile(
        r"(?<!\w)(?:Rue|Avenue|Av\.|Boulevard|Bd|Chemin|Ch\.|Place|Route|Rte|Allée|Impasse"
        r"|Passage|Quai|Via|Viale|Piazza|Corso|Vicolo|Largo"
        r"|rue|avenue|boulevard|chemin|allée|impasse|quai)"
        r"[^\S\n]+(?:d['’]|(?:de[^\S\n]+la|de|du|des|della|del)[^\S\n]+)?"
        rf"[{_UPPER}][\w'’-]*(?:[^\S\n]+[{_UPPER}][\w'’-]*)*"
    ),
    # Baker Street, Abbey Road
    re.compile(
        rf"(?<!\w)[{_UPPER}][{_LOWER}]+(?:[^\S\n]+[{_UPPER}][{_LOWER}]+)*[^\S\n]+"
        r"(?:Street|St\.|Road|Rd\.|Lane|Drive|Avenue|Ave\.|Boulevard)(?!\w)"
    ),
]

_NUMBER_AFTER = re.compile(r"[^\S\n]*,?[^\S\n]*(\d{1,4}[a-zA-Z]?(?:[^\S\n]*[-–][^\S\n]*\d{1,4}[a-zA-Z]?)?)(?![\w'’.,]\d)(?!\w)")
_NUMBER_BEFORE = re.compile(r"(?<![\w.,'’])(\d{1,4}[a-zA-Z]?),?[^\S\n]*$")

_POSTAL = re.compile(
    r"(?<![\w.,'’/+-])((?:CH|D|F|I|A)[-\s]?)?(\d{4,5})(?![\w.,'’/-])"
    rf"(?=[^\S\n]+([{_UPPER}][{_LOWER}]+(?:[-.][^\S\n]?[{_UPPER}]?[{_LOWER}]+)*))"
)

_COUNTRY_CODE = re.compile(r",[^\S\n]*(" + "|".join(COUNTRY_CODES) + r")(?![\w-])")


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text.lower().replace("ß", "ss"))
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).strip()


_KNOWN_CITIES = frozenset(_fold(v) for variants in SWISS_CITIES.values() for v in variants)


def is_valid_swiss_postal_code(code: int) -> bool:
    return any(lo <= code <= hi for lo, hi, _ in SWISS_POSTAL_RANGES)


def canton_for_postal_code(code: int) -> str | None:
    for lo, hi, canton in SWISS_POSTAL_RANGES:
        if lo <= code <= hi:
            return canton
    return None


def is_known_swiss_city(city: str) -> bool:
    return _fold(city) in _KNOWN_CITIES


def _word_pattern(words) -> re.Pattern:
    alternation = "|".join(re.escape(w) for w in sorted(words, key=len, reverse=True))
    return re.compile(rf"(?<!\w)(?:{alternation})(?![\w-])", re.IGNORECASE)


_CITY_WORDS = _word_pattern(v for variants in SWISS_CITIES.values() for v in variants)
_COUNTRY_WORDS = _word_pattern(v for variants in COUNTRIES.values() for v in variants)


# ── Classification ───────────────────────────────────────────────────

class AddressClassifier:
    """Find address components in text.

    Streets are claimed first, then postal codes with the city that
    follows them, then street numbers, known cities and countries.  A later
    candidate overlapping an earlier claim is dropped, so "Lausanne" inside
    "Rue de Lausanne" stays part of the street.
    """

    def __init__(self, *, max_number_distance: int = 10) -> None:
        self.max_number_distance = max_number_distance

    def classify_components(self, text: str) -> list[AddressComponent]:
        taken: list[AddressComponent] = []

        def claim(ctype: str, start: int, end: int) -> None:
            if end <= start or any(start < c.end and end > c.start for c in taken):
                return
            taken.append(AddressComponent(ctype, text[start:end], start, end))

        streets: list[tuple[int, int]] = []
        for pattern in _STREET_PATTERNS:
            for m in pattern.finditer(text):
                if m.end() - m.start() >= 5:
                    before = len(taken)
                    claim(STREET_NAME, m.start(), m.end())
                    if len(taken) > before:
                        streets.append(m.span())

        for m in _POSTAL.finditer(text):
            digits, city = m.group(2), m.group(3)
            if len(digits) == 4:
                code = int(digits)
                if not is_valid_swiss_postal_code(code):
                    continue
                # 2019 Januar, 2020 Total, ...
                if not validate_swiss_address(f"{digits} {city}").valid:
                    continue
            claim(POSTAL_CODE, m.start(), m.end())
            city_start = m.start(3)
            claim(CITY, city_start, city_start + len(city))

        for s, e in streets:
            after = _NUMBER_AFTER.match(text, e)
            if after is not None:
                claim(STREET_NUMBER, after.start(1), after.end(1))
                continue
            window_start = max(0, s - self.max_number_distance)
            before = _NUMBER_BEFORE.search(text[window_start:s])
            if before is not None:
                claim(STREET_NUMBER, window_start + before.start(1), window_start + before.end(1))

        for m in _CITY_WORDS.finditer(text):
            if m.group()[0].isupper():
                claim(CITY, m.start(), m.end())

        for m in _COUNTRY_WORDS.finditer(text):
            if m.group()[0].isupper():
                claim(COUNTRY, m.start(), m.end())
        for m in _COUNTRY_CODE.finditer(text):
            claim(COUNTRY, m.start(1), m.end(1))

        return sorted(taken, key=lambda c: c.start)


# ── Linking ──────────────────────────────────────────────────────────

VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    STREET_NAME: frozenset({STREET_NUMBER, POSTAL_CODE, CITY}),
    STREET_NUMBER: frozenset({POSTAL_CODE, CITY, STREET_NAME}),
    POSTAL_CODE: frozenset({CITY, COUNTRY, STREET_NAME}),
    CITY: frozenset({COUNTRY, POSTAL_CODE, STREET_NAME}),
    COUNTRY: frozenset(),
}


@dataclass(frozen=True, slots=True)
class GroupedAddress:
    text: str
    start: int
    end: int
    components: tuple[AddressComponent, ...]
    breakdown: AddressBreakdown
    pattern_matched: str
    confidence: float

    @property
    def validation_status(self) -> str:
        if self.pattern_matched in (SWISS, EU):
            return "valid"
        if self.pattern_matched == ALTERNATIVE:
            return "partial"
        return "uncertain"


def detect_pattern(components: list[AddressComponent] | tuple[AddressComponent, ...]) -> str:
    """SWISS, EU, ALTERNATIVE, PARTIAL or NONE for a component group."""
    types = {c.type for c in components}
    has_street = STREET_NAME in types
    has_number = STREET_NUMBER in types
    has_postal = POSTAL_CODE in types
    has_city = CITY in types
    has_country = COUNTRY in types

    ordered = sorted(components, key=lambda c: c.start)
    if has_street and has_postal and has_city:
        if has_country:
            return EU
        street_idx = next(i for i, c in enumerate(ordered) if c.type == STREET_NAME)
        postal_idx = next(i for i, c in enumerate(ordered) if c.type == POSTAL_CODE)
        return SWISS if street_idx < postal_idx else ALTERNATIVE
    if (has_street or has_number) and (has_postal or has_city):
        return PARTIAL
    if has_postal and has_city:
        return PARTIAL
    return NONE


class AddressLinker:
    """Group components that sit close to each other into addresses."""

    def __init__(
        self,
        *,
        proximity_threshold: int = 50,
        newline_threshold: int = 100,
        min_components: int = 2,
        max_components: int = 6,
    ) -> None:
        self.proximity_threshold = proximity_threshold
        self.newline_threshold = newline_threshold
        self.min_components = min_components
        self.max_components = max_components

    def link_components(self, text: str, components: list[AddressComponent]) -> list[GroupedAddress]:
        ordered = sorted(components, key=lambda c: c.start)
        used: set[int] = set()
        grouped: list[GroupedAddress] = []

        for i, seed in enumerate(ordered):
            if i in used:
                continue
            group = [seed]
            used.add(i)
            for j in range(i + 1, len(ordered)):
                if len(group) >= self.max_components:
                    break
                if j in used:
                    continue
                candidate = ordered[j]
                last = group[-1]
                gap = candidate.start - last.end
                if gap < 0:
                    continue
                limit = self.newline_threshold if "\n" in text[last.end:candidate.start] else self.proximity_threshold
                if gap > limit:
                    break
                if self._can_follow(group, candidate):
                    group.append(candidate)
                    used.add(j)

            if len(group) >= self.min_components:
                address = self._build(text, group)
                if address.pattern_matched != NONE:
                    grouped.append(address)
        return grouped

    def _can_follow(self, group: list[AddressComponent], candidate: AddressComponent) -> bool:
        if candidate.type != STREET_NAME and any(c.type == candidate.type for c in group):
            return False
        return candidate.type in VALID_TRANSITIONS.get(group[-1].type, frozenset())

    def _build(self, text: str, group: list[AddressComponent]) -> GroupedAddress:
        start = group[0].start
        end = max(c.end for c in group)
        pattern = detect_pattern(group)

        def first(ctype: str) -> str | None:
            return next((c.text for c in group if c.type == ctype), None)

        return GroupedAddress(
            text=text[start:end],
            start=start,
            end=end,
            components=tuple(replace(c, linked=True) for c in group),
            breakdown=AddressBreakdown(
                street=first(STREET_NAME),
                number=first(STREET_NUMBER),
                postal=first(POSTAL_CODE),
                city=first(CITY),
                country=first(COUNTRY),
            ),
            pattern_matched=pattern,
            confidence=self.base_confidence(pattern, group),
        )

    def base_confidence(self, pattern: str, group: list[AddressComponent]) -> float:
        confidence = {SWISS: 0.85, EU: 0.85, ALTERNATIVE: 0.75, PARTIAL: 0.5}.get(pattern, 0.3)
        extra = len(group) - self.min_components
        if extra > 0:
            confidence += extra * 0.02
        types = {c.type for c in group}
        if STREET_NAME in types and STREET_NUMBER in types:
            confidence += 0.05
        if POSTAL_CODE in types and CITY in types:
            confidence += 0.05
        return min(confidence, 1.0)


# ── Scoring ──────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class ScoringFactor:
    name: str
    score: float
    max_score: float
    matched: bool
    description: str = ""


@dataclass(frozen=True, slots=True)
class ScoredAddress:
    address: GroupedAddress
    final_confidence: float
    scoring_factors: tuple[ScoringFactor, ...]
    flagged_for_review: bool
    auto_anonymize: bool

    @property
    def breakdown(self) -> AddressBreakdown:
        return self.address.breakdown

    @property
    def pattern_matched(self) -> str:
        return self.address.pattern_matched


@dataclass(frozen=True)
class ScoringWeights:
    component_completeness: float = 0.2
    pattern_match: float = 0.3
    postal_code_validation: float = 0.2
    city_validation: float = 0.1
    country_present: float = 0.1


class AddressScorer:
    def __init__(
        self,
        *,
        review_threshold: float = 0.6,
        auto_anonymize_threshold: float = 0.8,
        weights: ScoringWeights | None = None,
    ) -> None:
        self.review_threshold = review_threshold
        self.auto_anonymize_threshold = auto_anonymize_threshold
        self.weights = weights or ScoringWeights()

    def score_address(self, address: GroupedAddress) -> ScoredAddress:
        factors = (
            self._completeness(address),
            self._pattern(address),
            self._postal_code(address),
            self._city(address),
            self._country(address),
        )
        total = sum(f.score for f in factors)
        possible = sum(f.max_score for f in factors)
        final = min(total / possible, 1.0) if possible else 0.0
        return ScoredAddress(
            address=address,
            final_confidence=final,
            scoring_factors=factors,
            flagged_for_review=final < self.review_threshold,
            auto_anonymize=final >= self.auto_anonymize_threshold,
        )

    def score_addresses(self, addresses: list[GroupedAddress]) -> list[ScoredAddress]:
        return [self.score_address(a) for a in addresses]

    def _completeness(self, address: GroupedAddress) -> ScoringFactor:
        types = {c.type for c in address.components}
        missing = [
            label for ctype, label in (
                (STREET_NAME, "street"), (STREET_NUMBER, "number"),
                (POSTAL_CODE, "postal code"), (CITY, "city"),
            )
            if ctype not in types
        ]
        description = f"{len(types)} unique component types"
        description += f" (missing: {', '.join(missing)})" if missing else " (complete address)"
        return ScoringFactor(
            "component_completeness",
            min(len(types) * self.weights.component_completeness, 1.0),
            1.0,
            len(types) >= 4,
            description,
        )

    def _pattern(self, address: GroupedAddress) -> ScoringFactor:
        weight = self.weights.pattern_match
        multiplier = {SWISS: 1.0, EU: 1.0, ALTERNATIVE: 0.8, PARTIAL: 0.5}.get(address.pattern_matched, 0.0)
        return ScoringFactor(
            "pattern_match",
            weight * multiplier,
            weight,
            address.pattern_matched in (SWISS, EU, ALTERNATIVE),
            f"pattern {address.pattern_matched}",
        )

    def _postal_code(self, address: GroupedAddress) -> ScoringFactor:
        weight = self.weights.postal_code_validation
        postal = address.breakdown.postal
        if not postal:
            return ScoringFactor("postal_code_validation", 0.0, weight, False, "no postal code")
        digits = re.sub(r"\D", "", postal)
        code = int(digits) if digits else 0
        if len(digits) == 4 and is_valid_swiss_postal_code(code):
            return ScoringFactor(
                "postal_code_validation", weight, weight, True,
                f"Swiss postal code ({canton_for_postal_code(code)})",
            )
        if len(digits) == 5:
            return ScoringFactor("postal_code_validation", weight * 0.8, weight, True, "EU postal code format")
        if len(digits) == 4 and 1000 <= code <= 9999:
            return ScoringFactor("postal_code_validation", weight * 0.7, weight, True, "possible Austrian postal code")
        return ScoringFactor("postal_code_validation", weight * 0.3, weight, False, "unverified postal code")

    def _city(self, address: GroupedAddress) -> ScoringFactor:
        weight = self.weights.city_validation
        city = address.breakdown.city
        if not city:
            return ScoringFactor("city_validation", 0.0, weight, False, "no city")
        if is_known_swiss_city(city):
            return ScoringFactor("city_validation", weight, weight, True, "known Swiss city")
        if address.breakdown.postal:
            return ScoringFactor("city_validation", weight * 0.5, weight, False, "city after postal code")
        return ScoringFactor("city_validation", weight * 0.3, weight, False, "unverified city")

    def _country(self, address: GroupedAddress) -> ScoringFactor:
        weight = self.weights.country_present
        if address.breakdown.country:
            return ScoringFactor("country_present", weight, weight, True, "country specified")
        postal = address.breakdown.postal or ""
        if "CH" in postal.upper():
            return ScoringFactor("country_present", weight * 0.5, weight, True, "Swiss prefix on postal code")
        return ScoringFactor("country_present", 0.0, weight, False, "no country")


def address_entity_type(scored: ScoredAddress) -> str:
    """SWISS_ADDRESS, EU_ADDRESS or ADDRESS for a scored group."""
    postal = scored.breakdown.postal or ""
    digits = re.sub(r"\D", "", postal)
    if postal.upper().startswith("CH") or scored.pattern_matched == SWISS or (
        len(digits) == 4 and is_valid_swiss_postal_code(int(digits))
    ):
        return "SWISS_ADDRESS"
    if scored.pattern_matched == EU or scored.breakdown.country or len(digits) == 5:
        return "EU_ADDRESS"
    return "ADDRESS"
