"""Document-type classification (invoice, letter, form, contract, report).

Scores each type from weighted multi-language keywords, structural
patterns and position cues (first / last five lines), then normalizes
the best score to a confidence.  Below ``min_confidence`` the document
is UNKNOWN.
"""

from __future__ import annotations
import math
import re
from dataclasses import dataclass, field

DOCUMENT_TYPES = ("INVOICE", "LETTER", "FORM", "CONTRACT", "REPORT")

_MAX_SCORE = 3.0

DOCUMENT_KEYWORDS: dict[str, dict[str, list[str]]] = {
    "INVOICE": {
        "en": ["invoice", "bill", "payment due", "amount due", "subtotal", "total", "tax", "vat",
               "qty", "quantity", "unit price", "invoice number", "invoice date", "due date",
               "payment terms", "remittance"],
        "fr": ["facture", "montant", "total", "tva", "quantité", "prix unitaire", "numéro de facture",
               "date de facture", "échéance", "règlement", "net à payer", "ht", "ttc"],
        "de": ["rechnung", "rechnungsnummer", "betrag", "mwst", "mehrwertsteuer", "gesamtbetrag",
               "menge", "einzelpreis", "rechnungsdatum", "zahlbar", "fällig", "netto", "brutto"],
        "it": ["fattura", "importo", "totale", "iva", "quantità", "prezzo unitario", "numero fattura",
               "data fattura", "scadenza"],
    },
    "LETTER": {
        "en": ["dear", "sincerely", "regards", "yours truly", "yours faithfully", "best regards",
               "kind regards", "to whom it may concern", "enclosed", "please find", "i am writing",
               "we are writing", "thank you for", "re:", "subject:"],
        "fr": ["cher", "chère", "madame", "monsieur", "cordialement", "salutations", "veuillez agréer",
               "je vous prie", "meilleures salutations", "bien à vous", "ci-joint", "je vous écris",
               "nous vous écrivons", "objet:", "concerne:"],
        "de": ["sehr geehrte", "sehr geehrter", "liebe", "lieber", "mit freundlichen grüßen",
               "mit freundlichen grüssen", "hochachtungsvoll", "beste grüße", "beste grüsse", "anbei",
               "ich schreibe ihnen", "wir schreiben ihnen", "betreff:", "betrifft:"],
        "it": ["gentile", "egregio", "caro", "cara", "cordiali saluti", "distinti saluti",
               "cordialmente", "in allegato", "le scrivo", "oggetto:"],
    },
    "FORM": {
        "en": ["please fill", "please complete", "check box", "checkbox", "select one", "tick", "circle",
               "enter your", "your name", "your address", "date of birth", "signature", "sign here",
               "required field", "mandatory", "optional", "n/a", "not applicable", "yes/no", "yes / no"],
        "fr": ["veuillez remplir", "cochez", "case à cocher", "sélectionnez", "entrez", "votre nom",
               "votre adresse", "date de naissance", "signature", "champ obligatoire", "facultatif",
               "oui/non", "non applicable"],
        "de": ["bitte ausfüllen", "ankreuzen", "kontrollkästchen", "wählen sie", "ihr name",
               "ihre adresse", "geburtsdatum", "unterschrift", "pflichtfeld", "optional", "ja/nein",
               "nicht zutreffend", "n.z."],
        "it": ["compilare", "casella", "selezionare", "inserire", "nome", "indirizzo", "data di nascita",
               "firma", "obbligatorio", "facoltativo", "sì/no"],
    },
    "CONTRACT": {
        "en": ["agreement", "contract", "parties", "whereas", "hereby", "herein", "hereto", "thereto",
               "clause", "article", "section", "terms and conditions", "effective date", "termination",
               "obligations", "warranties", "indemnification", "governing law", "jurisdiction",
               "witness", "executed", "binding"],
        "fr": ["contrat", "accord", "parties", "attendu que", "par les présentes", "ci-après", "clause",
               "article", "conditions générales", "date d'entrée en vigueur", "résiliation",
               "obligations", "garanties", "loi applicable", "juridiction", "témoin", "signé"],
        "de": ["vertrag", "vereinbarung", "parteien", "hiermit", "klausel", "artikel", "paragraph",
               "allgemeine geschäftsbedingungen", "agb", "inkrafttreten", "kündigung", "pflichten",
               "gewährleistung", "anwendbares recht", "gerichtsstand", "zeuge", "unterzeichnet"],
        "it": ["contratto", "accordo", "parti", "premesso", "con la presente", "clausola", "articolo",
               "condizioni generali", "decorrenza", "risoluzione", "obblighi", "garanzie",
               "legge applicabile", "foro competente", "testimone", "sottoscritto"],
    },
    "REPORT": {
        "en": ["executive summary", "introduction", "conclusion", "findings", "recommendations",
               "analysis", "methodology", "results", "discussion", "appendix", "table of contents",
               "abstract", "overview", "summary", "background", "objectives", "scope", "key findings"],
        "fr": ["résumé exécutif", "introduction", "conclusion", "résultats", "recommandations",
               "analyse", "méthodologie", "discussion", "annexe", "table des matières", "sommaire",
               "contexte", "objectifs", "périmètre", "principales conclusions"],
        "de": ["zusammenfassung", "einleitung", "fazit", "ergebnisse", "empfehlungen", "analyse",
               "methodik", "diskussion", "anhang", "inhaltsverzeichnis", "überblick", "hintergrund",
               "ziele", "umfang", "kernaussagen"],
        "it": ["sommario", "introduzione", "conclusione", "risultati", "raccomandazioni", "analisi",
               "metodologia", "discussione", "allegato", "indice", "panoramica", "contesto",
               "obiettivi", "ambito"],
    },
}

STRUCTURAL_PATTERNS: dict[str, list[re.Pattern]] = {
    "INVOICE": [
        re.compile(r"(?:invoice|rechnung|facture)\s*(?:no\.?|nr\.?|#|:)\s*[\w-]+", re.I),
        re.compile(r"(?:total|montant|betrag)\s*[:=]?\s*(?:chf|eur|usd|€|£|\$)?\s*[\d',.\s]+", re.I),
        re.compile(r"(?:qty|menge|quantité)\s+(?:unit|preis|prix)", re.I),
        re.compile(r"(?:chf|eur|usd)\s*[\d',.\s]+", re.I),
        re.compile(r"\d+[.,]\d{2}\s*(?:chf|eur|usd|€)", re.I),
    ],
    "LETTER": [
        re.compile(r"^(?:dear|sehr geehrte[r]?|cher|chère|madame|monsieur)", re.I | re.M),
        re.compile(r"(?:sincerely|regards|cordialement|grüße|grüssen|salutations)\s*,?\s*$", re.I | re.M),
        re.compile(r"^(?:re:|betreff:|objet:|subject:)", re.I | re.M),
        re.compile(r"(?:enclosed|anbei|ci-joint|in allegato)", re.I),
    ],
    "FORM": [
        re.compile(r"\[\s*\]|\(\s*\)|□|☐|☑|☒"),
        re.compile(r"(?:name|nom):\s*_{2,}|_{5,}", re.I),
        re.compile(r"(?:yes|no|oui|non|ja|nein)\s*(?:\[\s*\]|\(\s*\))", re.I),
        re.compile(r"please\s+(?:check|tick|fill|complete)", re.I),
        re.compile(r"\*\s*(?:required|obligatoire|pflichtfeld)", re.I),
    ],
    "CONTRACT": [
        re.compile(r"(?:between|entre|zwischen)\s+(?:the\s+)?(?:parties|parteien|les parties)", re.I),
        re.compile(r"(?:article|clause|section)\s+\d+", re.I),
        re.compile(r"(?:whereas|attendu que|in anbetracht)", re.I),
        re.compile(r"(?:hereby|par les présentes|hiermit)\s+(?:agree|conviennent|vereinbaren)", re.I),
        re.compile(r"(?:witness|témoin|zeuge)\s+(?:whereof|de quoi)", re.I),
    ],
    "REPORT": [
        re.compile(r"(?:table\s+of\s+contents|inhaltsverzeichnis|table\s+des\s+matières)", re.I),
        re.compile(r"(?:executive\s+summary|zusammenfassung|résumé)", re.I),
        re.compile(r"^(?:\d+\.|\d+\))\s+(?:introduction|methodology|results|conclusion)", re.I | re.M),
        re.compile(r"(?:appendix|anhang|annexe)\s+[a-z\d]", re.I),
        re.compile(r"(?:figure|table|abbildung|tabelle)\s+\d+", re.I),
    ],
}

# (type, pattern over first / last lines, weight, feature name)
_HEAD_BOOSTS = [
    ("INVOICE", re.compile(r"invoice|rechnung|facture", re.I), 0.2, "position:invoice_header"),
    ("LETTER", re.compile(r"dear|sehr geehrte|cher|madame|monsieur", re.I), 0.2, "position:salutation_start"),
    ("CONTRACT", re.compile(r"between|entre|zwischen.*parties|parteien", re.I), 0.2, "position:parties_clause"),
    ("REPORT", re.compile(r"table of contents|inhaltsverzeichnis|table des matières", re.I), 0.25, "position:toc_header"),
]
_TAIL_BOOSTS = [
    ("LETTER", re.compile(r"sincerely|regards|grüß|cordialement|salutations", re.I), 0.15, "position:signature_end"),
]

LANGUAGE_INDICATORS: dict[str, list[str]] = {
    "en": ["the", "and", "is", "are", "was", "were", "have", "has", "this", "that", "with", "for",
           "your", "please"],
    "fr": ["le", "la", "les", "de", "du", "des", "et", "est", "sont", "vous", "nous", "dans", "pour",
           "avec", "cette", "votre"],
    "de": ["der", "die", "das", "und", "ist", "sind", "ihr", "ihre", "wir", "mit", "für", "von", "bei",
           "nach", "bitte"],
    "it": ["il", "la", "le", "di", "del", "della", "e", "è", "sono", "con", "per", "nella", "questo",
           "questa"],
}

_WORD = re.compile(r"[^\W\d_]+")


def _keyword_regex(keyword: str) -> re.Pattern:
    return re.compile(rf"(?<!\w){re.escape(keyword)}(?!\w)", re.I)


_KEYWORD_REGEXES: dict[str, dict[str, list[tuple[str, re.Pattern]]]] = {
    dtype: {lang: [(kw, _keyword_regex(kw)) for kw in kws] for lang, kws in by_lang.items()}
    for dtype, by_lang in DOCUMENT_KEYWORDS.items()
}


@dataclass(frozen=True, slots=True)
class ClassificationFeature:
    name: str
    weight: float
    match: str | None = None
    position: float | None = None


@dataclass
class DocumentClassification:
    type: str
    confidence: float
    secondary_type: str | None = None
    features: list[ClassificationFeature] = field(default_factory=list)
    language: str = "en"


def keyword_weight(keyword: str, count: int) -> float:
    length_factor = min(len(keyword) / 8, 1.5)
    count_factor = 1 + math.log2(count + 1) * 0.5
    return 0.08 * length_factor * count_factor


def detect_language(text: str) -> str:
    """Best of en / fr / de / it by function-word frequency ("en" on ties)."""
    counts = {lang: 0 for lang in LANGUAGE_INDICATORS}
    indicator_sets = {lang: set(words) for lang, words in LANGUAGE_INDICATORS.items()}
    for word in _WORD.findall(text.lower()):
        for lang, words in indicator_sets.items():
            if word in words:
                counts[lang] += 1
    best = max(counts.items(), key=lambda kv: kv[1])
    return best[0] if best[1] > 0 else "en"


class DocumentClassifier:
    """Keyword / structure based document-type classifier."""

    def __init__(
        self,
        *,
        min_confidence: float = 0.25,
        detect_language: bool = True,
        analyze_structure: bool = True,
    ) -> None:
        self.min_confidence = min_confidence
        self.detect_language = detect_language
        self.analyze_structure = analyze_structure

    def classify(self, text: str) -> DocumentClassification:
        language = detect_language(text) if self.detect_language else "en"
        scores = {dtype: 0.0 for dtype in DOCUMENT_TYPES}
        features: list[ClassificationFeature] = []

        for dtype, by_lang in _KEYWORD_REGEXES.items():
            for keyword, regex in by_lang.get(language, by_lang["en"]):
                hits = regex.findall(text)
                if hits:
                    w = keyword_weight(keyword, len(hits))
                    scores[dtype] += w
                    features.append(ClassificationFeature(f"keyword:{keyword}", w, hits[0]))

        if self.analyze_structure and text:
            for dtype, patterns in STRUCTURAL_PATTERNS.items():
                for pattern in patterns:
                    m = pattern.search(text)
                    if m:
                        scores[dtype] += 0.15
                        features.append(ClassificationFeature(
                            f"pattern:{dtype.lower()}", 0.15, m.group()[:50], m.start() / len(text),
                        ))

        self._apply_position_boosts(text, scores, features)

        ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
        primary, primary_score = ranked[0]
        secondary, secondary_score = ranked[1]
        confidence = min(primary_score / _MAX_SCORE, 1.0)

        return DocumentClassification(
            type=primary if confidence >= self.min_confidence else "UNKNOWN",
            confidence=confidence,
            secondary_type=secondary if secondary_score > 0.2 else None,
            features=sorted(features, key=lambda f: f.weight, reverse=True)[:10],
            language=language,
        )

    def _apply_position_boosts(
        self,
        text: str,
        scores: dict[str, float],
        features: list[ClassificationFeature],
    ) -> None:
        lines = text.split("\n")
        head = "\n".join(lines[:5])
        tail = "\n".join(lines[-5:])
        for dtype, pattern, weight, name in _HEAD_BOOSTS:
            if pattern.search(head):
                scores[dtype] += weight
                features.append(ClassificationFeature(name, weight, position=0.0))
        for dtype, pattern, weight, name in _TAIL_BOOSTS:
            if pattern.search(tail):
                scores[dtype] += weight
                features.append(ClassificationFeature(name, weight, position=1.0))

    def is_type(self, text: str, doc_type: str, min_confidence: float = 0.5) -> bool:
        result = self.classify(text)
        return result.type == doc_type and result.confidence >= min_confidence
