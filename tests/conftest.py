"""Shared fixtures: fake token classifiers (no model downloads)."""

import re

import pytest


def make_ner(names, score=0.95):
    """Token classifier that tags every occurrence of each name.

    ``names`` maps surface text to a label ("PER", "LOC", "ORG"); words
    after the first get an ``I-`` prefix, like a real BIO tagger.
    """
    def classify(text):
        tokens = []
        for name, label in names.items():
            for m in re.finditer(re.escape(name), text):
                for i, w in enumerate(re.finditer(r"\S+", m.group())):
                    tokens.append({
                        "word": w.group(),
                        "entity": f"{'B' if i == 0 else 'I'}-{label}",
                        "score": score,
                        "start": m.start() + w.start(),
                        "end": m.start() + w.end(),
                    })
        return sorted(tokens, key=lambda t: t["start"])
    return classify


@pytest.fixture
def ner():
    return make_ner
