"""Tests for YAML/dict configuration loading."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from pii_sanitizer.anonymizer import Anonymizer
from pii_sanitizer.config import (
    create_anonymizer,
    create_pipeline_from_config,
    load_anonymizer_config,
    load_config,
    load_deny_list,
    load_from_yaml,
    load_token_classifier,
    read_yaml,
)
from pii_sanitizer.context import PipelineConfig
from pii_sanitizer.errors import ConfigError

YAML = """\
pii_sanitizer:
  thresholds:
    ml_confidence: 0.4
    auto_anonymize: 0.7
  context_window_size: 80
  passes:
    address_relationship: false
  normalizer:
    unicode_form: NFC
    deobfuscate_phone: false
  runtime:
    context_words:
      PERSON: [mitarbeiter]
    column_headers:
      - {column: Name, entity_type: PERSON, confidence_boost: 0.3}
    region_hints:
      - {start: 0, end: 400, expected_entity_type: SENDER}
    document:
      type: INVOICE
      languages: [de]
  deny_list:
    global: [Projekt]
    by_entity_type:
      PERSON: [{type: regex, pattern: "^Abteilung\\\\b", flags: i}]
  anonymizer:
    skip_types: [DATE]
    allow_list: [info@example.ch]
"""


# ── Pipeline config ──────────────────────────────────────────────────

def test_empty_config_gives_defaults():
    assert load_config({}) == PipelineConfig()
    assert load_config(None) == PipelineConfig()


def test_nested_and_flat_layouts_agree():
    flat = {"thresholds": {"review": 0.5}, "debug": True}
    assert load_config({"pii_sanitizer": flat}) == load_config(flat)
    assert load_config(flat).review_threshold == 0.5


def test_unknown_pass_is_rejected():
    with pytest.raises(ConfigError, match="unknown pass"):
        load_config({"passes": {"spell_check": True}})


def test_bad_threshold_is_rejected():
    with pytest.raises(ConfigError):
        load_config({"thresholds": {"auto_anonymize": 1.5}})
    with pytest.raises(ConfigError):
        load_config({"thresholds": {"review": "high"}})


def test_bad_window_is_rejected():
    with pytest.raises(ConfigError):
        load_config({"context_window_size": 0})


def test_bad_column_boost_is_rejected():
    data = {"runtime": {"column_headers": [{"column": "Name", "entity_type": "PERSON", "confidence_boost": 0.9}]}}
    with pytest.raises(ConfigError):
        load_config(data)


def test_incomplete_region_hint_is_rejected():
    with pytest.raises(ConfigError, match="missing"):
        load_config({"runtime": {"region_hints": [{"start": 0}]}})


def test_bad_unicode_form_is_rejected():
    with pytest.raises(ConfigError):
        load_config({"normalizer": {"unicode_form": "NFX"}})


def test_config_error_is_a_value_error():
    with pytest.raises(ValueError):
        load_config("not a mapping")


# ── YAML ─────────────────────────────────────────────────────────────

def test_load_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(YAML, encoding="utf-8")
    config = load_from_yaml(path)
    assert config.ml_confidence_threshold == 0.4
    assert config.auto_anonymize_threshold == 0.7
    assert config.context_window_size == 80
    assert not config.is_pass_enabled("address_relationship")
    assert config.is_pass_enabled("consolidation")
    assert config.normalizer_options.unicode_form == "NFC"
    assert not config.normalizer_options.deobfuscate_phone

    runtime = config.runtime
    assert runtime.context_words == {"PERSON": ["mitarbeiter"]}
    assert runtime.column_headers[0].confidence_boost == 0.3
    assert runtime.region_hints[0].expected_entity_type == "SENDER"
    assert runtime.document_hints.document_type == "INVOICE"
    assert runtime.document_hints.languages == ("de",)


def test_deny_list_and_anonymizer_sections(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(YAML, encoding="utf-8")
    data = read_yaml(path)

    deny = load_deny_list(data)
    assert deny.is_denied("projekt", "ORGANIZATION")
    assert deny.is_denied("Abteilung Finanzen", "PERSON")
    assert not deny.is_denied("Abteilung Finanzen", "LOCATION")
    # defaults stay in place
    assert deny.is_denied("Total", "PERSON")

    anon = load_anonymizer_config(data)
    assert anon.skip_types == {"DATE"}
    assert anon.allow_list == {"info@example.ch"}


def test_empty_yaml_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert read_yaml(path) == {}
    assert load_from_yaml(path) == PipelineConfig()


def test_broken_yaml_file(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("thresholds: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError):
        read_yaml(path)


def test_no_deny_list_section():
    assert load_deny_list({}) is None


def test_bad_deny_list_flag():
    data = {"deny_list": {"global": [{"type": "regex", "pattern": "x", "flags": "q"}]}}
    with pytest.raises(ConfigError):
        load_deny_list(data)


# ── Factories ────────────────────────────────────────────────────────

def test_ml_backend_selection():
    assert load_token_classifier({}) is None
    assert load_token_classifier({"ml": {"backend": "none"}}) is None
    with pytest.raises(ConfigError):
        load_token_classifier({"ml": {"backend": "spacy"}})


def test_create_pipeline_from_config():
    pipeline = create_pipeline_from_config({"passes": {"consolidation": False}})
    assert pipeline.model_name is None
    assert not pipeline.config.is_pass_enabled("consolidation")


@pytest.mark.asyncio
async def test_create_anonymizer():
    anonymizer = create_anonymizer({"anonymizer": {"allow_list": ["info@example.ch"]}})
    assert isinstance(anonymizer, Anonymizer)
    result = await anonymizer.process_document("Mail info@example.ch oder hans@example.ch")
    assert result.text == "Mail info@example.ch oder EMAIL_1"
