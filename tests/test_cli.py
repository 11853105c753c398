"""Tests for the command-line interface."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import io
import json

from pii_sanitizer.cli import main

OBFUSCATED = "Contact: jean (dot) dupont (at) mail (dot) ch"


def test_normalize_from_file(tmp_path, capsys):
    src = tmp_path / "in.txt"
    src.write_text(OBFUSCATED, encoding="utf-8")
    assert main(["normalize", str(src)]) == 0
    out, err = capsys.readouterr()
    assert out == "Contact: jean.dupont@mail.ch\n"
    assert "index map" in err


def test_normalize_from_stdin(monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO(OBFUSCATED))
    assert main(["normalize"]) == 0
    assert capsys.readouterr().out == "Contact: jean.dupont@mail.ch\n"


def test_anonymize_writes_output_and_mapping(tmp_path):
    src = tmp_path / "letter.txt"
    out = tmp_path / "letter.anon.txt"
    mapping = tmp_path / "letter.mapping.json"
    src.write_text(OBFUSCATED, encoding="utf-8")

    assert main(["anonymize", str(src), "--output", str(out), "--mapping", str(mapping)]) == 0
    assert out.read_text(encoding="utf-8") == "Contact: EMAIL_1"
    data = json.loads(mapping.read_text(encoding="utf-8"))
    assert data["entities"] == {"jean.dupont@mail.ch": "EMAIL_1"}
    assert data["model"] == "rules-only"


def test_detect_prints_json(tmp_path, capsys):
    src = tmp_path / "in.txt"
    src.write_text("Mail: hans@example.ch", encoding="utf-8")
    assert main(["detect", str(src)]) == 0
    data = json.loads(capsys.readouterr().out)
    [entity] = data["entities"]
    assert entity["type"] == "EMAIL"
    assert entity["text"] == "hans@example.ch"
    assert entity["original_span"] == [6, 21]
    assert "flagged_count" in data


def test_config_file_is_applied(tmp_path, capsys):
    config = tmp_path / "config.yaml"
    config.write_text("pii_sanitizer:\n  passes:\n    high_recall: false\n", encoding="utf-8")
    src = tmp_path / "in.txt"
    src.write_text("Mail: hans@example.ch", encoding="utf-8")
    assert main(["--config", str(config), "detect", str(src)]) == 0
    assert json.loads(capsys.readouterr().out)["entities"] == []


def test_missing_config_fails(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "nope.yaml"), "normalize", "-"]) == 1
    assert "error:" in capsys.readouterr().err


def test_invalid_config_fails(tmp_path, capsys):
    config = tmp_path / "config.yaml"
    config.write_text("passes:\n  spell_check: true\n", encoding="utf-8")
    src = tmp_path / "in.txt"
    src.write_text("x", encoding="utf-8")
    assert main(["--config", str(config), "detect", str(src)]) == 1
    assert "unknown pass" in capsys.readouterr().err
