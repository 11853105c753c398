"""CLI interface for pii-sanitizer.

Usage:
    # Anonymize a document (file or stdin), write the mapping alongside
    pii-sanitizer anonymize letter.txt --output letter.anon.txt --mapping letter.mapping.json

    # Show what would be detected, as JSON
    cat invoice.txt | pii-sanitizer detect --ml presidio

    # Show the normalized text only
    echo 'jean (at) mail (dot) ch' | pii-sanitizer normalize

The mapping JSON is the only artifact written; nothing else is persisted.
"""

from __future__ import annotations
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from .config import create_anonymizer, create_pipeline_from_config, load_config, read_yaml
from .errors import PiiSanitizerError
from .normalizer import normalize

logger = logging.getLogger(__name__)


def _read_input(args: argparse.Namespace) -> str:
    if args.input and args.input != "-":
        return Path(args.input).read_text(encoding="utf-8")
    return sys.stdin.read()


def _write_output(args: argparse.Namespace, text: str) -> None:
    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
    else:
        sys.stdout.write(text)
        if not text.endswith("\n"):
            sys.stdout.write("\n")


def _config_data(args: argparse.Namespace) -> dict[str, Any]:
    data = read_yaml(args.config) if args.config else {}
    data = dict(data.get("pii_sanitizer", data) or {})
    if args.ml:
        ml = dict(data.get("ml") or {})
        ml["backend"] = args.ml
        if args.language:
            ml.setdefault("language", args.language)
        data["ml"] = ml
    return data


def cmd_anonymize(args: argparse.Namespace) -> None:
    """Anonymize a document and optionally write its mapping."""
    anonymizer = create_anonymizer(_config_data(args))
    result = asyncio.run(anonymizer.process_document(_read_input(args), args.language))
    _write_output(args, result.text)
    if args.mapping:
        Path(args.mapping).write_text(result.mapping.to_json(), encoding="utf-8")
        logger.info("mapping written to %s", args.mapping)


def cmd_detect(args: argparse.Namespace) -> None:
    """Print detected entities as JSON."""
    pipeline = create_pipeline_from_config(_config_data(args))
    result = asyncio.run(pipeline.process(_read_input(args), args.language))
    output = {
        "document_type": result.document_type,
        "language": result.language,
        "entities": [
            {
                "id": e.id,
                "type": e.type,
                "text": e.text,
                "start": e.start,
                "end": e.end,
                "original_span": list(e.original_span) if e.original_span else None,
                "confidence": round(e.confidence, 4),
                "source": e.source,
                "flagged_for_review": e.flagged_for_review,
                "logical_id": e.logical_id,
            }
            for e in result.entities
        ],
        "flagged_count": result.metadata["flagged_count"],
    }
    _write_output(args, json.dumps(output, indent=2, ensure_ascii=False))


def cmd_normalize(args: argparse.Namespace) -> None:
    """Print the normalized text and the size of its offset map."""
    config = load_config(_config_data(args))
    result = normalize(_read_input(args), config.normalizer_options)
    _write_output(args, result.normalized_text)
    sys.stderr.write(f"index map: {len(result.index_map)} entries, steps: {', '.join(result.applied_steps) or 'none'}\n")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="pii-sanitizer",
        description="PII detection and pseudonymization for Swiss/EU documents",
    )
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--ml", choices=["none", "presidio", "transformers"], help="ML backend (overrides config)")
    parser.add_argument("--language", help="Language code (default: detect)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("anonymize", "Anonymize a document"),
        ("detect", "Print detected entities as JSON"),
        ("normalize", "Print normalized text"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("input", nargs="?", default="-", help="Input file (default: stdin)")
        p.add_argument("--output", "-o", help="Output file (default: stdout)")
        if name == "anonymize":
            p.add_argument("--mapping", help="Write the mapping JSON here")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    cmds = {
        "anonymize": cmd_anonymize,
        "detect": cmd_detect,
        "normalize": cmd_normalize,
    }
    try:
        cmds[args.command](args)
    except (PiiSanitizerError, OSError) as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
