"""Sanity checks on text before it reaches a token classifier."""

from __future__ import annotations
import logging
import unicodedata
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

MAX_ML_INPUT_LENGTH = 100_000
CONTROL_CHAR_WARN_RATIO = 0.1


@dataclass(slots=True)
class InputValidation:
    valid: bool
    text: str = ""
    warnings: list[str] = field(default_factory=list)
    error: str | None = None


def validate_ml_input(text: object, max_length: int = MAX_ML_INPUT_LENGTH) -> InputValidation:
    """Reject unusable input; return the text the model should see.

    NFC is applied only when it leaves the length unchanged, since the
    model's character offsets must line up with the caller's text.
    """
    if text is None:
        return InputValidation(valid=False, error="input is None")
    if not isinstance(text, str):
        return InputValidation(valid=False, error=f"expected str, got {type(text).__name__}")
    if not text.strip():
        return InputValidation(valid=False, error="input is empty")
    if len(text) > max_length:
        return InputValidation(valid=False, error=f"input length {len(text)} exceeds {max_length}")

    warnings: list[str] = []
    model_text = text
    nfc = unicodedata.normalize("NFC", text)
    if nfc != text:
        if len(nfc) == len(text):
            model_text = nfc
            warnings.append("text was not NFC-normalized")
        else:
            warnings.append("NFC would shift offsets; using text as given")

    controls = sum(
        1 for ch in text
        if unicodedata.category(ch) == "Cc" and ch not in "\n\r\t"
    )
    if controls / len(text) > CONTROL_CHAR_WARN_RATIO:
        warnings.append(f"high control character ratio ({controls}/{len(text)})")

    for w in warnings:
        logger.warning("ml input: %s", w)
    return InputValidation(valid=True, text=model_text, warnings=warnings)
