"""The six detection passes, in execution order."""

from __future__ import annotations

from ..deny_list import DenyList
from ..ml.adapter import MLAdapter
from .address_relationship import AddressRelationshipPass
from .consolidation import ConsolidationConfig, ConsolidationPass
from .context_scoring import ContextScoringPass
from .document_type import DocumentTypePass
from .format_validation import FormatValidationPass
from .high_recall import HighRecallPass


def default_passes(
    ml: MLAdapter | None = None,
    deny_list: DenyList | None = None,
) -> list:
    return [
        DocumentTypePass(),
        HighRecallPass(ml, deny_list=deny_list),
        FormatValidationPass(),
        ContextScoringPass(),
        AddressRelationshipPass(),
        ConsolidationPass(),
    ]


__all__ = [
    "AddressRelationshipPass",
    "ConsolidationConfig",
    "ConsolidationPass",
    "ContextScoringPass",
    "DocumentTypePass",
    "FormatValidationPass",
    "HighRecallPass",
    "default_passes",
]
