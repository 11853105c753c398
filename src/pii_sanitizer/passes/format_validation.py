"""Pass 2 (order 20): format and checksum validation.

Invalid entities are demoted, never removed.  Entities that already
carry a verdict are left alone so running the pass twice is a no-op.
"""

from __future__ import annotations
from dataclasses import replace

from ..context import PipelineContext
from ..types import Entity, Validation
from ..validators import VALIDATORS, Validator

VALID_BOOST = 1.2


class FormatValidationPass:
    name = "format_validation"
    order = 20

    def __init__(self, validators: dict[str, Validator] | None = None) -> None:
        self.enabled = True
        self.validators = dict(VALIDATORS if validators is None else validators)

    def add_validator(self, entity_type: str, validator: Validator) -> None:
        self.validators[entity_type] = validator

    async def execute(
        self,
        text: str,
        entities: list[Entity],
        context: PipelineContext,
    ) -> list[Entity]:
        return [self.validate_entity(e) for e in entities]

    def validate_entity(self, entity: Entity) -> Entity:
        if entity.validation is not None and entity.validation.status in ("valid", "invalid"):
            return entity

        validator = self.validators.get(entity.type)
        if validator is None:
            return replace(entity, validation=Validation("unchecked", f"no validator for {entity.type}"))

        result = validator(entity.text)
        if result.valid:
            confidence = min(1.0, entity.confidence * VALID_BOOST)
        else:
            confidence = min(entity.confidence, result.confidence)
        return replace(
            entity,
            confidence=confidence,
            validation=Validation(
                "valid" if result.valid else "invalid",
                result.reason,
                getattr(validator, "__name__", type(validator).__name__),
            ),
        )
