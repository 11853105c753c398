"""PII Sanitizer — multi-pass PII detection and pseudonymization for Swiss/EU documents."""

from .anonymizer import AnonymizationResult, Anonymizer, AnonymizerConfig, MappingFile, anonymize
from .config import create_anonymizer, create_pipeline_from_config, load_config, load_from_yaml
from .context import ColumnContext, DocumentHints, PipelineConfig, PipelineContext, RegionHint, RuntimeContext
from .deny_list import DenyList
from .errors import ConfigError, PiiSanitizerError
from .normalizer import NormalizationResult, NormalizerOptions, TextNormalizer, normalize
from .pipeline import DetectionPipeline, PipelineResult, create_pipeline
from .session import AddressEntry, Session
from .types import Entity

__all__ = [
    "Anonymizer", "AnonymizerConfig", "AnonymizationResult", "MappingFile", "anonymize",
    "create_anonymizer", "create_pipeline_from_config", "load_config", "load_from_yaml",
    "ColumnContext", "DocumentHints", "PipelineConfig", "PipelineContext", "RegionHint", "RuntimeContext",
    "DenyList",
    "ConfigError", "PiiSanitizerError",
    "NormalizationResult", "NormalizerOptions", "TextNormalizer", "normalize",
    "DetectionPipeline", "PipelineResult", "create_pipeline",
    "AddressEntry", "Session",
    "Entity",
]
__version__ = "0.1.0"
