"""ML adapter: token-classifier backends and the plumbing around them."""

from .adapter import MLAdapter, MLEntity, TokenClassifier
from .chunker import Chunk, chunk_text, estimate_token_count, merge_chunk_predictions, split_sentences
from .metrics import InferenceMetrics, MetricsCollector
from .retry import RetryPolicy, call_with_retry, is_fatal
from .tokens import ML_ENTITY_MAPPING, MergedEntity, TokenPrediction, merge_bio_tokens

__all__ = [
    "MLAdapter", "MLEntity", "TokenClassifier",
    "Chunk", "chunk_text", "estimate_token_count", "merge_chunk_predictions", "split_sentences",
    "InferenceMetrics", "MetricsCollector",
    "RetryPolicy", "call_with_retry", "is_fatal",
    "ML_ENTITY_MAPPING", "MergedEntity", "TokenPrediction", "merge_bio_tokens",
]
