"""
Record standardization: validation, similarity scoring and fusion
"""

from .data_validator import DataValidator, ValidationResult, ValidationRule, ValidationSeverity
from .similarity import SimilarityScorer, levenshtein_distance, phone_similarity, string_similarity
from .record_matcher import MergeOutcome, RecordMatcher, combine_confidence, merge_sources

__all__ = [
    "DataValidator",
    "ValidationResult",
    "ValidationRule",
    "ValidationSeverity",
    "SimilarityScorer",
    "levenshtein_distance",
    "phone_similarity",
    "string_similarity",
    "MergeOutcome",
    "RecordMatcher",
    "combine_confidence",
    "merge_sources",
]
