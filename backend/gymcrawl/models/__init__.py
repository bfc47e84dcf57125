"""
Data models for the gym crawler
"""

from .facility import (
    CanonicalRecord,
    Conflict,
    FacilityRecord,
    MatchPair,
    Observation,
    ObservationType,
    RawBaselineRecord,
    ServiceType,
    clamp_confidence,
    entity_key,
    normalize_key,
)
from .run import CrawlError, CrawlProgress, RunResult, RunStatistics

__all__ = [
    "CanonicalRecord",
    "Conflict",
    "FacilityRecord",
    "MatchPair",
    "Observation",
    "ObservationType",
    "RawBaselineRecord",
    "ServiceType",
    "clamp_confidence",
    "entity_key",
    "normalize_key",
    "CrawlError",
    "CrawlProgress",
    "RunResult",
    "RunStatistics",
]
