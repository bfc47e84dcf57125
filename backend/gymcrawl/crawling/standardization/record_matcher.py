"""
Record Matcher - Matches baseline records with crawled observations and fuses them
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel, Field

from gymcrawl.models import (
    CanonicalRecord,
    Conflict,
    FacilityRecord,
    MatchPair,
    Observation,
    RawBaselineRecord,
    RunStatistics,
    clamp_confidence,
    entity_key,
)
from .data_validator import DataValidator
from .similarity import SimilarityScorer

logger = structlog.get_logger(__name__)

SOURCE_SEPARATOR = " + "
BASELINE_FALLBACK_SOURCE = "gyms_raw_fallback"
BASELINE_CONFIDENCE_FLOOR = 0.5

# Existing value wins unless missing
SCALAR_FIELDS = (
    "name", "address", "phone", "latitude", "longitude",
    "business_status", "business_type", "category", "management_number",
    "approval_date", "site_area", "postal_code",
    "rating", "review_count", "open_hour", "close_hour",
    "price", "membership_price", "pt_price", "gx_price", "day_pass_price",
    "discount_info", "minimum_price",
    "website", "instagram", "facebook", "service_type", "type",
)

BOOLEAN_FLAGS = (
    "is_24_hours", "has_parking", "has_shower", "has_gx", "has_pt", "has_group_pt",
)

LIST_FIELDS = ("facilities", "services")

# Fields whose disagreement is recorded in the conflict log
CONFLICT_FIELDS = (
    "name", "address", "phone", "rating", "review_count", "open_hour",
    "close_hour", "price", "membership_price", "pt_price", "gx_price",
    "day_pass_price", "website", "instagram", "facebook",
)


class MergeOutcome(BaseModel):
    """Result of merging a baseline set with observations"""
    records: List[CanonicalRecord] = Field(default_factory=list)
    conflicts: List[Conflict] = Field(default_factory=list)
    matches: List[MatchPair] = Field(default_factory=list)
    statistics: RunStatistics = Field(default_factory=RunStatistics)


def combine_confidence(*values: float) -> float:
    """Combined confidence of several contributions: the highest one, clamped"""
    present = [clamp_confidence(v) for v in values if v is not None]
    if not present:
        return 0.0
    return max(present)


def merge_sources(*sources: Optional[str]) -> str:
    """Ordered set-union of '+'-joined source names"""
    names: List[str] = []
    for source in sources:
        if not source:
            continue
        for part in source.split("+"):
            part = part.strip()
            if part and part not in names:
                names.append(part)
    return SOURCE_SEPARATOR.join(names)


def union_values(*lists: Sequence[str]) -> List[str]:
    merged: List[str] = []
    for values in lists:
        for value in values or []:
            if value not in merged:
                merged.append(value)
    return merged


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, (list, tuple, set)) and not value:
        return True
    return False


class RecordMatcher:
    """Fuzzy matching and field-level fusion of facility records"""

    def __init__(
        self,
        duplicate_threshold: float = 0.8,
        scorer: Optional[SimilarityScorer] = None,
        validator: Optional[DataValidator] = None
    ):
        self.duplicate_threshold = duplicate_threshold
        self.scorer = scorer or SimilarityScorer()
        self.validator = validator or DataValidator()

        logger.info("Record matcher initialized",
                    duplicate_threshold=duplicate_threshold)

    def find_best_match(
        self,
        record: FacilityRecord,
        candidates: Sequence[FacilityRecord],
        taken: Optional[set] = None
    ) -> Tuple[Optional[int], float]:
        """
        Index and score of the best candidate strictly above the threshold

        Ties keep the first candidate seen.
        """
        best_index: Optional[int] = None
        best_score = 0.0
        for index, candidate in enumerate(candidates):
            if taken and index in taken:
                continue
            score = self.scorer.score(record, candidate)
            if score > self.duplicate_threshold and score > best_score:
                best_index, best_score = index, score
        return best_index, best_score

    def find_matches(
        self,
        baseline: Sequence[RawBaselineRecord],
        observations: Sequence[Observation]
    ) -> List[MatchPair]:
        """
        Greedy assignment of baseline records to observations

        Each baseline record takes its single best observation whose score
        exceeds the duplicate threshold. An observation is matched at most once.
        """
        assignment = self._assign(baseline, observations)
        return [
            MatchPair(
                baseline=baseline[b_index],
                observation=observations[o_index],
                similarity=score
            )
            for b_index, (o_index, score) in assignment.items()
        ]

    def _assign(
        self,
        baseline: Sequence[FacilityRecord],
        observations: Sequence[Observation]
    ) -> Dict[int, Tuple[int, float]]:
        """Map baseline index to (observation index, score)"""
        taken: set = set()
        assignment: Dict[int, Tuple[int, float]] = {}
        for b_index, record in enumerate(baseline):
            o_index, score = self.find_best_match(record, observations, taken)
            if o_index is None:
                continue
            taken.add(o_index)
            assignment[b_index] = (o_index, score)
        return assignment

    def fuse(
        self,
        existing: FacilityRecord,
        incoming: FacilityRecord,
        now: Optional[datetime] = None
    ) -> Tuple[CanonicalRecord, List[Conflict]]:
        """
        Fuse two records describing the same facility

        Args:
            existing: Record that wins on conflicting scalar fields
            incoming: Newly observed record
            now: Timestamp applied to updated_at/crawled_at

        Returns:
            Fused record and the conflicts seen along the way
        """
        now = now or datetime.utcnow()
        key = entity_key(existing.name, existing.address)
        data = existing.model_dump()
        conflicts: List[Conflict] = []

        for field_name in SCALAR_FIELDS:
            current = getattr(existing, field_name, None)
            candidate = getattr(incoming, field_name, None)

            if field_name in CONFLICT_FIELDS and not is_empty(current) and not is_empty(candidate):
                if _comparable(current) != _comparable(candidate):
                    conflicts.append(Conflict(
                        entity_key=key,
                        field=field_name,
                        value_a=current,
                        value_b=candidate,
                        resolution="existing"
                    ))

            if is_empty(current) and not is_empty(candidate):
                data[field_name] = candidate

        for field_name in BOOLEAN_FLAGS:
            current = getattr(existing, field_name, None)
            if current is None:
                data[field_name] = getattr(incoming, field_name, None)

        for field_name in LIST_FIELDS:
            data[field_name] = union_values(
                getattr(existing, field_name, []),
                getattr(incoming, field_name, [])
            )

        data["source"] = merge_sources(existing.source, incoming.source)
        data["confidence"] = combine_confidence(existing.confidence, incoming.confidence)
        data["updated_at"] = now
        data["crawled_at"] = now

        if conflicts:
            logger.debug("Merge conflicts recorded",
                         entity_key=key,
                         fields=[c.field for c in conflicts])

        return CanonicalRecord(**data), conflicts

    def carry_through(
        self,
        record: RawBaselineRecord,
        now: Optional[datetime] = None
    ) -> CanonicalRecord:
        """Unmatched baseline record: unchanged apart from timestamp and defaults"""
        data = record.model_dump()
        data["source"] = record.source or BASELINE_FALLBACK_SOURCE
        data["confidence"] = record.confidence or BASELINE_CONFIDENCE_FLOOR
        data["updated_at"] = now or datetime.utcnow()
        return CanonicalRecord(**data)

    def deduplicate(self, records: Sequence[CanonicalRecord]) -> Tuple[List[CanonicalRecord], int]:
        """Drop records whose entity key was already seen, keeping the first"""
        seen: set = set()
        unique: List[CanonicalRecord] = []
        for record in records:
            key = record.key
            if key in seen:
                continue
            seen.add(key)
            unique.append(record)
        return unique, len(records) - len(unique)

    def merge(
        self,
        baseline: Sequence[RawBaselineRecord],
        observations: Sequence[Observation],
        now: Optional[datetime] = None
    ) -> MergeOutcome:
        """
        Merge a baseline set with freshly crawled observations

        Args:
            baseline: Records known before the crawl
            observations: Crawled and public observations
            now: Timestamp applied to every touched record

        Returns:
            MergeOutcome with deduplicated canonical records, conflicts and counters
        """
        now = now or datetime.utcnow()
        stats = RunStatistics(total_processed=len(baseline) + len(observations))

        assignment = self._assign(baseline, observations)
        used_observations = {o_index for o_index, _ in assignment.values()}

        merged: List[CanonicalRecord] = []
        conflicts: List[Conflict] = []
        matches: List[MatchPair] = []

        for b_index, record in enumerate(baseline):
            if b_index not in assignment:
                merged.append(self.carry_through(record, now))
                stats.fallback_used += 1
                continue
            o_index, score = assignment[b_index]
            observation = observations[o_index]
            matches.append(MatchPair(baseline=record, observation=observation, similarity=score))
            fused, record_conflicts = self.fuse(record, observation, now)
            merged.append(fused)
            conflicts.extend(record_conflicts)
            stats.successfully_merged += 1

        # Leftover observations of an already merged facility fold into it
        folded = 0
        for o_index, observation in enumerate(observations):
            if o_index in used_observations:
                continue
            target, _ = self.find_best_match(observation, merged)
            if target is not None:
                fused, record_conflicts = self.fuse(merged[target], observation, now)
                merged[target] = fused
                conflicts.extend(record_conflicts)
                folded += 1
                continue
            data = observation.model_dump()
            data["updated_at"] = now
            data["crawled_at"] = now
            merged.append(CanonicalRecord(**data))
            stats.successfully_merged += 1

        records, removed = self.deduplicate(merged)
        stats.duplicates_removed = removed + folded
        stats.quality_score = self.validator.get_data_quality_score(records)

        logger.info("Records merged",
                    baseline=len(baseline),
                    observations=len(observations),
                    matched=len(matches),
                    conflicts=len(conflicts),
                    duplicates_removed=removed,
                    quality_score=stats.quality_score)

        return MergeOutcome(
            records=records,
            conflicts=conflicts,
            matches=matches,
            statistics=stats
        )


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    return value
