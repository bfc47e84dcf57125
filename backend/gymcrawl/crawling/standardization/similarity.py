"""
Similarity Scorer - Weighted name/address/phone similarity between facility records
"""

import re
from typing import Any, Dict, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")
_NON_DIGIT = re.compile(r"\D")


def _normalize(value: Optional[str]) -> str:
    if not value:
        return ""
    return _WHITESPACE.sub("", str(value).lower())


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings"""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Keep the shorter string on the inner loop
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost
            ))
        previous = current
    return previous[-1]


def string_similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Normalized Levenshtein ratio

    Both sides are lowercased and stripped of whitespace first.
    Returns 1 - distance / max_length, and 1.0 for two empty strings.
    """
    left = _normalize(a)
    right = _normalize(b)

    if left == right:
        return 1.0

    max_length = max(len(left), len(right))
    distance = levenshtein_distance(left, right)
    return 1.0 - distance / max_length


def phone_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Digits-only phone comparison: exact 1.0, containment 0.9, else 0"""
    left = _NON_DIGIT.sub("", a or "")
    right = _NON_DIGIT.sub("", b or "")

    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    if left in right or right in left:
        return 0.9
    return 0.0


class SimilarityScorer:
    """Weighted similarity between two facility records"""

    def __init__(
        self,
        name_weight: float = 0.5,
        address_weight: float = 0.3,
        phone_weight: float = 0.2
    ):
        self.name_weight = name_weight
        self.address_weight = address_weight
        self.phone_weight = phone_weight

    def score(self, first: Any, second: Any) -> float:
        """
        Similarity between two records in [0, 1]

        Only fields present on both sides contribute; the blend is
        renormalized by the weights that were actually used.

        Args:
            first: Record with name/address/phone attributes or keys
            second: Record with name/address/phone attributes or keys

        Returns:
            Weighted similarity score
        """
        score, _ = self.score_with_breakdown(first, second)
        return score

    def score_with_breakdown(self, first: Any, second: Any) -> Tuple[float, Dict[str, float]]:
        breakdown: Dict[str, float] = {}
        weighted_sum = 0.0
        weight_total = 0.0

        name_a, name_b = _field(first, "name"), _field(second, "name")
        if name_a and name_b:
            breakdown["name"] = string_similarity(name_a, name_b)
            weighted_sum += breakdown["name"] * self.name_weight
            weight_total += self.name_weight

        address_a, address_b = _field(first, "address"), _field(second, "address")
        if address_a and address_b:
            breakdown["address"] = string_similarity(address_a, address_b)
            weighted_sum += breakdown["address"] * self.address_weight
            weight_total += self.address_weight

        phone_a, phone_b = _field(first, "phone"), _field(second, "phone")
        if phone_a and phone_b:
            breakdown["phone"] = phone_similarity(phone_a, phone_b)
            weighted_sum += breakdown["phone"] * self.phone_weight
            weight_total += self.phone_weight

        if weight_total == 0:
            return 0.0, breakdown

        return min(1.0, max(0.0, weighted_sum / weight_total)), breakdown


def _field(record: Any, name: str) -> Optional[str]:
    if isinstance(record, dict):
        value = record.get(name)
    else:
        value = getattr(record, name, None)
    if value is None:
        return None
    value = str(value).strip()
    return value or None
