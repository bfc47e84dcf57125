"""
Price extraction from Korean price text
"""

import re
from collections import Counter
from typing import List, Optional, Tuple

from pydantic import BaseModel

_AMOUNT = r"(\d{1,3}(?:,\d{3})*)"

# (pattern, confidence) per price tier; first match in each tier wins
MEMBERSHIP_PATTERNS = [
    (re.compile(rf"회원권\s*{_AMOUNT}\s*원"), 0.9),
    (re.compile(rf"월\s*{_AMOUNT}\s*원"), 0.8),
    (re.compile(rf"년\s*{_AMOUNT}\s*원"), 0.8),
]
PT_PATTERNS = [
    (re.compile(rf"PT\s*{_AMOUNT}\s*원", re.IGNORECASE), 0.9),
    (re.compile(rf"개인트레이너\s*{_AMOUNT}\s*원"), 0.8),
]
GX_PATTERNS = [
    (re.compile(rf"GX\s*{_AMOUNT}\s*원", re.IGNORECASE), 0.9),
    (re.compile(rf"그룹레슨\s*{_AMOUNT}\s*원"), 0.8),
]
DAY_PASS_PATTERNS = [
    (re.compile(rf"일일권\s*{_AMOUNT}\s*원"), 0.9),
    (re.compile(rf"1일\s*{_AMOUNT}\s*원"), 0.8),
]
DISCOUNT_PATTERNS = [
    (re.compile(rf"할인\s*{_AMOUNT}\s*원"), "할인"),
    (re.compile(rf"{_AMOUNT}\s*원\s*할인"), "할인"),
    (re.compile(rf"{_AMOUNT}\s*%\s*할인"), "할인"),
    (re.compile(rf"초?특가\s*{_AMOUNT}\s*원"), "특가"),
]
MINIMUM_PATTERNS = [
    re.compile(rf"{_AMOUNT}\s*만?원\s*부터"),
    re.compile(rf"{_AMOUNT}\s*만?원\s*이상"),
]
RANGE_PATTERNS = [
    re.compile(rf"{_AMOUNT}\s*원\s*~\s*{_AMOUNT}\s*원"),
    re.compile(rf"{_AMOUNT}\s*만원\s*~\s*{_AMOUNT}\s*만원"),
]
BASIC_PATTERNS = [
    re.compile(rf"{_AMOUNT}\s*만원"),
    re.compile(rf"{_AMOUNT}\s*원"),
]

UNKNOWN_PRICE = "방문후 확인"


class PriceInfo(BaseModel):
    """Price tiers found in a text"""
    membership_price: Optional[str] = None
    pt_price: Optional[str] = None
    gx_price: Optional[str] = None
    day_pass_price: Optional[str] = None
    discount_info: Optional[str] = None
    minimum_price: Optional[str] = None
    price_details: Optional[str] = None
    confidence: float = 0.0

    @property
    def price(self) -> Optional[str]:
        """Single headline price: exact tier, then minimum, then details"""
        return (
            self.membership_price
            or self.pt_price
            or self.gx_price
            or self.day_pass_price
            or self.minimum_price
            or self.price_details
        )


class PriceExtractor:
    """Extracts price tiers from free text"""

    def extract(self, text: str) -> PriceInfo:
        info = PriceInfo()
        if not text:
            return info

        info.membership_price, c1 = self._first_amount(text, MEMBERSHIP_PATTERNS)
        info.pt_price, c2 = self._first_amount(text, PT_PATTERNS)
        info.gx_price, c3 = self._first_amount(text, GX_PATTERNS)
        info.day_pass_price, c4 = self._first_amount(text, DAY_PASS_PATTERNS)
        confidence = max(c1, c2, c3, c4)

        for pattern, label in DISCOUNT_PATTERNS:
            match = pattern.search(text)
            if match:
                info.discount_info = f"{label}: {match.group(0).strip()}"
                break

        for pattern in MINIMUM_PATTERNS:
            match = pattern.search(text)
            if match:
                info.minimum_price = match.group(0).strip()
                confidence = max(confidence, 0.7)
                break

        for pattern in RANGE_PATTERNS:
            match = pattern.search(text)
            if match:
                info.price_details = f"범위: {match.group(0).strip()}"
                confidence = max(confidence, 0.8)
                break

        if info.price is None:
            for pattern in BASIC_PATTERNS:
                match = pattern.search(text)
                if match:
                    info.price_details = f"기본: {match.group(0).strip()}"
                    confidence = max(confidence, 0.3)
                    break

        info.confidence = confidence
        return info

    def _first_amount(self, text: str, patterns: List[Tuple[re.Pattern, float]]) -> Tuple[Optional[str], float]:
        for pattern, confidence in patterns:
            match = pattern.search(text)
            if match:
                return f"{match.group(1)}원", confidence
        return None, 0.0

    def consolidate(self, infos: List[PriceInfo]) -> str:
        """
        Most common price across several extractions

        Exact tiers beat minimum prices, which beat other price details.
        Nothing found yields the "check on visit" marker.
        """
        tiers = [
            [p for i in infos for p in (i.membership_price, i.pt_price, i.gx_price, i.day_pass_price) if p],
            [i.minimum_price for i in infos if i.minimum_price],
            [i.price_details for i in infos if i.price_details],
        ]
        for values in tiers:
            if values:
                return Counter(values).most_common(1)[0][0]
        return UNKNOWN_PRICE
