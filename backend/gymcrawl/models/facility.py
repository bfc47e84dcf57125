"""
Facility record models shared by sources, orchestrator and fuser
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

KEY_MAX_LENGTH = 100

_WHITESPACE = re.compile(r"\s+")


class ObservationType(str, Enum):
    """Where an observation came from"""
    PRIVATE = "private"
    PUBLIC = "public"


class ServiceType(str, Enum):
    """Coarse facility category"""
    GYM = "gym"
    CROSSFIT = "crossfit"
    PT = "pt"
    GX = "gx"
    YOGA = "yoga"
    PILATES = "pilates"


def clamp_confidence(value: Any) -> float:
    """Clamp any numeric confidence into [0, 1]"""
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return max(0.0, min(1.0, number))


def normalize_key(value: Optional[str]) -> str:
    """Lowercase, strip all whitespace and cap the length"""
    if not value:
        return ""
    return _WHITESPACE.sub("", str(value).lower())[:KEY_MAX_LENGTH]


def entity_key(name: Optional[str], address: Optional[str]) -> str:
    """Deduplication key for a facility"""
    return f"{normalize_key(name)}-{normalize_key(address)}"


class FacilityRecord(BaseModel):
    """Fields common to every facility representation"""

    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    name: str = ""
    address: str = ""
    phone: Optional[str] = None

    # Public dataset fields
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    business_status: Optional[str] = None
    business_type: Optional[str] = None
    category: Optional[str] = None
    management_number: Optional[str] = None
    approval_date: Optional[str] = None
    site_area: Optional[str] = None
    postal_code: Optional[str] = None

    # Crawled fields
    rating: Optional[float] = None
    review_count: Optional[int] = None
    open_hour: Optional[str] = None
    close_hour: Optional[str] = None
    price: Optional[str] = None
    membership_price: Optional[str] = None
    pt_price: Optional[str] = None
    gx_price: Optional[str] = None
    day_pass_price: Optional[str] = None
    discount_info: Optional[str] = None
    minimum_price: Optional[str] = None
    website: Optional[str] = None
    instagram: Optional[str] = None
    facebook: Optional[str] = None
    facilities: List[str] = Field(default_factory=list)
    services: List[str] = Field(default_factory=list)
    service_type: Optional[ServiceType] = None

    # Feature flags
    is_24_hours: Optional[bool] = None
    has_parking: Optional[bool] = None
    has_shower: Optional[bool] = None
    has_gx: Optional[bool] = None
    has_pt: Optional[bool] = None
    has_group_pt: Optional[bool] = None

    type: Optional[ObservationType] = None
    source: str = ""
    confidence: float = 0.0

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return clamp_confidence(value)

    @field_validator("facilities", "services", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def key(self) -> str:
        return entity_key(self.name, self.address)


class RawBaselineRecord(FacilityRecord):
    """Facility as known before crawling. Immutable."""

    model_config = ConfigDict(frozen=True)


class Observation(FacilityRecord):
    """One adapter's partial, unverified view of a facility"""
    type: Optional[ObservationType] = ObservationType.PRIVATE


class CanonicalRecord(FacilityRecord):
    """Fused output record"""
    updated_at: Optional[datetime] = None
    crawled_at: Optional[datetime] = None


class MatchPair(BaseModel):
    """Baseline record paired with its best observation"""
    baseline: RawBaselineRecord
    observation: Observation
    similarity: float = Field(ge=0.0, le=1.0)


class Conflict(BaseModel):
    """Two non-empty, different values seen for the same field"""
    entity_key: str
    field: str
    value_a: Any = None
    value_b: Any = None
    resolution: str = "existing"
