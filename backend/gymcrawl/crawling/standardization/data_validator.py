"""
Data Validator - Facility record validation, normalization and quality scoring
"""

import re
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, TypeVar, Union

import structlog
from pydantic import BaseModel

from gymcrawl.core.exceptions import ValidationException
from gymcrawl.models import FacilityRecord, clamp_confidence

logger = structlog.get_logger(__name__)

R = TypeVar("R", bound=FacilityRecord)

# Field presence weights used for the quality score
QUALITY_WEIGHTS: Dict[str, float] = {
    "name": 0.2,
    "address": 0.2,
    "phone": 0.15,
    "coordinates": 0.15,
    "rating": 0.1,
    "review_count": 0.1,
}
CONFIDENCE_QUALITY_WEIGHT = 0.1

_STRING_FIELDS = (
    "name", "address", "phone", "business_status", "business_type", "category",
    "management_number", "approval_date", "site_area", "postal_code",
    "open_hour", "close_hour", "price", "membership_price", "pt_price",
    "gx_price", "day_pass_price", "discount_info", "minimum_price",
    "website", "instagram", "facebook", "source",
)


class ValidationSeverity(str, Enum):
    """Validation error severity levels"""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationResult(BaseModel):
    """Result of a validation check"""
    field_name: str
    is_valid: bool
    severity: ValidationSeverity
    message: str
    value: Any = None


class ValidationRule(BaseModel):
    """Validation rule definition"""
    field_name: str
    rule_type: str  # "type", "range", "pattern", "length"
    required: bool = False
    severity: ValidationSeverity = ValidationSeverity.ERROR
    data_type: Optional[str] = None
    min_value: Optional[Union[int, float]] = None
    max_value: Optional[Union[int, float]] = None
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None


class DataValidator:
    """Facility record validation and normalization"""

    def __init__(self):
        self.validation_rules: Dict[str, List[ValidationRule]] = {}
        self._load_default_rules()

    def _load_default_rules(self):
        """Load default validation rules"""
        for field_name in ("name", "address", "source"):
            self.add_rule(field_name, ValidationRule(
                field_name=field_name,
                rule_type="length",
                required=True,
                min_length=1,
                max_length=500
            ))

        self.add_rule("confidence", ValidationRule(
            field_name="confidence",
            rule_type="range",
            required=True,
            min_value=0,
            max_value=1
        ))

        # Out-of-range values below are repaired by normalize_record
        self.add_rule("latitude", ValidationRule(
            field_name="latitude",
            rule_type="range",
            severity=ValidationSeverity.WARNING,
            min_value=-90,
            max_value=90
        ))
        self.add_rule("longitude", ValidationRule(
            field_name="longitude",
            rule_type="range",
            severity=ValidationSeverity.WARNING,
            min_value=-180,
            max_value=180
        ))
        self.add_rule("rating", ValidationRule(
            field_name="rating",
            rule_type="range",
            severity=ValidationSeverity.WARNING,
            min_value=0,
            max_value=5
        ))
        self.add_rule("review_count", ValidationRule(
            field_name="review_count",
            rule_type="range",
            severity=ValidationSeverity.WARNING,
            min_value=0
        ))
        self.add_rule("phone", ValidationRule(
            field_name="phone",
            rule_type="pattern",
            severity=ValidationSeverity.WARNING,
            pattern=r'^[0-9+()\-.\s]{7,20}$'
        ))

    def add_rule(self, field_name: str, rule: ValidationRule):
        """Add a validation rule for a field"""
        self.validation_rules.setdefault(field_name, []).append(rule)

    def validate_value(self, field_name: str, value: Any) -> List[ValidationResult]:
        """Apply every rule registered for a field"""
        results = []
        for rule in self.validation_rules.get(field_name, []):
            result = self._apply_validation_rule(field_name, value, rule)
            if result:
                results.append(result)
        return results

    def _apply_validation_rule(
        self,
        field_name: str,
        value: Any,
        rule: ValidationRule
    ) -> Optional[ValidationResult]:
        """Apply a single validation rule"""
        if isinstance(value, str):
            value = value.strip()

        if value is None or value == "":
            if rule.required:
                return ValidationResult(
                    field_name=field_name,
                    is_valid=False,
                    severity=ValidationSeverity.ERROR,
                    message="Field is required but missing or empty",
                    value=value
                )
            return None

        if rule.rule_type == "range":
            numeric_value = self._convert_to_numeric(value)
            if numeric_value is None:
                return ValidationResult(
                    field_name=field_name,
                    is_valid=False,
                    severity=rule.severity,
                    message="Expected numeric value for range validation",
                    value=value
                )
            if rule.min_value is not None and numeric_value < rule.min_value:
                return ValidationResult(
                    field_name=field_name,
                    is_valid=False,
                    severity=rule.severity,
                    message=f"Value {numeric_value} is below minimum {rule.min_value}",
                    value=value
                )
            if rule.max_value is not None and numeric_value > rule.max_value:
                return ValidationResult(
                    field_name=field_name,
                    is_valid=False,
                    severity=rule.severity,
                    message=f"Value {numeric_value} is above maximum {rule.max_value}",
                    value=value
                )

        elif rule.rule_type == "pattern" and rule.pattern:
            if not re.match(rule.pattern, str(value)):
                return ValidationResult(
                    field_name=field_name,
                    is_valid=False,
                    severity=rule.severity,
                    message=f"Value does not match required pattern: {rule.pattern}",
                    value=value
                )

        elif rule.rule_type == "length":
            length = len(str(value))
            if rule.min_length is not None and length < rule.min_length:
                return ValidationResult(
                    field_name=field_name,
                    is_valid=False,
                    severity=rule.severity,
                    message=f"Length {length} is below minimum {rule.min_length}",
                    value=value
                )
            if rule.max_length is not None and length > rule.max_length:
                return ValidationResult(
                    field_name=field_name,
                    is_valid=False,
                    severity=rule.severity,
                    message=f"Length {length} is above maximum {rule.max_length}",
                    value=value
                )

        return None

    def _convert_to_numeric(self, value: Any) -> Optional[float]:
        """Convert value to numeric if possible"""
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return float(value)
        try:
            return float(str(value).strip())
        except (ValueError, TypeError):
            return None

    def validate_record(
        self,
        record: Union[FacilityRecord, Dict[str, Any]],
        require_source: bool = True
    ) -> List[ValidationResult]:
        """
        Validate a facility record

        Args:
            record: Record model or raw dictionary
            require_source: Check the source field; baseline rows may omit it

        Returns:
            Failed checks only; an empty list means the record is clean
        """
        if isinstance(record, BaseModel):
            data = record.model_dump()
        else:
            # Raw rows are checked as given; only an absent confidence takes the model default
            data = dict(record)
            data.setdefault("confidence", FacilityRecord.model_fields["confidence"].default)
        failures = []
        for field_name in self.validation_rules:
            if field_name == "source" and not require_source:
                continue
            failures.extend(
                r for r in self.validate_value(field_name, data.get(field_name)) if not r.is_valid
            )
        return failures

    def ensure_valid(
        self,
        record: Union[FacilityRecord, Dict[str, Any]],
        require_source: bool = True
    ) -> None:
        """
        Reject records that cannot be persisted

        Raises:
            ValidationException: If any check of ERROR severity failed
        """
        errors = [
            r for r in self.validate_record(record, require_source=require_source)
            if r.severity == ValidationSeverity.ERROR
        ]
        if errors:
            name = record.get("name") if isinstance(record, dict) else record.name
            logger.debug("Record rejected by validator",
                         name=name,
                         fields=[e.field_name for e in errors])
            raise ValidationException(
                f"Record failed validation: {', '.join(e.field_name for e in errors)}",
                error_code="INVALID_RECORD",
                details={
                    "name": name,
                    "errors": [e.message for e in errors]
                }
            )

    def is_valid(
        self,
        record: Union[FacilityRecord, Dict[str, Any]],
        require_source: bool = True
    ) -> bool:
        try:
            self.ensure_valid(record, require_source=require_source)
        except ValidationException:
            return False
        return True

    def normalize_record(self, record: R) -> R:
        """
        Return a normalized copy of a record

        Strings are trimmed, coordinates outside their range become None,
        rating is clamped to [0, 5], confidence to [0, 1] and review counts
        are floored at 0.
        """
        updates: Dict[str, Any] = {}

        for field_name in _STRING_FIELDS:
            value = getattr(record, field_name, None)
            if isinstance(value, str):
                stripped = value.strip()
                if field_name in ("name", "address", "source"):
                    updates[field_name] = stripped
                else:
                    updates[field_name] = stripped or None

        if record.phone:
            updates["phone"] = normalize_phone(record.phone)

        updates["latitude"] = _within(record.latitude, -90.0, 90.0)
        updates["longitude"] = _within(record.longitude, -180.0, 180.0)

        if record.rating is not None:
            updates["rating"] = max(0.0, min(5.0, float(record.rating)))
        if record.review_count is not None:
            updates["review_count"] = max(0, int(record.review_count))

        updates["confidence"] = clamp_confidence(record.confidence)
        updates["facilities"] = _clean_list(record.facilities)
        updates["services"] = _clean_list(record.services)

        return record.model_copy(update=updates)

    def get_data_quality_score(self, records: Sequence[FacilityRecord]) -> float:
        """Weighted mean of field-presence indicators across records (0.0 to 1.0)"""
        if not records:
            return 0.0

        total = 0.0
        for record in records:
            score = 0.0
            if record.name:
                score += QUALITY_WEIGHTS["name"]
            if record.address:
                score += QUALITY_WEIGHTS["address"]
            if record.phone:
                score += QUALITY_WEIGHTS["phone"]
            if record.latitude is not None and record.longitude is not None:
                score += QUALITY_WEIGHTS["coordinates"]
            if record.rating is not None:
                score += QUALITY_WEIGHTS["rating"]
            if record.review_count is not None:
                score += QUALITY_WEIGHTS["review_count"]
            score += clamp_confidence(record.confidence) * CONFIDENCE_QUALITY_WEIGHT
            total += score

        return round(total / len(records), 4)


def normalize_phone(phone: str) -> Optional[str]:
    """Collapse whitespace and dots in a phone number into dashes"""
    cleaned = re.sub(r"[\s.]+", "-", phone.strip()).strip("-")
    return cleaned or None


def _within(value: Optional[float], low: float, high: float) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if low <= number <= high else None


def _clean_list(values: Sequence[str]) -> List[str]:
    seen: List[str] = []
    for value in values or []:
        item = str(value).strip()
        if item and item not in seen:
            seen.append(item)
    return seen
