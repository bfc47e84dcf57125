import pytest

from gymcrawl.core.exceptions import ValidationException
from gymcrawl.crawling.standardization.data_validator import (
    DataValidator,
    ValidationSeverity,
    normalize_phone,
)
from gymcrawl.models import CanonicalRecord, Observation, RawBaselineRecord


@pytest.fixture
def validator():
    return DataValidator()


def test_valid_observation_has_no_failures(validator, sample_observation):
    assert validator.validate_record(sample_observation) == []
    assert validator.is_valid(sample_observation)


@pytest.mark.parametrize("missing", ["name", "address", "source"])
def test_missing_required_field_is_rejected(validator, missing):
    data = {"name": "ABC Gym", "address": "1 Main St", "source": "naver", "confidence": 0.5}
    data[missing] = "   "

    with pytest.raises(ValidationException) as exc_info:
        validator.ensure_valid(data)

    assert exc_info.value.error_code == "INVALID_RECORD"
    assert missing in exc_info.value.message


def test_confidence_out_of_range_is_rejected(validator):
    data = {"name": "ABC Gym", "address": "1 Main St", "source": "naver", "confidence": 1.5}
    failures = validator.validate_record(data)

    assert [f.field_name for f in failures] == ["confidence"]
    assert failures[0].severity == ValidationSeverity.ERROR


def test_baseline_without_source_is_valid_when_source_not_required(validator):
    record = RawBaselineRecord(name="X", address="Y")

    assert not validator.is_valid(record)
    assert validator.is_valid(record, require_source=False)


def test_out_of_range_rating_is_only_a_warning(validator):
    record = Observation(name="A", address="B", source="naver", rating=7.0, confidence=0.5)
    failures = validator.validate_record(record)

    assert [f.severity for f in failures] == [ValidationSeverity.WARNING]
    assert validator.is_valid(record)


def test_normalize_record(validator):
    record = Observation(
        name="  ABC Gym ",
        address=" 1 Main St ",
        phone="02 555 1234",
        latitude=123.0,
        longitude=127.0,
        rating=9.0,
        review_count=-3,
        website="   ",
        facilities=[" 샤워시설", "샤워시설", ""],
        source=" naver ",
        confidence=0.4
    )

    normalized = validator.normalize_record(record)

    assert normalized.name == "ABC Gym"
    assert normalized.address == "1 Main St"
    assert normalized.phone == "02-555-1234"
    assert normalized.latitude is None
    assert normalized.longitude == 127.0
    assert normalized.rating == 5.0
    assert normalized.review_count == 0
    assert normalized.website is None
    assert normalized.facilities == ["샤워시설"]
    assert normalized.source == "naver"
    assert isinstance(normalized, Observation)


def test_normalize_frozen_baseline_returns_copy(validator):
    record = RawBaselineRecord(name=" X ", address="Y")
    normalized = validator.normalize_record(record)

    assert normalized.name == "X"
    assert record.name == " X "


def test_quality_score(validator):
    full = CanonicalRecord(
        name="A", address="B", phone="02-555-1234", latitude=37.5, longitude=127.0,
        rating=4.0, review_count=10, confidence=1.0
    )
    bare = CanonicalRecord(name="A", address="B", confidence=0.0)

    assert validator.get_data_quality_score([full]) == pytest.approx(1.0)
    assert validator.get_data_quality_score([bare]) == pytest.approx(0.4)
    assert validator.get_data_quality_score([full, bare]) == pytest.approx(0.7)
    assert validator.get_data_quality_score([]) == 0.0


def test_normalize_phone():
    assert normalize_phone(" 02.555.1234 ") == "02-555-1234"
