import json

import pytest

from gymcrawl.core.exceptions import ConfigurationException
from gymcrawl.models import CanonicalRecord
from gymcrawl.store import JsonFileStore, load_baseline


def test_missing_file_reads_as_empty(tmp_path):
    assert JsonFileStore(tmp_path / "absent.json").read() == []


@pytest.mark.parametrize("content", ["{not json", json.dumps({"name": "ABC Gym"})])
def test_unreadable_file_is_rejected(tmp_path, content):
    path = tmp_path / "gyms.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigurationException) as exc_info:
        JsonFileStore(path).read()

    assert exc_info.value.error_code == "INVALID_STORE_FILE"


def test_write_creates_parent_directories_and_keeps_korean(tmp_path):
    path = tmp_path / "data" / "gyms.json"
    store = JsonFileStore(path)

    store.write([
        CanonicalRecord(name="강남 피트니스", address="서울특별시 강남구", source="naver", confidence=0.8),
        {"name": "Raw Row", "address": "1 Main St"},
    ])

    assert "강남 피트니스" in path.read_text(encoding="utf-8")
    rows = store.read()
    assert [row["name"] for row in rows] == ["강남 피트니스", "Raw Row"]
    assert rows[0]["confidence"] == 0.8


def test_load_baseline_skips_unusable_rows(tmp_path):
    path = tmp_path / "gyms.json"
    path.write_text(json.dumps([
        {"name": " ABC Gym ", "address": "1 Main St", "phone": "02 555 1234"},
        {"name": "", "address": "Nowhere"},
        {"name": "Bad", "address": "Y", "latitude": "north"},
        {"name": "Too Sure", "address": "Z", "confidence": 7.5},
        "not a row",
    ]), encoding="utf-8")

    records, skipped = load_baseline(JsonFileStore(path))

    assert skipped == 3
    assert len(records) == 1
    assert records[0].name == "ABC Gym"
    assert records[0].phone == "02-555-1234"
