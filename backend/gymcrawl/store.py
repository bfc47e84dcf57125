"""
Record stores - where baseline records come from and canonical records go
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import structlog
from pydantic import ValidationError

from gymcrawl.core.config import get_absolute_path
from gymcrawl.core.exceptions import ConfigurationException
from gymcrawl.crawling.standardization.data_validator import DataValidator
from gymcrawl.models import FacilityRecord, RawBaselineRecord

logger = structlog.get_logger(__name__)


class RecordStore(ABC):
    """Plain read/write contract for facility records"""

    @abstractmethod
    def read(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def write(self, records: Sequence[Union[Dict[str, Any], FacilityRecord]]) -> None:
        pass


class JsonFileStore(RecordStore):
    """
    JSON array file on disk

    read() loads the whole array and write() replaces it. Nothing is
    locked and the write is not atomic: two writers interleaving a
    read-merge-write will lose one side's changes.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = get_absolute_path(str(path))

    def read(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            logger.info("Store file missing, starting empty", path=str(self.path))
            return []

        with open(self.path, "r", encoding="utf-8") as f:
            try:
                document = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationException(
                    f"Store file is not valid JSON: {self.path}",
                    error_code="INVALID_STORE_FILE",
                    details={"path": str(self.path), "error": str(e)}
                ) from e

        if not isinstance(document, list):
            raise ConfigurationException(
                f"Store file must hold a JSON array: {self.path}",
                error_code="INVALID_STORE_FILE",
                details={"path": str(self.path)}
            )
        return [row for row in document if isinstance(row, dict)]

    def write(self, records: Sequence[Union[Dict[str, Any], FacilityRecord]]) -> None:
        rows = [
            r.model_dump(mode="json") if isinstance(r, FacilityRecord) else r
            for r in records
        ]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(rows, f, ensure_ascii=False, indent=2)

        logger.info("Store written", path=str(self.path), records=len(rows))


def load_baseline(
    store: RecordStore,
    validator: Optional[DataValidator] = None
) -> Tuple[List[RawBaselineRecord], int]:
    """
    Read baseline records, skipping rows that cannot be used

    Args:
        store: Source of raw rows
        validator: Validator used to reject incomplete rows

    Returns:
        Tuple of (valid baseline records, number of skipped rows)
    """
    validator = validator or DataValidator()
    records: List[RawBaselineRecord] = []
    skipped = 0

    for row in store.read():
        # Raw values are checked before the model clamps them
        if not validator.is_valid(row, require_source=False):
            skipped += 1
            logger.warning("Baseline row skipped", name=row.get("name"), error="failed validation")
            continue

        try:
            record = RawBaselineRecord(**row)
        except ValidationError as e:
            skipped += 1
            logger.warning("Baseline row skipped", name=row.get("name"), error=str(e))
            continue

        records.append(validator.normalize_record(record))

    logger.info("Baseline loaded", records=len(records), skipped=skipped)
    return records, skipped
