"""
Run-level models: statistics, progress and the result envelope
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .facility import CanonicalRecord, Conflict


class RunStatistics(BaseModel):
    """Counters for a finished run"""
    total_processed: int = 0
    successfully_merged: int = 0
    fallback_used: int = 0
    duplicates_removed: int = 0
    quality_score: float = 0.0
    processing_time_ms: int = 0
    invalid_skipped: int = 0
    public_records: int = 0


class CrawlProgress(BaseModel):
    """Progress of a batch run"""
    current: int = 0
    total: int = 0
    percentage: float = 0.0
    eta_seconds: Optional[float] = None


class CrawlError(BaseModel):
    """Error collected during a run without aborting it"""
    phase: str
    error_code: Optional[str] = None
    message: str
    target: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class RunResult(BaseModel):
    """What run() hands back to the caller"""
    results: List[CanonicalRecord] = Field(default_factory=list)
    statistics: RunStatistics = Field(default_factory=RunStatistics)
    errors: List[CrawlError] = Field(default_factory=list)
    conflicts: List[Conflict] = Field(default_factory=list)
    source_metrics: Dict[str, Any] = Field(default_factory=dict)
