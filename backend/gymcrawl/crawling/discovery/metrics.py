"""
Crawl Metrics - Per-source request counters and response timing
"""

import asyncio
import time
from datetime import datetime
from typing import Dict, Optional, Any

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)


class SourceMetrics(BaseModel):
    """Counters for one source"""
    source: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    blocked_requests: int = 0
    empty_results: int = 0
    average_response_time: float = 0.0
    average_confidence: float = 0.0
    success_rate: float = 0.0
    block_rate: float = 0.0
    last_used: Optional[datetime] = None


class CrawlMetricsCollector:
    """Collects request outcomes for every source"""

    def __init__(self):
        self.sources: Dict[str, SourceMetrics] = {}
        self._lock = asyncio.Lock()

    def _metrics(self, source: str) -> SourceMetrics:
        if source not in self.sources:
            self.sources[source] = SourceMetrics(source=source)
        return self.sources[source]

    async def record_start(self, source: str) -> float:
        async with self._lock:
            metrics = self._metrics(source)
            metrics.total_requests += 1
            metrics.last_used = datetime.utcnow()
        return time.monotonic()

    async def record_success(
        self,
        source: str,
        started: float,
        confidence: Optional[float] = None
    ):
        """Record a completed request; a None confidence means nothing was found"""
        elapsed = time.monotonic() - started
        async with self._lock:
            metrics = self._metrics(source)
            metrics.successful_requests += 1
            if confidence is None:
                metrics.empty_results += 1
            else:
                found = metrics.successful_requests - metrics.empty_results
                metrics.average_confidence += (confidence - metrics.average_confidence) / found
            self._update_timing(metrics, elapsed)
            self._update_rates(metrics)

    async def record_failure(self, source: str, started: float, blocked: bool = False):
        elapsed = time.monotonic() - started
        async with self._lock:
            metrics = self._metrics(source)
            metrics.failed_requests += 1
            if blocked:
                metrics.blocked_requests += 1
            self._update_timing(metrics, elapsed)
            self._update_rates(metrics)

    def _update_timing(self, metrics: SourceMetrics, elapsed: float):
        finished = metrics.successful_requests + metrics.failed_requests
        metrics.average_response_time += (elapsed - metrics.average_response_time) / finished

    def _update_rates(self, metrics: SourceMetrics):
        if metrics.total_requests:
            metrics.success_rate = metrics.successful_requests / metrics.total_requests
            metrics.block_rate = metrics.blocked_requests / metrics.total_requests

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of every source's counters"""
        return {name: metrics.model_dump(mode="json") for name, metrics in self.sources.items()}

    def reset(self):
        self.sources.clear()
