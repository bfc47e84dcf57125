"""
Batch Scheduler - Sequential batches with bounded in-batch concurrency and adaptive sizing
"""

import asyncio
import time
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

import structlog
from pydantic import BaseModel, Field

from gymcrawl.models import CrawlProgress

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class BatchStatus(str, Enum):
    """Status of batch processing"""
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"  # Some items completed, some failed


class BatchSchedulerConfig(BaseModel):
    """Configuration for the batch scheduler"""
    batch_size: int = Field(default=5, ge=1)
    min_batch_size: int = Field(default=1, ge=1)
    max_batch_size: int = Field(default=20, ge=1)
    max_concurrent: int = Field(default=1, ge=1)
    batch_delay_seconds: float = 10.0
    low_success_delay_seconds: Optional[float] = None
    success_threshold: float = 0.8  # A batch below this success rate counts as failed
    max_consecutive_failures: int = 3
    growth_after_successes: int = 3
    adaptive: bool = True


class BatchRecord(BaseModel):
    """Outcome of one batch"""
    number: int
    size: int
    status: BatchStatus
    succeeded: int = 0
    failed: int = 0
    success_rate: float = 0.0
    started_at: datetime = Field(default_factory=datetime.utcnow)
    processing_time_seconds: float = 0.0


class BatchMetrics(BaseModel):
    """Metrics for batch processing"""
    total_batches: int = 0
    completed_batches: int = 0
    failed_batches: int = 0
    partial_batches: int = 0
    total_items_processed: int = 0
    successful_items: int = 0
    failed_items: int = 0
    average_batch_size: float = 0.0
    average_processing_time: float = 0.0
    success_rate: float = 0.0
    shrink_events: int = 0
    growth_events: int = 0


class BatchScheduler(Generic[T, R]):
    """Runs a worker over items in sequential batches"""

    def __init__(
        self,
        config: Optional[BatchSchedulerConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.config = config or BatchSchedulerConfig()
        self.metrics = BatchMetrics()
        self.batch_history: List[BatchRecord] = []
        self.current_batch_size = self.config.batch_size
        self.results: List[Optional[R]] = []
        self.max_in_flight = 0

        self._semaphore = asyncio.Semaphore(self.config.max_concurrent)
        self._sleep = sleep
        self._in_flight = 0
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._completed = 0
        self._total = 0
        self._started: Optional[float] = None

        logger.info("Batch scheduler initialized",
                    batch_size=self.config.batch_size,
                    max_concurrent=self.config.max_concurrent,
                    batch_delay=self.config.batch_delay_seconds)

    @property
    def batches_run(self) -> int:
        return len(self.batch_history)

    async def process(
        self,
        items: Sequence[T],
        worker: Callable[[T], Awaitable[R]],
        on_item_error: Optional[Callable[[T, Exception], R]] = None,
        on_progress: Optional[Callable[[CrawlProgress], None]] = None,
        is_success: Optional[Callable[[R], bool]] = None
    ) -> List[Optional[R]]:
        """
        Process all items

        Each item's result lands in its own slot of ``self.results``, so a
        caller that cancels the run can still read the completed slots.

        Args:
            items: Work items, processed in order of batches
            worker: Coroutine function applied to every item
            on_item_error: Builds a substitute result for a failed item
            on_progress: Called after every finished item
            is_success: Whether a returned result counts as a success; any result does by default

        Returns:
            Results aligned with items; failed items hold the substitute or None
        """
        self.results = [None] * len(items)
        self._total = len(items)
        self._completed = 0
        self._started = time.monotonic()

        index = 0
        batch_number = 0
        while index < len(items):
            batch_number += 1
            end = min(index + self.current_batch_size, len(items))
            record = await self._process_batch(
                batch_number, items, range(index, end), worker, on_item_error, on_progress, is_success
            )
            index = end

            self._adapt(record)

            if index < len(items):
                delay = self.config.batch_delay_seconds
                if record.status != BatchStatus.COMPLETED and self.config.low_success_delay_seconds is not None:
                    delay = self.config.low_success_delay_seconds
                if delay > 0:
                    await self._sleep(delay)

        logger.info("Batch run completed",
                    batches=self.batches_run,
                    items=len(items),
                    successful=self.metrics.successful_items,
                    failed=self.metrics.failed_items)
        return self.results

    async def _process_batch(
        self,
        number: int,
        items: Sequence[T],
        indices: range,
        worker: Callable[[T], Awaitable[R]],
        on_item_error: Optional[Callable[[T, Exception], R]],
        on_progress: Optional[Callable[[CrawlProgress], None]],
        is_success: Optional[Callable[[R], bool]] = None
    ) -> BatchRecord:
        started_at = datetime.utcnow()
        started = time.monotonic()

        logger.info("Starting batch", batch=number, size=len(indices))

        async def process_item(slot: int) -> bool:
            async with self._semaphore:
                self._in_flight += 1
                self.max_in_flight = max(self.max_in_flight, self._in_flight)
                try:
                    result = await worker(items[slot])
                    self.results[slot] = result
                    return is_success is None or is_success(result)
                except Exception as e:
                    logger.warning("Batch item failed",
                                   batch=number,
                                   slot=slot,
                                   error=str(e),
                                   error_type=type(e).__name__)
                    if on_item_error is not None:
                        self.results[slot] = on_item_error(items[slot], e)
                    return False
                finally:
                    self._in_flight -= 1
                    self._completed += 1
                    if on_progress is not None:
                        on_progress(self.progress())

        outcomes = await asyncio.gather(*(process_item(slot) for slot in indices))

        succeeded = sum(1 for ok in outcomes if ok)
        failed = len(outcomes) - succeeded
        success_rate = succeeded / len(outcomes) if outcomes else 1.0

        if failed == 0:
            status = BatchStatus.COMPLETED
        elif success_rate < self.config.success_threshold:
            status = BatchStatus.FAILED
        else:
            status = BatchStatus.PARTIAL

        record = BatchRecord(
            number=number,
            size=len(indices),
            status=status,
            succeeded=succeeded,
            failed=failed,
            success_rate=success_rate,
            started_at=started_at,
            processing_time_seconds=time.monotonic() - started
        )
        self.batch_history.append(record)
        self._update_metrics(record)

        logger.info("Batch processing completed",
                    batch=number,
                    status=status.value,
                    successful=succeeded,
                    failed=failed,
                    processing_time=record.processing_time_seconds)
        return record

    def _adapt(self, record: BatchRecord):
        """Shrink after K failed batches in a row, grow after M clean ones"""
        if not self.config.adaptive:
            return

        if record.status == BatchStatus.FAILED:
            self._consecutive_failures += 1
            self._consecutive_successes = 0
            if self._consecutive_failures >= self.config.max_consecutive_failures:
                new_size = max(self.config.min_batch_size, self.current_batch_size // 2)
                if new_size != self.current_batch_size:
                    logger.warning("Shrinking batch size",
                                   old_size=self.current_batch_size,
                                   new_size=new_size,
                                   consecutive_failures=self._consecutive_failures)
                    self.current_batch_size = new_size
                    self.metrics.shrink_events += 1
                self._consecutive_failures = 0
            return

        self._consecutive_failures = 0
        if record.status == BatchStatus.COMPLETED:
            self._consecutive_successes += 1
            if self._consecutive_successes >= self.config.growth_after_successes:
                new_size = min(self.config.max_batch_size, self.current_batch_size + 1)
                if new_size != self.current_batch_size:
                    logger.info("Growing batch size",
                                old_size=self.current_batch_size,
                                new_size=new_size)
                    self.current_batch_size = new_size
                    self.metrics.growth_events += 1
                self._consecutive_successes = 0
        else:
            self._consecutive_successes = 0

    def _update_metrics(self, record: BatchRecord):
        """Update processing metrics"""
        metrics = self.metrics
        metrics.total_batches += 1
        metrics.total_items_processed += record.size
        metrics.successful_items += record.succeeded
        metrics.failed_items += record.failed

        if record.status == BatchStatus.COMPLETED:
            metrics.completed_batches += 1
        elif record.status == BatchStatus.FAILED:
            metrics.failed_batches += 1
        else:
            metrics.partial_batches += 1

        metrics.average_batch_size = metrics.total_items_processed / metrics.total_batches
        metrics.average_processing_time = (
            sum(b.processing_time_seconds for b in self.batch_history) / len(self.batch_history)
        )
        metrics.success_rate = metrics.successful_items / metrics.total_items_processed

    def progress(self) -> CrawlProgress:
        """Progress with ETA = elapsed * (total / current)"""
        current, total = self._completed, self._total
        percentage = round(current / total * 100, 2) if total else 0.0
        eta = None
        if current and self._started is not None:
            elapsed = time.monotonic() - self._started
            eta = elapsed * (total / current)
        return CrawlProgress(current=current, total=total, percentage=percentage, eta_seconds=eta)

    def get_status(self) -> Dict[str, Any]:
        """Get current batch scheduler status"""
        return {
            "config": self.config.model_dump(),
            "metrics": self.metrics.model_dump(),
            "current_batch_size": self.current_batch_size,
            "batches_run": self.batches_run,
            "in_flight": self._in_flight,
            "max_in_flight": self.max_in_flight,
            "progress": self.progress().model_dump()
        }
