"""
Crawling Service - One full crawl run: public data, search, fusion, persistence
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar, Union

from pydantic import ValidationError

from gymcrawl.core.config import CrawlConfig, settings
from gymcrawl.core.exceptions import (
    AlreadyRunningError,
    ConfigurationException,
    PhaseTimeoutError,
    ValidationException,
)
from gymcrawl.core.logging import get_logger, setup_logging
from gymcrawl.crawling.extraction.batch_processor import BatchScheduler, BatchSchedulerConfig
from gymcrawl.crawling.extraction.fallback_chain import MinimalObservationStrategy, is_minimal
from gymcrawl.crawling.orchestrator import SearchOrchestrator
from gymcrawl.crawling.sources.registry import SourceRegistry, build_default_registry
from gymcrawl.crawling.standardization.data_validator import DataValidator
from gymcrawl.crawling.standardization.record_matcher import RecordMatcher
from gymcrawl.models import (
    CanonicalRecord,
    CrawlError,
    CrawlProgress,
    Observation,
    RawBaselineRecord,
    RunResult,
    entity_key,
)
from gymcrawl.store import JsonFileStore, RecordStore, load_baseline

logger = get_logger(__name__)

T = TypeVar("T")

Target = Union[RawBaselineRecord, Dict[str, Any]]


class CrawlingService:
    """
    Runs crawls end to end

    A service runs one crawl at a time; starting a second while the first
    is active raises AlreadyRunningError.
    """

    def __init__(
        self,
        config: Optional[CrawlConfig] = None,
        store: Optional[RecordStore] = None,
        registry: Optional[SourceRegistry] = None,
        orchestrator: Optional[SearchOrchestrator] = None,
        validator: Optional[DataValidator] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.config = config or CrawlConfig.from_settings()
        self.store = store
        self.registry = registry or build_default_registry(self.config)
        self.orchestrator = orchestrator or SearchOrchestrator(self.registry, self.config, sleep=sleep)
        self.validator = validator or DataValidator()
        self._sleep = sleep

        self.is_running = False
        self.current_step = "idle"
        self.start_time: Optional[datetime] = None
        self.progress = CrawlProgress()
        self.errors: List[CrawlError] = []
        self.scheduler: Optional[BatchScheduler[RawBaselineRecord, Observation]] = None

    async def run(
        self,
        targets: Optional[Sequence[Target]] = None,
        config: Optional[CrawlConfig] = None
    ) -> RunResult:
        """
        Crawl and fuse

        Args:
            targets: Facilities to search for; defaults to the store's baseline
            config: Run configuration, defaults to the service configuration

        Returns:
            Canonical records, statistics, collected errors and conflicts

        Raises:
            AlreadyRunningError: If a run is already in progress
        """
        if self.is_running:
            raise already_running(self.start_time)

        self.is_running = True
        self.start_time = datetime.utcnow()
        self.errors = []
        self.progress = CrawlProgress()
        started = time.monotonic()
        snapshot = None

        logger.info("Crawl run started", targets=len(targets) if targets is not None else None)

        try:
            if config is not None and config is not self.config:
                snapshot = self.orchestrator.snapshot()
                self.orchestrator.configure(config)
            else:
                config = self.config

            self.current_step = "load"
            baseline, invalid = self._prepare_baseline(targets)

            self.current_step = "public_api"
            public = await self._collect_public(config)

            self.current_step = "crawl"
            crawled, stubs = await self._crawl(baseline, config)

            self.current_step = "merge"
            observations, skipped = self._validate_observations(public + crawled)
            matcher = RecordMatcher(duplicate_threshold=config.duplicate_threshold, validator=self.validator)
            outcome = matcher.merge(baseline, observations)

            if self.store is not None and config.persist:
                self.current_step = "persist"
                self._persist(outcome.records)

            statistics = outcome.statistics
            statistics.invalid_skipped = invalid + skipped
            statistics.public_records = len(public)
            statistics.processing_time_ms = int((time.monotonic() - started) * 1000)

            logger.info("Crawl run completed",
                        results=len(outcome.records),
                        merged=statistics.successfully_merged,
                        fallback_used=statistics.fallback_used,
                        fallback_stubs=stubs,
                        duplicates_removed=statistics.duplicates_removed,
                        quality_score=statistics.quality_score,
                        errors=len(self.errors),
                        processing_time_ms=statistics.processing_time_ms)

            return RunResult(
                results=outcome.records,
                statistics=statistics,
                errors=list(self.errors),
                conflicts=outcome.conflicts,
                source_metrics=self.orchestrator.metrics.get_metrics()
            )
        finally:
            if snapshot is not None:
                self.orchestrator.restore(snapshot)
            self.is_running = False
            self.current_step = "idle"

    def _prepare_baseline(self, targets: Optional[Sequence[Target]]) -> Tuple[List[RawBaselineRecord], int]:
        if targets is None:
            if self.store is None:
                return [], 0
            return load_baseline(self.store, self.validator)

        baseline: List[RawBaselineRecord] = []
        invalid = 0
        for target in targets:
            try:
                # Raw values are checked before the model clamps them
                self.validator.ensure_valid(target, require_source=False)
                record = target if isinstance(target, RawBaselineRecord) else RawBaselineRecord(**target)
            except (ValidationError, ValidationException) as e:
                invalid += 1
                self._record_error("load", e, target=_target_name(target))
                continue
            baseline.append(self.validator.normalize_record(record))
        return baseline, invalid

    async def _collect_public(self, config: CrawlConfig) -> List[Observation]:
        public_api = self.registry.public_api
        if not config.include_public_api or public_api is None or not public_api.enabled:
            return []

        if not public_api.api_key:
            self._record_error("public_api", ConfigurationException(
                "Public API key is not configured; source skipped",
                error_code="MISSING_API_KEY"
            ))

        ok, public = await self._run_phase(
            "public_api",
            public_api.collect_all(),
            config.bulk_phase_timeout_seconds
        )
        return public if ok else []

    async def _crawl(self, baseline: List[RawBaselineRecord], config: CrawlConfig) -> Tuple[List[Observation], int]:
        """
        Search every baseline record in scheduled batches

        Minimal stubs are dropped here; their targets reach the merge
        unmatched and are carried through as baseline records.
        """
        if not baseline:
            return [], 0

        scheduler: BatchScheduler[RawBaselineRecord, Observation] = BatchScheduler(
            BatchSchedulerConfig(
                batch_size=config.batch_size,
                max_concurrent=config.max_concurrent,
                batch_delay_seconds=config.batch_delay_seconds,
                low_success_delay_seconds=config.low_success_delay_seconds
            ),
            sleep=self._sleep
        )
        self.scheduler = scheduler
        minimal = MinimalObservationStrategy()
        errors_before = len(self.orchestrator.errors)

        async def worker(target: RawBaselineRecord) -> Observation:
            return await self.orchestrator.search(target.name, target.address)

        def on_item_error(target: RawBaselineRecord, error: Exception) -> Observation:
            self._record_error("crawl", error, target=target.name)
            return minimal.build(target.name, target.address)

        def on_progress(progress: CrawlProgress):
            self.progress = progress

        await self._run_phase(
            "crawl",
            scheduler.process(
                baseline,
                worker,
                on_item_error=on_item_error,
                on_progress=on_progress,
                is_success=lambda observation: not is_minimal(observation)
            ),
            config.bulk_phase_timeout_seconds
        )
        self.errors.extend(self.orchestrator.errors[errors_before:])

        # Completed slots survive a timeout; unfinished ones are still None
        finished = [r for r in scheduler.results if r is not None]
        observations = [r for r in finished if not is_minimal(r)]
        return observations, len(finished) - len(observations)

    def _validate_observations(self, observations: List[Observation]) -> Tuple[List[Observation], int]:
        valid: List[Observation] = []
        skipped = 0
        for observation in observations:
            normalized = self.validator.normalize_record(observation)
            try:
                self.validator.ensure_valid(normalized)
            except ValidationException as e:
                skipped += 1
                self._record_error("merge", e, target=observation.name)
                continue
            valid.append(normalized)
        return valid, skipped

    def _persist(self, records: List[CanonicalRecord]):
        """Read-merge-write: fresh records replace stored rows with the same entity key"""
        try:
            merged: Dict[str, Dict[str, Any]] = {}
            for row in self.store.read():
                merged[entity_key(row.get("name"), row.get("address"))] = row
            for record in records:
                merged[record.key] = record.model_dump(mode="json")
            self.store.write(list(merged.values()))
        except (OSError, ConfigurationException) as e:
            self._record_error("persist", e)

    async def _run_phase(self, phase: str, coro: Awaitable[T], timeout: float) -> Tuple[bool, Optional[T]]:
        """
        Await a phase under its deadline

        Timeouts and failures are recorded, never raised.

        Returns:
            Tuple of (completed, result)
        """
        try:
            return True, await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            error = PhaseTimeoutError(
                f"Phase '{phase}' exceeded {timeout}s",
                error_code="PHASE_TIMEOUT",
                details={"phase": phase, "timeout_seconds": timeout}
            )
            self._record_error(phase, error)
            return False, None
        except Exception as e:
            self._record_error(phase, e)
            return False, None

    def _record_error(self, phase: str, error: Exception, target: Optional[str] = None):
        error_code = getattr(error, "error_code", None) or type(error).__name__
        message = getattr(error, "message", None) or str(error)
        self.errors.append(CrawlError(phase=phase, error_code=error_code, message=message, target=target))
        logger.warning("Crawl error recorded",
                       phase=phase,
                       error_code=error_code,
                       error=message,
                       target=target)

    async def lookup(self, name: str, address: Optional[str] = None) -> Observation:
        """Single on-demand search; the minimal stub stands in on timeout"""
        timeout = self.config.single_lookup_timeout_seconds
        try:
            return await asyncio.wait_for(self.orchestrator.search(name, address), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Lookup timed out", target=name, timeout_seconds=timeout)
            return MinimalObservationStrategy().build(name, address)

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "current_step": self.current_step,
            "progress": self.progress.model_dump(),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "errors": [e.model_dump(mode="json") for e in self.errors],
        }

    async def close(self):
        await self.registry.close()


def _target_name(target: Target) -> Optional[str]:
    if isinstance(target, dict):
        return target.get("name")
    return getattr(target, "name", None)


def already_running(started_at: Optional[datetime]) -> AlreadyRunningError:
    return AlreadyRunningError(
        "A crawl run is already in progress",
        error_code="ALREADY_RUNNING",
        details={"started_at": started_at.isoformat() if started_at else None}
    )


# Service of the run() call in progress, if any
_active_service: Optional[CrawlingService] = None


async def run(
    targets: Optional[Sequence[Target]] = None,
    config: Optional[CrawlConfig] = None
) -> RunResult:
    """
    Crawl with a default service backed by the configured data file

    Only one call runs at a time; the services share the data file.

    Args:
        targets: Facilities to search for; defaults to the data file contents
        config: Run configuration, defaults to environment settings

    Returns:
        RunResult of the crawl

    Raises:
        AlreadyRunningError: If another run() call has not finished
    """
    global _active_service
    if _active_service is not None:
        raise already_running(_active_service.start_time)

    setup_logging()
    service = CrawlingService(config=config, store=JsonFileStore(settings.DATA_FILE_PATH))
    _active_service = service
    try:
        return await service.run(targets)
    finally:
        _active_service = None
        await service.close()
