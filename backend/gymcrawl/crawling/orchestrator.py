"""
Search Orchestrator - Runs the search adapters for one facility and merges what they find
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from gymcrawl.core.config import AdapterSettings, CrawlConfig
from gymcrawl.core.exceptions import BlockedError
from gymcrawl.crawling.discovery.cache import BoundedCache, EvictionPolicy
from gymcrawl.crawling.discovery.metrics import CrawlMetricsCollector
from gymcrawl.crawling.discovery.rate_limiter import RateLimiter
from gymcrawl.crawling.extraction.fallback_chain import (
    FallbackChain,
    PublicDatasetStrategy,
    SimplifiedQueryStrategy,
    is_minimal,
)
from gymcrawl.crawling.extraction.retry_handler import RetryHandler
from gymcrawl.crawling.sources.base import HttpSourceAdapter, SourceAdapter
from gymcrawl.crawling.sources.registry import SourceRegistry
from gymcrawl.crawling.sources.search_engines import SearchEngineAdapter
from gymcrawl.crawling.standardization.record_matcher import (
    BOOLEAN_FLAGS,
    LIST_FIELDS,
    SCALAR_FIELDS,
    combine_confidence,
    is_empty,
    merge_sources,
    union_values,
)
from gymcrawl.models import CrawlError, Observation, entity_key

logger = structlog.get_logger(__name__)


def merge_observations(observations: Sequence[Observation]) -> Optional[Observation]:
    """
    Merge several adapters' observations of one facility

    The most confident observation is the base; later ones only fill
    fields the base is missing. Lists are unioned, sources joined and
    confidences combined.
    """
    if not observations:
        return None

    ranked = sorted(observations, key=lambda o: o.confidence, reverse=True)
    data = ranked[0].model_dump()

    for other in ranked[1:]:
        for field_name in SCALAR_FIELDS:
            if is_empty(data.get(field_name)) and not is_empty(getattr(other, field_name, None)):
                data[field_name] = getattr(other, field_name)
        for field_name in BOOLEAN_FLAGS:
            if data.get(field_name) is None:
                data[field_name] = getattr(other, field_name, None)

    for field_name in LIST_FIELDS:
        data[field_name] = union_values(*(getattr(o, field_name, []) for o in ranked))

    data["source"] = merge_sources(*(o.source for o in ranked))
    data["confidence"] = combine_confidence(*(o.confidence for o in ranked))
    return Observation(**data)


class SearchOrchestrator:
    """Priority-ordered multi-source search for a single target"""

    def __init__(
        self,
        registry: SourceRegistry,
        config: Optional[CrawlConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
        fallback_chain: Optional[FallbackChain] = None,
        cache: Optional[BoundedCache] = None,
        metrics: Optional[CrawlMetricsCollector] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.registry = registry
        self.config = config or CrawlConfig()
        self.adapters: List[SourceAdapter] = registry.search_adapters()
        self.rate_limiter = rate_limiter or self._shared_rate_limiter()
        self._owns_fallback_chain = fallback_chain is None
        self.fallback_chain = fallback_chain or self._build_fallback_chain()
        self.cache: BoundedCache[Observation] = cache or BoundedCache(
            max_entries=self.config.cache_max_entries,
            policy=EvictionPolicy.FIFO
        )
        self.metrics = metrics or CrawlMetricsCollector()
        self.errors: List[CrawlError] = []
        self._sleep = sleep
        self.stats: Dict[str, int] = {
            "searches": 0,
            "cache_hits": 0,
            "early_stops": 0,
            "blocks": 0,
            "fallbacks": 0,
            "adapter_errors": 0,
        }

        logger.info("Search orchestrator initialized",
                    adapters=[a.name for a in self.adapters],
                    parallel=self.config.enable_parallel,
                    high_confidence_threshold=self.config.high_confidence_threshold)

    def configure(self, config: CrawlConfig, adapter_settings: Optional[List[AdapterSettings]] = None):
        """
        Apply a run configuration to adapters, pacing, retries and cache

        Args:
            config: Run configuration
            adapter_settings: Adapter overrides to apply instead of config.adapters
        """
        self.config = config
        self.registry.apply_settings(config.adapters if adapter_settings is None else adapter_settings)
        self.adapters = self.registry.search_adapters()

        for limiter in self._rate_limiters():
            limiter.update_configs(
                block_cooldown_seconds=config.block_cooldown_seconds,
                jitter_seconds=max(config.adapter_delay_max_seconds - config.adapter_delay_min_seconds, 0.0)
            )
        for handler in self._retry_handlers():
            handler.default_config = handler.default_config.model_copy(update={
                "max_attempts": max(config.max_retries, 1),
                "initial_delay_seconds": config.retry_base_delay,
                "max_delay_seconds": config.retry_max_delay,
            })
        for adapter in self.registry.ordered(include_disabled=True):
            if isinstance(adapter, SearchEngineAdapter):
                adapter.min_extraction_score = config.min_extraction_score
        if self.registry.public_api is not None:
            self.registry.public_api.match_threshold = config.duplicate_threshold

        if self.cache.max_entries != config.cache_max_entries:
            self.cache = BoundedCache(max_entries=config.cache_max_entries, policy=self.cache.policy)
        if self._owns_fallback_chain:
            usage = self.fallback_chain.usage
            self.fallback_chain = self._build_fallback_chain()
            self.fallback_chain.usage = usage

        logger.info("Search orchestrator configured",
                    adapters=[a.name for a in self.adapters],
                    parallel=config.enable_parallel,
                    max_retries=config.max_retries)

    def snapshot(self) -> Dict[str, Any]:
        """Everything configure() changes, for restore()"""
        return {
            "config": self.config,
            "adapters": self.registry.snapshot_settings(),
            "rate_limits": [
                (limiter, limiter.default_config, dict(limiter.configs))
                for limiter in self._rate_limiters()
            ],
            "retries": [(handler, handler.default_config) for handler in self._retry_handlers()],
        }

    def restore(self, snapshot: Dict[str, Any]):
        self.configure(snapshot["config"], adapter_settings=snapshot["adapters"])
        for limiter, default_config, configs in snapshot["rate_limits"]:
            limiter.default_config = default_config
            limiter.configs = configs
        for handler, default_config in snapshot["retries"]:
            handler.default_config = default_config

    def _rate_limiters(self) -> List[RateLimiter]:
        limiters = [self.rate_limiter]
        for adapter in self.registry.ordered(include_disabled=True):
            if isinstance(adapter, HttpSourceAdapter) and adapter.rate_limiter not in limiters:
                limiters.append(adapter.rate_limiter)
        return limiters

    def _retry_handlers(self) -> List[RetryHandler]:
        handlers: List[RetryHandler] = []
        for adapter in self.registry.ordered(include_disabled=True):
            if isinstance(adapter, HttpSourceAdapter) and adapter.retry_handler not in handlers:
                handlers.append(adapter.retry_handler)
        return handlers

    def _shared_rate_limiter(self) -> RateLimiter:
        for adapter in self.adapters:
            if isinstance(adapter, HttpSourceAdapter):
                return adapter.rate_limiter
        return RateLimiter()

    def _build_fallback_chain(self) -> FallbackChain:
        """Secondary adapter with a bare name query, then the public dataset, then the stub"""
        chain = FallbackChain()
        if len(self.adapters) > 1:
            chain.add_strategy(SimplifiedQueryStrategy(
                self.adapters[-1],
                priority=10,
                blocked=self.rate_limiter.is_cooling_down
            ))
        public_api = self.registry.public_api
        if public_api is not None:
            chain.add_strategy(PublicDatasetStrategy(public_api, priority=20))
        return chain

    async def search(self, name: str, address: Optional[str] = None) -> Observation:
        """
        Search every adapter for one facility

        Args:
            name: Facility name
            address: Facility address, if known

        Returns:
            Merged observation; the fallback chain guarantees one is always returned
        """
        key = entity_key(name, address)
        cached = await self.cache.get(key)
        if cached is not None:
            self.stats["cache_hits"] += 1
            logger.debug("Search cache hit", target=name)
            return cached

        self.stats["searches"] += 1
        if self.config.enable_parallel:
            results, blocked = await self._search_parallel(name, address)
        else:
            results, blocked = await self._search_sequential(name, address)

        if blocked or not results:
            fallback = await self.fallback_chain.execute_with_details(name, address)
            self.stats["fallbacks"] += 1
            # The stub only stands in when nothing real was found
            if not results or not is_minimal(fallback.observation):
                results.append(fallback.observation)

        merged = merge_observations(results)
        if not is_minimal(merged):
            await self.cache.set(key, merged)

        logger.info("Search completed",
                    target=name,
                    sources=merged.source,
                    confidence=merged.confidence,
                    blocked=blocked)
        return merged

    async def _search_sequential(
        self,
        name: str,
        address: Optional[str]
    ) -> Tuple[List[Observation], bool]:
        """Adapters one at a time with randomized spacing; stops on high confidence or a block"""
        results: List[Observation] = []
        called = False

        for adapter in self.adapters:
            if not self._usable(adapter, name):
                continue

            if called:
                await self._inter_adapter_delay()
            called = True

            try:
                observation = await self._call(adapter, name, address)
            except BlockedError:
                return results, True

            if observation is None:
                continue
            results.append(observation)

            if observation.confidence > self.config.high_confidence_threshold:
                self.stats["early_stops"] += 1
                logger.info("High confidence result, stopping early",
                            target=name,
                            source=adapter.name,
                            confidence=observation.confidence)
                break

        return results, False

    async def _search_parallel(
        self,
        name: str,
        address: Optional[str]
    ) -> Tuple[List[Observation], bool]:
        """Every usable adapter at once, bounded by the concurrency limit"""
        semaphore = asyncio.Semaphore(self.config.max_concurrent)
        blocked = False

        async def run(adapter: SourceAdapter) -> Optional[Observation]:
            nonlocal blocked
            async with semaphore:
                try:
                    return await self._call(adapter, name, address)
                except BlockedError:
                    blocked = True
                    return None

        adapters = [a for a in self.adapters if self._usable(a, name)]
        outcomes = await asyncio.gather(*(run(a) for a in adapters))
        return [o for o in outcomes if o is not None], blocked

    def _usable(self, adapter: SourceAdapter, name: str) -> bool:
        if not adapter.is_available():
            return False
        if self.rate_limiter.is_cooling_down(adapter.name):
            logger.info("Skipping adapter in cooldown", source=adapter.name, target=name)
            return False
        return True

    async def _call(
        self,
        adapter: SourceAdapter,
        name: str,
        address: Optional[str]
    ) -> Optional[Observation]:
        """
        One adapter call with metrics

        BlockedError starts the source cooldown and is re-raised; every
        other failure is logged and reads as "nothing found".
        """
        started = await self.metrics.record_start(adapter.name)
        try:
            observation = await adapter.search(name, address)
        except BlockedError as e:
            await self.metrics.record_failure(adapter.name, started, blocked=True)
            await self.rate_limiter.record_block(adapter.name)
            self.stats["blocks"] += 1
            self.errors.append(CrawlError(
                phase="crawl",
                error_code=e.error_code,
                message=e.message,
                target=name
            ))
            logger.warning("Adapter blocked", source=adapter.name, target=name)
            raise
        except Exception as e:
            await self.metrics.record_failure(adapter.name, started)
            self.stats["adapter_errors"] += 1
            self.errors.append(CrawlError(
                phase="crawl",
                error_code=getattr(e, "error_code", None) or type(e).__name__,
                message=str(e),
                target=name
            ))
            logger.warning("Adapter search failed",
                           source=adapter.name,
                           target=name,
                           error=str(e),
                           error_type=type(e).__name__)
            return None

        await self.metrics.record_success(
            adapter.name,
            started,
            observation.confidence if observation is not None else None
        )
        return observation

    async def _inter_adapter_delay(self):
        low = self.config.adapter_delay_min_seconds
        high = max(self.config.adapter_delay_max_seconds, low)
        delay = random.uniform(low, high)
        if delay > 0:
            await self._sleep(delay)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "cache": self.cache.stats(),
            "fallback_usage": dict(self.fallback_chain.usage),
        }
