"""
Source registry - the ordered set of adapters a crawl may use
"""

from typing import Dict, Iterator, List, Optional

import httpx
import structlog

from gymcrawl.core.config import AdapterSettings, CrawlConfig, Settings, settings as default_settings
from gymcrawl.crawling.discovery.rate_limiter import RateLimitConfig, RateLimiter
from gymcrawl.crawling.extraction.retry_handler import RetryConfig, RetryHandler
from .base import SourceAdapter
from .public_api import PublicApiAdapter
from .search_engines import SEARCH_ENGINE_ADAPTERS

logger = structlog.get_logger(__name__)


class SourceRegistry:
    """Adapters keyed by name, iterated by ascending priority"""

    def __init__(self, adapters: Optional[List[SourceAdapter]] = None):
        self._adapters: Dict[str, SourceAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: SourceAdapter):
        if adapter.name in self._adapters:
            logger.warning("Replacing registered adapter", source=adapter.name)
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> Optional[SourceAdapter]:
        return self._adapters.get(name)

    def ordered(self, include_disabled: bool = False) -> List[SourceAdapter]:
        """Adapters by priority; registration order breaks ties"""
        adapters = [a for a in self._adapters.values() if include_disabled or a.enabled]
        return sorted(adapters, key=lambda a: a.priority)

    def apply_settings(self, overrides: List[AdapterSettings]):
        for override in overrides:
            adapter = self.get(override.name)
            if adapter is None:
                logger.warning("Settings for unknown adapter ignored", source=override.name)
                continue
            adapter.apply_settings(override)

    def snapshot_settings(self) -> List[AdapterSettings]:
        """Current settings of every adapter, enabled or not"""
        return [a.current_settings() for a in self.ordered(include_disabled=True)]

    @property
    def public_api(self) -> Optional[PublicApiAdapter]:
        for adapter in self._adapters.values():
            if isinstance(adapter, PublicApiAdapter):
                return adapter
        return None

    def search_adapters(self) -> List[SourceAdapter]:
        """Ordered adapters other than the public dataset"""
        return [a for a in self.ordered() if not isinstance(a, PublicApiAdapter)]

    async def close(self):
        for adapter in self._adapters.values():
            await adapter.close()

    def __iter__(self) -> Iterator[SourceAdapter]:
        return iter(self.ordered())

    def __len__(self) -> int:
        return len(self._adapters)


def build_default_registry(
    config: CrawlConfig,
    rate_limiter: Optional[RateLimiter] = None,
    client: Optional[httpx.AsyncClient] = None,
    env: Optional[Settings] = None
) -> SourceRegistry:
    """
    Public dataset plus every search engine, configured from settings

    Args:
        config: Run configuration; its adapter overrides are applied last
        rate_limiter: Shared limiter, created when not given
        client: Shared HTTP client, each adapter creates its own when not given
        env: Environment settings for the public dataset

    Returns:
        Populated registry
    """
    env = env or default_settings
    rate_limiter = rate_limiter or RateLimiter(RateLimitConfig(
        min_interval_seconds=config.adapter_delay_min_seconds,
        jitter_seconds=max(config.adapter_delay_max_seconds - config.adapter_delay_min_seconds, 0.0),
        block_cooldown_seconds=config.block_cooldown_seconds
    ))
    retry_handler = RetryHandler(RetryConfig(
        max_attempts=max(config.max_retries, 1),
        initial_delay_seconds=config.retry_base_delay,
        max_delay_seconds=config.retry_max_delay
    ))

    registry = SourceRegistry()
    registry.register(PublicApiAdapter(
        api_key=env.SEOUL_OPENAPI_KEY,
        base_url=env.PUBLIC_API_BASE_URL,
        service=env.PUBLIC_API_SERVICE,
        page_size=env.PUBLIC_API_PAGE_SIZE,
        max_rows=env.PUBLIC_API_MAX_ROWS,
        max_response_bytes=env.PUBLIC_API_MAX_RESPONSE_BYTES,
        match_threshold=config.duplicate_threshold,
        rate_limiter=rate_limiter,
        retry_handler=retry_handler,
        client=client,
        timeout_seconds=env.REQUEST_TIMEOUT
    ))
    for adapter_class in SEARCH_ENGINE_ADAPTERS:
        registry.register(adapter_class(
            rate_limiter=rate_limiter,
            retry_handler=retry_handler,
            client=client,
            timeout_seconds=env.REQUEST_TIMEOUT,
            min_extraction_score=config.min_extraction_score
        ))

    registry.apply_settings(config.adapters)

    logger.info("Source registry built",
                adapters=[a.name for a in registry.ordered()],
                public_api_available=registry.public_api.is_available())
    return registry
