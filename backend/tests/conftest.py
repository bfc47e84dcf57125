from typing import List, Optional, Union

import httpx
import pytest

from gymcrawl.core.config import CrawlConfig
from gymcrawl.crawling.discovery.rate_limiter import RateLimitConfig, RateLimiter
from gymcrawl.crawling.extraction.retry_handler import RetryConfig, RetryHandler
from gymcrawl.crawling.sources.base import SourceAdapter
from gymcrawl.crawling.sources.registry import SourceRegistry
from gymcrawl.models import Observation, RawBaselineRecord


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


class ScriptedAdapter(SourceAdapter):
    """Adapter that replays a script of observations and exceptions."""

    def __init__(
        self,
        name: str,
        priority: int,
        script: Optional[List[Union[Observation, Exception, None]]] = None,
        base_confidence: float = 0.7
    ):
        super().__init__()
        self.name = name
        self.priority = priority
        self.base_confidence = base_confidence
        self.script = list(script or [])
        self.calls: List[tuple] = []

    async def search(self, name: str, address: Optional[str] = None) -> Optional[Observation]:
        self.calls.append((name, address))
        step = self.script.pop(0) if self.script else None
        if isinstance(step, Exception):
            raise step
        return step


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def rate_limiter():
    """Limiter with no spacing so tests never wait."""
    return RateLimiter(RateLimitConfig(
        min_interval_seconds=0.0,
        jitter_seconds=0.0,
        requests_per_minute=10000
    ))


@pytest.fixture
def retry_handler(fake_sleep):
    return RetryHandler(RetryConfig(max_attempts=3, initial_delay_seconds=0.01), sleep=fake_sleep)


@pytest.fixture
def crawl_config():
    return CrawlConfig(
        batch_size=2,
        max_concurrent=2,
        batch_delay_seconds=0.0,
        adapter_delay_min_seconds=0.0,
        adapter_delay_max_seconds=0.0,
        bulk_phase_timeout_seconds=5.0,
        single_lookup_timeout_seconds=5.0,
        persist=False
    )


@pytest.fixture
def make_adapter():
    return ScriptedAdapter


@pytest.fixture
def make_registry():
    def _make(*adapters: SourceAdapter) -> SourceRegistry:
        return SourceRegistry(list(adapters))
    return _make


@pytest.fixture
def mock_client():
    """Build an AsyncClient whose requests are answered by a handler."""
    def _make(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return _make


@pytest.fixture
def sample_baseline():
    return [
        RawBaselineRecord(name="강남 피트니스", address="서울특별시 강남구 테헤란로 1", phone="02-555-1234",
                          source="gyms_raw", confidence=0.6),
        RawBaselineRecord(name="ABC Gym", address="1 Main St", confidence=0.6, source="gyms_raw"),
        RawBaselineRecord(name="X", address="Y"),
    ]


@pytest.fixture
def sample_observation():
    return Observation(
        name="ABC Gym",
        address="1 Main St.",
        phone="02-123-4567",
        rating=4.5,
        open_hour="06:00",
        close_hour="23:00",
        facilities=["샤워시설", "주차장"],
        source="naver",
        confidence=0.8
    )
