import pytest

from gymcrawl.core.config import AdapterSettings
from gymcrawl.core.exceptions import BlockedError
from gymcrawl.crawling.extraction.fallback_chain import MINIMAL_SOURCE
from gymcrawl.crawling.orchestrator import SearchOrchestrator, merge_observations
from gymcrawl.crawling.sources.search_engines import GoogleSearchAdapter, NaverSearchAdapter
from gymcrawl.models import Observation


def obs(source, confidence, **fields):
    data = {"name": "ABC Gym", "address": "1 Main St", **fields}
    return Observation(source=source, confidence=confidence, **data)


@pytest.fixture
def make_orchestrator(make_registry, crawl_config, rate_limiter, fake_sleep):
    def _make(*adapters, **config_overrides):
        config = crawl_config.model_copy(update=config_overrides)
        return SearchOrchestrator(
            make_registry(*adapters),
            config=config,
            rate_limiter=rate_limiter,
            sleep=fake_sleep
        )
    return _make


def test_merge_observations_fills_gaps_from_weaker_results():
    strong = obs("naver", 0.65, rating=4.5, facilities=["헬스장"], has_parking=None)
    weak = obs("google", 0.6, phone="02-555-1234", rating=3.0, facilities=["주차장", "헬스장"], has_parking=True)

    merged = merge_observations([weak, strong])

    assert merged.rating == 4.5
    assert merged.phone == "02-555-1234"
    assert merged.has_parking is True
    assert merged.facilities == ["헬스장", "주차장"]
    assert merged.source == "naver + google"
    assert merged.confidence == 0.65
    assert merge_observations([]) is None


@pytest.mark.asyncio
async def test_high_confidence_result_stops_search(make_orchestrator, make_adapter):
    first = make_adapter("naver", 2, [obs("naver", 0.9)])
    second = make_adapter("google", 3, [obs("google", 0.6)])
    orchestrator = make_orchestrator(second, first)

    result = await orchestrator.search("ABC Gym", "1 Main St")

    assert result.source == "naver"
    assert result.confidence == 0.9
    assert second.calls == []
    assert orchestrator.stats["early_stops"] == 1


@pytest.mark.asyncio
async def test_low_confidence_results_are_merged(make_orchestrator, make_adapter):
    first = make_adapter("naver", 2, [obs("naver", 0.6, phone="02-555-1234")])
    second = make_adapter("google", 3, [obs("google", 0.65, rating=4.2)])
    orchestrator = make_orchestrator(first, second)

    result = await orchestrator.search("ABC Gym", "1 Main St")

    assert result.source == "google + naver"
    assert result.confidence == 0.65
    assert result.phone == "02-555-1234"
    assert result.rating == 4.2


@pytest.mark.asyncio
async def test_adapter_failure_does_not_stop_search(make_orchestrator, make_adapter):
    broken = make_adapter("naver", 2, [RuntimeError("parser exploded")])
    working = make_adapter("google", 3, [obs("google", 0.6)])
    orchestrator = make_orchestrator(broken, working)

    result = await orchestrator.search("ABC Gym", "1 Main St")

    assert result.source == "google"
    assert orchestrator.stats["adapter_errors"] == 1
    assert [(e.phase, e.error_code, e.target) for e in orchestrator.errors] == [
        ("crawl", "RuntimeError", "ABC Gym")
    ]
    assert orchestrator.metrics.get_metrics()["naver"]["failed_requests"] == 1


@pytest.mark.asyncio
async def test_block_cools_down_source_and_uses_fallback(make_orchestrator, make_adapter, rate_limiter):
    blocked = make_adapter("naver", 2, [BlockedError("403", source="naver")])
    skipped = make_adapter("google", 3, [obs("google", 0.6)])
    secondary = make_adapter("daum", 4, [obs("daum", 0.5, address="")])
    orchestrator = make_orchestrator(blocked, skipped, secondary)

    result = await orchestrator.search("ABC Gym", "1 Main St")

    assert len(blocked.calls) == 1
    assert skipped.calls == []
    assert secondary.calls == [("ABC Gym", None)]
    assert result.source == "daum"
    assert result.address == "1 Main St"
    assert result.confidence == pytest.approx(0.4)
    assert rate_limiter.is_cooling_down("naver")
    assert orchestrator.stats["blocks"] == 1
    assert orchestrator.stats["fallbacks"] == 1
    assert orchestrator.errors[0].error_code == "SOURCE_BLOCKED"


@pytest.mark.asyncio
async def test_cooling_down_source_is_skipped(make_orchestrator, make_adapter, rate_limiter):
    cooling = make_adapter("naver", 2, [obs("naver", 0.9)])
    other = make_adapter("google", 3, [obs("google", 0.6)])
    orchestrator = make_orchestrator(cooling, other)
    await rate_limiter.record_block("naver")

    result = await orchestrator.search("ABC Gym", "1 Main St")

    assert cooling.calls == []
    assert result.source == "google"


@pytest.mark.asyncio
async def test_nothing_found_yields_minimal_observation(make_orchestrator, make_adapter):
    first = make_adapter("naver", 2)
    second = make_adapter("google", 3)
    orchestrator = make_orchestrator(first, second)

    result = await orchestrator.search("ABC Gym", "1 Main St")

    assert result.source == MINIMAL_SOURCE
    assert result.confidence <= 0.1
    assert (result.name, result.address) == ("ABC Gym", "1 Main St")
    assert orchestrator.get_stats()["fallback_usage"] == {MINIMAL_SOURCE: 1}


@pytest.mark.asyncio
async def test_results_are_cached_but_stubs_are_not(make_orchestrator, make_adapter):
    adapter = make_adapter("naver", 2, [obs("naver", 0.9)])
    orchestrator = make_orchestrator(adapter)

    first = await orchestrator.search("ABC Gym", "1 Main St")
    second = await orchestrator.search("abc gym", "1  Main St")

    assert first == second
    assert len(adapter.calls) == 1
    assert orchestrator.stats["cache_hits"] == 1

    await orchestrator.search("Unknown Gym", "2 Side St")
    await orchestrator.search("Unknown Gym", "2 Side St")
    assert len(adapter.calls) == 3


@pytest.mark.asyncio
async def test_adapters_are_spaced_out(make_orchestrator, make_adapter, fake_sleep):
    first = make_adapter("naver", 2)
    second = make_adapter("google", 3, [obs("google", 0.6)])
    orchestrator = make_orchestrator(first, second, adapter_delay_min_seconds=1.5, adapter_delay_max_seconds=1.5)

    await orchestrator.search("ABC Gym", "1 Main St")

    assert fake_sleep.calls == [1.5]


@pytest.mark.asyncio
async def test_parallel_search_queries_every_adapter(make_orchestrator, make_adapter):
    first = make_adapter("naver", 2, [obs("naver", 0.9)])
    second = make_adapter("google", 3, [obs("google", 0.6, phone="02-555-1234")])
    blocked = make_adapter("daum", 4, [BlockedError("403", source="daum")])
    orchestrator = make_orchestrator(first, second, blocked, enable_parallel=True)

    result = await orchestrator.search("ABC Gym", "1 Main St")

    assert len(first.calls) == 1 and len(second.calls) == 1
    assert "naver" in result.source and "google" in result.source
    assert result.phone == "02-555-1234"
    assert result.confidence == 0.9
    assert orchestrator.stats["blocks"] == 1


def test_configure_applies_run_settings_and_restore_undoes_them(
    make_registry, crawl_config, rate_limiter, retry_handler, fake_sleep
):
    naver = NaverSearchAdapter(rate_limiter=rate_limiter, retry_handler=retry_handler)
    google = GoogleSearchAdapter(rate_limiter=rate_limiter, retry_handler=retry_handler)
    orchestrator = SearchOrchestrator(
        make_registry(naver, google),
        config=crawl_config,
        rate_limiter=rate_limiter,
        sleep=fake_sleep
    )
    snapshot = orchestrator.snapshot()

    orchestrator.configure(crawl_config.model_copy(update={
        "adapters": [
            AdapterSettings(name="naver", enabled=False),
            AdapterSettings(name="google", priority=1, delay_seconds=4.0),
        ],
        "max_retries": 5,
        "block_cooldown_seconds": 90.0,
        "cache_max_entries": 3,
        "min_extraction_score": 0.6,
    }))

    assert [a.name for a in orchestrator.adapters] == ["google"]
    assert retry_handler.default_config.max_attempts == 5
    assert rate_limiter.default_config.block_cooldown_seconds == 90.0
    assert rate_limiter.configs["google"].min_interval_seconds == 4.0
    assert rate_limiter.configs["google"].block_cooldown_seconds == 90.0
    assert orchestrator.cache.max_entries == 3
    assert google.min_extraction_score == 0.6

    orchestrator.restore(snapshot)

    assert [a.name for a in orchestrator.adapters] == ["naver", "google"]
    assert naver.enabled is True
    assert google.priority == 3
    assert retry_handler.default_config.max_attempts == 3
    assert rate_limiter.default_config.block_cooldown_seconds == 30.0
    assert "google" not in rate_limiter.configs
    assert orchestrator.cache.max_entries == crawl_config.cache_max_entries
    assert orchestrator.config is crawl_config
