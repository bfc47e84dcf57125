import asyncio
import json

import pytest

from gymcrawl.core.config import AdapterSettings
from gymcrawl.core.exceptions import AlreadyRunningError, BlockedError
from gymcrawl.crawling.extraction.batch_processor import BatchStatus
from gymcrawl.crawling.extraction.fallback_chain import MINIMAL_SOURCE
from gymcrawl.crawling.orchestrator import SearchOrchestrator
from gymcrawl.crawling.sources.base import SourceAdapter
from gymcrawl.crawling.sources.public_api import PublicApiAdapter
from gymcrawl.service import CrawlingService, run
from gymcrawl.store import JsonFileStore, RecordStore


class DirectoryAdapter(SourceAdapter):
    """Answers from a fixed name -> observation table; blocked names wait on a gate"""

    def __init__(self, name, priority, answers, blocked_names=()):
        super().__init__()
        self.name = name
        self.priority = priority
        self.answers = answers
        self.blocked_names = set(blocked_names)
        self.gate = asyncio.Event()
        self.calls = []

    async def search(self, name, address=None):
        self.calls.append(name)
        if name in self.blocked_names:
            await self.gate.wait()
        return self.answers.get(name)


class StalledPublicApi(PublicApiAdapter):
    async def collect_all(self):
        await asyncio.Event().wait()


class BrokenStore(RecordStore):
    def read(self):
        return []

    def write(self, records):
        raise OSError("disk full")


@pytest.fixture
def naver(sample_observation):
    return DirectoryAdapter("naver", 2, {"ABC Gym": sample_observation})


@pytest.fixture
def make_service(make_registry, crawl_config, rate_limiter, fake_sleep):
    def _make(*adapters, store=None, **config_overrides):
        config = crawl_config.model_copy(update=config_overrides)
        registry = make_registry(*adapters)
        orchestrator = SearchOrchestrator(registry, config=config, rate_limiter=rate_limiter, sleep=fake_sleep)
        return CrawlingService(
            config=config,
            store=store,
            registry=registry,
            orchestrator=orchestrator,
            sleep=fake_sleep
        )
    return _make


@pytest.mark.asyncio
async def test_run_fuses_found_records_and_carries_the_rest(make_service, naver, sample_baseline):
    service = make_service(naver)

    result = await service.run(sample_baseline)

    by_name = {r.name: r for r in result.results}
    assert set(by_name) == {"강남 피트니스", "ABC Gym", "X"}

    abc = by_name["ABC Gym"]
    assert abc.source == "gyms_raw + naver"
    assert abc.phone == "02-123-4567"
    assert abc.rating == 4.5
    assert abc.confidence == 0.8
    assert abc.updated_at is not None

    assert by_name["강남 피트니스"].source == "gyms_raw"
    assert by_name["강남 피트니스"].confidence == 0.6
    assert by_name["X"].source == "gyms_raw_fallback"
    assert by_name["X"].confidence == 0.5
    assert all(r.source != MINIMAL_SOURCE for r in result.results)

    stats = result.statistics
    assert stats.total_processed == 4
    assert stats.successfully_merged == 1
    assert stats.fallback_used == 2
    assert stats.invalid_skipped == 0
    assert stats.public_records == 0
    assert stats.processing_time_ms >= 0
    assert result.errors == []
    assert [c.field for c in result.conflicts] == ["address"]
    assert result.source_metrics["naver"]["total_requests"] == 3


@pytest.mark.asyncio
async def test_run_resets_status_and_reports_progress(make_service, naver, sample_baseline):
    service = make_service(naver)

    await service.run(sample_baseline)

    status = service.get_status()
    assert status["is_running"] is False
    assert status["current_step"] == "idle"
    assert status["progress"]["current"] == 3
    assert status["progress"]["total"] == 3
    assert status["start_time"] is not None


@pytest.mark.asyncio
async def test_invalid_targets_are_counted_and_skipped(make_service, naver, sample_baseline):
    service = make_service(naver)
    targets = sample_baseline + [
        {"name": "", "address": "Nowhere"},
        {"name": "Bad", "address": "Y", "rating": "not-a-number"},
    ]

    result = await service.run(targets)

    assert len(result.results) == 3
    assert result.statistics.invalid_skipped == 2
    assert [e.phase for e in result.errors] == ["load", "load"]
    assert result.errors[0].error_code == "INVALID_RECORD"


@pytest.mark.asyncio
async def test_second_run_while_running_is_rejected(make_service, sample_observation, sample_baseline):
    gated = DirectoryAdapter("naver", 2, {"ABC Gym": sample_observation}, blocked_names={"ABC Gym"})
    service = make_service(gated)

    first = asyncio.create_task(service.run(sample_baseline))
    await asyncio.sleep(0)

    assert service.is_running
    with pytest.raises(AlreadyRunningError) as exc_info:
        await service.run(sample_baseline)
    assert exc_info.value.error_code == "ALREADY_RUNNING"

    gated.gate.set()
    result = await first

    assert len(result.results) == 3
    assert not service.is_running


@pytest.mark.asyncio
async def test_public_phase_timeout_is_recorded_not_raised(make_service, naver, sample_baseline):
    public = StalledPublicApi(api_key="test-key")
    service = make_service(naver, public, bulk_phase_timeout_seconds=0.2)

    result = await service.run(sample_baseline)

    assert result.statistics.public_records == 0
    assert [(e.phase, e.error_code) for e in result.errors] == [("public_api", "PHASE_TIMEOUT")]
    assert len(result.results) == 3


@pytest.mark.asyncio
async def test_missing_public_key_is_reported(make_service, naver, sample_baseline):
    service = make_service(naver, PublicApiAdapter(api_key=""))

    result = await service.run(sample_baseline)

    assert [(e.phase, e.error_code) for e in result.errors] == [("public_api", "MISSING_API_KEY")]
    assert result.statistics.public_records == 0


@pytest.mark.asyncio
async def test_crawl_timeout_keeps_finished_results(make_service, sample_observation, sample_baseline):
    gated = DirectoryAdapter("naver", 2, {"ABC Gym": sample_observation}, blocked_names={"X"})
    service = make_service(gated, batch_size=1, max_concurrent=1, bulk_phase_timeout_seconds=0.2)

    result = await service.run(sample_baseline)

    assert [(e.phase, e.error_code) for e in result.errors] == [("crawl", "PHASE_TIMEOUT")]
    by_name = {r.name: r for r in result.results}
    assert by_name["ABC Gym"].source == "gyms_raw + naver"
    assert by_name["X"].source == "gyms_raw_fallback"


@pytest.mark.asyncio
async def test_failed_search_is_recorded_and_target_carried(make_service, naver, sample_baseline, mocker):
    service = make_service(naver)
    mocker.patch.object(service.orchestrator, "search", side_effect=RuntimeError("search crashed"))

    result = await service.run(sample_baseline)

    assert len(result.errors) == 3
    assert {e.phase for e in result.errors} == {"crawl"}
    assert {e.error_code for e in result.errors} == {"RuntimeError"}
    assert result.statistics.fallback_used == 3


@pytest.mark.asyncio
async def test_run_persists_with_read_merge_write(make_service, naver, tmp_path):
    path = tmp_path / "gyms_raw.json"
    path.write_text(json.dumps([
        {"name": "ABC Gym", "address": "1 Main St", "source": "gyms_raw", "confidence": 0.6},
        {"name": "Old Gym", "address": "9 Old Rd", "source": "gyms_raw", "confidence": 0.7},
        {"name": "", "address": "Nowhere"},
    ], ensure_ascii=False), encoding="utf-8")
    service = make_service(naver, store=JsonFileStore(path), persist=True)

    result = await service.run()

    assert result.statistics.invalid_skipped == 1
    rows = {row["name"]: row for row in JsonFileStore(path).read()}
    assert set(rows) == {"ABC Gym", "Old Gym", ""}
    assert rows["ABC Gym"]["source"] == "gyms_raw + naver"
    assert rows["ABC Gym"]["phone"] == "02-123-4567"
    assert rows["Old Gym"]["source"] == "gyms_raw"
    assert rows["Old Gym"]["updated_at"] is not None


@pytest.mark.asyncio
async def test_persist_failure_is_recorded(make_service, naver, sample_baseline):
    service = make_service(naver, store=BrokenStore(), persist=True)

    result = await service.run(sample_baseline)

    assert len(result.results) == 3
    assert [(e.phase, e.error_code) for e in result.errors] == [("persist", "OSError")]


@pytest.mark.asyncio
async def test_lookup_returns_merged_observation(make_service, naver):
    service = make_service(naver)

    observation = await service.lookup("ABC Gym", "1 Main St")

    assert observation.source == "naver"
    assert observation.phone == "02-123-4567"


@pytest.mark.asyncio
async def test_lookup_timeout_returns_minimal_stub(make_service, sample_observation):
    gated = DirectoryAdapter("naver", 2, {"ABC Gym": sample_observation}, blocked_names={"ABC Gym"})
    service = make_service(gated, single_lookup_timeout_seconds=0.05)

    observation = await service.lookup("ABC Gym", "1 Main St")

    assert observation.source == MINIMAL_SOURCE
    assert observation.name == "ABC Gym"
    assert observation.confidence <= 0.1


@pytest.mark.asyncio
async def test_module_level_run_with_no_targets(crawl_config):
    config = crawl_config.model_copy(update={"include_public_api": False})

    result = await run([], config=config)

    assert result.results == []
    assert result.statistics.total_processed == 0
    assert result.errors == []


@pytest.mark.asyncio
async def test_out_of_range_confidence_is_rejected_not_clamped(make_service, naver, sample_baseline):
    service = make_service(naver)

    result = await service.run(sample_baseline + [{"name": "Too Sure", "address": "Z", "confidence": 7.5}])

    assert result.statistics.invalid_skipped == 1
    assert [(e.phase, e.error_code, e.target) for e in result.errors] == [("load", "INVALID_RECORD", "Too Sure")]
    assert "Too Sure" not in {r.name for r in result.results}


@pytest.mark.asyncio
async def test_blocked_crawl_counts_failed_batches_and_shrinks(make_service, make_adapter, fake_sleep):
    blocked = make_adapter("naver", 2, [BlockedError("403", source="naver")])
    service = make_service(blocked, max_concurrent=1, low_success_delay_seconds=0.5)
    targets = [{"name": f"Gym {i}", "address": f"{i} Main St"} for i in range(12)]

    result = await service.run(targets)

    history = service.scheduler.batch_history
    assert [b.size for b in history] == [2, 2, 2, 1, 1, 1, 1, 1, 1]
    assert all(b.status == BatchStatus.FAILED for b in history)
    assert service.scheduler.metrics.shrink_events == 1
    assert fake_sleep.calls == [0.5] * 8
    assert result.statistics.fallback_used == 12


@pytest.mark.asyncio
async def test_run_config_override_applies_to_that_run_only(make_service, naver, sample_baseline, crawl_config):
    service = make_service(naver)
    override = crawl_config.model_copy(update={"adapters": [AdapterSettings(name="naver", enabled=False)]})

    result = await service.run(sample_baseline, config=override)

    assert naver.calls == []
    assert result.statistics.successfully_merged == 0
    assert naver.enabled is True
    assert service.orchestrator.config is service.config

    await service.run(sample_baseline)

    assert "ABC Gym" in naver.calls


@pytest.mark.asyncio
async def test_module_level_run_rejects_a_concurrent_call(crawl_config, mocker):
    config = crawl_config.model_copy(update={"include_public_api": False})
    gate = asyncio.Event()

    async def stalled_public(self, run_config):
        await gate.wait()
        return []

    mocker.patch.object(CrawlingService, "_collect_public", stalled_public)

    first = asyncio.create_task(run([], config=config))
    await asyncio.sleep(0)

    with pytest.raises(AlreadyRunningError) as exc_info:
        await run([], config=config)
    assert exc_info.value.error_code == "ALREADY_RUNNING"

    gate.set()
    assert (await first).results == []
    assert (await run([], config=config)).errors == []
