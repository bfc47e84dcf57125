import asyncio

import pytest

from gymcrawl.crawling.extraction.batch_processor import (
    BatchScheduler,
    BatchSchedulerConfig,
    BatchStatus,
)


async def double(item):
    await asyncio.sleep(0)
    return item * 2


async def fail_all(item):
    raise RuntimeError(f"item {item} failed")


@pytest.mark.asyncio
async def test_items_split_into_sequential_batches(fake_sleep):
    scheduler = BatchScheduler(
        BatchSchedulerConfig(batch_size=3, batch_delay_seconds=2.0, adaptive=False),
        sleep=fake_sleep
    )

    results = await scheduler.process(list(range(7)), double)

    assert results == [0, 2, 4, 6, 8, 10, 12]
    assert scheduler.batches_run == 3
    assert [b.size for b in scheduler.batch_history] == [3, 3, 1]
    assert fake_sleep.calls == [2.0, 2.0]


@pytest.mark.asyncio
async def test_in_flight_never_exceeds_concurrency(fake_sleep):
    scheduler = BatchScheduler(
        BatchSchedulerConfig(batch_size=6, max_concurrent=2, batch_delay_seconds=0.0),
        sleep=fake_sleep
    )

    await scheduler.process(list(range(6)), double)

    assert 1 <= scheduler.max_in_flight <= 2
    assert fake_sleep.calls == []


@pytest.mark.asyncio
async def test_failed_item_slot_is_filled_by_error_callback(fake_sleep):
    async def worker(item):
        if item == 1:
            raise ValueError("bad item")
        return item

    scheduler = BatchScheduler(BatchSchedulerConfig(batch_size=3, batch_delay_seconds=0.0), sleep=fake_sleep)

    results = await scheduler.process([0, 1, 2], worker, on_item_error=lambda item, e: f"stub-{item}")

    assert results == [0, "stub-1", 2]
    record = scheduler.batch_history[0]
    assert (record.succeeded, record.failed) == (2, 1)
    assert record.status == BatchStatus.FAILED
    assert scheduler.metrics.failed_items == 1


@pytest.mark.asyncio
async def test_batch_size_shrinks_after_consecutive_failures(fake_sleep):
    scheduler = BatchScheduler(
        BatchSchedulerConfig(batch_size=4, batch_delay_seconds=0.0, max_consecutive_failures=2),
        sleep=fake_sleep
    )

    results = await scheduler.process(list(range(10)), fail_all)

    assert results == [None] * 10
    assert [b.size for b in scheduler.batch_history] == [4, 4, 2]
    assert scheduler.current_batch_size == 2
    assert scheduler.metrics.shrink_events == 1


@pytest.mark.asyncio
async def test_batch_size_grows_after_clean_batches(fake_sleep):
    scheduler = BatchScheduler(
        BatchSchedulerConfig(batch_size=1, batch_delay_seconds=0.0, growth_after_successes=2),
        sleep=fake_sleep
    )

    await scheduler.process(list(range(6)), double)

    assert [b.size for b in scheduler.batch_history] == [1, 1, 2, 2]
    assert scheduler.metrics.growth_events == 2


@pytest.mark.asyncio
async def test_low_success_batches_use_longer_delay(fake_sleep):
    scheduler = BatchScheduler(
        BatchSchedulerConfig(
            batch_size=1, batch_delay_seconds=1.0, low_success_delay_seconds=5.0, adaptive=False
        ),
        sleep=fake_sleep
    )

    await scheduler.process([1, 2], fail_all)

    assert fake_sleep.calls == [5.0]


@pytest.mark.asyncio
async def test_progress_reported_after_every_item(fake_sleep):
    seen = []
    scheduler = BatchScheduler(BatchSchedulerConfig(batch_size=2, batch_delay_seconds=0.0), sleep=fake_sleep)

    await scheduler.process([1, 2, 3], double, on_progress=seen.append)

    assert [p.current for p in seen] == [1, 2, 3]
    assert seen[-1].total == 3
    assert seen[-1].percentage == 100.0
    assert seen[-1].eta_seconds is not None

    status = scheduler.get_status()
    assert status["batches_run"] == 2
    assert status["progress"]["current"] == 3


@pytest.mark.asyncio
async def test_empty_input(fake_sleep):
    scheduler = BatchScheduler(sleep=fake_sleep)

    assert await scheduler.process([], double) == []
    assert scheduler.batches_run == 0
    assert scheduler.progress().percentage == 0.0


@pytest.mark.asyncio
async def test_unsuccessful_results_count_as_failed_items(fake_sleep):
    scheduler = BatchScheduler(
        BatchSchedulerConfig(batch_size=2, batch_delay_seconds=0.0, max_consecutive_failures=2),
        sleep=fake_sleep
    )

    results = await scheduler.process([1, 2, 3, 4], double, is_success=lambda result: result > 100)

    assert results == [2, 4, 6, 8]
    assert [b.status for b in scheduler.batch_history] == [BatchStatus.FAILED, BatchStatus.FAILED]
    assert scheduler.metrics.failed_items == 4
    assert scheduler.current_batch_size == 1
