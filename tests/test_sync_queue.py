import asyncio

import httpx
import pytest

from services.vector_sync.SyncQueue import SyncQueue


@pytest.fixture
async def queue(helper_config, orchestrator):
    sync_queue = SyncQueue(helper_config, orchestrator)
    yield sync_queue
    await sync_queue.stop()


async def test_requests_of_the_same_kind_are_coalesced(queue):
    assert queue.enqueue("incremental") is True
    assert queue.enqueue("incremental") is False
    assert queue.enqueue("full_rebuild") is True

    assert queue.pending == ["full_rebuild", "incremental"]


async def test_worker_runs_queued_cycles(queue, source, index, make_order):
    source.orders = [make_order("A"), make_order("B")]
    queue.enqueue()
    queue.enqueue()

    queue.start()
    await asyncio.wait_for(queue.join(), timeout=5)

    assert queue.completed_cycles == 1
    assert queue.last_result.new_vectors == 2
    assert queue.pending == []
    assert sorted(index.vectors) == ["job-A", "job-B"]


async def test_worker_survives_a_failed_cycle(queue, source, make_order):
    source.error = httpx.ConnectError("refused")
    queue.start()
    queue.enqueue()
    await asyncio.wait_for(queue.join(), timeout=5)

    assert queue.running
    assert queue.completed_cycles == 0

    source.error = None
    source.orders = [make_order("A")]
    queue.enqueue()
    await asyncio.wait_for(queue.join(), timeout=5)

    assert queue.completed_cycles == 1
    assert queue.last_result.new_vectors == 1


async def test_request_is_dropped_while_an_outside_cycle_runs(queue, orchestrator, source, make_order):
    gate = asyncio.Event()
    original = source.do_fetch_all

    async def slow_fetch():
        await gate.wait()
        return await original()

    source.orders = [make_order("A")]
    source.do_fetch_all = slow_fetch
    outside = asyncio.create_task(orchestrator.run_incremental_sync())
    await asyncio.sleep(0)

    queue.start()
    queue.enqueue()
    await asyncio.wait_for(queue.join(), timeout=5)
    gate.set()
    await outside

    assert queue.completed_cycles == 0


async def test_stop_cancels_the_worker(queue):
    queue.start()
    assert queue.running

    await queue.stop()

    assert not queue.running
