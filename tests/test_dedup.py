import asyncio

import pytest

from backstop import Deduplicator, RequestDescriptor, dedup_key


def test_dedup_key_rules():
    get = RequestDescriptor("GET", "/users", body=b"ignored")
    assert dedup_key(get) == "GET /users"
    a = dedup_key(RequestDescriptor("POST", "/users", body=b'{"a":1}'))
    b = dedup_key(RequestDescriptor("POST", "/users", body=b'{"a":2}'))
    assert a != b
    assert a.startswith("POST /users:")
    assert dedup_key(RequestDescriptor("DELETE", "/users/1")) == "DELETE /users/1"
    with_query = RequestDescriptor("GET", "/u?x=1")
    assert dedup_key(with_query) != dedup_key(RequestDescriptor("GET", "/u"))


@pytest.mark.asyncio
async def test_concurrent_calls_share_one_execution():
    dedup = Deduplicator()
    runs = []
    gate = asyncio.Event()

    async def work():
        runs.append(1)
        await gate.wait()
        return object()

    callers = [asyncio.ensure_future(dedup.call("k", work)) for _ in range(5)]
    await asyncio.sleep(0)
    assert dedup.is_pending("k")
    assert dedup.pending_count == 1
    gate.set()
    results = await asyncio.gather(*callers)

    assert len(runs) == 1
    assert all(r is results[0] for r in results)
    assert dedup.pending_count == 0
    stats = dedup.stats
    assert (stats.total, stats.deduplicated) == (5, 4)
    assert stats.hit_rate == 80.0  # noqa: PLR2004


@pytest.mark.asyncio
async def test_entry_removed_after_failure():
    dedup = Deduplicator()
    runs = []

    async def fail():
        runs.append(1)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await dedup.call("k", fail)
    assert not dedup.is_pending("k")
    with pytest.raises(RuntimeError):
        await dedup.call("k", fail)
    assert len(runs) == 2  # noqa: PLR2004


@pytest.mark.asyncio
async def test_cancelling_one_caller_keeps_shared_work():
    dedup = Deduplicator()
    gate = asyncio.Event()

    async def work():
        await gate.wait()
        return "value"

    first = asyncio.ensure_future(dedup.call("k", work))
    second = asyncio.ensure_future(dedup.call("k", work))
    await asyncio.sleep(0)
    first.cancel()
    await asyncio.sleep(0)
    gate.set()

    assert await second == "value"
    assert first.cancelled()


@pytest.mark.asyncio
async def test_all_callers_cancelled_is_quiet():
    dedup = Deduplicator()

    async def work():
        await asyncio.sleep(0)
        raise RuntimeError("nobody is listening")

    caller = asyncio.ensure_future(dedup.call("k", work))
    await asyncio.sleep(0)
    caller.cancel()
    for _ in range(10):
        await asyncio.sleep(0)
    assert dedup.pending_count == 0


@pytest.mark.asyncio
async def test_finished_task_is_never_handed_out():
    dedup = Deduplicator()
    runs = []

    async def work():
        runs.append(1)
        return len(runs)

    first = asyncio.ensure_future(dedup.call("r", work))
    await asyncio.sleep(0)
    shared = dedup._pending["r"]
    while not shared.done():
        await asyncio.sleep(0)

    # same loop tick as settlement: a new call must start new work
    assert not dedup.is_pending("r")
    assert await dedup.call("r", work) == 2  # noqa: PLR2004
    assert await first == 1
    assert len(runs) == 2  # noqa: PLR2004


@pytest.mark.asyncio
async def test_cancelled_before_start_leaves_no_entry():
    dedup = Deduplicator()

    async def work():
        return "never"

    caller = asyncio.ensure_future(dedup.call("k", work))
    await asyncio.sleep(0)
    dedup._pending["k"].cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller
    await asyncio.sleep(0)
    assert dedup.pending_count == 0
