import asyncio

import pytest

from database import InMemoryStore
from errors import FetchError, FetchInProgress
from fetch_coordinator import FetchCoordinator


class Loader:
    """Counts calls; waits on ``gate`` when one is set."""

    def __init__(self, result=None, error=None):
        self.result = result if result is not None else ["a", "b"]
        self.error = error
        self.calls = 0
        self.gate = None

    async def __call__(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


@pytest.mark.asyncio
async def test_concurrent_fetches_share_one_loader_call(clock):
    coordinator = FetchCoordinator(clock)
    loader = Loader()
    loader.gate = asyncio.Event()

    tasks = [asyncio.create_task(coordinator.fetch("canvas-items", loader)) for _ in range(3)]
    await asyncio.sleep(0)
    assert coordinator.get_state("canvas-items").in_flight

    loader.gate.set()
    results = await asyncio.gather(*tasks)

    assert loader.calls == 1
    assert results == [["a", "b"]] * 3
    state = coordinator.get_state("canvas-items")
    assert state.connected
    assert state.cached_result_count == 2
    assert not state.in_flight


@pytest.mark.asyncio
async def test_fresh_result_is_served_from_cache_until_ttl(clock):
    coordinator = FetchCoordinator(clock, default_ttl=30)
    loader = Loader()

    await coordinator.fetch("k", loader)
    clock.advance(seconds=29)
    await coordinator.fetch("k", loader)
    assert loader.calls == 1

    clock.advance(seconds=2)
    await coordinator.fetch("k", loader)
    assert loader.calls == 2


@pytest.mark.asyncio
async def test_force_bypasses_cache(clock):
    coordinator = FetchCoordinator(clock)
    loader = Loader()

    await coordinator.fetch("k", loader)
    await coordinator.fetch("k", loader, force=True)

    assert loader.calls == 2


@pytest.mark.asyncio
async def test_failure_resets_state_and_reaches_every_waiter(clock):
    coordinator = FetchCoordinator(clock)
    await coordinator.fetch("k", Loader())

    failing = Loader(error=ConnectionError("canvas down"))
    failing.gate = asyncio.Event()
    tasks = [asyncio.create_task(coordinator.fetch("k", failing, force=True)) for _ in range(2)]
    await asyncio.sleep(0)
    failing.gate.set()
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert failing.calls == 1
    assert all(isinstance(r, FetchError) for r in results)
    state = coordinator.get_state("k")
    assert not state.connected
    assert not state.in_flight
    assert state.last_error == "canvas down"
    assert coordinator.cached("k") is None


@pytest.mark.asyncio
async def test_no_wait_raises_while_in_flight(clock):
    coordinator = FetchCoordinator(clock)
    loader = Loader()
    loader.gate = asyncio.Event()

    first = asyncio.create_task(coordinator.fetch("k", loader))
    await asyncio.sleep(0)
    with pytest.raises(FetchInProgress):
        await coordinator.fetch("k", loader, wait=False)

    loader.gate.set()
    await first


@pytest.mark.asyncio
async def test_retry_after_failure_calls_loader_again(clock):
    coordinator = FetchCoordinator(clock)
    loader = Loader(error=ConnectionError("down"))

    with pytest.raises(FetchError):
        await coordinator.fetch("k", loader)
    loader.error = None

    assert await coordinator.fetch("k", loader) == ["a", "b"]
    assert loader.calls == 2


@pytest.mark.asyncio
async def test_last_fetch_time_is_persisted(clock):
    store = InMemoryStore()
    coordinator = FetchCoordinator(clock, store)

    await coordinator.fetch("k", Loader())

    assert await coordinator.last_persisted_fetch("k") == clock.now()


@pytest.mark.asyncio
async def test_invalidate_prefix(clock):
    coordinator = FetchCoordinator(clock)
    loader = Loader()
    await coordinator.fetch("calendar:week", loader)
    await coordinator.fetch("canvas-items", loader)

    coordinator.invalidate_prefix("calendar:")

    assert coordinator.cached("calendar:week") is None
    assert coordinator.cached("canvas-items") == ["a", "b"]


@pytest.mark.asyncio
async def test_invalidate_forgets_the_key(clock):
    coordinator = FetchCoordinator(clock)
    loader = Loader()
    for day in range(5):
        await coordinator.fetch(f"calendar:{day}", loader)

    coordinator.invalidate_prefix("calendar:")
    coordinator.get_state("calendar:never-fetched")

    assert coordinator._states == {}
    assert coordinator._results == {}
    assert not coordinator.get_state("calendar:0").connected


@pytest.mark.asyncio
async def test_invalidate_during_a_load_keeps_its_state(clock):
    coordinator = FetchCoordinator(clock)
    loader = Loader()
    loader.gate = asyncio.Event()
    task = asyncio.create_task(coordinator.fetch("k", loader))
    await asyncio.sleep(0)

    coordinator.invalidate("k")
    assert coordinator.get_state("k").in_flight

    loader.gate.set()
    assert await task == ["a", "b"]
    assert coordinator.get_state("k").connected
