"""
Unit Tests - Single-flight
"""
import asyncio
import pytest

from marketcache.services.single_flight import SingleFlight


class TestSingleFlight:
    """Tests for SingleFlight."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_call(self):
        flight = SingleFlight()
        release = asyncio.Event()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await release.wait()
            return "payload"

        tasks = [asyncio.create_task(flight.run("k", fetch)) for _ in range(5)]
        await asyncio.sleep(0)
        assert flight.in_flight("k")

        release.set()
        results = await asyncio.gather(*tasks)

        assert results == ["payload"] * 5
        assert calls == 1
        assert flight.joined == 4
        assert not flight.in_flight("k")

    @pytest.mark.asyncio
    async def test_different_keys_run_independently(self):
        flight = SingleFlight()
        calls = []

        async def fetch(name):
            calls.append(name)
            await asyncio.sleep(0)
            return name

        results = await asyncio.gather(
            flight.run("a", lambda: fetch("a")),
            flight.run("b", lambda: fetch("b")),
        )

        assert results == ["a", "b"]
        assert sorted(calls) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_error_reaches_every_caller(self):
        flight = SingleFlight()
        release = asyncio.Event()

        async def fetch():
            await release.wait()
            raise RuntimeError("provider down")

        tasks = [asyncio.create_task(flight.run("k", fetch)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, RuntimeError) for r in results)
        assert not flight.in_flight("k")

    @pytest.mark.asyncio
    async def test_nothing_is_cached_after_completion(self):
        flight = SingleFlight()
        counter = 0

        async def fetch():
            nonlocal counter
            counter += 1
            return counter

        assert await flight.run("k", fetch) == 1
        assert await flight.run("k", fetch) == 2

    @pytest.mark.asyncio
    async def test_joiner_takes_over_when_leader_is_cancelled(self):
        flight = SingleFlight()
        started = asyncio.Event()
        calls = 0

        async def slow():
            nonlocal calls
            calls += 1
            started.set()
            await asyncio.sleep(10)

        async def fast():
            nonlocal calls
            calls += 1
            return "second"

        leader = asyncio.create_task(flight.run("k", slow))
        await started.wait()
        joiner = asyncio.create_task(flight.run("k", fast))
        await asyncio.sleep(0)

        leader.cancel()
        assert await asyncio.wait_for(joiner, timeout=1) == "second"
        assert calls == 2
        with pytest.raises(asyncio.CancelledError):
            await leader
