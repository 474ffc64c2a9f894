"""Tests for the periodic task runner."""

import asyncio

import pytest

from monitors.periodic import PeriodicTask


class TestPeriodicTask:
    """Start, stop and failure handling."""

    @pytest.mark.asyncio
    async def test_runs_immediately_when_asked(self):
        """Test the immediate first tick."""
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask("test", 3600, tick, run_immediately=True)
        task.start()
        await asyncio.sleep(0.01)
        await task.stop()

        assert calls == [1]

    @pytest.mark.asyncio
    async def test_waits_for_interval_by_default(self):
        """Test that nothing runs before the first interval."""
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask("test", 3600, tick)
        task.start()
        await asyncio.sleep(0.01)
        await task.stop()

        assert calls == []

    @pytest.mark.asyncio
    async def test_ticks_repeatedly(self):
        """Test repeated ticks on a short interval."""
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask("test", 0.01, tick)
        task.start()
        await asyncio.sleep(0.1)
        await task.stop()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_failing_tick_keeps_loop_alive(self):
        """Test that one exception does not end the loop."""
        calls = []

        async def tick():
            calls.append(1)
            raise RuntimeError("boom")

        task = PeriodicTask("test", 0.01, tick, run_immediately=True)
        task.start()
        await asyncio.sleep(0.1)
        assert task.is_running
        await task.stop()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_tick_finish(self):
        """Test that stop waits for the running tick."""
        started = asyncio.Event()
        finished = []

        async def tick():
            started.set()
            await asyncio.sleep(0.05)
            finished.append(1)

        task = PeriodicTask("test", 3600, tick, run_immediately=True)
        task.start()
        await started.wait()
        await task.stop()

        assert finished == [1]
        assert not task.is_running

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self):
        """Test idempotent start."""
        async def tick():
            pass

        task = PeriodicTask("test", 3600, tick)
        task.start()
        first = task._task
        task.start()
        assert task._task is first
        await task.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        """Test that stopping an idle task is harmless."""
        async def tick():
            pass

        await PeriodicTask("test", 1, tick).stop()
