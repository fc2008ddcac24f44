"""Tests for the interval refresh loop."""

import asyncio

import pytest

from dynconf.logger.types import Level
from dynconf.scheduler.refresh_loop import RefreshLoop


class TestRefreshLoop:
    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            RefreshLoop(0, lambda: asyncio.sleep(0))

    @pytest.mark.asyncio
    async def test_fires_repeatedly(self):
        calls = 0

        async def tick():
            nonlocal calls
            calls += 1

        loop = RefreshLoop(0.01, tick, name="test")
        loop.start()
        await asyncio.sleep(0.06)
        await loop.stop()

        assert calls >= 2
        assert loop.execution_count == calls
        assert loop.running is False

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_loop(self, log_writer):
        calls = 0

        async def tick():
            nonlocal calls
            calls += 1
            raise RuntimeError("unexpected")

        loop = RefreshLoop(0.01, tick, name="test")
        loop.start()
        await asyncio.sleep(0.05)
        await loop.stop()

        assert calls >= 2
        assert "Refresh loop 'test' callback error" in log_writer.messages(Level.ERROR)

    @pytest.mark.asyncio
    async def test_slow_callback_skips_intervals(self):
        async def tick():
            await asyncio.sleep(0.05)

        loop = RefreshLoop(0.01, tick, name="test")
        loop.start()
        await asyncio.sleep(0.08)
        await loop.stop()

        assert loop.skipped_count >= 1

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        loop = RefreshLoop(10, lambda: asyncio.sleep(0))
        await loop.stop()
        loop.start()
        await loop.stop()
        await loop.stop()

        assert loop.running is False
