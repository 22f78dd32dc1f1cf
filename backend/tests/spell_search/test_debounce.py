"""
Tests for DebouncedScheduler
"""

import asyncio

import pytest

from spell_search.debounce import DebouncedScheduler


class TestDebouncedScheduler:
    """Only the latest job runs after the quiet period"""

    @pytest.mark.asyncio
    async def test_runs_after_delay(self):
        scheduler = DebouncedScheduler(delay_ms=5)
        results = []
        task = scheduler.schedule(lambda: 'done', on_result=results.append)
        assert scheduler.pending
        assert await task == 'done'
        assert results == ['done']
        assert not scheduler.pending

    @pytest.mark.asyncio
    async def test_new_job_cancels_waiting_job(self):
        scheduler = DebouncedScheduler(delay_ms=20)
        results = []
        first = scheduler.schedule(lambda: 'first', on_result=results.append)
        second = scheduler.schedule(lambda: 'second', on_result=results.append)
        assert await second == 'second'
        assert first.cancelled()
        assert results == ['second']

    @pytest.mark.asyncio
    async def test_started_job_result_is_discarded_when_superseded(self):
        scheduler = DebouncedScheduler(delay_ms=0)
        results = []
        release = asyncio.Event()

        async def slow_job():
            await release.wait()
            return 'stale'

        first = scheduler.schedule(slow_job, on_result=results.append)
        await asyncio.sleep(0.01)
        second = scheduler.schedule(lambda: 'fresh', on_result=results.append, delay_ms=0)
        release.set()

        assert await first is None
        assert await second == 'fresh'
        assert results == ['fresh']

    @pytest.mark.asyncio
    async def test_awaitable_jobs(self):
        scheduler = DebouncedScheduler(delay_ms=1)

        async def job():
            return 42

        assert await scheduler.schedule(job) == 42

    @pytest.mark.asyncio
    async def test_cancel_pending(self):
        scheduler = DebouncedScheduler(delay_ms=50)
        task = scheduler.schedule(lambda: 'never')
        assert scheduler.cancel_pending()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not scheduler.cancel_pending()
