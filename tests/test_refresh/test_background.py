"""Tests for the background task pool."""

import asyncio

import pytest

from pricewatch.refresh.background import BackgroundTaskPool


class TestBackgroundTaskPool:
    @pytest.mark.asyncio
    async def test_drain_waits_for_all_tasks(self):
        pool = BackgroundTaskPool()
        done = []

        async def work(n):
            await asyncio.sleep(0)
            done.append(n)

        for n in range(3):
            pool.submit(f"job-{n}", work(n))
        assert len(pool) == 3

        await pool.drain()

        assert sorted(done) == [0, 1, 2]
        assert len(pool) == 0
        assert pool.pending == []

    @pytest.mark.asyncio
    async def test_drain_includes_tasks_submitted_meanwhile(self):
        pool = BackgroundTaskPool()
        done = []

        async def child():
            done.append("child")

        async def parent():
            pool.submit("child", child())
            done.append("parent")

        pool.submit("parent", parent())
        await pool.drain()

        assert done == ["parent", "child"]

    @pytest.mark.asyncio
    async def test_task_exception_is_logged(self, caplog):
        pool = BackgroundTaskPool()

        async def boom():
            raise ValueError("bad page")

        pool.submit("refresh_1", boom())
        await pool.drain()

        records = [r for r in caplog.records if r.getMessage() == "pricewatch_error"]
        assert records[0].error_code == "BACKGROUND_TASK_FAILED"
        assert records[0].job_id == "refresh_1"
        assert "ValueError: bad page" in records[0].error_message

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending(self):
        pool = BackgroundTaskPool()
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()

        task = pool.submit("stuck", blocked())
        await asyncio.sleep(0)
        await pool.shutdown()

        assert task.cancelled()
        assert len(pool) == 0
