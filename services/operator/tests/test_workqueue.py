"""Tests for the rate-limited work queue."""

import asyncio

import pytest

from hearth_operator.workqueue import WorkQueue


async def next_key(queue, timeout=1.0):
    return await asyncio.wait_for(queue.get(), timeout=timeout)


class TestWorkQueue:
    """Tests for WorkQueue."""

    @pytest.mark.asyncio
    async def test_add_deduplicates(self):
        """Test a key added twice is handed out once."""
        queue = WorkQueue()
        queue.add("games/a")
        queue.add("games/a")
        queue.add("games/b")

        assert len(queue) == 2
        assert await next_key(queue) == "games/a"
        assert await next_key(queue) == "games/b"
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_processing_key_not_handed_out_twice(self):
        """Test adding a key while it is processed defers it until done."""
        queue = WorkQueue()
        queue.add("games/a")
        key = await next_key(queue)
        assert queue.is_processing(key)

        queue.add("games/a")
        with pytest.raises(asyncio.TimeoutError):
            await next_key(queue, timeout=0.05)

        queue.done(key)
        assert not queue.is_processing(key)
        assert await next_key(queue) == "games/a"

    @pytest.mark.asyncio
    async def test_done_without_add_does_not_requeue(self):
        """Test a finished key is not queued again by itself."""
        queue = WorkQueue()
        queue.add("games/a")
        key = await next_key(queue)
        queue.done(key)

        assert len(queue) == 0
        with pytest.raises(asyncio.TimeoutError):
            await next_key(queue, timeout=0.05)

    @pytest.mark.asyncio
    async def test_add_after(self):
        """Test a delayed add fires after the delay."""
        queue = WorkQueue()
        queue.add_after("games/a", 0.05)

        assert len(queue) == 0
        assert await next_key(queue) == "games/a"

    @pytest.mark.asyncio
    async def test_add_after_keeps_earliest(self):
        """Test a shorter delay replaces a longer pending one."""
        queue = WorkQueue()
        queue.add_after("games/a", 60)
        queue.add_after("games/a", 0.01)
        queue.add_after("games/a", 30)

        assert await next_key(queue) == "games/a"

    @pytest.mark.asyncio
    async def test_add_after_zero_is_immediate(self):
        queue = WorkQueue()
        queue.add_after("games/a", 0)
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_rate_limited_backoff(self):
        """Test backoff doubles per failure, caps, and resets on forget."""
        queue = WorkQueue(base_delay=1.0, max_delay=5.0)

        delays = [queue.add_rate_limited("games/a") for _ in range(5)]

        assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]
        assert queue.num_requeues("games/a") == 5

        queue.forget("games/a")
        assert queue.num_requeues("games/a") == 0
        assert queue.add_rate_limited("games/a") == 1.0
        queue.shut_down()

    @pytest.mark.asyncio
    async def test_backoff_is_per_key(self):
        queue = WorkQueue(base_delay=1.0)
        queue.add_rate_limited("games/a")
        queue.add_rate_limited("games/a")

        assert queue.add_rate_limited("games/b") == 1.0
        queue.shut_down()

    @pytest.mark.asyncio
    async def test_shut_down_releases_all_workers(self):
        """Test every waiting worker gets None after shutdown."""
        queue = WorkQueue()
        waiters = [asyncio.create_task(queue.get()) for _ in range(3)]
        await asyncio.sleep(0)

        queue.shut_down()
        results = await asyncio.wait_for(asyncio.gather(*waiters), timeout=1.0)

        assert results == [None, None, None]
        assert queue.shutting_down

    @pytest.mark.asyncio
    async def test_shut_down_ignores_new_work(self):
        """Test adds and delayed adds are dropped after shutdown."""
        queue = WorkQueue()
        queue.add_after("games/a", 0.01)
        queue.shut_down()

        queue.add("games/b")
        queue.add_after("games/c", 0.01)
        await asyncio.sleep(0.05)

        assert await next_key(queue) is None
