"""Tests for the Postgres-backed job queue."""

import json
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from services.task_queue import QueueStats, TaskQueueService


def make_pool(conn):
    pool = MagicMock()
    pool.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
    pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)
    pool.close = AsyncMock()
    return pool


@pytest.fixture
def conn():
    return AsyncMock()


@pytest.fixture
def queue(conn):
    service = TaskQueueService(
        database_url="postgresql://localhost/test",
        queue_name="gh_apply_job",
        retry_limit=3,
        retry_delay_seconds=15,
        expire_seconds=1800,
        command_timeout=10,
    )
    service._pool = make_pool(conn)
    return service


class TestUnavailable:
    """Behavior without a connection pool."""

    @pytest.mark.asyncio
    async def test_operations_report_unavailable(self):
        """Test that nothing raises when the queue is not connected."""
        service = TaskQueueService(database_url="", queue_name="gh_apply_job")
        await service.start()

        assert service.is_available is False
        assert await service.enqueue({"taskId": "t"}) is None
        assert await service.cancel("job-1") is False
        assert await service.get_stats() is None

    @pytest.mark.asyncio
    async def test_connect_failure_leaves_queue_disabled(self, monkeypatch):
        """Test that a failed pool creation is logged, not raised."""
        monkeypatch.setattr(
            asyncpg, "create_pool", AsyncMock(side_effect=OSError("connection refused"))
        )
        service = TaskQueueService(database_url="postgresql://nowhere/db")

        await service.start()

        assert service.is_available is False


class TestEnqueue:
    """Job submission."""

    @pytest.mark.asyncio
    async def test_enqueue_shared_queue(self, queue, conn):
        """Test the insert parameters."""
        job_id = await queue.enqueue({"taskId": "task-1"})

        assert job_id is not None
        args = conn.execute.await_args.args
        assert args[1] == job_id
        assert args[2] == "gh_apply_job"
        assert json.loads(args[3]) == {"taskId": "task-1"}
        assert args[4:] == (3, 15, 1800)

    @pytest.mark.asyncio
    async def test_enqueue_routes_to_worker(self, queue, conn):
        """Test worker-targeted routing."""
        await queue.enqueue({"taskId": "task-1"}, target_worker_id="worker-7")
        assert conn.execute.await_args.args[2] == "gh_apply_job:worker-7"

    @pytest.mark.asyncio
    async def test_enqueue_database_error(self, queue, conn):
        """Test that a failed insert returns None."""
        conn.execute.side_effect = OSError("connection reset")
        assert await queue.enqueue({"taskId": "task-1"}) is None


class TestCancel:
    """Job cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_pending_job(self, queue, conn):
        """Test cancelling a job still waiting for a worker."""
        conn.fetchrow.return_value = {"id": "job-1"}
        assert await queue.cancel("job-1") is True
        assert conn.fetchrow.await_args.args[1] == "job-1"

    @pytest.mark.asyncio
    async def test_cancel_started_job(self, queue, conn):
        """Test that an active or finished job is not cancellable."""
        conn.fetchrow.return_value = None
        assert await queue.cancel("job-1") is False


class TestStats:
    """Queue statistics."""

    @pytest.mark.asyncio
    async def test_stats_aggregate_states(self, queue, conn):
        """Test that created and retry both count as queued."""
        conn.fetch.return_value = [
            {"state": "created", "count": 4},
            {"state": "retry", "count": 2},
            {"state": "active", "count": 1},
            {"state": "completed", "count": 10},
            {"state": "failed", "count": 3},
            {"state": "cancelled", "count": 1},
        ]

        stats = await queue.get_stats()

        assert stats == QueueStats(queued=6, active=1, completed=10, failed=3, total=21)
        assert conn.fetch.await_args.args[1] == "gh_apply_job"

    @pytest.mark.asyncio
    async def test_stats_empty_queue(self, queue, conn):
        """Test an empty queue."""
        conn.fetch.return_value = []
        assert await queue.get_stats() == QueueStats()

    @pytest.mark.asyncio
    async def test_stop_closes_pool(self, queue):
        """Test shutdown."""
        pool = queue._pool
        await queue.stop()
        pool.close.assert_awaited_once()
        assert queue.is_available is False
