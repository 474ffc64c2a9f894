"""
Durable job queue backed by PostgreSQL.

Jobs live in ``task_queue_jobs`` and are consumed by execution workers.
A job may be routed to one worker by sending it to ``<queue>:<worker_id>``
instead of the shared queue.

The queue is optional infrastructure: when it has no connection string or
the database cannot be reached, every operation reports "unavailable"
(``None``/``False``) instead of raising.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import asyncpg

from config.settings import settings

logger = logging.getLogger(__name__)

QUEUE_APPLY_JOB = "gh_apply_job"

# Errors that mean the queue is unreachable right now
_UNAVAILABLE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


@dataclass
class QueueStats:
    queued: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0


class TaskQueueService:
    """Enqueue, cancel and count jobs."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        queue_name: Optional[str] = None,
        retry_limit: Optional[int] = None,
        retry_delay_seconds: Optional[int] = None,
        expire_seconds: Optional[int] = None,
        command_timeout: Optional[float] = None,
    ):
        self.database_url = database_url if database_url is not None else settings.database_direct_url
        self.queue_name = queue_name or settings.queue_name
        self.retry_limit = retry_limit if retry_limit is not None else settings.queue_retry_limit
        self.retry_delay_seconds = (
            retry_delay_seconds if retry_delay_seconds is not None else settings.queue_retry_delay_seconds
        )
        self.expire_seconds = expire_seconds or settings.queue_expire_seconds
        self.command_timeout = command_timeout or settings.queue_command_timeout_seconds
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def is_available(self) -> bool:
        return self._pool is not None

    async def start(self) -> None:
        """Open the connection pool. Leaves the queue unavailable on failure."""
        if self._pool is not None:
            return
        if not self.database_url:
            logger.warning("[TaskQueue] DATABASE_DIRECT_URL not set, job queue disabled")
            return
        try:
            self._pool = await asyncpg.create_pool(
                self.database_url,
                min_size=1,
                max_size=5,
                command_timeout=self.command_timeout,
                timeout=self.command_timeout,
            )
            logger.info(f"[TaskQueue] Connected (queue={self.queue_name})")
        except _UNAVAILABLE_ERRORS as e:
            self._pool = None
            logger.error(f"[TaskQueue] Failed to connect, job queue disabled: {e}")

    async def stop(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("[TaskQueue] Disconnected")

    def queue_for(self, target_worker_id: Optional[str] = None) -> str:
        if target_worker_id:
            return f"{self.queue_name}:{target_worker_id}"
        return self.queue_name

    async def enqueue(
        self,
        payload: dict[str, Any],
        target_worker_id: Optional[str] = None,
    ) -> Optional[str]:
        """Send a job. Returns the job id, or None if the queue is unavailable."""
        if self._pool is None:
            logger.warning("[TaskQueue] Queue unavailable, job not enqueued")
            return None

        job_id = str(uuid.uuid4())
        queue = self.queue_for(target_worker_id)
        try:
            async with self._pool.acquire(timeout=self.command_timeout) as conn:
                await conn.execute(
                    """
                    INSERT INTO task_queue_jobs
                        (id, name, state, data, retry_limit, retry_count,
                         retry_delay_seconds, retry_backoff, expire_in_seconds, created_on)
                    VALUES ($1, $2, 'created', $3::jsonb, $4, 0, $5, TRUE, $6, NOW())
                    """,
                    job_id,
                    queue,
                    json.dumps(payload),
                    self.retry_limit,
                    self.retry_delay_seconds,
                    self.expire_seconds,
                )
        except _UNAVAILABLE_ERRORS as e:
            logger.error(f"[TaskQueue] Failed to enqueue job on {queue}: {e}")
            return None

        logger.info(f"[TaskQueue] Enqueued job {job_id} on {queue}")
        return job_id

    async def cancel(self, job_id: str) -> bool:
        """Cancel a job that no worker has picked up yet."""
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire(timeout=self.command_timeout) as conn:
                row = await conn.fetchrow(
                    """
                    UPDATE task_queue_jobs
                    SET state = 'cancelled', completed_on = NOW()
                    WHERE id = $1 AND state IN ('created', 'retry')
                    RETURNING id
                    """,
                    job_id,
                )
        except _UNAVAILABLE_ERRORS as e:
            logger.error(f"[TaskQueue] Failed to cancel job {job_id}: {e}")
            return False

        if row is None:
            logger.debug(f"[TaskQueue] Job {job_id} not cancellable (missing or already started)")
            return False
        logger.info(f"[TaskQueue] Cancelled job {job_id}")
        return True

    async def get_stats(self) -> Optional[QueueStats]:
        """Counts across the shared queue and every worker sub-queue."""
        if self._pool is None:
            return None
        try:
            async with self._pool.acquire(timeout=self.command_timeout) as conn:
                rows = await conn.fetch(
                    """
                    SELECT state, COUNT(*) AS count
                    FROM task_queue_jobs
                    WHERE name = $1 OR name LIKE $1 || ':%'
                    GROUP BY state
                    """,
                    self.queue_name,
                )
        except _UNAVAILABLE_ERRORS as e:
            logger.warning(f"[TaskQueue] Failed to read queue stats: {e}")
            return None

        counts = {row["state"]: int(row["count"]) for row in rows}
        return QueueStats(
            queued=counts.get("created", 0) + counts.get("retry", 0),
            active=counts.get("active", 0),
            completed=counts.get("completed", 0),
            failed=counts.get("failed", 0),
            total=sum(counts.values()),
        )
