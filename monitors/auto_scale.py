"""
Queue-driven auto-scaling of one managed machine type.

Each tick adds at most one sandbox when work is waiting and nothing is
idle, or removes one idle sandbox when the queue is empty and more than
the minimum are idle. A cooldown after every scale event keeps the fleet
from oscillating while machines boot or drain.
"""

import logging
import time
import uuid
from enum import Enum
from typing import Callable, Optional

from config.policies import AutoScalePolicy
from models.sandbox import BackingStatus, SandboxRecord, SandboxStatus

from .periodic import PeriodicTask

logger = logging.getLogger(__name__)


class ScaleDecision(str, Enum):
    NONE = "none"
    COOLDOWN = "cooldown"
    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"
    ERROR = "error"


class AutoScaleMonitor:
    def __init__(
        self,
        sandbox_repo,
        sandbox_service,
        task_queue,
        task_repo,
        policy: AutoScalePolicy,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sandbox_repo = sandbox_repo
        self.sandbox_service = sandbox_service
        self.task_queue = task_queue
        self.task_repo = task_repo
        self.policy = policy
        self._clock = clock
        self.last_scale_event_at: Optional[float] = None
        self._periodic = PeriodicTask(
            "AutoScale",
            policy.check_interval_seconds,
            self.evaluate,
        )

    def start(self) -> None:
        if not self.policy.enabled:
            logger.info("[AutoScale] Disabled (AUTOSCALE_ENABLED=false)")
            return
        logger.info(
            f"[AutoScale] Managing {self.policy.machine_type.value} "
            f"(min={self.policy.min_instances}, max={self.policy.max_instances}, "
            f"cooldown={self.policy.cooldown_seconds:.0f}s)"
        )
        self._periodic.start()

    async def stop(self) -> None:
        await self._periodic.stop()

    def is_in_cooldown(self) -> bool:
        if self.last_scale_event_at is None:
            return False
        return self._clock() - self.last_scale_event_at < self.policy.cooldown_seconds

    async def evaluate(self) -> ScaleDecision:
        """One scaling decision. Never raises."""
        try:
            return await self._evaluate()
        except Exception as e:
            logger.error(f"[AutoScale] Evaluation failed: {e}", exc_info=True)
            return ScaleDecision.ERROR

    async def _evaluate(self) -> ScaleDecision:
        if self.is_in_cooldown():
            logger.debug("[AutoScale] In cooldown, skipping")
            return ScaleDecision.COOLDOWN

        queue_depth = await self._queue_depth()
        sandboxes = [
            s for s in await self.sandbox_repo.find_by_machine_type(self.policy.machine_type)
            if not s.is_terminated
        ]
        running = [s for s in sandboxes if s.backing_status == BackingStatus.RUNNING]
        idle = [s for s in running if s.current_load == 0]
        active_count = sum(
            1 for s in sandboxes
            if s.backing_status in (BackingStatus.RUNNING, BackingStatus.PENDING)
        )

        logger.debug(
            f"[AutoScale] queue={queue_depth} active={active_count} "
            f"running={len(running)} idle={len(idle)}"
        )

        if queue_depth > 0 and not idle and active_count < self.policy.max_instances:
            logger.info(
                f"[AutoScale] Scaling up: {queue_depth} queued, no idle sandboxes, "
                f"{active_count}/{self.policy.max_instances} active"
            )
            if not await self._scale_up():
                return ScaleDecision.ERROR
            return ScaleDecision.SCALE_UP

        if queue_depth == 0 and len(idle) > self.policy.min_instances:
            target = self._pick_scale_down_target(idle)
            logger.info(
                f"[AutoScale] Scaling down: queue empty, {len(idle)} idle "
                f"(min {self.policy.min_instances}), stopping {target.name}"
            )
            result = await self.sandbox_service.stop_sandbox(target.id)
            if not result.success:
                logger.warning(f"[AutoScale] Stop of {target.name} not accepted: {result.message}")
                return ScaleDecision.ERROR
            self.last_scale_event_at = self._clock()
            return ScaleDecision.SCALE_DOWN

        return ScaleDecision.NONE

    async def _queue_depth(self) -> int:
        stats = await self.task_queue.get_stats()
        if stats is not None:
            return stats.queued
        return await self.task_repo.count_queued()

    async def _scale_up(self) -> bool:
        machine_type = self.policy.machine_type.value
        sandbox = await self.sandbox_service.create(
            name=f"{machine_type}-auto-{int(time.time() * 1000)}",
            environment=self.policy.environment,
            instance_id=f"{machine_type}-pending-{uuid.uuid4()}",
            instance_type=machine_type,
            machine_type=self.policy.machine_type,
            capacity=1,
        )
        try:
            result = await self.sandbox_service.start_sandbox(sandbox.id)
        except Exception:
            await self._discard(sandbox)
            raise
        if not result.success:
            logger.warning(f"[AutoScale] Start of {sandbox.name} not accepted: {result.message}")
            await self._discard(sandbox)
            return False

        self.last_scale_event_at = self._clock()
        logger.info(f"[AutoScale] Started sandbox {sandbox.name} ({sandbox.id})")
        return True

    async def _discard(self, sandbox: SandboxRecord) -> None:
        """Terminate a record whose first start failed so the next tick does not count or reuse it."""
        try:
            await self.sandbox_repo.update_backing_status(
                sandbox.id,
                BackingStatus.TERMINATED,
                status=SandboxStatus.TERMINATED,
            )
            logger.info(f"[AutoScale] Terminated record {sandbox.id} after failed start")
        except Exception as e:
            logger.error(f"[AutoScale] Failed to terminate record {sandbox.id}: {e}")

    @staticmethod
    def _pick_scale_down_target(idle: list[SandboxRecord]) -> SandboxRecord:
        """Longest idle first: oldest update, then id for a stable order."""
        return min(idle, key=lambda s: (s.updated_at is not None, s.updated_at, s.id))
