"""Periodic health checks across the running fleet."""

import logging
from collections import Counter

from config.policies import HealthMonitorPolicy
from models.sandbox import HealthStatus

from .periodic import PeriodicTask

logger = logging.getLogger(__name__)


class SandboxHealthMonitor:
    def __init__(self, sandbox_service, policy: HealthMonitorPolicy):
        self.sandbox_service = sandbox_service
        self.policy = policy
        self._periodic = PeriodicTask(
            "HealthMonitor",
            policy.interval_seconds,
            self.check_all,
            run_immediately=True,
        )

    def start(self) -> None:
        if not self.policy.enabled:
            logger.info("[HealthMonitor] Disabled")
            return
        self._periodic.start()

    async def stop(self) -> None:
        await self._periodic.stop()

    async def check_all(self) -> Counter:
        """Returns counts per health status for this pass."""
        counts: Counter = Counter()
        try:
            await self.sandbox_service.enforce_state_consistency(self.policy.stale_minutes)
            results = await self.sandbox_service.check_all_sandboxes()
        except Exception as e:
            logger.error(f"[HealthMonitor] Health pass failed: {e}", exc_info=True)
            return counts

        for result in results:
            counts[result.status] += 1
            if result.status == HealthStatus.UNHEALTHY:
                logger.warning(f"[HealthMonitor] Sandbox {result.name} ({result.sandbox_id}) is unhealthy")

        logger.info(
            f"[HealthMonitor] Checked {len(results)} sandboxes: "
            f"{counts[HealthStatus.HEALTHY]} healthy, "
            f"{counts[HealthStatus.DEGRADED]} degraded, "
            f"{counts[HealthStatus.UNHEALTHY]} unhealthy"
        )
        return counts
