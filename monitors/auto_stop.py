"""Stops running sandboxes that have sat idle past their own threshold."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from config.policies import AutoStopPolicy

from .periodic import PeriodicTask

logger = logging.getLogger(__name__)


class AutoStopMonitor:
    def __init__(
        self,
        sandbox_repo,
        sandbox_service,
        policy: AutoStopPolicy,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.sandbox_repo = sandbox_repo
        self.sandbox_service = sandbox_service
        self.policy = policy
        self._now = now
        self._periodic = PeriodicTask(
            "AutoStop",
            policy.check_interval_seconds,
            self.check_and_stop,
            run_immediately=True,
        )

    def start(self) -> None:
        if not self.policy.enabled:
            logger.info("[AutoStop] Disabled")
            return
        self._periodic.start()

    async def stop(self) -> None:
        await self._periodic.stop()

    async def check_and_stop(self) -> list[str]:
        """Stop every idle candidate past its threshold. Returns the stopped ids."""
        try:
            candidates = await self.sandbox_repo.find_auto_stop_candidates()
        except Exception as e:
            logger.error(f"[AutoStop] Failed to load candidates: {e}", exc_info=True)
            return []

        now = self._now()
        stopped: list[str] = []
        for sandbox in candidates:
            if sandbox.is_terminated or not sandbox.is_idle:
                continue

            threshold = timedelta(minutes=sandbox.idle_minutes_before_stop)
            idle_for = now - sandbox.updated_at if sandbox.updated_at else threshold
            if idle_for < threshold:
                logger.debug(
                    f"[AutoStop] {sandbox.name} idle {idle_for.total_seconds() / 60:.1f}m "
                    f"of {sandbox.idle_minutes_before_stop}m, keeping"
                )
                continue

            try:
                logger.info(
                    f"[AutoStop] Stopping {sandbox.name}: idle "
                    f"{idle_for.total_seconds() / 60:.0f}m (threshold {sandbox.idle_minutes_before_stop}m)"
                )
                await self.sandbox_service.stop_sandbox(sandbox.id)
                stopped.append(sandbox.id)
            except Exception as e:
                logger.error(f"[AutoStop] Failed to stop {sandbox.name}: {e}")

        return stopped
