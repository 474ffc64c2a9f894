"""
Stale task reconciliation.

Finds tasks that have not moved for a while, asks the execution backend
what actually happened to them, and force-fails the ones that have been
stuck past the hard timeout. Terminal tasks are never touched.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from config.policies import ReconciliationPolicy
from models.state import ReconciliationSummary, TaskRecord, TaskStatus

from .periodic import PeriodicTask

logger = logging.getLogger(__name__)

RECONCILIATION_ERROR_CODE = "reconciliation_timeout"


class StaleTaskReconciliationMonitor:
    def __init__(
        self,
        task_repo,
        sync_service,
        publisher,
        policy: ReconciliationPolicy,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.task_repo = task_repo
        self.sync_service = sync_service
        self.publisher = publisher
        self.policy = policy
        self._now = now
        self._running = False
        self._periodic = PeriodicTask(
            "Reconciliation",
            policy.interval_seconds,
            self.reconcile_stale_jobs,
            run_immediately=True,
        )

    def start(self) -> None:
        if not self.policy.enabled:
            logger.info("[Reconciliation] Disabled")
            return
        self._periodic.start()

    async def stop(self) -> None:
        await self._periodic.stop()

    async def reconcile_stale_jobs(self) -> ReconciliationSummary:
        """One reconciliation pass. Overlapping calls return immediately."""
        if self._running:
            logger.debug("[Reconciliation] Previous pass still running, skipping")
            return ReconciliationSummary(skipped=1)

        self._running = True
        summary = ReconciliationSummary()
        try:
            tasks = await self.task_repo.find_stuck_jobs(
                self.policy.stuck_minutes, limit=self.policy.batch_size
            )
            summary.checked = len(tasks)
            for task in tasks:
                try:
                    await self._reconcile(task, summary)
                except Exception as e:
                    summary.errors += 1
                    logger.error(f"[Reconciliation] Failed to reconcile task {task.id}: {e}")
        except Exception as e:
            summary.errors += 1
            logger.error(f"[Reconciliation] Pass failed: {e}", exc_info=True)
        finally:
            self._running = False

        if summary.checked or summary.errors:
            logger.info(f"[Reconciliation] Pass complete: {summary.to_dict()}")
        return summary

    async def _reconcile(self, task: TaskRecord, summary: ReconciliationSummary) -> None:
        if task.is_terminal:
            summary.skipped += 1
            return

        stuck_minutes = (self._now() - task.updated_at).total_seconds() / 60
        past_timeout = stuck_minutes >= self.policy.timeout_minutes

        if not task.workflow_run_id:
            if past_timeout:
                await self._force_fail(task, summary, "No GhostHands job linked")
            else:
                summary.skipped += 1
            return

        result = await self.sync_service.sync_status(task.id)
        if result.failed:
            if past_timeout:
                await self._force_fail(task, summary, f"Sync failed: {result.error}")
            else:
                summary.skipped += 1
            return

        if result.changed:
            summary.reconciled += 1
            logger.info(
                f"[Reconciliation] Task {task.id} reconciled: "
                f"{result.previous_status} -> {result.new_status}"
            )
        else:
            summary.skipped += 1

    async def _force_fail(self, task: TaskRecord, summary: ReconciliationSummary, reason: str) -> None:
        updated = await self.task_repo.update_status(task.id, TaskStatus.FAILED)
        if updated is None:
            # Finished (or vanished) since it was fetched
            summary.skipped += 1
            return

        message = f"Task stuck for over {self.policy.timeout_minutes} minutes. {reason}"
        error = {"code": RECONCILIATION_ERROR_CODE, "message": message}
        await self.task_repo.update_execution_result(
            task.id,
            reference=task.workflow_run_id or "",
            result=None,
            error=error,
            completed_at=None,
        )
        summary.timed_out += 1
        logger.warning(f"[Reconciliation] Task {task.id} marked failed: {message}")

        await self._notify_user(task, message, error)

    async def _notify_user(self, task: TaskRecord, message: str, error: dict[str, Any]) -> None:
        try:
            await self.publisher.publish_to_user(task.user_id, {
                "type": "task_update",
                "taskId": task.id,
                "status": TaskStatus.FAILED.value,
                "currentStep": f"Failed: {message}",
                "error": error,
            })
        except Exception as e:
            logger.warning(f"[Reconciliation] Failed to notify user for task {task.id}: {e}")
