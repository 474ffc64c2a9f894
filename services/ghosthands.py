"""
GhostHands execution backend client and task status sync.

The execution backend owns the browser automation runs. Tasks keep a
reference to their run (``workflow_run_id``) and a mirror of the last
backend status seen (``execution_status``); ``TaskSyncService`` brings both
in line with what the backend reports.
"""

import logging
from typing import Any
from urllib.parse import quote

import httpx

from config.settings import settings
from models.state import SyncResult, TaskStatus

from .errors import ExecutionBackendError

logger = logging.getLogger(__name__)

# Backend run status -> task status. Statuses not listed leave the task alone.
GH_TO_TASK_STATUS: dict[str, TaskStatus] = {
    "running": TaskStatus.IN_PROGRESS,
    "completed": TaskStatus.COMPLETED,
    "failed": TaskStatus.FAILED,
    "cancelled": TaskStatus.CANCELLED,
    "needs_human": TaskStatus.WAITING_HUMAN,
}


class GhostHandsClient:
    """Async HTTP client for the GhostHands API."""

    def __init__(
        self,
        base_url: str | None = None,
        service_key: str | None = None,
        timeout_seconds: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.ghosthands_api_url or "").rstrip("/")
        self.service_key = service_key if service_key is not None else settings.gh_service_secret
        self.timeout_seconds = timeout_seconds or settings.ghosthands_timeout_seconds
        self._client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_job_status(self, job_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/api/v1/gh/valet/status/{quote(job_id, safe='')}")

    async def cancel_job(self, job_id: str) -> None:
        await self._request("POST", f"/api/v1/gh/jobs/{quote(job_id, safe='')}/cancel")

    async def health_check(self) -> dict[str, Any]:
        return await self._request("GET", "/health", timeout=5.0)

    async def _request(
        self,
        method: str,
        path: str,
        body: Any = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        if not self.is_configured:
            raise ExecutionBackendError("GHOSTHANDS_API_URL is not configured")

        url = f"{self.base_url}{path}"
        logger.debug(f"[GhostHands] {method} {url}")
        try:
            response = await self._get_client().request(
                method,
                url,
                json=body,
                headers={"X-GH-Service-Key": self.service_key},
                timeout=timeout or self.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise ExecutionBackendError(f"GhostHands request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            raise ExecutionBackendError(f"GhostHands request failed: {e}") from e

        if response.status_code >= 400:
            logger.error(
                f"[GhostHands] {method} {path} failed with {response.status_code}: "
                f"{response.text[:200]}"
            )
            raise ExecutionBackendError(
                f"GhostHands API error: {response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()


class TaskSyncService:
    """Pulls run status from the execution backend onto task records."""

    def __init__(self, task_repo, client: GhostHandsClient):
        self.task_repo = task_repo
        self.client = client

    async def sync_status(self, task_id: str) -> SyncResult:
        """Sync one task. Never raises; failures come back as ``SyncResult.error``."""
        task = await self.task_repo.find_by_id(task_id)
        if task is None:
            return SyncResult(task_id=task_id, error="Task not found")
        if not task.workflow_run_id:
            return SyncResult(task_id=task_id, error="No GhostHands job linked")

        try:
            gh_status = await self.client.get_job_status(task.workflow_run_id)
        except ExecutionBackendError as e:
            logger.warning(f"[TaskSync] Failed to fetch GhostHands status for {task_id}: {e}")
            return SyncResult(task_id=task_id, error="Failed to fetch GH status")

        remote_status = gh_status.get("status")
        mapped = GH_TO_TASK_STATUS.get(remote_status)
        previous = task.status
        task_updated = False
        job_updated = False

        try:
            if mapped is not None and mapped != task.status and not task.is_terminal:
                logger.info(
                    f"[TaskSync] Task {task_id}: {task.status.value} -> {mapped.value} "
                    f"(backend status {remote_status})"
                )
                updated = await self.task_repo.update_status(task_id, mapped)
                task_updated = updated is not None

                error = gh_status.get("error")
                if task_updated and (gh_status.get("result") or error):
                    await self.task_repo.update_execution_result(
                        task_id,
                        reference=gh_status.get("job_id") or task.workflow_run_id,
                        result=gh_status.get("result"),
                        error=(
                            {"code": error.get("code"), "message": error.get("message")}
                            if error
                            else None
                        ),
                        completed_at=(gh_status.get("timestamps") or {}).get("completed_at"),
                    )

            if remote_status and remote_status != task.execution_status:
                await self.task_repo.update_execution_status(task_id, remote_status)
                job_updated = True
        except Exception as e:
            logger.warning(f"[TaskSync] Failed to persist sync for {task_id}: {e}")
            return SyncResult(task_id=task_id, error=f"Failed to persist sync: {e}")

        new_status = mapped if task_updated else previous
        return SyncResult(
            task_id=task_id,
            task_updated=task_updated,
            job_updated=job_updated,
            previous_status=previous.value,
            new_status=new_status.value,
            message=(
                "Status synced from GhostHands"
                if task_updated or job_updated
                else "Already in sync"
            ),
        )
