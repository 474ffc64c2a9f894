"""
Sandbox lifecycle orchestration.

Sits between callers (auto-scaler, auto-stop, health monitor, admin
tooling) and the providers: resolves the provider through the registry,
guards against conflicting lifecycle requests, persists what the provider
reports and follows the machine in the background until it settles.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from config.settings import settings
from models.sandbox import (
    MACHINE_STATE_TO_BACKING,
    BackingStatus,
    HealthStatus,
    MachineLifecycleResult,
    SandboxRecord,
    SandboxStatus,
)
from providers.registry import SandboxProviderRegistry

from .errors import (
    SandboxConflictError,
    SandboxDuplicateInstanceError,
    SandboxNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    sandbox_id: str
    name: str
    status: HealthStatus
    checked_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SandboxService:
    """Start, stop, observe and health-check sandboxes."""

    def __init__(
        self,
        sandbox_repo,
        registry: SandboxProviderRegistry,
        poll_interval_seconds: Optional[float] = None,
        poll_timeout_seconds: Optional[float] = None,
        follow_transitions: bool = True,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.sandbox_repo = sandbox_repo
        self.registry = registry
        self.poll_interval_seconds = poll_interval_seconds or settings.machine_poll_interval_seconds
        self.poll_timeout_seconds = poll_timeout_seconds or settings.machine_poll_timeout_seconds
        self.follow_transitions = follow_transitions
        self._now = now
        self._pollers: set[asyncio.Task] = set()

    # =========================================================================
    # Records
    # =========================================================================

    async def get_by_id(self, sandbox_id: str) -> SandboxRecord:
        sandbox = await self.sandbox_repo.find_by_id(sandbox_id)
        if sandbox is None:
            raise SandboxNotFoundError(sandbox_id)
        return sandbox

    async def create(self, **fields: Any) -> SandboxRecord:
        instance_id = fields.get("instance_id")
        if instance_id and await self.sandbox_repo.find_by_instance_id(instance_id):
            raise SandboxDuplicateInstanceError(instance_id)
        # Fail before persisting anything if the machine type has no provider
        if fields.get("machine_type") is not None:
            self.registry.get_by_type(fields["machine_type"])
        return await self.sandbox_repo.create(**fields)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start_sandbox(self, sandbox_id: str) -> MachineLifecycleResult:
        sandbox = await self.get_by_id(sandbox_id)
        if sandbox.is_terminated:
            raise SandboxConflictError(f"Sandbox {sandbox_id} is terminated")
        if sandbox.backing_status in (BackingStatus.RUNNING, BackingStatus.PENDING):
            raise SandboxConflictError(
                f"Sandbox {sandbox_id} is already {sandbox.backing_status.value}"
            )

        provider = self.registry.get_provider(sandbox)
        result = await provider.start_machine(sandbox)
        if not result.success:
            logger.warning(f"[Sandboxes] Start of {sandbox.name} not accepted: {result.message}")
            return result

        fields: dict[str, Any] = {"last_started_at": self._now()}
        metadata = result.metadata or {}
        if metadata:
            if metadata.get("kasm_id"):
                fields["instance_id"] = metadata["kasm_id"]
            if metadata.get("kasm_url"):
                fields["novnc_url"] = metadata["kasm_url"]
            if metadata.get("hostname"):
                fields["public_ip"] = metadata["hostname"]
            fields["tags"] = {**sandbox.tags, **metadata}

        await self.sandbox_repo.update_backing_status(sandbox_id, BackingStatus.PENDING, **fields)
        logger.info(f"[Sandboxes] Starting {sandbox.name} ({provider.machine_type.value}): {result.message}")

        self._follow(sandbox_id, BackingStatus.RUNNING)
        return result

    async def stop_sandbox(self, sandbox_id: str) -> MachineLifecycleResult:
        sandbox = await self.get_by_id(sandbox_id)
        if sandbox.backing_status in (BackingStatus.STOPPED, BackingStatus.STOPPING):
            raise SandboxConflictError(
                f"Sandbox {sandbox_id} is already {sandbox.backing_status.value}"
            )

        provider = self.registry.get_provider(sandbox)
        result = await provider.stop_machine(sandbox)
        if not result.success:
            logger.warning(f"[Sandboxes] Stop of {sandbox.name} failed: {result.message}")
            return result

        await self.sandbox_repo.update_backing_status(
            sandbox_id,
            BackingStatus.STOPPING,
            last_stopped_at=self._now(),
        )
        logger.info(f"[Sandboxes] Stopping {sandbox.name} ({provider.machine_type.value}): {result.message}")

        self._follow(sandbox_id, BackingStatus.STOPPED)
        return result

    async def refresh_machine_status(self, sandbox_id: str) -> SandboxRecord:
        """Ask the provider for the machine state and persist it if it moved."""
        sandbox = await self.get_by_id(sandbox_id)
        provider = self.registry.get_provider(sandbox)
        status = await provider.get_machine_status(sandbox)

        backing = MACHINE_STATE_TO_BACKING.get(status.state)
        if backing is None or backing == sandbox.backing_status:
            return sandbox

        fields: dict[str, Any] = {}
        if status.public_ip and status.public_ip != sandbox.public_ip:
            fields["public_ip"] = status.public_ip
        if backing == BackingStatus.RUNNING and sandbox.status == SandboxStatus.PROVISIONING:
            fields["status"] = SandboxStatus.ACTIVE
        elif backing == BackingStatus.TERMINATED:
            fields["status"] = SandboxStatus.TERMINATED

        logger.info(
            f"[Sandboxes] {sandbox.name}: backing status "
            f"{sandbox.backing_status.value if sandbox.backing_status else None} -> {backing.value}"
        )
        updated = await self.sandbox_repo.update_backing_status(sandbox_id, backing, **fields)
        return updated or sandbox

    async def send_keepalive(self, sandbox_id: str) -> bool:
        """Extend a leased session. False when unsupported or the call failed."""
        sandbox = await self.sandbox_repo.find_by_id(sandbox_id)
        if sandbox is None:
            return False
        return await self._keepalive(sandbox)

    async def _keepalive(self, sandbox: SandboxRecord) -> bool:
        provider = self.registry.get_provider(sandbox)
        if not provider.supports_keepalive:
            return False
        try:
            await provider.keepalive(sandbox)
        except Exception as e:
            logger.warning(f"[Sandboxes] Keepalive failed for {sandbox.name}: {e}")
            return False
        return True

    # =========================================================================
    # Health
    # =========================================================================

    async def health_check(self, sandbox_id: str) -> Optional[HealthCheckResult]:
        """Ping the agent and record the result. None when the machine is not up."""
        sandbox = await self.get_by_id(sandbox_id)
        if sandbox.is_terminated or sandbox.backing_status not in (
            BackingStatus.RUNNING,
            BackingStatus.PENDING,
        ):
            logger.debug(f"[Sandboxes] Skipping health check for {sandbox.name}: not running")
            return None
        provider = self.registry.get_provider(sandbox)
        healthy = await provider.ping_agent(sandbox)
        checked_at = self._now()
        status = HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY
        await self.sandbox_repo.update_health_status(sandbox_id, status, checked_at=checked_at)
        return HealthCheckResult(sandbox.id, sandbox.name, status, checked_at)

    async def check_all_sandboxes(self) -> list[HealthCheckResult]:
        """Health-check every running or starting sandbox, one at a time.

        Healthy running sandboxes on providers with leased sessions get a
        keepalive in the same pass.
        """
        sandboxes = await self.sandbox_repo.find_with_backing_status(
            BackingStatus.RUNNING, BackingStatus.PENDING
        )
        results: list[HealthCheckResult] = []
        for sandbox in sandboxes:
            try:
                result = await self.health_check(sandbox.id)
            except Exception as e:
                logger.error(f"[Sandboxes] Health check failed for {sandbox.name}: {e}")
                continue
            if result is None:
                continue
            results.append(result)
            if result.status == HealthStatus.HEALTHY and sandbox.is_running:
                await self._keepalive(sandbox)
        return results

    async def enforce_state_consistency(self, stale_minutes: int) -> int:
        """Downgrade healthy sandboxes that have not been checked recently."""
        cutoff = self._now() - timedelta(minutes=stale_minutes)
        stale = await self.sandbox_repo.find_stale_healthy(cutoff)
        for sandbox in stale:
            logger.warning(
                f"[Sandboxes] {sandbox.name} not checked in {stale_minutes}m, marking degraded"
            )
            await self.sandbox_repo.update_health_status(sandbox.id, HealthStatus.DEGRADED)
        return len(stale)

    # =========================================================================
    # Background status polling
    # =========================================================================

    def _follow(self, sandbox_id: str, target: BackingStatus) -> None:
        if not self.follow_transitions:
            return
        task = asyncio.create_task(self._poll_until_stable(sandbox_id, target))
        self._pollers.add(task)
        task.add_done_callback(self._pollers.discard)

    async def _poll_until_stable(self, sandbox_id: str, target: BackingStatus) -> None:
        deadline = time.monotonic() + self.poll_timeout_seconds
        try:
            while time.monotonic() < deadline:
                await asyncio.sleep(self.poll_interval_seconds)
                sandbox = await self.refresh_machine_status(sandbox_id)
                if sandbox.backing_status in (target, BackingStatus.TERMINATED):
                    return
            logger.warning(
                f"[Sandboxes] {sandbox_id} did not reach {target.value} "
                f"within {self.poll_timeout_seconds:.0f}s"
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Sandboxes] Failed to poll machine status for {sandbox_id}: {e}")

    async def close(self) -> None:
        """Cancel background polls."""
        for task in list(self._pollers):
            task.cancel()
        if self._pollers:
            await asyncio.gather(*self._pollers, return_exceptions=True)
        self._pollers.clear()
