"""
Control plane wiring.

Builds every collaborator from settings, runs the startup checks and owns
the start/stop order of the background loops.
"""

import logging
from typing import Optional

from redis.exceptions import RedisError

from config.policies import (
    AutoScalePolicy,
    AutoStopPolicy,
    HealthMonitorPolicy,
    ReconciliationPolicy,
)
from config.settings import Settings, settings as default_settings
from monitors import (
    AutoScaleMonitor,
    AutoStopMonitor,
    SandboxHealthMonitor,
    StaleTaskReconciliationMonitor,
)
from providers.registry import build_default_registry

from .application_tracker import ApplicationTracker, InMemoryPhaseStore, RedisPhaseStore
from .database import Database, SandboxRepository, TaskRepository
from .events import EventPublisher
from .ghosthands import GhostHandsClient, TaskSyncService
from .kasm import KasmClient
from .sandbox_service import SandboxService
from .startup_checks import has_failure, run_startup_checks
from .task_queue import TaskQueueService

logger = logging.getLogger(__name__)


class ControlPlane:
    """All long-lived services plus the four background loops."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        s = self.settings

        self.db = Database(s.database_url)
        self.sandbox_repo = SandboxRepository(self.db)
        self.task_repo = TaskRepository(self.db)

        self.publisher = EventPublisher(s.redis_url, s.redis_socket_timeout_seconds)
        self.task_queue = TaskQueueService(
            s.database_direct_url,
            queue_name=s.queue_name,
            retry_limit=s.queue_retry_limit,
            retry_delay_seconds=s.queue_retry_delay_seconds,
            expire_seconds=s.queue_expire_seconds,
            command_timeout=s.queue_command_timeout_seconds,
        )
        self.ghosthands = GhostHandsClient(
            s.ghosthands_api_url, s.gh_service_secret, s.ghosthands_timeout_seconds
        )
        self.task_sync = TaskSyncService(self.task_repo, self.ghosthands)

        self.kasm = (
            KasmClient(s.kasm_api_url, s.kasm_api_key, s.kasm_api_key_secret, s.kasm_timeout_seconds)
            if s.kasm_api_url
            else None
        )
        self.registry = build_default_registry(s, kasm=self.kasm)
        self.sandbox_service = SandboxService(
            self.sandbox_repo,
            self.registry,
            poll_interval_seconds=s.machine_poll_interval_seconds,
            poll_timeout_seconds=s.machine_poll_timeout_seconds,
        )
        self.tracker: Optional[ApplicationTracker] = None

        self.startup_results = run_startup_checks(s, self.registry)

        self.auto_scale: Optional[AutoScaleMonitor] = None
        if s.autoscale_enabled and not has_failure(self.startup_results, "autoscale"):
            self.auto_scale = AutoScaleMonitor(
                self.sandbox_repo,
                self.sandbox_service,
                self.task_queue,
                self.task_repo,
                AutoScalePolicy.from_settings(s),
            )
        self.auto_stop = AutoStopMonitor(
            self.sandbox_repo,
            self.sandbox_service,
            AutoStopPolicy.from_settings(s),
        )
        self.reconciliation = StaleTaskReconciliationMonitor(
            self.task_repo,
            self.task_sync,
            self.publisher,
            ReconciliationPolicy.from_settings(s),
        )
        self.health = SandboxHealthMonitor(
            self.sandbox_service,
            HealthMonitorPolicy.from_settings(s),
        )

    @property
    def monitors(self) -> list:
        loops = [self.auto_stop, self.reconciliation, self.health]
        if self.auto_scale is not None:
            loops.insert(0, self.auto_scale)
        return loops

    async def start(self) -> None:
        await self.task_queue.start()
        try:
            await self.publisher.connect()
        except (RedisError, OSError) as e:
            logger.warning(f"[ControlPlane] Redis unavailable at startup, events will retry: {e}")

        store = (
            RedisPhaseStore(self.publisher.client, ttl=self.settings.phase_store_ttl_seconds)
            if self.settings.phase_store == "redis" and self.publisher.client is not None
            else InMemoryPhaseStore()
        )
        self.tracker = ApplicationTracker(self.publisher, store)

        for monitor in self.monitors:
            monitor.start()
        logger.info("[ControlPlane] Started")

    async def stop(self) -> None:
        for monitor in reversed(self.monitors):
            await monitor.stop()
        await self.sandbox_service.close()
        await self.task_queue.stop()
        await self.ghosthands.close()
        if self.kasm is not None:
            await self.kasm.close()
        await self.publisher.disconnect()
        await self.db.dispose()
        logger.info("[ControlPlane] Stopped")
