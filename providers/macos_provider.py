"""
Always-on macOS hosts.

The machine itself is never powered on through this control plane; "start"
is a no-op and "stop" asks the sandbox agent to shut the host down.
Liveness is whatever the agent's health endpoint says.
"""

import logging

import httpx

from config.settings import settings
from models.sandbox import (
    MachineLifecycleResult,
    MachineState,
    MachineStatus,
    MachineType,
    SandboxRecord,
)
from services.errors import AgentUrlUnavailableError

from .base import SandboxProvider

logger = logging.getLogger(__name__)


class MacOsSandboxProvider(SandboxProvider):
    machine_type = MachineType.MACOS

    def __init__(
        self,
        deploy_secret: str | None = None,
        agent_port: int | None = None,
        shutdown_timeout_seconds: float | None = None,
        http_client: httpx.AsyncClient | None = None,
        ping_timeout_seconds: float | None = None,
    ):
        super().__init__(http_client=http_client, ping_timeout_seconds=ping_timeout_seconds)
        self.deploy_secret = deploy_secret if deploy_secret is not None else settings.gh_deploy_secret
        self.agent_port = agent_port or settings.agent_port
        self.shutdown_timeout_seconds = (
            shutdown_timeout_seconds or settings.agent_shutdown_timeout_seconds
        )

    async def start_machine(self, sandbox: SandboxRecord) -> MachineLifecycleResult:
        return MachineLifecycleResult(success=True, message="macOS machine is always on")

    async def stop_machine(self, sandbox: SandboxRecord) -> MachineLifecycleResult:
        try:
            response = await self._request(
                "POST",
                f"{self.get_agent_url(sandbox)}/system/shutdown",
                headers={"X-Deploy-Secret": self.deploy_secret},
                timeout=self.shutdown_timeout_seconds,
            )
        except (httpx.HTTPError, AgentUrlUnavailableError) as e:
            logger.warning(f"[macOS] Shutdown request failed for sandbox {sandbox.id}: {e}")
            return MachineLifecycleResult(
                success=False,
                message="Failed to reach macOS agent for shutdown",
            )

        if response.is_success:
            return MachineLifecycleResult(success=True, message="Shutdown initiated")
        return MachineLifecycleResult(success=False, message="Shutdown failed")

    async def get_machine_status(self, sandbox: SandboxRecord) -> MachineStatus:
        reachable = await self.ping_agent(sandbox)
        return MachineStatus(
            state=MachineState.RUNNING if reachable else MachineState.STOPPED,
            public_ip=sandbox.public_ip,
            private_ip=sandbox.private_ip,
        )

    def get_agent_url(self, sandbox: SandboxRecord) -> str:
        host = sandbox.public_ip or sandbox.private_ip
        if not host:
            raise AgentUrlUnavailableError(sandbox.id, "no IP configured")
        return f"http://{host}:{self.agent_port}"
