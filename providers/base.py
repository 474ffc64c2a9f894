"""
Sandbox provider contract.

One provider per machine type. Providers translate lifecycle requests into
calls against the backing system (cloud API, sandbox agent, session
service) and normalize the machine state they report.
"""

import logging
from abc import ABC, abstractmethod

import httpx

from config.settings import settings
from models.sandbox import (
    MachineLifecycleResult,
    MachineStatus,
    MachineType,
    SandboxRecord,
)
from services.errors import AgentUrlUnavailableError

logger = logging.getLogger(__name__)


class SandboxProvider(ABC):
    """Lifecycle operations for one machine type."""

    machine_type: MachineType

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        ping_timeout_seconds: float | None = None,
    ):
        self._http_client = http_client
        self.ping_timeout_seconds = ping_timeout_seconds or settings.agent_ping_timeout_seconds

    @abstractmethod
    async def start_machine(self, sandbox: SandboxRecord) -> MachineLifecycleResult:
        ...

    @abstractmethod
    async def stop_machine(self, sandbox: SandboxRecord) -> MachineLifecycleResult:
        ...

    @abstractmethod
    async def get_machine_status(self, sandbox: SandboxRecord) -> MachineStatus:
        ...

    @abstractmethod
    def get_agent_url(self, sandbox: SandboxRecord) -> str:
        """Base URL of the sandbox agent. Raises AgentUrlUnavailableError."""

    @property
    def supports_keepalive(self) -> bool:
        return False

    async def keepalive(self, sandbox: SandboxRecord) -> None:
        """Extend the machine's lease. No-op for providers without leases."""

    async def ping_agent(self, sandbox: SandboxRecord) -> bool:
        """True if the agent answers ``/health`` with a 2xx in time."""
        try:
            url = f"{self.get_agent_url(sandbox)}/health"
        except AgentUrlUnavailableError:
            return False

        try:
            response = await self._request("GET", url, timeout=self.ping_timeout_seconds)
        except httpx.HTTPError as e:
            logger.debug(f"[Provider] Agent ping failed for sandbox {sandbox.id}: {e}")
            return False
        return response.is_success

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.request(method, url, **kwargs)
        async with httpx.AsyncClient() as client:
            return await client.request(method, url, **kwargs)
