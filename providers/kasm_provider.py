"""
Kasm Workspaces sessions.

A "machine" here is a Kasm session: starting requests a new session,
stopping destroys it. The session id is stored as the sandbox instance id
and the port map in the sandbox tags.
"""

import logging
from typing import Any

import httpx

from config.settings import settings
from models.sandbox import (
    MachineLifecycleResult,
    MachineState,
    MachineStatus,
    MachineType,
    SandboxRecord,
)
from services.errors import AgentUrlUnavailableError, KasmApiError
from services.kasm import KasmClient

from .base import SandboxProvider

logger = logging.getLogger(__name__)

# Container port the worker agent listens on inside a Kasm session
KASM_AGENT_PORT = "3100"

KASM_STATE_MAP: dict[str, MachineState] = {
    "running": MachineState.RUNNING,
    "starting": MachineState.STARTING,
    "stopping": MachineState.STOPPING,
    "stopped": MachineState.STOPPED,
    "deleting": MachineState.STOPPING,
    "deleted": MachineState.TERMINATED,
}


class KasmSandboxProvider(SandboxProvider):
    machine_type = MachineType.KASM

    def __init__(
        self,
        kasm: KasmClient,
        default_image_id: str | None = None,
        default_user_id: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        ping_timeout_seconds: float | None = None,
    ):
        super().__init__(http_client=http_client, ping_timeout_seconds=ping_timeout_seconds)
        self.kasm = kasm
        self.default_image_id = (
            default_image_id if default_image_id is not None else settings.kasm_default_image_id
        )
        self.default_user_id = (
            default_user_id if default_user_id is not None else settings.kasm_default_user_id
        )

    async def start_machine(self, sandbox: SandboxRecord) -> MachineLifecycleResult:
        image_id = sandbox.tags.get("kasm_image_id") or self.default_image_id
        user_id = sandbox.tags.get("kasm_user_id") or self.default_user_id

        response = await self.kasm.request_kasm(image_id=image_id, user_id=user_id)
        return MachineLifecycleResult(
            success=True,
            message="Kasm session created",
            new_status="pending",
            metadata={
                "kasm_id": response.get("kasm_id"),
                "kasm_url": response.get("kasm_url"),
                "hostname": response.get("hostname"),
                "session_token": response.get("session_token"),
                "kasm_port_map": response.get("port_map") or {},
                "kasm_image_id": image_id,
                "kasm_user_id": user_id,
            },
        )

    async def stop_machine(self, sandbox: SandboxRecord) -> MachineLifecycleResult:
        if not sandbox.instance_id:
            return MachineLifecycleResult(
                success=False,
                message="No Kasm session ID (instanceId) to destroy",
            )
        await self.kasm.destroy_kasm(sandbox.instance_id)
        return MachineLifecycleResult(
            success=True,
            message="Kasm session destroyed",
            new_status="stopping",
        )

    async def get_machine_status(self, sandbox: SandboxRecord) -> MachineStatus:
        if not sandbox.instance_id:
            return MachineStatus(state=MachineState.UNKNOWN)

        try:
            kasm = await self.kasm.get_kasm_status(sandbox.instance_id)
        except (KasmApiError, httpx.HTTPError) as e:
            # Session lookups fail once a session is destroyed
            logger.debug(f"[Kasm] Status lookup failed for {sandbox.instance_id}: {e}")
            return MachineStatus(state=MachineState.STOPPED, public_ip=sandbox.public_ip)

        return MachineStatus(
            state=KASM_STATE_MAP.get(kasm.get("operational_status", ""), MachineState.UNKNOWN),
            public_ip=kasm.get("hostname") or sandbox.public_ip,
            private_ip=sandbox.private_ip,
            machine_metadata={
                "kasm_url": kasm.get("kasm_url"),
                "port_map": kasm.get("port_map"),
            },
        )

    def get_agent_url(self, sandbox: SandboxRecord) -> str:
        port_map: dict[str, Any] = sandbox.tags.get("kasm_port_map") or {}
        mapped = port_map.get(KASM_AGENT_PORT)
        if mapped:
            host = sandbox.public_ip or sandbox.tags.get("kasm_hostname")
            if host:
                return f"http://{host}:{mapped['port']}"

        if sandbox.public_ip:
            return f"http://{sandbox.public_ip}:{KASM_AGENT_PORT}"

        raise AgentUrlUnavailableError(sandbox.id, "no Kasm port mapping or public IP")

    @property
    def supports_keepalive(self) -> bool:
        return True

    async def keepalive(self, sandbox: SandboxRecord) -> None:
        if sandbox.instance_id:
            await self.kasm.keepalive(sandbox.instance_id)
