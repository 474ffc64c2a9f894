"""EC2-backed sandboxes: cloud VMs started and stopped through the EC2 API."""

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
from services.ec2 import EC2Service
from services.errors import AgentUrlUnavailableError

from .base import SandboxProvider

logger = logging.getLogger(__name__)

EC2_STATE_MAP: dict[str, MachineState] = {
    "pending": MachineState.STARTING,
    "running": MachineState.RUNNING,
    "shutting-down": MachineState.STOPPING,
    "stopping": MachineState.STOPPING,
    "stopped": MachineState.STOPPED,
    "terminated": MachineState.TERMINATED,
}


class Ec2SandboxProvider(SandboxProvider):
    machine_type = MachineType.EC2

    def __init__(
        self,
        ec2: EC2Service,
        agent_port: int | None = None,
        http_client: httpx.AsyncClient | None = None,
        ping_timeout_seconds: float | None = None,
    ):
        super().__init__(http_client=http_client, ping_timeout_seconds=ping_timeout_seconds)
        self.ec2 = ec2
        self.agent_port = agent_port or settings.agent_port

    async def start_machine(self, sandbox: SandboxRecord) -> MachineLifecycleResult:
        await self.ec2.start_instance(sandbox.instance_id)
        return MachineLifecycleResult(
            success=True,
            message="EC2 instance starting",
            new_status="pending",
        )

    async def stop_machine(self, sandbox: SandboxRecord) -> MachineLifecycleResult:
        await self.ec2.stop_instance(sandbox.instance_id)
        return MachineLifecycleResult(
            success=True,
            message="EC2 instance stopping",
            new_status="stopping",
        )

    async def get_machine_status(self, sandbox: SandboxRecord) -> MachineStatus:
        instance = await self.ec2.describe_instance(sandbox.instance_id)
        raw_state = instance.get("State", {}).get("Name", "")
        return MachineStatus(
            state=EC2_STATE_MAP.get(raw_state, MachineState.UNKNOWN),
            public_ip=instance.get("PublicIpAddress") or sandbox.public_ip,
            private_ip=instance.get("PrivateIpAddress") or sandbox.private_ip,
            machine_metadata={
                "ec2_state": raw_state,
                "instance_type": instance.get("InstanceType"),
            },
        )

    def get_agent_url(self, sandbox: SandboxRecord) -> str:
        if not sandbox.public_ip:
            raise AgentUrlUnavailableError(sandbox.id, "no public IP")
        return f"http://{sandbox.public_ip}:{self.agent_port}"
