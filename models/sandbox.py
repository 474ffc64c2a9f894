"""
Sandbox machine model.

Plain dataclasses and enums shared by providers, services and monitors.
Database rows are converted into SandboxRecord at the repository boundary.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


# =============================================================================
# ENUMS
# =============================================================================

class MachineType(str, Enum):
    """Kind of machine backing a sandbox. Immutable once a sandbox exists."""
    EC2 = "ec2"                    # Cloud VM
    MACOS = "macos"                # Always-on physical host
    KASM = "kasm"                  # Managed browser session service
    LOCAL_DOCKER = "local_docker"  # Local container


DEFAULT_MACHINE_TYPE = MachineType.EC2


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class SandboxStatus(str, Enum):
    """Lifecycle status of the sandbox record."""
    PROVISIONING = "provisioning"
    ACTIVE = "active"
    STOPPING = "stopping"
    STOPPED = "stopped"
    TERMINATED = "terminated"
    UNHEALTHY = "unhealthy"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class BackingStatus(str, Enum):
    """Status of the underlying machine as last persisted."""
    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    TERMINATED = "terminated"


class MachineState(str, Enum):
    """Normalized machine state reported by a provider."""
    RUNNING = "running"
    STOPPED = "stopped"
    STARTING = "starting"
    STOPPING = "stopping"
    TERMINATED = "terminated"
    UNKNOWN = "unknown"


# Provider state -> persisted backing status. UNKNOWN leaves the record alone.
MACHINE_STATE_TO_BACKING: dict[MachineState, BackingStatus] = {
    MachineState.RUNNING: BackingStatus.RUNNING,
    MachineState.STOPPED: BackingStatus.STOPPED,
    MachineState.STARTING: BackingStatus.PENDING,
    MachineState.STOPPING: BackingStatus.STOPPING,
    MachineState.TERMINATED: BackingStatus.TERMINATED,
}


# =============================================================================
# RECORDS
# =============================================================================

@dataclass
class SandboxRecord:
    """A managed remote machine able to host browser sessions."""
    id: str
    name: str
    environment: str
    instance_id: str
    instance_type: str
    machine_type: Optional[MachineType] = DEFAULT_MACHINE_TYPE
    public_ip: Optional[str] = None
    private_ip: Optional[str] = None
    status: SandboxStatus = SandboxStatus.PROVISIONING
    health_status: HealthStatus = HealthStatus.UNHEALTHY
    last_health_check_at: Optional[datetime] = None
    capacity: int = 5
    current_load: int = 0
    backing_status: Optional[BackingStatus] = BackingStatus.STOPPED
    auto_stop_enabled: bool = False
    idle_minutes_before_stop: int = 30
    novnc_url: Optional[str] = None
    tags: dict[str, Any] = field(default_factory=dict)
    browser_config: dict[str, Any] = field(default_factory=dict)
    last_started_at: Optional[datetime] = None
    last_stopped_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminated(self) -> bool:
        return (
            self.status == SandboxStatus.TERMINATED
            or self.backing_status == BackingStatus.TERMINATED
        )

    @property
    def is_running(self) -> bool:
        return self.backing_status == BackingStatus.RUNNING

    @property
    def is_idle(self) -> bool:
        """Running with no browser sessions assigned."""
        return self.is_running and self.current_load == 0


@dataclass
class MachineLifecycleResult:
    """Outcome of a start/stop request sent to a provider."""
    success: bool
    message: str
    new_status: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class MachineStatus:
    """Machine state as reported by the provider."""
    state: MachineState
    public_ip: Optional[str] = None
    private_ip: Optional[str] = None
    machine_metadata: dict[str, Any] = field(default_factory=dict)
