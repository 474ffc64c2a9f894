"""
Error types raised by the control plane.

Background loops catch everything inside a tick; these surface to direct
callers (wiring code, request handlers, tests).
"""


class ControlPlaneError(Exception):
    """Base class for control plane errors."""


class ConfigurationError(ControlPlaneError):
    """Required configuration is missing or inconsistent."""


class ProviderNotRegisteredError(ConfigurationError):
    def __init__(self, machine_type: str):
        self.machine_type = machine_type
        super().__init__(f"No sandbox provider registered for machine type: {machine_type}")


class AgentUrlUnavailableError(ControlPlaneError):
    """The sandbox has no address its agent can be reached on."""

    def __init__(self, sandbox_id: str, reason: str = "no reachable address"):
        self.sandbox_id = sandbox_id
        super().__init__(f"Sandbox {sandbox_id} agent URL unavailable: {reason}")


class InvalidPhaseTransitionError(ControlPlaneError):
    def __init__(self, task_id: str, from_phase: str, to_phase: str):
        self.task_id = task_id
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(
            f"Invalid phase transition for task {task_id}: {from_phase} -> {to_phase}"
        )


class SandboxNotFoundError(ControlPlaneError):
    def __init__(self, sandbox_id: str):
        self.sandbox_id = sandbox_id
        super().__init__(f"Sandbox {sandbox_id} not found")


class SandboxConflictError(ControlPlaneError):
    """Requested lifecycle change conflicts with the current machine state."""


class SandboxDuplicateInstanceError(SandboxConflictError):
    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"A sandbox with instance id {instance_id} already exists")


class ImmutableFieldError(ControlPlaneError):
    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Field '{field}' cannot be changed after creation")


class KasmApiError(ControlPlaneError):
    def __init__(self, endpoint: str, status_code: int, body: str = ""):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(f"Kasm API {endpoint} failed ({status_code}): {body}")


class ExecutionBackendError(ControlPlaneError):
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class InstanceNotFoundError(ControlPlaneError):
    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"EC2 instance {instance_id} not found")
