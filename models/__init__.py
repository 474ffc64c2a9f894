"""Data models for the sandbox control plane."""

from .sandbox import (
    BackingStatus,
    HealthStatus,
    MachineLifecycleResult,
    MachineState,
    MachineStatus,
    MachineType,
    SandboxRecord,
    SandboxStatus,
)
from .state import (
    ApplicationPhase,
    ExecutionStrategy,
    FailureSignal,
    FailureType,
    ProgressUpdate,
    ReconciliationSummary,
    StateTransition,
    SyncResult,
    TaskRecord,
    TaskStatus,
)

__all__ = [
    "BackingStatus",
    "HealthStatus",
    "MachineLifecycleResult",
    "MachineState",
    "MachineStatus",
    "MachineType",
    "SandboxRecord",
    "SandboxStatus",
    "ApplicationPhase",
    "ExecutionStrategy",
    "FailureSignal",
    "FailureType",
    "ProgressUpdate",
    "ReconciliationSummary",
    "StateTransition",
    "SyncResult",
    "TaskRecord",
    "TaskStatus",
]
