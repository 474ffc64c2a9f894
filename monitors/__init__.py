"""Background loops that keep the fleet and task table in shape."""

from .auto_scale import AutoScaleMonitor, ScaleDecision
from .auto_stop import AutoStopMonitor
from .health import SandboxHealthMonitor
from .periodic import PeriodicTask
from .reconciliation import StaleTaskReconciliationMonitor

__all__ = [
    "AutoScaleMonitor",
    "AutoStopMonitor",
    "PeriodicTask",
    "SandboxHealthMonitor",
    "ScaleDecision",
    "StaleTaskReconciliationMonitor",
]
