"""Configuration package for the sandbox control plane."""

from .policies import (
    AutoScalePolicy,
    AutoStopPolicy,
    HealthMonitorPolicy,
    ReconciliationPolicy,
)
from .settings import Settings, settings

__all__ = [
    "settings",
    "Settings",
    "AutoScalePolicy",
    "AutoStopPolicy",
    "HealthMonitorPolicy",
    "ReconciliationPolicy",
]
