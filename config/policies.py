"""
Per-loop policies.

Each background loop receives its policy at construction time so tests can
pass arbitrary values without touching the environment.
"""

from dataclasses import dataclass

from models.sandbox import MachineType

from .settings import Settings


@dataclass(frozen=True)
class AutoScalePolicy:
    """Bounds and pacing for the auto-scaler."""

    enabled: bool = False
    machine_type: MachineType = MachineType.KASM
    min_instances: int = 1
    max_instances: int = 5
    check_interval_seconds: float = 30.0
    cooldown_seconds: float = 120.0
    environment: str = "prod"

    def __post_init__(self) -> None:
        if self.min_instances > self.max_instances:
            raise ValueError(
                f"min_instances ({self.min_instances}) exceeds "
                f"max_instances ({self.max_instances})"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "AutoScalePolicy":
        return cls(
            enabled=settings.autoscale_enabled,
            machine_type=MachineType(settings.autoscale_machine_type),
            min_instances=settings.autoscale_min_instances,
            max_instances=settings.autoscale_max_instances,
            check_interval_seconds=settings.autoscale_check_interval_seconds,
            cooldown_seconds=settings.autoscale_cooldown_seconds,
            environment=settings.autoscale_environment,
        )


@dataclass(frozen=True)
class AutoStopPolicy:
    enabled: bool = True
    check_interval_seconds: float = 600.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "AutoStopPolicy":
        return cls(
            enabled=settings.autostop_enabled,
            check_interval_seconds=settings.autostop_check_interval_seconds,
        )


@dataclass(frozen=True)
class ReconciliationPolicy:
    """Thresholds for detecting and failing stuck tasks."""

    enabled: bool = True
    interval_seconds: float = 600.0
    stuck_minutes: int = 30
    timeout_minutes: int = 120
    batch_size: int = 100

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReconciliationPolicy":
        return cls(
            enabled=settings.reconciliation_enabled,
            interval_seconds=settings.reconciliation_interval_seconds,
            stuck_minutes=settings.reconciliation_stuck_minutes,
            timeout_minutes=settings.reconciliation_timeout_minutes,
            batch_size=settings.reconciliation_batch_size,
        )


@dataclass(frozen=True)
class HealthMonitorPolicy:
    enabled: bool = True
    interval_seconds: float = 300.0
    stale_minutes: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "HealthMonitorPolicy":
        return cls(
            enabled=settings.health_monitor_enabled,
            interval_seconds=settings.health_check_interval_seconds,
            stale_minutes=settings.health_stale_minutes,
        )
