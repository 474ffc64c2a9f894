"""
Configuration settings for the sandbox fleet control plane.
Uses pydantic-settings for environment variable management.

Absent configuration disables a feature instead of failing the process;
startup checks report what is missing.
"""

from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load .env file BEFORE pydantic-settings initializes
load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = Field(
        default="postgresql://localhost:5432/valet",
        description="Primary database for sandbox and task records",
    )
    database_direct_url: str | None = Field(
        default=None,
        description="Direct (non-pooled) connection used by the job queue",
    )

    # Redis Configuration
    redis_url: str = Field(default="redis://localhost:6379")
    redis_socket_timeout_seconds: float = Field(default=5.0, gt=0)
    phase_store: Literal["memory", "redis"] = Field(
        default="memory",
        description="Where application phase state lives",
    )
    phase_store_ttl_seconds: int = Field(default=86400, gt=0)

    # Execution backend (GhostHands)
    ghosthands_api_url: str | None = Field(default=None)
    gh_service_secret: str = Field(default="")
    gh_deploy_secret: str = Field(
        default="",
        description="Shared secret sent to sandbox agents for deploy/shutdown calls",
    )
    ghosthands_timeout_seconds: float = Field(default=15.0, gt=0)

    # AWS
    aws_region: str = Field(default="us-east-1")
    aws_access_key_id: str | None = Field(default=None)
    aws_secret_access_key: str | None = Field(default=None)
    aws_timeout_seconds: float = Field(default=10.0, gt=0)

    # Kasm Workspaces
    kasm_api_url: str | None = Field(default=None)
    kasm_api_key: str = Field(default="")
    kasm_api_key_secret: str = Field(default="")
    kasm_default_image_id: str = Field(default="")
    kasm_default_user_id: str = Field(default="")
    kasm_timeout_seconds: float = Field(default=30.0, gt=0)

    # Sandbox agent
    agent_port: int = Field(default=8000)
    agent_ping_timeout_seconds: float = Field(default=5.0, gt=0)
    agent_shutdown_timeout_seconds: float = Field(default=10.0, gt=0)

    # Auto-scale
    autoscale_enabled: bool = Field(default=False)
    autoscale_min_instances: int = Field(default=1, ge=0)
    autoscale_max_instances: int = Field(default=5, ge=0)
    autoscale_check_interval_seconds: float = Field(default=30.0, gt=0)
    autoscale_cooldown_seconds: float = Field(default=120.0, ge=0)
    autoscale_machine_type: str = Field(
        default="kasm",
        description="Machine type managed by the auto-scaler",
    )
    autoscale_environment: Literal["dev", "staging", "prod"] = Field(default="prod")

    # Auto-stop
    autostop_enabled: bool = Field(default=True)
    autostop_check_interval_seconds: float = Field(default=600.0, gt=0)

    # Stale task reconciliation
    reconciliation_enabled: bool = Field(default=True)
    reconciliation_interval_seconds: float = Field(default=600.0, gt=0)
    reconciliation_stuck_minutes: int = Field(default=30, gt=0)
    reconciliation_timeout_minutes: int = Field(default=120, gt=0)
    reconciliation_batch_size: int = Field(default=100, gt=0)

    # Sandbox health monitor
    health_monitor_enabled: bool = Field(default=True)
    health_check_interval_seconds: float = Field(default=300.0, gt=0)
    health_stale_minutes: int = Field(
        default=10,
        gt=0,
        description="Healthy sandboxes not checked within this window become degraded",
    )

    # Sandbox state polling after start/stop
    machine_poll_interval_seconds: float = Field(default=5.0, gt=0)
    machine_poll_timeout_seconds: float = Field(default=120.0, gt=0)

    # Job queue
    queue_name: str = Field(default="gh_apply_job")
    queue_retry_limit: int = Field(default=3, ge=0)
    queue_retry_delay_seconds: int = Field(default=15, ge=0)
    queue_expire_seconds: int = Field(default=1800, gt=0)
    queue_command_timeout_seconds: float = Field(default=10.0, gt=0)

    # Observability
    sentry_dsn: str | None = Field(default=None)
    sentry_environment: str = Field(default="development")
    sentry_traces_sample_rate: float = Field(default=0.1, ge=0, le=1)
    log_level: str = Field(default="INFO")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Global settings instance
settings = Settings()
