"""
SQLAlchemy models for the control plane tables.

The repositories in services/database.py convert rows into the plain
records from models.sandbox and models.state; nothing outside that module
touches these classes directly.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# SANDBOXES
# =============================================================================

class Sandbox(Base):
    """A remote machine hosting browser sessions."""
    __tablename__ = "sandboxes"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    environment = Column(String, nullable=False)  # dev | staging | prod
    instance_id = Column(String, unique=True, nullable=False)
    instance_type = Column(String, nullable=False)
    public_ip = Column(String)
    private_ip = Column(String)

    status = Column(String, nullable=False, default="provisioning")  # SandboxStatus
    health_status = Column(String, nullable=False, default="unhealthy")  # HealthStatus
    last_health_check_at = Column(DateTime(timezone=True))

    capacity = Column(Integer, nullable=False, default=5)
    current_load = Column(Integer, nullable=False, default=0)

    novnc_url = Column(Text)
    browser_config = Column(JSONB)
    tags = Column(JSONB)

    ec2_status = Column(String, default="stopped")  # BackingStatus
    last_started_at = Column(DateTime(timezone=True))
    last_stopped_at = Column(DateTime(timezone=True))
    auto_stop_enabled = Column(Boolean, nullable=False, default=False)
    idle_minutes_before_stop = Column(Integer, nullable=False, default=30)
    machine_type = Column(String, nullable=False, default="ec2")  # MachineType

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_sandboxes_machine_type", "machine_type"),
        Index("idx_sandboxes_status", "status"),
        Index("idx_sandboxes_auto_stop", "auto_stop_enabled", "ec2_status"),
    )


# =============================================================================
# TASKS
# =============================================================================

class Task(Base):
    """One job-application automation task."""
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, nullable=False)
    status = Column(String, nullable=False, default="created")  # TaskStatus

    # External execution reference and last status seen on the backend
    workflow_run_id = Column(String)
    execution_status = Column(String)

    progress = Column(Integer, nullable=False, default=0)
    current_step = Column(Text)
    error_code = Column(String)
    error_message = Column(Text)
    result_data = Column(JSONB)

    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_tasks_status_updated", "status", "updated_at"),
        Index("idx_tasks_user", "user_id"),
    )


# =============================================================================
# JOB QUEUE
# =============================================================================

class QueueJob(Base):
    """Durable job row consumed by execution workers.

    Accessed with raw SQL through asyncpg in services/task_queue.py; the model
    exists so the table is created with the rest of the schema.
    """
    __tablename__ = "task_queue_jobs"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)  # queue or "<queue>:<worker_id>"
    state = Column(String, nullable=False, default="created")
    data = Column(JSONB, nullable=False)
    retry_limit = Column(Integer, nullable=False, default=3)
    retry_count = Column(Integer, nullable=False, default=0)
    retry_delay_seconds = Column(Integer, nullable=False, default=15)
    retry_backoff = Column(Boolean, nullable=False, default=True)
    expire_in_seconds = Column(Integer, nullable=False, default=1800)
    created_on = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    started_on = Column(DateTime(timezone=True))
    completed_on = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_task_queue_jobs_name_state", "name", "state"),
    )
