"""
Pytest configuration and fixtures for control plane tests.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

# Add the parent directory to the path so we can import the packages
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.sandbox import (  # noqa: E402
    BackingStatus,
    HealthStatus,
    MachineType,
    SandboxRecord,
    SandboxStatus,
)
from models.state import TaskRecord, TaskStatus  # noqa: E402

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def set_test_env(monkeypatch):
    """Keep tests independent of any local .env."""
    monkeypatch.setenv("AUTOSCALE_ENABLED", "false")
    monkeypatch.delenv("KASM_API_URL", raising=False)
    monkeypatch.delenv("SENTRY_DSN", raising=False)
    yield


@pytest.fixture
def now():
    return NOW


def make_sandbox(**overrides) -> SandboxRecord:
    fields = dict(
        id="sb-1",
        name="sandbox-1",
        environment="prod",
        instance_id="i-0123456789",
        instance_type="t3.large",
        machine_type=MachineType.EC2,
        public_ip="203.0.113.10",
        private_ip="10.0.0.10",
        status=SandboxStatus.ACTIVE,
        health_status=HealthStatus.HEALTHY,
        backing_status=BackingStatus.RUNNING,
        current_load=0,
        updated_at=NOW - timedelta(minutes=5),
        created_at=NOW - timedelta(days=1),
    )
    fields.update(overrides)
    return SandboxRecord(**fields)


def make_task(**overrides) -> TaskRecord:
    fields = dict(
        id="task-1",
        user_id="user-1",
        status=TaskStatus.IN_PROGRESS,
        updated_at=NOW - timedelta(minutes=45),
        workflow_run_id="gh-job-1",
    )
    fields.update(overrides)
    return TaskRecord(**fields)


@pytest.fixture
def sandbox_factory():
    return make_sandbox


@pytest.fixture
def task_factory():
    return make_task


@pytest.fixture
def publisher():
    mock = AsyncMock()
    mock.publish_to_user.return_value = 1
    mock.publish_progress.return_value = 1
    return mock
