"""Tests for the sandbox repository writes."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from config.policies import AutoStopPolicy
from models.db_models import Sandbox
from models.sandbox import HealthStatus
from monitors.auto_stop import AutoStopMonitor
from services.database import SandboxRepository
from services.errors import ImmutableFieldError


def make_row(now, **overrides) -> Sandbox:
    fields = dict(
        id="sb-1",
        name="sandbox-1",
        environment="prod",
        instance_id="i-0123456789",
        instance_type="t3.large",
        status="active",
        health_status="healthy",
        capacity=5,
        current_load=0,
        ec2_status="running",
        auto_stop_enabled=True,
        idle_minutes_before_stop=30,
        machine_type="ec2",
        created_at=now - timedelta(days=1),
        updated_at=now - timedelta(hours=3),
    )
    fields.update(overrides)
    return Sandbox(**fields)


@pytest.fixture
def session():
    return AsyncMock()


@pytest.fixture
def repo(session):
    db = MagicMock()
    db.session.return_value.__aenter__ = AsyncMock(return_value=session)
    db.session.return_value.__aexit__ = AsyncMock(return_value=False)
    return SandboxRepository(db)


class TestUpdateHealthStatus:
    """Health writes and the idle clock."""

    @pytest.mark.asyncio
    async def test_keeps_updated_at(self, repo, session, now):
        """Test that the statement leaves updated_at at its current value."""
        session.get.return_value = make_row(now)

        await repo.update_health_status("sb-1", HealthStatus.HEALTHY, checked_at=now)

        compiled = session.execute.await_args.args[0].compile(dialect=postgresql.dialect())
        assert "updated_at=sandboxes.updated_at" in str(compiled)
        assert compiled.params["health_status"] == "healthy"
        assert compiled.params["last_health_check_at"] == now
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_check_does_not_block_auto_stop(self, repo, session, now):
        """Test that a sandbox idle for 3h is still stopped right after a health check."""
        session.get.return_value = make_row(now, last_health_check_at=now)

        checked = await repo.update_health_status("sb-1", HealthStatus.HEALTHY, checked_at=now)

        candidates = AsyncMock()
        candidates.find_auto_stop_candidates.return_value = [checked]
        sandbox_service = AsyncMock()
        monitor = AutoStopMonitor(candidates, sandbox_service, AutoStopPolicy(), now=lambda: now)

        assert await monitor.check_and_stop() == ["sb-1"]
        sandbox_service.stop_sandbox.assert_awaited_once_with("sb-1")


class TestUpdate:
    """Generic partial updates."""

    @pytest.mark.asyncio
    async def test_update_stamps_updated_at(self, repo, session, now):
        """Test that lifecycle writes do move the idle clock."""
        row = make_row(now)
        session.get.return_value = row

        record = await repo.update("sb-1", current_load=1)

        assert record.current_load == 1
        assert record.updated_at > now - timedelta(hours=3)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["id", "machine_type", "created_at"])
    async def test_immutable_fields(self, repo, session, field):
        """Test that fixed fields are rejected before touching the database."""
        with pytest.raises(ImmutableFieldError):
            await repo.update("sb-1", **{field: "x"})
        session.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backing_status_maps_to_column(self, repo, session, now):
        """Test the backing status column alias."""
        row = make_row(now, ec2_status="stopped")
        session.get.return_value = row

        await repo.update_backing_status("sb-1", "running")

        assert row.ec2_status == "running"
