"""Tests for the EC2 wrapper, event publisher and control plane wiring."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError

from config.settings import Settings
from services.container import ControlPlane
from services.ec2 import EC2Service
from services.errors import InstanceNotFoundError
from services.events import EventPublisher


class TestEC2Service:
    """boto3 calls through the async wrapper."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        """Test that lifecycle calls pass the instance id."""
        client = MagicMock()
        ec2 = EC2Service("us-east-1", 5, client=client)

        await ec2.start_instance("i-1")
        await ec2.stop_instance("i-1")

        client.start_instances.assert_called_once_with(InstanceIds=["i-1"])
        client.stop_instances.assert_called_once_with(InstanceIds=["i-1"])

    @pytest.mark.asyncio
    async def test_instance_status(self):
        """Test reading the state name."""
        client = MagicMock()
        client.describe_instances.return_value = {
            "Reservations": [{"Instances": [{"InstanceId": "i-1", "State": {"Name": "running"}}]}]
        }
        instance = await EC2Service("us-east-1", 5, client=client).describe_instance("i-1")
        assert instance["State"]["Name"] == "running"

    @pytest.mark.asyncio
    async def test_missing_instance(self):
        """Test that a not-found client error is translated."""
        client = MagicMock()
        client.describe_instances.side_effect = ClientError(
            {"Error": {"Code": "InvalidInstanceID.NotFound", "Message": "gone"}},
            "DescribeInstances",
        )
        with pytest.raises(InstanceNotFoundError):
            await EC2Service("us-east-1", 5, client=client).describe_instance("i-1")

    @pytest.mark.asyncio
    async def test_other_client_errors_propagate(self):
        """Test that unrelated AWS errors are not swallowed."""
        client = MagicMock()
        client.describe_instances.side_effect = ClientError(
            {"Error": {"Code": "UnauthorizedOperation", "Message": "no"}},
            "DescribeInstances",
        )
        with pytest.raises(ClientError):
            await EC2Service("us-east-1", 5, client=client).describe_instance("i-1")

    @pytest.mark.asyncio
    async def test_empty_reservations(self):
        """Test an empty describe response."""
        client = MagicMock()
        client.describe_instances.return_value = {"Reservations": []}
        with pytest.raises(InstanceNotFoundError):
            await EC2Service("us-east-1", 5, client=client).describe_instance("i-1")


class TestEventPublisher:
    """Redis pub/sub publishing."""

    @pytest.mark.asyncio
    async def test_publish_to_user_channel(self):
        """Test channel naming and JSON payload."""
        publisher = EventPublisher("redis://localhost:6379", 1)
        publisher._client = AsyncMock()
        publisher._client.publish.return_value = 2

        count = await publisher.publish_to_user("user-1", {"type": "task_update", "taskId": "t"})

        assert count == 2
        channel, payload = publisher._client.publish.await_args.args
        assert channel == "tasks:user-1"
        assert json.loads(payload) == {"type": "task_update", "taskId": "t"}

    @pytest.mark.asyncio
    async def test_publish_progress_channel(self):
        """Test the shared progress channel."""
        publisher = EventPublisher("redis://localhost:6379", 1)
        publisher._client = AsyncMock()
        await publisher.publish_progress({"type": "progress"})
        assert publisher._client.publish.await_args.args[0] == "valet:progress"

    @pytest.mark.asyncio
    async def test_health_check_failure(self):
        """Test that an unreachable Redis reports unhealthy."""
        publisher = EventPublisher("redis://localhost:6379", 1)
        publisher._client = AsyncMock()
        publisher._client.info.side_effect = OSError("connection refused")
        result = await publisher.health_check()
        assert result["healthy"] is False


class TestControlPlane:
    """Wiring from settings."""

    def test_autoscale_disabled_by_default(self):
        """Test that the auto-scaler is not built unless enabled."""
        plane = ControlPlane(Settings(_env_file=None))
        assert plane.auto_scale is None
        assert len(plane.monitors) == 3

    def test_autoscale_skipped_when_provider_missing(self):
        """Test that a failed startup check keeps the auto-scaler off."""
        plane = ControlPlane(Settings(
            _env_file=None,
            autoscale_enabled=True,
            autoscale_machine_type="kasm",
            kasm_api_url=None,
        ))
        assert plane.auto_scale is None
        assert any(r.name == "autoscale" and r.status == "fail" for r in plane.startup_results)

    def test_autoscale_built_for_registered_provider(self):
        """Test that a valid configuration builds all four loops."""
        plane = ControlPlane(Settings(
            _env_file=None,
            autoscale_enabled=True,
            autoscale_machine_type="ec2",
        ))
        assert plane.auto_scale is not None
        assert plane.monitors[0] is plane.auto_scale

    def test_kasm_registered_when_configured(self):
        """Test that configuring the Kasm API registers its provider."""
        plane = ControlPlane(Settings(_env_file=None, kasm_api_url="https://kasm.example/api/public"))
        assert plane.kasm is not None
        assert "kasm" in [t.value for t in plane.registry.registered_types]
