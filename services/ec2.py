"""
EC2 instance control via boto3.

boto3 is synchronous, so each call runs in a worker thread. Connect/read
timeouts are set on the client config.
"""

import asyncio
import logging
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from config.settings import settings

from .errors import InstanceNotFoundError

logger = logging.getLogger(__name__)


class EC2Service:
    """Thin async wrapper around the EC2 client."""

    def __init__(
        self,
        region: str | None = None,
        timeout_seconds: float | None = None,
        client: Any = None,
    ):
        self.region = region or settings.aws_region
        self.timeout_seconds = timeout_seconds or settings.aws_timeout_seconds
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "ec2",
                region_name=self.region,
                aws_access_key_id=settings.aws_access_key_id,
                aws_secret_access_key=settings.aws_secret_access_key,
                config=Config(
                    connect_timeout=self.timeout_seconds,
                    read_timeout=self.timeout_seconds,
                    retries={"max_attempts": 2},
                ),
            )
        return self._client

    async def start_instance(self, instance_id: str) -> None:
        client = self._get_client()
        await asyncio.to_thread(client.start_instances, InstanceIds=[instance_id])
        logger.info(f"[EC2] Start requested for {instance_id}")

    async def stop_instance(self, instance_id: str) -> None:
        client = self._get_client()
        await asyncio.to_thread(client.stop_instances, InstanceIds=[instance_id])
        logger.info(f"[EC2] Stop requested for {instance_id}")

    async def describe_instance(self, instance_id: str) -> dict[str, Any]:
        """Return the raw instance description."""
        client = self._get_client()
        try:
            response = await asyncio.to_thread(
                client.describe_instances, InstanceIds=[instance_id]
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code == "InvalidInstanceID.NotFound":
                raise InstanceNotFoundError(instance_id) from e
            raise

        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return instance
        raise InstanceNotFoundError(instance_id)
