"""
Services for the sandbox control plane.

Only modules without provider dependencies are re-exported here; import
``services.sandbox_service`` and ``services.container`` directly.
"""

from .application_tracker import ApplicationTracker, InMemoryPhaseStore, RedisPhaseStore
from .database import Database, SandboxRepository, TaskRepository
from .ec2 import EC2Service
from .events import EventPublisher
from .failure_classifier import classify_failure
from .ghosthands import GhostHandsClient, TaskSyncService
from .kasm import KasmClient
from .task_queue import QueueStats, TaskQueueService

__all__ = [
    "ApplicationTracker",
    "InMemoryPhaseStore",
    "RedisPhaseStore",
    "Database",
    "SandboxRepository",
    "TaskRepository",
    "EC2Service",
    "EventPublisher",
    "classify_failure",
    "GhostHandsClient",
    "TaskSyncService",
    "KasmClient",
    "QueueStats",
    "TaskQueueService",
]
