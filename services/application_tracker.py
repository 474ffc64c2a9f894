"""
Application phase tracking.

Moves each task through the application state machine (navigating,
filling, reviewing, ...), keeps the transition history and publishes
``state_change`` / ``progress`` events for live UIs.

Phase state lives behind a PhaseStore: in-process by default, or in Redis
when several workers share tasks. Entries stay until ``release()`` so a
late transition out of a terminal phase is still rejected.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol

import redis.asyncio as redis

from models.state import (
    VALID_TRANSITIONS,
    ApplicationPhase,
    ProgressUpdate,
    StateTransition,
)

from .errors import InvalidPhaseTransitionError

logger = logging.getLogger(__name__)


class PhaseStore(Protocol):
    async def get_phase(self, task_id: str) -> Optional[ApplicationPhase]: ...

    async def record(self, task_id: str, transition: StateTransition) -> None: ...

    async def get_history(self, task_id: str) -> list[StateTransition]: ...

    async def clear(self, task_id: str) -> None: ...


class ProgressPublisher(Protocol):
    async def publish_progress(self, event: dict[str, Any]) -> Any: ...


class InMemoryPhaseStore:
    """Phase state for a single process."""

    def __init__(self) -> None:
        self._phases: dict[str, ApplicationPhase] = {}
        self._history: dict[str, list[StateTransition]] = {}

    async def get_phase(self, task_id: str) -> Optional[ApplicationPhase]:
        return self._phases.get(task_id)

    async def record(self, task_id: str, transition: StateTransition) -> None:
        self._phases[task_id] = transition.to_phase
        self._history.setdefault(task_id, []).append(transition)

    async def get_history(self, task_id: str) -> list[StateTransition]:
        return list(self._history.get(task_id, []))

    async def clear(self, task_id: str) -> None:
        self._phases.pop(task_id, None)
        self._history.pop(task_id, None)


class RedisPhaseStore:
    """Phase state shared through Redis, expiring after ``ttl`` seconds."""

    PREFIX_PHASE = "valet:phase:"
    PREFIX_HISTORY = "valet:phase-history:"

    def __init__(self, client: redis.Redis, ttl: int = 86400):
        self._client = client
        self.ttl = ttl

    async def get_phase(self, task_id: str) -> Optional[ApplicationPhase]:
        value = await self._client.get(f"{self.PREFIX_PHASE}{task_id}")
        return ApplicationPhase(value) if value else None

    async def record(self, task_id: str, transition: StateTransition) -> None:
        phase_key = f"{self.PREFIX_PHASE}{task_id}"
        history_key = f"{self.PREFIX_HISTORY}{task_id}"
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(phase_key, transition.to_phase.value, ex=self.ttl)
            pipe.rpush(history_key, json.dumps(transition.to_dict()))
            pipe.expire(history_key, self.ttl)
            await pipe.execute()

    async def get_history(self, task_id: str) -> list[StateTransition]:
        items = await self._client.lrange(f"{self.PREFIX_HISTORY}{task_id}", 0, -1)
        return [StateTransition.from_dict(json.loads(item)) for item in items]

    async def clear(self, task_id: str) -> None:
        await self._client.delete(
            f"{self.PREFIX_PHASE}{task_id}",
            f"{self.PREFIX_HISTORY}{task_id}",
        )


class ApplicationTracker:
    """Validates phase transitions and emits progress events."""

    def __init__(
        self,
        publisher: ProgressPublisher,
        store: Optional[PhaseStore] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.publisher = publisher
        self.store = store or InMemoryPhaseStore()
        self._now = now

    async def transition(
        self,
        task_id: str,
        user_id: str,
        to_phase: ApplicationPhase,
        trigger: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> StateTransition:
        """Move a task to ``to_phase``.

        Raises InvalidPhaseTransitionError if the move is not allowed from
        the current phase (provisioning when the task is unseen).
        """
        current = await self.store.get_phase(task_id) or ApplicationPhase.PROVISIONING
        if to_phase not in VALID_TRANSITIONS[current]:
            raise InvalidPhaseTransitionError(task_id, current.value, to_phase.value)

        transition = StateTransition(
            from_phase=current,
            to_phase=to_phase,
            trigger=trigger,
            timestamp=self._now(),
            metadata=metadata or {},
        )
        await self.store.record(task_id, transition)

        event = {
            "type": "state_change",
            "taskId": task_id,
            "userId": user_id,
            **transition.to_dict(),
        }
        await self._publish(task_id, event)

        logger.info(f"[Tracker] Task {task_id}: {current.value} -> {to_phase.value} ({trigger})")
        return transition

    async def emit_progress(self, update: ProgressUpdate) -> None:
        await self._publish(update.task_id, update.to_event())

    async def get_current_phase(self, task_id: str) -> Optional[ApplicationPhase]:
        return await self.store.get_phase(task_id)

    async def get_history(self, task_id: str) -> list[StateTransition]:
        return await self.store.get_history(task_id)

    async def release(self, task_id: str) -> None:
        """Forget a task once nothing will transition it again."""
        await self.store.clear(task_id)

    async def _publish(self, task_id: str, event: dict[str, Any]) -> None:
        try:
            await self.publisher.publish_progress(event)
        except Exception as e:
            # Events are advisory; the phase change already happened
            logger.warning(f"[Tracker] Failed to publish {event['type']} for task {task_id}: {e}")
