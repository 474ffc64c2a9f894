"""
Task, application phase and failure types.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


# =============================================================================
# TASKS
# =============================================================================

class TaskStatus(str, Enum):
    CREATED = "created"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    WAITING_HUMAN = "waiting_human"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_TASK_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)

# Statuses the reconciliation loop inspects. WAITING_HUMAN is excluded: a
# person is expected to act, so age alone says nothing.
STUCK_CANDIDATE_STATUSES = (
    TaskStatus.CREATED,
    TaskStatus.QUEUED,
    TaskStatus.IN_PROGRESS,
)


@dataclass
class TaskRecord:
    """A single automation job (one job application)."""
    id: str
    user_id: str
    status: TaskStatus
    updated_at: datetime
    workflow_run_id: Optional[str] = None
    execution_status: Optional[str] = None
    progress: int = 0
    current_step: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    result_data: Optional[dict[str, Any]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES


@dataclass
class SyncResult:
    """Result of syncing a task with the execution backend.

    Either ``error`` is set, or the update flags describe what changed.
    """
    task_id: str
    task_updated: bool = False
    job_updated: bool = False
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def changed(self) -> bool:
        return self.task_updated or self.job_updated


@dataclass
class ReconciliationSummary:
    checked: int = 0
    reconciled: int = 0
    timed_out: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


# =============================================================================
# APPLICATION PHASES
# =============================================================================

class ApplicationPhase(str, Enum):
    PROVISIONING = "provisioning"
    NAVIGATING = "navigating"
    ANALYZING = "analyzing"
    FILLING = "filling"
    UPLOADING = "uploading"
    REVIEWING = "reviewing"
    SUBMITTING = "submitting"
    VERIFYING = "verifying"
    WAITING_HUMAN = "waiting_human"
    COMPLETED = "completed"
    FAILED = "failed"


P = ApplicationPhase

VALID_TRANSITIONS: dict[ApplicationPhase, frozenset[ApplicationPhase]] = {
    P.PROVISIONING: frozenset({P.NAVIGATING, P.FAILED}),
    P.NAVIGATING: frozenset({P.ANALYZING, P.FAILED}),
    P.ANALYZING: frozenset({P.FILLING, P.FAILED}),
    P.FILLING: frozenset({P.UPLOADING, P.REVIEWING, P.SUBMITTING, P.FAILED}),
    P.UPLOADING: frozenset({P.REVIEWING, P.FILLING, P.FAILED}),
    P.REVIEWING: frozenset({P.SUBMITTING, P.FILLING, P.WAITING_HUMAN, P.FAILED}),
    P.SUBMITTING: frozenset({P.VERIFYING, P.FAILED}),
    P.VERIFYING: frozenset({P.COMPLETED, P.FAILED}),
    P.WAITING_HUMAN: frozenset({P.FILLING, P.REVIEWING, P.SUBMITTING, P.FAILED}),
    P.COMPLETED: frozenset(),
    P.FAILED: frozenset(),
}

del P

TERMINAL_PHASES = frozenset(
    phase for phase, targets in VALID_TRANSITIONS.items() if not targets
)


@dataclass
class StateTransition:
    """One entry in a task's phase history."""
    from_phase: ApplicationPhase
    to_phase: ApplicationPhase
    trigger: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_phase.value,
            "to": self.to_phase.value,
            "trigger": self.trigger,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StateTransition":
        return cls(
            from_phase=ApplicationPhase(data["from"]),
            to_phase=ApplicationPhase(data["to"]),
            trigger=data["trigger"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            metadata=data.get("metadata") or {},
        )


@dataclass
class ProgressUpdate:
    """Fine-grained progress inside a phase."""
    task_id: str
    user_id: str
    phase: ApplicationPhase
    progress_pct: int
    step_description: str
    current_step: Optional[str] = None
    screenshot_url: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_event(self) -> dict[str, Any]:
        event: dict[str, Any] = {
            "type": "progress",
            "taskId": self.task_id,
            "userId": self.user_id,
            "phase": self.phase.value,
            "progressPct": self.progress_pct,
            "stepDescription": self.step_description,
        }
        if self.current_step is not None:
            event["currentStep"] = self.current_step
        if self.screenshot_url is not None:
            event["screenshotUrl"] = self.screenshot_url
        if self.timestamp is not None:
            event["timestamp"] = self.timestamp.isoformat()
        return event


# =============================================================================
# FAILURES
# =============================================================================

class FailureType(str, Enum):
    CDP_DISCONNECT = "cdp_disconnect"
    TIMEOUT = "timeout"
    SELECTOR_NOT_FOUND = "selector_not_found"
    SELECTOR_AMBIGUOUS = "selector_ambiguous"
    SHADOW_DOM_BLOCKED = "shadow_dom_blocked"
    IFRAME_UNREACHABLE = "iframe_unreachable"
    CANVAS_ELEMENT = "canvas_element"
    DYNAMIC_RENDERING = "dynamic_rendering"
    ACTION_NO_EFFECT = "action_no_effect"
    ANTI_BOT_DETECTED = "anti_bot_detected"
    CAPTCHA_DETECTED = "captcha_detected"
    RATE_LIMITED = "rate_limited"
    BUDGET_EXCEEDED = "budget_exceeded"
    UNKNOWN = "unknown"


class ExecutionStrategy(str, Enum):
    """Browser automation engine that produced a failure."""
    STAGEHAND = "stagehand"    # DOM/selector driven
    MAGNITUDE = "magnitude"    # Vision driven
    NONE = "none"


@dataclass(frozen=True)
class FailureSignal:
    type: FailureType
    strategy: ExecutionStrategy
    duration_ms: int
    retriable_with_same_strategy: bool
    suggests_vision_strategy: bool
    timestamp: datetime
    message: str
    error: Optional[BaseException] = None
