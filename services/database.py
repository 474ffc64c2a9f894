"""
Database access for sandboxes and tasks.

SQLAlchemy async engine over asyncpg. Rows are converted into the plain
records from models.sandbox and models.state before leaving this module.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config.settings import settings
from models.db_models import Sandbox, Task
from models.sandbox import (
    BackingStatus,
    HealthStatus,
    MachineType,
    SandboxRecord,
    SandboxStatus,
)
from models.state import (
    STUCK_CANDIDATE_STATUSES,
    TERMINAL_TASK_STATUSES,
    TaskRecord,
    TaskStatus,
)

from .errors import ImmutableFieldError

logger = logging.getLogger(__name__)

IMMUTABLE_SANDBOX_FIELDS = frozenset({"id", "machine_type", "created_at"})

# Record field -> column name where they differ
_SANDBOX_COLUMN_ALIASES = {"backing_status": "ec2_status"}


def to_async_url(database_url: str) -> str:
    """Rewrite a plain PostgreSQL URL for the asyncpg driver."""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    return database_url


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return _aware(value)
    return _aware(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


class Database:
    """Owns the async engine and session factory."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = to_async_url(database_url or settings.database_url)
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    def _ensure_initialized(self) -> None:
        """Lazy initialization of database connection."""
        if self._engine is None:
            self._engine = create_async_engine(
                self.database_url,
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
                connect_args={"command_timeout": 30},
            )
            self._session_factory = async_sessionmaker(
                self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

    def session(self) -> AsyncSession:
        self._ensure_initialized()
        assert self._session_factory is not None, "Database not initialized"
        return self._session_factory()

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("[Database] Engine disposed")


# =============================================================================
# SANDBOXES
# =============================================================================

def sandbox_from_row(row: Sandbox) -> SandboxRecord:
    return SandboxRecord(
        id=row.id,
        name=row.name,
        environment=row.environment,
        instance_id=row.instance_id,
        instance_type=row.instance_type,
        machine_type=MachineType(row.machine_type) if row.machine_type else None,
        public_ip=row.public_ip,
        private_ip=row.private_ip,
        status=SandboxStatus(row.status),
        health_status=HealthStatus(row.health_status),
        last_health_check_at=_aware(row.last_health_check_at),
        capacity=row.capacity,
        current_load=row.current_load,
        backing_status=BackingStatus(row.ec2_status) if row.ec2_status else None,
        auto_stop_enabled=row.auto_stop_enabled,
        idle_minutes_before_stop=row.idle_minutes_before_stop,
        novnc_url=row.novnc_url,
        tags=dict(row.tags or {}),
        browser_config=dict(row.browser_config or {}),
        last_started_at=_aware(row.last_started_at),
        last_stopped_at=_aware(row.last_stopped_at),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


class SandboxRepository:
    """Sandbox persistence."""

    def __init__(self, db: Database):
        self.db = db

    async def find_by_id(self, sandbox_id: str) -> Optional[SandboxRecord]:
        async with self.db.session() as session:
            row = await session.get(Sandbox, sandbox_id)
            return sandbox_from_row(row) if row else None

    async def find_by_instance_id(self, instance_id: str) -> Optional[SandboxRecord]:
        async with self.db.session() as session:
            result = await session.execute(
                select(Sandbox).where(Sandbox.instance_id == instance_id)
            )
            row = result.scalar_one_or_none()
            return sandbox_from_row(row) if row else None

    async def find_by_machine_type(self, machine_type: MachineType) -> list[SandboxRecord]:
        """Non-terminated sandboxes of one machine type."""
        async with self.db.session() as session:
            result = await session.execute(
                select(Sandbox)
                .where(Sandbox.machine_type == machine_type.value)
                .where(Sandbox.status != SandboxStatus.TERMINATED.value)
                .order_by(Sandbox.created_at)
            )
            return [sandbox_from_row(row) for row in result.scalars()]

    async def find_auto_stop_candidates(self) -> list[SandboxRecord]:
        async with self.db.session() as session:
            result = await session.execute(
                select(Sandbox)
                .where(Sandbox.auto_stop_enabled.is_(True))
                .where(Sandbox.ec2_status == BackingStatus.RUNNING.value)
                .where(Sandbox.current_load == 0)
                .where(Sandbox.status != SandboxStatus.TERMINATED.value)
            )
            return [sandbox_from_row(row) for row in result.scalars()]

    async def find_with_backing_status(self, *statuses: BackingStatus) -> list[SandboxRecord]:
        async with self.db.session() as session:
            result = await session.execute(
                select(Sandbox)
                .where(Sandbox.ec2_status.in_([s.value for s in statuses]))
                .where(Sandbox.status != SandboxStatus.TERMINATED.value)
            )
            return [sandbox_from_row(row) for row in result.scalars()]

    async def find_stale_healthy(self, older_than: datetime) -> list[SandboxRecord]:
        """Healthy sandboxes whose last health check is missing or older than ``older_than``."""
        async with self.db.session() as session:
            result = await session.execute(
                select(Sandbox)
                .where(Sandbox.health_status == HealthStatus.HEALTHY.value)
                .where(Sandbox.status != SandboxStatus.TERMINATED.value)
                .where(
                    (Sandbox.last_health_check_at.is_(None))
                    | (Sandbox.last_health_check_at < older_than)
                )
            )
            return [sandbox_from_row(row) for row in result.scalars()]

    async def create(self, **fields: Any) -> SandboxRecord:
        values = {
            _SANDBOX_COLUMN_ALIASES.get(key, key): _enum_value(value)
            for key, value in fields.items()
        }
        async with self.db.session() as session:
            row = Sandbox(**values)
            session.add(row)
            await session.commit()
            await session.refresh(row)
            logger.info(f"[Sandboxes] Created sandbox {row.id} ({row.machine_type})")
            return sandbox_from_row(row)

    async def update(self, sandbox_id: str, **fields: Any) -> Optional[SandboxRecord]:
        """Apply a partial update. Raises ImmutableFieldError for fixed fields."""
        for key in fields:
            if key in IMMUTABLE_SANDBOX_FIELDS:
                raise ImmutableFieldError(key)

        values = {
            _SANDBOX_COLUMN_ALIASES.get(key, key): _enum_value(value)
            for key, value in fields.items()
        }
        values["updated_at"] = _utcnow()
        async with self.db.session() as session:
            row = await session.get(Sandbox, sandbox_id)
            if row is None:
                return None
            for key, value in values.items():
                setattr(row, key, value)
            await session.commit()
            await session.refresh(row)
            return sandbox_from_row(row)

    async def update_backing_status(
        self,
        sandbox_id: str,
        status: BackingStatus,
        **extra: Any,
    ) -> Optional[SandboxRecord]:
        return await self.update(sandbox_id, backing_status=status, **extra)

    async def update_health_status(
        self,
        sandbox_id: str,
        health_status: HealthStatus,
        checked_at: Optional[datetime] = None,
    ) -> Optional[SandboxRecord]:
        # updated_at is the idle clock for auto-stop and scale-down; health writes must not reset it
        values: dict[str, Any] = {
            "health_status": health_status.value,
            "updated_at": Sandbox.updated_at,
        }
        if checked_at is not None:
            values["last_health_check_at"] = checked_at
        async with self.db.session() as session:
            await session.execute(
                update(Sandbox).where(Sandbox.id == sandbox_id).values(**values)
            )
            await session.commit()
        return await self.find_by_id(sandbox_id)


# =============================================================================
# TASKS
# =============================================================================

def task_from_row(row: Task) -> TaskRecord:
    return TaskRecord(
        id=row.id,
        user_id=row.user_id,
        status=TaskStatus(row.status),
        updated_at=_aware(row.updated_at),
        workflow_run_id=row.workflow_run_id,
        execution_status=row.execution_status,
        progress=row.progress or 0,
        current_step=row.current_step,
        error_code=row.error_code,
        error_message=row.error_message,
        result_data=row.result_data,
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        created_at=_aware(row.created_at),
    )


class TaskRepository:
    """Task persistence."""

    def __init__(self, db: Database):
        self.db = db

    async def find_by_id(self, task_id: str) -> Optional[TaskRecord]:
        async with self.db.session() as session:
            row = await session.get(Task, task_id)
            return task_from_row(row) if row else None

    async def count_queued(self) -> int:
        async with self.db.session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(Task)
                .where(Task.status == TaskStatus.QUEUED.value)
            )
            return int(result.scalar_one())

    async def find_stuck_jobs(self, stuck_minutes: int, limit: int = 100) -> list[TaskRecord]:
        """Non-terminal tasks not updated for ``stuck_minutes``, oldest first."""
        cutoff = _utcnow() - timedelta(minutes=stuck_minutes)
        async with self.db.session() as session:
            result = await session.execute(
                select(Task)
                .where(Task.status.in_([s.value for s in STUCK_CANDIDATE_STATUSES]))
                .where(Task.updated_at < cutoff)
                .order_by(Task.updated_at)
                .limit(limit)
            )
            return [task_from_row(row) for row in result.scalars()]

    async def update_status(self, task_id: str, status: TaskStatus) -> Optional[TaskRecord]:
        """Move a non-terminal task to ``status``.

        Returns None when the task does not exist or is already terminal.
        """
        values: dict[str, Any] = {"status": status.value, "updated_at": _utcnow()}
        if status == TaskStatus.IN_PROGRESS:
            values["started_at"] = func.coalesce(Task.started_at, _utcnow())
        async with self.db.session() as session:
            result = await session.execute(
                update(Task)
                .where(Task.id == task_id)
                .where(Task.status.not_in([s.value for s in TERMINAL_TASK_STATUSES]))
                .values(**values)
                .returning(Task)
            )
            row = result.scalar_one_or_none()
            await session.commit()
            return task_from_row(row) if row else None

    async def update_execution_result(
        self,
        task_id: str,
        reference: str,
        result: Optional[dict[str, Any]],
        error: Optional[dict[str, Any]],
        completed_at: Any = None,
    ) -> None:
        values: dict[str, Any] = {
            "workflow_run_id": reference or None,
            "result_data": result,
            "error_code": error.get("code") if error else None,
            "error_message": error.get("message") if error else None,
            "completed_at": _parse_datetime(completed_at) or _utcnow(),
            "updated_at": _utcnow(),
        }
        async with self.db.session() as session:
            await session.execute(update(Task).where(Task.id == task_id).values(**values))
            await session.commit()

    async def update_execution_status(self, task_id: str, execution_status: str) -> None:
        # Leaves updated_at alone so mirroring does not reset the stuck clock
        async with self.db.session() as session:
            await session.execute(
                update(Task)
                .where(Task.id == task_id)
                .values(execution_status=execution_status, updated_at=Task.updated_at)
            )
            await session.commit()
