"""Job entity."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
import time

from spinup.domain.errors import InvalidTransition


class JobType(Enum):
    """Lifecycle operation a job drives."""
    CREATE = "CREATE"
    START = "START"
    STOP = "STOP"
    RESTART = "RESTART"
    DELETE = "DELETE"


class JobStatus(Enum):
    """Job lifecycle state."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING})
TERMINAL_STATUSES = frozenset({JobStatus.SUCCESS, JobStatus.FAILED})


@dataclass
class JobError:
    """Failure details recorded on a job."""
    kind: str
    message: str
    trace: str = ""
    progress: int = 0  # Progress at failure
    rollback_errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "trace": self.trace,
            "progress": self.progress,
            "rollback_errors": list(self.rollback_errors),
        }


@dataclass
class Job:
    """Unit of work driving one server through one lifecycle transition."""
    job_id: str
    server_id: str
    type: JobType
    status: JobStatus = JobStatus.PENDING
    progress: int = 0  # 0-100, only ever increases
    payload: dict[str, Any] = field(default_factory=dict)
    result: dict[str, Any] = field(default_factory=dict)
    error: Optional[JobError] = None

    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    finished_at: float | None = None

    def start(self) -> None:
        """Mark job as running."""
        if self.status != JobStatus.PENDING:
            raise InvalidTransition(f"Cannot start job in status {self.status.value}")
        self.status = JobStatus.RUNNING
        self.started_at = time.time()

    def advance(self, progress: int) -> bool:
        """Record progress.

        Args:
            progress: New progress value (0-100).

        Returns:
            True if progress moved forward, False if it was not higher.
        """
        if self.is_terminal():
            raise InvalidTransition(f"Cannot update progress of {self.status.value} job")
        progress = min(int(progress), 100)
        if progress <= self.progress:
            return False
        self.progress = progress
        return True

    def succeed(self, result: dict[str, Any] | None = None) -> None:
        """Mark job as successful."""
        if self.status != JobStatus.RUNNING:
            raise InvalidTransition(f"Cannot complete job in status {self.status.value}")
        self.status = JobStatus.SUCCESS
        self.progress = 100
        if result:
            self.result.update(result)
        self.finished_at = time.time()

    def fail(self, error: JobError) -> None:
        """Mark job as failed.

        Args:
            error: Failure details.
        """
        if self.is_terminal():
            raise InvalidTransition(f"Cannot fail job in status {self.status.value}")
        self.status = JobStatus.FAILED
        self.error = error
        self.finished_at = time.time()

    def is_active(self) -> bool:
        """Check if job is still pending or running."""
        return self.status in ACTIVE_STATUSES

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def get_duration_seconds(self) -> float:
        """Wall time from start to finish (or now)."""
        if not self.started_at:
            return 0
        end = self.finished_at or time.time()
        return end - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "server_id": self.server_id,
            "type": self.type.value,
            "status": self.status.value,
            "progress": self.progress,
            "result": dict(self.result),
            "error": self.error.to_dict() if self.error else None,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
