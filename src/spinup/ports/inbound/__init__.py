"""Inbound ports - API contracts for the orchestration core.

Inbound ports define the interfaces that upper layers (the HTTP surface,
operators' tooling) use to drive server lifecycle jobs and in-container
file management.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

from spinup.domain.entities.files import FileInfo
from spinup.domain.entities.job import Job, JobType


# =============================================================================
# Job Dispatcher Port
# =============================================================================


@dataclass
class DispatcherStats:
    """Statistics for dispatcher monitoring."""

    workers: int
    queued_jobs: int
    busy_servers: int

    @property
    def saturation(self) -> float:
        """Busy servers per worker."""
        if self.workers == 0:
            return 0.0
        return self.busy_servers / self.workers


class JobDispatcherPort(Protocol):
    """Protocol for lifecycle job submission.

    Thread Safety:
        All methods must be thread-safe.

    Invariant:
        At most one job per server is PENDING or RUNNING at any time.

    Example:
        job_id = dispatcher.enqueue_job("srv-1", JobType.START)
        job = dispatcher.wait_for(job_id, timeout=60)
        if job.status == JobStatus.FAILED:
            print(job.error.kind, job.error.message)
    """

    @abstractmethod
    def enqueue_job(
        self,
        server_id: str,
        job_type: JobType | str,
        payload: Optional[dict[str, Any]] = None,
        wait_timeout: Optional[float] = None,
    ) -> str:
        """Accept a job.

        Args:
            server_id: Target server.
            job_type: Lifecycle operation.
            payload: Operation parameters.
            wait_timeout: Seconds to wait for a busy server.

        Returns:
            Job ID.

        Raises:
            InvalidTransition: Operation illegal for the current status.
            JobConflict: Another job is active for the server.
        """
        ...

    @abstractmethod
    def get_job_status(self, job_id: str) -> Job:
        """Get a job.

        Raises:
            JobNotFound: If the job does not exist.
        """
        ...

    @abstractmethod
    def wait_for(self, job_id: str, timeout: Optional[float] = None) -> Job:
        """Block until the job is terminal or the timeout passes."""
        ...

    @abstractmethod
    def get_stats(self) -> DispatcherStats:
        ...


# =============================================================================
# File Manager Port
# =============================================================================


class FileManagerPort(Protocol):
    """Protocol for file operations inside a server's container.

    All paths are container paths. Policy checks (path traversal,
    protected names, size limit, content signatures) run before the
    container is touched.

    Thread Safety:
        All methods must be thread-safe.
    """

    @abstractmethod
    def list_files(self, container_ref: str, path: str = "/") -> list[FileInfo]:
        ...

    @abstractmethod
    def read_file(self, container_ref: str, path: str) -> str:
        ...

    @abstractmethod
    def download_file(self, container_ref: str, path: str) -> bytes:
        ...

    @abstractmethod
    def write_file(self, container_ref: str, path: str, content: str | bytes) -> None:
        ...

    @abstractmethod
    def upload_file(self, container_ref: str, path: str, data: bytes) -> None:
        ...

    @abstractmethod
    def delete_file(self, container_ref: str, path: str) -> None:
        ...

    @abstractmethod
    def create_directory(self, container_ref: str, path: str) -> None:
        ...

    @abstractmethod
    def extract_archive(
        self,
        container_ref: str,
        archive_path: str,
        destination: Optional[str] = None,
    ) -> list[str]:
        """Extract an archive stored in the container.

        Returns:
            Created paths.

        Raises:
            ArchiveTooLarge: Decoded size crosses the ceiling.
        """
        ...

    @abstractmethod
    def extract_archive_bytes(self, container_ref: str, data: bytes, destination: str) -> list[str]:
        ...

    @abstractmethod
    def compress_archive(
        self,
        container_ref: str,
        source_paths: Sequence[str],
        archive_path: str,
        fmt: str = "zip",
    ) -> str:
        ...


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Job Dispatcher
    "DispatcherStats",
    "JobDispatcherPort",
    # File Manager
    "FileManagerPort",
]
