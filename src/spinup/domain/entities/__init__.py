"""Domain entities for the orchestration core.

Exports:
    - Server, ServerStatus, PortMapping: Game server record
    - Job, JobType, JobStatus, JobError: Lifecycle work units
    - FileInfo, FileType: Container directory listing entries
"""

from spinup.domain.entities.files import FileInfo, FileType
from spinup.domain.entities.job import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Job,
    JobError,
    JobStatus,
    JobType,
)
from spinup.domain.entities.server import PortMapping, Server, ServerStatus

__all__ = [
    "ACTIVE_STATUSES",
    "FileInfo",
    "FileType",
    "Job",
    "JobError",
    "JobStatus",
    "JobType",
    "PortMapping",
    "Server",
    "ServerStatus",
    "TERMINAL_STATUSES",
]
