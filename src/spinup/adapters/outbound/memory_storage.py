"""In-memory storage for servers and jobs.

Stands in for the relational store in tests and single-process
development. Records are copied on the way in and out so callers never
share mutable state with the store, as with a real database.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Optional

from spinup.domain.entities.job import ACTIVE_STATUSES, Job
from spinup.domain.entities.server import Server
from spinup.domain.errors import JobNotFound, ServerNotFound


logger = logging.getLogger(__name__)


class InMemoryStorage:
    """Thread-safe StoragePort implementation.

    Example:
        storage = InMemoryStorage()
        storage.save_server(server)
        storage.load_server(server.server_id)
    """

    def __init__(self):
        """Initialize empty storage."""
        self._servers: dict[str, Server] = {}
        self._jobs: dict[str, Job] = {}
        self._lock = threading.RLock()

    # =========================================================================
    # Servers
    # =========================================================================

    def load_server(self, server_id: str) -> Server:
        with self._lock:
            server = self._servers.get(server_id)
            if server is None:
                raise ServerNotFound(f"Server not found: {server_id}", server_id=server_id)
            return copy.deepcopy(server)

    def save_server(self, server: Server) -> None:
        with self._lock:
            self._servers[server.server_id] = copy.deepcopy(server)
        logger.debug(f"Saved server {server.server_id} ({server.status.value})")

    def list_servers(self) -> list[Server]:
        with self._lock:
            return [copy.deepcopy(s) for s in self._servers.values()]

    # =========================================================================
    # Jobs
    # =========================================================================

    def create_job(self, job: Job) -> None:
        with self._lock:
            if job.job_id in self._jobs:
                raise ValueError(f"Job {job.job_id} already exists")
            self._jobs[job.job_id] = copy.deepcopy(job)

    def update_job(self, job_id: str, **patch: Any) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(f"Job not found: {job_id}", job_id=job_id)
            for field_name, value in patch.items():
                if not hasattr(job, field_name):
                    raise AttributeError(f"Job has no field {field_name}")
                setattr(job, field_name, copy.deepcopy(value))
            return copy.deepcopy(job)

    def get_job(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(f"Job not found: {job_id}", job_id=job_id)
            return copy.deepcopy(job)

    def active_job(self, server_id: str) -> Optional[Job]:
        with self._lock:
            for job in self._jobs.values():
                if job.server_id == server_id and job.status in ACTIVE_STATUSES:
                    return copy.deepcopy(job)
        return None

    def jobs_for(self, server_id: str) -> list[Job]:
        """All jobs of a server in creation order."""
        with self._lock:
            jobs = [copy.deepcopy(j) for j in self._jobs.values() if j.server_id == server_id]
        return sorted(jobs, key=lambda j: j.created_at)
