"""SpinUp Application Coordinator.

Caller-facing surface of the orchestration core. Lifecycle requests go to
the job dispatcher; file operations resolve the server's container and go
straight to the file manager, out-of-band from jobs.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from spinup.domain.entities.files import FileInfo
from spinup.domain.entities.job import Job, JobType
from spinup.domain.entities.server import Server, ServerStatus
from spinup.domain.errors import PreconditionFailed, ServerNotFound
from spinup.domain.services.dispatcher import JobDispatcher
from spinup.domain.services.file_manager import FileManager
from spinup.domain.services.port_allocator import PortAllocator
from spinup.domain.value_objects.games import GameImage, list_games
from spinup.infrastructure.metrics import MetricsRegistry
from spinup.ports.outbound import StoragePort

logger = logging.getLogger(__name__)


class ServerCoordinator:
    """Coordinates lifecycle jobs and file management per server."""

    def __init__(
        self,
        storage: StoragePort,
        dispatcher: JobDispatcher,
        file_manager: FileManager,
        allocator: PortAllocator,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            storage: Server and job records.
            dispatcher: Lifecycle job dispatcher.
            file_manager: In-container file operations.
            allocator: Host port allocator.
            metrics: Metrics registry.
        """
        self._storage = storage
        self._dispatcher = dispatcher
        self._files = file_manager
        self._allocator = allocator
        self._metrics = metrics

    # =========================================================================
    # Startup / shutdown
    # =========================================================================

    def restore(self) -> int:
        """Reseed in-memory state from storage after a restart.

        Returns:
            Number of host ports restored.
        """
        servers = self._storage.list_servers()
        restored = self._allocator.restore(servers)
        stuck = [s.server_id for s in servers if s.status in (ServerStatus.CREATING, ServerStatus.DELETING)]
        if stuck:
            logger.warning(f"Servers left mid-transition by the previous process: {stuck}")
        self._update_server_gauge(servers)
        logger.info(f"Restored {restored} port allocations for {len(servers)} servers")
        return restored

    def start(self) -> None:
        self.restore()
        self._dispatcher.start()

    def shutdown(self, wait: bool = True) -> None:
        self._dispatcher.shutdown(wait=wait)

    # =========================================================================
    # Lifecycle jobs
    # =========================================================================

    def enqueue_job(
        self,
        server_id: str,
        job_type: JobType | str,
        payload: Optional[dict[str, Any]] = None,
        wait_timeout: Optional[float] = None,
    ) -> str:
        return self._dispatcher.enqueue_job(server_id, job_type, payload, wait_timeout)

    def get_job_status(self, job_id: str) -> Job:
        return self._dispatcher.get_job_status(job_id)

    def wait_for(self, job_id: str, timeout: Optional[float] = None) -> Job:
        return self._dispatcher.wait_for(job_id, timeout)

    def get_server(self, server_id: str) -> Server:
        return self._storage.load_server(server_id)

    def list_servers(self) -> list[Server]:
        servers = self._storage.list_servers()
        self._update_server_gauge(servers)
        return servers

    def list_games(self) -> list[GameImage]:
        return list_games()

    # =========================================================================
    # File operations
    # =========================================================================

    def list_files(self, server_id: str, path: str = "/") -> list[FileInfo]:
        return self._files.list_files(self._container_of(server_id), path)

    def read_file(self, server_id: str, path: str) -> str:
        return self._files.read_file(self._container_of(server_id), path)

    def download_file(self, server_id: str, path: str) -> bytes:
        return self._files.download_file(self._container_of(server_id), path)

    def write_file(self, server_id: str, path: str, content: str | bytes) -> None:
        self._files.write_file(self._container_of(server_id), path, content)

    def upload_file(self, server_id: str, path: str, data: bytes) -> None:
        self._files.upload_file(self._container_of(server_id), path, data)

    @property
    def max_write_bytes(self) -> int:
        """Largest accepted write or upload."""
        return self._files.max_write_bytes

    def delete_file(self, server_id: str, path: str) -> None:
        self._files.delete_file(self._container_of(server_id), path)

    def create_directory(self, server_id: str, path: str) -> None:
        self._files.create_directory(self._container_of(server_id), path)

    def extract_archive(
        self,
        server_id: str,
        archive_path: str,
        destination: Optional[str] = None,
    ) -> list[str]:
        return self._files.extract_archive(self._container_of(server_id), archive_path, destination)

    def extract_uploaded_archive(self, server_id: str, data: bytes, destination: str) -> list[str]:
        return self._files.extract_archive_bytes(self._container_of(server_id), data, destination)

    def compress_archive(
        self,
        server_id: str,
        source_paths: Sequence[str],
        archive_path: str,
        fmt: str = "zip",
    ) -> str:
        return self._files.compress_archive(self._container_of(server_id), source_paths, archive_path, fmt)

    # =========================================================================
    # Internals
    # =========================================================================

    def _container_of(self, server_id: str) -> str:
        server = self._storage.load_server(server_id)
        if server.status == ServerStatus.DELETED:
            raise ServerNotFound(f"Server {server_id} has been deleted", server_id=server_id)
        if server.container_ref is None:
            raise PreconditionFailed(
                f"Server {server_id} has no container",
                server_id=server_id,
                status=server.status.value,
            )
        return server.container_ref

    def _update_server_gauge(self, servers: list[Server]) -> None:
        if self._metrics is None:
            return
        for status in ServerStatus:
            count = sum(1 for s in servers if s.status == status)
            self._metrics.servers_by_status.labels(status=status.value).set(count)
