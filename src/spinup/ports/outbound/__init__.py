"""Outbound ports - External dependency interfaces for the orchestration core.

Outbound ports define the interfaces for the collaborators the core drives:
the container engine, the record store for servers and jobs, and the host
filesystem holding each server's data directory.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, Protocol

from spinup.domain.entities.job import Job
from spinup.domain.entities.server import PortMapping, Server
from spinup.domain.errors import (
    ContainerNotFound,
    ContainerNotModified,
    RuntimeFault,
    RuntimeUnavailable,
)


# =============================================================================
# Container Runtime Port
# =============================================================================


RESTART_POLICY = "unless-stopped"


@dataclass
class ContainerSpec:
    """Container creation request.

    ``to_api()`` renders the Docker Engine ``ContainerCreate`` body; the
    field names and units there must stay bit-exact with the engine API.
    """
    image: str
    name: str
    hostname: str
    data_dir: str  # Host path bind-mounted into the container
    data_volume: str = "/data"
    memory_bytes: int = 2 * 1024 * 1024 * 1024
    cpu_shares: int = 1024
    ports: list[PortMapping] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    restart_policy: str = RESTART_POLICY

    @property
    def binds(self) -> list[str]:
        return [f"{self.data_dir}:{self.data_volume}"]

    def env_list(self) -> list[str]:
        return [f"{key}={value}" for key, value in self.env.items()]

    def to_api(self) -> dict[str, Any]:
        """Render the engine API request body."""
        return {
            "Image": self.image,
            "Hostname": self.hostname,
            "Env": self.env_list(),
            "Labels": dict(self.labels),
            "ExposedPorts": {p.key: {} for p in self.ports},
            "HostConfig": {
                "Binds": self.binds,
                "PortBindings": {
                    p.key: [{"HostPort": str(p.host_port)}] for p in self.ports
                },
                "RestartPolicy": {"Name": self.restart_policy},
                "Memory": self.memory_bytes,
                "CpuShares": self.cpu_shares,
            },
        }


@dataclass
class ContainerState:
    """Subset of container inspection the core relies on."""
    running: bool
    status: str  # Engine status string, e.g. "running", "exited"


class ByteStream(Protocol):
    """Readable raw byte stream (e.g., an exec socket).

    ``read`` returns ``b""`` at end of stream. Reads may raise
    ``TimeoutError``/``OSError`` if the underlying transport stalls.
    """

    def read(self, size: int) -> bytes:
        ...

    def close(self) -> None:
        ...


PullProgressCallback = Callable[[dict[str, Any]], None]


class ContainerRuntimePort(Protocol):
    """Protocol for container engine operations.

    Every call is a blocking boundary and may fail transiently
    (``RuntimeUnavailable``) or permanently (``ContainerNotFound``).

    Error contract:
        - ContainerNotFound: container does not exist (HTTP 404).
        - ContainerNotModified: already in the requested state (HTTP 304).
        - RuntimeUnavailable: daemon unreachable.
        - RuntimeFault: any other engine error.

    Thread Safety:
        All methods must be thread-safe.
    """

    @abstractmethod
    def pull_image(self, ref: str, on_progress: Optional[PullProgressCallback] = None) -> None:
        """Pull an image, reporting engine progress events.

        Args:
            ref: Image reference (e.g., "itzg/minecraft-server:latest").
            on_progress: Called with each decoded progress event.
        """
        ...

    @abstractmethod
    def create_container(self, spec: ContainerSpec) -> str:
        """Create (but do not start) a container.

        Returns:
            Opaque container reference.
        """
        ...

    @abstractmethod
    def start(self, ref: str) -> None:
        ...

    @abstractmethod
    def stop(self, ref: str, timeout: int) -> None:
        """Stop a container, letting the engine kill it after ``timeout`` seconds."""
        ...

    @abstractmethod
    def restart(self, ref: str, timeout: int) -> None:
        ...

    @abstractmethod
    def kill(self, ref: str) -> None:
        ...

    @abstractmethod
    def remove(self, ref: str, force: bool = False) -> None:
        ...

    @abstractmethod
    def inspect(self, ref: str) -> ContainerState:
        ...

    @abstractmethod
    def exec(self, ref: str, cmd: list[str]) -> ByteStream:
        """Run a command inside a running container.

        Args:
            ref: Container reference.
            cmd: Argument vector, never a shell string.

        Returns:
            Raw multiplexed output stream (8-byte framed stdout/stderr).
        """
        ...

    @abstractmethod
    def get_archive(self, ref: str, path: str) -> Iterator[bytes]:
        """Fetch ``path`` from the container as a tar stream."""
        ...

    @abstractmethod
    def put_archive(self, ref: str, path: str, data: bytes) -> None:
        """Extract a tar archive into directory ``path`` in the container."""
        ...

    @abstractmethod
    def published_host_ports(self) -> set[int]:
        """Host ports published by any container known to the engine."""
        ...


# =============================================================================
# Storage Port
# =============================================================================


class StoragePort(Protocol):
    """Protocol for the server/job record store.

    Each method is an atomic single-row operation. The core calls them in
    the right order but does not layer transactions on top.
    """

    @abstractmethod
    def load_server(self, server_id: str) -> Server:
        """Load a server.

        Raises:
            ServerNotFound: If no such server exists.
        """
        ...

    @abstractmethod
    def save_server(self, server: Server) -> None:
        ...

    @abstractmethod
    def list_servers(self) -> list[Server]:
        ...

    @abstractmethod
    def create_job(self, job: Job) -> None:
        ...

    @abstractmethod
    def update_job(self, job_id: str, **patch: Any) -> Job:
        """Apply a partial update to a job.

        Raises:
            JobNotFound: If no such job exists.
        """
        ...

    @abstractmethod
    def get_job(self, job_id: str) -> Job:
        """Load a job.

        Raises:
            JobNotFound: If no such job exists.
        """
        ...

    @abstractmethod
    def active_job(self, server_id: str) -> Optional[Job]:
        """Return the pending or running job for a server, if any."""
        ...


# =============================================================================
# Data Directory Port
# =============================================================================


class DataDirectoryPort(Protocol):
    """Protocol for per-server data directories on the host.

    The directory is bind-mounted into the server's container.
    """

    @abstractmethod
    def path_for(self, server_id: str) -> str:
        ...

    @abstractmethod
    def ensure(self, server_id: str) -> str:
        """Create the data directory (mkdir -p semantics) and return its path."""
        ...

    @abstractmethod
    def exists(self, server_id: str) -> bool:
        ...

    @abstractmethod
    def remove(self, server_id: str) -> None:
        """Recursively remove everything owned by the server. Idempotent."""
        ...


__all__ = [
    "ByteStream",
    "ContainerNotFound",
    "ContainerNotModified",
    "ContainerRuntimePort",
    "ContainerSpec",
    "ContainerState",
    "DataDirectoryPort",
    "PullProgressCallback",
    "RESTART_POLICY",
    "RuntimeFault",
    "RuntimeUnavailable",
    "StoragePort",
]
