"""Server entity."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import time

from spinup.domain.value_objects.games import Protocol


class ServerStatus(Enum):
    """Server lifecycle status."""
    CREATING = "creating"
    STOPPED = "stopped"
    RUNNING = "running"
    DELETING = "deleting"
    DELETED = "deleted"
    ERROR = "error"


@dataclass(frozen=True)
class PortMapping:
    """A container port published on a host port."""
    container_port: int
    host_port: int
    protocol: Protocol = Protocol.TCP

    @property
    def key(self) -> str:
        """Docker port key (e.g., "25565/tcp")."""
        return f"{self.container_port}/{self.protocol.value}"

    def to_dict(self) -> dict:
        return {
            "container_port": self.container_port,
            "host_port": self.host_port,
            "protocol": self.protocol.value,
        }


@dataclass
class Server:
    """Game server entity.

    Owned by the orchestration core while a job is in flight, otherwise by
    the storage collaborator. Status is only changed by the lifecycle state
    machine.
    """
    server_id: str
    name: str
    game_key: str
    status: ServerStatus = ServerStatus.CREATING
    container_ref: str | None = None
    ports: list[PortMapping] = field(default_factory=list)
    memory_cap_mb: int = 2048
    cpu_shares: int = 1024  # 1024 = one full core
    env: dict[str, str] = field(default_factory=dict)  # Overrides game defaults
    data_dir: str | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def memory_limit_bytes(self) -> int:
        """Memory cap in bytes as the runtime expects it."""
        return self.memory_cap_mb * 1024 * 1024

    def has_container(self) -> bool:
        return self.container_ref is not None

    def is_terminal(self) -> bool:
        return self.status == ServerStatus.DELETED

    def transition(self, status: ServerStatus) -> None:
        """Move to a new status.

        Args:
            status: Target status.

        Raises:
            ValueError: If the server is already deleted.
        """
        if self.status == ServerStatus.DELETED:
            raise ValueError(f"Server {self.server_id} is deleted")
        self.status = status
        self.updated_at = time.time()

    def to_dict(self) -> dict:
        return {
            "server_id": self.server_id,
            "name": self.name,
            "game_key": self.game_key,
            "status": self.status.value,
            "container_ref": self.container_ref,
            "ports": [p.to_dict() for p in self.ports],
            "memory_cap_mb": self.memory_cap_mb,
            "cpu_shares": self.cpu_shares,
        }
