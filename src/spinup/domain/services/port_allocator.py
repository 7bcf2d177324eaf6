"""Host port allocator.

Hands out host ports for game servers from a fixed range. A port is handed
out at most once among non-deleted servers; the allocation table is the
only shared mutable state and is guarded by a single lock.

Allocation policy:
    start = preferred_base   if it lies inside [floor, ceiling]
          = container_port   if it lies inside [floor, ceiling] (1:1 mapping)
          = floor            otherwise
    then scan upward to ``ceiling`` and take the first free port.

A port is free iff it is not in the table and no in-use source reports it.
Sources that fail are treated as reporting "in use".
"""

from __future__ import annotations

import socket
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

from spinup.domain.entities.server import PortMapping, Server, ServerStatus
from spinup.domain.errors import ResourceExhausted
from spinup.domain.value_objects.games import Protocol
from spinup.infrastructure.logging import get_logger
from spinup.infrastructure.metrics import MetricsRegistry

logger = get_logger(__name__)

# Snapshot of host ports taken by something outside the table
ReservedPortsSource = Callable[[], Iterable[int]]
# Per-port check; returns True if the port is busy
PortProbe = Callable[[int, Protocol], bool]


@dataclass(frozen=True)
class _Allocation:
    server_id: str
    container_port: int
    protocol: Protocol


def host_socket_probe(host: str = "0.0.0.0") -> PortProbe:
    """Build a probe that tries to bind the port on the host.

    Args:
        host: Interface to bind.

    Returns:
        Probe reporting True when the bind fails.
    """
    def probe(port: int, protocol: Protocol) -> bool:
        kind = socket.SOCK_DGRAM if protocol == Protocol.UDP else socket.SOCK_STREAM
        with socket.socket(socket.AF_INET, kind) as sock:
            try:
                sock.bind((host, port))
            except OSError:
                return True
        return False

    return probe


class PortAllocator:
    """Allocates host ports from ``[floor, ceiling]``.

    Host ports are unique across protocols: a TCP and a UDP mapping never
    share a host port number.

    Thread Safety:
        All public methods take the table lock; concurrent callers never
        receive the same port.
    """

    def __init__(
        self,
        floor: int = 30000,
        ceiling: int = 40000,
        reserved_sources: Sequence[ReservedPortsSource] = (),
        probes: Sequence[PortProbe] = (),
        metrics: Optional[MetricsRegistry] = None,
    ):
        """Initialize allocator.

        Args:
            floor: Lowest allocatable port.
            ceiling: Highest allocatable port (inclusive).
            reserved_sources: Snapshots of ports in use elsewhere
                (e.g., published by containers this system does not track).
            probes: Per-port host checks.
            metrics: Metrics registry for the allocation gauge.
        """
        if floor > ceiling:
            raise ValueError(f"floor {floor} exceeds ceiling {ceiling}")
        self.floor = floor
        self.ceiling = ceiling
        self._reserved_sources = list(reserved_sources)
        self._probes = list(probes)
        self._metrics = metrics
        self._table: dict[int, _Allocation] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # Allocation
    # =========================================================================

    def allocate(
        self,
        server_id: str,
        container_port: int,
        protocol: Protocol = Protocol.TCP,
        preferred_base: Optional[int] = None,
    ) -> int:
        """Allocate a host port for one container port.

        Re-allocating the same (server, container port, protocol) returns
        the port already held.

        Args:
            server_id: Owning server.
            container_port: Port inside the container.
            protocol: Transport protocol.
            preferred_base: Where to start scanning, if inside the range.

        Returns:
            Host port.

        Raises:
            ResourceExhausted: If no port in the range is free.
        """
        wanted = _Allocation(server_id, container_port, protocol)
        with self._lock:
            for host_port, existing in self._table.items():
                if existing == wanted:
                    return host_port

            start = self._start_for(container_port, preferred_base)
            reserved = self._reserved_snapshot()
            if reserved is None:
                raise ResourceExhausted(
                    "Could not verify host port availability",
                    server_id=server_id,
                )

            for candidate in range(start, self.ceiling + 1):
                if candidate in self._table or candidate in reserved:
                    continue
                if self._probed_in_use(candidate, protocol):
                    continue
                self._table[candidate] = wanted
                self._update_gauge()
                logger.debug(
                    "port_allocated",
                    server_id=server_id,
                    container_port=container_port,
                    host_port=candidate,
                    protocol=protocol.value,
                )
                return candidate

        raise ResourceExhausted(
            f"No available ports in range {start}-{self.ceiling}",
            server_id=server_id,
            container_port=container_port,
        )

    def allocate_all(
        self,
        server_id: str,
        ports: Iterable[tuple[int, Protocol]],
        preferred_base: Optional[int] = None,
    ) -> list[PortMapping]:
        """Allocate host ports for every (container_port, protocol) pair.

        Partial allocations stay in the table on failure; the caller
        releases them with ``release(server_id)``.
        """
        mappings = []
        for container_port, protocol in ports:
            host_port = self.allocate(server_id, container_port, protocol, preferred_base)
            mappings.append(PortMapping(container_port, host_port, protocol))
        return mappings

    def release(self, server_id: str) -> list[int]:
        """Release every port held by a server.

        Returns:
            Released host ports (empty if none were held).
        """
        with self._lock:
            released = sorted(
                port for port, alloc in self._table.items() if alloc.server_id == server_id
            )
            for port in released:
                del self._table[port]
            self._update_gauge()
        if released:
            logger.info("ports_released", server_id=server_id, ports=released)
        return released

    def allocations_for(self, server_id: str) -> list[PortMapping]:
        with self._lock:
            return [
                PortMapping(alloc.container_port, port, alloc.protocol)
                for port, alloc in sorted(self._table.items())
                if alloc.server_id == server_id
            ]

    def restore(self, servers: Iterable[Server]) -> int:
        """Reseed the table from persisted servers.

        Deleted servers are skipped. Ports outside the range are still
        recorded so they are never handed out twice.

        Returns:
            Number of ports restored.
        """
        restored = 0
        with self._lock:
            for server in servers:
                if server.status == ServerStatus.DELETED:
                    continue
                for mapping in server.ports:
                    owner = self._table.get(mapping.host_port)
                    if owner is not None and owner.server_id != server.server_id:
                        logger.warning(
                            "port_restore_conflict",
                            host_port=mapping.host_port,
                            server_id=server.server_id,
                            holder=owner.server_id,
                        )
                        continue
                    self._table[mapping.host_port] = _Allocation(
                        server.server_id, mapping.container_port, mapping.protocol
                    )
                    restored += 1
            self._update_gauge()
        logger.info("ports_restored", count=restored)
        return restored

    @property
    def allocated_count(self) -> int:
        with self._lock:
            return len(self._table)

    # =========================================================================
    # Internals
    # =========================================================================

    def _start_for(self, container_port: int, preferred_base: Optional[int]) -> int:
        if preferred_base is not None and self.floor <= preferred_base <= self.ceiling:
            return preferred_base
        if self.floor <= container_port <= self.ceiling:
            return container_port
        return self.floor

    def _reserved_snapshot(self) -> Optional[set[int]]:
        """Union of all reserved sources, or None if any source failed."""
        reserved: set[int] = set()
        for source in self._reserved_sources:
            try:
                reserved.update(source())
            except Exception as e:
                logger.warning("port_source_failed", error=str(e))
                return None
        return reserved

    def _probed_in_use(self, port: int, protocol: Protocol) -> bool:
        for probe in self._probes:
            try:
                if probe(port, protocol):
                    return True
            except Exception as e:
                logger.warning("port_probe_failed", port=port, error=str(e))
                return True
        return False

    def _update_gauge(self) -> None:
        if self._metrics is not None:
            self._metrics.port_allocations.set(len(self._table))
