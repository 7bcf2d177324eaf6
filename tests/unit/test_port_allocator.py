"""Unit tests for the host port allocator."""

import threading

import pytest

from spinup.domain.entities.server import PortMapping, Server, ServerStatus
from spinup.domain.errors import ResourceExhausted
from spinup.domain.services.port_allocator import PortAllocator
from spinup.domain.value_objects.games import Protocol


@pytest.mark.unit
class TestPortAllocator:
    """Test port allocation policy."""

    def test_sequential_from_floor(self):
        """Test ports outside the range start scanning at the floor."""
        allocator = PortAllocator(floor=30000, ceiling=30010)
        assert allocator.allocate("a", 25565) == 30000
        assert allocator.allocate("a", 25575) == 30001
        assert allocator.allocate("b", 25565) == 30002

    def test_one_to_one_inside_range(self):
        """Test container ports inside the range map to themselves."""
        allocator = PortAllocator(floor=30000, ceiling=40000)
        assert allocator.allocate("a", 34197, Protocol.UDP) == 34197

    def test_preferred_base(self):
        allocator = PortAllocator(floor=30000, ceiling=30100)
        assert allocator.allocate("a", 25565, preferred_base=30050) == 30050
        assert allocator.allocate("a", 25575, preferred_base=30050) == 30051

    def test_preferred_base_outside_range_ignored(self):
        allocator = PortAllocator(floor=30000, ceiling=30100)
        assert allocator.allocate("a", 25565, preferred_base=80) == 30000

    def test_idempotent_for_same_mapping(self):
        """Test re-allocating the same triple returns the held port."""
        allocator = PortAllocator(floor=30000, ceiling=30010)
        first = allocator.allocate("a", 25565)
        assert allocator.allocate("a", 25565) == first
        assert allocator.allocated_count == 1

    def test_ports_unique_across_protocols(self):
        allocator = PortAllocator(floor=30000, ceiling=30010)
        tcp = allocator.allocate("a", 7777, Protocol.TCP)
        udp = allocator.allocate("a", 7777, Protocol.UDP)
        assert tcp != udp

    def test_exhaustion(self):
        """Test a full range raises ResourceExhausted."""
        allocator = PortAllocator(floor=30000, ceiling=30001)
        allocator.allocate("a", 1)
        allocator.allocate("a", 2)
        with pytest.raises(ResourceExhausted):
            allocator.allocate("b", 1)

    def test_no_wraparound(self):
        """Test scanning stops at the ceiling instead of wrapping to the floor."""
        allocator = PortAllocator(floor=30000, ceiling=30005)
        with pytest.raises(ResourceExhausted):
            for port in range(30003, 30010):
                allocator.allocate("a", port, preferred_base=30003)
        assert 30000 not in {m.host_port for m in allocator.allocations_for("a")}

    def test_reserved_source_skipped(self):
        """Test ports reported by a reserved source are never handed out."""
        allocator = PortAllocator(floor=30000, ceiling=30010, reserved_sources=[lambda: {30000, 30001}])
        assert allocator.allocate("a", 25565) == 30002

    def test_failing_source_fails_closed(self):
        def broken():
            raise ConnectionError("daemon down")

        allocator = PortAllocator(floor=30000, ceiling=30010, reserved_sources=[broken])
        with pytest.raises(ResourceExhausted):
            allocator.allocate("a", 25565)
        assert allocator.allocated_count == 0

    def test_probe_error_means_in_use(self):
        def probe(port, protocol):
            if port == 30000:
                raise OSError("probe failed")
            return port == 30001

        allocator = PortAllocator(floor=30000, ceiling=30010, probes=[probe])
        assert allocator.allocate("a", 25565) == 30002

    def test_release(self):
        """Test releasing returns every held port, sorted."""
        allocator = PortAllocator(floor=30000, ceiling=30010)
        allocator.allocate("a", 2)
        allocator.allocate("b", 1)
        allocator.allocate("a", 1)
        assert allocator.release("a") == [30000, 30002]
        assert allocator.release("a") == []
        assert allocator.allocate("c", 9) == 30000

    def test_allocate_all(self):
        allocator = PortAllocator(floor=30000, ceiling=30010)
        mappings = allocator.allocate_all("a", [(25565, Protocol.TCP), (19132, Protocol.UDP)])
        assert mappings == [
            PortMapping(25565, 30000, Protocol.TCP),
            PortMapping(19132, 30001, Protocol.UDP),
        ]

    def test_restore_skips_deleted_and_conflicts(self):
        """Test reseeding from persisted servers."""
        servers = [
            Server("a", "A", "minecraft-java", status=ServerStatus.STOPPED, ports=[PortMapping(25565, 30000)]),
            Server("b", "B", "minecraft-java", status=ServerStatus.DELETED, ports=[PortMapping(25565, 30001)]),
            Server("c", "C", "minecraft-java", status=ServerStatus.RUNNING, ports=[PortMapping(25565, 30000)]),
        ]
        allocator = PortAllocator(floor=30000, ceiling=30010)
        assert allocator.restore(servers) == 1
        assert allocator.allocate("d", 25565) == 30001

    def test_gauge_tracks_allocations(self, metrics_registry):
        allocator = PortAllocator(floor=30000, ceiling=30010, metrics=metrics_registry)
        allocator.allocate("a", 1)
        allocator.allocate("a", 2)
        registry = metrics_registry._registry
        assert registry.get_sample_value("spinup_port_allocations") == 2
        allocator.release("a")
        assert registry.get_sample_value("spinup_port_allocations") == 0

    def test_concurrent_allocations_distinct(self):
        """Test concurrent callers never receive the same port."""
        allocator = PortAllocator(floor=30000, ceiling=30200)
        results: list[int] = []
        lock = threading.Lock()
        barrier = threading.Barrier(50)

        def worker(i: int) -> None:
            barrier.wait()
            port = allocator.allocate(f"srv-{i}", 25565)
            with lock:
                results.append(port)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(50)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 50
        assert len(set(results)) == 50
