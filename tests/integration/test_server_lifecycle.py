"""Integration tests for server lifecycle through the coordinator."""

import os

import pytest

from spinup.domain.entities.job import JobStatus
from spinup.domain.entities.server import ServerStatus
from spinup.domain.errors import InvalidTransition, RuntimeFault
from spinup.domain.services.port_allocator import PortAllocator

CREATE_PAYLOAD = {
    "name": "Friends SMP",
    "game_key": "minecraft-java",
    "memory_cap_mb": 2048,
    "cpu_shares": 2048,
}


def run(coordinator, server_id, job_type, payload=None):
    job_id = coordinator.enqueue_job(server_id, job_type, payload)
    return coordinator.wait_for(job_id, timeout=10)


@pytest.mark.integration
class TestServerLifecycle:
    """Integration tests for full server lifecycle."""

    def test_create_provisions_container(self, coordinator, runtime):
        """Test CREATE provisions ports, data directory and a capped container."""
        job = run(coordinator, "srv-1", "CREATE", CREATE_PAYLOAD)

        assert job.status == JobStatus.SUCCESS
        assert job.progress == 100

        server = coordinator.get_server("srv-1")
        assert server.status == ServerStatus.STOPPED
        assert [p.host_port for p in server.ports] == [30000, 30001]
        assert os.path.isdir(server.data_dir)

        body = runtime.container(server.container_ref).spec.to_api()
        assert body["HostConfig"]["Memory"] == 2147483648
        assert body["HostConfig"]["CpuShares"] == 2048
        assert body["HostConfig"]["PortBindings"]["25565/tcp"] == [{"HostPort": "30000"}]

    def test_full_lifecycle(self, coordinator, runtime):
        """Test creating, starting, stopping, restarting and deleting a server."""
        assert run(coordinator, "srv-1", "CREATE", CREATE_PAYLOAD).status == JobStatus.SUCCESS
        ref = coordinator.get_server("srv-1").container_ref

        assert run(coordinator, "srv-1", "START").status == JobStatus.SUCCESS
        assert coordinator.get_server("srv-1").status == ServerStatus.RUNNING
        assert runtime.container(ref).running

        assert run(coordinator, "srv-1", "STOP").status == JobStatus.SUCCESS
        assert coordinator.get_server("srv-1").status == ServerStatus.STOPPED
        assert not runtime.container(ref).running

        assert run(coordinator, "srv-1", "RESTART").status == JobStatus.SUCCESS
        assert coordinator.get_server("srv-1").status == ServerStatus.RUNNING

        data_dir = coordinator.get_server("srv-1").data_dir
        job = run(coordinator, "srv-1", "DELETE")
        assert job.status == JobStatus.SUCCESS
        assert job.result["container_errors"] == 0

        server = coordinator.get_server("srv-1")
        assert server.status == ServerStatus.DELETED
        assert server.ports == []
        assert ref not in runtime.containers
        assert not os.path.exists(data_dir)

    def test_ports_reused_after_delete(self, coordinator):
        run(coordinator, "srv-1", "CREATE", CREATE_PAYLOAD)
        run(coordinator, "srv-1", "DELETE")
        run(coordinator, "srv-2", "CREATE", CREATE_PAYLOAD)
        assert [p.host_port for p in coordinator.get_server("srv-2").ports] == [30000, 30001]

    def test_create_failure_rolls_back(self, coordinator, runtime):
        runtime.fail_on("create_container", RuntimeFault("Conflict. The container name is already in use"))
        job = run(coordinator, "srv-1", "CREATE", CREATE_PAYLOAD)

        assert job.status == JobStatus.FAILED
        assert "already in use" in job.error.message

        server = coordinator.get_server("srv-1")
        assert server.status == ServerStatus.ERROR
        assert server.container_ref is None
        assert server.ports == []
        assert runtime.containers == []

        # Ports are free again for the next server
        run(coordinator, "srv-2", "CREATE", CREATE_PAYLOAD)
        assert [p.host_port for p in coordinator.get_server("srv-2").ports] == [30000, 30001]

    def test_failed_server_can_be_deleted(self, coordinator, runtime):
        runtime.fail_on("pull_image", RuntimeFault("manifest unknown"))
        run(coordinator, "srv-1", "CREATE", CREATE_PAYLOAD)
        assert coordinator.get_server("srv-1").status == ServerStatus.ERROR

        assert run(coordinator, "srv-1", "DELETE").status == JobStatus.SUCCESS
        assert coordinator.get_server("srv-1").status == ServerStatus.DELETED

    def test_delete_after_external_removal(self, coordinator, runtime):
        """Test DELETE succeeds when the container vanished outside the system."""
        run(coordinator, "srv-1", "CREATE", CREATE_PAYLOAD)
        runtime.remove_externally(coordinator.get_server("srv-1").container_ref)

        job = run(coordinator, "srv-1", "DELETE")

        assert job.status == JobStatus.SUCCESS
        assert job.result["container_errors"] == 1
        assert job.result["container_missing"] is True
        assert coordinator.get_server("srv-1").status == ServerStatus.DELETED

    def test_deleted_server_rejects_jobs(self, coordinator):
        run(coordinator, "srv-1", "CREATE", CREATE_PAYLOAD)
        run(coordinator, "srv-1", "DELETE")
        with pytest.raises(InvalidTransition):
            coordinator.enqueue_job("srv-1", "START")

    def test_restore_reseeds_ports(self, coordinator, storage):
        """Test a fresh allocator picks up ports held by stored servers."""
        run(coordinator, "srv-1", "CREATE", CREATE_PAYLOAD)

        allocator = PortAllocator(floor=30000, ceiling=30100)
        assert allocator.restore(storage.list_servers()) == 2
        assert allocator.allocate("srv-2", 25565) == 30002
