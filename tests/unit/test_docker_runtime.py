"""Unit tests for the Docker runtime adapter."""

from unittest.mock import MagicMock

import docker.errors
import pytest
import requests

from spinup.adapters.outbound.docker_runtime import DockerContainerRuntime, DockerExecStream
from spinup.domain.entities.server import PortMapping
from spinup.domain.errors import (
    ContainerNotFound,
    ContainerNotModified,
    FileNotFound,
    RuntimeFault,
    RuntimeUnavailable,
)
from spinup.ports.outbound import ContainerSpec


def api_error(status: int, message: str) -> docker.errors.APIError:
    response = requests.Response()
    response.status_code = status
    return docker.errors.APIError(message, response=response, explanation=message)


@pytest.fixture
def api() -> MagicMock:
    return MagicMock()


@pytest.fixture
def docker_runtime(api: MagicMock) -> DockerContainerRuntime:
    return DockerContainerRuntime(api=api, exec_read_timeout=5)


@pytest.mark.unit
class TestContainerCalls:
    """Test calls made against the low-level client."""

    def test_create_sends_rendered_body(self, docker_runtime, api):
        spec = ContainerSpec(
            image="itzg/minecraft-server:latest",
            name="su_abc",
            hostname="spinup-abc",
            data_dir="/srv/abc/data",
            memory_bytes=2147483648,
            cpu_shares=2048,
            ports=[PortMapping(25565, 30000)],
            env={"EULA": "TRUE"},
        )
        api.create_container_from_config.return_value = {"Id": "c0ffee" * 10, "Warnings": []}

        ref = docker_runtime.create_container(spec)

        assert ref == "c0ffee" * 10
        body = api.create_container_from_config.call_args.args[0]
        assert body == spec.to_api()
        assert api.create_container_from_config.call_args.kwargs == {"name": "su_abc"}

    def test_pull_reports_progress(self, docker_runtime, api):
        events = [
            {"status": "Pulling fs layer", "id": "a"},
            {"status": "Downloading", "id": "a", "progressDetail": {"current": 5, "total": 10}},
        ]
        api.pull.return_value = iter(events)
        seen = []

        docker_runtime.pull_image("itzg/minecraft-server:java21", on_progress=seen.append)

        api.pull.assert_called_once_with("itzg/minecraft-server", tag="java21", stream=True, decode=True)
        assert seen == events

    def test_pull_defaults_to_latest(self, docker_runtime, api):
        api.pull.return_value = iter([])
        docker_runtime.pull_image("factoriotools/factorio")
        assert api.pull.call_args.kwargs["tag"] == "latest"

    def test_pull_error_event(self, docker_runtime, api):
        api.pull.return_value = iter([{"error": "manifest unknown"}])
        with pytest.raises(RuntimeFault, match="manifest unknown"):
            docker_runtime.pull_image("itzg/minecraft-server:nope")

    def test_lifecycle_calls(self, docker_runtime, api):
        docker_runtime.start("abc")
        docker_runtime.stop("abc", 15)
        docker_runtime.restart("abc", 15)
        docker_runtime.kill("abc")
        docker_runtime.remove("abc", force=True)

        api.start.assert_called_once_with("abc")
        api.stop.assert_called_once_with("abc", timeout=15)
        api.restart.assert_called_once_with("abc", timeout=15)
        api.kill.assert_called_once_with("abc")
        api.remove_container.assert_called_once_with("abc", force=True)

    def test_inspect(self, docker_runtime, api):
        api.inspect_container.return_value = {"State": {"Running": True, "Status": "running"}}
        state = docker_runtime.inspect("abc")
        assert state.running is True
        assert state.status == "running"

    def test_published_host_ports(self, docker_runtime, api):
        api.containers.return_value = [
            {"Ports": [{"PrivatePort": 25565, "PublicPort": 30000, "Type": "tcp"}]},
            {"Ports": [{"PrivatePort": 80, "Type": "tcp"}]},
            {"Ports": None},
        ]
        assert docker_runtime.published_host_ports() == {30000}
        api.containers.assert_called_once_with(all=True)

    def test_exec_returns_socket_stream(self, docker_runtime, api):
        api.exec_create.return_value = {"Id": "exec-1"}
        sock = MagicMock()
        api.exec_start.return_value = sock

        stream = docker_runtime.exec("abc", ["ls", "-la", "/data"])

        assert isinstance(stream, DockerExecStream)
        api.exec_create.assert_called_once_with("abc", ["ls", "-la", "/data"], stdout=True, stderr=True, tty=False)
        api.exec_start.assert_called_once_with("exec-1", socket=True)
        sock._sock.settimeout.assert_called_once_with(5)

    def test_archives(self, docker_runtime, api):
        api.get_archive.return_value = (iter([b"tar"]), {"name": "a"})
        assert list(docker_runtime.get_archive("abc", "/data/a")) == [b"tar"]
        docker_runtime.put_archive("abc", "/data", b"tar")
        api.put_archive.assert_called_once_with("abc", "/data", b"tar")


@pytest.mark.unit
class TestErrorTranslation:
    """Test daemon errors become core errors."""

    def test_container_not_found(self, docker_runtime, api):
        api.start.side_effect = docker.errors.NotFound("No such container: abc")
        with pytest.raises(ContainerNotFound):
            docker_runtime.start("abc")

    def test_not_modified(self, docker_runtime, api):
        api.stop.side_effect = api_error(304, "")
        with pytest.raises(ContainerNotModified):
            docker_runtime.stop("abc", 10)

    def test_kill_not_running(self, docker_runtime, api):
        api.kill.side_effect = api_error(409, "Container abc is not running")
        with pytest.raises(ContainerNotModified):
            docker_runtime.kill("abc")

    def test_other_api_error(self, docker_runtime, api):
        api.start.side_effect = api_error(500, "OCI runtime create failed")
        with pytest.raises(RuntimeFault, match="OCI runtime"):
            docker_runtime.start("abc")

    def test_missing_archive_path(self, docker_runtime, api):
        api.get_archive.side_effect = docker.errors.NotFound("Could not find the file /data/x in container abc")
        with pytest.raises(FileNotFound):
            docker_runtime.get_archive("abc", "/data/x")

    def test_archive_of_missing_container(self, docker_runtime, api):
        api.put_archive.side_effect = docker.errors.NotFound("No such container: abc")
        with pytest.raises(ContainerNotFound):
            docker_runtime.put_archive("abc", "/data", b"")

    def test_missing_image(self, docker_runtime, api):
        api.pull.side_effect = docker.errors.NotFound("pull access denied")
        with pytest.raises(RuntimeFault):
            docker_runtime.pull_image("nope/nope")

    def test_daemon_unreachable(self, docker_runtime, api):
        api.containers.side_effect = requests.exceptions.ConnectionError("connection refused")
        with pytest.raises(RuntimeUnavailable):
            docker_runtime.published_host_ports()
