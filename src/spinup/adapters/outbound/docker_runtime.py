"""Docker Engine adapter for the container runtime port.

Talks to the daemon through the low-level ``docker.APIClient`` so the
container creation body is sent exactly as ``ContainerSpec.to_api()``
renders it, and exec output is read from the raw multiplexed socket.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import docker
import docker.errors
import requests.exceptions
from docker.utils import parse_repository_tag
from docker.utils.socket import read as socket_read

from spinup.domain.errors import (
    ContainerNotFound,
    ContainerNotModified,
    FileNotFound,
    RuntimeFault,
    RuntimeUnavailable,
)
from spinup.ports.outbound import (
    ByteStream,
    ContainerSpec,
    ContainerState,
    PullProgressCallback,
)


logger = logging.getLogger(__name__)

ARCHIVE_CHUNK_SIZE = 2 * 1024 * 1024


class DockerExecStream:
    """Raw exec socket exposed as a ``ByteStream``.

    The socket gets a read timeout so a stalled daemon surfaces as
    ``TimeoutError`` instead of blocking forever.
    """

    def __init__(self, sock: Any, read_timeout: Optional[float] = None):
        self._sock = sock
        raw = getattr(sock, "_sock", sock)
        if read_timeout is not None and hasattr(raw, "settimeout"):
            raw.settimeout(read_timeout)

    def read(self, size: int) -> bytes:
        return socket_read(self._sock, size)

    def close(self) -> None:
        self._sock.close()


class DockerContainerRuntime:
    """ContainerRuntimePort implementation backed by the Docker daemon.

    Error translation:
        - docker.errors.NotFound -> ContainerNotFound (FileNotFound for
          archive paths inside an existing container)
        - HTTP 304, or 409 "is not running" on kill -> ContainerNotModified
        - connection failures -> RuntimeUnavailable
        - any other APIError -> RuntimeFault

    Example:
        runtime = DockerContainerRuntime(base_url="unix:///var/run/docker.sock")
        ref = runtime.create_container(spec)
        runtime.start(ref)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: int = 60,
        exec_read_timeout: Optional[float] = 30.0,
        api: Optional[docker.APIClient] = None,
    ):
        """Initialize the adapter.

        Args:
            base_url: Daemon URL; the environment (DOCKER_HOST) when omitted.
            timeout: HTTP request timeout in seconds.
            exec_read_timeout: Read timeout applied to exec sockets.
            api: Preconfigured low-level client (tests inject a mock).
        """
        if api is None:
            with self._translated("connect"):
                if base_url:
                    api = docker.APIClient(base_url=base_url, timeout=timeout)
                else:
                    api = docker.from_env(timeout=timeout).api
        self._api = api
        self._exec_read_timeout = exec_read_timeout

    # =========================================================================
    # Images and containers
    # =========================================================================

    def pull_image(self, ref: str, on_progress: Optional[PullProgressCallback] = None) -> None:
        repository, tag = parse_repository_tag(ref)
        logger.info(f"Pulling image {repository}:{tag or 'latest'}")
        with self._translated("pull", ref):
            for event in self._api.pull(repository, tag=tag or "latest", stream=True, decode=True):
                if "error" in event:
                    raise RuntimeFault(f"Image pull failed for {ref}: {event['error']}", image=ref)
                if on_progress is not None:
                    on_progress(event)

    def create_container(self, spec: ContainerSpec) -> str:
        with self._translated("create", spec.name):
            response = self._api.create_container_from_config(spec.to_api(), name=spec.name)
        for warning in response.get("Warnings") or []:
            logger.warning(f"Docker warning creating {spec.name}: {warning}")
        container_id = response["Id"]
        logger.info(f"Created container {spec.name} ({container_id[:12]})")
        return container_id

    def start(self, ref: str) -> None:
        with self._translated("start", ref):
            self._api.start(ref)

    def stop(self, ref: str, timeout: int) -> None:
        with self._translated("stop", ref):
            self._api.stop(ref, timeout=timeout)

    def restart(self, ref: str, timeout: int) -> None:
        with self._translated("restart", ref):
            self._api.restart(ref, timeout=timeout)

    def kill(self, ref: str) -> None:
        with self._translated("kill", ref):
            self._api.kill(ref)

    def remove(self, ref: str, force: bool = False) -> None:
        with self._translated("remove", ref):
            self._api.remove_container(ref, force=force)

    def inspect(self, ref: str) -> ContainerState:
        with self._translated("inspect", ref):
            state = self._api.inspect_container(ref).get("State") or {}
        return ContainerState(running=bool(state.get("Running")), status=state.get("Status", "unknown"))

    # =========================================================================
    # Exec and archives
    # =========================================================================

    def exec(self, ref: str, cmd: list[str]) -> ByteStream:
        with self._translated("exec", ref):
            exec_id = self._api.exec_create(ref, cmd, stdout=True, stderr=True, tty=False)["Id"]
            sock = self._api.exec_start(exec_id, socket=True)
        return DockerExecStream(sock, self._exec_read_timeout)

    def get_archive(self, ref: str, path: str) -> Iterator[bytes]:
        with self._translated("get_archive", ref, path):
            stream, _stat = self._api.get_archive(ref, path, chunk_size=ARCHIVE_CHUNK_SIZE)
        return stream

    def put_archive(self, ref: str, path: str, data: bytes) -> None:
        with self._translated("put_archive", ref, path):
            self._api.put_archive(ref, path, data)

    def published_host_ports(self) -> set[int]:
        with self._translated("list"):
            containers = self._api.containers(all=True)
        used: set[int] = set()
        for container in containers:
            for binding in container.get("Ports") or []:
                public = binding.get("PublicPort")
                if public:
                    used.add(int(public))
        return used

    # =========================================================================
    # Error translation
    # =========================================================================

    @staticmethod
    @contextmanager
    def _translated(action: str, ref: str = "", path: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except docker.errors.NotFound as e:
            explanation = str(e.explanation or e)
            if action == "pull":
                raise RuntimeFault(f"Image not found: {ref}: {explanation}", image=ref) from e
            if path is not None and "No such container" not in explanation:
                raise FileNotFound(f"File not found: {path}", path=path) from e
            raise ContainerNotFound(f"No such container: {ref}", container=ref) from e
        except docker.errors.APIError as e:
            explanation = str(e.explanation or e)
            if e.status_code == 304 or (
                e.status_code == 409 and action == "kill" and "not running" in explanation
            ):
                raise ContainerNotModified(f"Container {ref} already in requested state", container=ref) from e
            logger.warning(f"Docker {action} failed for {ref}: {explanation}")
            raise RuntimeFault(f"Docker {action} failed: {explanation}", container=ref) from e
        except (
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
            docker.errors.DockerException,
        ) as e:
            raise RuntimeUnavailable(f"Docker daemon unavailable: {e}") from e
