"""Mock container runtime for testing and development.

This adapter provides an in-memory implementation of the
ContainerRuntimePort protocol. Each container carries a tiny emulated
filesystem that understands the commands the file manager issues
(``ls -la``, ``rm -rf``, ``mkdir -p``) and the tar archive endpoints.

Every call is recorded, and failures, delays and scripted exec output can
be injected per method.
"""

from __future__ import annotations

import io
import logging
import posixpath
import tarfile
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Optional

from spinup.domain.errors import (
    ContainerNotFound,
    ContainerNotModified,
    FileNotFound,
    RuntimeFault,
)
from spinup.domain.services.exec_stream import STDERR, STDOUT, encode_frame
from spinup.ports.outbound import (
    ContainerSpec,
    ContainerState,
    PullProgressCallback,
)


logger = logging.getLogger(__name__)

_MTIME = datetime(2025, 10, 4, 14, 30)


class MockExecStream:
    """In-memory exec stream.

    A stalled stream blocks every read until it is closed, like a socket
    whose process never exits.
    """

    def __init__(self, data: bytes = b"", stall: bool = False):
        self._buf = io.BytesIO(data)
        self._stall = stall
        self._closed = threading.Event()

    def read(self, size: int) -> bytes:
        if self._stall:
            self._closed.wait()
            return b""
        return self._buf.read(size)

    def close(self) -> None:
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()


@dataclass
class ScriptedExec:
    """Canned exec result returned instead of emulating the command."""

    stdout: bytes = b""
    stderr: bytes = b""
    raw: Optional[bytes] = None  # Sent verbatim when set
    stall: bool = False


@dataclass
class MockContainerState:
    """State for a mock container."""

    ref: str
    spec: ContainerSpec
    running: bool = False
    # Emulated filesystem: path -> content, None for directories
    files: dict[str, Optional[bytes]] = field(default_factory=lambda: {"/": None})


class MockContainerRuntime:
    """Mock implementation of ContainerRuntimePort for testing.

    Example:
        runtime = MockContainerRuntime()
        ref = runtime.create_container(spec)
        runtime.start(ref)
        runtime.add_file(ref, "/data/server.properties", b"motd=hi")
        runtime.fail_on("remove", RuntimeFault("boom"))
    """

    def __init__(self, require_running_for_exec: bool = True):
        """Initialize mock runtime."""
        self._containers: dict[str, MockContainerState] = {}
        self._images: set[str] = set()
        self._failures: dict[str, list[BaseException]] = {}
        self._delays: dict[str, float] = {}
        self._scripts: list[ScriptedExec] = []
        self._lock = threading.RLock()
        self.require_running_for_exec = require_running_for_exec
        self.external_ports: set[int] = set()
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.streams: list[MockExecStream] = []

    # =========================================================================
    # Test controls
    # =========================================================================

    def fail_on(self, method: str, error: BaseException, times: int = 1) -> None:
        """Make the next ``times`` calls of ``method`` raise ``error``."""
        with self._lock:
            self._failures.setdefault(method, []).extend([error] * times)

    def delay(self, method: str, seconds: float) -> None:
        """Make every call of ``method`` sleep first."""
        self._delays[method] = seconds

    def script_exec(
        self,
        stdout: bytes | str = b"",
        stderr: bytes | str = b"",
        raw: Optional[bytes] = None,
        stall: bool = False,
    ) -> None:
        """Queue a canned result for the next exec."""
        if isinstance(stdout, str):
            stdout = stdout.encode("utf-8")
        if isinstance(stderr, str):
            stderr = stderr.encode("utf-8")
        with self._lock:
            self._scripts.append(ScriptedExec(stdout, stderr, raw, stall))

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    def remove_externally(self, ref: str) -> None:
        """Drop a container as if someone removed it outside the system."""
        with self._lock:
            self._containers.pop(ref, None)

    def container(self, ref: str) -> MockContainerState:
        with self._lock:
            return self._get(ref)

    def add_file(self, ref: str, path: str, content: bytes | str) -> None:
        if isinstance(content, str):
            content = content.encode("utf-8")
        with self._lock:
            state = self._get(ref)
            self._mkdirs(state, posixpath.dirname(path))
            state.files[path] = content

    def add_directory(self, ref: str, path: str) -> None:
        with self._lock:
            self._mkdirs(self._get(ref), path)

    def read_back(self, ref: str, path: str) -> Optional[bytes]:
        with self._lock:
            return self._get(ref).files.get(path)

    def exists(self, ref: str, path: str) -> bool:
        with self._lock:
            return path in self._get(ref).files

    @property
    def containers(self) -> list[str]:
        with self._lock:
            return list(self._containers)

    # =========================================================================
    # ContainerRuntimePort
    # =========================================================================

    def pull_image(self, ref: str, on_progress: Optional[PullProgressCallback] = None) -> None:
        self._enter("pull_image", ref)
        total = 4096
        for current in (1024, 2048, 4096):
            if on_progress is not None:
                on_progress({
                    "status": "Downloading",
                    "id": "layer0",
                    "progressDetail": {"current": current, "total": total},
                })
        with self._lock:
            self._images.add(ref)
        logger.debug(f"Pulled mock image {ref}")

    def create_container(self, spec: ContainerSpec) -> str:
        self._enter("create_container", spec)
        with self._lock:
            if any(c.spec.name == spec.name for c in self._containers.values()):
                raise RuntimeFault(f"Conflict: container name {spec.name} already in use")
            ref = uuid.uuid4().hex
            state = MockContainerState(ref=ref, spec=spec)
            self._mkdirs(state, spec.data_volume)
            self._containers[ref] = state
        logger.debug(f"Created mock container {spec.name} ({ref[:12]})")
        return ref

    def start(self, ref: str) -> None:
        self._enter("start", ref)
        with self._lock:
            state = self._get(ref)
            if state.running:
                raise ContainerNotModified(f"Container {ref} already started")
            state.running = True

    def stop(self, ref: str, timeout: int) -> None:
        self._enter("stop", ref, timeout)
        with self._lock:
            state = self._get(ref)
            if not state.running:
                raise ContainerNotModified(f"Container {ref} already stopped")
            state.running = False

    def restart(self, ref: str, timeout: int) -> None:
        self._enter("restart", ref, timeout)
        with self._lock:
            self._get(ref).running = True

    def kill(self, ref: str) -> None:
        self._enter("kill", ref)
        with self._lock:
            state = self._get(ref)
            if not state.running:
                raise ContainerNotModified(f"Container {ref} is not running")
            state.running = False

    def remove(self, ref: str, force: bool = False) -> None:
        self._enter("remove", ref, force)
        with self._lock:
            state = self._get(ref)
            if state.running and not force:
                raise RuntimeFault(f"Cannot remove running container {ref}")
            del self._containers[ref]

    def inspect(self, ref: str) -> ContainerState:
        self._enter("inspect", ref)
        with self._lock:
            state = self._get(ref)
            return ContainerState(running=state.running, status="running" if state.running else "exited")

    def exec(self, ref: str, cmd: list[str]) -> MockExecStream:
        self._enter("exec", ref, list(cmd))
        with self._lock:
            state = self._get(ref)
            if self.require_running_for_exec and not state.running:
                raise RuntimeFault(f"Container {ref} is not running")
            if self._scripts:
                script = self._scripts.pop(0)
                if script.raw is not None:
                    data = script.raw
                else:
                    data = self._frames(script.stdout, script.stderr)
                stream = MockExecStream(data, stall=script.stall)
            else:
                stdout, stderr = self._emulate(state, cmd)
                stream = MockExecStream(self._frames(stdout, stderr))
            self.streams.append(stream)
            return stream

    def get_archive(self, ref: str, path: str) -> Iterator[bytes]:
        self._enter("get_archive", ref, path)
        with self._lock:
            state = self._get(ref)
            if path not in state.files:
                raise FileNotFound(f"File not found: {path}", path=path)
            data = self._tar_of(state, path)
        return iter([data[i:i + 8192] for i in range(0, len(data), 8192)])

    def put_archive(self, ref: str, path: str, data: bytes) -> None:
        self._enter("put_archive", ref, path, data)
        with self._lock:
            state = self._get(ref)
            if state.files.get(path, b"") is not None:
                raise FileNotFound(f"Directory not found: {path}", path=path)
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as archive:
                for member in archive:
                    target = posixpath.normpath(posixpath.join(path, member.name))
                    if member.isdir():
                        self._mkdirs(state, target)
                    elif member.isfile():
                        self._mkdirs(state, posixpath.dirname(target))
                        state.files[target] = archive.extractfile(member).read()

    def published_host_ports(self) -> set[int]:
        self._enter("published_host_ports")
        with self._lock:
            ports = set(self.external_ports)
            for state in self._containers.values():
                ports.update(p.host_port for p in state.spec.ports)
            return ports

    # =========================================================================
    # Internals
    # =========================================================================

    def _enter(self, method: str, *args: Any) -> None:
        with self._lock:
            self.calls.append((method, args))
            pending = self._failures.get(method)
            error = pending.pop(0) if pending else None
        delay = self._delays.get(method)
        if delay:
            time.sleep(delay)
        if error is not None:
            raise error

    def _get(self, ref: str) -> MockContainerState:
        state = self._containers.get(ref)
        if state is None:
            raise ContainerNotFound(f"No such container: {ref}", container=ref)
        return state

    @staticmethod
    def _frames(stdout: bytes, stderr: bytes) -> bytes:
        data = b""
        if stdout:
            data += encode_frame(STDOUT, stdout)
        if stderr:
            data += encode_frame(STDERR, stderr)
        return data

    @staticmethod
    def _mkdirs(state: MockContainerState, path: str) -> Optional[str]:
        """Create ``path`` and parents; returns the blocking file, if any."""
        current = ""
        for part in [p for p in path.split("/") if p]:
            current = f"{current}/{part}"
            if current in state.files and state.files[current] is not None:
                return current
            state.files.setdefault(current, None)
        return None

    @staticmethod
    def _children(state: MockContainerState, path: str) -> list[str]:
        prefix = path.rstrip("/") + "/"
        return sorted(
            p for p in state.files
            if p != path and p.startswith(prefix) and "/" not in p[len(prefix):]
        )

    def _emulate(self, state: MockContainerState, cmd: list[str]) -> tuple[bytes, bytes]:
        program, args = cmd[0], cmd[1:]
        paths = [a for a in args if not a.startswith("-")]

        if program == "ls":
            path = paths[0] if paths else "/"
            if path not in state.files:
                return b"", f"ls: cannot access '{path}': No such file or directory\n".encode()
            if state.files[path] is not None:
                return (self._ls_line(path, state.files[path]) + "\n").encode(), b""
            children = self._children(state, path)
            lines = [f"total {len(children) * 4}"]
            lines.append(self._ls_line(".", None))
            lines.append(self._ls_line("..", None))
            lines.extend(self._ls_line(posixpath.basename(c), state.files[c]) for c in children)
            return ("\n".join(lines) + "\n").encode(), b""

        if program == "rm":
            for path in paths:
                prefix = path.rstrip("/") + "/"
                for existing in [p for p in state.files if p == path or p.startswith(prefix)]:
                    if existing != "/":
                        del state.files[existing]
            return b"", b""

        if program == "mkdir":
            for path in paths:
                blocker = self._mkdirs(state, path)
                if blocker is not None:
                    return b"", f"mkdir: cannot create directory '{path}': File exists\n".encode()
            return b"", b""

        return b"", f"{program}: command not found\n".encode()

    @staticmethod
    def _ls_line(name: str, content: Optional[bytes]) -> str:
        stamp = _MTIME.strftime("%Y-%m-%d %H:%M")
        if content is None:
            return f"drwxr-xr-x  2 root root 4096 {stamp} {name}"
        return f"-rw-r--r--  1 root root {len(content)} {stamp} {name}"

    def _tar_of(self, state: MockContainerState, path: str) -> bytes:
        """Tar a path the way the daemon does: members named from its basename."""
        buf = io.BytesIO()
        base = posixpath.dirname(path.rstrip("/")) or "/"
        with tarfile.open(fileobj=buf, mode="w") as archive:
            prefix = path.rstrip("/") + "/"
            members = [path] + sorted(p for p in state.files if p.startswith(prefix))
            for member_path in members:
                content = state.files[member_path]
                info = tarfile.TarInfo(name=posixpath.relpath(member_path, base))
                info.mtime = int(_MTIME.timestamp())
                if content is None:
                    info.type = tarfile.DIRTYPE
                    info.mode = 0o755
                    archive.addfile(info)
                else:
                    info.size = len(content)
                    info.mode = 0o644
                    archive.addfile(info, io.BytesIO(content))
        return buf.getvalue()
