"""In-container file manager.

All access goes through the container runtime: directory listings and
mutations run as exec'd commands (argument vectors, never shell strings),
file contents travel as tar streams through the archive endpoints.

Every path is normalized by the path policy before the runtime is touched,
and every write is checked against the protected-name list, the size limit
and the content-safety gate first. A policy rejection therefore never
reaches the container.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Sequence

from spinup.domain.entities.files import FileInfo
from spinup.domain.errors import (
    DirectoryNotFound,
    ExecTimeout,
    FileNotFound,
    NotFound,
    PayloadTooLarge,
    PermissionDenied,
    SpinupError,
    UnknownError,
    UnsupportedArchive,
)
from spinup.domain.services import archives
from spinup.domain.services.content_scanner import ContentScanner
from spinup.domain.services.exec_stream import (
    DEFAULT_EXEC_TIMEOUT,
    ExecResult,
    read_exec_output,
)
from spinup.domain.services.listing import ls_command, parse_listing
from spinup.domain.services.path_policy import PathPolicy, join_path, split_path
from spinup.infrastructure.logging import get_logger
from spinup.infrastructure.metrics import MetricsRegistry
from spinup.ports.outbound import ContainerRuntimePort

logger = get_logger(__name__)

MiB = 1024 * 1024
# Header and padding overhead allowed on top of a payload in a tar stream
TAR_OVERHEAD = 64 * 1024

NotFoundFactory = Callable[[str], NotFound]


def classify_stderr(stderr: str, path: str, not_found: Optional[NotFoundFactory]) -> Optional[SpinupError]:
    """Map command stderr to an error.

    Args:
        stderr: Decoded, stripped stderr.
        path: Path the command operated on.
        not_found: Builds the operation's not-found error. None means a
            missing path is not an error for this operation.

    Returns:
        The error to raise, or None if the command succeeded.
    """
    if not stderr:
        return None
    if "No such file" in stderr:
        return not_found(path) if not_found else None
    if "Permission denied" in stderr:
        return PermissionDenied(f"Permission denied: {path}", path=path)
    return UnknownError(f"Command failed for {path}: {stderr}", path=path)


class FileManager:
    """Secure file operations inside a game server's container.

    Thread Safety:
        Stateless apart from configuration; safe to share between threads.
        File operations are not serialized against lifecycle jobs.
    """

    def __init__(
        self,
        runtime: ContainerRuntimePort,
        policy: Optional[PathPolicy] = None,
        scanner: Optional[ContentScanner] = None,
        max_write_bytes: int = 100 * MiB,
        max_read_bytes: int = 100 * MiB,
        max_archive_bytes: int = 512 * MiB,
        exec_timeout: float = DEFAULT_EXEC_TIMEOUT,
        metrics: Optional[MetricsRegistry] = None,
    ):
        """Initialize file manager.

        Args:
            runtime: Container runtime.
            policy: Path policy (default protected names if omitted).
            scanner: Content-safety gate.
            max_write_bytes: Largest accepted write or upload.
            max_read_bytes: Largest file returned by read or download.
            max_archive_bytes: Ceiling on decoded archive size.
            exec_timeout: Deadline for each exec'd command.
            metrics: Metrics registry.
        """
        self._runtime = runtime
        self._policy = policy or PathPolicy()
        self._scanner = scanner or ContentScanner()
        self.max_write_bytes = max_write_bytes
        self.max_read_bytes = max_read_bytes
        self.max_archive_bytes = max_archive_bytes
        self.exec_timeout = exec_timeout
        self._metrics = metrics

    # =========================================================================
    # Listing and reading
    # =========================================================================

    def list_files(self, container_ref: str, path: str = "/") -> list[FileInfo]:
        """List one directory.

        Raises:
            DirectoryNotFound: If the directory does not exist.
        """
        with self._track("list"):
            directory = self._policy.normalize(path)
            result = self._run(
                container_ref,
                ls_command(directory),
                directory,
                lambda p: DirectoryNotFound(f"Directory not found: {p}", path=p),
            )
            return parse_listing(result.stdout_text, directory)

    def read_file(self, container_ref: str, path: str) -> str:
        """Read a file as text; invalid UTF-8 is replaced, never rejected."""
        with self._track("read"):
            return self._fetch_file(container_ref, path).decode("utf-8", errors="replace")

    def download_file(self, container_ref: str, path: str) -> bytes:
        """Read a file as raw bytes."""
        with self._track("download"):
            return self._fetch_file(container_ref, path)

    # =========================================================================
    # Mutations
    # =========================================================================

    def write_file(self, container_ref: str, path: str, content: str | bytes) -> None:
        """Create or replace a file.

        Raises:
            PathTraversal: Path escapes upward.
            ProtectedFile: Final component is protected.
            PayloadTooLarge: Content is larger than the write limit.
            SecurityThreat: Content matches a known signature.
        """
        with self._track("write"):
            data = content.encode("utf-8") if isinstance(content, str) else content
            self._put_file(container_ref, path, data)

    def upload_file(self, container_ref: str, path: str, data: bytes) -> None:
        """Upload binary content; same checks as ``write_file``."""
        with self._track("upload"):
            self._put_file(container_ref, path, data)

    def delete_file(self, container_ref: str, path: str) -> None:
        """Recursively delete a file or directory. Missing paths succeed."""
        with self._track("delete"):
            target = self._policy.check_mutable(path)
            self._run(container_ref, ["rm", "-rf", target], target, None)
            logger.info("file_deleted", container=container_ref, path=target)

    def create_directory(self, container_ref: str, path: str) -> None:
        """Create a directory and any missing parents."""
        with self._track("mkdir"):
            self._make_dirs(container_ref, [self._policy.normalize(path)])

    # =========================================================================
    # Archives
    # =========================================================================

    def extract_archive(
        self,
        container_ref: str,
        archive_path: str,
        destination: Optional[str] = None,
    ) -> list[str]:
        """Extract an archive that already lives in the container.

        Args:
            container_ref: Container reference.
            archive_path: Path of the zip/tar/tar.gz file.
            destination: Target directory (defaults to the archive's own).

        Returns:
            Paths created, directories first.
        """
        with self._track("extract"):
            source = self._policy.normalize(archive_path)
            base = self._policy.normalize(destination) if destination is not None else split_path(source)[0]
            data = self._download(container_ref, source, self.max_archive_bytes)
            return self._extract(container_ref, data, base)

    def extract_archive_bytes(self, container_ref: str, data: bytes, destination: str) -> list[str]:
        """Extract an uploaded archive into ``destination``."""
        with self._track("extract"):
            return self._extract(container_ref, data, self._policy.normalize(destination))

    def compress_archive(
        self,
        container_ref: str,
        source_paths: Sequence[str],
        archive_path: str,
        fmt: str = archives.FORMAT_ZIP,
    ) -> str:
        """Pack files and directories into a new archive inside the container.

        Args:
            container_ref: Container reference.
            source_paths: Files or directories to include (directories recurse).
            archive_path: Where to write the archive.
            fmt: "zip" or "tar.gz".

        Returns:
            Normalized archive path.
        """
        with self._track("compress"):
            if fmt not in archives.PACK_FORMATS:
                raise UnsupportedArchive(f"Unsupported archive format: {fmt}", format=fmt)
            target = self._policy.check_mutable(archive_path)
            sources = [self._policy.normalize(p) for p in source_paths]
            if not sources:
                raise FileNotFound("No source paths given", path=target)

            entries: list[archives.ArchiveEntry] = []
            remaining = self.max_archive_bytes
            for source in sources:
                tar_bytes = self._get_archive(container_ref, source, remaining + TAR_OVERHEAD)
                tree = archives.unpack_tree(tar_bytes, remaining)
                remaining -= sum(len(e.data) for e in tree)
                entries.extend(tree)

            self._put_file(container_ref, target, archives.pack(entries, fmt))
            logger.info(
                "archive_compressed",
                container=container_ref,
                path=target,
                entries=len(entries),
                format=fmt,
            )
            return target

    # =========================================================================
    # Internals
    # =========================================================================

    def _extract(self, container_ref: str, data: bytes, base: str) -> list[str]:

        # Phase 1: decode and validate everything before touching the container
        entries = archives.read_entries(data, self.max_archive_bytes)
        directories: list[str] = []
        files: list[tuple[str, bytes]] = []
        for entry in entries:
            target = join_path(base, entry.name)
            if entry.is_dir:
                directories.append(target)
                continue
            target = self._policy.check_mutable(target)
            self._check_payload(target, entry.data)
            files.append((target, entry.data))
            parent = split_path(target)[0]
            if parent != base:
                directories.append(parent)

        # Phase 2: replay
        unique_dirs = sorted(set(directories))
        if unique_dirs or files:
            self._make_dirs(container_ref, [base, *unique_dirs])
        for target, payload in files:
            parent, name = split_path(target)
            self._runtime.put_archive(container_ref, parent, archives.pack_single(name, payload))

        logger.info(
            "archive_extracted",
            container=container_ref,
            destination=base,
            directories=len(unique_dirs),
            files=len(files),
        )
        return unique_dirs + [target for target, _ in files]

    def _put_file(self, container_ref: str, path: str, data: bytes) -> None:
        target = self._policy.check_mutable(path)
        self._check_payload(target, data)
        parent, name = split_path(target)
        self._runtime.put_archive(container_ref, parent, archives.pack_single(name, data))
        logger.info("file_written", container=container_ref, path=target, size=len(data))

    def _check_payload(self, path: str, data: bytes) -> None:
        if len(data) > self.max_write_bytes:
            raise PayloadTooLarge(
                f"File too large: {len(data)} bytes (limit {self.max_write_bytes})",
                path=path,
                size=len(data),
            )
        self._scanner.check(data, path)

    def _fetch_file(self, container_ref: str, path: str) -> bytes:
        target = self._policy.normalize(path)
        return self._download(container_ref, target, self.max_read_bytes)

    def _download(self, container_ref: str, target: str, limit: int) -> bytes:
        tar_bytes = self._get_archive(container_ref, target, limit + TAR_OVERHEAD)
        data = archives.unpack_single(tar_bytes, target)
        if len(data) > limit:
            raise PayloadTooLarge(f"File too large: {target}", path=target, size=len(data))
        return data

    def _get_archive(self, container_ref: str, target: str, limit: int) -> bytes:
        try:
            chunks = self._runtime.get_archive(container_ref, target)
            return archives.collect_stream(chunks, limit)
        except FileNotFound as e:
            raise FileNotFound(f"File not found: {target}", path=target) from e

    def _make_dirs(self, container_ref: str, paths: list[str]) -> None:
        self._run(
            container_ref,
            ["mkdir", "-p", *paths],
            paths[0],
            lambda p: DirectoryNotFound(f"Directory not found: {p}", path=p),
        )

    def _run(
        self,
        container_ref: str,
        cmd: list[str],
        path: str,
        not_found: Optional[NotFoundFactory],
    ) -> ExecResult:
        stream = self._runtime.exec(container_ref, cmd)
        try:
            result = read_exec_output(stream, self.exec_timeout)
        except ExecTimeout:
            if self._metrics is not None:
                self._metrics.exec_timeouts_total.inc()
            raise
        error = classify_stderr(result.stderr_text, path, not_found)
        if error is not None:
            raise error
        return result

    @contextmanager
    def _track(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SpinupError as e:
            self._record(operation, e.kind)
            raise
        except Exception:
            self._record(operation, "unknown")
            raise
        self._record(operation, "success")

    def _record(self, operation: str, status: str) -> None:
        if self._metrics is not None:
            self._metrics.file_operations_total.labels(operation=operation, status=status).inc()
