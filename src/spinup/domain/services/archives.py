"""In-memory archive codecs.

Archives are decoded entirely in memory. Every decoded byte counts toward
a cumulative ceiling that is checked chunk by chunk, so a decompression
bomb fails as soon as it crosses the ceiling rather than after inflating.
"""

from __future__ import annotations

import io
import tarfile
import time
import zipfile
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from spinup.domain.errors import (
    ArchiveTooLarge,
    NotAFile,
    PayloadTooLarge,
    UnsupportedArchive,
)
from spinup.domain.services.path_policy import normalize_path
from spinup.infrastructure.logging import get_logger

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024

FORMAT_ZIP = "zip"
FORMAT_TAR_GZ = "tar.gz"
FORMAT_TAR = "tar"
PACK_FORMATS = (FORMAT_ZIP, FORMAT_TAR_GZ)


@dataclass
class ArchiveEntry:
    """One decoded archive member.

    ``name`` is relative (no leading slash), normalized, and never contains
    ``..`` segments.
    """
    name: str
    is_dir: bool
    data: bytes = b""


class _Budget:
    """Cumulative decoded-size counter."""

    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0

    def charge(self, size: int) -> None:
        self.used += size
        if self.used > self.limit:
            raise ArchiveTooLarge(
                f"Archive exceeds the {self.limit} byte extraction limit",
                limit=self.limit,
            )


def detect_format(data: bytes) -> str:
    """Identify an archive by magic bytes.

    Raises:
        UnsupportedArchive: If the bytes are not zip, gzip or tar.
    """
    if data[:4] in (b"PK\x03\x04", b"PK\x05\x06"):
        return FORMAT_ZIP
    if data[:2] == b"\x1f\x8b":
        return FORMAT_TAR_GZ
    if data[257:262] == b"ustar":
        return FORMAT_TAR
    raise UnsupportedArchive("Unrecognized archive format")


def _member_name(raw: str) -> Optional[str]:
    """Normalize a member name to a relative path; None for the root itself."""
    normalized = normalize_path(raw)
    return normalized.lstrip("/") or None


def _read_chunked(handle: io.BufferedIOBase, budget: _Budget) -> bytes:
    buf = bytearray()
    while True:
        chunk = handle.read(CHUNK_SIZE)
        if not chunk:
            return bytes(buf)
        budget.charge(len(chunk))
        buf += chunk


def _zip_entries(data: bytes, budget: _Budget) -> Iterator[ArchiveEntry]:
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise UnsupportedArchive(f"Corrupt zip archive: {e}") from e
    with archive:
        for info in archive.infolist():
            name = _member_name(info.filename)
            if name is None:
                continue
            if info.is_dir():
                yield ArchiveEntry(name, is_dir=True)
                continue
            try:
                with archive.open(info) as handle:
                    yield ArchiveEntry(name, is_dir=False, data=_read_chunked(handle, budget))
            except (zipfile.BadZipFile, zipfile.LargeZipFile, NotImplementedError) as e:
                raise UnsupportedArchive(f"Cannot decode zip member {info.filename}: {e}") from e


def _tar_entries(data: bytes, budget: _Budget) -> Iterator[ArchiveEntry]:
    try:
        archive = tarfile.open(fileobj=io.BytesIO(data), mode="r:*")
    except (tarfile.TarError, EOFError, OSError) as e:
        raise UnsupportedArchive(f"Corrupt tar archive: {e}") from e
    with archive:
        try:
            for member in archive:
                name = _member_name(member.name)
                if name is None:
                    continue
                if member.isdir():
                    yield ArchiveEntry(name, is_dir=True)
                elif member.isfile():
                    if budget.used + member.size > budget.limit:
                        budget.charge(member.size)
                    handle = archive.extractfile(member)
                    yield ArchiveEntry(name, is_dir=False, data=_read_chunked(handle, budget))
                else:
                    # Links and device nodes are never recreated
                    logger.warning("archive_member_skipped", member=member.name, type=member.type)
        except (tarfile.TarError, EOFError, OSError) as e:
            raise UnsupportedArchive(f"Cannot decode tar archive: {e}") from e


def read_entries(data: bytes, max_bytes: int) -> list[ArchiveEntry]:
    """Decode every member of a zip, tar or gzip-compressed tar archive.

    Args:
        data: Archive bytes.
        max_bytes: Ceiling on the total decoded size.

    Returns:
        Entries in archive order.

    Raises:
        ArchiveTooLarge: The moment the decoded total exceeds ``max_bytes``.
        PathTraversal: If a member name contains a ``..`` segment.
        UnsupportedArchive: If the archive cannot be decoded.
    """
    budget = _Budget(max_bytes)
    fmt = detect_format(data)
    entries = _zip_entries(data, budget) if fmt == FORMAT_ZIP else _tar_entries(data, budget)
    return list(entries)


# =============================================================================
# Tar streams exchanged with the container runtime
# =============================================================================


def collect_stream(chunks: Iterable[bytes], max_bytes: int) -> bytes:
    """Join a chunked stream, refusing to buffer more than ``max_bytes``.

    Raises:
        PayloadTooLarge: If the stream is longer than the limit.
    """
    buf = bytearray()
    for chunk in chunks:
        buf += chunk
        if len(buf) > max_bytes:
            raise PayloadTooLarge(f"Stream exceeds the {max_bytes} byte limit", limit=max_bytes)
    return bytes(buf)


def pack_single(name: str, data: bytes, mode: int = 0o644) -> bytes:
    """Build an uncompressed tar holding one regular file."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as archive:
        info = tarfile.TarInfo(name=name)
        info.size = len(data)
        info.mode = mode
        info.mtime = int(time.time())
        archive.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def unpack_single(tar_bytes: bytes, path: str = "") -> bytes:
    """Return the content of the single regular file in a tar stream.

    Raises:
        NotAFile: If the first member is a directory.
        UnsupportedArchive: If the stream holds no readable file.
    """
    try:
        with tarfile.open(fileobj=io.BytesIO(tar_bytes), mode="r:") as archive:
            member = archive.next()
            if member is None:
                raise UnsupportedArchive("Empty archive stream", path=path)
            if member.isdir():
                raise NotAFile(f"Path is a directory: {path}", path=path)
            handle = archive.extractfile(member)
            if handle is None:
                raise NotAFile(f"Path is not a regular file: {path}", path=path)
            return handle.read()
    except (tarfile.TarError, KeyError) as e:
        raise UnsupportedArchive(f"Corrupt archive stream: {e}", path=path) from e


def unpack_tree(tar_bytes: bytes, max_bytes: int) -> list[ArchiveEntry]:
    """Decode a tar stream returned by the runtime for a file or directory."""
    return list(_tar_entries(tar_bytes, _Budget(max_bytes)))


def pack(entries: Iterable[ArchiveEntry], fmt: str) -> bytes:
    """Pack entries into a zip or gzip-compressed tar archive.

    Raises:
        UnsupportedArchive: If ``fmt`` is not a supported pack format.
    """
    buf = io.BytesIO()
    if fmt == FORMAT_ZIP:
        with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
            for entry in entries:
                if entry.is_dir:
                    archive.writestr(entry.name.rstrip("/") + "/", b"")
                else:
                    archive.writestr(entry.name, entry.data)
    elif fmt == FORMAT_TAR_GZ:
        with tarfile.open(fileobj=buf, mode="w:gz") as archive:
            now = int(time.time())
            for entry in entries:
                info = tarfile.TarInfo(name=entry.name)
                info.mtime = now
                if entry.is_dir:
                    info.type = tarfile.DIRTYPE
                    info.mode = 0o755
                    archive.addfile(info)
                else:
                    info.size = len(entry.data)
                    info.mode = 0o644
                    archive.addfile(info, io.BytesIO(entry.data))
    else:
        raise UnsupportedArchive(f"Unsupported archive format: {fmt}", format=fmt)
    return buf.getvalue()


__all__ = [
    "ArchiveEntry",
    "PACK_FORMATS",
    "collect_stream",
    "detect_format",
    "pack",
    "pack_single",
    "read_entries",
    "unpack_single",
    "unpack_tree",
]
