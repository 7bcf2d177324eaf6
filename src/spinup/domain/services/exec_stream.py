"""Exec output demultiplexing.

The container runtime multiplexes stdout and stderr of an exec session
onto one byte stream. Each frame is an 8-byte header followed by the
payload:

    byte 0     stream tag (0 stdin, 1 stdout, 2 stderr)
    bytes 1-3  unused
    bytes 4-7  payload length, big-endian unsigned

Stdin frames are folded into stdout. The stream is read until EOF under a
deadline; a stream that stalls is closed and reported as a timeout.
"""

from __future__ import annotations

import struct
import threading
from dataclasses import dataclass
from typing import Iterator, Optional

from spinup.domain.errors import ExecTimeout, StreamError
from spinup.infrastructure.logging import get_logger
from spinup.ports.outbound import ByteStream

logger = get_logger(__name__)

HEADER_SIZE = 8
STDIN = 0
STDOUT = 1
STDERR = 2
DEFAULT_EXEC_TIMEOUT = 30.0

_LENGTH = struct.Struct(">I")


@dataclass
class ExecResult:
    """Collected output of one exec session."""
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace").strip()


def encode_frame(tag: int, payload: bytes) -> bytes:
    """Build one multiplexed frame."""
    return bytes([tag, 0, 0, 0]) + _LENGTH.pack(len(payload)) + payload


def _read_exact(stream: ByteStream, size: int, at_boundary: bool = False) -> Optional[bytes]:
    buf = bytearray()
    while len(buf) < size:
        try:
            chunk = stream.read(size - len(buf))
        except TimeoutError as e:
            raise ExecTimeout(f"Exec stream read timed out: {e}") from e
        except OSError as e:
            raise StreamError(f"Exec stream broke: {e}") from e
        if not chunk:
            if at_boundary and not buf:
                return None
            raise StreamError(f"Exec stream ended mid-frame ({len(buf)} of {size} bytes)")
        buf += chunk
    return bytes(buf)


def iter_frames(stream: ByteStream) -> Iterator[tuple[int, bytes]]:
    """Yield (tag, payload) frames until a clean end of stream.

    Raises:
        StreamError: On a truncated frame, an unknown tag or a broken stream.
        ExecTimeout: If the underlying transport times out.
    """
    while True:
        header = _read_exact(stream, HEADER_SIZE, at_boundary=True)
        if header is None:
            return
        tag = header[0]
        if tag not in (STDIN, STDOUT, STDERR):
            raise StreamError(f"Unknown exec stream tag {tag}")
        (length,) = _LENGTH.unpack(header[4:8])
        payload = _read_exact(stream, length) if length else b""
        yield tag, payload


def demux(stream: ByteStream) -> ExecResult:
    """Read a whole multiplexed stream, with no deadline."""
    stdout = bytearray()
    stderr = bytearray()
    for tag, payload in iter_frames(stream):
        if tag == STDERR:
            stderr += payload
        else:
            stdout += payload
    return ExecResult(bytes(stdout), bytes(stderr))


def read_exec_output(stream: ByteStream, timeout: float = DEFAULT_EXEC_TIMEOUT) -> ExecResult:
    """Demultiplex a stream to completion under a deadline.

    The stream is always closed on return.

    Args:
        stream: Raw exec stream.
        timeout: Seconds allowed for the whole read.

    Returns:
        Collected stdout and stderr.

    Raises:
        ExecTimeout: If EOF is not reached within ``timeout``.
        StreamError: If the stream is malformed or breaks.
    """
    outcome: dict[str, object] = {}

    def reader() -> None:
        try:
            outcome["result"] = demux(stream)
        except Exception as e:
            outcome["error"] = e

    thread = threading.Thread(target=reader, name="exec-demux", daemon=True)
    thread.start()
    thread.join(timeout)

    if thread.is_alive():
        _close_quietly(stream)
        logger.warning("exec_timeout", timeout=timeout)
        raise ExecTimeout(f"Exec produced no end of stream within {timeout:g}s")

    _close_quietly(stream)
    if "error" in outcome:
        raise outcome["error"]  # type: ignore[misc]
    return outcome["result"]  # type: ignore[return-value]


def _close_quietly(stream: ByteStream) -> None:
    try:
        stream.close()
    except OSError as e:
        logger.debug("exec_stream_close_failed", error=str(e))
