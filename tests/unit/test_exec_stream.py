"""Unit tests for exec output demultiplexing."""

import io

import pytest

from spinup.adapters.outbound.mock_runtime import MockExecStream
from spinup.domain.errors import ExecTimeout, StreamError
from spinup.domain.services.exec_stream import (
    STDERR,
    STDIN,
    STDOUT,
    demux,
    encode_frame,
    iter_frames,
    read_exec_output,
)


class _TrickleStream:
    """Returns at most one byte per read, like a slow socket."""

    def __init__(self, data: bytes):
        self._buf = io.BytesIO(data)

    def read(self, size: int) -> bytes:
        return self._buf.read(min(size, 1))

    def close(self) -> None:
        pass


class _TimeoutStream:
    def read(self, size: int) -> bytes:
        raise TimeoutError("timed out")

    def close(self) -> None:
        pass


@pytest.mark.unit
class TestFrames:
    """Test frame encoding and decoding."""

    def test_header_layout(self):
        frame = encode_frame(STDERR, b"abc")
        assert frame[:8] == b"\x02\x00\x00\x00\x00\x00\x00\x03"
        assert frame[8:] == b"abc"

    def test_demux_interleaved(self):
        """Test stdout and stderr are split by tag and concatenated in order."""
        data = (
            encode_frame(STDOUT, b"hello ")
            + encode_frame(STDERR, b"warn: ")
            + encode_frame(STDOUT, b"world")
            + encode_frame(STDERR, b"disk")
        )
        result = demux(MockExecStream(data))
        assert result.stdout == b"hello world"
        assert result.stderr == b"warn: disk"

    def test_stdin_folded_into_stdout(self):
        data = encode_frame(STDIN, b"echo ") + encode_frame(STDOUT, b"ok")
        assert demux(MockExecStream(data)).stdout == b"echo ok"

    def test_empty_stream(self):
        result = demux(MockExecStream(b""))
        assert result.stdout == b""
        assert result.stderr == b""

    def test_zero_length_frame(self):
        frames = list(iter_frames(MockExecStream(encode_frame(STDOUT, b""))))
        assert frames == [(STDOUT, b"")]

    def test_short_reads_reassembled(self):
        """Test frames split across many reads decode identically."""
        data = encode_frame(STDOUT, b"x" * 100) + encode_frame(STDERR, b"y" * 10)
        result = demux(_TrickleStream(data))
        assert result.stdout == b"x" * 100
        assert result.stderr == b"y" * 10

    def test_truncated_payload(self):
        data = encode_frame(STDOUT, b"hello")[:-2]
        with pytest.raises(StreamError):
            demux(MockExecStream(data))

    def test_truncated_header(self):
        with pytest.raises(StreamError):
            demux(MockExecStream(b"\x01\x00\x00"))

    def test_unknown_tag(self):
        with pytest.raises(StreamError):
            demux(MockExecStream(encode_frame(3, b"?")))

    def test_text_helpers(self):
        data = encode_frame(STDOUT, b"caf\xc3\xa9\n") + encode_frame(STDERR, b"  oops \n")
        result = demux(MockExecStream(data))
        assert result.stdout_text == "café\n"
        assert result.stderr_text == "oops"


@pytest.mark.unit
class TestReadExecOutput:
    """Test deadline handling."""

    def test_reads_to_end(self):
        stream = MockExecStream(encode_frame(STDOUT, b"done"))
        result = read_exec_output(stream, timeout=2)
        assert result.stdout == b"done"
        assert stream.closed

    def test_stalled_stream_times_out(self):
        """Test a stream that never ends is closed and reported."""
        stream = MockExecStream(stall=True)
        with pytest.raises(ExecTimeout):
            read_exec_output(stream, timeout=0.2)
        assert stream.closed

    def test_transport_timeout(self):
        with pytest.raises(ExecTimeout):
            read_exec_output(_TimeoutStream(), timeout=2)

    def test_stream_error_propagates(self):
        stream = MockExecStream(encode_frame(STDOUT, b"hello")[:-1])
        with pytest.raises(StreamError):
            read_exec_output(stream, timeout=2)
        assert stream.closed
