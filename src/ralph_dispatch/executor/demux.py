"""Docker multiplexed log stream decoding.

A non-TTY container attached with both stdout and stderr emits frames of an
8-byte header followed by the payload. Header byte 0 is the stream marker
(1 = stdout, 2 = stderr) and bytes 4..7 hold the big-endian payload size.
Frames can split lines (and UTF-8 sequences) anywhere, so each stream keeps
its own partial-line buffer.
"""

from __future__ import annotations

import codecs
import struct
from collections.abc import Iterable, Iterator

from ralph_dispatch.executor.base import LogLine
from ralph_dispatch.queue.models import LogStream

FRAME_HEADER_SIZE = 8

_STREAM_MARKERS = {1: LogStream.STDOUT, 2: LogStream.STDERR}


class LineSplitter:
    """Accumulate text per stream and emit complete, non-blank lines."""

    def __init__(self) -> None:
        self._decoders = {
            stream: codecs.getincrementaldecoder("utf-8")(errors="replace") for stream in LogStream
        }
        self._buffers = dict.fromkeys(LogStream, "")

    def feed(self, stream: LogStream, payload: bytes) -> list[LogLine]:
        text = self._buffers[stream] + self._decoders[stream].decode(payload)
        *complete, remainder = text.split("\n")
        self._buffers[stream] = remainder
        return [line for raw in complete if (line := _clean(stream, raw)) is not None]

    def flush(self) -> list[LogLine]:
        """Emit whatever is left in the buffers at end of stream."""

        lines: list[LogLine] = []
        for stream in LogStream:
            text = self._buffers[stream] + self._decoders[stream].decode(b"", final=True)
            self._buffers[stream] = ""
            line = _clean(stream, text)
            if line is not None:
                lines.append(line)
        return lines


def demux_frames(chunks: Iterable[bytes]) -> Iterator[tuple[LogStream, bytes]]:
    """Turn arbitrary byte chunks into ``(stream, payload)`` frames."""

    pending = bytearray()
    for chunk in chunks:
        pending.extend(chunk)
        while len(pending) >= FRAME_HEADER_SIZE:
            marker = pending[0]
            (size,) = struct.unpack(">I", pending[4:FRAME_HEADER_SIZE])
            if len(pending) < FRAME_HEADER_SIZE + size:
                break
            payload = bytes(pending[FRAME_HEADER_SIZE : FRAME_HEADER_SIZE + size])
            del pending[: FRAME_HEADER_SIZE + size]
            stream = _STREAM_MARKERS.get(marker)
            # stdin echo (0) and unknown markers carry nothing we store.
            if stream is not None:
                yield stream, payload


def iter_log_lines(chunks: Iterable[bytes]) -> Iterator[LogLine]:
    """Decode a multiplexed byte stream into per-stream lines."""

    splitter = LineSplitter()
    for stream, payload in demux_frames(chunks):
        yield from splitter.feed(stream, payload)
    yield from splitter.flush()


def _clean(stream: LogStream, raw: str) -> LogLine | None:
    text = raw.rstrip("\r")
    if not text.strip():
        return None
    return LogLine(stream=stream, text=text)
