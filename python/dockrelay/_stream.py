# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Frame decoding for container output streams.

Without a TTY the engine multiplexes output into frames.  Each frame has an
8-byte header:
  - byte 0: stream type (1 = stdout, 2 = stderr)
  - bytes 1-3: padding (zero)
  - bytes 4-7: payload length (big-endian uint32)

With a TTY the engine sends plain text and every read is one chunk.

Decoders here are push-based: :meth:`feed` takes whatever bytes arrived and
returns the text chunks that are complete so far.  Incomplete headers and
payloads stay buffered until the next feed.
"""

from __future__ import annotations

import codecs
import struct
from typing import TYPE_CHECKING

from dockrelay.errors import FrameTooLarge

if TYPE_CHECKING:
    from collections.abc import Iterator

STREAM_STDIN = 0
STREAM_STDOUT = 1
STREAM_STDERR = 2
HEADER_SIZE = 8
DEFAULT_MAX_FRAME_SIZE = 16 * 1024 * 1024
_HEADER_FORMAT = ">BxxxI"  # 1 byte type, 3 padding, 4 byte length


def parse_stream_header(header: bytes) -> tuple[int, int]:
    """Parse an 8-byte Docker stream frame header.

    Returns:
        Tuple of (stream_type, payload_length).

    """
    stream_type, payload_length = struct.unpack(_HEADER_FORMAT, header)
    return stream_type, payload_length


def make_frame(stream_type: int, payload: bytes) -> bytes:
    """Build one multiplexed frame around *payload*."""
    return struct.pack(_HEADER_FORMAT, stream_type, len(payload)) + payload


class FrameDecoder:
    """Length-prefixed frame decoder for multiplexed (non-TTY) streams.

    A header is only consumed together with its complete payload, so a
    partially received frame never yields a partial chunk.
    """

    def __init__(self, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE) -> None:
        self._buf = bytearray()
        self._max_frame_size = max_frame_size

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for a complete frame."""
        return len(self._buf)

    def feed(self, data: bytes) -> list[str]:
        """Append *data* and return the text of every complete frame."""
        return list(self.decode(data))

    def decode(self, data: bytes) -> Iterator[str]:
        """Append *data* and yield the text of each complete frame as it is cut."""
        self._buf.extend(data)
        while len(self._buf) >= HEADER_SIZE:
            _, payload_length = parse_stream_header(bytes(self._buf[:HEADER_SIZE]))
            if payload_length > self._max_frame_size:
                raise FrameTooLarge(payload_length, self._max_frame_size)
            total_frame = HEADER_SIZE + payload_length
            if len(self._buf) < total_frame:
                break
            payload = bytes(self._buf[HEADER_SIZE:total_frame])
            del self._buf[:total_frame]
            if payload_length > 0:
                yield payload.decode("utf-8", errors="replace")


class TtyDecoder:
    """Decoder for already-demultiplexed TTY output.

    Each read becomes one chunk.  A multi-byte character split across two
    reads is held back until it is complete.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def buffered(self) -> int:
        """Number of bytes held back for an incomplete character."""
        pending, _ = self._decoder.getstate()
        return len(pending)

    def feed(self, data: bytes) -> list[str]:
        """Decode *data*, returning at most one chunk."""
        return list(self.decode(data))

    def decode(self, data: bytes) -> Iterator[str]:
        text = self._decoder.decode(data)
        if text:
            yield text


def make_decoder(
    *, tty: bool, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE
) -> FrameDecoder | TtyDecoder:
    """Return the decoder matching the container's TTY setting."""
    if tty:
        return TtyDecoder()
    return FrameDecoder(max_frame_size)
