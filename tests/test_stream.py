"""Unit tests for frame and TTY decoding."""

from __future__ import annotations

import struct

import pytest
from dockrelay._stream import (
    HEADER_SIZE,
    STREAM_STDERR,
    STREAM_STDOUT,
    FrameDecoder,
    TtyDecoder,
    make_decoder,
    make_frame,
    parse_stream_header,
)
from dockrelay.errors import FrameTooLarge


def test_parse_stream_header_stdout() -> None:
    header = struct.pack(">BxxxI", STREAM_STDOUT, 42)
    stream_type, length = parse_stream_header(header)
    assert stream_type == STREAM_STDOUT
    assert length == 42


def test_parse_stream_header_stderr() -> None:
    header = struct.pack(">BxxxI", STREAM_STDERR, 100)
    stream_type, length = parse_stream_header(header)
    assert stream_type == STREAM_STDERR
    assert length == 100


def test_header_size_is_eight() -> None:
    assert HEADER_SIZE == 8


def test_make_frame_length_at_offset_four() -> None:
    frame = make_frame(STREAM_STDOUT, b"abcd")
    assert len(frame) == HEADER_SIZE + 4
    assert struct.unpack(">I", frame[4:8]) == (4,)
    assert frame[8:] == b"abcd"


# --- FrameDecoder ---


def test_two_frames_in_one_feed() -> None:
    decoder = FrameDecoder()
    data = make_frame(STREAM_STDOUT, b"abcd") + make_frame(STREAM_STDOUT, b"xyz")
    assert decoder.feed(data) == ["abcd", "xyz"]
    assert decoder.buffered == 0


def test_partial_payload_emits_nothing() -> None:
    decoder = FrameDecoder()
    frame = make_frame(STREAM_STDOUT, b"hello world")
    assert decoder.feed(frame[:12]) == []
    assert decoder.buffered == 12


def test_partial_payload_completes_on_next_feed() -> None:
    decoder = FrameDecoder()
    frame = make_frame(STREAM_STDOUT, b"hello world")
    decoder.feed(frame[:12])
    assert decoder.feed(frame[12:]) == ["hello world"]


def test_split_header_is_preserved() -> None:
    decoder = FrameDecoder()
    frame = make_frame(STREAM_STDOUT, b"abc")
    assert decoder.feed(frame[:3]) == []
    assert decoder.feed(frame[3:7]) == []
    assert decoder.feed(frame[7:]) == ["abc"]


def test_byte_at_a_time_matches_payloads() -> None:
    payloads = [b"first line\n", b"second", "ünïcode ✓\n".encode()]
    data = b"".join(make_frame(STREAM_STDOUT, p) for p in payloads)
    decoder = FrameDecoder()
    chunks: list[str] = []
    for i in range(len(data)):
        chunks.extend(decoder.feed(data[i : i + 1]))
    assert chunks == [p.decode("utf-8") for p in payloads]
    assert "".join(chunks) == b"".join(payloads).decode("utf-8")


def test_zero_length_frame_is_skipped() -> None:
    decoder = FrameDecoder()
    data = make_frame(STREAM_STDOUT, b"") + make_frame(STREAM_STDOUT, b"x")
    assert decoder.feed(data) == ["x"]


def test_stream_type_does_not_filter_frames() -> None:
    decoder = FrameDecoder()
    data = make_frame(STREAM_STDERR, b"err") + make_frame(STREAM_STDOUT, b"out")
    assert decoder.feed(data) == ["err", "out"]


def test_invalid_utf8_is_replaced() -> None:
    decoder = FrameDecoder()
    assert decoder.feed(make_frame(STREAM_STDOUT, b"\xff\xfe")) == ["\ufffd\ufffd"]


def test_implausible_length_raises() -> None:
    decoder = FrameDecoder(max_frame_size=1024)
    header = struct.pack(">BxxxI", STREAM_STDOUT, 4 * 1024 * 1024 * 1024 - 1)
    with pytest.raises(FrameTooLarge) as exc_info:
        decoder.feed(header)
    assert exc_info.value.limit == 1024


def test_length_at_limit_is_accepted() -> None:
    decoder = FrameDecoder(max_frame_size=4)
    assert decoder.feed(make_frame(STREAM_STDOUT, b"abcd")) == ["abcd"]


# --- TtyDecoder ---


def test_tty_each_read_is_one_chunk() -> None:
    decoder = TtyDecoder()
    assert decoder.feed(b"message") == ["message"]
    assert decoder.feed(b"more\n") == ["more\n"]


def test_tty_split_multibyte_character() -> None:
    decoder = TtyDecoder()
    encoded = "✓".encode()
    assert decoder.feed(encoded[:1]) == []
    assert decoder.buffered == 1
    assert decoder.feed(encoded[1:]) == ["✓"]


def test_tty_frame_bytes_are_not_parsed() -> None:
    decoder = TtyDecoder()
    frame = make_frame(STREAM_STDOUT, b"abc")
    assert decoder.feed(frame) == [frame.decode("utf-8")]


def test_make_decoder_selects_by_tty() -> None:
    assert isinstance(make_decoder(tty=True), TtyDecoder)
    assert isinstance(make_decoder(tty=False), FrameDecoder)
