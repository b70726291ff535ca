# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

import pytest

from protocol.framing import (
    FrameTooLarge,
    FrameType,
    InvalidFrameLength,
    MalformedFrame,
    StreamTerminated,
    decode_next_frame,
    decode_orientation_header,
    encode_audio_frame,
    encode_orientation_header,
    encode_video_frame,
)
from spec import AUDIO_CHUNK_SIZE, MAX_VIDEO_PAYLOAD_BYTES


class BufferStream:
    """read_exact over a fixed buffer; records how many bytes were consumed."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.consumed = 0

    async def read_exact(self, n: int) -> bytes:
        if self.consumed + n > len(self.data):
            raise StreamTerminated("eof")
        out = self.data[self.consumed:self.consumed + n]
        self.consumed += n
        return out


def decode(data: bytes, **kwargs):
    stream = BufferStream(data)
    frame = asyncio.run(decode_next_frame(stream.read_exact, **kwargs))
    return frame, stream


# ---------------------------------------------------------------------
# Orientation header
# ---------------------------------------------------------------------

def test_orientation_header_is_big_endian_i32():
    assert encode_orientation_header(90) == b"\x00\x00\x00\x5a"
    assert encode_orientation_header(270) == b"\x00\x00\x01\x0e"
    assert decode_orientation_header(b"\x00\x00\x00\x5a") == 90


def test_orientation_header_rejects_wrong_size():
    with pytest.raises(InvalidFrameLength):
        decode_orientation_header(b"\x00\x5a")


# ---------------------------------------------------------------------
# VIDEO frames
# ---------------------------------------------------------------------

def test_video_frame_wire_layout():
    assert encode_video_frame(b"\xaa\xbb\xcc") == b"\x00\x00\x00\x00\x03\xaa\xbb\xcc"


@pytest.mark.parametrize("size", [0, 1, 3, 1500, 256 * 1024])
def test_video_round_trip(size: int):
    payload = bytes(i & 0xFF for i in range(size))
    wire = encode_video_frame(payload)

    frame, stream = decode(wire)

    assert frame.kind is FrameType.VIDEO
    assert frame.payload == payload
    assert stream.consumed == len(wire)


def test_video_max_length_prefix_is_accepted():
    # The largest representable length is legal; the fake stream records the
    # payload request instead of producing 2 GiB
    header = b"\x00" + MAX_VIDEO_PAYLOAD_BYTES.to_bytes(4, "big")
    requested: list[int] = []

    async def read_exact(n: int) -> bytes:
        requested.append(n)
        if len(requested) == 1:
            return header[:1]
        if len(requested) == 2:
            return header[1:]
        return b"payload"

    frame = asyncio.run(decode_next_frame(read_exact))

    assert requested == [1, 4, MAX_VIDEO_PAYLOAD_BYTES]
    assert frame.kind is FrameType.VIDEO
    assert frame.payload == b"payload"


def test_negative_video_length_is_malformed():
    with pytest.raises(MalformedFrame):
        decode(b"\x00\xff\xff\xff\xff")


def test_video_frame_too_large_refused_on_encode():
    class HugeBytes(bytes):
        def __len__(self) -> int:
            return MAX_VIDEO_PAYLOAD_BYTES + 1

    with pytest.raises(FrameTooLarge):
        encode_video_frame(HugeBytes(b""))


def test_truncated_video_payload_terminates_stream():
    wire = encode_video_frame(b"\x01\x02\x03\x04")[:-1]

    with pytest.raises(StreamTerminated):
        decode(wire)


# ---------------------------------------------------------------------
# AUDIO frames
# ---------------------------------------------------------------------

def test_audio_round_trip():
    chunk = b"\x7f" * AUDIO_CHUNK_SIZE
    wire = encode_audio_frame(chunk)

    assert len(wire) == 1 + AUDIO_CHUNK_SIZE
    assert wire[0] == 1

    frame, stream = decode(wire)

    assert frame.kind is FrameType.AUDIO
    assert frame.payload == chunk
    assert stream.consumed == len(wire)


def test_audio_round_trip_custom_chunk_size():
    chunk = bytes(range(32))
    frame, _ = decode(encode_audio_frame(chunk, chunk_size=32), chunk_size=32)

    assert frame.payload == chunk


@pytest.mark.parametrize("size", [0, AUDIO_CHUNK_SIZE - 1, AUDIO_CHUNK_SIZE + 1])
def test_audio_encode_rejects_wrong_chunk_size(size: int):
    with pytest.raises(InvalidFrameLength):
        encode_audio_frame(b"\x00" * size)


# ---------------------------------------------------------------------
# Unknown tags
# ---------------------------------------------------------------------

@pytest.mark.parametrize("tag", [2, 7, 0x80, 0xFF])
def test_unknown_tag_is_malformed_and_consumes_one_byte(tag: int):
    stream = BufferStream(bytes([tag]) + b"\x00" * 16)

    with pytest.raises(MalformedFrame):
        asyncio.run(decode_next_frame(stream.read_exact))

    assert stream.consumed == 1


def test_frames_decode_in_sequence():
    wire = (
        encode_video_frame(b"\x01")
        + encode_audio_frame(b"\x02" * AUDIO_CHUNK_SIZE)
        + encode_video_frame(b"")
    )
    stream = BufferStream(wire)

    async def read_all():
        return [await decode_next_frame(stream.read_exact) for _ in range(3)]

    frames = asyncio.run(read_all())

    assert [f.kind for f in frames] == [FrameType.VIDEO, FrameType.AUDIO, FrameType.VIDEO]
    assert frames[2].payload == b""
    assert stream.consumed == len(wire)
