# backend/protocol/framing.py
"""
Wire framing for a peer session.

Layout (all integers big-endian, fixed-width 32-bit):

    Orientation header (once, first thing on the stream):
        4 bytes  rotation degrees (i32)

    Frames (repeated):
        VIDEO:  1 byte tag = 0
                4 bytes length (i32, 0 <= length <= 2^31-1)
                length bytes access unit
        AUDIO:  1 byte tag = 1
                AUDIO_CHUNK_SIZE bytes PCM (size is a session constant)

Encoding is pure. Decoding pulls bytes through a caller-supplied
`read_exact(n)` coroutine which must return exactly n bytes or raise
StreamTerminated; the codec itself performs no I/O.

Usage example:

    await endpoint.write_all(encode_orientation_header(90))
    await endpoint.write_all(encode_video_frame(access_unit))

    frame = await decode_next_frame(endpoint.read_exact)
    if frame.kind is FrameType.VIDEO:
        ...
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Awaitable, Callable

from spec import (
    AUDIO_CHUNK_SIZE,
    FRAME_TAG_AUDIO,
    FRAME_TAG_BYTES,
    FRAME_TAG_VIDEO,
    MAX_VIDEO_PAYLOAD_BYTES,
    ORIENTATION_HEADER_BYTES,
    VIDEO_LENGTH_BYTES,
)


ReadExact = Callable[[int], Awaitable[bytes]]


# -------------------------
# Exceptions
# -------------------------

class FramingError(Exception):
    """Base class for wire framing errors."""


class MalformedFrame(FramingError):
    """
    Raised when the stream carries an unrecognized type tag or an impossible
    length prefix.

    The byte stream is desynchronized from this point on. No resynchronization
    is attempted: the connection must be torn down.
    """


class InvalidFrameLength(FramingError):
    """
    Raised when an AUDIO payload does not match the session chunk size, or a
    header buffer has the wrong size.
    """


class FrameTooLarge(FramingError):
    """Raised when a VIDEO payload cannot be described by a 32-bit signed length."""


class StreamTerminated(Exception):
    """
    Raised when the underlying byte stream ended or failed mid read/write.

    Fatal to the session.
    """


# -------------------------
# Types
# -------------------------

class FrameType(IntEnum):
    """Multiplexed frame type; the value is the on-wire tag byte."""
    VIDEO = FRAME_TAG_VIDEO
    AUDIO = FRAME_TAG_AUDIO


@dataclass(frozen=True)
class Frame:
    """One demultiplexed frame. `payload` excludes tag and length prefix."""
    kind: FrameType
    payload: bytes


# -------------------------
# Low-level helpers
# -------------------------

_I32_BE = struct.Struct(">i")


def _i32_be(value: int) -> bytes:
    return _I32_BE.pack(value)


def _read_i32_be(buf: bytes) -> int:
    return _I32_BE.unpack(buf)[0]


# -------------------------
# Orientation header
# -------------------------

def encode_orientation_header(degrees: int) -> bytes:
    """Encode the one-time rotation header (4-byte big-endian signed int)."""
    return _i32_be(degrees)


def decode_orientation_header(raw: bytes) -> int:
    """Decode the one-time rotation header."""
    if len(raw) != ORIENTATION_HEADER_BYTES:
        raise InvalidFrameLength(
            f"orientation header length {len(raw)} != {ORIENTATION_HEADER_BYTES}"
        )
    return _read_i32_be(raw)


# -------------------------
# Encoding
# -------------------------

def encode_video_frame(payload: bytes) -> bytes:
    """
    Encode one access unit as a VIDEO frame: tag + length + payload.
    """
    if len(payload) > MAX_VIDEO_PAYLOAD_BYTES:
        raise FrameTooLarge(
            f"video payload {len(payload)} > {MAX_VIDEO_PAYLOAD_BYTES}"
        )
    return bytes((FRAME_TAG_VIDEO,)) + _i32_be(len(payload)) + payload


def encode_audio_frame(
    payload: bytes,
    *,
    chunk_size: int = AUDIO_CHUNK_SIZE,
) -> bytes:
    """
    Encode one PCM chunk as an AUDIO frame: tag + payload.

    The chunk size is a session constant and is not written to the wire,
    so a chunk of any other size would desynchronize the peer.
    """
    if len(payload) != chunk_size:
        raise InvalidFrameLength(
            f"audio chunk length {len(payload)} != {chunk_size}"
        )
    return bytes((FRAME_TAG_AUDIO,)) + payload


# -------------------------
# Decoding
# -------------------------

async def decode_next_frame(
    read_exact: ReadExact,
    *,
    chunk_size: int = AUDIO_CHUNK_SIZE,
) -> Frame:
    """
    Read and decode exactly one frame.

    Reads 1 tag byte, then:
    - VIDEO: 4 length bytes, then exactly that many payload bytes
    - AUDIO: exactly chunk_size payload bytes

    Raises:
        MalformedFrame: unknown tag (exactly one byte consumed) or a length
            prefix outside 0..2^31-1.
        StreamTerminated: propagated from read_exact.
    """
    tag = (await read_exact(FRAME_TAG_BYTES))[0]

    if tag == FRAME_TAG_VIDEO:
        length = _read_i32_be(await read_exact(VIDEO_LENGTH_BYTES))
        if length < 0:
            raise MalformedFrame(f"negative video length: {length}")
        payload = await read_exact(length) if length else b""
        return Frame(kind=FrameType.VIDEO, payload=payload)

    if tag == FRAME_TAG_AUDIO:
        return Frame(kind=FrameType.AUDIO, payload=await read_exact(chunk_size))

    raise MalformedFrame(f"unrecognized frame tag: {tag:#04x}")
