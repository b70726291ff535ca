"""
Summarize a raw capture of one direction of a peer session.

Usage:
    python tools/inspect_capture.py capture.bin [--chunk-size 640]

Prints the orientation header, then one line per frame, then totals.
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from protocol.framing import (
    FrameType,
    FramingError,
    StreamTerminated,
    decode_next_frame,
    decode_orientation_header,
)
from spec import AUDIO_CHUNK_SIZE, ORIENTATION_HEADER_BYTES


class _BufferReader:
    """read_exact over an in-memory capture."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self.offset = 0

    async def read_exact(self, n: int) -> bytes:
        if self.offset + n > len(self._data):
            self.offset = len(self._data)
            raise StreamTerminated("end of capture")
        out = self._data[self.offset:self.offset + n]
        self.offset += n
        return out


async def _summarize(data: bytes, chunk_size: int) -> list[str]:
    reader = _BufferReader(data)
    lines: list[str] = []

    try:
        header = await reader.read_exact(ORIENTATION_HEADER_BYTES)
    except StreamTerminated:
        return ["capture shorter than the orientation header"]
    lines.append(f"orientation: {decode_orientation_header(header)} degrees")

    counts = {FrameType.VIDEO: 0, FrameType.AUDIO: 0}
    payload_bytes = 0
    while reader.offset < len(data):
        start = reader.offset
        try:
            frame = await decode_next_frame(reader.read_exact, chunk_size=chunk_size)
        except StreamTerminated:
            lines.append(f"@{start}: truncated frame")
            break
        except FramingError as exc:
            lines.append(f"@{start}: malformed ({exc})")
            break

        counts[frame.kind] += 1
        payload_bytes += len(frame.payload)
        lines.append(f"@{start}: {frame.kind.name} {len(frame.payload)} bytes")

    lines.append(
        f"total: video={counts[FrameType.VIDEO]} audio={counts[FrameType.AUDIO]} "
        f"payload_bytes={payload_bytes}"
    )
    return lines


def summarize_capture(data: bytes, *, chunk_size: int = AUDIO_CHUNK_SIZE) -> list[str]:
    return asyncio.run(_summarize(data, chunk_size))


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("path", type=Path)
    parser.add_argument("--chunk-size", type=int, default=AUDIO_CHUNK_SIZE)
    args = parser.parse_args()

    for line in summarize_capture(args.path.read_bytes(), chunk_size=args.chunk_size):
        print(line)


if __name__ == "__main__":
    main()
