"""
Egress pipeline: local channels -> network.

One task per session:
1. wait for the local camera orientation (single-assignment signal) and
   write the 4-byte header exactly once
2. run two drain loops concurrently on the shared endpoint:
       local_video -> VIDEO frames
       local_audio -> AUDIO frames

Each encoded frame goes out as one write_all call; the endpoint serializes
whole-frame writes, so frames from the two loops interleave but never split.

Termination:
- both local channels closed and drained -> returns normally
- StreamTerminated (or any write failure) propagates: the session must end
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from observability.logger import log_event
from pipeline.channels import ByteChannel
from protocol.framing import (
    encode_audio_frame,
    encode_orientation_header,
    encode_video_frame,
)
from session.orientation import OrientationSignal
from spec import AUDIO_CHUNK_SIZE
from transport.endpoint import TransportEndpoint


class EgressPipeline:

    def __init__(
        self,
        *,
        endpoint: TransportEndpoint,
        orientation: OrientationSignal,
        local_video: ByteChannel,
        local_audio: ByteChannel,
        chunk_size: int = AUDIO_CHUNK_SIZE,
        session_id: str | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._orientation = orientation
        self._local_video = local_video
        self._local_audio = local_audio
        self._chunk_size = chunk_size
        self._session_id = session_id

        self.video_frames: int = 0
        self.audio_frames: int = 0
        self.orientation_sent: bool = False

    async def run(self) -> None:
        degrees = await self._orientation.wait()
        await self._endpoint.write_all(encode_orientation_header(degrees))
        self.orientation_sent = True

        log_event({
            "event_type": "LOCAL_ORIENTATION_SENT",
            "session_id": self._session_id,
            "degrees": degrees,
        })

        await asyncio.gather(
            self._drain(self._local_video, self._encode_video, "video"),
            self._drain(self._local_audio, self._encode_audio, "audio"),
        )

        log_event({
            "event_type": "EGRESS_DRAINED",
            "session_id": self._session_id,
            **self.stats(),
        })

    def stats(self) -> dict[str, Any]:
        return {
            "video_frames": self.video_frames,
            "audio_frames": self.audio_frames,
            "orientation_sent": self.orientation_sent,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _encode_video(self, payload: bytes) -> bytes:
        self.video_frames += 1
        return encode_video_frame(payload)

    def _encode_audio(self, payload: bytes) -> bytes:
        self.audio_frames += 1
        return encode_audio_frame(payload, chunk_size=self._chunk_size)

    async def _drain(
        self,
        channel: ByteChannel,
        encode: Callable[[bytes], bytes],
        kind: str,
    ) -> None:
        async for payload in channel:
            await self._endpoint.write_all(encode(payload))

        log_event({
            "event_type": "EGRESS_LOOP_FINISHED",
            "session_id": self._session_id,
            "kind": kind,
            "channel": channel.snapshot(),
        })
