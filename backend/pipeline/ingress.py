"""
Ingress pipeline: network -> remote channels.

One task per session:
1. read the 4-byte orientation header and hand it to the remote view
2. decode one frame at a time and route its payload by type tag:
       VIDEO -> remote_video
       AUDIO -> remote_audio

Each frame is enqueued before the next read starts (no read-ahead), so wire
order equals channel order.

Termination:
- MalformedFrame / StreamTerminated propagate: the session must end
- ChannelClosed (session shutting down) ends the loop quietly
- Both remote channels are closed on every exit path (this task is their
  only producer)
"""

from __future__ import annotations

from typing import Any, Callable

from media.collaborators import RemoteView
from observability.logger import log_event
from pipeline.channels import ByteChannel, ChannelClosed
from protocol.framing import (
    FrameType,
    decode_next_frame,
    decode_orientation_header,
)
from spec import AUDIO_CHUNK_SIZE, ORIENTATION_HEADER_BYTES
from transport.endpoint import TransportEndpoint


class IngressPipeline:

    def __init__(
        self,
        *,
        endpoint: TransportEndpoint,
        remote_video: ByteChannel,
        remote_audio: ByteChannel,
        remote_view: RemoteView,
        chunk_size: int = AUDIO_CHUNK_SIZE,
        on_orientation: Callable[[int], None] | None = None,
        session_id: str | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._remote_video = remote_video
        self._remote_audio = remote_audio
        self._remote_view = remote_view
        self._chunk_size = chunk_size
        self._on_orientation = on_orientation
        self._session_id = session_id

        self.video_frames: int = 0
        self.audio_frames: int = 0
        self.remote_orientation: int | None = None

    async def run(self) -> None:
        """
        Read until the stream ends.

        Raises:
            MalformedFrame, StreamTerminated
        """
        try:
            await self._receive_orientation()
            await self._demultiplex()
        except ChannelClosed:
            log_event({
                "event_type": "INGRESS_STOPPED",
                "session_id": self._session_id,
                "reason": "channel_closed",
                **self.stats(),
            })
        finally:
            self._remote_video.close()
            self._remote_audio.close()

    def stats(self) -> dict[str, Any]:
        return {
            "video_frames": self.video_frames,
            "audio_frames": self.audio_frames,
            "remote_orientation": self.remote_orientation,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _receive_orientation(self) -> None:
        raw = await self._endpoint.read_exact(ORIENTATION_HEADER_BYTES)
        degrees = decode_orientation_header(raw)
        self.remote_orientation = degrees

        log_event({
            "event_type": "REMOTE_ORIENTATION_RECEIVED",
            "session_id": self._session_id,
            "degrees": degrees,
        })

        if self._on_orientation is not None:
            self._on_orientation(degrees)

        try:
            self._remote_view.apply_rotation(degrees)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            # Rendering is cosmetic; the stream continues unrotated
            log_event({
                "event_type": "REMOTE_VIEW_ROTATION_FAILED",
                "session_id": self._session_id,
                "degrees": degrees,
                "error": repr(exc),
            })

    async def _demultiplex(self) -> None:
        while True:
            frame = await decode_next_frame(
                self._endpoint.read_exact,
                chunk_size=self._chunk_size,
            )

            if frame.kind is FrameType.VIDEO:
                await self._remote_video.send(frame.payload)
                self.video_frames += 1
            else:
                await self._remote_audio.send(frame.payload)
                self.audio_frames += 1
