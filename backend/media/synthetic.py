"""
Synthetic media collaborators.

In-process stand-ins for camera / encoder / microphone / decoder / speaker /
remote view. They satisfy the capability Protocols in media.collaborators and
are used by the hosted service (no hardware attached) and by tests.

Behavior:
- Camera reports one fixed rotation on start
- Encoder emits patterned access units at the configured frame rate;
  every key_frame_interval (or on request) the unit is marked as a key frame
- Microphone emits a continuous numpy sine tone, one chunk per chunk period
- Decoder counts access units; an empty unit is a decode failure
- Speaker measures the RMS level of each chunk
- Remote view computes (and logs) the rotate-and-scale transform

Every blocking call returns within its bound once stop() is called.
"""

from __future__ import annotations

import struct
import threading
import time
from collections import deque
from typing import Deque, TYPE_CHECKING

from audio.pcm import chunk_rms, sine_chunk
from media.collaborators import HardwareResourceFailure, MediaCollaborators, RotationCallback
from media.rotation import ViewTransform, rotation_transform
from observability.logger import log_event
from spec import (
    AUDIO_CHUNK_DURATION_S,
    AUDIO_CHUNK_SIZE,
    AUDIO_SAMPLE_WIDTH_BYTES,
    DEFAULT_CAMERA_ROTATION_DEGREES,
    ENCODER_SETTINGS_V1,
    EncoderSettings,
)

if TYPE_CHECKING:
    from config import AppConfig


# Annex-B start code + NAL header bytes used to mark synthetic access units
_START_CODE = b"\x00\x00\x00\x01"
_NAL_IDR = 0x65
_NAL_NON_IDR = 0x41


# ---------------------------------------------------------------------
# Capture side
# ---------------------------------------------------------------------

class SyntheticCamera:

    def __init__(self, rotation_degrees: int = DEFAULT_CAMERA_ROTATION_DEGREES) -> None:
        self.rotation_degrees = rotation_degrees
        self.started = False

    def start(self, on_rotation: RotationCallback) -> None:
        self.started = True
        on_rotation(self.rotation_degrees)

    def stop(self) -> None:
        self.started = False


class PatternEncoder:
    """
    Produces access units of the form:

        start code | NAL header | frame index (u32 BE) | filler

    Paced at settings.frame_rate when realtime, as fast as pulled otherwise.
    """

    def __init__(self, *, payload_bytes: int = 1024, realtime: bool = True) -> None:
        self._payload_bytes = payload_bytes
        self._realtime = realtime
        self._settings: EncoderSettings = ENCODER_SETTINGS_V1
        self._stopped = threading.Event()
        self._key_requested = threading.Event()
        self._started = False
        self._released = False
        self._next_due = 0.0

        self.frames_emitted = 0
        self.key_frames_emitted = 0

    def start(self, settings: EncoderSettings) -> None:
        if self._released:
            raise HardwareResourceFailure("encoder already released")
        self._settings = settings
        self._started = True
        self._stopped.clear()
        self._key_requested.set()  # first unit is always a key frame
        self._next_due = time.monotonic()

    def next_access_unit(self, timeout_s: float) -> bytes | None:
        if not self._started:
            raise HardwareResourceFailure("encoder not started")

        if self._realtime:
            wait_s = self._next_due - time.monotonic()
            if wait_s > timeout_s:
                self._stopped.wait(timeout_s)
                return None
            if wait_s > 0 and self._stopped.wait(wait_s):
                return None
            self._next_due = (
                max(self._next_due, time.monotonic()) + self._settings.frame_interval_s
            )

        if self._stopped.is_set():
            return None

        return self._build_unit()

    def request_key_frame(self) -> None:
        self._key_requested.set()

    def stop(self) -> None:
        self._started = False
        self._stopped.set()

    def release(self) -> None:
        self._released = True

    def _build_unit(self) -> bytes:
        frames_per_key = self._settings.frame_rate * self._settings.key_frame_interval_s
        key = self._key_requested.is_set() or (
            frames_per_key > 0 and self.frames_emitted % frames_per_key == 0
        )
        self._key_requested.clear()

        header = _START_CODE + bytes([_NAL_IDR if key else _NAL_NON_IDR])
        header += struct.pack(">I", self.frames_emitted & 0xFFFFFFFF)
        filler_len = max(0, self._payload_bytes - len(header))
        filler = bytes((self.frames_emitted + i) & 0xFF for i in range(filler_len))

        self.frames_emitted += 1
        if key:
            self.key_frames_emitted += 1
        return header + filler


class ToneMicrophone:
    """Continuous sine tone, one chunk per chunk period when realtime."""

    def __init__(
        self,
        *,
        frequency_hz: float = 440.0,
        amplitude: float = 0.3,
        chunk_size: int = AUDIO_CHUNK_SIZE,
        realtime: bool = True,
    ) -> None:
        self._frequency_hz = frequency_hz
        self._amplitude = amplitude
        self._chunk_size = chunk_size
        self._realtime = realtime
        self._stopped = threading.Event()
        self._started = False
        self._sample_index = 0

        self.chunks_read = 0

    def start(self) -> None:
        self._started = True
        self._stopped.clear()

    def read_chunk(self) -> bytes:
        if not self._started:
            raise HardwareResourceFailure("microphone not started")
        if self._realtime and self._stopped.wait(AUDIO_CHUNK_DURATION_S):
            raise HardwareResourceFailure("microphone stopped")
        if self._stopped.is_set():
            raise HardwareResourceFailure("microphone stopped")

        chunk = sine_chunk(
            self._sample_index,
            frequency_hz=self._frequency_hz,
            amplitude=self._amplitude,
            chunk_size=self._chunk_size,
        )
        self._sample_index += self._chunk_size // AUDIO_SAMPLE_WIDTH_BYTES
        self.chunks_read += 1
        return chunk

    def stop(self) -> None:
        self._started = False
        self._stopped.set()

    def release(self) -> None:
        pass


# ---------------------------------------------------------------------
# Playback side
# ---------------------------------------------------------------------

class CountingDecoder:

    def __init__(self) -> None:
        self.decoded = 0
        self.failed = 0
        self.bytes_decoded = 0
        self.key_frames = 0
        self.started = False

    def start(self) -> None:
        self.started = True

    def decode(self, access_unit: bytes) -> bool:
        if not self.started:
            raise HardwareResourceFailure("decoder not started")
        if not access_unit:
            self.failed += 1
            return False

        self.decoded += 1
        self.bytes_decoded += len(access_unit)
        if access_unit.startswith(_START_CODE) and len(access_unit) > 4:
            if access_unit[4] == _NAL_IDR:
                self.key_frames += 1
        return True

    def stop(self) -> None:
        self.started = False

    def release(self) -> None:
        pass


class RmsSpeaker:
    """Keeps the RMS level of the most recent chunks."""

    def __init__(self, *, history: int = 50, realtime: bool = False) -> None:
        self._realtime = realtime
        self._stopped = threading.Event()
        self.levels: Deque[float] = deque(maxlen=history)
        self.chunks_played = 0
        self.started = False

    def start(self) -> None:
        self.started = True
        self._stopped.clear()

    def write(self, chunk: bytes) -> None:
        if not self.started:
            raise HardwareResourceFailure("speaker not started")
        self.levels.append(chunk_rms(chunk))
        self.chunks_played += 1
        if self._realtime:
            self._stopped.wait(AUDIO_CHUNK_DURATION_S)

    def stop(self) -> None:
        self.started = False
        self._stopped.set()

    def release(self) -> None:
        self.levels.clear()

    @property
    def last_level(self) -> float | None:
        return self.levels[-1] if self.levels else None


class LoggingRemoteView:

    def __init__(self, *, view_width: int = 1080, view_height: int = 1920) -> None:
        self.view_width = view_width
        self.view_height = view_height
        self.transform: ViewTransform | None = None

    def apply_rotation(self, degrees: int) -> None:
        self.transform = rotation_transform(degrees, self.view_width, self.view_height)
        log_event({
            "event_type": "REMOTE_VIEW_ROTATED",
            "degrees": self.transform.degrees,
            "scale_x": round(self.transform.scale_x, 4),
            "scale_y": round(self.transform.scale_y, 4),
        })


# ---------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------

def synthetic_collaborators(config: AppConfig, *, realtime: bool = True) -> MediaCollaborators:
    """Build a full synthetic collaborator set for one session."""
    return MediaCollaborators(
        camera=SyntheticCamera(config.camera_rotation_degrees),
        encoder=PatternEncoder(realtime=realtime),
        microphone=ToneMicrophone(chunk_size=config.audio_chunk_size, realtime=realtime),
        decoder=CountingDecoder(),
        speaker=RmsSpeaker(realtime=realtime),
        remote_view=LoggingRemoteView(),
    )
