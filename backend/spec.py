"""
SPEC-AS-CONSTANTS
-----------------
Single source of truth for all behavioral invariants of a peer session.

Rules:
- If changing a value changes runtime behavior or the wire, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Tuple

# =============================================================================
# Audio Format (PCM16 mono @ 16kHz, 20ms chunks)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit, little-endian)
AUDIO_CHUNK_MS: Final[int] = 20

AUDIO_SAMPLES_PER_CHUNK: Final[int] = (AUDIO_SAMPLE_RATE_HZ * AUDIO_CHUNK_MS) // 1000

# Fixed session constant; never carried on the wire.
AUDIO_CHUNK_SIZE: Final[int] = (
    AUDIO_SAMPLES_PER_CHUNK * AUDIO_CHANNELS * AUDIO_SAMPLE_WIDTH_BYTES
)
AUDIO_CHUNK_DURATION_S: Final[float] = AUDIO_CHUNK_MS / 1000.0

# =============================================================================
# Wire Protocol
# =============================================================================
# Connection opens with ORIENTATION_HEADER_BYTES (big-endian i32 degrees),
# then a sequence of frames:
#   VIDEO: 1B tag (0) + 4B big-endian length + payload
#   AUDIO: 1B tag (1) + AUDIO_CHUNK_SIZE bytes

FRAME_TAG_VIDEO: Final[int] = 0
FRAME_TAG_AUDIO: Final[int] = 1

FRAME_TAG_BYTES: Final[int] = 1
VIDEO_LENGTH_BYTES: Final[int] = 4
ORIENTATION_HEADER_BYTES: Final[int] = 4

# Length prefix is a signed 32-bit value on the wire.
MAX_VIDEO_PAYLOAD_BYTES: Final[int] = 2**31 - 1

# =============================================================================
# Connection
# =============================================================================

SESSION_PORT: Final[int] = 9998
LISTEN_BACKLOG: Final[int] = 1
DEFAULT_BIND_HOST: Final[str] = "0.0.0.0"

CONNECT_TIMEOUT_S: Final[float] = 5.0

# accept() wakes up this often so a cancelled negotiation frees its worker.
ACCEPT_POLL_INTERVAL_S: Final[float] = 1.0

# Pause before retry attempt N (clamped to the last slot; retries never stop).
CONNECT_RETRY_BACKOFF_MS: Final[Tuple[int, ...]] = (0, 200, 400, 800, 1000)

# Per-recv upper bound while collecting an exact read.
SOCKET_RECV_BYTES: Final[int] = 512 * 1024

# =============================================================================
# Channels & Concurrency
# =============================================================================

CHANNEL_CAPACITY: Final[int] = 64
IO_WORKERS: Final[int] = 8
IO_THREAD_NAME_PREFIX: Final[str] = "peer-io"

# Pull operations on hardware collaborators block at most this long.
MEDIA_PULL_TIMEOUT_S: Final[float] = 0.5

# Grace period for consumers to drain buffered items on graceful shutdown.
SHUTDOWN_DRAIN_TIMEOUT_S: Final[float] = 1.0

# =============================================================================
# Video
# =============================================================================

VIDEO_MIME: Final[str] = "video/avc"
VIDEO_WIDTH: Final[int] = 640
VIDEO_HEIGHT: Final[int] = 480
VIDEO_BIT_RATE: Final[int] = 20 * 1024 * 1024  # 20 Mbps
VIDEO_FRAME_RATE: Final[int] = 30
VIDEO_KEY_FRAME_INTERVAL_S: Final[int] = 30

DEFAULT_CAMERA_ROTATION_DEGREES: Final[int] = 90

# =============================================================================
# Observability
# =============================================================================

CONNECTION_CLOSED_NOTICE: Final[str] = "Connection has closed."

# =============================================================================
# Convenience Bundles
# =============================================================================

@dataclass(frozen=True)
class EncoderSettings:
    """
    Immutable bundle describing how the local video encoder is configured.

    Passed to encoder factories; it is NOT a second source of truth.
    """
    mime: str = VIDEO_MIME
    width: int = VIDEO_WIDTH
    height: int = VIDEO_HEIGHT
    bit_rate: int = VIDEO_BIT_RATE
    frame_rate: int = VIDEO_FRAME_RATE
    key_frame_interval_s: int = VIDEO_KEY_FRAME_INTERVAL_S

    @property
    def frame_interval_s(self) -> float:
        """Seconds between two consecutive frames."""
        return 1.0 / self.frame_rate


ENCODER_SETTINGS_V1: Final[EncoderSettings] = EncoderSettings()
