"""PCM16 chunk utilities (numpy)."""
from __future__ import annotations

import numpy as np

from spec import AUDIO_CHUNK_SIZE, AUDIO_SAMPLE_RATE_HZ, AUDIO_SAMPLE_WIDTH_BYTES


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; drop the odd byte
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")
    return audio_i16.astype(np.float32) / 32768.0


def float32_to_pcm16le(samples: np.ndarray) -> bytes:
    """Clip to [-1.0, 1.0] and encode as PCM16 little-endian bytes."""
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


def sine_chunk(
    start_sample: int,
    *,
    frequency_hz: float,
    amplitude: float = 0.3,
    chunk_size: int = AUDIO_CHUNK_SIZE,
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ,
) -> bytes:
    """
    One chunk of a continuous sine tone.

    start_sample is the absolute index of the chunk's first sample, so
    consecutive chunks join without a phase jump.
    """
    if chunk_size % AUDIO_SAMPLE_WIDTH_BYTES != 0:
        raise ValueError("chunk_size must hold whole PCM16 samples")

    n = chunk_size // AUDIO_SAMPLE_WIDTH_BYTES
    t = (np.arange(n) + start_sample) / sample_rate_hz
    return float32_to_pcm16le(amplitude * np.sin(2.0 * np.pi * frequency_hz * t))


def chunk_rms(pcm_bytes: bytes) -> float:
    """Root-mean-square level of a PCM16 chunk in [0.0, 1.0]; 0.0 when empty."""
    samples = pcm16le_to_float32(pcm_bytes)
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))
