"""
External media collaborators.

Narrow capability interfaces for hardware the session drives but does not
implement: camera, video encoder/decoder, microphone, speaker, remote view.

Every collaborator exposes at most two data operations:
- pull: "give me the next output", blocking until available or a bound elapses
- push: "accept this input now", blocking until accepted

Calls are blocking; the media bridges run them on the session's blocking
bridge. Platform implementations live outside this package (see
media.synthetic for the in-process ones).

This module contains:
- Narrow Protocols (capabilities, not implementations)
- Zero session logic
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol, runtime_checkable

from spec import EncoderSettings


RotationCallback = Callable[[int], None]


class HardwareResourceFailure(Exception):
    """
    A capture / encode / decode / playback collaborator faulted.

    Scope is the bridge loop that observed it; never session-fatal by itself.
    """


# ---------------------------------------------------------------------
# Capture side
# ---------------------------------------------------------------------

@runtime_checkable
class CameraCapture(Protocol):
    def start(self, on_rotation: RotationCallback) -> None:
        """
        Start delivering frames to the encoder's input.

        on_rotation may be called from any thread, any number of times;
        only the first value is used for the session.
        """

    def stop(self) -> None: ...


@runtime_checkable
class VideoEncoder(Protocol):
    def start(self, settings: EncoderSettings) -> None: ...

    def next_access_unit(self, timeout_s: float) -> bytes | None:
        """Pull: next encoded access unit, or None if none within timeout_s."""

    def stop(self) -> None: ...
    def release(self) -> None: ...


@runtime_checkable
class KeyFrameRequester(Protocol):
    def request_key_frame(self) -> None:
        """Ask the encoder to emit a sync frame as soon as possible."""


@runtime_checkable
class Microphone(Protocol):
    def start(self) -> None: ...

    def read_chunk(self) -> bytes:
        """Pull: exactly one PCM chunk, blocking at the hardware rate."""

    def stop(self) -> None: ...
    def release(self) -> None: ...


# ---------------------------------------------------------------------
# Playback side
# ---------------------------------------------------------------------

@runtime_checkable
class VideoDecoder(Protocol):
    def start(self) -> None: ...

    def decode(self, access_unit: bytes) -> bool:
        """Push: decode and render one access unit. False = decode failed."""

    def stop(self) -> None: ...
    def release(self) -> None: ...


@runtime_checkable
class Speaker(Protocol):
    def start(self) -> None: ...

    def write(self, chunk: bytes) -> None:
        """Push: play one PCM chunk, blocking while playback is full."""

    def stop(self) -> None: ...
    def release(self) -> None: ...


@runtime_checkable
class RemoteView(Protocol):
    def apply_rotation(self, degrees: int) -> None:
        """Rotate the remote preview by the peer's camera orientation."""


# ---------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------

@dataclass
class MediaCollaborators:
    """All hardware a session drives, handed to the session controller."""
    camera: CameraCapture
    encoder: VideoEncoder
    microphone: Microphone
    decoder: VideoDecoder
    speaker: Speaker
    remote_view: RemoteView
