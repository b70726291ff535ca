"""
Media bridges: adapters between hardware collaborators and session channels.

    encoder     -> local_video channel     (pump_encoder)
    microphone  -> local_audio channel     (pump_microphone)
    remote_video channel -> decoder        (feed_decoder)
    remote_audio channel -> speaker        (feed_speaker)
    camera rotation callback -> OrientationSignal (bind_camera_rotation)

Failure scope (never session-fatal):
- Producer bridges (encoder, microphone) end on the first hardware fault and
  close their channel; the egress drain loop then drains and stops.
- A failed decode skips that access unit.
- A failed speaker write stops playback; the bridge keeps draining its channel
  so the ingress loop is never blocked behind a dead speaker.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from media.collaborators import (
    HardwareResourceFailure,
    KeyFrameRequester,
    Microphone,
    RotationCallback,
    Speaker,
    VideoDecoder,
    VideoEncoder,
)
from observability.logger import log_event
from pipeline.channels import ByteChannel, ChannelClosed
from session.orientation import OrientationSignal
from spec import AUDIO_CHUNK_SIZE, MEDIA_PULL_TIMEOUT_S, VIDEO_KEY_FRAME_INTERVAL_S
from transport.blocking import RunBlocking
from transport.retry import FailureType


Sleep = Callable[[float], Awaitable[None]]


def _hardware_failure(component: str, exc: BaseException, session_id: str | None) -> None:
    log_event({
        "event_type": "HARDWARE_RESOURCE_FAILURE",
        "failure": FailureType.HARDWARE_RESOURCE.value,
        "session_id": session_id,
        "component": component,
        "error": repr(exc),
    })


# ---------------------------------------------------------------------
# Capture side
# ---------------------------------------------------------------------

def bind_camera_rotation(
    signal: OrientationSignal,
    loop: asyncio.AbstractEventLoop,
    *,
    session_id: str | None = None,
) -> RotationCallback:
    """
    Build the rotation callback handed to the camera.

    The camera may call it from any thread; the first value wins.
    """

    def _assign(degrees: int) -> None:
        if signal.set(degrees):
            log_event({
                "event_type": "LOCAL_ORIENTATION_READY",
                "session_id": session_id,
                "degrees": degrees,
            })

    def on_rotation(degrees: int) -> None:
        try:
            loop.call_soon_threadsafe(_assign, degrees)
        except RuntimeError:
            pass  # loop closed: the session is already over

    return on_rotation


async def pump_encoder(
    encoder: VideoEncoder,
    channel: ByteChannel,
    *,
    run_blocking: RunBlocking,
    pull_timeout_s: float = MEDIA_PULL_TIMEOUT_S,
    session_id: str | None = None,
) -> None:
    """Move encoded access units from the encoder into local_video."""
    try:
        while True:
            try:
                access_unit = await run_blocking(encoder.next_access_unit, pull_timeout_s)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                _hardware_failure("encoder", exc, session_id)
                return

            if not access_unit:
                continue

            try:
                await channel.send(access_unit)
            except ChannelClosed:
                return
    finally:
        channel.close()


async def request_key_frames(
    encoder: VideoEncoder,
    *,
    run_blocking: RunBlocking,
    interval_s: float = VIDEO_KEY_FRAME_INTERVAL_S,
    sleep: Sleep = asyncio.sleep,
    session_id: str | None = None,
) -> None:
    """Periodically ask the encoder for a sync frame, if it supports that."""
    if not isinstance(encoder, KeyFrameRequester):
        return

    while True:
        await sleep(interval_s)
        try:
            await run_blocking(encoder.request_key_frame)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _hardware_failure("encoder_key_frame", exc, session_id)
            return


async def pump_microphone(
    microphone: Microphone,
    channel: ByteChannel,
    *,
    run_blocking: RunBlocking,
    chunk_size: int = AUDIO_CHUNK_SIZE,
    session_id: str | None = None,
) -> None:
    """Move fixed-size PCM chunks from the microphone into local_audio."""
    try:
        while True:
            try:
                chunk = await run_blocking(microphone.read_chunk)
                if len(chunk) != chunk_size:
                    raise HardwareResourceFailure(
                        f"microphone chunk {len(chunk)} != {chunk_size}"
                    )
            except Exception as exc:  # pylint: disable=broad-exception-caught
                _hardware_failure("microphone", exc, session_id)
                return

            try:
                await channel.send(chunk)
            except ChannelClosed:
                return
    finally:
        channel.close()


# ---------------------------------------------------------------------
# Playback side
# ---------------------------------------------------------------------

async def feed_decoder(
    channel: ByteChannel,
    decoder: VideoDecoder,
    *,
    run_blocking: RunBlocking,
    session_id: str | None = None,
) -> None:
    """Hand each remote access unit to the decoder; failures skip the item."""
    decoded = 0
    failed = 0

    async for access_unit in channel:
        try:
            ok = await run_blocking(decoder.decode, access_unit)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _hardware_failure("decoder", exc, session_id)
            ok = False

        if ok:
            decoded += 1
            continue

        failed += 1
        log_event({
            "event_type": "DECODE_SKIPPED",
            "session_id": session_id,
            "access_unit_bytes": len(access_unit),
            "failed_total": failed,
        })

    log_event({
        "event_type": "DECODER_FEED_FINISHED",
        "session_id": session_id,
        "decoded": decoded,
        "failed": failed,
    })


async def feed_speaker(
    channel: ByteChannel,
    speaker: Speaker,
    *,
    run_blocking: RunBlocking,
    session_id: str | None = None,
) -> None:
    """Play each remote PCM chunk; after a playback fault, drain and discard."""
    played = 0
    dropped = 0
    broken = False

    async for chunk in channel:
        if broken:
            dropped += 1
            continue
        try:
            await run_blocking(speaker.write, chunk)
            played += 1
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _hardware_failure("speaker", exc, session_id)
            broken = True
            dropped += 1

    log_event({
        "event_type": "SPEAKER_FEED_FINISHED",
        "session_id": session_id,
        "played": played,
        "dropped": dropped,
    })
