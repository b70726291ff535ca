# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import socket
from dataclasses import replace

from config import AppConfig
from media.synthetic import synthetic_collaborators
from pipeline.channels import SessionChannels
from pipeline.ingress import IngressPipeline
from protocol.framing import (
    StreamTerminated,
    encode_audio_frame,
    encode_orientation_header,
    encode_video_frame,
)
from session.controller import SessionController
from session.intent import ClientIntent, ServerIntent, SessionIntent
from spec import AUDIO_CHUNK_SIZE
from transport.blocking import BlockingBridge
from transport.negotiator import ConnectionNegotiator


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class RecordingView:
    def __init__(self) -> None:
        self.rotations: list[int] = []

    def apply_rotation(self, degrees: int) -> None:
        self.rotations.append(degrees)


# ---------------------------------------------------------------------
# Wire-level loopback
# ---------------------------------------------------------------------

def test_listener_ingress_surfaces_dialer_frames_in_order():
    port = free_port()
    chunk = b"\x7f" * AUDIO_CHUNK_SIZE

    async def run():
        bridge = BlockingBridge(max_workers=6)
        listener = ConnectionNegotiator(
            run_blocking=bridge.run, port=port, bind_host="127.0.0.1", accept_poll_s=0.2,
        )
        dialer = ConnectionNegotiator(
            run_blocking=bridge.run, port=port, connect_timeout_s=1.0,
            retry_schedule_ms=(50,),
        )

        server_task = asyncio.create_task(listener.establish(
            SessionIntent(server=ServerIntent(expected_peer_name="Dialer"))
        ))
        client_task = asyncio.create_task(dialer.establish(
            SessionIntent(client=ClientIntent(peer_address="127.0.0.1", peer_name="Listener"))
        ))
        server, client = await asyncio.wait_for(
            asyncio.gather(server_task, client_task), timeout=10
        )

        channels = SessionChannels.create(capacity=8)
        view = RecordingView()
        orientations: list[int] = []
        ingress = IngressPipeline(
            endpoint=server.endpoint,
            remote_video=channels.remote_video,
            remote_audio=channels.remote_audio,
            remote_view=view,
            on_orientation=orientations.append,
        )
        ingress_task = asyncio.create_task(ingress.run())

        await client.endpoint.write_all(encode_orientation_header(90))
        await client.endpoint.write_all(encode_video_frame(b"\xaa\xbb\xcc"))
        await client.endpoint.write_all(encode_audio_frame(chunk))

        video = await asyncio.wait_for(channels.remote_video.receive(), timeout=5)
        audio = await asyncio.wait_for(channels.remote_audio.receive(), timeout=5)

        client.endpoint.close()
        try:
            await asyncio.wait_for(ingress_task, timeout=5)
            ended_with = None
        except StreamTerminated as exc:
            ended_with = exc
        finally:
            server.endpoint.close()
            server.listener.close()
            bridge.shutdown()

        return orientations, view.rotations, video, audio, ended_with, channels

    orientations, rotations, video, audio, ended_with, channels = asyncio.run(run())

    assert orientations == [90]
    assert rotations == [90]
    assert video == b"\xaa\xbb\xcc"
    assert audio == chunk
    assert isinstance(ended_with, StreamTerminated)
    # Nothing else was surfaced
    assert channels.remote_video.is_empty()
    assert channels.remote_audio.is_empty()


# ---------------------------------------------------------------------
# Full sessions over loopback
# ---------------------------------------------------------------------

def test_two_controllers_exchange_media_and_both_report_closed():
    port = free_port()
    base = replace(
        AppConfig.defaults(),
        session_port=port,
        bind_host="127.0.0.1",
        shutdown_drain_timeout_s=0.5,
        connect_timeout_s=1.0,
    )
    server_config = replace(base, peer_role="server", peer_name="B", camera_rotation_degrees=90)
    client_config = replace(
        base, peer_role="client", peer_name="A", peer_address="127.0.0.1",
        camera_rotation_degrees=270,
    )
    server_media = synthetic_collaborators(server_config)
    client_media = synthetic_collaborators(client_config)
    server_notices: list[str] = []
    client_notices: list[str] = []

    async def run():
        server = SessionController(
            config=server_config,
            intent=SessionIntent(server=ServerIntent(expected_peer_name="A")),
            media=server_media,
            on_closed=server_notices.append,
        )
        client = SessionController(
            config=client_config,
            intent=SessionIntent(
                client=ClientIntent(peer_address="127.0.0.1", peer_name="B")
            ),
            media=client_media,
            on_closed=client_notices.append,
        )
        server_task = asyncio.create_task(server.run())
        client_task = asyncio.create_task(client.run())

        for _ in range(200):
            if (
                server_media.decoder.decoded > 3
                and client_media.decoder.decoded > 3
                and server_media.speaker.chunks_played > 3
                and client_media.speaker.chunks_played > 3
            ):
                break
            await asyncio.sleep(0.05)

        client.close()
        await asyncio.wait_for(
            asyncio.gather(server_task, client_task), timeout=15
        )
        return server.snapshot(), client.snapshot()

    server_snap, client_snap = asyncio.run(run())

    assert server_media.decoder.decoded > 3
    assert client_media.decoder.decoded > 3
    assert server_media.speaker.chunks_played > 3
    assert client_media.speaker.chunks_played > 3

    # Each side received the other's camera orientation
    assert server_snap["remote_orientation"] == 270
    assert client_snap["remote_orientation"] == 90
    assert server_media.remote_view.transform.degrees == 270

    assert client_snap["shutdown_reason"] == "closed_by_caller"
    # The peer sees the stream end on whichever direction notices first
    assert server_snap["shutdown_reason"] in ("ingress_failed", "egress_failed")
    assert server_snap["connection_status"] == "DOWN"
    assert client_notices == ["Connection has closed."]
    assert server_notices == ["Connection has closed."]
