"""
Session controller.

Responsibilities:
- Owns the PeerSession lifecycle (one controller == one session)
- Setup order: role -> permission -> negotiate -> start collaborators ->
  start bridges + ingress + egress
- Watches every shutdown trigger through one ShutdownToken:
    explicit close, host teardown, ingress exit, egress failure
- Tears the session down exactly once and notifies the caller once

Teardown order:
1. close all four channels (producers stop, consumers drain then stop)
2. graceful reasons only: give consumers a bounded grace period to drain
3. close endpoint + listening socket (wakes blocked reads/writes)
4. cancel and collect every session task
5. stop + release collaborators (errors logged, never raised)
6. shut down the blocking bridge
7. deliver "Connection has closed." once (only if a connection existed)

NOT responsible for:
- Framing (protocol.framing)
- Retry policy (transport.negotiator / transport.retry)
- Hardware behavior (media collaborators)
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Coroutine, Protocol, TYPE_CHECKING

from uuid import uuid4

from media.bridges import (
    bind_camera_rotation,
    feed_decoder,
    feed_speaker,
    pump_encoder,
    pump_microphone,
    request_key_frames,
)
from media.collaborators import MediaCollaborators
from observability.logger import log_event
from observability.metrics import start_timer, stop_timer
from pipeline.channels import SessionChannels
from pipeline.egress import EgressPipeline
from pipeline.ingress import IngressPipeline
from session.cancellation import ShutdownReason, ShutdownToken
from session.connection_status import ConnectionStatus
from session.intent import NoRole, SessionIntent, select_role
from session.peer_session import PeerSession
from spec import CONNECTION_CLOSED_NOTICE, ENCODER_SETTINGS_V1, EncoderSettings
from transport.blocking import BlockingBridge
from transport.negotiator import Connection, ConnectionNegotiator
from transport.retry import classify_failure

if TYPE_CHECKING:
    from config import AppConfig


# ------------------------------------------------------------------
# Types
# ------------------------------------------------------------------

ClosedCallback = Callable[[str], None]
AcquirePermission = Callable[[], Awaitable[bool]]


class Negotiator(Protocol):
    async def establish(self, intent: SessionIntent) -> Connection: ...


def _new_session_id() -> str:
    return f"sess_{uuid4().hex[:12]}"


# ------------------------------------------------------------------
# SessionController
# ------------------------------------------------------------------

class SessionController:

    def __init__(
        self,
        *,
        config: AppConfig,
        intent: SessionIntent,
        media: MediaCollaborators,
        on_closed: ClosedCallback | None = None,
        negotiator: Negotiator | None = None,
        acquire_permission: AcquirePermission | None = None,
        bridge: BlockingBridge | None = None,
        encoder_settings: EncoderSettings = ENCODER_SETTINGS_V1,
    ) -> None:
        self._config = config
        self._intent = intent
        self._media = media
        self._on_closed = on_closed
        self._acquire_permission = acquire_permission
        self._encoder_settings = encoder_settings

        self.session_id = _new_session_id()
        self._bridge = bridge or BlockingBridge(max_workers=config.io_workers)
        self._negotiator: Negotiator = negotiator or ConnectionNegotiator(
            run_blocking=self._bridge.run,
            port=config.session_port,
            bind_host=config.bind_host,
            connect_timeout_s=config.connect_timeout_s,
            session_id=self.session_id,
        )

        self._token = ShutdownToken()
        self.session: PeerSession | None = None
        self.status = ConnectionStatus.DOWN
        self.exit_reason: str | None = None

        self._ingress: IngressPipeline | None = None
        self._egress: EgressPipeline | None = None
        self._tasks: dict[str, asyncio.Task[None]] = {}

        self._lifetime_timer: str | None = None
        self._torn_down = False
        self._notified = False
        self._finished = asyncio.Event()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        Run the session until it ends.

        Returns after teardown completed. Cancelling the task running this
        coroutine counts as host teardown.
        """
        try:
            await self._run()
        except asyncio.CancelledError:
            self._token.trigger(ShutdownReason.HOST_TEARDOWN, "run cancelled")
            await self._teardown()
            raise
        except Exception as exc:
            log_event({
                "event_type": "SESSION_FAILED",
                "session_id": self.session_id,
                "error": repr(exc),
            })
            self.exit_reason = "failed"
            await self._teardown()
            raise
        finally:
            self._finished.set()

    def close(self, reason: ShutdownReason = ShutdownReason.CLOSED_BY_CALLER) -> bool:
        """
        Request shutdown. Safe to call any number of times from the loop.

        Returns True only for the call that triggered the shutdown.
        """
        triggered = self._token.trigger(reason)
        log_event({
            "event_type": "SESSION_CLOSE_REQUESTED",
            "session_id": self.session_id,
            "reason": reason.value,
            "accepted": triggered,
        })
        return triggered

    async def wait_closed(self) -> None:
        await self._finished.wait()

    @property
    def closed(self) -> bool:
        return self._finished.is_set()

    def snapshot(self) -> dict[str, Any]:
        """Read-only view for the status endpoint."""
        out: dict[str, Any] = {
            "session_id": self.session_id,
            "connection_status": self.status.value,
            "shutdown_reason": self._token.reason.value if self._token.reason else None,
            "exit_reason": self.exit_reason,
            "closed": self.closed,
        }
        if self.session is not None:
            out.update(self.session.snapshot())
            out["connection_status"] = self.status.value
        if self._ingress is not None:
            out["ingress"] = self._ingress.stats()
        if self._egress is not None:
            out["egress"] = self._egress.stats()
        return out

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            role = select_role(self._intent)
        except NoRole as exc:
            self.exit_reason = "no_role"
            log_event({
                "event_type": "SESSION_NO_ROLE",
                "session_id": self.session_id,
                "error": str(exc),
            })
            await self._teardown()
            return

        self.session = PeerSession(
            session_id=self.session_id,
            role=role,
            peer_name=self._intent.peer_name,
            channels=SessionChannels.create(capacity=self._config.channel_capacity),
        )
        self._set_status(ConnectionStatus.CONNECTING)

        log_event({
            "event_type": "SESSION_STARTING",
            **self.session.log_context(),
        })

        if self._acquire_permission is not None and not await self._acquire_permission():
            self.exit_reason = "permission_denied"
            log_event({
                "event_type": "SESSION_PERMISSION_DENIED",
                **self.session.log_context(),
            })
            await self._teardown()
            return

        connection = await self._negotiate()
        if connection is None:
            self.exit_reason = "closed_while_connecting"
            await self._teardown()
            return

        self.session.attach_connection(connection)
        self._set_status(ConnectionStatus.UP)
        self._lifetime_timer = start_timer("session_lifetime")

        log_event({
            "event_type": "SESSION_CONNECTED",
            **self.session.log_context(),
            "peer_address": connection.peer_address,
        })

        await self._start_collaborators()
        self._spawn_tasks(connection)

        reason = await self._token.wait()
        self.exit_reason = reason.value
        await self._teardown()

    async def _negotiate(self) -> Connection | None:
        """Negotiate until connected, or until shutdown is requested first."""
        negotiation = asyncio.create_task(self._negotiator.establish(self._intent))
        stop = asyncio.create_task(self._token.wait())
        try:
            await asyncio.wait({negotiation, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not negotiation.done():
                negotiation.cancel()
            await asyncio.gather(negotiation, stop, return_exceptions=True)

        if negotiation.cancelled():
            log_event({
                "event_type": "NEGOTIATION_ABANDONED",
                "session_id": self.session_id,
                "reason": self._token.reason.value if self._token.reason else None,
            })
            return None

        # A connection that lands together with a close request is still
        # handed over so the teardown releases it.
        return negotiation.result()

    async def _start_collaborators(self) -> None:
        assert self.session is not None
        media = self._media
        channels = self.session.channels
        loop = asyncio.get_running_loop()

        on_rotation = bind_camera_rotation(
            self.session.local_orientation, loop, session_id=self.session_id
        )

        if not await self._call_collaborator(
            "encoder", "start", media.encoder.start, self._encoder_settings,
        ):
            channels.local_video.close()
        await self._call_collaborator("camera", "start", media.camera.start, on_rotation)
        if not await self._call_collaborator("microphone", "start", media.microphone.start):
            channels.local_audio.close()
        await self._call_collaborator("decoder", "start", media.decoder.start)
        await self._call_collaborator("speaker", "start", media.speaker.start)

    def _spawn_tasks(self, connection: Connection) -> None:
        assert self.session is not None
        session = self.session
        media = self._media
        channels = session.channels
        run_blocking = self._bridge.run
        chunk_size = self._config.audio_chunk_size

        self._ingress = IngressPipeline(
            endpoint=connection.endpoint,
            remote_video=channels.remote_video,
            remote_audio=channels.remote_audio,
            remote_view=media.remote_view,
            chunk_size=chunk_size,
            on_orientation=session.record_remote_orientation,
            session_id=self.session_id,
        )
        self._egress = EgressPipeline(
            endpoint=connection.endpoint,
            orientation=session.local_orientation,
            local_video=channels.local_video,
            local_audio=channels.local_audio,
            chunk_size=chunk_size,
            session_id=self.session_id,
        )

        # Producers whose collaborator failed to start have a closed channel
        if not channels.local_video.closed:
            self._spawn("encoder", pump_encoder(
                media.encoder, channels.local_video,
                run_blocking=run_blocking, session_id=self.session_id,
            ))
            self._spawn("key_frames", request_key_frames(
                media.encoder,
                run_blocking=run_blocking,
                interval_s=self._encoder_settings.key_frame_interval_s,
                session_id=self.session_id,
            ))
        if not channels.local_audio.closed:
            self._spawn("microphone", pump_microphone(
                media.microphone, channels.local_audio,
                run_blocking=run_blocking, chunk_size=chunk_size,
                session_id=self.session_id,
            ))

        self._spawn("decoder", feed_decoder(
            channels.remote_video, media.decoder,
            run_blocking=run_blocking, session_id=self.session_id,
        ))
        self._spawn("speaker", feed_speaker(
            channels.remote_audio, media.speaker,
            run_blocking=run_blocking, session_id=self.session_id,
        ))

        self._spawn("ingress", self._ingress.run()).add_done_callback(self._on_ingress_done)
        self._spawn("egress", self._egress.run()).add_done_callback(self._on_egress_done)

    def _spawn(self, name: str, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=f"{self.session_id}:{name}")
        self._tasks[name] = task
        return task

    # ------------------------------------------------------------------
    # Shutdown triggers
    # ------------------------------------------------------------------

    def _on_ingress_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            self._token.trigger(ShutdownReason.INGRESS_FINISHED)
            return
        self._report_pipeline_failure("ingress", exc)
        self._token.trigger(ShutdownReason.INGRESS_FAILED, repr(exc))

    def _on_egress_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            # Local producers ended; the session keeps receiving.
            return
        self._report_pipeline_failure("egress", exc)
        self._token.trigger(ShutdownReason.EGRESS_FAILED, repr(exc))

    def _report_pipeline_failure(self, pipeline: str, exc: BaseException) -> None:
        failure = classify_failure(exc)
        log_event({
            "event_type": "PIPELINE_FAILED",
            "session_id": self.session_id,
            "pipeline": pipeline,
            "failure": failure.value if failure else "unexpected",
            "after_shutdown": self._token.triggered,
            "error": repr(exc),
        })

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True

        reason = self._token.reason
        session = self.session
        connected = session is not None and session.connection is not None

        if session is not None:
            self._set_status(ConnectionStatus.CLOSING)
            log_event({
                "event_type": "SESSION_CLOSING",
                **session.log_context(),
                "reason": reason.value if reason else self.exit_reason,
                "detail": self._token.detail,
            })

            session.channels.close_all()

            if reason is not None and reason.graceful:
                await self._drain_consumers()

            session.release_transport()

        await self._cancel_tasks()

        if connected:
            await self._stop_collaborators()

        self._bridge.shutdown()

        if self._lifetime_timer is not None:
            stop_timer(
                self._lifetime_timer,
                session_id=self.session_id,
                role=session.role.value if session else None,
                details={"reason": reason.value if reason else self.exit_reason},
            )
            self._lifetime_timer = None

        self._set_status(ConnectionStatus.DOWN)
        final = self.snapshot()
        del final["closed"]  # run() has not returned yet
        log_event({
            "event_type": "SESSION_CLOSED",
            **final,
        })

        if connected:
            self._notify_closed()

    async def _drain_consumers(self) -> None:
        consumers = [
            task for name, task in self._tasks.items()
            if name in ("egress", "decoder", "speaker") and not task.done()
        ]
        if not consumers:
            return
        _, pending = await asyncio.wait(
            consumers, timeout=self._config.shutdown_drain_timeout_s
        )
        if pending:
            log_event({
                "event_type": "SHUTDOWN_DRAIN_TIMEOUT",
                "session_id": self.session_id,
                "pending": sorted(t.get_name() for t in pending),
            })

    async def _cancel_tasks(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _stop_collaborators(self) -> None:
        media = self._media
        timeout_s = self._config.shutdown_drain_timeout_s
        await self._call_collaborator(
            "camera", "stop", media.camera.stop, timeout_s=timeout_s,
        )
        for name, component in (
            ("encoder", media.encoder),
            ("microphone", media.microphone),
            ("decoder", media.decoder),
            ("speaker", media.speaker),
        ):
            await self._call_collaborator(name, "stop", component.stop, timeout_s=timeout_s)
            await self._call_collaborator(
                name, "release", component.release, timeout_s=timeout_s,
            )

    async def _call_collaborator(
        self,
        component: str,
        action: str,
        fn: Callable[..., Any],
        *args: Any,
        timeout_s: float | None = None,
    ) -> bool:
        """Run one collaborator lifecycle call on the bridge; failures are logged."""
        try:
            await asyncio.wait_for(self._bridge.run(fn, *args), timeout=timeout_s)
            return True
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "HARDWARE_RESOURCE_FAILURE",
                "failure": "hardware_resource",
                "session_id": self.session_id,
                "component": component,
                "action": action,
                "error": repr(exc),
            })
            return False

    def _notify_closed(self) -> None:
        if self._notified:
            return
        self._notified = True
        if self._on_closed is None:
            return
        try:
            self._on_closed(CONNECTION_CLOSED_NOTICE)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "CLOSED_CALLBACK_FAILED",
                "session_id": self.session_id,
                "error": repr(exc),
            })

    def _set_status(self, status: ConnectionStatus) -> None:
        self.status = status
        if self.session is not None:
            self.session.connection_status = status
