"""
Connection negotiator.

Turns a SessionIntent into a live TransportEndpoint:

    LISTENER: bind(fixed port) -> accept(one peer)
              bind failure   -> close, retry bind
              accept failure -> close listener, retry bind + accept
    DIALER:   connect(peer address, fixed port)
              connect failure -> close, retry connect

Retries are unbounded: a transient failure is logged (and handed to the
optional failure hook) but never surfaced. The caller stops a negotiation
that never succeeds by cancelling it.

The retry is an explicit loop; stack depth does not grow with the number of
failed attempts.
"""

from __future__ import annotations

import asyncio
import socket
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from observability.logger import log_event
from observability.metrics import timed
from session.intent import (
    ClientIntent,
    ServerIntent,
    SessionIntent,
    SessionRole,
    select_role,
)
from spec import (
    ACCEPT_POLL_INTERVAL_S,
    CONNECT_RETRY_BACKOFF_MS,
    CONNECT_TIMEOUT_S,
    DEFAULT_BIND_HOST,
    LISTEN_BACKLOG,
    SESSION_PORT,
)
from transport.blocking import RunBlocking
from transport.endpoint import TransportEndpoint
from transport.retry import (
    FailureType,
    RetryAttempt,
    get_retry_delay_ms,
    next_attempt,
    reset_attempt,
    should_retry,
)


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

SocketFactory = Callable[[], Any]
Sleep = Callable[[float], Awaitable[None]]


class TransientConnectionFailure(Exception):
    """A bind/accept/connect attempt failed; the negotiator will try again."""

    def __init__(self, phase: str, attempt: int, cause: BaseException) -> None:
        super().__init__(f"{phase} failed (attempt {attempt}): {cause!r}")
        self.phase = phase
        self.attempt = attempt
        self.cause = cause


FailureHook = Callable[[TransientConnectionFailure], None]


@dataclass(frozen=True)
class Connection:
    """
    Result of a successful negotiation.

    listener is the bound listening socket (LISTENER role only). It accepts
    nothing further; it is kept so it can be released together with the
    endpoint at session end.
    """
    role: SessionRole
    endpoint: TransportEndpoint
    listener: Any | None = None
    peer_address: str | None = None


def open_tcp_socket() -> socket.socket:
    return socket.socket(socket.AF_INET, socket.SOCK_STREAM)


def _bind_and_listen(sock: Any, address: tuple[str, int], backlog: int) -> None:
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(address)
    sock.listen(backlog)


# ---------------------------------------------------------------------
# Negotiator
# ---------------------------------------------------------------------

class ConnectionNegotiator:
    """
    Drives the Listener or Dialer branch until a connection exists.

    All socket calls run on the session's blocking bridge. The socket
    factory and sleep are injectable so tests can script failures.
    """

    def __init__(
        self,
        *,
        run_blocking: RunBlocking,
        port: int = SESSION_PORT,
        bind_host: str = DEFAULT_BIND_HOST,
        backlog: int = LISTEN_BACKLOG,
        connect_timeout_s: float = CONNECT_TIMEOUT_S,
        accept_poll_s: float = ACCEPT_POLL_INTERVAL_S,
        retry_schedule_ms: Sequence[int] = CONNECT_RETRY_BACKOFF_MS,
        open_socket: SocketFactory = open_tcp_socket,
        sleep: Sleep = asyncio.sleep,
        on_transient_failure: FailureHook | None = None,
        session_id: str | None = None,
    ) -> None:
        self._run_blocking = run_blocking
        self._port = port
        self._bind_host = bind_host
        self._backlog = backlog
        self._connect_timeout_s = connect_timeout_s
        self._accept_poll_s = accept_poll_s
        self._retry_schedule_ms = tuple(retry_schedule_ms)
        self._open_socket = open_socket
        self._sleep = sleep
        self._on_transient_failure = on_transient_failure
        self._session_id = session_id

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def establish(self, intent: SessionIntent) -> Connection:
        """
        Select the role from intent and negotiate until connected.

        Raises:
            NoRole if the intent names neither side (nothing is attempted).
        """
        role = select_role(intent)

        log_event({
            "event_type": "NEGOTIATION_STARTED",
            "session_id": self._session_id,
            "role": role.value,
            "peer_name": intent.peer_name,
            "port": self._port,
        })

        with timed(
            "connection_established",
            session_id=self._session_id,
            role=role.value,
            details={"peer_name": intent.peer_name},
        ):
            if role is SessionRole.LISTENER:
                assert intent.server is not None
                return await self.listen(intent.server)
            assert intent.client is not None
            return await self.dial(intent.client)

    async def listen(self, server: ServerIntent) -> Connection:
        """
        Bind the fixed port and accept exactly one peer.

        Any failure restarts the whole bind + accept sequence on a fresh socket.
        """
        attempt = reset_attempt()

        while True:
            listener = self._open_socket()
            phase = "bind"
            try:
                await self._run_blocking(
                    _bind_and_listen,
                    listener,
                    (self._bind_host, self._port),
                    self._backlog,
                )
                phase = "accept"
                sock, addr = await self._accept(listener)
            except OSError as exc:
                listener.close()
                await self._transient_failure(phase, attempt, exc)
                attempt = next_attempt(attempt)
                continue
            except asyncio.CancelledError:
                listener.close()
                raise

            peer_address = _format_address(addr)
            peer_host = addr[0] if isinstance(addr, tuple) else str(addr)
            if (
                server.expected_peer_address
                and peer_host != server.expected_peer_address
            ):
                log_event({
                    "event_type": "UNEXPECTED_PEER_ADDRESS",
                    "session_id": self._session_id,
                    "expected": server.expected_peer_address,
                    "actual": peer_address,
                })

            log_event({
                "event_type": "PEER_ACCEPTED",
                "session_id": self._session_id,
                "peer_address": peer_address,
                "peer_name": server.expected_peer_name,
                "attempts": attempt.attempt + 1,
            })

            return Connection(
                role=SessionRole.LISTENER,
                endpoint=TransportEndpoint(
                    sock,
                    run_blocking=self._run_blocking,
                    peer_address=peer_address,
                ),
                listener=listener,
                peer_address=peer_address,
            )

    async def dial(self, client: ClientIntent) -> Connection:
        """Connect to the peer on the fixed port, retrying forever."""
        attempt = reset_attempt()
        target = (client.peer_address, self._port)

        while True:
            sock = self._open_socket()
            try:
                sock.settimeout(self._connect_timeout_s)
                await self._run_blocking(sock.connect, target)
                sock.settimeout(None)
            except OSError as exc:
                sock.close()
                await self._transient_failure("connect", attempt, exc)
                attempt = next_attempt(attempt)
                continue
            except asyncio.CancelledError:
                sock.close()
                raise

            peer_address = _format_address(target)
            log_event({
                "event_type": "PEER_CONNECTED",
                "session_id": self._session_id,
                "peer_address": peer_address,
                "peer_name": client.peer_name,
                "attempts": attempt.attempt + 1,
            })

            return Connection(
                role=SessionRole.DIALER,
                endpoint=TransportEndpoint(
                    sock,
                    run_blocking=self._run_blocking,
                    peer_address=peer_address,
                ),
                listener=None,
                peer_address=peer_address,
            )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _accept(self, listener: Any) -> tuple[Any, Any]:
        """
        Accept one connection.

        Polls with a short timeout so an abandoned accept frees its worker;
        a poll timeout is not a failure and does not restart the bind.
        """
        listener.settimeout(self._accept_poll_s)
        while True:
            try:
                sock, addr = await self._run_blocking(listener.accept)
            except socket.timeout:
                continue
            sock.settimeout(None)
            return sock, addr

    async def _transient_failure(
        self,
        phase: str,
        attempt: RetryAttempt,
        cause: OSError,
    ) -> None:
        failure = TransientConnectionFailure(phase, attempt.attempt, cause)
        if not should_retry(FailureType.TRANSIENT_CONNECTION):
            raise failure from cause

        delay_ms = get_retry_delay_ms(attempt, schedule=self._retry_schedule_ms)

        log_event({
            "event_type": "CONNECTION_ATTEMPT_FAILED",
            "session_id": self._session_id,
            "failure": FailureType.TRANSIENT_CONNECTION.value,
            "phase": phase,
            "attempt": attempt.attempt,
            "retry_in_ms": delay_ms,
            "error": repr(cause),
        })

        if self._on_transient_failure is not None:
            self._on_transient_failure(failure)

        if delay_ms > 0:
            await self._sleep(delay_ms / 1000.0)


def _format_address(addr: Any) -> str:
    if isinstance(addr, tuple) and len(addr) >= 2:
        return f"{addr[0]}:{addr[1]}"
    return str(addr)
