# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import socket
from typing import Any

import pytest

import transport.negotiator as negotiator_mod
from session.intent import ClientIntent, NoRole, ServerIntent, SessionIntent, SessionRole
from transport.negotiator import ConnectionNegotiator, TransientConnectionFailure


@pytest.fixture(autouse=True)
def captured_logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(negotiator_mod, "log_event", emitted.append)
    return emitted


async def run_inline(fn: Any, *args: Any) -> Any:
    return fn(*args)


async def no_sleep(_: float) -> None:
    return None


class FakeSocket:
    def __init__(self, script: "FlakyNetwork") -> None:
        self.script = script
        self.closed = False
        self.timeouts: list[Any] = []
        self.options: list[tuple[int, int, int]] = []

    def setsockopt(self, level: int, name: int, value: int) -> None:
        self.options.append((level, name, value))

    def settimeout(self, value: Any) -> None:
        self.timeouts.append(value)

    def bind(self, address: tuple[str, int]) -> None:
        self.script.binds.append(address)
        if self.script.bind_failures > 0:
            self.script.bind_failures -= 1
            raise OSError("address in use")

    def listen(self, backlog: int) -> None:
        self.script.listens.append(backlog)

    def accept(self) -> tuple[Any, Any]:
        self.script.accepts += 1
        if self.script.accept_timeouts > 0:
            self.script.accept_timeouts -= 1
            raise socket.timeout()
        if self.script.accept_failures > 0:
            self.script.accept_failures -= 1
            raise OSError("accept failed")
        return FakeSocket(self.script), ("10.0.0.2", 50123)

    def connect(self, address: tuple[str, int]) -> None:
        self.script.connects.append(address)
        if self.script.connect_failures > 0:
            self.script.connect_failures -= 1
            raise ConnectionRefusedError("refused")

    def shutdown(self, how: int) -> None:
        pass

    def close(self) -> None:
        self.closed = True


class FlakyNetwork:
    """Socket factory with scripted failures."""

    def __init__(
        self,
        *,
        bind_failures: int = 0,
        accept_failures: int = 0,
        accept_timeouts: int = 0,
        connect_failures: int = 0,
    ) -> None:
        self.bind_failures = bind_failures
        self.accept_failures = accept_failures
        self.accept_timeouts = accept_timeouts
        self.connect_failures = connect_failures
        self.sockets: list[FakeSocket] = []
        self.binds: list[tuple[str, int]] = []
        self.listens: list[int] = []
        self.connects: list[tuple[str, int]] = []
        self.accepts = 0

    def __call__(self) -> FakeSocket:
        sock = FakeSocket(self)
        self.sockets.append(sock)
        return sock


def make_negotiator(network: FlakyNetwork, **kwargs: Any) -> ConnectionNegotiator:
    return ConnectionNegotiator(
        run_blocking=run_inline,
        port=9998,
        bind_host="0.0.0.0",
        open_socket=network,
        sleep=kwargs.pop("sleep", no_sleep),
        **kwargs,
    )


SERVER = SessionIntent(server=ServerIntent(expected_peer_name="Alice"))
CLIENT = SessionIntent(client=ClientIntent(peer_address="10.0.0.1", peer_name="Bob"))


# ---------------------------------------------------------------------
# Listener
# ---------------------------------------------------------------------

@pytest.mark.parametrize("failures", [0, 1, 4, 9])
def test_listener_retries_bind_until_success(failures: int):
    network = FlakyNetwork(bind_failures=failures)
    seen: list[TransientConnectionFailure] = []
    negotiator = make_negotiator(network, on_transient_failure=seen.append)

    connection = asyncio.run(negotiator.establish(SERVER))

    assert len(network.binds) == failures + 1
    assert network.accepts == 1
    assert len(seen) == failures
    assert all(f.phase == "bind" for f in seen)
    assert connection.role is SessionRole.LISTENER
    assert connection.listener is network.sockets[-1]
    assert connection.peer_address == "10.0.0.2:50123"
    # Every failed listener was released before the next attempt
    assert all(s.closed for s in network.sockets[:-1])
    assert not network.sockets[-1].closed


def test_listener_sets_address_reuse():
    network = FlakyNetwork()
    asyncio.run(make_negotiator(network).establish(SERVER))

    assert (socket.SOL_SOCKET, socket.SO_REUSEADDR, 1) in network.sockets[0].options
    assert network.listens == [1]
    assert network.binds == [("0.0.0.0", 9998)]


def test_accept_failure_restarts_bind_and_accept():
    network = FlakyNetwork(accept_failures=2)
    seen: list[TransientConnectionFailure] = []
    negotiator = make_negotiator(network, on_transient_failure=seen.append)

    asyncio.run(negotiator.establish(SERVER))

    assert len(network.binds) == 3
    assert network.accepts == 3
    assert [f.phase for f in seen] == ["accept", "accept"]


def test_accept_poll_timeout_is_not_a_failure():
    network = FlakyNetwork(accept_timeouts=3)
    seen: list[TransientConnectionFailure] = []
    negotiator = make_negotiator(network, on_transient_failure=seen.append)

    asyncio.run(negotiator.establish(SERVER))

    assert len(network.binds) == 1
    assert network.accepts == 4
    assert seen == []


def test_retry_pauses_follow_backoff_schedule():
    network = FlakyNetwork(bind_failures=4)
    pauses: list[float] = []

    async def record_sleep(seconds: float) -> None:
        pauses.append(seconds)

    negotiator = make_negotiator(
        network, sleep=record_sleep, retry_schedule_ms=(0, 100, 300)
    )
    asyncio.run(negotiator.establish(SERVER))

    # attempt 0 has no pause; later attempts clamp to the last slot
    assert pauses == [0.1, 0.3, 0.3]


def test_failures_are_logged_not_raised(captured_logs: list[dict[str, Any]]):
    network = FlakyNetwork(bind_failures=2)
    asyncio.run(make_negotiator(network).establish(SERVER))

    failed = [e for e in captured_logs if e["event_type"] == "CONNECTION_ATTEMPT_FAILED"]
    assert [e["attempt"] for e in failed] == [0, 1]
    assert all(e["failure"] == "transient_connection" for e in failed)
    assert captured_logs[-1]["event_type"] == "PEER_ACCEPTED"


def test_unexpected_peer_address_is_logged(captured_logs: list[dict[str, Any]]):
    network = FlakyNetwork()
    intent = SessionIntent(
        server=ServerIntent(expected_peer_name="Alice", expected_peer_address="10.0.0.9")
    )
    asyncio.run(make_negotiator(network).establish(intent))

    assert any(e["event_type"] == "UNEXPECTED_PEER_ADDRESS" for e in captured_logs)


# ---------------------------------------------------------------------
# Dialer
# ---------------------------------------------------------------------

def test_dialer_retries_connect_until_success():
    network = FlakyNetwork(connect_failures=3)
    seen: list[TransientConnectionFailure] = []
    negotiator = make_negotiator(network, on_transient_failure=seen.append)

    connection = asyncio.run(negotiator.establish(CLIENT))

    assert network.connects == [("10.0.0.1", 9998)] * 4
    assert [f.phase for f in seen] == ["connect"] * 3
    assert connection.role is SessionRole.DIALER
    assert connection.listener is None
    assert connection.peer_address == "10.0.0.1:9998"
    assert all(s.closed for s in network.sockets[:-1])
    # Connect is bounded per attempt; the live socket is blocking afterwards
    assert network.sockets[-1].timeouts[-1] is None


def test_server_intent_wins_when_both_supplied():
    network = FlakyNetwork()
    both = SessionIntent(server=SERVER.server, client=CLIENT.client)

    connection = asyncio.run(make_negotiator(network).establish(both))

    assert connection.role is SessionRole.LISTENER
    assert network.connects == []


def test_no_role_attempts_nothing():
    network = FlakyNetwork()

    with pytest.raises(NoRole):
        asyncio.run(make_negotiator(network).establish(SessionIntent()))

    assert network.sockets == []


# ---------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------

def test_cancelling_a_failing_negotiation_releases_sockets():
    network = FlakyNetwork(connect_failures=10**9)

    async def run():
        negotiator = make_negotiator(network, sleep=asyncio.sleep, retry_schedule_ms=(5,))
        task = asyncio.create_task(negotiator.establish(CLIENT))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())

    assert len(network.connects) >= 2
    assert all(s.closed for s in network.sockets)


def test_connect_failure_outside_retry_policy_is_raised(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(negotiator_mod, "should_retry", lambda failure: False)
    network = FlakyNetwork(connect_failures=1)
    seen: list[TransientConnectionFailure] = []
    negotiator = make_negotiator(network, on_transient_failure=seen.append)

    with pytest.raises(TransientConnectionFailure) as info:
        asyncio.run(negotiator.establish(CLIENT))

    assert info.value.phase == "connect"
    assert len(network.connects) == 1
    assert network.sockets[0].closed
    assert seen == []
