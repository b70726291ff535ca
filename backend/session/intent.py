"""
Session entry parameters and role selection.

A session is entered with exactly one of:
- ServerIntent: "I am the server, here is the client I expect"  -> LISTENER
- ClientIntent: "I am the client, here is the server to dial"   -> DIALER

Role selection is pure: no I/O, no state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from config import AppConfig


class NoRole(Exception):
    """
    Raised when neither intent was supplied.

    Terminal and non-retryable: no connection is attempted.
    """


class SessionRole(str, Enum):
    """Which side of the connection this endpoint plays; fixed per session."""
    LISTENER = "listener"
    DIALER = "dialer"


@dataclass(frozen=True)
class ServerIntent:
    """Accept one connection from the named peer on the fixed port."""
    expected_peer_name: str
    expected_peer_address: str | None = None


@dataclass(frozen=True)
class ClientIntent:
    """Dial the named peer at peer_address on the fixed port."""
    peer_address: str
    peer_name: str


@dataclass(frozen=True)
class SessionIntent:
    server: ServerIntent | None = None
    client: ClientIntent | None = None

    @property
    def peer_name(self) -> str | None:
        if self.server is not None:
            return self.server.expected_peer_name
        if self.client is not None:
            return self.client.peer_name
        return None


def select_role(intent: SessionIntent) -> SessionRole:
    """
    Derive the session role from caller intent.

    Server intent is checked first; if a caller supplies both, the session
    listens.

    Raises:
        NoRole if neither intent is present.
    """
    if intent.server is not None:
        return SessionRole.LISTENER
    if intent.client is not None:
        return SessionRole.DIALER
    raise NoRole("session intent carries neither server nor client info")


def intent_from_config(config: AppConfig) -> SessionIntent:
    """
    Build the session intent from PEER_ROLE / PEER_NAME / PEER_ADDRESS.

    An unset or unknown role yields an empty intent (select_role raises NoRole).

    Raises:
        ValueError if role is "client" but no peer address is configured.
    """
    name = config.peer_name or "peer"

    if config.peer_role == "server":
        return SessionIntent(
            server=ServerIntent(
                expected_peer_name=name,
                expected_peer_address=config.peer_address,
            )
        )

    if config.peer_role == "client":
        if not config.peer_address:
            raise ValueError("PEER_ADDRESS is required when PEER_ROLE=client")
        return SessionIntent(
            client=ClientIntent(peer_address=config.peer_address, peer_name=name)
        )

    return SessionIntent()
