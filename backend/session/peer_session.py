"""
Peer session container.

- Owns the connection (endpoint + listener) once negotiation succeeded
- Owns the four session channels and the local orientation signal
- Owns connection status (mutable, controller-controlled)
- Owned and mutated by SessionController
- NOT a state machine
- Contains no pipeline logic
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from pipeline.channels import SessionChannels
from session.connection_status import ConnectionStatus
from session.intent import SessionRole
from session.orientation import OrientationSignal
from transport.negotiator import Connection


# ---------------------------------------------------------------------
# PeerSession
# ---------------------------------------------------------------------


@dataclass
class PeerSession:
    """Mutable runtime container for a single peer session."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    session_id: str
    role: SessionRole
    peer_name: str | None
    created_at: float = field(default_factory=time.time)

    # ------------------------------------------------------------------
    # Connection / controller-controlled state
    # ------------------------------------------------------------------

    connection: Connection | None = None
    connection_status: ConnectionStatus = ConnectionStatus.DOWN

    # ------------------------------------------------------------------
    # Pipeline state
    # ------------------------------------------------------------------

    channels: SessionChannels = field(default_factory=SessionChannels.create)
    local_orientation: OrientationSignal = field(default_factory=OrientationSignal)
    remote_orientation: int | None = None

    _transport_released: bool = field(default=False, init=False, repr=False)

    # ------------------------------------------------------------------
    # Wiring helpers (called by SessionController)
    # ------------------------------------------------------------------

    def attach_connection(self, connection: Connection) -> None:
        self.connection = connection
        self.connection_status = ConnectionStatus.UP

    def record_remote_orientation(self, degrees: int) -> None:
        self.remote_orientation = degrees

    def release_transport(self) -> bool:
        """
        Close the endpoint and the listening socket.

        Returns True only for the call that released them; every later call
        is a no-op.
        """
        if self._transport_released:
            return False
        self._transport_released = True

        if self.connection is None:
            return True

        self.connection.endpoint.close()
        if self.connection.listener is not None:
            try:
                self.connection.listener.close()
            except OSError:
                pass  # listener already gone
        return True

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    def log_context(self) -> dict[str, Any]:
        """Standard logging context for this session."""
        return {
            "session_id": self.session_id,
            "role": self.role.value,
            "peer_name": self.peer_name,
            "connection_status": self.connection_status.value,
        }

    def snapshot(self) -> dict[str, Any]:
        endpoint = self.connection.endpoint if self.connection is not None else None
        return {
            **self.log_context(),
            "peer_address": self.connection.peer_address if self.connection else None,
            "created_at": self.created_at,
            "local_orientation": self.local_orientation.value,
            "remote_orientation": self.remote_orientation,
            "bytes_read": endpoint.bytes_read if endpoint else 0,
            "bytes_written": endpoint.bytes_written if endpoint else 0,
            "channels": self.channels.snapshot(),
        }
