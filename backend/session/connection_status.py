"""
Connection status tracking for peer sessions.

connection_status: DOWN | CONNECTING | UP | CLOSING

Pure data owned by SessionController; tracked for observability only and
never consulted to make a pipeline decision.
"""
from enum import Enum

class ConnectionStatus(Enum):
    """
    Connection lifecycle status.

    DOWN -> CONNECTING -> UP -> CLOSING -> DOWN
    A session closed before it connected goes CONNECTING -> DOWN.
    """
    DOWN = "DOWN"              # No transport
    CONNECTING = "CONNECTING"  # Negotiating (bind/accept or connect, retrying)
    UP = "UP"                  # Endpoint live, pipelines running
    CLOSING = "CLOSING"        # Shutdown in progress
