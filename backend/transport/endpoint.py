"""
Transport endpoint: the session's single TCP byte stream.

Responsibilities:
- read_exact(n): collect exactly n bytes (short reads are looped over)
- write_all(data): write one whole buffer; concurrent callers are serialized
  so a frame is never split by another writer
- close(): idempotent; wakes any worker blocked in recv/send

Every socket call runs on the session's blocking bridge.

Non-responsibilities:
- No framing (see protocol.framing)
- No retry, no reconnect
"""

from __future__ import annotations

import asyncio
import socket
from typing import Any

from observability.logger import log_event
from protocol.framing import StreamTerminated
from spec import SOCKET_RECV_BYTES
from transport.blocking import RunBlocking


def recv_exact_blocking(sock: Any, n: int, *, max_recv: int = SOCKET_RECV_BYTES) -> bytes:
    """
    Blocking loop that returns exactly n bytes from sock.

    Raises:
        StreamTerminated if the peer closes before n bytes arrive or the
        socket fails.
    """
    buf = bytearray(n)
    view = memoryview(buf)
    got = 0
    while got < n:
        try:
            count = sock.recv_into(view[got:], min(n - got, max_recv))
        except OSError as exc:
            raise StreamTerminated(f"recv failed after {got}/{n} bytes: {exc!r}") from exc
        if count == 0:
            raise StreamTerminated(f"peer closed after {got}/{n} bytes")
        got += count
    return bytes(buf)


class TransportEndpoint:
    """
    Bidirectional ordered byte stream over a connected socket.

    Owned exclusively by the session controller. Shared for writes by the two
    egress drain loops; read only by the ingress loop.
    """

    def __init__(
        self,
        sock: Any,
        *,
        run_blocking: RunBlocking,
        peer_address: str | None = None,
    ) -> None:
        self._sock = sock
        self._run_blocking = run_blocking
        self.peer_address = peer_address

        self._write_lock = asyncio.Lock()
        self._closed = False

        self.bytes_read: int = 0
        self.bytes_written: int = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    async def read_exact(self, n: int) -> bytes:
        """
        Return exactly n bytes, or raise StreamTerminated.
        """
        if n < 0:
            raise ValueError("n must be >= 0")
        if n == 0:
            return b""
        if self._closed:
            raise StreamTerminated("endpoint closed")

        data = await self._run_blocking(recv_exact_blocking, self._sock, n)
        self.bytes_read += n
        return data

    async def write_all(self, data: bytes) -> None:
        """
        Write the whole buffer as one uninterrupted write.

        Raises:
            StreamTerminated if the socket fails or the endpoint is closed.
        """
        async with self._write_lock:
            if self._closed:
                raise StreamTerminated("endpoint closed")
            try:
                await self._run_blocking(self._sock.sendall, data)
            except OSError as exc:
                raise StreamTerminated(f"send failed: {exc!r}") from exc
            self.bytes_written += len(data)

    def close(self) -> bool:
        """
        Close the connection.

        Returns True only for the call that actually closed it.
        """
        if self._closed:
            return False
        self._closed = True

        # shutdown() is what wakes a worker blocked in recv_into/sendall
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already disconnected
        self._sock.close()

        log_event({
            "event_type": "TRANSPORT_CLOSED",
            "peer_address": self.peer_address,
            "bytes_read": self.bytes_read,
            "bytes_written": self.bytes_written,
        })
        return True
