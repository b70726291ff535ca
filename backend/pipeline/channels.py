# backend/pipeline/channels.py
"""
Bounded byte-buffer channels connecting pipeline stages.

Semantics:
- FIFO: receive order equals send order
- Bounded: send() suspends while `capacity` items are unconsumed
  (this is the backpressure mechanism); each receive frees one slot
- close() is idempotent and is the only cancellation signal for the
  consumer: buffered items are still delivered, then receive() raises
  ChannelClosed
- send() after close() raises ChannelClosed (blocked senders are woken)

One producer task and one consumer task per channel. All calls happen on
the event loop thread.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import AsyncIterator, Deque

from spec import CHANNEL_CAPACITY


class ChannelClosed(Exception):
    """Raised on send() to a closed channel or receive() from a drained one."""


@dataclass
class ChannelCounters:
    """Counters for observability."""
    sent: int = 0
    received: int = 0
    bytes_sent: int = 0


class ByteChannel:
    """
    Bounded single-producer / single-consumer queue of byte buffers.
    """

    def __init__(self, *, name: str, capacity: int = CHANNEL_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")

        self.name = name
        self._capacity = capacity
        self._items: Deque[bytes] = deque()
        self._closed = False

        self._not_empty = asyncio.Event()
        self._not_full = asyncio.Event()
        self._not_full.set()

        self.counters = ChannelCounters()

    # -------------------------
    # Core channel operations
    # -------------------------

    async def send(self, item: bytes) -> None:
        """
        Enqueue one buffer, suspending while the channel is full.

        Raises:
            ChannelClosed if the channel is (or becomes) closed.
        """
        while not self._closed and len(self._items) >= self._capacity:
            self._not_full.clear()
            await self._not_full.wait()

        if self._closed:
            raise ChannelClosed(self.name)

        self._items.append(item)
        self.counters.sent += 1
        self.counters.bytes_sent += len(item)
        self._not_empty.set()

    async def receive(self) -> bytes:
        """
        Dequeue the oldest buffer, suspending while the channel is empty.

        Raises:
            ChannelClosed once the channel is closed AND fully drained.
        """
        while not self._items and not self._closed:
            self._not_empty.clear()
            await self._not_empty.wait()

        if not self._items:
            raise ChannelClosed(self.name)

        item = self._items.popleft()
        self.counters.received += 1
        self._not_full.set()
        return item

    def close(self) -> bool:
        """
        Refuse further sends and wake every waiter.

        Returns True only for the call that actually closed the channel.
        """
        if self._closed:
            return False
        self._closed = True
        self._not_empty.set()
        self._not_full.set()
        return True

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        while True:
            try:
                item = await self.receive()
            except ChannelClosed:
                return
            yield item

    # -------------------------
    # Introspection helpers
    # -------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._items)

    def is_empty(self) -> bool:
        return not self._items

    def snapshot(self) -> dict[str, int | bool | str]:
        """
        Lightweight snapshot for logging / the session status endpoint.
        """
        return {
            "name": self.name,
            "depth": len(self._items),
            "capacity": self._capacity,
            "sent": self.counters.sent,
            "received": self.counters.received,
            "bytes_sent": self.counters.bytes_sent,
            "closed": self._closed,
        }


@dataclass
class SessionChannels:
    """The four channels of one session."""
    local_video: ByteChannel
    local_audio: ByteChannel
    remote_video: ByteChannel
    remote_audio: ByteChannel

    @staticmethod
    def create(*, capacity: int = CHANNEL_CAPACITY) -> SessionChannels:
        return SessionChannels(
            local_video=ByteChannel(name="local_video", capacity=capacity),
            local_audio=ByteChannel(name="local_audio", capacity=capacity),
            remote_video=ByteChannel(name="remote_video", capacity=capacity),
            remote_audio=ByteChannel(name="remote_audio", capacity=capacity),
        )

    def all(self) -> tuple[ByteChannel, ...]:
        return (self.local_video, self.local_audio, self.remote_video, self.remote_audio)

    def close_all(self) -> None:
        for channel in self.all():
            channel.close()

    def snapshot(self) -> dict[str, dict[str, int | bool | str]]:
        return {channel.name: channel.snapshot() for channel in self.all()}
