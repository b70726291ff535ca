"""
Single-assignment orientation signal.

The camera reports its display rotation asynchronously during setup; the
egress pipeline must wait for it before sending the orientation header.

- set() succeeds once; later values are ignored (first value wins)
- every waiter observes the same value
- a waiter arriving after set() returns immediately
"""

from __future__ import annotations

import asyncio


class OrientationSignal:

    def __init__(self) -> None:
        self._value: int | None = None
        self._ready = asyncio.Event()

    def set(self, degrees: int) -> bool:
        """Assign the value. Returns False if it was already assigned."""
        if self._value is not None:
            return False
        self._value = int(degrees)
        self._ready.set()
        return True

    async def wait(self) -> int:
        await self._ready.wait()
        assert self._value is not None
        return self._value

    @property
    def value(self) -> int | None:
        return self._value

    @property
    def is_set(self) -> bool:
        return self._value is not None
