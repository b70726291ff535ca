"""
Blocking-to-async bridge.

Every blocking call (socket bind/accept/connect/recv/send, hardware pulls and
pushes) runs on a dedicated worker thread and resumes the awaiting coroutine
on the event loop when it completes. A stalled call therefore never stalls
unrelated tasks.

Cancellation: cancelling the awaiting task abandons the result but cannot
interrupt the worker thread. Callers make blocking calls interruptible by
closing the underlying resource (socket shutdown, device stop) or by bounding
them with a timeout.
"""

from __future__ import annotations

import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Awaitable, Callable, TypeVar

from spec import IO_THREAD_NAME_PREFIX, IO_WORKERS

T = TypeVar("T")

RunBlocking = Callable[..., Awaitable[Any]]


class BlockingBridge:
    """
    Session-scoped thread pool for blocking I/O.

    One bridge per session; shut down by the session controller on teardown.
    """

    def __init__(
        self,
        *,
        max_workers: int = IO_WORKERS,
        thread_name_prefix: str = IO_THREAD_NAME_PREFIX,
    ) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix,
        )
        self._closed = False

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run fn(*args) on a worker thread and await its result."""
        if self._closed:
            raise RuntimeError("blocking bridge is shut down")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, functools.partial(fn, *args)
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        """
        Stop accepting work. Queued calls are cancelled; running calls finish
        on their own once their resource is closed.
        """
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)
