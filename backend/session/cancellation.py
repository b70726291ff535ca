"""
Session shutdown token.

Responsibilities:
- Fan a single shutdown request out to every task of a session
- Record the FIRST reason only; later triggers are no-ops
- Let the controller await "someone asked to stop"

Non-responsibilities:
- NO teardown (the controller owns the ordered teardown)
- NO retry logic
- NO knowledge of which task triggered it beyond the reason
"""

from __future__ import annotations

import asyncio
from enum import Enum


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

class ShutdownReason(str, Enum):
    CLOSED_BY_CALLER = "closed_by_caller"
    HOST_TEARDOWN = "host_teardown"
    # Ingress returns cleanly only after teardown closed its channels, so
    # another reason is always recorded first.
    INGRESS_FINISHED = "ingress_finished"
    INGRESS_FAILED = "ingress_failed"
    EGRESS_FAILED = "egress_failed"

    @property
    def graceful(self) -> bool:
        """
        Graceful shutdowns give consumers a grace period to drain buffered
        items; failures tear down immediately.
        """
        return self in (
            ShutdownReason.CLOSED_BY_CALLER,
            ShutdownReason.HOST_TEARDOWN,
        )


# ---------------------------------------------------------------------
# Token
# ---------------------------------------------------------------------

class ShutdownToken:
    """
    One token per session. Any task may trigger it; the controller waits on it.

    Lifecycle:
    1. Controller creates the token before negotiation
    2. Tasks (or the host) call trigger(reason) when the session must end
    3. The first trigger wins; the controller wakes and tears down
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: ShutdownReason | None = None
        self._detail: str | None = None

    def trigger(self, reason: ShutdownReason, detail: str | None = None) -> bool:
        """
        Request shutdown.

        Returns True only for the call that actually triggered it.
        """
        if self._reason is not None:
            return False
        self._reason = reason
        self._detail = detail
        self._event.set()
        return True

    async def wait(self) -> ShutdownReason:
        await self._event.wait()
        assert self._reason is not None
        return self._reason

    @property
    def triggered(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> ShutdownReason | None:
        return self._reason

    @property
    def detail(self) -> str | None:
        return self._detail
