"""
Retry policy helpers.

Purpose:
- Centralize the failure taxonomy and which failures are retried
- Give the negotiator a deterministic backoff schedule

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from media.collaborators import HardwareResourceFailure
from protocol.framing import FramingError, StreamTerminated
from spec import CONNECT_RETRY_BACKOFF_MS


# =============================================================================
# Failure Types
# =============================================================================

class FailureType(str, Enum):
    """
    Failure classification used by retry and shutdown policy.

    TRANSIENT_CONNECTION:
        bind / accept / connect failed. Retried indefinitely; never
        surfaced to the caller.

    MALFORMED_FRAME:
        Unrecognized tag or impossible length on the wire. The stream is
        desynchronized. Never retried; ends the session.

    STREAM_TERMINATED:
        Peer closed or the socket failed mid read/write. Never retried;
        ends the session.

    HARDWARE_RESOURCE:
        Capture / encode / decode / playback collaborator fault. Never
        retried; scope is the affected bridge loop only.
    """

    TRANSIENT_CONNECTION = "transient_connection"
    MALFORMED_FRAME = "malformed_frame"
    STREAM_TERMINATED = "stream_terminated"
    HARDWARE_RESOURCE = "hardware_resource"


def should_retry(failure: FailureType) -> bool:
    """
    Returns True if the failed step must be attempted again.

    There is no attempt limit: a negotiation that never succeeds runs until
    the caller cancels the session.
    """
    return failure is FailureType.TRANSIENT_CONNECTION


def classify_failure(exc: BaseException) -> FailureType | None:
    """
    Map an exception raised by a session task onto the failure taxonomy.

    Returns None for exceptions outside the taxonomy (programming errors).
    """
    if isinstance(exc, FramingError):
        return FailureType.MALFORMED_FRAME
    if isinstance(exc, StreamTerminated):
        return FailureType.STREAM_TERMINATED
    if isinstance(exc, HardwareResourceFailure):
        return FailureType.HARDWARE_RESOURCE
    return None


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable retry attempt counter.

    - attempt == 0 represents the initial attempt (no retry yet).
    - attempt >= 1 represents the Nth retry.
    Used for backoff and logging only, never for giving up.
    """
    attempt: int


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """Return a new RetryAttempt with attempt incremented by 1."""
    return RetryAttempt(attempt=current.attempt + 1)


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


# =============================================================================
# Delay Calculation
# =============================================================================

def get_retry_delay_ms(
    attempt: RetryAttempt,
    *,
    schedule: Sequence[int] = CONNECT_RETRY_BACKOFF_MS,
) -> int:
    """
    Returns the pause before retry attempt N.

    The attempt index is clamped to the last slot, so the pause stops
    growing but retries continue.
    """
    if not schedule:
        return 0
    idx = min(attempt.attempt, len(schedule) - 1)
    return schedule[idx]
