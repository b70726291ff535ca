"""
Structured event logger.

- Write one event per line to stdout
- JSONL by default; `key=value` text when JSON logs are disabled
- No buffering, no batching
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_json_enabled: bool = True


def configure(*, json_logs: bool) -> None:
    """Select the line format for subsequent events."""
    global _json_enabled  # pylint: disable=global-statement
    _json_enabled = json_logs


def _render_text(event: Mapping[str, Any]) -> str:
    head = str(event.get("event_type", "EVENT"))
    rest = " ".join(
        f"{k}={v!r}" for k, v in event.items() if k != "event_type"
    )
    return f"{head} {rest}".rstrip()


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single structured event to stdout.

    The caller supplies `event_type` plus any context (session_id, role, ...).
    `ts_ms` is filled in with wall-clock milliseconds when absent.

    This function:
    - Serializes to one line
    - Flushes immediately (no buffering)
    - Never raises
    """
    if "ts_ms" not in event:
        event = {"ts_ms": time.time_ns() // 1_000_000, **event}

    if not _json_enabled:
        _print(_render_text(event))
        return

    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Logging must never crash a pipeline task
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
