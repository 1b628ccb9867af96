"""Clock interfaces for testable time management."""

import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Clock interface for testable time management."""

    def now(self) -> float:
        """Return current time in seconds."""
        ...


class MonotonicClock:
    """Clock for in-process intervals, backed by time.monotonic."""

    def now(self) -> float:
        return time.monotonic()


class WallClock:
    """Clock for timestamps that must survive across processes, backed by time.time."""

    def now(self) -> float:
        return time.time()


def utc_iso(epoch_seconds: float) -> str:
    """Format epoch seconds as ISO-8601 UTC with a Z suffix."""
    stamp = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")
