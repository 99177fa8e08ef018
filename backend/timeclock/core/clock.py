"""Time source used by the time clock services."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC. All persisted anchors are timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
